"""
Design-iteration verification.

Each design iteration stores its captures under
``<iterations_dir>/iteration-<N>/screenshots/``. Verifying iteration ``N``
compares every target's screenshot against the one taken for iteration
``N - 1`` and writes a markdown report with the diff images, so a designer
can confirm the change actually reached the rendered page.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import NamedTuple

from pydantic import BaseModel

from docshot.conf import VerificationConfig
from docshot.image_diff.codec import write_png
from docshot.image_diff.compare import compare_images
from docshot.report import format_percentage

logger = logging.getLogger(__name__)

_ITERATION_RE = re.compile(r"^iteration-(\d+)$")
_TARGET_RE = re.compile(r"^(?P<target>.+?)-(?P<theme>light|dark)(?:-[^.]*)?\.png$")


class VerificationError(Exception):
    pass


class Iteration(NamedTuple):
    number: int
    path: Path

    @property
    def screenshots_dir(self) -> Path:
        return self.path / "screenshots"


class TargetResult(BaseModel):
    target: str
    previous_file: str | None = None
    current_file: str | None = None
    diff_percentage: float | None = None
    diff_file: str | None = None
    error: str | None = None

    @property
    def changed(self) -> bool:
        return self.error is None and (self.diff_percentage or 0.0) > 0


class VerificationOutcome(BaseModel):
    iteration: int
    results_dir: Path
    report_path: Path
    targets: list[TargetResult]

    @property
    def changes_detected(self) -> bool:
        return any(target.changed for target in self.targets)


def available_iterations(iterations_dir: Path) -> list[Iteration]:
    if not iterations_dir.is_dir():
        return []
    iterations = [
        Iteration(int(match.group(1)), path)
        for path in iterations_dir.iterdir()
        if path.is_dir() and (match := _ITERATION_RE.match(path.name))
    ]
    return sorted(iterations)


def available_targets(iteration: Iteration) -> list[str]:
    screenshots_dir = iteration.screenshots_dir
    if not screenshots_dir.is_dir():
        return []
    targets = {
        match.group("target")
        for path in screenshots_dir.iterdir()
        if (match := _TARGET_RE.match(path.name))
    }
    return sorted(targets)


def find_screenshots(iteration: Iteration, target: str, theme: str) -> list[Path]:
    screenshots_dir = iteration.screenshots_dir
    if not screenshots_dir.is_dir():
        return []
    return sorted(
        path
        for path in screenshots_dir.iterdir()
        if (match := _TARGET_RE.match(path.name))
        and match.group("target") == target
        and match.group("theme") == theme
    )


def _resolve_iterations(config: VerificationConfig) -> tuple[Iteration, Iteration]:
    iterations = {it.number: it for it in available_iterations(config.iterations_dir)}
    if not iterations:
        raise VerificationError(f"No iterations found in {config.iterations_dir}")

    number = config.iteration if config.iteration is not None else max(iterations)
    if number <= 1:
        raise VerificationError("Cannot verify the first iteration (nothing to compare with)")
    if number not in iterations:
        raise VerificationError(f"Iteration {number} not found")
    if number - 1 not in iterations:
        raise VerificationError(f"Previous iteration {number - 1} not found")
    return iterations[number - 1], iterations[number]


def _compare_target(
    target: str,
    previous: Iteration,
    current: Iteration,
    results_dir: Path,
    config: VerificationConfig,
) -> TargetResult:
    current_shots = find_screenshots(current, target, config.theme)
    if not current_shots:
        return TargetResult(target=target, error="no_screenshots_current")
    previous_shots = find_screenshots(previous, target, config.theme)
    if not previous_shots:
        return TargetResult(target=target, error="no_screenshots_previous")

    # first match per iteration, as captured
    previous_path, current_path = previous_shots[0], current_shots[0]
    result = compare_images(previous_path, current_path, config.channel_tolerance)
    if not result.succeeded:
        return TargetResult(
            target=target,
            previous_file=str(previous_path),
            current_file=str(current_path),
            error=result.message,
        )

    diff_file = None
    if result.diff_image is not None:
        diff_path = results_dir / f"{target}-{config.theme}-diff.png"
        try:
            write_png(result.diff_image, diff_path)
        except OSError as e:
            logger.exception(
                "Failed to write diff image for %s",
                target,
                extra={"diff_path": str(diff_path)},
            )
            return TargetResult(
                target=target,
                previous_file=str(previous_path),
                current_file=str(current_path),
                diff_percentage=result.diff_percentage,
                error=f"diff_write_failed: {e}",
            )
        diff_file = str(diff_path)

    return TargetResult(
        target=target,
        previous_file=str(previous_path),
        current_file=str(current_path),
        diff_percentage=result.diff_percentage,
        diff_file=diff_file,
    )


def render_report(
    previous: Iteration,
    current: Iteration,
    results_dir: Path,
    theme: str,
    targets: list[TargetResult],
    generated_at: datetime,
) -> str:
    lines = [
        "# Design Changes Verification Report",
        "",
        f"Generated: {generated_at:%Y-%m-%d %H:%M:%S}",
        "",
        f"Comparing iteration {previous.number} -> {current.number}",
        "",
    ]

    for result in targets:
        lines.append(f"## Target: {result.target}")
        lines.append("")
        if (
            result.error is not None
            or result.previous_file is None
            or result.current_file is None
        ):
            lines.append(f"Error: {result.error or 'missing screenshots'}")
            lines.append("")
            continue

        lines.append(f"### {theme} theme")
        lines.append("")
        lines.append(f"- Previous: `{Path(result.previous_file).name}`")
        lines.append(f"- Current: `{Path(result.current_file).name}`")
        lines.append(f"- Difference: {format_percentage(result.diff_percentage)}")
        if result.changed:
            lines.append("- **Changes detected** - Screenshots are different")
        else:
            lines.append("- **Warning** - Screenshots are identical")

        if result.diff_file is not None:
            diff_name = Path(result.diff_file).name
            previous_rel = os.path.relpath(result.previous_file, results_dir)
            current_rel = os.path.relpath(result.current_file, results_dir)
            lines.extend(
                [
                    f"- Diff image: [{diff_name}]({diff_name})",
                    "",
                    "<table>",
                    "  <tr>",
                    f"    <td><strong>Previous ({previous.number})</strong></td>",
                    f"    <td><strong>Current ({current.number})</strong></td>",
                    "    <td><strong>Difference</strong></td>",
                    "  </tr>",
                    "  <tr>",
                    f'    <td><img src="{previous_rel}" width="250" /></td>',
                    f'    <td><img src="{current_rel}" width="250" /></td>',
                    f'    <td><img src="{diff_name}" width="250" /></td>',
                    "  </tr>",
                    "</table>",
                ]
            )
        lines.append("")

    lines.append("## Summary")
    lines.append("")
    if any(result.changed for result in targets):
        lines.append(
            "**Design changes detected** - At least one component shows significant differences"
        )
    else:
        lines.extend(
            [
                "**Warning** - No significant design changes detected between iterations",
                "",
                "Possible causes:",
                "- Design changes not visible in the UI",
                "- Server didn't reload the changes properly",
                "- Not enough wait time for changes to appear",
            ]
        )
    lines.append("")
    return "\n".join(lines)


def verify_design_changes(
    config: VerificationConfig, now: datetime | None = None
) -> VerificationOutcome:
    previous, current = _resolve_iterations(config)

    current_targets = available_targets(current)
    if not current_targets:
        raise VerificationError(f"No targets found for iteration {current.number}")

    # substring filter: "button" selects "button" and "button-group"
    targets = (
        [t for t in current_targets if config.target in t] if config.target else current_targets
    )
    if not targets:
        raise VerificationError(
            f"Target {config.target!r} not found in iteration {current.number}. "
            f"Available targets: {', '.join(current_targets)}"
        )

    now = now or datetime.now()
    results_dir = config.results_dir / f"verify-{current.number}-{now:%Y-%m-%dT%H-%M-%S}"
    results_dir.mkdir(parents=True, exist_ok=True)

    logger.info(
        "Verifying design changes",
        extra={
            "iteration": current.number,
            "targets": targets,
            "theme": config.theme,
            "channel_tolerance": config.channel_tolerance,
        },
    )

    target_results = [
        _compare_target(target, previous, current, results_dir, config) for target in targets
    ]
    for result in target_results:
        if result.error is not None:
            logger.warning("Verification of %s failed: %s", result.target, result.error)

    report_path = results_dir / "report.md"
    report_path.write_text(
        render_report(previous, current, results_dir, config.theme, target_results, now),
        encoding="utf-8",
    )

    outcome = VerificationOutcome(
        iteration=current.number,
        results_dir=results_dir,
        report_path=report_path,
        targets=target_results,
    )
    logger.info(
        "Design verification complete",
        extra={
            "iteration": current.number,
            "report_path": str(report_path),
            "changes_detected": outcome.changes_detected,
        },
    )
    return outcome
