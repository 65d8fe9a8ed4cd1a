from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import NamedTuple

from docshot.conf import TIMESTAMP_PATTERN, RegressionConfig
from docshot.image_diff.codec import write_png
from docshot.image_diff.compare import compare_images_batch
from docshot.manifest import ComparisonImageResult, ComparisonManifest
from docshot.report import status_for, summarize

logger = logging.getLogger(__name__)

# diff images may share the screenshots directory; they are never captures
DIFF_PREFIX = "diff-"

_TIMESTAMPED_RE = re.compile(rf"^(?P<stem>.+)-(?P<timestamp>{TIMESTAMP_PATTERN})\.png$")


class NoScreenshotsError(Exception):
    pass


class _DiffCandidate(NamedTuple):
    name: str
    baseline_path: Path
    current_path: Path


def _split_timestamp(file_name: str) -> tuple[str, str] | None:
    if file_name.startswith(DIFF_PREFIX):
        return None
    match = _TIMESTAMPED_RE.match(file_name)
    if match is None:
        return None
    return match.group("stem"), match.group("timestamp")


def _is_baseline(path: Path) -> bool:
    return (
        path.suffix == ".png"
        and not path.name.startswith(DIFF_PREFIX)
        and _split_timestamp(path.name) is None
    )


def find_current_timestamp(screenshots_dir: Path) -> str | None:
    timestamps = {
        parts[1]
        for path in screenshots_dir.glob("*.png")
        if (parts := _split_timestamp(path.name)) is not None
    }
    # YYYYMMDD-HHMMSS sorts chronologically as a string
    return max(timestamps) if timestamps else None


def _matches_components(stem: str, components: tuple[str, ...]) -> bool:
    return not components or any(stem.startswith(component) for component in components)


def collect_pairs(
    config: RegressionConfig, timestamp: str
) -> tuple[list[_DiffCandidate], list[str]]:
    """
    Pair every ``<stem>-<timestamp>.png`` with its ``<stem>.png`` baseline.

    Returns the comparable pairs and the current file names that have no
    baseline to compare against.
    """
    screenshots_dir = config.screenshots_dir
    baselines = {path.name: path for path in screenshots_dir.glob("*.png") if _is_baseline(path)}

    pairs: list[_DiffCandidate] = []
    missing: list[str] = []
    for path in sorted(screenshots_dir.glob(f"*-{timestamp}.png")):
        parts = _split_timestamp(path.name)
        if parts is None or parts[1] != timestamp:
            continue
        stem = parts[0]
        if not _matches_components(stem, config.components):
            continue

        baseline = baselines.get(f"{stem}.png")
        if baseline is None:
            missing.append(path.name)
            continue
        pairs.append(_DiffCandidate(path.name, baseline, path))

    return pairs, missing


def run_regression(config: RegressionConfig) -> ComparisonManifest:
    screenshots_dir = config.screenshots_dir
    diffs_dir = config.resolved_diffs_dir

    if not screenshots_dir.is_dir():
        raise NoScreenshotsError(f"Screenshots directory does not exist: {screenshots_dir}")

    timestamp = config.timestamp or find_current_timestamp(screenshots_dir)
    if timestamp is None:
        raise NoScreenshotsError(f"No timestamped screenshots found in {screenshots_dir}")

    pairs, missing = collect_pairs(config, timestamp)

    logger.info(
        "Screenshot regression kicked off",
        extra={
            "screenshots_dir": str(screenshots_dir),
            "timestamp": timestamp,
            "pairs": len(pairs),
            "missing_baseline": len(missing),
            "pass_threshold": config.pass_threshold,
            "channel_tolerance": config.channel_tolerance,
        },
    )

    image_results: dict[str, ComparisonImageResult] = {}

    for name in missing:
        logger.warning("No baseline found for %s, skipping", name)
        image_results[name] = ComparisonImageResult(
            status="missing_baseline",
            current_file=name,
            reason="no_baseline",
        )

    diff_results = compare_images_batch(
        [(candidate.baseline_path, candidate.current_path) for candidate in pairs],
        channel_tolerance=config.channel_tolerance,
        max_workers=config.max_workers,
    )

    for candidate, diff_result in zip(pairs, diff_results, strict=True):
        status = status_for(diff_result, config.pass_threshold)

        if status == "errored":
            logger.error(
                "Error processing images for %s: %s",
                candidate.name,
                diff_result.message,
                extra={"baseline": str(candidate.baseline_path)},
            )
            image_results[candidate.name] = ComparisonImageResult(
                status="errored",
                current_file=candidate.name,
                baseline_file=candidate.baseline_path.name,
                reason=diff_result.message or "image_processing_failed",
            )
            continue

        diff_file: str | None = None
        if diff_result.diff_image is not None:
            diff_path = diff_results_path(diffs_dir, candidate.name)
            try:
                write_png(diff_result.diff_image, diff_path)
            except OSError:
                logger.exception(
                    "Failed to write diff image for %s",
                    candidate.name,
                    extra={"diff_path": str(diff_path)},
                )
            else:
                diff_file = str(diff_path)
                if status == "passed" and not config.verbose:
                    diff_path.unlink(missing_ok=True)
                    diff_file = None

        logger.info(
            "Compared %s against %s: %s different (%d of %d pixels), %s",
            candidate.name,
            candidate.baseline_path.name,
            f"{diff_result.diff_percentage * 100:.2f}%",
            diff_result.different_pixel_count,
            diff_result.total_pixel_count,
            status,
            extra={"diff_file": diff_file, "diff_message": diff_result.message},
        )

        image_results[candidate.name] = ComparisonImageResult(
            status=status,
            current_file=candidate.name,
            baseline_file=candidate.baseline_path.name,
            diff_percentage=diff_result.diff_percentage,
            different_pixels=diff_result.different_pixel_count,
            total_pixels=diff_result.total_pixel_count,
            diff_file=diff_file,
            reason=diff_result.message if diff_result.is_size_mismatch else None,
        )

    manifest = ComparisonManifest(
        timestamp=timestamp,
        pass_threshold=config.pass_threshold,
        channel_tolerance=config.channel_tolerance,
        summary=summarize(image_results.values()),
        images=dict(sorted(image_results.items())),
    )

    manifest_path = diffs_dir / config.manifest_name
    manifest.write(manifest_path)

    logger.info(
        "Screenshot regression complete",
        extra={
            "timestamp": timestamp,
            "manifest": str(manifest_path),
            **manifest.summary.model_dump(),
        },
    )
    return manifest


def diff_results_path(diffs_dir: Path, current_file: str) -> Path:
    return diffs_dir / f"{DIFF_PREFIX}{current_file}"
