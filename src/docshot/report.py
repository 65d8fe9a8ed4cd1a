from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel

from docshot.image_diff.types import DiffResult
from docshot.manifest import ComparisonImageResult, ComparisonManifest, ComparisonSummary


class DiffReport(BaseModel):
    total_tests: int
    passed_tests: int
    failed_tests: int
    pass_rate: float


class CategorizedComparison(BaseModel):
    failed: list[tuple[str, ComparisonImageResult]] = []
    passed: list[tuple[str, ComparisonImageResult]] = []
    unchanged: list[tuple[str, ComparisonImageResult]] = []
    errored: list[tuple[str, ComparisonImageResult]] = []
    missing_baseline: list[tuple[str, ComparisonImageResult]] = []


def format_percentage(ratio: float | None) -> str:
    return f"{(ratio or 0.0) * 100:.2f}%"


def passes_threshold(result: DiffResult, pass_threshold: float) -> bool:
    return result.succeeded and result.diff_percentage <= pass_threshold


def status_for(result: DiffResult, pass_threshold: float) -> str:
    if not result.succeeded:
        return "errored"
    if result.different_pixel_count == 0:
        return "unchanged"
    return "passed" if passes_threshold(result, pass_threshold) else "failed"


def summarize(images: Iterable[ComparisonImageResult]) -> ComparisonSummary:
    summary = ComparisonSummary()
    for image in images:
        summary.total += 1
        setattr(summary, image.status, getattr(summary, image.status) + 1)
    return summary


def build_diff_report(manifest: ComparisonManifest) -> DiffReport:
    # Missing baselines are skipped, not tested.
    summary = manifest.summary
    passed = summary.passed + summary.unchanged
    failed = summary.failed + summary.errored
    total = passed + failed
    return DiffReport(
        total_tests=total,
        passed_tests=passed,
        failed_tests=failed,
        pass_rate=passed / total if total else 1.0,
    )


def categorize(manifest: ComparisonManifest) -> CategorizedComparison:
    result = CategorizedComparison()
    for name, image in sorted(manifest.images.items()):
        getattr(result, image.status).append((name, image))

    result.failed.sort(key=lambda item: item[1].diff_percentage or 0, reverse=True)
    return result


def format_summary_lines(manifest: ComparisonManifest) -> list[str]:
    categorized = categorize(manifest)
    report = build_diff_report(manifest)

    lines = [
        "SUMMARY:",
        f"  {report.passed_tests} screenshots passed",
        f"  {report.failed_tests} screenshots failed",
    ]
    if categorized.missing_baseline:
        lines.append(f"  {len(categorized.missing_baseline)} screenshots had no baseline")

    if categorized.failed or categorized.errored:
        lines.append("")
        lines.append("Failed screenshots:")
        for name, image in categorized.failed:
            lines.append(f"  FAIL {name}: {format_percentage(image.diff_percentage)} different")
        for name, image in categorized.errored:
            lines.append(f"  ERROR {name}: {image.reason or 'unknown error'}")
    else:
        lines.append("")
        lines.append("All screenshots passed pixel diff test!")
    return lines
