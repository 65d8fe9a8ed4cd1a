from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest
from PIL import Image

from docshot.conf import VerificationConfig
from docshot.verification import (
    VerificationError,
    available_iterations,
    available_targets,
    verify_design_changes,
)

NOW = datetime(2025, 5, 7, 10, 15, 0)


def _shot(iterations_dir: Path, iteration: int, name: str, color: tuple[int, int, int, int]) -> Path:
    screenshots = iterations_dir / f"iteration-{iteration}" / "screenshots"
    screenshots.mkdir(parents=True, exist_ok=True)
    path = screenshots / name
    Image.new("RGBA", (8, 8), color).save(path)
    return path


@pytest.fixture
def iterations(tmp_path: Path) -> Path:
    root = tmp_path / "design-iterations"
    _shot(root, 1, "try-jods-section-light-20250507.png", (255, 255, 255, 255))
    _shot(root, 1, "hero-light-20250507.png", (10, 10, 10, 255))
    _shot(root, 2, "try-jods-section-light-20250508.png", (0, 0, 0, 255))
    _shot(root, 2, "hero-light-20250508.png", (12, 12, 12, 255))
    return root


def _config(root: Path, **kwargs) -> VerificationConfig:
    return VerificationConfig(iterations_dir=root, results_dir=root.parent / "verification", **kwargs)


class TestDiscovery:
    def test_iterations_sorted(self, iterations):
        (iterations / "iteration-10").mkdir()
        (iterations / "scratch").mkdir()
        assert [it.number for it in available_iterations(iterations)] == [1, 2, 10]

    def test_missing_dir(self, tmp_path):
        assert available_iterations(tmp_path / "nope") == []

    def test_targets(self, iterations):
        latest = available_iterations(iterations)[-1]
        assert available_targets(latest) == ["hero", "try-jods-section"]


class TestVerifyDesignChanges:
    def test_detects_changes(self, iterations):
        outcome = verify_design_changes(_config(iterations), now=NOW)
        assert outcome.iteration == 2
        assert outcome.changes_detected

        by_target = {t.target: t for t in outcome.targets}
        assert by_target["try-jods-section"].diff_percentage == 1.0
        assert by_target["try-jods-section"].diff_file is not None
        assert Path(by_target["try-jods-section"].diff_file).exists()
        # 2/255 is under the 5% colour threshold
        assert by_target["hero"].diff_percentage == 0.0
        assert by_target["hero"].diff_file is None

    def test_report(self, iterations):
        outcome = verify_design_changes(_config(iterations), now=NOW)
        assert outcome.results_dir.name == "verify-2-2025-05-07T10-15-00"
        report = outcome.report_path.read_text()
        assert report.startswith("# Design Changes Verification Report")
        assert "Comparing iteration 1 -> 2" in report
        assert "## Target: try-jods-section" in report
        assert "- Difference: 100.00%" in report
        assert "[try-jods-section-light-diff.png](try-jods-section-light-diff.png)" in report
        assert "**Design changes detected**" in report

    def test_zero_threshold_sees_small_change(self, iterations):
        outcome = verify_design_changes(
            _config(iterations, target="hero", threshold_percent=0), now=NOW
        )
        assert [t.target for t in outcome.targets] == ["hero"]
        assert outcome.targets[0].diff_percentage == 1.0

    def test_no_changes(self, tmp_path):
        root = tmp_path / "iterations"
        _shot(root, 1, "hero-light-1.png", (1, 1, 1, 255))
        _shot(root, 2, "hero-light-2.png", (1, 1, 1, 255))
        outcome = verify_design_changes(_config(root), now=NOW)
        assert not outcome.changes_detected
        assert "No significant design changes" in outcome.report_path.read_text()

    def test_missing_previous_screenshot(self, iterations):
        _shot(iterations, 2, "footer-light-20250508.png", (0, 0, 0, 255))
        outcome = verify_design_changes(_config(iterations, target="footer"), now=NOW)
        assert outcome.targets[0].error == "no_screenshots_previous"
        assert not outcome.changes_detected

    def test_first_iteration_rejected(self, iterations):
        with pytest.raises(VerificationError):
            verify_design_changes(_config(iterations, iteration=1), now=NOW)

    def test_unknown_iteration(self, iterations):
        with pytest.raises(VerificationError):
            verify_design_changes(_config(iterations, iteration=5), now=NOW)

    def test_unknown_target(self, iterations):
        with pytest.raises(VerificationError, match="Available targets"):
            verify_design_changes(_config(iterations, target="sidebar"), now=NOW)

    def test_no_iterations(self, tmp_path):
        with pytest.raises(VerificationError):
            verify_design_changes(_config(tmp_path / "empty"), now=NOW)

    def test_prefix_target_uses_its_own_capture(self, tmp_path):
        root = tmp_path / "iterations"
        _shot(root, 1, "button-light-1.png", (50, 50, 50, 255))
        _shot(root, 1, "button-group-light-1.png", (0, 0, 0, 255))
        _shot(root, 2, "button-light-2.png", (50, 50, 50, 255))
        _shot(root, 2, "button-group-light-2.png", (255, 255, 255, 255))

        outcome = verify_design_changes(_config(root), now=NOW)

        by_target = {t.target: t for t in outcome.targets}
        assert by_target["button"].current_file is not None
        assert Path(by_target["button"].current_file).name == "button-light-2.png"
        assert by_target["button"].diff_percentage == 0.0
        assert not by_target["button"].changed
        assert Path(by_target["button-group"].current_file).name == "button-group-light-2.png"
        assert by_target["button-group"].changed

    def test_other_theme_is_not_matched(self, tmp_path):
        root = tmp_path / "iterations"
        _shot(root, 1, "hero-dark-1.png", (0, 0, 0, 255))
        _shot(root, 1, "hero-light-1.png", (9, 9, 9, 255))
        _shot(root, 2, "hero-light-2.png", (9, 9, 9, 255))

        outcome = verify_design_changes(_config(root), now=NOW)
        assert Path(outcome.targets[0].previous_file).name == "hero-light-1.png"

    def test_unwritable_diff_does_not_stop_other_targets(self, tmp_path):
        root = tmp_path / "iterations"
        for target in ("alpha", "beta"):
            _shot(root, 1, f"{target}-light-1.png", (0, 0, 0, 255))
            _shot(root, 2, f"{target}-light-2.png", (255, 255, 255, 255))
        results_dir = root.parent / "verification" / "verify-2-2025-05-07T10-15-00"
        (results_dir / "alpha-light-diff.png").mkdir(parents=True)

        outcome = verify_design_changes(_config(root), now=NOW)

        by_target = {t.target: t for t in outcome.targets}
        assert by_target["alpha"].error is not None
        assert by_target["alpha"].error.startswith("diff_write_failed")
        assert by_target["beta"].changed
        assert Path(by_target["beta"].diff_file).exists()
        report = outcome.report_path.read_text()
        assert "## Target: alpha" in report
        assert "Error: diff_write_failed" in report
        assert "## Target: beta" in report
