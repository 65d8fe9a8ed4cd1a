from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docshot.image_diff.compare import DEFAULT_CHANNEL_TOLERANCE, channel_tolerance_from_percent

DEFAULT_PASS_THRESHOLD = 0.02
DEFAULT_VERIFY_THRESHOLD_PERCENT = 5.0
TIMESTAMP_PATTERN = r"\d{8}-\d{6}"


class RegressionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    screenshots_dir: Path
    diffs_dir: Path | None = None
    # Fraction of differing pixels tolerated before a comparison fails.
    pass_threshold: float = Field(default=DEFAULT_PASS_THRESHOLD, ge=0.0, le=1.0)
    channel_tolerance: int = Field(default=DEFAULT_CHANNEL_TOLERANCE, ge=0, le=255)
    timestamp: str | None = Field(default=None, pattern=f"^{TIMESTAMP_PATTERN}$")
    components: tuple[str, ...] = ()
    verbose: bool = False
    max_workers: int | None = Field(default=None, ge=1)
    manifest_name: str = "comparison.json"

    @property
    def resolved_diffs_dir(self) -> Path:
        return self.diffs_dir if self.diffs_dir is not None else self.screenshots_dir / "diffs"


class VerificationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    iterations_dir: Path
    results_dir: Path
    iteration: int | None = Field(default=None, ge=1)
    target: str | None = None
    theme: str = "light"
    threshold_percent: float = Field(default=DEFAULT_VERIFY_THRESHOLD_PERCENT, ge=0.0, le=100.0)

    @field_validator("theme")
    @classmethod
    def _theme_is_known(cls, value: str) -> str:
        if value not in ("light", "dark"):
            raise ValueError(f"theme must be 'light' or 'dark', got {value!r}")
        return value

    @property
    def channel_tolerance(self) -> int:
        return channel_tolerance_from_percent(self.threshold_percent)
