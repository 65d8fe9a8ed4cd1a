from __future__ import annotations

from pathlib import Path
from typing import Literal

import orjson
from pydantic import BaseModel, Field

ImageStatus = Literal["passed", "failed", "unchanged", "errored", "missing_baseline"]


class ComparisonImageResult(BaseModel):
    status: ImageStatus
    current_file: str
    baseline_file: str | None = None
    diff_percentage: float | None = Field(default=None, ge=0.0, le=1.0)
    different_pixels: int | None = None
    total_pixels: int | None = None
    diff_file: str | None = None
    reason: str | None = None


class ComparisonSummary(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    unchanged: int = 0
    errored: int = 0
    missing_baseline: int = 0


class ComparisonManifest(BaseModel):
    timestamp: str | None = None
    pass_threshold: float
    channel_tolerance: int
    summary: ComparisonSummary
    images: dict[str, ComparisonImageResult]

    @property
    def has_failures(self) -> bool:
        return self.summary.failed > 0 or self.summary.errored > 0

    def dump_json(self) -> bytes:
        return orjson.dumps(self.model_dump(mode="json"), option=orjson.OPT_INDENT_2)

    def write(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.dump_json())
        return path

    @classmethod
    def load(cls, path: Path) -> ComparisonManifest:
        return cls(**orjson.loads(path.read_bytes()))
