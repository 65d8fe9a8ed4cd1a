from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

MAX_CHANNEL_VALUE = 255
DIFF_COLOR = (255, 0, 255)
CHANNELS = 4


class DecodedImage(BaseModel):
    """Raw RGBA pixel data, row-major, four bytes per pixel."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)
    pixels: bytes

    @model_validator(mode="after")
    def _check_buffer_length(self) -> DecodedImage:
        expected = self.width * self.height * CHANNELS
        if len(self.pixels) != expected:
            raise ValueError(
                f"pixel buffer holds {len(self.pixels)} bytes, "
                f"expected {expected} for {self.width}x{self.height} RGBA"
            )
        return self

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def pixel_count(self) -> int:
        return self.width * self.height


class DiffResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    succeeded: bool = True
    diff_percentage: float = Field(ge=0.0, le=1.0)
    different_pixel_count: int = Field(default=0, ge=0)
    total_pixel_count: int = Field(default=0, ge=0)
    width: int = 0
    height: int = 0
    baseline_width: int = 0
    baseline_height: int = 0
    diff_image: DecodedImage | None = None
    message: str | None = None

    @property
    def has_diff(self) -> bool:
        return self.diff_image is not None

    @property
    def is_size_mismatch(self) -> bool:
        return self.succeeded and (self.baseline_width, self.baseline_height) != (
            self.width,
            self.height,
        )
