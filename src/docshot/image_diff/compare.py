from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from .codec import ImageDecodeError, ImageSource, decode_image
from .types import CHANNELS, DIFF_COLOR, MAX_CHANNEL_VALUE, DecodedImage, DiffResult

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_TOLERANCE = 5


def channel_tolerance_from_percentage(percentage: float) -> int:
    """
    Convert a 0-1 colour-distance ratio into a per-channel tolerance.

    ``ceil(255 * percentage)``, so any non-zero ratio tolerates at least one
    step of channel difference.
    """
    if not 0.0 <= percentage <= 1.0:
        raise ValueError(f"percentage must be between 0 and 1, got {percentage}")
    return math.ceil(MAX_CHANNEL_VALUE * percentage)


def channel_tolerance_from_percent(percent: float) -> int:
    if not 0.0 <= percent <= 100.0:
        raise ValueError(f"percent must be between 0 and 100, got {percent}")
    return channel_tolerance_from_percentage(percent / 100)


def _check_tolerance(channel_tolerance: int) -> None:
    if isinstance(channel_tolerance, bool) or not isinstance(channel_tolerance, int):
        raise TypeError(f"channel_tolerance must be an int, got {channel_tolerance!r}")
    if not 0 <= channel_tolerance <= MAX_CHANNEL_VALUE:
        raise ValueError(
            f"channel_tolerance must be between 0 and {MAX_CHANNEL_VALUE}, got {channel_tolerance}"
        )


def _as_array(image: DecodedImage) -> np.ndarray:
    return np.frombuffer(image.pixels, dtype=np.uint8).reshape(-1, CHANNELS)


def compare(
    baseline: DecodedImage,
    current: DecodedImage,
    channel_tolerance: int = DEFAULT_CHANNEL_TOLERANCE,
) -> DiffResult:
    """
    Classify every pixel of ``current`` against ``baseline``.

    A pixel differs when any of its R, G or B channels moved by more than
    ``channel_tolerance``; alpha is never compared. Differing pixels are
    painted magenta on a copy of ``current`` to form the diff image, which is
    only returned when at least one pixel differs.

    Images of different sizes are reported as a complete difference
    (``diff_percentage == 1.0``) without a diff image.
    """
    _check_tolerance(channel_tolerance)

    if baseline.size != current.size:
        return DiffResult(
            diff_percentage=1.0,
            different_pixel_count=current.pixel_count,
            total_pixel_count=current.pixel_count,
            width=current.width,
            height=current.height,
            baseline_width=baseline.width,
            baseline_height=baseline.height,
            message=(
                f"Size mismatch: Baseline ({baseline.width}x{baseline.height}) "
                f"vs Current ({current.width}x{current.height})"
            ),
        )

    base_px = _as_array(baseline)
    current_px = _as_array(current)

    # int16 so the subtraction can go negative
    delta = np.abs(base_px[:, :3].astype(np.int16) - current_px[:, :3].astype(np.int16))
    changed = (delta > channel_tolerance).any(axis=1)

    different = int(np.count_nonzero(changed))
    total = current.pixel_count

    diff_image = None
    if different:
        canvas = current_px.copy()
        canvas[changed, :3] = DIFF_COLOR
        diff_image = DecodedImage(
            width=current.width, height=current.height, pixels=canvas.tobytes()
        )

    return DiffResult(
        diff_percentage=different / total,
        different_pixel_count=different,
        total_pixel_count=total,
        width=current.width,
        height=current.height,
        baseline_width=baseline.width,
        baseline_height=baseline.height,
        diff_image=diff_image,
        message=f"{different} of {total} pixels differ" if different else None,
    )


def _decode_failure(message: str) -> DiffResult:
    return DiffResult(succeeded=False, diff_percentage=1.0, message=message)


def compare_images(
    baseline: ImageSource,
    current: ImageSource,
    channel_tolerance: int = DEFAULT_CHANNEL_TOLERANCE,
) -> DiffResult:
    try:
        baseline_img = decode_image(baseline)
        current_img = decode_image(current)
    except ImageDecodeError as e:
        logger.warning("Failed to decode image pair", extra={"error": str(e)})
        return _decode_failure(f"Failed to process images: {e}")
    return compare(baseline_img, current_img, channel_tolerance)


def _compare_single_pair(
    idx: int,
    baseline: ImageSource,
    current: ImageSource,
    channel_tolerance: int,
) -> DiffResult:
    try:
        return compare_images(baseline, current, channel_tolerance)
    except Exception as e:
        logger.exception("Failed to compare image pair %d", idx)
        return _decode_failure(f"Failed to compare images: {e}")


def compare_images_batch(
    pairs: Sequence[tuple[ImageSource, ImageSource]],
    channel_tolerance: int = DEFAULT_CHANNEL_TOLERANCE,
    max_workers: int | None = None,
) -> list[DiffResult]:
    _check_tolerance(channel_tolerance)

    if not max_workers or max_workers <= 1 or len(pairs) <= 1:
        return [
            _compare_single_pair(idx, baseline, current, channel_tolerance)
            for idx, (baseline, current) in enumerate(pairs)
        ]

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [
            pool.submit(_compare_single_pair, idx, baseline, current, channel_tolerance)
            for idx, (baseline, current) in enumerate(pairs)
        ]
        return [future.result() for future in futures]
