from __future__ import annotations

import io
import logging
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .types import DecodedImage

logger = logging.getLogger(__name__)

ImageSource = bytes | str | Path | Image.Image


class ImageDecodeError(Exception):
    pass


def _describe(source: ImageSource) -> str:
    if isinstance(source, bytes):
        return f"<{len(source)} byte buffer>"
    if isinstance(source, Image.Image):
        return f"<{source.mode} image {source.width}x{source.height}>"
    return str(source)


def _open(source: ImageSource) -> Image.Image:
    if isinstance(source, bytes):
        img = Image.open(io.BytesIO(source))
    else:
        img = Image.open(source)
    try:
        img.load()
    except Exception:
        img.close()
        raise
    return img


def decode_image(source: ImageSource) -> DecodedImage:
    """
    Decode a PNG (or any Pillow-readable raster) into RGBA pixel data.

    Channel values are read exactly as stored; no colour management or alpha
    premultiplication is applied.
    """
    if isinstance(source, Image.Image):
        rgba = source.convert("RGBA")
        try:
            return DecodedImage(width=rgba.width, height=rgba.height, pixels=rgba.tobytes())
        finally:
            if rgba is not source:
                rgba.close()

    try:
        img = _open(source)
    except (
        UnidentifiedImageError,
        OSError,
        ValueError,
        SyntaxError,
        EOFError,
        Image.DecompressionBombError,
    ) as e:
        raise ImageDecodeError(f"Failed to decode image {_describe(source)}: {e}") from e

    try:
        rgba = img.convert("RGBA")
        try:
            return DecodedImage(width=rgba.width, height=rgba.height, pixels=rgba.tobytes())
        finally:
            rgba.close()
    except OSError as e:
        # truncated data can surface lazily during conversion
        raise ImageDecodeError(f"Failed to read pixels from {_describe(source)}: {e}") from e
    finally:
        img.close()


def to_pil(image: DecodedImage) -> Image.Image:
    return Image.frombytes("RGBA", image.size, image.pixels)


def encode_png(image: DecodedImage) -> bytes:
    buf = io.BytesIO()
    with to_pil(image) as img:
        img.save(buf, format="PNG")
    return buf.getvalue()


def write_png(image: DecodedImage, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = encode_png(image)
    path.write_bytes(data)
    logger.debug("Wrote %d byte PNG", len(data), extra={"path": str(path)})
    return path
