"""
Image helpers built on Pillow.

All functions take raw bytes so processors can work on in-memory buffers.
"""

import base64
import io
import logging
from dataclasses import dataclass
from typing import Any

from PIL import Image, ImageOps, ImageStat, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Pillow format name -> MIME type accepted by vision APIs
FORMAT_MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}


class ImageDecodeError(ValueError):
    """Raised when a buffer cannot be decoded as an image."""


@dataclass
class RenderedThumbnail:
    """JPEG thumbnail rendered from a source image."""

    name: str
    width: int
    height: int
    data: bytes


def open_image(buffer: bytes) -> Image.Image:
    """Open and fully decode an image buffer.

    Raises:
        ImageDecodeError: If Pillow cannot read the data
    """
    try:
        image = Image.open(io.BytesIO(buffer))
        image.load()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ImageDecodeError(f"Cannot decode image: {e}") from e
    return image


def image_metadata(buffer: bytes) -> dict[str, Any]:
    """Basic image properties: dimensions, format, color mode, EXIF presence."""
    image = open_image(buffer)
    return {
        "width": image.width,
        "height": image.height,
        "format": image.format,
        "mode": image.mode,
        "has_exif": bool(image.getexif()),
        "animated": bool(getattr(image, "is_animated", False)),
    }


def mime_type_for(buffer: bytes, default: str = "image/jpeg") -> str:
    """MIME type of an image buffer as understood by vision APIs."""
    try:
        image_format = Image.open(io.BytesIO(buffer)).format
    except (UnidentifiedImageError, OSError):
        return default
    return FORMAT_MIME_TYPES.get(image_format or "", default)


def to_jpeg(buffer: bytes, max_size: tuple[int, int] | None = None) -> bytes:
    """Re-encode an image as RGB JPEG, optionally bounded in size."""
    image = ImageOps.exif_transpose(open_image(buffer)).convert("RGB")
    if max_size:
        image.thumbnail(max_size)
    out = io.BytesIO()
    image.save(out, format="JPEG", quality=90)
    return out.getvalue()


def render_thumbnails(
    buffer: bytes,
    sizes: dict[str, list[int] | tuple[int, int]],
) -> list[RenderedThumbnail]:
    """Render JPEG thumbnails that fit within each requested box.

    Aspect ratio is preserved; images are never upscaled.

    Args:
        buffer: Source image bytes
        sizes: name -> (max_width, max_height)

    Returns:
        One RenderedThumbnail per size
    """
    source = ImageOps.exif_transpose(open_image(buffer)).convert("RGB")
    thumbnails: list[RenderedThumbnail] = []

    for name, (max_width, max_height) in sizes.items():
        image = source.copy()
        image.thumbnail((int(max_width), int(max_height)))
        out = io.BytesIO()
        image.save(out, format="JPEG", quality=85)
        thumbnails.append(
            RenderedThumbnail(name=name, width=image.width, height=image.height, data=out.getvalue())
        )

    logger.debug(f"Rendered {len(thumbnails)} thumbnails from {source.width}x{source.height}")
    return thumbnails


def analyze_image_quality(buffer: bytes) -> dict[str, Any]:
    """Measure resolution, brightness and contrast.

    Brightness/contrast are the mean/stddev of the grayscale histogram
    (0-255).
    """
    image = open_image(buffer)
    gray = image.convert("L")
    stat = ImageStat.Stat(gray)

    return {
        "width": image.width,
        "height": image.height,
        "megapixels": round(image.width * image.height / 1_000_000, 2),
        "aspect_ratio": round(image.width / image.height, 3) if image.height else None,
        "brightness": round(stat.mean[0], 1),
        "contrast": round(stat.stddev[0], 1),
    }


def encode_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
