"""
Thumbnail persistence shared by image and video processors.
"""

import logging
from pathlib import Path
from typing import Any

from mediaflow.utils.image_utils import RenderedThumbnail, encode_base64

logger = logging.getLogger(__name__)


def store_thumbnails(
    rendered: list[RenderedThumbnail],
    job_id: str,
    thumbnail_dir: Path | None,
) -> list[dict[str, Any]]:
    """
    Write thumbnails to disk or inline them as base64.

    Args:
        rendered: Thumbnails rendered by Pillow
        job_id: Job identifier (file name prefix)
        thumbnail_dir: Target directory; None inlines the JPEG data

    Returns:
        Raw thumbnail dicts (name, width, height, format, size_bytes, path|data)
    """
    if thumbnail_dir is not None:
        thumbnail_dir.mkdir(parents=True, exist_ok=True)

    stored = []
    for thumb in rendered:
        entry: dict[str, Any] = {
            "name": thumb.name,
            "width": thumb.width,
            "height": thumb.height,
            "format": "JPEG",
            "size_bytes": len(thumb.data),
        }
        if thumbnail_dir is not None:
            path = thumbnail_dir / f"{job_id}_{thumb.name}.jpg"
            path.write_bytes(thumb.data)
            entry["path"] = str(path)
        else:
            entry["data"] = encode_base64(thumb.data)
        stored.append(entry)

    if thumbnail_dir is not None:
        logger.debug(f"Saved {len(stored)} thumbnails for {job_id} to {thumbnail_dir}")
    return stored
