"""
Shared utilities.

Modules:
    json_utils: JSON extraction and parsing from LLM responses
    media_utils: ffprobe/ffmpeg helpers for audio/video buffers
    image_utils: Pillow helpers (metadata, thumbnails, quality)
"""

from mediaflow.utils.json_utils import extract_json, parse_json_safe, parse_string_list
from mediaflow.utils.media_utils import (
    extract_video_frame_async,
    probe_media_async,
    summarize_probe,
)

__all__ = [
    # JSON utilities
    "extract_json",
    "parse_json_safe",
    "parse_string_list",
    # Media utilities
    "extract_video_frame_async",
    "probe_media_async",
    "summarize_probe",
]
