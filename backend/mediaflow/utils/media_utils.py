"""
Media utilities for audio/video buffers.

Provides ffprobe/ffmpeg helpers operating on in-memory buffers (piped via
stdin), so no temp files are needed:
- Stream/format probing via ffprobe
- Single frame extraction via ffmpeg
- Flattening ffprobe output into a compact metadata dict
"""

import asyncio
import json
import logging
import subprocess
from fractions import Fraction
from typing import Any

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 30
FRAME_TIMEOUT_SECONDS = 60


def probe_media(buffer: bytes, timeout: float = PROBE_TIMEOUT_SECONDS) -> dict | None:
    """Probe a media buffer with ffprobe.

    Args:
        buffer: Raw media bytes
        timeout: ffprobe timeout in seconds

    Returns:
        Parsed ffprobe JSON (format + streams), or None if ffprobe is
        missing or cannot read the data
    """
    try:
        result = subprocess.run(
            [
                "ffprobe",
                "-v",
                "quiet",
                "-print_format",
                "json",
                "-show_format",
                "-show_streams",
                "-i",
                "pipe:0",
            ],
            input=buffer,
            capture_output=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"ffprobe unavailable or timed out: {e}")
        return None

    if result.returncode != 0 or not result.stdout.strip():
        logger.debug(f"ffprobe could not read buffer ({len(buffer)} bytes)")
        return None

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        logger.warning(f"ffprobe returned invalid JSON: {e}")
        return None


async def probe_media_async(buffer: bytes) -> dict | None:
    """Run probe_media in a worker thread to keep the event loop free."""
    return await asyncio.to_thread(probe_media, buffer)


def extract_video_frame(
    buffer: bytes,
    timestamp_seconds: float = 1.0,
    timeout: float = FRAME_TIMEOUT_SECONDS,
) -> bytes | None:
    """Extract one JPEG frame from a video buffer with ffmpeg.

    Args:
        buffer: Raw video bytes
        timestamp_seconds: Position of the frame
        timeout: ffmpeg timeout in seconds

    Returns:
        JPEG bytes, or None if extraction failed
    """
    try:
        result = subprocess.run(
            [
                "ffmpeg",
                "-v",
                "quiet",
                "-ss",
                str(timestamp_seconds),
                "-i",
                "pipe:0",
                "-frames:v",
                "1",
                "-f",
                "image2pipe",
                "-vcodec",
                "mjpeg",
                "pipe:1",
            ],
            input=buffer,
            capture_output=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"ffmpeg unavailable or timed out: {e}")
        return None

    if result.returncode != 0 or not result.stdout:
        logger.debug("ffmpeg produced no frame")
        return None

    return result.stdout


async def extract_video_frame_async(buffer: bytes, timestamp_seconds: float = 1.0) -> bytes | None:
    """Run extract_video_frame in a worker thread."""
    return await asyncio.to_thread(extract_video_frame, buffer, timestamp_seconds)


def _to_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _frame_rate(value: str | None) -> float | None:
    if not value or value == "0/0":
        return None
    try:
        return round(float(Fraction(value)), 3)
    except (ValueError, ZeroDivisionError):
        return None


def summarize_probe(probe: dict) -> dict[str, Any]:
    """Flatten ffprobe output into a compact metadata dict.

    Args:
        probe: ffprobe JSON output

    Returns:
        Dict with duration/bitrate/format and first video/audio stream info
    """
    fmt = probe.get("format", {})
    summary: dict[str, Any] = {
        "format_name": fmt.get("format_name"),
        "duration_seconds": _to_float(fmt.get("duration")),
        "bit_rate": _to_float(fmt.get("bit_rate")),
    }

    for stream in probe.get("streams", []):
        codec_type = stream.get("codec_type")
        if codec_type == "video" and "video" not in summary:
            summary["video"] = {
                "codec": stream.get("codec_name"),
                "width": stream.get("width"),
                "height": stream.get("height"),
                "frame_rate": _frame_rate(stream.get("avg_frame_rate")),
            }
        elif codec_type == "audio" and "audio" not in summary:
            summary["audio"] = {
                "codec": stream.get("codec_name"),
                "sample_rate": _to_float(stream.get("sample_rate")),
                "channels": stream.get("channels"),
                "bit_rate": _to_float(stream.get("bit_rate")),
            }

    return summary
