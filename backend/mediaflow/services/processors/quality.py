"""
Quality scoring for images, audio and video.

Scores are 0-100, built from tiered sub-scores; the rating is derived
from the score.
"""

from typing import Any, Sequence

# (minimum score, rating), best first
RATINGS = ((85, "excellent"), (70, "good"), (50, "fair"), (30, "poor"))


def _tier(value: float | None, tiers: Sequence[tuple[float, int]], floor: int) -> int:
    """Points of the first tier whose threshold value reaches."""
    if value is None:
        return floor
    for threshold, points in tiers:
        if value >= threshold:
            return points
    return floor


def rating_for(score: float) -> str:
    for minimum, rating in RATINGS:
        if score >= minimum:
            return rating
    return "very_poor"


def _report(score: float, metrics: dict[str, Any], issues: list[str]) -> dict[str, Any]:
    score = round(min(100.0, max(0.0, score)), 1)
    return {"score": score, "rating": rating_for(score), "metrics": metrics, "issues": issues}


def score_image(stats: dict[str, Any], size_bytes: int) -> dict[str, Any]:
    """
    Score an image from analyze_image_quality() stats.

    Resolution 40, bytes per pixel 20, aspect ratio 10, exposure 15,
    contrast 15.
    """
    width, height = stats["width"], stats["height"]
    pixels = width * height
    bytes_per_pixel = size_bytes / pixels if pixels else 0.0
    aspect_ratio = stats.get("aspect_ratio") or 0.0
    brightness = stats.get("brightness", 0.0)
    contrast = stats.get("contrast", 0.0)
    issues: list[str] = []

    score = _tier(pixels, [(8_000_000, 40), (2_000_000, 32), (1_000_000, 24), (300_000, 16)], 8)
    if pixels < 300_000:
        issues.append("low_resolution")

    score += _tier(bytes_per_pixel, [(1.0, 20), (0.5, 16), (0.2, 12)], 6)
    if bytes_per_pixel < 0.2:
        issues.append("heavy_compression")

    if 0.5 <= aspect_ratio <= 2.0:
        score += 10
    else:
        score += 5
        issues.append("extreme_aspect_ratio")

    if 60 <= brightness <= 195:
        score += 15
    elif brightness < 60:
        score += 5
        issues.append("underexposed")
    else:
        score += 5
        issues.append("overexposed")

    score += _tier(contrast, [(50, 15), (30, 10), (15, 5)], 0)
    if contrast < 15:
        issues.append("low_contrast")

    metrics = {**stats, "size_bytes": size_bytes, "bytes_per_pixel": round(bytes_per_pixel, 3)}
    return _report(score, metrics, issues)


LOSSLESS_AUDIO_CODECS = {"flac", "alac", "pcm_s16le", "pcm_s24le"}
COMMON_LOSSY_AUDIO_CODECS = {"mp3", "aac", "opus", "vorbis"}


def score_audio(summary: dict[str, Any], thresholds: dict[str, Any]) -> dict[str, Any]:
    """
    Score audio from a summarize_probe() dict.

    Sample rate 40, bitrate 40, channels 10, codec 10.

    Args:
        summary: Probe summary with an "audio" stream entry
        thresholds: min_bitrate_kbps / min_sample_rate for issue reporting
    """
    stream = summary.get("audio") or {}
    sample_rate = stream.get("sample_rate")
    bit_rate = stream.get("bit_rate") or summary.get("bit_rate")
    channels = stream.get("channels") or 0
    codec = stream.get("codec")
    issues: list[str] = []

    score = _tier(sample_rate, [(48000, 40), (44100, 35), (22050, 25), (16000, 15)], 5)
    score += _tier(bit_rate, [(320_000, 40), (256_000, 35), (192_000, 30), (128_000, 25), (64_000, 15)], 5)
    score += 10 if channels >= 2 else 5
    if codec in LOSSLESS_AUDIO_CODECS:
        score += 10
    elif codec in COMMON_LOSSY_AUDIO_CODECS:
        score += 8
    else:
        score += 5

    min_rate = thresholds.get("min_sample_rate")
    if sample_rate is not None and min_rate and sample_rate < min_rate:
        issues.append("low_sample_rate")
    min_kbps = thresholds.get("min_bitrate_kbps")
    if bit_rate is not None and min_kbps and bit_rate < min_kbps * 1000:
        issues.append("low_bitrate")

    metrics = {
        "sample_rate": sample_rate,
        "bit_rate": bit_rate,
        "channels": channels or None,
        "codec": codec,
        "duration_seconds": summary.get("duration_seconds"),
    }
    return _report(score, metrics, issues)


MODERN_VIDEO_CODECS = {"h264", "hevc", "h265", "vp9", "av1"}


def resolution_label(width: int, height: int) -> str:
    if width >= 3840 and height >= 2160:
        return "4K"
    if width >= 1920 and height >= 1080:
        return "HD"
    if width >= 1280 and height >= 720:
        return "HD Ready"
    if width >= 854 and height >= 480:
        return "SD"
    return "Low"


def score_video(summary: dict[str, Any]) -> dict[str, Any]:
    """
    Score video from a summarize_probe() dict.

    Resolution 40, frame rate 20, bitrate 30, codec 10.

    Raises:
        ValueError: If the summary has no video stream
    """
    stream = summary.get("video")
    if not stream:
        raise ValueError("No video stream found")

    width = stream.get("width") or 0
    height = stream.get("height") or 0
    frame_rate = stream.get("frame_rate")
    bit_rate = summary.get("bit_rate")
    codec = stream.get("codec")
    issues: list[str] = []

    score = _tier(width * height, [(8_294_400, 40), (2_073_600, 35), (921_600, 25), (409_920, 15)], 5)
    score += _tier(frame_rate, [(60, 20), (30, 15), (24, 10)], 5)
    score += _tier(bit_rate, [(10_000_000, 30), (5_000_000, 25), (2_000_000, 20), (1_000_000, 15)], 5)
    score += 10 if codec in MODERN_VIDEO_CODECS else 5

    if width * height < 409_920:
        issues.append("low_resolution")
    if frame_rate is not None and frame_rate < 24:
        issues.append("low_frame_rate")

    metrics = {
        "width": width,
        "height": height,
        "resolution": resolution_label(width, height),
        "frame_rate": frame_rate,
        "bit_rate": bit_rate,
        "codec": codec,
        "duration_seconds": summary.get("duration_seconds"),
    }
    return _report(score, metrics, issues)
