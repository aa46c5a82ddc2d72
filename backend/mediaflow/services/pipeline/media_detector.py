"""
Media type detection.

Resolution order (first match wins):
1. Explicit "type" hint in metadata (must be video/audio/image)
2. Filename extension, via the configured per-medium format lists
3. Declared MIME type prefix (video/, audio/, image/)
4. Binary signature sniffing
"""

import logging
from pathlib import PurePath
from typing import Any, Mapping

from mediaflow.config import ProcessingConfig
from mediaflow.models.schemas import MediaType

logger = logging.getLogger(__name__)

# ISO-BMFF major brands that carry audio only
AUDIO_ONLY_BRANDS = frozenset({b"M4A ", b"M4B ", b"M4P ", b"F4A ", b"F4B "})


class MediaTypeError(ValueError):
    """Input cannot be classified or processed as a known media type."""


def sniff_media_type(buffer: bytes) -> MediaType | None:
    """Classify a buffer by its magic number.

    Args:
        buffer: Leading bytes of the payload (at least 12 recommended)

    Returns:
        Detected media type, or None if no signature matches
    """
    head = bytes(buffer[:16])

    # ISO-BMFF (MP4/MOV/M4A): size box then "ftyp" + major brand
    if len(head) >= 12 and head[4:8] == b"ftyp":
        return MediaType.AUDIO if head[8:12] in AUDIO_ONLY_BRANDS else MediaType.VIDEO

    # EBML header (WebM / Matroska)
    if head.startswith(b"\x1a\x45\xdf\xa3"):
        return MediaType.VIDEO

    # RIFF container, disambiguated by form type
    if len(head) >= 12 and head.startswith(b"RIFF"):
        form_type = head[8:12]
        if form_type == b"AVI ":
            return MediaType.VIDEO
        if form_type == b"WAVE":
            return MediaType.AUDIO
        if form_type == b"WEBP":
            return MediaType.IMAGE
        return None

    # Images
    if head.startswith(b"\xff\xd8\xff"):
        return MediaType.IMAGE
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return MediaType.IMAGE
    if head.startswith((b"GIF87a", b"GIF89a")):
        return MediaType.IMAGE
    if head.startswith((b"II*\x00", b"MM\x00*")):
        return MediaType.IMAGE

    # Audio
    if head.startswith((b"fLaC", b"OggS", b"ID3")):
        return MediaType.AUDIO
    # MPEG audio frame header; covers MP3 FF FB / FF F3 / FF F2
    if len(head) >= 3 and is_mpeg_audio_header(head):
        return MediaType.AUDIO

    return None


def is_mpeg_audio_header(head: bytes) -> bool:
    """Check the leading bytes for a Layer II/III MPEG audio frame header.

    Layer I is not accepted: its FF FE / FF FF sync words are also the
    UTF-16LE byte-order mark and 0xFF fill.
    """
    if head[0] != 0xFF or (head[1] & 0xE0) != 0xE0:
        return False
    version = (head[1] >> 3) & 0x03
    layer = (head[1] >> 1) & 0x03
    bitrate_index = head[2] >> 4
    sample_rate_index = (head[2] >> 2) & 0x03
    # version 01 is reserved; layer 01 is III, 10 is II
    return version != 0b01 and layer in (0b01, 0b10) and bitrate_index != 0x0F and sample_rate_index != 0x03


class MediaTypeDetector:
    """
    Classifies payloads as video, audio or image.

    Example:
        detector = MediaTypeDetector(config)
        detector.detect(data, {"filename": "clip.webm"})   # MediaType.VIDEO
        detector.detect(data, {})                          # sniffed from bytes
    """

    def __init__(self, config: ProcessingConfig):
        """
        Initialize detector.

        Args:
            config: Processing configuration with <medium>.supported_formats
        """
        self.extensions: dict[str, MediaType] = {}
        for media_type in MediaType:
            for ext in config.get_config(f"{media_type.value}.supported_formats", []):
                ext = ext.lower()
                self.extensions[ext if ext.startswith(".") else f".{ext}"] = media_type

    def detect(self, buffer: bytes, metadata: Mapping[str, Any] | None = None) -> MediaType:
        """
        Detect the media type of a payload.

        Args:
            buffer: Raw payload
            metadata: Optional hints: type, filename, mime_type

        Returns:
            Detected MediaType

        Raises:
            MediaTypeError: If the type hint is invalid or nothing matches
        """
        metadata = metadata or {}

        hint = metadata.get("type")
        if hint:
            return self.normalize(hint)

        filename = metadata.get("filename")
        if filename:
            suffix = PurePath(str(filename)).suffix.lower()
            if suffix in self.extensions:
                logger.debug(f"Detected {self.extensions[suffix].value} from extension {suffix}")
                return self.extensions[suffix]

        mime_type = str(metadata.get("mime_type") or "").lower()
        prefix = mime_type.split("/", 1)[0] if "/" in mime_type else ""
        if prefix in {m.value for m in MediaType}:
            logger.debug(f"Detected {prefix} from MIME type {mime_type}")
            return MediaType(prefix)

        sniffed = sniff_media_type(buffer)
        if sniffed is not None:
            logger.debug(f"Detected {sniffed.value} from binary signature")
            return sniffed

        raise MediaTypeError("Unable to detect media type from provided data")

    @staticmethod
    def normalize(value: Any) -> MediaType:
        """
        Validate an explicit media type value.

        Raises:
            MediaTypeError: If value is not video/audio/image
        """
        if isinstance(value, MediaType):
            return value
        try:
            return MediaType(str(value).strip().lower())
        except ValueError:
            raise MediaTypeError(f"Unsupported media type: {value}") from None
