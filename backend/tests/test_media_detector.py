"""Tests for media type detection."""

import pytest

from mediaflow.config import ProcessingConfig
from mediaflow.models.schemas import MediaType
from mediaflow.services.pipeline.media_detector import MediaTypeDetector, MediaTypeError, sniff_media_type


def _pad(head: bytes) -> bytes:
    return head + b"\x00" * 32


SIGNATURES = [
    ("mp4", b"\x00\x00\x00\x18ftypisom\x00\x00\x02\x00", MediaType.VIDEO),
    ("mov", b"\x00\x00\x00\x14ftypqt  \x00\x00\x00\x00", MediaType.VIDEO),
    ("m4a", b"\x00\x00\x00\x20ftypM4A \x00\x00\x00\x00", MediaType.AUDIO),
    ("webm", b"\x1a\x45\xdf\xa3\x9f\x42\x86\x81", MediaType.VIDEO),
    ("avi", b"RIFF\x24\x00\x00\x00AVI LIST", MediaType.VIDEO),
    ("wav", b"RIFF\x24\x00\x00\x00WAVEfmt ", MediaType.AUDIO),
    ("mp3-frame", b"\xff\xfb\x90\x64", MediaType.AUDIO),
    ("mp3-id3", b"ID3\x04\x00\x00\x00\x00\x00\x00", MediaType.AUDIO),
    ("flac", b"fLaC\x00\x00\x00\x22", MediaType.AUDIO),
    ("ogg", b"OggS\x00\x02\x00\x00", MediaType.AUDIO),
    ("jpeg", b"\xff\xd8\xff\xe0\x00\x10JFIF", MediaType.IMAGE),
    ("png", b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR", MediaType.IMAGE),
    ("gif", b"GIF89a\x01\x00\x01\x00", MediaType.IMAGE),
    ("webp", b"RIFF\x24\x00\x00\x00WEBPVP8 ", MediaType.IMAGE),
]


@pytest.fixture
def detector() -> MediaTypeDetector:
    return MediaTypeDetector(ProcessingConfig())


@pytest.mark.parametrize("name,head,expected", SIGNATURES, ids=[s[0] for s in SIGNATURES])
def test_sniffs_signatures_without_metadata(detector, name, head, expected):
    assert sniff_media_type(_pad(head)) == expected
    assert detector.detect(_pad(head), {}) == expected


def test_unknown_riff_form_type_is_not_guessed():
    assert sniff_media_type(_pad(b"RIFF\x24\x00\x00\x00CDDAfmt ")) is None


def test_type_hint_wins_over_everything(detector):
    jpeg = _pad(b"\xff\xd8\xff\xe0")
    assert detector.detect(jpeg, {"type": "Audio", "filename": "x.jpg"}) == MediaType.AUDIO


def test_invalid_type_hint_is_fatal(detector):
    with pytest.raises(MediaTypeError, match="Unsupported media type: document"):
        detector.detect(_pad(b"\xff\xd8\xff"), {"type": "document"})


def test_extension_beats_mime_and_signature(detector):
    png = _pad(b"\x89PNG\r\n\x1a\n")
    assert detector.detect(png, {"filename": "clip.WEBM", "mime_type": "audio/ogg"}) == MediaType.VIDEO


def test_mime_prefix_used_for_unknown_extension(detector):
    assert detector.detect(b"\x00" * 32, {"filename": "blob.bin", "mime_type": "audio/x-custom"}) == MediaType.AUDIO


def test_configured_formats_drive_extension_mapping():
    config = ProcessingConfig(overrides={"image": {"supported_formats": [".jpg", "heic"]}})
    detector = MediaTypeDetector(config)
    assert detector.detect(b"\x00" * 32, {"filename": "photo.heic"}) == MediaType.IMAGE


def test_undetectable_payload_raises(detector):
    with pytest.raises(MediaTypeError, match="Unable to detect media type"):
        detector.detect(b"plain text, no signature", {"filename": "notes.txt"})


@pytest.mark.parametrize(
    "head",
    [
        "notes".encode("utf-16"),  # FF FE byte-order mark
        b"\xff\xff\xff\xff\xff\xff",
        b"\xff\xe8\x90\x00",  # reserved MPEG version
        b"\xff\xfb\xf0\x00",  # bad bitrate index
        b"\xff\xfb\x9c\x00",  # reserved sample rate
    ],
    ids=["utf16-bom", "ff-fill", "reserved-version", "bad-bitrate", "reserved-rate"],
)
def test_frame_sync_lookalikes_are_not_audio(detector, head):
    assert sniff_media_type(head) is None
    with pytest.raises(MediaTypeError, match="Unable to detect media type"):
        detector.detect(head, {})


def test_mpeg_layer_two_and_three_headers_are_audio():
    assert sniff_media_type(b"\xff\xf3\x64\xc4") == MediaType.AUDIO  # MPEG-2 Layer III
    assert sniff_media_type(b"\xff\xfd\x80\x04") == MediaType.AUDIO  # MPEG-1 Layer II
