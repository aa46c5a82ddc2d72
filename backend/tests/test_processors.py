"""Tests for quality scoring, speaker aggregation and the video pipeline."""

import pytest

from mediaflow.config import ProcessingConfig
from mediaflow.models.schemas import JobStatus, MediaType, StageStatus
from mediaflow.services.pipeline import FeatureResolver
from mediaflow.services.plugins import CapabilityCategory, CapabilityRegistry
from mediaflow.services.processors import video_processor
from mediaflow.services.processors.audio_processor import summarize_speakers
from mediaflow.services.processors.quality import rating_for, score_audio, score_image, score_video
from mediaflow.utils.media_utils import summarize_probe

from tests.fakes import FakePlugin, make_jpeg

MP4_HEAD = b"\x00\x00\x00\x18ftypisom\x00\x00\x02\x00" + b"\x00" * 64

FFPROBE_OUTPUT = {
    "format": {"format_name": "mov,mp4,m4a", "duration": "12.5", "bit_rate": "5500000"},
    "streams": [
        {
            "codec_type": "video",
            "codec_name": "h264",
            "width": 1920,
            "height": 1080,
            "avg_frame_rate": "30000/1001",
        },
        {
            "codec_type": "audio",
            "codec_name": "aac",
            "sample_rate": "48000",
            "channels": 2,
            "bit_rate": "128000",
        },
    ],
}


# ═══════════════════════════════════════════════════════════════════════════
# Quality scoring
# ═══════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "score,rating",
    [(100, "excellent"), (85, "excellent"), (84.9, "good"), (70, "good"), (50, "fair"), (30, "poor"), (29.9, "very_poor")],
)
def test_rating_thresholds(score, rating):
    assert rating_for(score) == rating


def test_sharp_large_image_scores_excellent():
    stats = {"width": 4000, "height": 3000, "aspect_ratio": 1.333, "brightness": 120.0, "contrast": 60.0}

    report = score_image(stats, size_bytes=13_000_000)

    assert report["score"] == 100.0
    assert report["rating"] == "excellent"
    assert report["issues"] == []


def test_small_dark_image_reports_issues():
    stats = {"width": 200, "height": 100, "aspect_ratio": 2.0, "brightness": 30.0, "contrast": 10.0}

    report = score_image(stats, size_bytes=1000)

    assert report["score"] == 29.0
    assert report["rating"] == "very_poor"
    assert set(report["issues"]) == {"low_resolution", "heavy_compression", "underexposed", "low_contrast"}


def test_audio_scoring():
    good = score_audio(
        {"audio": {"sample_rate": 44100, "bit_rate": 128_000, "channels": 2, "codec": "mp3"}},
        {"min_bitrate_kbps": 64, "min_sample_rate": 16000},
    )
    assert (good["score"], good["rating"], good["issues"]) == (78.0, "good", [])

    poor = score_audio(
        {"audio": {"sample_rate": 8000, "bit_rate": 32_000, "channels": 1, "codec": "amr_nb"}},
        {"min_bitrate_kbps": 64, "min_sample_rate": 16000},
    )
    assert poor["rating"] == "very_poor"
    assert poor["issues"] == ["low_sample_rate", "low_bitrate"]


def test_video_scoring_from_probe_summary():
    report = score_video(summarize_probe(FFPROBE_OUTPUT))

    assert report["score"] == 80.0
    assert report["metrics"]["resolution"] == "HD"
    assert report["metrics"]["frame_rate"] == pytest.approx(29.97)

    with pytest.raises(ValueError, match="No video stream"):
        score_video({"audio": {}})


def test_summarize_probe():
    summary = summarize_probe(FFPROBE_OUTPUT)

    assert summary["duration_seconds"] == 12.5
    assert summary["video"]["width"] == 1920
    assert summary["audio"]["sample_rate"] == 48000.0


# ═══════════════════════════════════════════════════════════════════════════
# Speakers
# ═══════════════════════════════════════════════════════════════════════════


def test_unlabeled_segments_belong_to_default_speaker():
    speakers = summarize_speakers([
        {"start": 0.0, "end": 2.0, "text": "a"},
        {"start": 2.0, "end": 3.25, "text": "b", "speaker": None},
    ])

    assert speakers == [{"speaker": "speaker_1", "segments": 2, "duration_seconds": 3.25}]


# ═══════════════════════════════════════════════════════════════════════════
# Feature resolution
# ═══════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_feature_resolution_combines_toggles_and_providers():
    registry = CapabilityRegistry(environ={})
    registry.register(FakePlugin("ocr", CapabilityCategory.OCR))
    await registry.initialize_and_probe()
    config = ProcessingConfig(overrides={"image": {"enable_object_detection": False}})

    features = FeatureResolver(config, registry).resolve(MediaType.IMAGE)

    assert features.enabled == {
        "object_detection": False,
        "ocr": True,
        "ai_description": False,
        "thumbnails": True,
        "quality_analysis": True,
        "tag_generation": False,
    }
    assert features.unavailable == {"ai_description": "image_analysis", "tag_generation": "tagging"}
    assert FeatureResolver.category_for(MediaType.AUDIO, "speaker_diarization") == CapabilityCategory.TRANSCRIPTION


# ═══════════════════════════════════════════════════════════════════════════
# Video
# ═══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def ffmpeg_available(monkeypatch):
    frames = []

    async def probe(buffer: bytes) -> dict:
        return FFPROBE_OUTPUT

    async def frame(buffer: bytes, timestamp_seconds: float = 1.0) -> bytes:
        frames.append(timestamp_seconds)
        return make_jpeg(1280, 720)

    monkeypatch.setattr(video_processor, "probe_media_async", probe)
    monkeypatch.setattr(video_processor, "extract_video_frame_async", frame)
    return frames


@pytest.mark.asyncio
async def test_video_pipeline_with_frame_and_probe(make_orchestrator, ffmpeg_available):
    config = ProcessingConfig(overrides={
        "video": {"enable_ocr": True},
        "performance": {"memory": {"admission_wait_seconds": 0}},
    })
    ocr = FakePlugin("frame_ocr", CapabilityCategory.OCR, result="BREAKING NEWS")
    whisper = FakePlugin("whisper", CapabilityCategory.TRANSCRIPTION, result={"text": "narration", "language": "en"})
    orchestrator = make_orchestrator([ocr, whisper], processing_config=config)

    response = await orchestrator.process_content(MP4_HEAD, {"filename": "clip.mp4"})

    results = response.results
    assert response.media_type == MediaType.VIDEO
    assert response.warnings == []
    assert results.transcription == "narration"
    assert results.ocr_text == "BREAKING NEWS"
    assert {t.name: (t.width, t.height) for t in results.thumbnails}["small"] == (160, 90)
    assert results.metadata["duration_seconds"] == 12.5
    assert results.quality.rating == "good"
    assert ffmpeg_available == [1.0]
    assert ocr.calls[0][0][:3] == b"\xff\xd8\xff"


@pytest.mark.asyncio
async def test_video_without_frame_degrades(make_orchestrator):
    whisper = FakePlugin("whisper", CapabilityCategory.TRANSCRIPTION, result={"text": "narration"})
    orchestrator = make_orchestrator([whisper])

    response = await orchestrator.process_content(MP4_HEAD, {"filename": "clip.mov"})

    assert "thumbnail_generation failed: could not extract a video frame" in response.warnings
    assert response.results.thumbnails is None
    assert response.results.transcription == "narration"

    job = orchestrator.tracker.get_job(response.job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.get_stage("ocr").skip_reason == "Feature disabled"
    assert job.get_stage("quality_analysis").status == StageStatus.SKIPPED
