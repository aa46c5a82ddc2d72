"""
Audio processor.

Stages: validation -> metadata extraction -> transcription -> speaker
analysis -> sentiment analysis -> quality analysis.
"""

import logging
from typing import Any

from mediaflow.models.schemas import MediaType, StageDefinition
from mediaflow.services.plugins import CapabilityCategory
from mediaflow.utils.media_utils import probe_media_async, summarize_probe

from .base import BaseMediaProcessor, ProcessorContext
from .quality import score_audio

logger = logging.getLogger(__name__)

DEFAULT_SPEAKER = "speaker_1"


def summarize_speakers(segments: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Aggregate transcript segments per speaker label.

    Segments without labels are attributed to a single default speaker.

    Returns:
        Speakers ordered by first appearance
    """
    speakers: dict[str, dict[str, Any]] = {}
    for segment in segments:
        label = segment.get("speaker") or DEFAULT_SPEAKER
        entry = speakers.setdefault(label, {"speaker": label, "segments": 0, "duration_seconds": 0.0})
        entry["segments"] += 1
        entry["duration_seconds"] += max(0.0, segment["end"] - segment["start"])

    for entry in speakers.values():
        entry["duration_seconds"] = round(entry["duration_seconds"], 2)
    return list(speakers.values())


class AudioProcessor(BaseMediaProcessor):
    """Processes audio with transcription and text analysis providers."""

    media_type = MediaType.AUDIO
    stages = (
        StageDefinition(name="validation", label="Validating audio", required=True),
        StageDefinition(name="metadata_extraction", label="Extracting audio metadata"),
        StageDefinition(name="transcription", label="Transcribing speech"),
        StageDefinition(name="speaker_analysis", label="Analyzing speakers"),
        StageDefinition(name="sentiment_analysis", label="Analyzing sentiment"),
        StageDefinition(name="quality_analysis", label="Analyzing audio quality"),
    )

    async def _run(self, ctx: ProcessorContext) -> None:
        data = ctx.output.data
        features = ctx.options.features

        await self.validate(ctx)

        metadata = await self.run_local_stage(ctx, "metadata_extraction", None, lambda: self._metadata(ctx))
        if metadata is not None:
            data["metadata"] = metadata

        transcript = await self.run_capability_stage(
            ctx, "transcription", "transcription", CapabilityCategory.TRANSCRIPTION, ctx.buffer,
            {
                "filename": ctx.options.filename,
                "language": ctx.options.language,
                "mime_type": ctx.options.mime_type,
            },
        )
        if transcript is not None:
            data["transcription"] = transcript["text"]
            data["language"] = transcript.get("language")
            data["transcription_segments"] = transcript.get("segments") or []

        if transcript is None and features.is_enabled("speaker_diarization"):
            ctx.reporter.skip("speaker_analysis", "No transcription available")
        else:
            speakers = await self.run_local_stage(
                ctx, "speaker_analysis", "speaker_diarization",
                lambda: self._speakers(transcript),
            )
            if speakers is not None:
                data["speakers"] = speakers

        if transcript is None and features.is_enabled("sentiment_analysis"):
            ctx.reporter.skip("sentiment_analysis", "No transcription available")
        else:
            sentiment = await self.run_capability_stage(
                ctx, "sentiment_analysis", "sentiment_analysis",
                CapabilityCategory.SENTIMENT, (transcript or {}).get("text", ""),
            )
            if sentiment is not None:
                data["sentiment"] = sentiment

        probe = (metadata or {}).get("probe")
        if not (probe and probe.get("audio")) and features.is_enabled("quality_analysis"):
            ctx.reporter.skip("quality_analysis", "No stream information available")
        else:
            quality = await self.run_local_stage(
                ctx, "quality_analysis", "quality_analysis",
                lambda: self._quality(probe),
            )
            if quality is not None:
                data["quality"] = quality

    async def _metadata(self, ctx: ProcessorContext) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "size_bytes": len(ctx.buffer),
            "filename": ctx.options.filename,
            "mime_type": ctx.options.mime_type,
        }
        probe = await probe_media_async(ctx.buffer)
        if probe is not None:
            summary = summarize_probe(probe)
            metadata["probe"] = summary
            metadata["duration_seconds"] = summary.get("duration_seconds")
        return metadata

    async def _speakers(self, transcript: dict[str, Any] | None) -> list[dict[str, Any]]:
        segments = (transcript or {}).get("segments") or []
        if not segments:
            return [{"speaker": DEFAULT_SPEAKER, "segments": 0, "duration_seconds": 0.0}]
        return summarize_speakers(segments)

    async def _quality(self, probe: dict[str, Any] | None) -> dict[str, Any]:
        return score_audio(probe or {}, self.processor_config.get("quality_thresholds", {}))
