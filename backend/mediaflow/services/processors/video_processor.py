"""
Video processor.

Stages: validation -> metadata extraction -> thumbnails -> transcription
-> OCR -> quality analysis. Frames come from ffmpeg; thumbnails and OCR
share one extracted frame.
"""

import asyncio
import logging
from typing import Any

from mediaflow.models.schemas import MediaType, StageDefinition
from mediaflow.services.plugins import CapabilityCategory
from mediaflow.utils.image_utils import render_thumbnails
from mediaflow.utils.media_utils import extract_video_frame_async, probe_media_async, summarize_probe

from .base import BaseMediaProcessor, ProcessorContext
from .quality import score_video
from .thumbnails import store_thumbnails

logger = logging.getLogger(__name__)


class VideoProcessor(BaseMediaProcessor):
    """Processes video with ffmpeg, Pillow and transcription/OCR providers."""

    media_type = MediaType.VIDEO
    stages = (
        StageDefinition(name="validation", label="Validating video", required=True),
        StageDefinition(name="metadata_extraction", label="Extracting video metadata"),
        StageDefinition(name="thumbnail_generation", label="Generating thumbnails"),
        StageDefinition(name="transcription", label="Transcribing audio track"),
        StageDefinition(name="ocr", label="Extracting on-screen text"),
        StageDefinition(name="quality_analysis", label="Analyzing video quality"),
    )

    async def _run(self, ctx: ProcessorContext) -> None:
        data = ctx.output.data
        features = ctx.options.features

        await self.validate(ctx)

        metadata = await self.run_local_stage(ctx, "metadata_extraction", None, lambda: self._metadata(ctx))
        if metadata is not None:
            data["metadata"] = metadata
        probe = (metadata or {}).get("probe")

        frame: bytes | None = None
        if features.is_enabled("thumbnails") or features.is_enabled("ocr"):
            frame = await extract_video_frame_async(ctx.buffer, self._frame_timestamp(probe))
            if frame is None:
                logger.info(f"Job {ctx.job_id}: no frame extracted from video")

        if frame is None and features.is_enabled("thumbnails"):
            ctx.reporter.warn("thumbnail_generation failed: could not extract a video frame")
            ctx.reporter.skip("thumbnail_generation", "No video frame available")
        else:
            thumbnails = await self.run_local_stage(
                ctx, "thumbnail_generation", "thumbnails", lambda: self._thumbnails(ctx, frame),
            )
            if thumbnails is not None:
                data["thumbnails"] = thumbnails

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

        if frame is None and features.is_enabled("ocr"):
            ctx.reporter.skip("ocr", "No video frame available")
        else:
            ocr_text = await self.run_capability_stage(
                ctx, "ocr", "ocr", CapabilityCategory.OCR, frame,
            )
            if ocr_text is not None:
                data["ocr_text"] = ocr_text

        if not (probe and probe.get("video")) and features.is_enabled("quality_analysis"):
            ctx.reporter.skip("quality_analysis", "No stream information available")
        else:
            quality = await self.run_local_stage(
                ctx, "quality_analysis", "quality_analysis", lambda: self._quality(probe),
            )
            if quality is not None:
                data["quality"] = quality

    def _frame_timestamp(self, probe: dict[str, Any] | None) -> float:
        timestamp = float(self.processor_config.get("frame_timestamp_seconds", 1.0))
        duration = (probe or {}).get("duration_seconds")
        if duration is not None and timestamp >= duration:
            return 0.0
        return timestamp

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
            video = summary.get("video") or {}
            metadata["width"] = video.get("width")
            metadata["height"] = video.get("height")
        return metadata

    async def _thumbnails(self, ctx: ProcessorContext, frame: bytes | None) -> list[dict]:
        if frame is None:
            raise ValueError("No video frame available")
        sizes = ctx.options.thumbnail_sizes or self.processor_config.get("thumbnail_sizes", {})
        rendered = await asyncio.to_thread(render_thumbnails, frame, sizes)
        return await asyncio.to_thread(
            store_thumbnails, rendered, ctx.job_id, self.settings.thumbnail_dir,
        )

    async def _quality(self, probe: dict[str, Any] | None) -> dict[str, Any]:
        return score_video(probe or {})
