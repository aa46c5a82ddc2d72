"""
Image processor.

Stages: validation -> metadata extraction -> object detection -> OCR ->
AI description -> thumbnails -> quality analysis -> tag generation.
"""

import asyncio
import logging

from mediaflow.models.schemas import MediaType, StageDefinition
from mediaflow.services.plugins import CapabilityCategory
from mediaflow.utils.image_utils import (
    analyze_image_quality,
    image_metadata,
    open_image,
    render_thumbnails,
)

from .base import BaseMediaProcessor, ProcessorContext
from .quality import score_image
from .thumbnails import store_thumbnails

logger = logging.getLogger(__name__)


def _check_decodable(buffer: bytes) -> None:
    open_image(buffer)


class ImageProcessor(BaseMediaProcessor):
    """Processes still images with Pillow and vision providers."""

    media_type = MediaType.IMAGE
    stages = (
        StageDefinition(name="validation", label="Validating image", required=True),
        StageDefinition(name="metadata_extraction", label="Extracting image metadata"),
        StageDefinition(name="object_detection", label="Detecting objects"),
        StageDefinition(name="ocr", label="Extracting text"),
        StageDefinition(name="ai_description", label="Generating description"),
        StageDefinition(name="thumbnail_generation", label="Generating thumbnails"),
        StageDefinition(name="quality_analysis", label="Analyzing image quality"),
        StageDefinition(name="tag_generation", label="Generating tags"),
    )

    async def _run(self, ctx: ProcessorContext) -> None:
        data = ctx.output.data

        await self.validate(ctx, _check_decodable)

        metadata = await self.run_local_stage(ctx, "metadata_extraction", None, lambda: self._metadata(ctx))
        if metadata is not None:
            data["metadata"] = metadata

        objects = await self.run_capability_stage(
            ctx, "object_detection", "object_detection",
            CapabilityCategory.OBJECT_DETECTION, ctx.buffer,
        )
        if objects is not None:
            data["objects"] = objects

        ocr_text = await self.run_capability_stage(
            ctx, "ocr", "ocr", CapabilityCategory.OCR, ctx.buffer,
        )
        if ocr_text is not None:
            data["ocr_text"] = ocr_text

        description = await self.run_capability_stage(
            ctx, "ai_description", "ai_description",
            CapabilityCategory.IMAGE_ANALYSIS, ctx.buffer,
            {"max_tokens": self.processor_config.get("description_max_tokens", 500)},
        )
        if description is not None:
            data["ai_description"] = description

        thumbnails = await self.run_local_stage(
            ctx, "thumbnail_generation", "thumbnails", lambda: self._thumbnails(ctx),
        )
        if thumbnails is not None:
            data["thumbnails"] = thumbnails

        quality = await self.run_local_stage(
            ctx, "quality_analysis", "quality_analysis", lambda: self._quality(ctx),
        )
        if quality is not None:
            data["quality"] = quality

        await self._tags(ctx)

    async def _metadata(self, ctx: ProcessorContext) -> dict:
        metadata = await asyncio.to_thread(image_metadata, ctx.buffer)
        metadata["size_bytes"] = len(ctx.buffer)

        max_width, max_height = self.processor_config.get("max_dimensions") or (0, 0)
        if max_width and max_height and (
            metadata["width"] > max_width or metadata["height"] > max_height
        ):
            ctx.reporter.warn(
                f"Image {metadata['width']}x{metadata['height']} exceeds "
                f"{max_width}x{max_height}; providers receive a downscaled copy"
            )
        return metadata

    async def _thumbnails(self, ctx: ProcessorContext) -> list[dict]:
        sizes = ctx.options.thumbnail_sizes or self.processor_config.get("thumbnail_sizes", {})
        rendered = await asyncio.to_thread(render_thumbnails, ctx.buffer, sizes)
        ctx.reporter.progress("thumbnail_generation", 70, {"rendered": len(rendered)})
        return await asyncio.to_thread(
            store_thumbnails, rendered, ctx.job_id, self.settings.thumbnail_dir,
        )

    async def _quality(self, ctx: ProcessorContext) -> dict:
        stats = await asyncio.to_thread(analyze_image_quality, ctx.buffer)
        return score_image(stats, len(ctx.buffer))

    async def _tags(self, ctx: ProcessorContext) -> None:
        """Tag from the description, falling back to object labels."""
        data = ctx.output.data
        source = data.get("ai_description") or ", ".join(
            obj["label"] for obj in data.get("objects") or []
        )
        if not source and ctx.options.features.is_enabled("tag_generation"):
            ctx.reporter.skip("tag_generation", "No description or objects to tag")
            return

        tags = await self.run_capability_stage(
            ctx, "tag_generation", "tag_generation", CapabilityCategory.TAGGING, source,
        )
        if tags is not None:
            data["tags"] = tags
