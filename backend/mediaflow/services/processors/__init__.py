"""
Media type processors.

Example:
    from mediaflow.services.processors import create_processors

    processors = create_processors(registry, config, settings)
    output = await processors[MediaType.IMAGE].process(job_id, data, metadata, options, reporter)
"""

from mediaflow.config import ProcessingConfig, Settings
from mediaflow.models.schemas import MediaType
from mediaflow.services.plugins import CapabilityRegistry

from .audio_processor import AudioProcessor
from .base import (
    BaseMediaProcessor,
    ProcessingError,
    ProcessingOptions,
    ProcessorContext,
    ProcessorOutput,
    StageReporter,
)
from .image_processor import ImageProcessor
from .video_processor import VideoProcessor


def create_processors(
    registry: CapabilityRegistry,
    config: ProcessingConfig,
    settings: Settings,
) -> dict[MediaType, BaseMediaProcessor]:
    """Instantiate one processor per media type."""
    return {
        processor.media_type: processor
        for processor in (
            VideoProcessor(registry, config, settings),
            AudioProcessor(registry, config, settings),
            ImageProcessor(registry, config, settings),
        )
    }


__all__ = [
    "AudioProcessor",
    "BaseMediaProcessor",
    "ImageProcessor",
    "ProcessingError",
    "ProcessingOptions",
    "ProcessorContext",
    "ProcessorOutput",
    "StageReporter",
    "VideoProcessor",
    "create_processors",
]
