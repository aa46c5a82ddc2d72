"""
Pydantic models and typed events for the media processing pipeline.

Exports:
    - Schema models (JobState, ProcessingResult, SystemStatus, etc.)
    - Progress events (JobCreated, StageStarted, ... JobFailed)
"""

from mediaflow.models.events import (
    JobCompleted,
    JobCreated,
    JobFailed,
    ProgressEvent,
    StageCompleted,
    StageFailed,
    StageProgress,
    StageSkipped,
    StageStarted,
)
from mediaflow.models.schemas import (
    FeatureSet,
    JobState,
    JobStatus,
    JobStatusResponse,
    MediaType,
    ProcessContentResponse,
    ProcessingResult,
    StageDefinition,
    StageStatus,
)

__all__ = [
    # Events
    "JobCompleted",
    "JobCreated",
    "JobFailed",
    "ProgressEvent",
    "StageCompleted",
    "StageFailed",
    "StageProgress",
    "StageSkipped",
    "StageStarted",
    # Schemas
    "FeatureSet",
    "JobState",
    "JobStatus",
    "JobStatusResponse",
    "MediaType",
    "ProcessContentResponse",
    "ProcessingResult",
    "StageDefinition",
    "StageStatus",
]
