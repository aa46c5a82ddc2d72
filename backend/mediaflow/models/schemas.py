"""
Pydantic models for the multimedia processing pipeline.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field


class MediaType(str, Enum):
    """Kind of media payload."""
    VIDEO = "video"
    AUDIO = "audio"
    IMAGE = "image"


class JobStatus(str, Enum):
    """Status of a processing job."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class StageStatus(str, Enum):
    """Status of a single pipeline stage."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StageStatus.COMPLETED, StageStatus.FAILED, StageStatus.SKIPPED)


# ═══════════════════════════════════════════════════════════════════════════
# Job / stage state (owned by the progress tracker)
# ═══════════════════════════════════════════════════════════════════════════


class StageDefinition(BaseModel):
    """Declared stage of a media pipeline.

    Attributes:
        name: Stage identifier (e.g. "ocr")
        label: Human readable description
        required: Whether a failure of this stage fails the job
    """

    name: str
    label: str
    required: bool = False

    model_config = {"frozen": True}


class StageState(BaseModel):
    """Runtime state of one stage within a job."""

    name: str
    label: str
    required: bool = False
    status: StageStatus = StageStatus.PENDING
    progress: float = 0.0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    skip_reason: str | None = None


class JobState(BaseModel):
    """Tracked processing job."""

    job_id: str
    media_type: MediaType | None = None  # None when detection failed
    status: JobStatus = JobStatus.PROCESSING
    stages: list[StageState]
    current_stage: str | None = None
    progress: float = 0.0
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None

    @computed_field
    @property
    def duration_ms(self) -> int:
        """Elapsed time in milliseconds (up to now for running jobs)."""
        end = self.completed_at or datetime.now()
        return int((end - self.started_at).total_seconds() * 1000)

    @property
    def is_terminal(self) -> bool:
        return self.status != JobStatus.PROCESSING

    def get_stage(self, name: str) -> StageState:
        """Get stage by name.

        Raises:
            KeyError: If the job has no such stage
        """
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(
            f"Stage '{name}' not declared for job {self.job_id}. "
            f"Available: {[s.name for s in self.stages]}"
        )


class JobSummary(BaseModel):
    """Compact job view for listings."""

    job_id: str
    media_type: MediaType | None = None
    status: JobStatus
    progress: float
    current_stage: str | None = None
    stages_completed: int
    stages_skipped: int
    stages_failed: int
    stages_total: int
    warnings: int
    duration_ms: int
    error: str | None = None


class TrackerStatistics(BaseModel):
    """Aggregate statistics over tracked jobs."""

    total_jobs: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    average_duration_ms: float = 0.0


# ═══════════════════════════════════════════════════════════════════════════
# Processing results
# ═══════════════════════════════════════════════════════════════════════════


class FeatureSet(BaseModel):
    """Concrete features resolved for one run.

    Attributes:
        media_type: Media type the features apply to
        enabled: feature -> whether it runs in this job
        unavailable: feature -> capability category that had no working
            provider although the feature was configured on
    """

    media_type: MediaType
    enabled: dict[str, bool] = Field(default_factory=dict)
    unavailable: dict[str, str] = Field(default_factory=dict)

    def is_enabled(self, feature: str) -> bool:
        return self.enabled.get(feature, False)


class PluginUsage(BaseModel):
    """Which plugin served a capability stage."""

    plugin: str
    provider: str
    fallback_used: bool = False


class TranscriptSegment(BaseModel):
    """Single timed segment of a transcription."""

    start: float
    end: float
    text: str
    speaker: str | None = None


class SpeakerInfo(BaseModel):
    """Speaker found in a transcription."""

    speaker: str
    segments: int
    duration_seconds: float


class SentimentResult(BaseModel):
    """Overall sentiment of spoken content."""

    sentiment: str
    confidence: float | None = None
    key_emotions: list[str] = Field(default_factory=list)


class DetectedObject(BaseModel):
    """Object found in an image."""

    label: str
    confidence: float | None = None
    bounding_box: list[float] | None = None


class Thumbnail(BaseModel):
    """Generated thumbnail.

    Exactly one of path/data is set: path when thumbnails are written to
    disk, data (base64 JPEG) otherwise.
    """

    name: str
    width: int
    height: int
    format: str = "JPEG"
    size_bytes: int
    path: str | None = None
    data: str | None = None


class QualityReport(BaseModel):
    """Quality assessment of the media."""

    score: float
    rating: str
    metrics: dict[str, Any] = Field(default_factory=dict)
    issues: list[str] = Field(default_factory=list)


class ProcessingResult(BaseModel):
    """Provider-agnostic processing output.

    A field is None when the corresponding stage did not run or produced
    nothing; serialize with exclude_none to drop those.
    """

    metadata: dict[str, Any] | None = None
    transcription: str | None = None
    transcription_segments: list[TranscriptSegment] | None = None
    language: str | None = None
    speakers: list[SpeakerInfo] | None = None
    sentiment: SentimentResult | None = None
    objects: list[DetectedObject] | None = None
    ocr_text: str | None = None
    ai_description: str | None = None
    tags: list[str] | None = None
    thumbnails: list[Thumbnail] | None = None
    quality: QualityReport | None = None
    plugin_usage: dict[str, PluginUsage] = Field(default_factory=dict)


class ProcessContentResponse(BaseModel):
    """Result of a completed process_content call."""

    job_id: str
    media_type: MediaType
    processing_time: int  # milliseconds
    results: ProcessingResult
    warnings: list[str] = Field(default_factory=list)
    features: dict[str, bool] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)


class JobStatusResponse(BaseModel):
    """Status query answer for an active or cached job."""

    id: str
    status: JobStatus
    media_type: MediaType | None = None
    start_time: datetime | None = None
    processing_time: int | None = None
    available_features: dict[str, bool] | None = None
    progress: float | None = None
    current_stage: str | None = None
    results: ProcessContentResponse | None = None
    error: str | None = None
    from_cache: bool = False


# ═══════════════════════════════════════════════════════════════════════════
# Introspection
# ═══════════════════════════════════════════════════════════════════════════


class PluginInfo(BaseModel):
    """Registry view of a plugin."""

    name: str
    category: str
    provider: str
    priority: int
    enabled: bool
    disabled_reason: str | None = None
    capabilities: list[str] = Field(default_factory=list)
    supported_formats: list[str] = Field(default_factory=list)


class CategoryStatus(BaseModel):
    """Availability of one capability category."""

    total: int
    available: int
    status: str  # "available" | "unavailable"


class RegistryStatusReport(BaseModel):
    """Capability registry status report."""

    initialized: bool
    total_plugins: int
    enabled_plugins: int
    categories: dict[str, CategoryStatus]
    providers: dict[str, list[str]]
    disabled_plugins: list[PluginInfo]


class OrchestratorMetrics(BaseModel):
    """Cumulative orchestrator metrics."""

    total_processed: int = 0
    success_count: int = 0
    error_count: int = 0
    average_processing_time: float = 0.0
    cache_hits: int = 0
    cache_misses: int = 0


class OrchestratorStatus(BaseModel):
    """Orchestrator part of the system status."""

    initialized: bool
    active_jobs: int
    cache_size: int
    metrics: OrchestratorMetrics


class SystemStatus(BaseModel):
    """Full system introspection."""

    orchestrator: OrchestratorStatus
    processors: list[MediaType]
    plugins: RegistryStatusReport
    executor: dict[str, Any]
    configuration: dict[str, Any]


class PluginToggleRequest(BaseModel):
    """Request body for enabling/disabling a plugin."""

    enabled: bool


class JobAccepted(BaseModel):
    """Response for background job submission."""

    job_id: str
