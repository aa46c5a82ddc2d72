"""
Typed progress events emitted by the job progress tracker.

The set of events is closed: observers can match on the concrete class.

Example:
    def on_event(event: ProgressEvent) -> None:
        if isinstance(event, StageFailed):
            alert(event.job_id, event.stage, event.error)

    tracker.subscribe(on_event)
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Union

from mediaflow.models.schemas import MediaType


@dataclass(frozen=True, kw_only=True)
class BaseProgressEvent:
    """Fields shared by every event."""

    event_type: ClassVar[str] = "event"

    job_id: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation with a "type" discriminator."""
        data = asdict(self)
        data["type"] = self.event_type
        data["timestamp"] = self.timestamp.isoformat()
        if isinstance(data.get("media_type"), MediaType):
            data["media_type"] = data["media_type"].value
        return data


@dataclass(frozen=True, kw_only=True)
class JobCreated(BaseProgressEvent):
    event_type: ClassVar[str] = "job_created"

    media_type: MediaType | None
    stages: tuple[str, ...]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class StageStarted(BaseProgressEvent):
    event_type: ClassVar[str] = "stage_started"

    stage: str
    label: str
    overall_progress: float
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class StageProgress(BaseProgressEvent):
    event_type: ClassVar[str] = "stage_progress"

    stage: str
    progress: float
    overall_progress: float
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class StageCompleted(BaseProgressEvent):
    event_type: ClassVar[str] = "stage_completed"

    stage: str
    duration_ms: int
    overall_progress: float
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class StageFailed(BaseProgressEvent):
    event_type: ClassVar[str] = "stage_failed"

    stage: str
    error: str
    required: bool
    overall_progress: float


@dataclass(frozen=True, kw_only=True)
class StageSkipped(BaseProgressEvent):
    event_type: ClassVar[str] = "stage_skipped"

    stage: str
    reason: str
    overall_progress: float


@dataclass(frozen=True, kw_only=True)
class JobCompleted(BaseProgressEvent):
    event_type: ClassVar[str] = "job_completed"

    duration_ms: int
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class JobFailed(BaseProgressEvent):
    event_type: ClassVar[str] = "job_failed"

    duration_ms: int
    error: str


ProgressEvent = Union[
    JobCreated,
    StageStarted,
    StageProgress,
    StageCompleted,
    StageFailed,
    StageSkipped,
    JobCompleted,
    JobFailed,
]

TERMINAL_EVENTS = (JobCompleted, JobFailed)
