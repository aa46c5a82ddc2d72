"""
Media processing pipeline.

Modules:
    media_detector: payload classification (video/audio/image)
    progress_tracker: job/stage state machine with typed events
    observers: logging and WebSocket broadcast observers
    feature_resolver: configuration toggles x provider availability
    resource_manager: concurrency ceiling, memory pressure, timeouts
    result_cache: TTL cache of finished results
    result_formatter: provider-agnostic result shape
    result_sink: persistence collaborators
    orchestrator: end-to-end coordination
"""

from .feature_resolver import FeatureResolver
from .media_detector import MediaTypeDetector, MediaTypeError, sniff_media_type
from .observers import EventBroadcaster, LoggingObserver
from .orchestrator import MediaOrchestrator, OrchestratorError, generate_job_id
from .progress_tracker import JobProgressTracker, ProgressObserver, StageTransitionError
from .resource_manager import ProcessingTimeoutError, ResourceAwareExecutor
from .result_cache import ResultCache
from .result_formatter import format_result
from .result_sink import JsonFileResultSink, ResultSink

__all__ = [
    "EventBroadcaster",
    "FeatureResolver",
    "JobProgressTracker",
    "JsonFileResultSink",
    "LoggingObserver",
    "MediaOrchestrator",
    "MediaTypeDetector",
    "MediaTypeError",
    "OrchestratorError",
    "ProcessingTimeoutError",
    "ProgressObserver",
    "ResourceAwareExecutor",
    "ResultCache",
    "ResultSink",
    "StageTransitionError",
    "format_result",
    "generate_job_id",
    "sniff_media_type",
]
