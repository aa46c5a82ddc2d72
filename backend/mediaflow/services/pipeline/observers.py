"""
Progress observers.

- LoggingObserver: writes every lifecycle event to the log
- EventBroadcaster: fans events out to per-job asyncio queues (WebSocket)
"""

import asyncio
import logging

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

logger = logging.getLogger(__name__)


class LoggingObserver:
    """Structured log line per lifecycle event."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    def __call__(self, event: ProgressEvent) -> None:
        job = event.job_id
        if isinstance(event, JobCreated):
            media = event.media_type.value if event.media_type else "undetected"
            self.log.info(f"Job {job} created: {media}, stages={list(event.stages)}")
        elif isinstance(event, StageStarted):
            self.log.info(f"Job {job} stage {event.stage} started ({event.label})")
        elif isinstance(event, StageProgress):
            self.log.debug(
                f"Job {job} stage {event.stage}: {event.progress:.0f}% "
                f"(overall {event.overall_progress:.0f}%)"
            )
        elif isinstance(event, StageCompleted):
            self.log.info(f"Job {job} stage {event.stage} completed in {event.duration_ms}ms")
        elif isinstance(event, StageSkipped):
            self.log.info(f"Job {job} stage {event.stage} skipped: {event.reason}")
        elif isinstance(event, StageFailed):
            self.log.warning(f"Job {job} stage {event.stage} failed: {event.error}")
        elif isinstance(event, JobCompleted):
            self.log.info(f"Job {job} completed in {event.duration_ms}ms ({len(event.warnings)} warnings)")
        elif isinstance(event, JobFailed):
            self.log.error(f"Job {job} failed after {event.duration_ms}ms: {event.error}")


class EventBroadcaster:
    """
    Broadcasts events to per-job subscriber queues.

    Must be fed from the event loop thread (the tracker is driven by
    coroutines on that loop).

    Example:
        broadcaster = EventBroadcaster()
        tracker.subscribe(broadcaster)

        queue = broadcaster.subscribe(job_id)
        message = await queue.get()   # {"type": "stage_started", ...}
        broadcaster.unsubscribe(job_id, queue)
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def __call__(self, event: ProgressEvent) -> None:
        queues = self._subscribers.get(event.job_id)
        if not queues:
            return

        message = event.to_dict()
        for queue in list(queues):
            queue.put_nowait(message)

    def subscribe(self, job_id: str) -> asyncio.Queue:
        """Subscribe to events of one job."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(job_id, []).append(queue)
        logger.debug(f"New subscriber for job {job_id}")
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(job_id)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._subscribers[job_id]

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, []))
