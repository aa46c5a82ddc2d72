"""
Job progress tracking.

Finite-state bookkeeping per job:

    job:    processing -> completed | failed            (exactly once)
    stage:  pending -> running -> completed | failed | skipped
            pending -> failed | skipped

Stages run strictly in declared order: a stage can only start once every
earlier stage is terminal. Overall progress gives every declared stage
equal weight; completed/failed/skipped stages count fully and the running
stage counts by its own percentage. It never decreases and never exceeds
100.

The tracker knows nothing about how work is done. Every transition is
published as a typed event to subscribed observers (logging, WebSocket
broadcast, metrics, ...).
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable

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
    JobState,
    JobStatus,
    JobSummary,
    MediaType,
    StageDefinition,
    StageState,
    StageStatus,
    TrackerStatistics,
)

logger = logging.getLogger(__name__)

ProgressObserver = Callable[[ProgressEvent], None]

JOB_ABORTED_REASON = "Job ended before stage ran"


class StageTransitionError(Exception):
    """Illegal job or stage transition.

    Attributes:
        job_id: Job identifier
        stage: Stage name (None for job-level transitions)
    """

    def __init__(self, job_id: str, stage: str | None, message: str):
        self.job_id = job_id
        self.stage = stage
        where = f"{job_id}/{stage}" if stage else job_id
        super().__init__(f"[{where}] {message}")


class JobProgressTracker:
    """
    Tracks job/stage state and publishes lifecycle events.

    Example:
        tracker = JobProgressTracker()
        tracker.subscribe(LoggingObserver())

        tracker.create_job("job_1", MediaType.IMAGE, stages)
        tracker.start_stage("job_1", "validation")
        tracker.complete_stage("job_1", "validation")
        tracker.skip_stage("job_1", "ocr", "Feature disabled")
    """

    def __init__(self) -> None:
        self._jobs: dict[str, JobState] = {}
        self._observers: list[ProgressObserver] = []
        self._lock = threading.RLock()

    # ═══════════════════════════════════════════════════════════════════════
    # Observers
    # ═══════════════════════════════════════════════════════════════════════

    def subscribe(self, observer: ProgressObserver) -> ProgressObserver:
        """Register an observer for all job events."""
        with self._lock:
            self._observers.append(observer)
        return observer

    def unsubscribe(self, observer: ProgressObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def _emit(self, event: ProgressEvent) -> None:
        with self._lock:
            observers = list(self._observers)

        for observer in observers:
            try:
                observer(event)
            except Exception as e:
                # Never fail a job due to an observer error
                logger.warning(f"Progress observer error on {event.event_type}: {e}")

    # ═══════════════════════════════════════════════════════════════════════
    # Job lifecycle
    # ═══════════════════════════════════════════════════════════════════════

    def create_job(
        self,
        job_id: str,
        media_type: MediaType | None,
        stages: list[StageDefinition],
        metadata: dict[str, Any] | None = None,
    ) -> JobState:
        """
        Create a job with its fixed ordered stage list.

        Args:
            job_id: Unique job identifier
            media_type: Media type being processed (None if undetected)
            stages: Declared stages in execution order
            metadata: Caller-supplied metadata

        Returns:
            Snapshot of the created job

        Raises:
            ValueError: If the job already exists or no stages are declared
        """
        if not stages:
            raise ValueError(f"Job {job_id} needs at least one stage")

        job = JobState(
            job_id=job_id,
            media_type=media_type,
            stages=[
                StageState(name=s.name, label=s.label, required=s.required)
                for s in stages
            ],
            metadata=dict(metadata or {}),
        )

        with self._lock:
            if job_id in self._jobs:
                raise ValueError(f"Job {job_id} already exists")
            self._jobs[job_id] = job
            snapshot = job.model_copy(deep=True)

        self._emit(JobCreated(
            job_id=job_id,
            media_type=media_type,
            stages=tuple(s.name for s in stages),
            metadata=dict(snapshot.metadata),
        ))
        return snapshot

    def fail_job(self, job_id: str, error: str) -> bool:
        """
        Force a job into the failed state.

        Stages that never finished are closed: a running stage is marked
        failed, pending stages skipped.

        Returns:
            True if the job transitioned, False if it was already terminal
            or unknown
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return False

            now = datetime.now()
            for stage in job.stages:
                if stage.status == StageStatus.RUNNING:
                    stage.status = StageStatus.FAILED
                    stage.error = error
                    self._finish_stage_timing(stage, now)
                elif stage.status == StageStatus.PENDING:
                    stage.status = StageStatus.SKIPPED
                    stage.skip_reason = JOB_ABORTED_REASON

            job.status = JobStatus.FAILED
            job.error = error
            job.completed_at = now
            job.current_stage = None
            duration_ms = job.duration_ms

        self._emit(JobFailed(job_id=job_id, duration_ms=duration_ms, error=error))
        return True

    def add_warning(self, job_id: str, warning: str) -> None:
        """Append a non-fatal warning to a job."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.warning(f"Job {job_id} not found for warning: {warning}")
                return
            job.warnings.append(warning)
        logger.debug(f"Job {job_id} warning: {warning}")

    # ═══════════════════════════════════════════════════════════════════════
    # Stage transitions
    # ═══════════════════════════════════════════════════════════════════════

    def start_stage(self, job_id: str, stage_name: str, details: dict[str, Any] | None = None) -> None:
        """
        Move a pending stage to running.

        Raises:
            StageTransitionError: If the job is terminal, the stage is not
                pending, or an earlier stage is not finished yet
            KeyError: If the job or stage is unknown
        """
        with self._lock:
            job, stage = self._locate(job_id, stage_name)
            self._require_active(job, stage_name)
            if stage.status != StageStatus.PENDING:
                raise StageTransitionError(
                    job_id, stage_name, f"Cannot start stage in state {stage.status.value}"
                )

            for previous in job.stages:
                if previous.name == stage_name:
                    break
                if not previous.status.is_terminal:
                    raise StageTransitionError(
                        job_id, stage_name,
                        f"Previous stage '{previous.name}' is {previous.status.value}",
                    )

            stage.status = StageStatus.RUNNING
            stage.started_at = datetime.now()
            stage.details.update(details or {})
            job.current_stage = stage_name
            overall = self._recompute_progress(job)
            label = stage.label

        self._emit(StageStarted(
            job_id=job_id,
            stage=stage_name,
            label=label,
            overall_progress=overall,
            details=dict(details or {}),
        ))

    def update_stage_progress(
        self,
        job_id: str,
        stage_name: str,
        percent: float,
        details: dict[str, Any] | None = None,
    ) -> float | None:
        """
        Update the progress of a running stage.

        Percent is clamped to [0, 100] and never lowered. Updates for
        stages that are not running (late callbacks) are ignored.

        Returns:
            New overall job progress, or None if the update was ignored
        """
        with self._lock:
            job, stage = self._locate(job_id, stage_name)
            if job.is_terminal or stage.status != StageStatus.RUNNING:
                logger.debug(
                    f"Ignoring progress for {job_id}/{stage_name} ({stage.status.value})"
                )
                return None

            clamped = max(0.0, min(100.0, float(percent)))
            stage.progress = max(stage.progress, clamped)
            stage.details.update(details or {})
            overall = self._recompute_progress(job)
            stage_progress = stage.progress

        self._emit(StageProgress(
            job_id=job_id,
            stage=stage_name,
            progress=stage_progress,
            overall_progress=overall,
            details=dict(details or {}),
        ))
        return overall

    def complete_stage(
        self,
        job_id: str,
        stage_name: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Mark a running stage completed.

        Raises:
            StageTransitionError: If the stage is not running or job is terminal
        """
        with self._lock:
            job, stage = self._locate(job_id, stage_name)
            self._require_active(job, stage_name)
            if stage.status != StageStatus.RUNNING:
                raise StageTransitionError(
                    job_id, stage_name, f"Cannot complete stage in state {stage.status.value}"
                )

            stage.status = StageStatus.COMPLETED
            stage.progress = 100.0
            stage.details.update(details or {})
            self._finish_stage_timing(stage, datetime.now())
            overall = self._recompute_progress(job)
            duration_ms = stage.duration_ms or 0

        self._emit(StageCompleted(
            job_id=job_id,
            stage=stage_name,
            duration_ms=duration_ms,
            overall_progress=overall,
            details=dict(details or {}),
        ))
        self._finalize_if_done(job_id)

    def fail_stage(self, job_id: str, stage_name: str, error: str) -> None:
        """
        Mark a pending or running stage failed.

        A failed required stage makes the job fail once all stages are
        terminal.

        Raises:
            StageTransitionError: If the stage is already terminal or job is terminal
        """
        with self._lock:
            job, stage = self._locate(job_id, stage_name)
            self._require_active(job, stage_name)
            if stage.status.is_terminal:
                raise StageTransitionError(
                    job_id, stage_name, f"Cannot fail stage in state {stage.status.value}"
                )

            stage.status = StageStatus.FAILED
            stage.error = error
            self._finish_stage_timing(stage, datetime.now())
            overall = self._recompute_progress(job)
            required = stage.required

        self._emit(StageFailed(
            job_id=job_id,
            stage=stage_name,
            error=error,
            required=required,
            overall_progress=overall,
        ))
        self._finalize_if_done(job_id)

    def skip_stage(self, job_id: str, stage_name: str, reason: str) -> None:
        """
        Mark a pending or running stage skipped.

        Raises:
            StageTransitionError: If the stage is already terminal or job is terminal
        """
        with self._lock:
            job, stage = self._locate(job_id, stage_name)
            self._require_active(job, stage_name)
            if stage.status.is_terminal:
                raise StageTransitionError(
                    job_id, stage_name, f"Cannot skip stage in state {stage.status.value}"
                )

            stage.status = StageStatus.SKIPPED
            stage.skip_reason = reason
            if stage.started_at is not None:
                self._finish_stage_timing(stage, datetime.now())
            overall = self._recompute_progress(job)

        self._emit(StageSkipped(
            job_id=job_id,
            stage=stage_name,
            reason=reason,
            overall_progress=overall,
        ))
        self._finalize_if_done(job_id)

    # ═══════════════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════════════

    def get_job(self, job_id: str) -> JobState | None:
        """Snapshot of a job, or None if unknown."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def get_job_summary(self, job_id: str) -> JobSummary | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return self._summarize(job) if job else None

    def list_jobs(self, status: JobStatus | None = None) -> list[JobSummary]:
        """Summaries of tracked jobs, oldest first."""
        with self._lock:
            jobs = [j for j in self._jobs.values() if status is None or j.status == status]
            return [self._summarize(job) for job in sorted(jobs, key=lambda j: j.started_at)]

    def get_statistics(self) -> TrackerStatistics:
        with self._lock:
            jobs = list(self._jobs.values())
            finished = [j for j in jobs if j.is_terminal]
            return TrackerStatistics(
                total_jobs=len(jobs),
                processing=sum(1 for j in jobs if j.status == JobStatus.PROCESSING),
                completed=sum(1 for j in jobs if j.status == JobStatus.COMPLETED),
                failed=sum(1 for j in jobs if j.status == JobStatus.FAILED),
                average_duration_ms=(
                    sum(j.duration_ms for j in finished) / len(finished) if finished else 0.0
                ),
            )

    def remove_job(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def cleanup(self, max_age_seconds: float, now: datetime | None = None) -> int:
        """
        Evict terminal jobs that finished more than max_age_seconds ago.

        Returns:
            Number of evicted jobs
        """
        cutoff = (now or datetime.now()) - timedelta(seconds=max_age_seconds)
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.is_terminal and job.completed_at is not None and job.completed_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]

        if expired:
            logger.info(f"Evicted {len(expired)} finished jobs from tracker")
        return len(expired)

    # ═══════════════════════════════════════════════════════════════════════
    # Internals
    # ═══════════════════════════════════════════════════════════════════════

    def _locate(self, job_id: str, stage_name: str) -> tuple[JobState, StageState]:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(f"Job not found: {job_id}")
        return job, job.get_stage(stage_name)

    @staticmethod
    def _require_active(job: JobState, stage_name: str) -> None:
        if job.is_terminal:
            raise StageTransitionError(
                job.job_id, stage_name, f"Job is already {job.status.value}"
            )

    @staticmethod
    def _finish_stage_timing(stage: StageState, now: datetime) -> None:
        stage.completed_at = now
        if stage.started_at is not None:
            stage.duration_ms = int((now - stage.started_at).total_seconds() * 1000)

    @staticmethod
    def _recompute_progress(job: JobState) -> float:
        done = 0.0
        for stage in job.stages:
            if stage.status.is_terminal:
                done += 1.0
            elif stage.status == StageStatus.RUNNING:
                done += stage.progress / 100.0

        computed = round(done / len(job.stages) * 100.0, 2)
        job.progress = min(100.0, max(job.progress, computed))
        return job.progress

    def _finalize_if_done(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs[job_id]
            if job.is_terminal or not all(s.status.is_terminal for s in job.stages):
                return

            failed_required = [s for s in job.stages if s.status == StageStatus.FAILED and s.required]
            job.completed_at = datetime.now()
            job.current_stage = None
            duration_ms = job.duration_ms

            if failed_required:
                job.status = JobStatus.FAILED
                job.error = failed_required[0].error or f"Stage {failed_required[0].name} failed"
                event: ProgressEvent = JobFailed(job_id=job_id, duration_ms=duration_ms, error=job.error)
            else:
                job.status = JobStatus.COMPLETED
                job.progress = 100.0
                event = JobCompleted(
                    job_id=job_id,
                    duration_ms=duration_ms,
                    warnings=tuple(job.warnings),
                )

        self._emit(event)

    @staticmethod
    def _summarize(job: JobState) -> JobSummary:
        statuses = [s.status for s in job.stages]
        return JobSummary(
            job_id=job.job_id,
            media_type=job.media_type,
            status=job.status,
            progress=job.progress,
            current_stage=job.current_stage,
            stages_completed=statuses.count(StageStatus.COMPLETED),
            stages_skipped=statuses.count(StageStatus.SKIPPED),
            stages_failed=statuses.count(StageStatus.FAILED),
            stages_total=len(statuses),
            warnings=len(job.warnings),
            duration_ms=job.duration_ms,
            error=job.error,
        )
