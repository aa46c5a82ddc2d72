"""
Media orchestrator.

Coordinates one processing run end to end:
1. Generate a job id and detect the media type
2. Resolve features (configuration toggles x provider availability)
3. Create the tracked job and run the processor under the resource executor
4. Format the raw output into a ProcessingResult
5. Update metrics, cache the response and hand it to result sinks

Failures are never retried here (providers retry inside the registry's
fallback loop); they mark the job failed and surface as OrchestratorError.
"""

import asyncio
import logging
import math
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from mediaflow.config import ProcessingConfig, Settings, get_settings
from mediaflow.logging_config import job_log_context
from mediaflow.models.schemas import (
    FeatureSet,
    JobStatus,
    JobStatusResponse,
    MediaType,
    OrchestratorMetrics,
    OrchestratorStatus,
    ProcessContentResponse,
    StageDefinition,
    SystemStatus,
)
from mediaflow.services.plugins import BasePlugin, CapabilityRegistry, build_registry
from mediaflow.services.processors import (
    BaseMediaProcessor,
    ProcessingOptions,
    StageReporter,
    create_processors,
)

from .feature_resolver import FeatureResolver
from .media_detector import MediaTypeDetector, MediaTypeError
from .observers import EventBroadcaster, LoggingObserver
from .progress_tracker import JobProgressTracker
from .resource_manager import ResourceAwareExecutor
from .result_cache import ResultCache
from .result_formatter import format_result, produced_fields
from .result_sink import JsonFileResultSink, ResultSink

logger = logging.getLogger(__name__)

TIMING_WINDOW = 100
STUCK_JOB_ERROR = "Job exceeded maximum processing age"

# Stage of jobs that failed before a processor was chosen
DETECTION_STAGE = StageDefinition(name="detection", label="Detecting media type", required=True)


def generate_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


class OrchestratorError(Exception):
    """
    Job-level failure surfaced to callers.

    Attributes:
        job_id: Job identifier
        elapsed_ms: Time spent before the failure
        cause: Original exception (if any)
    """

    def __init__(
        self,
        job_id: str,
        elapsed_ms: int,
        message: str,
        cause: Exception | None = None,
    ):
        self.job_id = job_id
        self.elapsed_ms = elapsed_ms
        self.message = message
        self.cause = cause
        super().__init__(f"Content processing failed [job {job_id}, {elapsed_ms}ms]: {message}")


@dataclass
class ActiveJob:
    """Entry of the active-jobs table."""

    job_id: str
    started_at: float
    media_type: MediaType | None = None
    features: FeatureSet | None = None
    reserved: bool = False  # accepted, processing not started yet


class MediaOrchestrator:
    """
    Coordinates detection, feature resolution, processing and caching.

    Constructed explicitly by the application entry point; every
    collaborator can be injected for tests.

    Example:
        orchestrator = MediaOrchestrator(settings)
        await orchestrator.initialize()

        response = await orchestrator.process_content(data, {"filename": "photo.jpg"})
        status = orchestrator.get_job_status(response.job_id)   # from_cache=True
    """

    def __init__(
        self,
        settings: Settings | None = None,
        config: ProcessingConfig | None = None,
        registry: CapabilityRegistry | None = None,
        plugins: list[BasePlugin] | None = None,
        tracker: JobProgressTracker | None = None,
        executor: ResourceAwareExecutor | None = None,
        sinks: list[ResultSink] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize orchestrator (no I/O; see initialize()).

        Args:
            settings: Application settings (default: get_settings())
            config: Processing configuration (default: from settings)
            registry: Capability registry (default: built from plugins)
            plugins: Plugins for the default registry (default: shipped plugins)
            tracker: Progress tracker (default: new tracker)
            executor: Resource executor (default: from configuration)
            sinks: Result sinks (default: JSON files when results_dir is set)
            clock: Wall clock in seconds, used for job ages
        """
        self.settings = settings or get_settings()
        self.config = config or ProcessingConfig.from_settings(self.settings)
        self.registry = registry or build_registry(self.settings, self.config, plugins)
        self.tracker = tracker or JobProgressTracker()
        self.executor = executor or ResourceAwareExecutor.from_config(self.config)
        self.detector = MediaTypeDetector(self.config)
        self.feature_resolver = FeatureResolver(self.config, self.registry)
        self.processors: dict[MediaType, BaseMediaProcessor] = create_processors(
            self.registry, self.config, self.settings,
        )

        if sinks is None:
            sinks = [JsonFileResultSink(self.settings.results_dir)] if self.settings.results_dir else []
        self.sinks = sinks

        self.cache: ResultCache[ProcessContentResponse] | None = None
        if self.config.is_feature_enabled("performance.caching.enable_result_caching"):
            self.cache = ResultCache(
                ttl_seconds=self.config.get_config("performance.caching.cache_ttl_seconds", 3600),
                max_entries=self.config.get_config("performance.caching.max_cache_size", 1000),
                clock=clock,
            )
            self.executor.add_cleanup_callback(self.cache.clear)

        self.broadcaster = EventBroadcaster()
        self.tracker.subscribe(LoggingObserver())
        self.tracker.subscribe(self.broadcaster)

        self.metrics = OrchestratorMetrics()
        self._timings: deque[int] = deque(maxlen=TIMING_WINDOW)
        self._active: dict[str, ActiveJob] = {}
        self._active_lock = threading.Lock()
        self._clock = clock
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._cleanup_task: asyncio.Task | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Probe providers and initialize processors. Idempotent."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            logger.info("Initializing media orchestrator")
            await self.registry.initialize_and_probe()
            for processor in self.processors.values():
                await processor.initialize()
            self._initialized = True

            report = self.registry.get_status_report()
            available = [name for name, status in report.categories.items() if status.available]
            logger.info(
                f"Media orchestrator ready: {report.enabled_plugins}/{report.total_plugins} plugins, "
                f"categories available: {available}"
            )

    # ═══════════════════════════════════════════════════════════════════════
    # Processing
    # ═══════════════════════════════════════════════════════════════════════

    async def process_content(
        self,
        buffer: bytes,
        metadata: dict[str, Any] | None = None,
        job_id: str | None = None,
    ) -> ProcessContentResponse:
        """
        Process one media payload.

        Args:
            buffer: Raw payload
            metadata: filename, type, mime_type, language and any
                caller-defined fields (user_id, file_id, ...)
            job_id: Caller-supplied job id (default: generated)

        Returns:
            ProcessContentResponse with results and warnings

        Raises:
            OrchestratorError: On any job-level failure, with job id and
                elapsed time
        """
        await self.initialize()

        metadata = dict(metadata or {})
        job_id = job_id or generate_job_id()
        started = time.perf_counter()

        if not self._register_active(job_id):
            raise OrchestratorError(job_id, 0, f"Job {job_id} is already running")

        with job_log_context(job_id):
            return await self._run_job(job_id, buffer, metadata, started)

    async def _run_job(
        self,
        job_id: str,
        buffer: bytes,
        metadata: dict[str, Any],
        started: float,
    ) -> ProcessContentResponse:
        try:
            media_type = self.detector.detect(buffer, metadata)
            processor = self.processors.get(media_type)
            if processor is None:
                raise MediaTypeError(f"No processor for media type: {media_type.value}")

            features = self.feature_resolver.resolve(media_type)
            options = self._build_options(media_type, features, metadata)
            self._update_active(job_id, media_type, features)

            self.tracker.create_job(job_id, media_type, list(processor.stages), metadata)
            reporter = StageReporter(self.tracker, job_id, options.progress_tracking)

            output = await self.executor.run(
                job_id,
                lambda: processor.process(job_id, buffer, metadata, options, reporter),
                size_bytes=len(buffer),
                timeout_seconds=options.timeout_ms / 1000 if options.timeout_ms else None,
            )
            results = format_result(output)

            job = self.tracker.get_job(job_id)
            elapsed_ms = self._elapsed_ms(started)
            response = ProcessContentResponse(
                job_id=job_id,
                media_type=media_type,
                processing_time=elapsed_ms,
                results=results,
                warnings=list(job.warnings) if job else [],
                features=dict(features.enabled),
            )

        except Exception as e:
            elapsed_ms = self._elapsed_ms(started)
            message = str(e) or type(e).__name__
            if self._finish(job_id, elapsed_ms, success=False):
                self._record_failure(job_id, message, metadata)
            else:
                # Force-failed by the stuck-job sweep; later transitions were rejected
                message = STUCK_JOB_ERROR
            logger.error(f"Job {job_id} failed after {elapsed_ms}ms: {message}")
            raise OrchestratorError(job_id, elapsed_ms, message, e) from e

        if not self._finish(job_id, elapsed_ms, success=True):
            # Force-failed by the stuck-job sweep while running
            raise OrchestratorError(job_id, elapsed_ms, STUCK_JOB_ERROR)

        if self.cache is not None:
            self.cache.set(job_id, response)
        await self._store(response)

        fields = ", ".join(produced_fields(results)) or "none"
        logger.info(
            f"Job {job_id} processed {media_type.value} in {elapsed_ms}ms "
            f"({len(response.warnings)} warnings); fields: {fields}"
        )
        return response

    def _build_options(
        self,
        media_type: MediaType,
        features: FeatureSet,
        metadata: dict[str, Any],
    ) -> ProcessingOptions:
        section = media_type.value
        language = (
            metadata.get("language")
            or self.config.get_config(f"{section}.transcription_language")
            or self.config.get_config("audio.transcription_language")
            or self.settings.whisper_language
        )
        return ProcessingOptions(
            features=features,
            timeout_ms=self.config.get_config("base.timeout_ms"),
            progress_tracking=self.config.is_feature_enabled("base.enable_progress_tracking"),
            language=language,
            thumbnail_sizes=self.config.get_config(f"{section}.thumbnail_sizes", {}) or {},
            filename=metadata.get("filename"),
            mime_type=metadata.get("mime_type"),
        )

    async def _store(self, response: ProcessContentResponse) -> None:
        for sink in self.sinks:
            try:
                await sink.store(response)
            except Exception as e:
                logger.warning(f"Result sink {type(sink).__name__} failed for {response.job_id}: {e}")

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return max(1, math.ceil((time.perf_counter() - started) * 1000))

    # ═══════════════════════════════════════════════════════════════════════
    # Active jobs and metrics
    # ═══════════════════════════════════════════════════════════════════════

    def reserve_job(self, job_id: str | None = None) -> str:
        """
        Accept a job id before processing starts (background submissions).

        The reserved job counts as active: status queries and progress
        subscribers see it, and the sweep fails it if it never starts.
        process_content() with the same id claims the reservation.

        Raises:
            OrchestratorError: If the id is already active
        """
        job_id = job_id or generate_job_id()
        with self._active_lock:
            if job_id in self._active:
                raise OrchestratorError(job_id, 0, f"Job {job_id} is already running")
            self._active[job_id] = ActiveJob(job_id=job_id, started_at=self._clock(), reserved=True)
        return job_id

    def is_job_pending(self, job_id: str) -> bool:
        """True while a job is active (reserved or running) and not yet finished."""
        with self._active_lock:
            return job_id in self._active

    def _register_active(self, job_id: str) -> bool:
        with self._active_lock:
            entry = self._active.get(job_id)
            if entry is not None:
                if not entry.reserved:
                    return False
                entry.reserved = False
                entry.started_at = self._clock()
                return True
            self._active[job_id] = ActiveJob(job_id=job_id, started_at=self._clock())
            return True

    def _record_failure(self, job_id: str, message: str, metadata: dict[str, Any] | None = None) -> None:
        """Mark a job failed in the tracker, creating it if it failed before detection."""
        if self.tracker.get_job(job_id) is None:
            self.tracker.create_job(job_id, None, [DETECTION_STAGE], metadata)
            self.tracker.start_stage(job_id, DETECTION_STAGE.name)
        self.tracker.fail_job(job_id, message)

    def _update_active(self, job_id: str, media_type: MediaType, features: FeatureSet) -> None:
        with self._active_lock:
            entry = self._active.get(job_id)
            if entry is not None:
                entry.media_type = media_type
                entry.features = features

    def _finish(self, job_id: str, elapsed_ms: int, success: bool) -> bool:
        """
        Remove a job from the active table and record its outcome.

        Returns:
            False if the job was no longer active (already finished by the sweep)
        """
        with self._active_lock:
            if self._active.pop(job_id, None) is None:
                return False

            self.metrics.total_processed += 1
            if success:
                self.metrics.success_count += 1
            else:
                self.metrics.error_count += 1
            self._timings.append(elapsed_ms)
            self.metrics.average_processing_time = round(
                sum(self._timings) / len(self._timings), 1
            )
        return True

    @property
    def active_job_count(self) -> int:
        with self._active_lock:
            return len(self._active)

    # ═══════════════════════════════════════════════════════════════════════
    # Status
    # ═══════════════════════════════════════════════════════════════════════

    def get_job_status(self, job_id: str) -> JobStatusResponse | None:
        """
        Status of an active job, or the cached result of a finished one.

        Returns:
            JobStatusResponse, or None if the job is neither active nor cached
        """
        with self._active_lock:
            active = self._active.get(job_id)

        if active is not None:
            job = self.tracker.get_job(job_id)
            return JobStatusResponse(
                id=job_id,
                status=JobStatus.PROCESSING,
                media_type=active.media_type,
                start_time=datetime.fromtimestamp(active.started_at),
                processing_time=int((self._clock() - active.started_at) * 1000),
                available_features=dict(active.features.enabled) if active.features else None,
                progress=job.progress if job else 0.0,
                current_stage=job.current_stage if job else None,
            )

        cached = self.cache.get(job_id) if self.cache is not None else None
        if cached is None:
            self.metrics.cache_misses += 1
            return None

        self.metrics.cache_hits += 1
        job = self.tracker.get_job(job_id)
        return JobStatusResponse(
            id=job_id,
            status=JobStatus.COMPLETED,
            media_type=cached.media_type,
            start_time=job.started_at if job else None,
            processing_time=cached.processing_time,
            available_features=dict(cached.features),
            progress=100.0,
            results=cached,
            from_cache=True,
        )

    def get_system_status(self) -> SystemStatus:
        """Initialization flag, metrics, executor and provider availability."""
        return SystemStatus(
            orchestrator=OrchestratorStatus(
                initialized=self._initialized,
                active_jobs=self.active_job_count,
                cache_size=len(self.cache) if self.cache is not None else 0,
                metrics=self.metrics.model_copy(),
            ),
            processors=list(self.processors),
            plugins=self.registry.get_status_report(),
            executor=self.executor.get_metrics(),
            configuration=self.config.get_summary(),
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Cleanup
    # ═══════════════════════════════════════════════════════════════════════

    def sweep(self, now: float | None = None) -> dict[str, int]:
        """
        Force-fail stuck jobs and evict expired state.

        A stuck job is failed in the tracker and its work is cancelled in
        the executor, which frees its concurrency slot.

        Args:
            now: Wall clock override in seconds

        Returns:
            Counts of stuck jobs, expired cache entries and evicted tracker jobs
        """
        now = self._clock() if now is None else now
        max_age = self.config.get_config("performance.cleanup.max_job_age_seconds", 3600)

        with self._active_lock:
            stuck = [
                (job_id, job.started_at)
                for job_id, job in self._active.items()
                if now - job.started_at > max_age
            ]

        for job_id, started_at in stuck:
            logger.warning(f"Force-failing stuck job {job_id} (age {now - started_at:.0f}s)")
            self._record_failure(job_id, STUCK_JOB_ERROR)
            self._finish(job_id, int((now - started_at) * 1000), success=False)
            self.executor.cancel(job_id, STUCK_JOB_ERROR)

        expired = self.cache.evict_expired() if self.cache is not None else 0
        evicted = self.tracker.cleanup(
            self.config.get_config("performance.cleanup.job_retention_seconds", 3600)
        )

        if stuck or expired or evicted:
            logger.info(
                f"Sweep: {len(stuck)} stuck jobs failed, {expired} cached results expired, "
                f"{evicted} tracked jobs evicted"
            )
        return {"stuck_jobs": len(stuck), "expired_results": expired, "evicted_jobs": evicted}

    def start_periodic_cleanup(self) -> asyncio.Task:
        """Start the background sweep loop (idempotent)."""
        if self._cleanup_task is None or self._cleanup_task.done():
            interval = self.config.get_config("performance.cleanup.interval_seconds", 300)
            self._cleanup_task = asyncio.create_task(self._cleanup_loop(interval))
        return self._cleanup_task

    async def _cleanup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception:
                logger.exception("Periodic sweep failed")

    async def shutdown(self) -> None:
        """Stop the sweep loop and release provider clients."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        await self.registry.cleanup()
        logger.info("Media orchestrator shut down")
