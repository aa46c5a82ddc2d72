"""
Processor abstraction for media pipelines.

Each processor handles one media type and declares its fixed ordered
stage list. Stages are run strictly in that order:
- validation is the only essential stage; failing it fails the job
- capability stages go through the registry's fallback execution and
  degrade to a skipped stage plus a warning when no provider succeeds
- local stages (thumbnails, quality) are skipped when their feature is off

Example:
    class PdfProcessor(BaseMediaProcessor):
        media_type = MediaType.IMAGE
        stages = (
            StageDefinition(name="validation", label="Validating", required=True),
            StageDefinition(name="ocr", label="Reading text"),
        )

        async def _run(self, ctx: ProcessorContext) -> None:
            await self.validate(ctx)
            text = await self.run_capability_stage(ctx, "ocr", "ocr", CapabilityCategory.OCR, ctx.buffer)
            if text is not None:
                ctx.output.data["ocr_text"] = text
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from mediaflow.config import ProcessingConfig, Settings
from mediaflow.models.schemas import FeatureSet, MediaType, PluginUsage, StageDefinition, StageStatus
from mediaflow.services.plugins import CapabilityCategory, CapabilityRegistry, FallbackFailure

if TYPE_CHECKING:
    from mediaflow.services.pipeline.progress_tracker import JobProgressTracker

logger = logging.getLogger(__name__)

NOT_REACHED_REASON = "Stage not reached"
FEATURE_DISABLED_REASON = "Feature disabled"


class ProcessingError(Exception):
    """Essential stage failure.

    Attributes:
        stage: Name of the stage that failed
        message: Error description
        cause: Original exception (if any)
    """

    def __init__(self, stage: str, message: str, cause: Exception | None = None):
        self.stage = stage
        self.message = message
        self.cause = cause
        super().__init__(f"[{stage}] {message}")


@dataclass
class ProcessingOptions:
    """Options built by the orchestrator for one run."""

    features: FeatureSet
    timeout_ms: int | None = None
    progress_tracking: bool = True
    language: str | None = None
    thumbnail_sizes: dict[str, list[int]] = field(default_factory=dict)
    filename: str | None = None
    mime_type: str | None = None


@dataclass
class ProcessorOutput:
    """Raw processor output, formatted later by the orchestrator.

    Attributes:
        data: Result field -> raw value (only for stages that produced data)
        plugin_usage: stage -> plugin that served it
    """

    data: dict[str, Any] = field(default_factory=dict)
    plugin_usage: dict[str, PluginUsage] = field(default_factory=dict)


class StageReporter:
    """
    Forwards stage transitions of one job into the tracker.

    With progress tracking off, intermediate progress updates are dropped;
    state transitions are always recorded.
    """

    def __init__(self, tracker: "JobProgressTracker", job_id: str, track_progress: bool = True):
        self.tracker = tracker
        self.job_id = job_id
        self.track_progress = track_progress

    def start(self, stage: str, details: dict[str, Any] | None = None) -> None:
        self.tracker.start_stage(self.job_id, stage, details)

    def progress(self, stage: str, percent: float, details: dict[str, Any] | None = None) -> None:
        if self.track_progress:
            self.tracker.update_stage_progress(self.job_id, stage, percent, details)

    def complete(self, stage: str, details: dict[str, Any] | None = None) -> None:
        self.tracker.complete_stage(self.job_id, stage, details)

    def skip(self, stage: str, reason: str) -> None:
        self.tracker.skip_stage(self.job_id, stage, reason)

    def fail(self, stage: str, error: str) -> None:
        self.tracker.fail_stage(self.job_id, stage, error)

    def warn(self, message: str) -> None:
        self.tracker.add_warning(self.job_id, message)

    def skip_remaining(self, reason: str = NOT_REACHED_REASON) -> int:
        """Skip every stage still pending.

        Returns:
            Number of skipped stages
        """
        job = self.tracker.get_job(self.job_id)
        if job is None or job.is_terminal:
            return 0

        pending = [s.name for s in job.stages if s.status == StageStatus.PENDING]
        for name in pending:
            self.tracker.skip_stage(self.job_id, name, reason)
        return len(pending)


@dataclass
class ProcessorContext:
    """Everything a processor needs for one job."""

    job_id: str
    buffer: bytes
    metadata: dict[str, Any]
    options: ProcessingOptions
    reporter: StageReporter
    output: ProcessorOutput = field(default_factory=ProcessorOutput)


class BaseMediaProcessor(ABC):
    """
    Abstract base class for media type processors.

    Subclasses set media_type and stages and implement _run().
    """

    media_type: MediaType
    stages: tuple[StageDefinition, ...]

    def __init__(
        self,
        registry: CapabilityRegistry,
        config: ProcessingConfig,
        settings: Settings,
    ):
        """
        Initialize processor.

        Args:
            registry: Capability registry for provider-backed stages
            config: Processing configuration
            settings: Application settings (paths)
        """
        self.registry = registry
        self.config = config
        self.settings = settings
        self.processor_config: dict[str, Any] = {}
        self._initialized = False

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    async def initialize(self) -> None:
        """Load the merged base + media type configuration."""
        self.processor_config = self.config.get_processor_config(self.media_type.value)
        self._initialized = True
        logger.debug(f"{type(self).__name__} initialized")

    async def process(
        self,
        job_id: str,
        buffer: bytes,
        metadata: dict[str, Any],
        options: ProcessingOptions,
        reporter: StageReporter,
    ) -> ProcessorOutput:
        """
        Run all stages for one payload.

        Args:
            job_id: Tracked job identifier
            buffer: Raw payload
            metadata: Caller metadata (filename, mime_type, ...)
            options: Resolved processing options
            reporter: Stage reporter bound to the job

        Returns:
            Raw output of the stages that produced data

        Raises:
            ProcessingError: If an essential stage fails
        """
        if not self._initialized:
            await self.initialize()

        ctx = ProcessorContext(
            job_id=job_id,
            buffer=buffer,
            metadata=metadata,
            options=options,
            reporter=reporter,
        )
        await self._run(ctx)
        reporter.skip_remaining()
        return ctx.output

    @abstractmethod
    async def _run(self, ctx: ProcessorContext) -> None:
        """Run the stage sequence, storing results in ctx.output."""

    # ═══════════════════════════════════════════════════════════════════════
    # Stage helpers
    # ═══════════════════════════════════════════════════════════════════════

    async def validate(self, ctx: ProcessorContext, extra: Callable[[bytes], None] | None = None) -> None:
        """
        Essential validation stage: non-empty, within max_file_size.

        Args:
            ctx: Processor context
            extra: Additional blocking check run in a worker thread; raises
                ValueError on invalid input

        Raises:
            ProcessingError: If validation fails
        """
        stage = "validation"
        ctx.reporter.start(stage, {"size_bytes": len(ctx.buffer)})

        max_size = int(self.processor_config.get("max_file_size", 0) or 0)
        error: str | None = None
        if not ctx.buffer:
            error = "Empty media buffer"
        elif max_size and len(ctx.buffer) > max_size:
            error = f"File size {len(ctx.buffer)} exceeds limit {max_size}"
        elif extra is not None:
            try:
                await asyncio.to_thread(extra, ctx.buffer)
            except ValueError as e:
                error = str(e)

        if error:
            ctx.reporter.fail(stage, error)
            raise ProcessingError(stage, error)

        ctx.reporter.complete(stage)

    async def run_capability_stage(
        self,
        ctx: ProcessorContext,
        stage: str,
        feature: str,
        category: CapabilityCategory,
        input: Any,
        options: dict[str, Any] | None = None,
    ) -> Any | None:
        """
        Run a provider-backed stage through the registry.

        Args:
            ctx: Processor context
            stage: Stage name
            feature: Feature toggle controlling the stage
            category: Capability category to execute
            input: Category input
            options: Category options

        Returns:
            Plugin result, or None if the stage was skipped
        """
        if not self._should_run(ctx, stage, feature):
            return None

        ctx.reporter.start(stage, {"category": category.value})
        outcome = await self.registry.try_execute(category, input, options or {})

        if isinstance(outcome, FallbackFailure):
            if outcome.no_candidates:
                warning = f"{stage} skipped: no available provider for {category.value}"
            else:
                warning = f"{stage}: all providers failed ({outcome.last_error})"
            ctx.reporter.warn(warning)
            ctx.reporter.skip(stage, warning)
            return None

        ctx.output.plugin_usage[stage] = PluginUsage(
            plugin=outcome.plugin,
            provider=outcome.provider,
            fallback_used=outcome.fallback_used,
        )
        ctx.reporter.complete(stage, {"plugin": outcome.plugin, "fallback_used": outcome.fallback_used})
        return outcome.result

    async def run_local_stage(
        self,
        ctx: ProcessorContext,
        stage: str,
        feature: str | None,
        func: Callable[[], Awaitable[Any]],
    ) -> Any | None:
        """
        Run a stage implemented locally (Pillow, ffprobe, ...).

        An exception fails the (non-essential) stage with a warning.

        Args:
            ctx: Processor context
            stage: Stage name
            feature: Feature toggle controlling the stage (None = always on)
            func: Coroutine factory doing the work

        Returns:
            Stage result, or None if skipped or failed
        """
        if feature is not None and not self._should_run(ctx, stage, feature):
            return None

        ctx.reporter.start(stage)
        try:
            result = await func()
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.warning(f"Job {ctx.job_id} stage {stage} failed: {error}")
            ctx.reporter.warn(f"{stage} failed: {error}")
            ctx.reporter.fail(stage, error)
            return None

        ctx.reporter.complete(stage)
        return result

    def _should_run(
        self,
        ctx: ProcessorContext,
        stage: str,
        feature: str,
    ) -> bool:
        features = ctx.options.features
        if features.is_enabled(feature):
            return True

        unavailable = features.unavailable.get(feature)
        if unavailable:
            warning = f"{stage} skipped: no available provider for {unavailable}"
            ctx.reporter.warn(warning)
            ctx.reporter.skip(stage, warning)
        else:
            ctx.reporter.skip(stage, FEATURE_DISABLED_REASON)
        return False
