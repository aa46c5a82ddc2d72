"""
Resource-aware execution of processing jobs.

Bounds the number of jobs running at once, watches process memory and
enforces a per-job timeout. Memory pressure is handled by cleanup and a
soft admission delay; it is never reported to callers as an error.
"""

import asyncio
import gc
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, TypeVar

import psutil

from mediaflow.config import ProcessingConfig
from mediaflow.services.processors.base import ProcessingError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MB = 1024 * 1024
BASE_TIMEOUT_SECONDS = 30.0
TIMEOUT_SECONDS_PER_MB = 1.0
MEMORY_POLL_SECONDS = 0.5
TIMING_WINDOW = 100

MemoryProbe = Callable[[], float]
CleanupCallback = Callable[[], Any]


class ProcessingTimeoutError(ProcessingError):
    """Job exceeded its execution timeout."""

    def __init__(self, job_id: str, timeout_seconds: float):
        self.job_id = job_id
        self.timeout_seconds = timeout_seconds
        super().__init__("execution", f"Job {job_id} timed out after {timeout_seconds:.0f}s")


class JobCancelledError(ProcessingError):
    """Job was cancelled through ResourceAwareExecutor.cancel()."""

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__("execution", f"Job {job_id} cancelled: {reason}")


def process_memory_mb() -> float:
    """Resident set size of this process in MB."""
    return psutil.Process().memory_info().rss / MB


class ResourceAwareExecutor:
    """
    Runs jobs under a concurrency ceiling with memory-aware admission.

    Example:
        executor = ResourceAwareExecutor.from_config(config)
        executor.add_cleanup_callback(cache.clear)

        result = await executor.run(job_id, lambda: processor.process(...), size_bytes=len(data))
    """

    def __init__(
        self,
        max_concurrent_jobs: int = 2,
        high_water_mark_mb: float = 512,
        admission_wait_seconds: float = 10,
        default_timeout_seconds: float | None = None,
        memory_probe: MemoryProbe = process_memory_mb,
        poll_interval: float = MEMORY_POLL_SECONDS,
    ):
        """
        Initialize executor.

        Args:
            max_concurrent_jobs: Concurrency ceiling
            high_water_mark_mb: Memory level that triggers cleanup
            admission_wait_seconds: Longest admission delay under pressure
            default_timeout_seconds: Per-job timeout (None = size based)
            memory_probe: Returns current memory usage in MB
            poll_interval: Memory re-check interval while delaying admission
        """
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")

        self.max_concurrent_jobs = max_concurrent_jobs
        self.high_water_mark_mb = high_water_mark_mb
        self.admission_wait_seconds = admission_wait_seconds
        self.default_timeout_seconds = default_timeout_seconds
        self.memory_probe = memory_probe
        self.poll_interval = poll_interval

        self._semaphore = asyncio.Semaphore(max_concurrent_jobs)
        self._cleanup_callbacks: list[CleanupCallback] = []
        # job_id -> running task (None while queued)
        self._jobs: dict[str, asyncio.Task | None] = {}
        self._cancelled: dict[str, str] = {}
        self._timings: deque[float] = deque(maxlen=TIMING_WINDOW)

        self.total_jobs = 0
        self.active_jobs = 0
        self.queued_jobs = 0
        self.completed_jobs = 0
        self.failed_jobs = 0
        self.cleanup_runs = 0
        self.peak_memory_mb = 0.0

    @classmethod
    def from_config(cls, config: ProcessingConfig, **kwargs: Any) -> "ResourceAwareExecutor":
        """Create executor from performance.* and base.timeout_ms settings."""
        timeout_ms = config.get_config("base.timeout_ms")
        return cls(
            max_concurrent_jobs=config.get_config(
                "performance.concurrent_processing.max_concurrent_jobs", 2
            ),
            high_water_mark_mb=config.get_config("performance.memory.high_water_mark_mb", 512),
            admission_wait_seconds=config.get_config("performance.memory.admission_wait_seconds", 10),
            default_timeout_seconds=timeout_ms / 1000 if timeout_ms else None,
            **kwargs,
        )

    def add_cleanup_callback(self, callback: CleanupCallback) -> None:
        """Register a callback run under memory pressure."""
        self._cleanup_callbacks.append(callback)

    def calculate_timeout(self, size_bytes: int, timeout_seconds: float | None = None) -> float:
        """Timeout for a job: explicit, configured, or 30s + 1s per MB."""
        if timeout_seconds:
            return timeout_seconds
        if self.default_timeout_seconds:
            return self.default_timeout_seconds
        return BASE_TIMEOUT_SECONDS + TIMEOUT_SECONDS_PER_MB * size_bytes / MB

    async def run(
        self,
        job_id: str,
        func: Callable[[], Awaitable[T]],
        size_bytes: int = 0,
        timeout_seconds: float | None = None,
    ) -> T:
        """
        Run a job once admitted.

        Args:
            job_id: Job identifier (for logs and errors)
            func: Coroutine factory performing the job
            size_bytes: Payload size, used for the default timeout
            timeout_seconds: Explicit timeout override

        Returns:
            Result of func()

        Raises:
            ProcessingTimeoutError: If the job exceeds its timeout
            JobCancelledError: If cancel() was called for the job
            Exception: Anything raised by func()
        """
        if job_id in self._jobs:
            raise ValueError(f"Job {job_id} is already submitted")

        timeout = self.calculate_timeout(size_bytes, timeout_seconds)
        self.total_jobs += 1
        self.queued_jobs += 1
        self._jobs[job_id] = None

        admitted = False
        try:
            await self._await_admission(job_id)
            async with self._semaphore:
                admitted = True
                self.queued_jobs -= 1
                self.active_jobs += 1
                started = time.perf_counter()
                try:
                    if job_id in self._cancelled:
                        raise JobCancelledError(job_id, self._cancelled[job_id])
                    task = asyncio.ensure_future(func())
                    self._jobs[job_id] = task
                    result = await asyncio.wait_for(task, timeout=timeout)
                except asyncio.TimeoutError:
                    self.failed_jobs += 1
                    logger.error(f"Job {job_id} timed out after {timeout:.0f}s")
                    raise ProcessingTimeoutError(job_id, timeout) from None
                except asyncio.CancelledError:
                    reason = self._cancelled.get(job_id)
                    if reason is None or asyncio.current_task().cancelling():
                        raise
                    self.failed_jobs += 1
                    raise JobCancelledError(job_id, reason) from None
                except Exception:
                    self.failed_jobs += 1
                    raise
                finally:
                    self.active_jobs -= 1
                    self._timings.append((time.perf_counter() - started) * 1000)

                self.completed_jobs += 1
                return result
        finally:
            # Cancelled while still waiting for admission
            if not admitted:
                self.queued_jobs -= 1
            self._jobs.pop(job_id, None)
            self._cancelled.pop(job_id, None)

    def cancel(self, job_id: str, reason: str = "cancelled") -> bool:
        """
        Cancel a submitted job and release its slot.

        A running job's work is cancelled; a queued job fails on admission.

        Returns:
            False if the job is not submitted to this executor
        """
        if job_id not in self._jobs:
            return False

        self._cancelled[job_id] = reason
        task = self._jobs[job_id]
        if task is not None:
            task.cancel()
        logger.warning(f"Cancelling job {job_id}: {reason}")
        return True

    async def _await_admission(self, job_id: str) -> None:
        """Delay admission while memory stays above the high-water mark."""
        if not self.relieve_memory_pressure():
            return

        deadline = time.monotonic() + self.admission_wait_seconds
        while time.monotonic() < deadline:
            await asyncio.sleep(self.poll_interval)
            if self._sample_memory() < self.high_water_mark_mb:
                return

        logger.warning(
            f"Memory still above {self.high_water_mark_mb}MB after "
            f"{self.admission_wait_seconds}s, admitting job {job_id} anyway"
        )

    def relieve_memory_pressure(self) -> bool:
        """
        Run cleanup if memory is above the high-water mark.

        Returns:
            True if memory was above the mark
        """
        usage = self._sample_memory()
        if usage < self.high_water_mark_mb:
            return False

        logger.warning(f"Memory {usage:.0f}MB above {self.high_water_mark_mb}MB, running cleanup")
        for callback in self._cleanup_callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cleanup callback failed: {e}")
        gc.collect()
        self.cleanup_runs += 1
        return True

    def _sample_memory(self) -> float:
        usage = self.memory_probe()
        self.peak_memory_mb = max(self.peak_memory_mb, usage)
        return usage

    def get_metrics(self) -> dict[str, Any]:
        """Executor counters, timing and memory."""
        timings = list(self._timings)
        return {
            "max_concurrent_jobs": self.max_concurrent_jobs,
            "total_jobs": self.total_jobs,
            "active_jobs": self.active_jobs,
            "queued_jobs": self.queued_jobs,
            "completed_jobs": self.completed_jobs,
            "failed_jobs": self.failed_jobs,
            "average_processing_time_ms": round(sum(timings) / len(timings), 1) if timings else 0.0,
            "cleanup_runs": self.cleanup_runs,
            "memory_mb": round(self._sample_memory(), 1),
            "peak_memory_mb": round(self.peak_memory_mb, 1),
            "high_water_mark_mb": self.high_water_mark_mb,
        }
