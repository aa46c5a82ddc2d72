"""
Logging setup for mediaflow.

Environment (via Settings):
- LOG_LEVEL: root level (default INFO)
- LOG_FORMAT: "structured" (default) or "simple"
- LOG_LEVEL_<GROUP>: level for one logger group, e.g. LOG_LEVEL_PLUGINS=DEBUG

Records emitted while a job runs carry its id, so interleaved lines
of concurrent jobs stay attributable.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from mediaflow.config import Settings

# Settings suffix -> logger group
LOGGER_GROUPS = {
    "ai_clients": "mediaflow.services.ai_clients",
    "plugins": "mediaflow.services.plugins",
    "pipeline": "mediaflow.services.pipeline",
    "processors": "mediaflow.services.processors",
    "api": "mediaflow.api",
}

QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "PIL", "uvicorn.access")

_current_job: ContextVar[str | None] = ContextVar("mediaflow_job_id", default=None)


@contextmanager
def job_log_context(job_id: str) -> Iterator[None]:
    """Tag log records produced inside the block (and tasks it spawns) with job_id."""
    token = _current_job.set(job_id)
    try:
        yield
    finally:
        _current_job.reset(token)


class JobContextFilter(logging.Filter):
    """Adds record.job_id ("-" outside a job)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = _current_job.get() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """
    One line per record: timestamp | level | logger | job | message

    Logger names are shortened to their path below mediaflow.services
    (e.g. "pipeline.orchestrator").
    """

    def format(self, record: logging.LogRecord) -> str:
        name = record.name
        for prefix in ("mediaflow.services.", "mediaflow."):
            if name.startswith(prefix):
                name = name[len(prefix):]
                break

        line = (
            f"{self.formatTime(record, '%Y-%m-%d %H:%M:%S')} | "
            f"{record.levelname:8} | "
            f"{name:30} | "
            f"{getattr(record, 'job_id', '-'):17} | "
            f"{record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(settings: "Settings") -> None:
    """Install a stdout handler on the root logger and apply group levels."""
    root_level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(root_level, int):
        root_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(JobContextFilter())
    if settings.log_format == "structured":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - [%(job_id)s] %(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(root_level)
    root.addHandler(handler)

    for group, logger_name in LOGGER_GROUPS.items():
        level = getattr(settings, f"log_level_{group}", None)
        if level:
            logging.getLogger(logger_name).setLevel(level.upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
