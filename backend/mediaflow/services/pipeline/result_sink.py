"""
Result sinks: persistence collaborators receiving finished results.

The orchestrator performs no storage itself; sinks are handed every
completed response and their failures never fail a job.
"""

import asyncio
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from mediaflow.models.schemas import ProcessContentResponse

logger = logging.getLogger(__name__)


@runtime_checkable
class ResultSink(Protocol):
    """Receives completed processing results."""

    async def store(self, response: ProcessContentResponse) -> None:
        ...


class JsonFileResultSink:
    """
    Writes each result to {results_dir}/{job_id}.json.

    Example:
        sink = JsonFileResultSink(Path("/data/results"))
        await sink.store(response)
    """

    def __init__(self, results_dir: Path):
        self.results_dir = Path(results_dir)

    async def store(self, response: ProcessContentResponse) -> None:
        path = self.results_dir / f"{response.job_id}.json"
        payload = response.model_dump_json(indent=2, exclude_none=True)
        await asyncio.to_thread(self._write, path, payload)
        logger.debug(f"Stored result {path}")

    def _write(self, path: Path, payload: str) -> None:
        self.results_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(payload, encoding="utf-8")
