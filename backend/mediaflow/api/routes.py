"""
HTTP API routes for media processing.

Provides endpoints for:
- Processing a payload synchronously or as a background job
- Querying job status and listing tracked jobs
- System introspection and plugin administration
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from mediaflow.models.schemas import (
    JobAccepted,
    JobStatus,
    JobStatusResponse,
    JobSummary,
    PluginInfo,
    PluginToggleRequest,
    ProcessContentResponse,
    SystemStatus,
)
from mediaflow.services.pipeline import (
    MediaOrchestrator,
    MediaTypeError,
    OrchestratorError,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["processing"])


def get_orchestrator(request: Request) -> MediaOrchestrator:
    """Orchestrator built by the application lifespan."""
    return request.app.state.orchestrator


async def _payload(request: Request, filename: str | None, media_type: str | None) -> tuple[bytes, dict]:
    buffer = await request.body()
    metadata: dict = {}
    if filename:
        metadata["filename"] = filename
    if media_type:
        metadata["type"] = media_type
    content_type = request.headers.get("content-type")
    if content_type and content_type != "application/octet-stream":
        metadata["mime_type"] = content_type.split(";", 1)[0].strip()
    return buffer, metadata


async def run_processing(
    orchestrator: MediaOrchestrator,
    job_id: str,
    buffer: bytes,
    metadata: dict,
) -> None:
    """
    Background task running one job.

    Failures are already recorded in the tracker; they are only logged here.
    """
    try:
        await orchestrator.process_content(buffer, metadata, job_id=job_id)
    except OrchestratorError as e:
        logger.warning(f"Background job {job_id} failed: {e.message}")


@router.post("/process", response_model=ProcessContentResponse, response_model_exclude_none=True)
async def process_content(
    request: Request,
    filename: str | None = None,
    type: str | None = None,
    orchestrator: MediaOrchestrator = Depends(get_orchestrator),
) -> ProcessContentResponse:
    """
    Process the request body synchronously.

    Args:
        filename: Original file name (extension hint)
        type: Explicit media type (video, audio, image)

    Returns:
        ProcessContentResponse with results and warnings

    Raises:
        400: Media type invalid or undetectable
        422: Processing failed
    """
    buffer, metadata = await _payload(request, filename, type)

    try:
        return await orchestrator.process_content(buffer, metadata)
    except OrchestratorError as e:
        status_code = 400 if isinstance(e.cause, MediaTypeError) else 422
        raise HTTPException(status_code=status_code, detail=str(e))


@router.post("/jobs", response_model=JobAccepted, status_code=202)
async def submit_job(
    request: Request,
    background_tasks: BackgroundTasks,
    filename: str | None = None,
    type: str | None = None,
    orchestrator: MediaOrchestrator = Depends(get_orchestrator),
) -> JobAccepted:
    """
    Schedule processing in the background.

    Use GET /api/jobs/{job_id} or WebSocket /ws/{job_id} to follow progress.
    """
    buffer, metadata = await _payload(request, filename, type)
    # Reserved before answering so status and WebSocket lookups find the job
    job_id = orchestrator.reserve_job()

    background_tasks.add_task(run_processing, orchestrator, job_id, buffer, metadata)

    logger.info(f"Scheduled job {job_id} ({len(buffer)} bytes, {filename or 'unnamed'})")
    return JobAccepted(job_id=job_id)


@router.get("/jobs", response_model=list[JobSummary])
async def list_jobs(
    status: JobStatus | None = None,
    orchestrator: MediaOrchestrator = Depends(get_orchestrator),
) -> list[JobSummary]:
    """List tracked jobs, optionally filtered by status."""
    return orchestrator.tracker.list_jobs(status)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse, response_model_exclude_none=True)
async def get_job_status(
    job_id: str,
    orchestrator: MediaOrchestrator = Depends(get_orchestrator),
) -> JobStatusResponse:
    """
    Get job status: live for active jobs, cached for completed ones.

    Raises:
        404: Job not found (or its result expired)
    """
    status = orchestrator.get_job_status(job_id)
    if status is not None:
        return status

    # Failed jobs are never cached; report them while the tracker keeps them
    summary = orchestrator.tracker.get_job_summary(job_id)
    if summary is not None and summary.status == JobStatus.FAILED:
        return JobStatusResponse(
            id=job_id,
            status=summary.status,
            media_type=summary.media_type,
            processing_time=summary.duration_ms,
            progress=summary.progress,
            error=summary.error,
        )

    raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")


@router.get("/system/status", response_model=SystemStatus)
async def system_status(
    orchestrator: MediaOrchestrator = Depends(get_orchestrator),
) -> SystemStatus:
    """Orchestrator metrics, executor state and provider availability."""
    return orchestrator.get_system_status()


@router.post("/plugins/{name}/enabled", response_model=PluginInfo)
async def set_plugin_enabled(
    name: str,
    body: PluginToggleRequest,
    orchestrator: MediaOrchestrator = Depends(get_orchestrator),
) -> PluginInfo:
    """
    Enable or disable a plugin at runtime.

    Raises:
        404: Unknown plugin
    """
    try:
        return orchestrator.registry.set_enabled(name, body.enabled)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Plugin not found: {name}")
