"""
WebSocket handler for real-time progress updates.

Streams the tracker's lifecycle events of one job.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from mediaflow.services.pipeline import MediaOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

HEARTBEAT_SECONDS = 30.0
TERMINAL_TYPES = ("job_completed", "job_failed")


@router.websocket("/ws/{job_id}")
async def job_progress_websocket(websocket: WebSocket, job_id: str) -> None:
    """
    WebSocket endpoint for real-time job progress.

    Sends a "snapshot" message with the current job state (job is null
    while an accepted job has not started yet), then every
    lifecycle event ({"type": "stage_started", ...}) until the job
    completes or fails. A heartbeat is sent after 30s of silence.

    Example client (Python):
        async with websockets.connect(f"ws://localhost:8000/ws/{job_id}") as ws:
            async for message in ws:
                event = json.loads(message)
                print(event["type"], event.get("overall_progress"))
    """
    orchestrator: MediaOrchestrator = websocket.app.state.orchestrator
    broadcaster = orchestrator.broadcaster

    # Subscribe before reading state so no event is lost in between
    queue = broadcaster.subscribe(job_id)
    try:
        job = orchestrator.tracker.get_job(job_id)
        if job is None and not orchestrator.is_job_pending(job_id):
            await websocket.close(code=4004, reason=f"Job not found: {job_id}")
            return

        await websocket.accept()
        logger.info(f"WebSocket connected for job {job_id}")

        await websocket.send_json({
            "type": "snapshot",
            "job": job.model_dump(mode="json", exclude={"metadata"}) if job else None,
        })
        if job is not None and job.is_terminal:
            await websocket.close()
            return

        while True:
            try:
                message = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "heartbeat"})
                continue

            await websocket.send_json(message)
            if message.get("type") in TERMINAL_TYPES:
                break

        await websocket.close()

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for job {job_id}")
    finally:
        broadcaster.unsubscribe(job_id, queue)
