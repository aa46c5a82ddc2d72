"""Tests for the HTTP and WebSocket API."""

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from starlette.websockets import WebSocketDisconnect

from mediaflow import __version__
from mediaflow.main import app
from mediaflow.models.schemas import MediaType, StageDefinition

from tests.fakes import healthy_image_plugins


@pytest.fixture
def orchestrator(make_orchestrator):
    orchestrator = make_orchestrator(healthy_image_plugins())
    app.state.orchestrator = orchestrator
    yield orchestrator
    del app.state.orchestrator


@pytest_asyncio.fixture
async def client(orchestrator):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__, "ready": False}


@pytest.mark.asyncio
async def test_process_image(client, jpeg_bytes):
    response = await client.post(
        "/api/process",
        params={"filename": "room.jpg"},
        content=jpeg_bytes,
        headers={"content-type": "image/jpeg"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["media_type"] == "image"
    assert body["results"]["ocr_text"] == ""
    assert body["results"]["tags"] == ["lamp", "interior"]
    assert "transcription" not in body["results"]

    status = await client.get(f"/api/jobs/{body['job_id']}")
    assert status.status_code == 200
    assert status.json()["status"] == "completed"
    assert status.json()["from_cache"] is True


@pytest.mark.asyncio
async def test_process_undetectable_is_bad_request(client):
    response = await client.post("/api/process", params={"filename": "notes.txt"}, content=b"hello")

    assert response.status_code == 400
    assert "Unable to detect media type" in response.json()["detail"]


@pytest.mark.asyncio
async def test_process_invalid_image_is_unprocessable(client):
    response = await client.post("/api/process", params={"type": "image"}, content=b"")

    assert response.status_code == 422
    assert "Empty media buffer" in response.json()["detail"]


@pytest.mark.asyncio
async def test_background_job_and_listing(client, jpeg_bytes):
    accepted = await client.post("/api/jobs", params={"filename": "room.jpg"}, content=jpeg_bytes)

    assert accepted.status_code == 202
    job_id = accepted.json()["job_id"]

    # Background tasks finish before the response is returned to the ASGI client
    status = await client.get(f"/api/jobs/{job_id}")
    assert status.json()["status"] == "completed"

    listed = await client.get("/api/jobs", params={"status": "completed"})
    assert [job["job_id"] for job in listed.json()] == [job_id]


@pytest.mark.asyncio
async def test_failed_background_job_reported(client):
    accepted = await client.post("/api/jobs", params={"type": "image"}, content=b"")
    job_id = accepted.json()["job_id"]

    status = await client.get(f"/api/jobs/{job_id}")

    assert status.status_code == 200
    assert status.json()["status"] == "failed"
    assert "Empty media buffer" in status.json()["error"]


@pytest.mark.asyncio
async def test_unknown_job_is_not_found(client):
    response = await client.get("/api/jobs/job_missing")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_system_status(client):
    response = await client.get("/api/system/status")

    assert response.status_code == 200
    body = response.json()
    assert body["orchestrator"]["initialized"] is False
    assert set(body["processors"]) == {"video", "audio", "image"}
    assert "max_concurrent_jobs" in body["executor"]


@pytest.mark.asyncio
async def test_plugin_toggle(client, orchestrator):
    response = await client.post("/api/plugins/fake_ocr/enabled", json={"enabled": False})

    assert response.status_code == 200
    assert response.json()["enabled"] is False
    assert not orchestrator.registry.is_feature_available("ocr")

    missing = await client.post("/api/plugins/ghost/enabled", json={"enabled": True})
    assert missing.status_code == 404


def test_websocket_unknown_job_closes(orchestrator):
    client = TestClient(app)

    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/ws/job_missing") as ws:
            ws.receive_json()

    assert exc_info.value.code == 4004


def test_websocket_snapshot_of_finished_job(orchestrator):
    tracker = orchestrator.tracker
    tracker.create_job("job_done", MediaType.IMAGE, [StageDefinition(name="validation", label="Validating")])
    tracker.start_stage("job_done", "validation")
    tracker.complete_stage("job_done", "validation")
    client = TestClient(app)

    with client.websocket_connect("/ws/job_done") as ws:
        message = ws.receive_json()

    assert message["type"] == "snapshot"
    assert message["job"]["status"] == "completed"
    assert message["job"]["stages"][0]["name"] == "validation"
    assert "metadata" not in message["job"]


@pytest.mark.asyncio
async def test_undetectable_background_job_is_reported_failed(client):
    accepted = await client.post("/api/jobs", content=b"\x00\x01\x02\x03" * 10)
    job_id = accepted.json()["job_id"]

    status = await client.get(f"/api/jobs/{job_id}")

    assert status.status_code == 200
    assert status.json()["status"] == "failed"
    assert "Unable to detect media type" in status.json()["error"]
    listed = await client.get("/api/jobs", params={"status": "failed"})
    assert [job["job_id"] for job in listed.json()] == [job_id]


@pytest.mark.asyncio
async def test_accepted_job_is_known_before_it_starts(client, orchestrator):
    job_id = orchestrator.reserve_job()

    assert orchestrator.is_job_pending(job_id)
    status = await client.get(f"/api/jobs/{job_id}")
    assert status.status_code == 200
    assert status.json()["status"] == "processing"
    assert status.json()["progress"] == 0


def test_websocket_accepts_job_that_has_not_started(orchestrator):
    job_id = orchestrator.reserve_job()
    client = TestClient(app)

    def start_and_fail():
        stages = [StageDefinition(name="validation", label="Validating")]
        orchestrator.tracker.create_job(job_id, MediaType.IMAGE, stages)
        orchestrator.tracker.fail_job(job_id, "Empty media buffer")

    with client.websocket_connect(f"/ws/{job_id}") as ws:
        snapshot = ws.receive_json()
        # Tracker events must be emitted on the server's event loop
        ws.portal.call(start_and_fail)
        types = [ws.receive_json()["type"]]
        while types[-1] != "job_failed":
            types.append(ws.receive_json()["type"])

    assert snapshot == {"type": "snapshot", "job": None}
    assert types[0] == "job_created"
