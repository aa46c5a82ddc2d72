"""Tests for provider clients: transient retries and error mapping."""

import httpx
import pytest

from mediaflow.config import ProcessingConfig
from mediaflow.services.ai_clients.base import (
    ProviderEndpoint,
    ProviderError,
    ProviderUnavailableError,
)
from mediaflow.services.ai_clients.ollama_client import OllamaClient
from mediaflow.services.ai_clients.whisper_client import WhisperClient
from mediaflow.services.plugins import OllamaTaskPlugin, RetrySettings, create_default_plugins
from mediaflow.services.plugins.tasks import TAGGING_TASK


def _endpoint(**kwargs) -> ProviderEndpoint:
    return ProviderEndpoint("http://provider.test", retry_delay=0, **kwargs)


async def _use_transport(client, handler) -> list[httpx.Request]:
    """Route a client's HTTP calls through handler; returns the request log."""
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    await client.http_client.aclose()
    client.http_client = httpx.AsyncClient(
        base_url=client.endpoint.base_url, transport=httpx.MockTransport(record),
    )
    return requests


def _refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


@pytest.mark.asyncio
async def test_unreachable_server_is_retried_then_reported():
    client = OllamaClient(_endpoint(max_retries=2))
    requests = await _use_transport(client, _refuse)

    with pytest.raises(ProviderUnavailableError, match="ollama: unreachable"):
        await client.chat([{"role": "user", "content": "hi"}])

    assert len(requests) == 3
    await client.close()


@pytest.mark.asyncio
async def test_zero_retries_makes_a_single_attempt():
    client = OllamaClient(_endpoint(max_retries=0))
    requests = await _use_transport(client, _refuse)

    with pytest.raises(ProviderUnavailableError):
        await client.analyze_image(b"\xff\xd8\xff", "What is shown?")

    assert len(requests) == 1
    await client.close()


@pytest.mark.asyncio
async def test_rejected_request_is_not_retried():
    client = OllamaClient(_endpoint(max_retries=3))
    requests = await _use_transport(client, lambda request: httpx.Response(400, json={"error": "bad model"}))

    with pytest.raises(ProviderError) as exc_info:
        await client.chat([{"role": "user", "content": "hi"}], model="ghost")

    assert exc_info.value.status_code == 400
    assert exc_info.value.model == "ghost"
    assert len(requests) == 1
    await client.close()


@pytest.mark.asyncio
async def test_transcription_recovers_from_one_dropped_connection():
    answers = iter([None, {"text": "hello", "language": "en", "segments": []}])

    def flaky(request: httpx.Request) -> httpx.Response:
        body = next(answers)
        if body is None:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json=body)

    client = WhisperClient(_endpoint(max_retries=1), model="large-v3")
    requests = await _use_transport(client, flaky)

    result = await client.transcribe(b"ID3" + b"\x00" * 64, "talk.mp3", language="en")

    assert result["text"] == "hello"
    assert len(requests) == 2
    assert requests[0].url.path == "/v1/audio/transcriptions"
    await client.close()


# ═══════════════════════════════════════════════════════════════════════════
# Retry configuration
# ═══════════════════════════════════════════════════════════════════════════


def test_retry_settings_read_base_section():
    config = ProcessingConfig(overrides={"base": {"retry_attempts": 1, "retry_delay_ms": 250}})

    assert RetrySettings.from_config(config) == RetrySettings(retries=1, delay_seconds=0.25)
    assert RetrySettings.from_config(ProcessingConfig()) == RetrySettings(retries=3, delay_seconds=1.0)


def test_default_plugins_share_configured_retries(settings):
    config = ProcessingConfig(overrides={"base": {"retry_attempts": 1, "retry_delay_ms": 0}})

    plugins = create_default_plugins(settings, config)

    assert plugins
    assert {plugin.retry for plugin in plugins} == {RetrySettings(retries=1, delay_seconds=0.0)}


@pytest.mark.asyncio
async def test_ollama_plugin_client_uses_configured_retries(settings):
    plugin = OllamaTaskPlugin(settings, TAGGING_TASK, RetrySettings(retries=5, delay_seconds=0.5))

    client = await plugin.initialize()

    assert (client.endpoint.max_retries, client.endpoint.retry_delay) == (5, 0.5)
    await client.close()
