"""
Speech-to-text client for OpenAI-compatible transcription APIs.

Talks to POST /v1/audio/transcriptions with response_format=verbose_json,
either on a self-hosted Whisper service (no key, GET /health) or on the
OpenAI API (bearer key, GET /v1/models as the liveness check).
"""

import logging
import time

import httpx

from mediaflow.services.ai_clients.base import (
    ProviderClient,
    ProviderEndpoint,
    provider_error_from_httpx,
    transient_retry,
)

logger = logging.getLogger(__name__)

TRANSCRIPTION_TIMEOUT_SECONDS = 7200.0


class WhisperClient(ProviderClient):
    """
    Transcription client.

    Example:
        endpoint = ProviderEndpoint("http://whisper:9000")
        async with WhisperClient(endpoint) as client:
            result = await client.transcribe(audio, "talk.mp3")
            print(result["text"], len(result["segments"]))
    """

    def __init__(
        self,
        endpoint: ProviderEndpoint,
        model: str | None = None,
        default_language: str | None = None,
        provider: str = "whisper",
    ):
        super().__init__(endpoint)
        self.model = model
        self.default_language = default_language
        self.provider = provider
        headers = {"Authorization": f"Bearer {endpoint.api_key}"} if endpoint.api_key else None
        self.http_client = httpx.AsyncClient(base_url=endpoint.base_url, headers=headers, timeout=None)

    async def close(self) -> None:
        await self.http_client.aclose()

    async def check_health(self) -> bool:
        path = "/v1/models" if self.endpoint.api_key else "/health"
        try:
            response = await self.http_client.get(path, timeout=5.0)
        except httpx.HTTPError as e:
            logger.debug(f"{self.provider} not available: {e}")
            return False
        if response.status_code != 200:
            logger.debug(f"{self.provider} {path} answered {response.status_code}")
        return response.status_code == 200

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "media",
        language: str | None = None,
        mime_type: str = "application/octet-stream",
    ) -> dict:
        """
        Transcribe an audio or video buffer.

        Args:
            audio: Raw media bytes
            filename: Name the server uses to guess the container
            language: Language code; client default, else auto-detect
            mime_type: Upload content type

        Returns:
            verbose_json payload: text, language, duration, segments

        Raises:
            ProviderError: The request failed (timeouts and connection errors are retried first)
        """
        form = {"response_format": "verbose_json"}
        if language or self.default_language:
            form["language"] = language or self.default_language
        if self.model:
            form["model"] = self.model

        logger.info(f"Transcribing {filename} via {self.provider} ({len(audio) / 1024 / 1024:.1f} MB)")
        started = time.monotonic()
        result = await transient_retry(self.endpoint)(self._post_audio, audio, filename, mime_type, form)
        logger.info(
            f"Transcribed {filename}: {len(result.get('segments') or [])} segments "
            f"in {time.monotonic() - started:.1f}s"
        )
        return result

    async def _post_audio(self, audio: bytes, filename: str, mime_type: str, form: dict) -> dict:
        try:
            response = await self.http_client.post(
                "/v1/audio/transcriptions",
                files={"file": (filename, audio, mime_type)},
                data=form,
                timeout=self.endpoint.timeout or TRANSCRIPTION_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            error = provider_error_from_httpx(self.provider, e, self.model)
            logger.error(f"Transcription of {filename} failed: {error}")
            raise error from e
        return response.json()
