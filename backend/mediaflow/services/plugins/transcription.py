"""
Transcription plugins.

- whisper_local: self-hosted Whisper ASR service (WHISPER_URL)
- openai_whisper: OpenAI transcription API (OPENAI_API_KEY)

Both speak the OpenAI-compatible verbose_json format, normalized here to
{"text", "language", "duration", "segments": [{start, end, text, speaker}]}.
"""

import logging
import os
from typing import Any

from mediaflow.config import Settings
from mediaflow.services.ai_clients import ProviderEndpoint, WhisperClient
from mediaflow.services.ai_clients.whisper_client import TRANSCRIPTION_TIMEOUT_SECONDS

from .base import BasePlugin, CapabilityCategory, PluginError, RetrySettings

logger = logging.getLogger(__name__)

AUDIO_FORMATS = ["mp3", "wav", "m4a", "flac", "ogg", "webm", "mp4"]


def normalize_transcription(raw: dict, plugin_name: str) -> dict[str, Any]:
    """Normalize a verbose_json transcription result.

    Raises:
        PluginError: If the reply has neither text nor segments
    """
    segments = []
    for segment in raw.get("segments") or []:
        text = str(segment.get("text", "")).strip()
        if not text:
            continue
        segments.append({
            "start": float(segment.get("start", 0.0)),
            "end": float(segment.get("end", 0.0)),
            "text": text,
            "speaker": segment.get("speaker"),
        })

    text = str(raw.get("text") or "").strip() or " ".join(s["text"] for s in segments)
    if not text and not segments:
        raise PluginError(plugin_name, "Transcription is empty")

    return {
        "text": text,
        "language": raw.get("language"),
        "duration": raw.get("duration"),
        "segments": segments,
    }


class _WhisperPlugin(BasePlugin):
    category = CapabilityCategory.TRANSCRIPTION
    capabilities = ["speech_to_text", "timestamps"]
    supported_formats = AUDIO_FORMATS

    def __init__(self, settings: Settings, retry: RetrySettings | None = None):
        self.settings = settings
        self.retry = retry or RetrySettings()

    async def test(self, client: WhisperClient) -> bool:
        return await client.check_health()

    async def execute(self, client: WhisperClient, input: bytes, options: dict[str, Any]) -> dict:
        raw = await client.transcribe(
            input,
            filename=options.get("filename") or "media",
            language=options.get("language"),
            mime_type=options.get("mime_type") or "application/octet-stream",
        )
        return normalize_transcription(raw, self.name)


class WhisperLocalPlugin(_WhisperPlugin):
    """Self-hosted Whisper service."""

    name = "whisper_local"
    provider = "whisper"
    priority = 10
    dependencies = ["WHISPER_URL"]

    async def initialize(self) -> WhisperClient:
        return WhisperClient(
            ProviderEndpoint(
                self.settings.whisper_url,
                timeout=TRANSCRIPTION_TIMEOUT_SECONDS,
                max_retries=self.retry.retries,
                retry_delay=self.retry.delay_seconds,
            ),
            model=self.settings.whisper_model,
            default_language=self.settings.whisper_language,
            provider=self.provider,
        )


class OpenAIWhisperPlugin(_WhisperPlugin):
    """OpenAI hosted transcription."""

    name = "openai_whisper"
    provider = "openai"
    priority = 20
    dependencies = ["OPENAI_API_KEY"]

    async def initialize(self) -> WhisperClient:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise PluginError(self.name, "OPENAI_API_KEY not set")
        return WhisperClient(
            ProviderEndpoint(
                self.settings.openai_url,
                timeout=TRANSCRIPTION_TIMEOUT_SECONDS,
                api_key=api_key,
                max_retries=self.retry.retries,
                retry_delay=self.retry.delay_seconds,
            ),
            model=self.settings.openai_transcription_model,
            default_language=self.settings.whisper_language,
            provider=self.provider,
        )
