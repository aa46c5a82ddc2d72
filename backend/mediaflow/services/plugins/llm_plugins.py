"""
LLM-backed capability plugins (Claude cloud, Ollama local).

One plugin instance serves one AnalysisTask. Vision tasks send the image
to the model, text tasks send a system + user chat. Claude is the
primary provider (priority 10), local Ollama the fallback (priority 20).
"""

import asyncio
import logging
import os
from typing import Any

from mediaflow.config import Settings
from mediaflow.services.ai_clients import (
    ANTHROPIC_API_URL,
    AnalysisClient,
    ClaudeClient,
    OllamaClient,
    ProviderEndpoint,
)
from mediaflow.utils.image_utils import to_jpeg

from .base import BasePlugin, RetrySettings
from .tasks import VISION_TASKS, AnalysisTask

logger = logging.getLogger(__name__)

# Longest image side sent to vision models
MAX_VISION_SIDE = 1568
VISION_CATEGORIES = frozenset(task.category for task in VISION_TASKS)


class LLMTaskPlugin(BasePlugin):
    """Base for plugins that answer an AnalysisTask with an LLM client."""

    name_prefix: str

    def __init__(self, settings: Settings, task: AnalysisTask, retry: RetrySettings | None = None):
        """
        Args:
            settings: Application settings (models, URLs, timeouts)
            task: Task this plugin serves
            retry: Transient-error retries for the client
        """
        self.settings = settings
        self.task = task
        self.retry = retry or RetrySettings()
        self.name = f"{self.name_prefix}_{task.suffix}"
        self.category = task.category
        self.capabilities = [task.suffix]
        self.is_vision = task.category in VISION_CATEGORIES
        if self.is_vision:
            self.supported_formats = ["image/jpeg", "image/png", "image/gif", "image/webp"]
        else:
            self.supported_formats = ["text/plain"]

    async def test(self, client: AnalysisClient) -> bool:
        return await client.check_health()

    async def execute(self, client: AnalysisClient, input: Any, options: dict[str, Any]) -> Any:
        max_tokens = options.get("max_tokens", self.task.max_tokens)

        if self.is_vision:
            image = await asyncio.to_thread(to_jpeg, input, (MAX_VISION_SIDE, MAX_VISION_SIDE))
            reply, usage = await client.analyze_image(
                image,
                options.get("prompt", self.task.prompt),
                mime_type="image/jpeg",
                num_predict=max_tokens,
            )
        else:
            messages = [
                {"role": "system", "content": self.task.prompt},
                {"role": "user", "content": str(input)},
            ]
            reply, usage = await client.chat(messages, temperature=0.2, num_predict=max_tokens)

        logger.debug(f"{self.name}: {len(reply)} chars, {usage.total_tokens} tokens")
        return self.task.parse(reply, self.name)


class ClaudeTaskPlugin(LLMTaskPlugin):
    """Task served by Anthropic Claude."""

    name_prefix = "claude"
    provider = "anthropic"
    priority = 10
    dependencies = ["ANTHROPIC_API_KEY"]

    async def initialize(self) -> ClaudeClient:
        endpoint = ProviderEndpoint(
            ANTHROPIC_API_URL,
            api_key=os.getenv("ANTHROPIC_API_KEY"),
            timeout=self.settings.llm_timeout,
            max_retries=self.retry.retries,
        )
        return ClaudeClient(endpoint, default_model=self.settings.claude_model)


class OllamaTaskPlugin(LLMTaskPlugin):
    """Task served by a local Ollama server."""

    name_prefix = "ollama"
    provider = "ollama"
    priority = 20
    dependencies = ["OLLAMA_URL"]

    async def initialize(self) -> OllamaClient:
        return OllamaClient.from_settings(
            self.settings,
            max_retries=self.retry.retries,
            retry_delay=self.retry.delay_seconds,
        )
