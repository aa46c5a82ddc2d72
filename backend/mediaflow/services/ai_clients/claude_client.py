"""
Anthropic Claude client.

Chat and image questions both go through the messages API; images are
attached as base64 content blocks ahead of the prompt.
"""

import base64
import logging

from anthropic import APIConnectionError, APIStatusError, APITimeoutError, AsyncAnthropic

from mediaflow.services.ai_clients.base import (
    ChatUsage,
    ProviderClient,
    ProviderEndpoint,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)

ANTHROPIC_API_URL = "https://api.anthropic.com"
DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5"
DEFAULT_MAX_TOKENS = 1024


class ClaudeClient(ProviderClient):
    """
    Claude over AsyncAnthropic.

    The SDK performs its own retries (endpoint.max_retries), so calls are
    not wrapped in transient_retry.

    Example:
        endpoint = ProviderEndpoint(ANTHROPIC_API_URL, api_key=key, timeout=120)
        async with ClaudeClient(endpoint) as client:
            text, usage = await client.analyze_image(jpeg, "List the objects")
    """

    provider = "anthropic"

    def __init__(self, endpoint: ProviderEndpoint, default_model: str = DEFAULT_CLAUDE_MODEL):
        if not endpoint.api_key:
            raise ValueError("ClaudeClient needs an API key (ANTHROPIC_API_KEY)")
        super().__init__(endpoint)
        self.default_model = default_model
        self.client = AsyncAnthropic(
            api_key=endpoint.api_key,
            timeout=endpoint.timeout,
            max_retries=endpoint.max_retries,
        )

    async def close(self) -> None:
        await self.client.close()

    async def chat(
        self,
        messages: list[dict],
        model: str | None = None,
        temperature: float = 0.7,
        num_predict: int | None = None,
    ) -> tuple[str, ChatUsage]:
        system = next((m["content"] for m in messages if m["role"] == "system"), None)
        turns = [{"role": m["role"], "content": m["content"]} for m in messages if m["role"] != "system"]
        return await self._create(turns, system, model, temperature, num_predict)

    async def analyze_image(
        self,
        image: bytes,
        prompt: str,
        mime_type: str = "image/jpeg",
        model: str | None = None,
        num_predict: int | None = None,
    ) -> tuple[str, ChatUsage]:
        source = {
            "type": "base64",
            "media_type": mime_type,
            "data": base64.b64encode(image).decode("ascii"),
        }
        turn = {
            "role": "user",
            "content": [{"type": "image", "source": source}, {"type": "text", "text": prompt}],
        }
        return await self._create([turn], None, model, 0.0, num_predict)

    async def check_health(self) -> bool:
        """
        One-token request with the configured key.

        Raises:
            ProviderError: The key was rejected (401); retrying other calls is pointless
        """
        try:
            await self.client.messages.create(
                model=self.default_model,
                max_tokens=1,
                messages=[{"role": "user", "content": "ping"}],
            )
        except APIStatusError as e:
            if e.status_code == 401:
                raise ProviderError(self.provider, "API key rejected", status_code=401) from e
            logger.warning(f"Claude health check answered {e.status_code}")
            return False
        except (APIConnectionError, APITimeoutError) as e:
            logger.warning(f"Claude not reachable: {e}")
            return False
        return True

    async def _create(
        self,
        messages: list[dict],
        system: str | None,
        model: str | None,
        temperature: float,
        num_predict: int | None,
    ) -> tuple[str, ChatUsage]:
        model = model or self.default_model
        request = {
            "model": model,
            "max_tokens": num_predict or DEFAULT_MAX_TOKENS,
            "temperature": temperature,
            "messages": messages,
        }
        if system:
            request["system"] = system

        try:
            response = await self.client.messages.create(**request)
        except APITimeoutError as e:
            raise ProviderTimeoutError(self.provider, "request timed out", model=model) from e
        except APIConnectionError as e:
            raise ProviderUnavailableError(self.provider, f"unreachable: {e}", model=model) from e
        except APIStatusError as e:
            raise ProviderError(self.provider, e.message, model=model, status_code=e.status_code) from e

        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        usage = ChatUsage(response.usage.input_tokens, response.usage.output_tokens)
        logger.debug(f"Claude {model}: {len(text)} chars, {usage.input_tokens}/{usage.output_tokens} tokens")
        return text, usage
