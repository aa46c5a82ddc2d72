"""
Ollama client for a local model server.

Text chat uses the OpenAI-compatible /v1/chat/completions endpoint;
images go to the native /api/chat endpoint, which takes base64 images
for vision models such as llava. Ollama reports no token usage.
"""

import base64
import logging

import httpx

from mediaflow.config import Settings
from mediaflow.services.ai_clients.base import (
    ChatUsage,
    ProviderClient,
    ProviderEndpoint,
    provider_error_from_httpx,
    transient_retry,
)

logger = logging.getLogger(__name__)


class OllamaClient(ProviderClient):
    """Chat and vision calls against an Ollama server; transient errors are retried per endpoint."""

    provider = "ollama"

    def __init__(
        self,
        endpoint: ProviderEndpoint,
        text_model: str = "qwen2.5:14b",
        vision_model: str = "llava:13b",
    ):
        super().__init__(endpoint)
        self.text_model = text_model
        self.vision_model = vision_model
        # Timeouts are set per request
        self.http_client = httpx.AsyncClient(base_url=endpoint.base_url, timeout=None)

    @classmethod
    def from_settings(cls, settings: Settings, **endpoint_options) -> "OllamaClient":
        endpoint = ProviderEndpoint(settings.ollama_url, timeout=settings.llm_timeout, **endpoint_options)
        return cls(endpoint, settings.ollama_text_model, settings.ollama_vision_model)

    async def close(self) -> None:
        await self.http_client.aclose()

    async def check_health(self) -> bool:
        try:
            response = await self.http_client.get("/api/version", timeout=5.0)
        except httpx.HTTPError as e:
            logger.debug(f"Ollama not available: {e}")
            return False
        return response.status_code == 200

    async def chat(
        self,
        messages: list[dict],
        model: str | None = None,
        temperature: float = 0.7,
        num_predict: int | None = None,
    ) -> tuple[str, ChatUsage]:
        model = model or self.text_model
        body: dict = {"model": model, "messages": messages, "temperature": temperature}
        if num_predict is not None:
            body["max_tokens"] = num_predict

        result = await transient_retry(self.endpoint)(self._post, "/v1/chat/completions", body, model)
        return result["choices"][0]["message"]["content"], ChatUsage()

    async def analyze_image(
        self,
        image: bytes,
        prompt: str,
        mime_type: str = "image/jpeg",
        model: str | None = None,
        num_predict: int | None = None,
    ) -> tuple[str, ChatUsage]:
        model = model or self.vision_model
        options: dict = {"temperature": 0}
        if num_predict is not None:
            options["num_predict"] = num_predict
        body = {
            "model": model,
            "stream": False,
            "options": options,
            "messages": [{
                "role": "user",
                "content": prompt,
                "images": [base64.b64encode(image).decode("ascii")],
            }],
        }

        result = await transient_retry(self.endpoint)(self._post, "/api/chat", body, model)
        text = result.get("message", {}).get("content", "")
        if not text.strip():
            logger.warning(f"{model} returned an empty answer for a {len(image)} byte image")
        return text, ChatUsage()

    async def _post(self, path: str, body: dict, model: str) -> dict:
        try:
            response = await self.http_client.post(path, json=body, timeout=self.endpoint.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            error = provider_error_from_httpx(self.provider, e, model)
            logger.error(f"Ollama {path} failed: {error}")
            raise error from e
        return response.json()
