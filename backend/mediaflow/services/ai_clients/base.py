"""
Shared pieces of the provider clients.

Capability plugins talk to providers through AnalysisClient: a chat call,
a single-image call, a liveness check and close(). Every client reports
failures as ProviderError so the registry can log one error shape and
move on to the next provider in the chain.
"""

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)


@dataclass
class ProviderEndpoint:
    """
    Where and how to reach a provider.

    Attributes:
        base_url: API root, without trailing slash
        timeout: Per-request timeout in seconds
        api_key: Bearer/API key, None for local services
        max_retries: Retries after the first attempt for transient errors
        retry_delay: Base delay in seconds between retries (doubles each time)
    """

    base_url: str
    timeout: float = 300.0
    api_key: str | None = None
    max_retries: int = 3
    retry_delay: float = 1.0

    def __post_init__(self):
        self.base_url = self.base_url.rstrip("/")


@dataclass
class ChatUsage:
    """Token counts for one model call. Zeros when the provider does not report them."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@runtime_checkable
class AnalysisClient(Protocol):
    """Client a vision or text plugin drives."""

    async def chat(
        self,
        messages: list[dict],
        model: str | None = None,
        temperature: float = 0.7,
        num_predict: int | None = None,
    ) -> tuple[str, ChatUsage]:
        """Completion over role/content messages; a leading system message is the system prompt."""
        ...

    async def analyze_image(
        self,
        image: bytes,
        prompt: str,
        mime_type: str = "image/jpeg",
        model: str | None = None,
        num_predict: int | None = None,
    ) -> tuple[str, ChatUsage]:
        """Ask the model one question about one image."""
        ...

    async def check_health(self) -> bool:
        ...

    async def close(self) -> None:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════


class ProviderError(Exception):
    """
    A provider call failed.

    Attributes:
        provider: Provider name (anthropic, ollama, whisper, openai)
        model: Model involved, if any
        status_code: HTTP status for rejected requests
    """

    def __init__(
        self,
        provider: str,
        message: str,
        model: str | None = None,
        status_code: int | None = None,
    ):
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        detail = f"{self.provider}: {self.message}"
        if self.model:
            detail += f" (model {self.model})"
        return detail


class ProviderTimeoutError(ProviderError):
    """Request exceeded its timeout."""


class ProviderUnavailableError(ProviderError):
    """Provider could not be reached."""


TRANSIENT_ERRORS = (ProviderTimeoutError, ProviderUnavailableError)


MAX_RETRY_DELAY_SECONDS = 30.0


def transient_retry(endpoint: ProviderEndpoint) -> AsyncRetrying:
    """
    Retry policy of an endpoint for the transient provider errors.

    Example:
        result = await transient_retry(self.endpoint)(self._post, path, body)
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max(0, endpoint.max_retries) + 1),
        wait=wait_exponential(multiplier=endpoint.retry_delay, max=MAX_RETRY_DELAY_SECONDS),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )


def provider_error_from_httpx(provider: str, error: httpx.HTTPError, model: str | None = None) -> ProviderError:
    """Map an httpx failure to the matching ProviderError."""
    if isinstance(error, httpx.TimeoutException):
        return ProviderTimeoutError(provider, "request timed out", model=model)
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        logger.debug(f"{provider} rejected request: {status} {error.response.text[:200]}")
        return ProviderError(provider, f"HTTP {status}", model=model, status_code=status)
    return ProviderUnavailableError(provider, f"unreachable ({type(error).__name__})", model=model)


class ProviderClient:
    """Base for clients owning a network session; usable as an async context manager."""

    provider = "provider"

    def __init__(self, endpoint: ProviderEndpoint):
        self.endpoint = endpoint

    async def close(self) -> None:
        raise NotImplementedError

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
