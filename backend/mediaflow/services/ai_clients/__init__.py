"""
Provider clients used by the capability plugins.

- ClaudeClient: Anthropic messages API (chat + vision)
- OllamaClient: local Ollama server (chat + vision models)
- WhisperClient: OpenAI-compatible transcription (self-hosted or OpenAI)
"""

from .base import (
    AnalysisClient,
    ChatUsage,
    ProviderEndpoint,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from .claude_client import ANTHROPIC_API_URL, ClaudeClient
from .ollama_client import OllamaClient
from .whisper_client import WhisperClient

__all__ = [
    "AnalysisClient",
    "ChatUsage",
    "ProviderEndpoint",
    "ProviderError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "ANTHROPIC_API_URL",
    "ClaudeClient",
    "OllamaClient",
    "WhisperClient",
]
