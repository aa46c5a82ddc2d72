"""
Plugin abstraction for capability providers.

A plugin wraps one provider (Claude, Ollama, Whisper, ...) for one
capability category. Each plugin declares:
- A unique name, its category and originating provider
- A priority (lower runs first when no explicit fallback chain exists)
- Required environment variables (credentials, service URLs)
- initialize(): build an authenticated client
- execute(): perform the operation with that client
- test(): cheap liveness check run once at startup

Example:
    class EchoOcrPlugin(BasePlugin):
        name = "echo_ocr"
        category = CapabilityCategory.OCR
        provider = "echo"
        dependencies = ["ECHO_TOKEN"]

        async def initialize(self) -> EchoClient:
            return EchoClient(os.environ["ECHO_TOKEN"])

        async def execute(self, client, input, options):
            return await client.read_text(input)

        async def test(self, client) -> bool:
            return await client.ping()

    registry.register(EchoOcrPlugin())
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any


class CapabilityCategory(str, Enum):
    """Class of analysis function that interchangeable providers satisfy."""
    TRANSCRIPTION = "transcription"
    OBJECT_DETECTION = "object_detection"
    OCR = "ocr"
    IMAGE_ANALYSIS = "image_analysis"
    SENTIMENT = "sentiment"
    TAGGING = "tagging"


@dataclass(frozen=True)
class RetrySettings:
    """Transient-error retries applied by provider clients (base.retry_attempts, base.retry_delay_ms)."""

    retries: int = 3
    delay_seconds: float = 1.0

    @classmethod
    def from_config(cls, config) -> "RetrySettings":
        return cls(
            retries=int(config.get_config("base.retry_attempts", 3)),
            delay_seconds=config.get_config("base.retry_delay_ms", 1000) / 1000,
        )


class PluginError(Exception):
    """Plugin could not produce a usable result.

    Attributes:
        plugin_name: Name of the plugin that failed
        message: Error description
    """

    def __init__(self, plugin_name: str, message: str):
        self.plugin_name = plugin_name
        self.message = message
        super().__init__(f"[{plugin_name}] {message}")


class BasePlugin(ABC):
    """Abstract base class for capability plugins.

    Subclasses must set name/category/provider and implement
    initialize(), execute() and test(). cleanup() closes the client by
    default.

    Plugins hold no enabled/disabled state: the registry owns that.
    """

    name: str
    category: str
    provider: str
    priority: int = 100
    dependencies: list[str] = []
    capabilities: list[str] = []
    supported_formats: list[str] = []

    @abstractmethod
    async def initialize(self) -> Any:
        """Construct and authenticate the provider client.

        Returns:
            Client passed to execute()/test()/cleanup()
        """

    @abstractmethod
    async def execute(self, client: Any, input: Any, options: dict[str, Any]) -> Any:
        """Run the capability.

        Args:
            client: Client returned by initialize()
            input: Category-specific input (media bytes or text)
            options: Category-specific options (language, mime_type, ...)

        Returns:
            Category-specific result

        Raises:
            Exception: Any failure; the registry moves on to the next plugin
        """

    @abstractmethod
    async def test(self, client: Any) -> bool:
        """Cheap liveness check.

        Returns:
            True if the provider is usable
        """

    async def cleanup(self, client: Any) -> None:
        """Release the client."""
        close = getattr(client, "close", None)
        if close is not None:
            await close()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} ({self.category}/{self.provider})>"
