"""
Capability plugins and the registry that coordinates them.

Example:
    from mediaflow.services.plugins import build_registry

    registry = build_registry(settings, processing_config)
    await registry.initialize_and_probe()
    outcome = await registry.try_execute("transcription", mp3_bytes, {"filename": "a.mp3"})
"""

from mediaflow.config import ProcessingConfig, Settings

from .base import BasePlugin, CapabilityCategory, PluginError, RetrySettings
from .llm_plugins import ClaudeTaskPlugin, OllamaTaskPlugin
from .registry import (
    AllPluginsFailedError,
    CapabilityError,
    CapabilityRegistry,
    FallbackFailure,
    FallbackOutcome,
    FallbackSuccess,
    NoAvailablePluginsError,
    PluginAttempt,
)
from .tasks import TEXT_TASKS, VISION_TASKS
from .transcription import OpenAIWhisperPlugin, WhisperLocalPlugin


def create_default_plugins(
    settings: Settings,
    config: ProcessingConfig | None = None,
) -> list[BasePlugin]:
    """Instantiate every shipped plugin, with client retries from config (base.retry_*)."""
    retry = RetrySettings.from_config(config) if config is not None else RetrySettings()
    plugins: list[BasePlugin] = [
        WhisperLocalPlugin(settings, retry),
        OpenAIWhisperPlugin(settings, retry),
    ]
    for task in (*VISION_TASKS, *TEXT_TASKS):
        plugins.append(ClaudeTaskPlugin(settings, task, retry))
        plugins.append(OllamaTaskPlugin(settings, task, retry))
    return plugins


def build_registry(
    settings: Settings,
    config: ProcessingConfig,
    plugins: list[BasePlugin] | None = None,
) -> CapabilityRegistry:
    """
    Create a registry with fallback chains from configuration.

    Args:
        settings: Application settings
        config: Processing configuration (plugins.fallback_chains)
        plugins: Plugins to register (default: create_default_plugins())

    Returns:
        Registry ready for initialize_and_probe()
    """
    registry = CapabilityRegistry(
        fallback_chains=config.get_config("plugins.fallback_chains", {}),
    )
    for plugin in plugins if plugins is not None else create_default_plugins(settings, config):
        registry.register(plugin)
    return registry


__all__ = [
    "AllPluginsFailedError",
    "BasePlugin",
    "CapabilityCategory",
    "CapabilityError",
    "CapabilityRegistry",
    "ClaudeTaskPlugin",
    "FallbackFailure",
    "FallbackOutcome",
    "FallbackSuccess",
    "NoAvailablePluginsError",
    "OllamaTaskPlugin",
    "OpenAIWhisperPlugin",
    "PluginAttempt",
    "PluginError",
    "RetrySettings",
    "WhisperLocalPlugin",
    "build_registry",
    "create_default_plugins",
]
