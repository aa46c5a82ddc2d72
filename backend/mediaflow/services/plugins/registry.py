"""
Capability registry with startup probing and fallback execution.

The registry owns the plugin catalogue and each plugin's enabled state.
Plugins are registered once at startup, probed once by
initialize_and_probe(), and afterwards only read by running jobs; the
only runtime mutation is the admin toggle set_enabled().

Execution walks an ordered candidate list per category: the configured
fallback chain first, then every other enabled plugin of that category by
priority. Outcomes are returned as FallbackSuccess / FallbackFailure
values; execute_with_fallback() converts a failure into an exception for
callers that prefer raising.

Example:
    registry = CapabilityRegistry(fallback_chains={"ocr": ["claude_ocr", "ollama_ocr"]})
    registry.register(ClaudeVisionPlugin(settings, OCR_TASK))
    registry.register(OllamaVisionPlugin(settings, OCR_TASK))
    await registry.initialize_and_probe()

    outcome = await registry.try_execute("ocr", image_bytes, {})
    if isinstance(outcome, FallbackSuccess):
        print(outcome.plugin, outcome.result)
"""

import asyncio
import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from mediaflow.models.schemas import CategoryStatus, PluginInfo, RegistryStatusReport

from .base import BasePlugin

logger = logging.getLogger(__name__)

REASON_MISSING_DEPENDENCIES = "Missing required environment variables"
REASON_TEST_FAILED = "Plugin test failed"
REASON_INIT_ERROR = "Initialization error"
REASON_MANUALLY_DISABLED = "Manually disabled"


def category_key(category: str) -> str:
    """Normalize a category (plain str or CapabilityCategory) to its value."""
    return category.value if isinstance(category, Enum) else str(category)


def _describe_error(error: BaseException) -> str:
    return str(error) or type(error).__name__


class CapabilityError(Exception):
    """Base error for capability execution.

    Attributes:
        category: Capability category that could not be served
    """

    def __init__(self, category: str, message: str):
        self.category = category
        super().__init__(message)


class NoAvailablePluginsError(CapabilityError):
    """No enabled plugin exists for the category."""

    def __init__(self, category: str):
        super().__init__(category, f"No available plugins for category: {category}")


class AllPluginsFailedError(CapabilityError):
    """Every candidate plugin failed.

    Attributes:
        attempts: Failed attempts in execution order
    """

    def __init__(self, category: str, attempts: tuple["PluginAttempt", ...]):
        self.attempts = attempts
        last_error = attempts[-1].error if attempts else "unknown"
        super().__init__(
            category,
            f"All plugins failed for category {category}. Last error: {last_error}",
        )


@dataclass(frozen=True)
class PluginAttempt:
    """One failed plugin invocation."""

    plugin: str
    provider: str
    error: str


@dataclass(frozen=True)
class FallbackSuccess:
    """A candidate produced a result.

    Attributes:
        result: Plugin result
        plugin: Name of the plugin that succeeded
        provider: Provider of that plugin
        fallback_used: True if it was not the first candidate
        attempts: Failed attempts that preceded it
    """

    category: str
    result: Any
    plugin: str
    provider: str
    fallback_used: bool
    attempts: tuple[PluginAttempt, ...] = ()


@dataclass(frozen=True)
class FallbackFailure:
    """No candidate produced a result.

    attempts is empty when the category had no enabled plugin at all.
    """

    category: str
    attempts: tuple[PluginAttempt, ...] = ()

    @property
    def no_candidates(self) -> bool:
        return not self.attempts

    @property
    def last_error(self) -> str | None:
        return self.attempts[-1].error if self.attempts else None

    def to_exception(self) -> CapabilityError:
        if self.no_candidates:
            return NoAvailablePluginsError(self.category)
        return AllPluginsFailedError(self.category, self.attempts)

    @property
    def message(self) -> str:
        return str(self.to_exception())


FallbackOutcome = FallbackSuccess | FallbackFailure


@dataclass
class _PluginEntry:
    """Registry-owned state of one plugin."""

    plugin: BasePlugin
    enabled: bool = True
    disabled_reason: str | None = None
    client: Any = None
    probed: bool = False

    def info(self) -> PluginInfo:
        return PluginInfo(
            name=self.plugin.name,
            category=category_key(self.plugin.category),
            provider=self.plugin.provider,
            priority=self.plugin.priority,
            enabled=self.enabled,
            disabled_reason=self.disabled_reason,
            capabilities=list(self.plugin.capabilities),
            supported_formats=list(self.plugin.supported_formats),
        )


class CapabilityRegistry:
    """Central registry of capability plugins.

    Attributes:
        environ: Environment consulted for plugin dependencies
    """

    def __init__(
        self,
        fallback_chains: Mapping[str, list[str]] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """
        Initialize empty registry.

        Args:
            fallback_chains: category -> ordered plugin names
            environ: Environment mapping for dependency checks (default: os.environ)
        """
        self.environ = os.environ if environ is None else environ
        self._entries: dict[str, _PluginEntry] = {}
        self._chains: dict[str, list[str]] = {
            category_key(category): list(names)
            for category, names in (fallback_chains or {}).items()
        }
        self._lock = threading.RLock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ═══════════════════════════════════════════════════════════════════════
    # Registration
    # ═══════════════════════════════════════════════════════════════════════

    def register(self, plugin: BasePlugin) -> None:
        """Register a plugin.

        Raises:
            ValueError: If a plugin with the same name is already registered
        """
        with self._lock:
            if plugin.name in self._entries:
                raise ValueError(f"Plugin '{plugin.name}' already registered")
            self._entries[plugin.name] = _PluginEntry(plugin=plugin)
        logger.debug(f"Registered plugin {plugin.name} ({category_key(plugin.category)})")

    def set_fallback_chain(self, category: str, plugin_names: list[str]) -> None:
        """Set the explicit fallback order for a category."""
        with self._lock:
            self._chains[category_key(category)] = list(plugin_names)

    def get_fallback_chain(self, category: str) -> list[str]:
        """Get the resolved candidate order for a category (enabled plugins only)."""
        return [entry.plugin.name for entry in self._candidates(category)]

    def get(self, name: str) -> BasePlugin:
        """Get plugin by name.

        Raises:
            KeyError: If plugin not found
        """
        return self._entry(name).plugin

    @property
    def categories(self) -> list[str]:
        with self._lock:
            return sorted({category_key(e.plugin.category) for e in self._entries.values()})

    # ═══════════════════════════════════════════════════════════════════════
    # Probing
    # ═══════════════════════════════════════════════════════════════════════

    async def initialize_and_probe(self) -> None:
        """Probe every registered plugin once.

        Plugins with missing dependencies, failing tests or initialization
        errors are disabled with a reason. Never raises.
        """
        entries = list(self._entries.values())
        await asyncio.gather(*(self._probe(entry) for entry in entries))
        self._initialized = True

        enabled = sum(1 for entry in entries if entry.enabled)
        logger.info(f"Capability registry ready: {enabled}/{len(entries)} plugins enabled")

    async def _probe(self, entry: _PluginEntry) -> None:
        plugin = entry.plugin
        entry.probed = True

        missing = [dep for dep in plugin.dependencies if not self.environ.get(dep)]
        if missing:
            self._disable(entry, f"{REASON_MISSING_DEPENDENCIES}: {', '.join(missing)}")
            return

        client = None
        try:
            client = await plugin.initialize()
            healthy = await plugin.test(client)
        except Exception as e:
            self._disable(entry, f"{REASON_INIT_ERROR}: {_describe_error(e)}")
            await self._release(plugin, client)
            return

        if not healthy:
            self._disable(entry, REASON_TEST_FAILED)
            await self._release(plugin, client)
            return

        with self._lock:
            entry.client = client
            entry.enabled = True
            entry.disabled_reason = None
        logger.info(f"Plugin {plugin.name} available ({plugin.provider})")

    def _disable(self, entry: _PluginEntry, reason: str) -> None:
        with self._lock:
            entry.enabled = False
            entry.disabled_reason = reason
        logger.warning(f"Plugin {entry.plugin.name} disabled: {reason}")

    async def _release(self, plugin: BasePlugin, client: Any) -> None:
        if client is None:
            return
        try:
            await plugin.cleanup(client)
        except Exception as e:
            logger.warning(f"Cleanup of {plugin.name} failed: {e}")

    # ═══════════════════════════════════════════════════════════════════════
    # Execution
    # ═══════════════════════════════════════════════════════════════════════

    async def try_execute(
        self,
        category: str,
        input: Any,
        options: dict[str, Any] | None = None,
    ) -> FallbackOutcome:
        """Run candidates for a category in order until one succeeds.

        Args:
            category: Capability category
            input: Category-specific input
            options: Category-specific options

        Returns:
            FallbackSuccess with the first result, or FallbackFailure listing
            every failed attempt (empty when there were no candidates)
        """
        key = category_key(category)
        options = options or {}
        candidates = self._candidates(key)

        if not candidates:
            logger.warning(f"No available plugins for category: {key}")
            return FallbackFailure(category=key)

        attempts: list[PluginAttempt] = []
        first_name = candidates[0].plugin.name

        for entry in candidates:
            plugin = entry.plugin
            try:
                client = await self._client_for(entry)
                result = await plugin.execute(client, input, options)
            except Exception as e:
                error = _describe_error(e)
                attempts.append(PluginAttempt(plugin=plugin.name, provider=plugin.provider, error=error))
                logger.warning(f"Plugin {plugin.name} failed for {key}: {error}")
                continue

            fallback_used = plugin.name != first_name
            if fallback_used:
                logger.info(f"Fallback plugin {plugin.name} served {key}")
            return FallbackSuccess(
                category=key,
                result=result,
                plugin=plugin.name,
                provider=plugin.provider,
                fallback_used=fallback_used,
                attempts=tuple(attempts),
            )

        outcome = FallbackFailure(category=key, attempts=tuple(attempts))
        logger.error(outcome.message)
        return outcome

    async def execute_with_fallback(
        self,
        category: str,
        input: Any,
        options: dict[str, Any] | None = None,
    ) -> FallbackSuccess:
        """Like try_execute(), but raises when no candidate succeeds.

        Raises:
            NoAvailablePluginsError: If the category has no enabled plugin
            AllPluginsFailedError: If every candidate failed
        """
        outcome = await self.try_execute(category, input, options)
        if isinstance(outcome, FallbackFailure):
            raise outcome.to_exception()
        return outcome

    def _candidates(self, category: str) -> list[_PluginEntry]:
        key = category_key(category)
        with self._lock:
            in_category = [
                entry
                for entry in self._entries.values()
                if category_key(entry.plugin.category) == key and entry.enabled
            ]
            chain = self._chains.get(key, [])

        by_name = {entry.plugin.name: entry for entry in in_category}
        ordered = [by_name[name] for name in chain if name in by_name]
        rest = sorted(
            (entry for entry in in_category if entry.plugin.name not in chain),
            key=lambda entry: (entry.plugin.priority, entry.plugin.name),
        )
        return ordered + rest

    async def _client_for(self, entry: _PluginEntry) -> Any:
        if entry.client is not None:
            return entry.client

        # Enabled after startup without a probe client
        client = await entry.plugin.initialize()
        with self._lock:
            if entry.client is None:
                entry.client = client
                return client
            existing = entry.client
        await self._release(entry.plugin, client)
        return existing

    # ═══════════════════════════════════════════════════════════════════════
    # Queries and admin
    # ═══════════════════════════════════════════════════════════════════════

    def is_feature_available(self, category: str) -> bool:
        """True if at least one enabled plugin serves the category."""
        key = category_key(category)
        with self._lock:
            return any(
                entry.enabled and category_key(entry.plugin.category) == key
                for entry in self._entries.values()
            )

    def get_available_plugins(self, category: str | None = None) -> list[PluginInfo]:
        """Enabled plugins (optionally of one category) sorted by priority."""
        with self._lock:
            entries = [
                entry
                for entry in self._entries.values()
                if entry.enabled
                and (category is None or category_key(entry.plugin.category) == category_key(category))
            ]
            return [
                entry.info()
                for entry in sorted(entries, key=lambda e: (e.plugin.priority, e.plugin.name))
            ]

    def get_plugin_info(self, name: str) -> PluginInfo:
        """Registry view of one plugin.

        Raises:
            KeyError: If plugin not found
        """
        with self._lock:
            return self._entry(name).info()

    def set_enabled(self, name: str, enabled: bool) -> PluginInfo:
        """Enable or disable a plugin at runtime.

        Raises:
            KeyError: If plugin not found
        """
        with self._lock:
            entry = self._entry(name)
            entry.enabled = enabled
            entry.disabled_reason = None if enabled else REASON_MANUALLY_DISABLED
            info = entry.info()
        logger.info(f"Plugin {name} {'enabled' if enabled else 'disabled'} manually")
        return info

    def get_status_report(self) -> RegistryStatusReport:
        """Per-category availability, providers and disabled plugins."""
        with self._lock:
            entries = list(self._entries.values())
            infos = [entry.info() for entry in entries]

        categories: dict[str, CategoryStatus] = {}
        providers: dict[str, list[str]] = {}
        for info in infos:
            status = categories.get(info.category) or CategoryStatus(
                total=0, available=0, status="unavailable"
            )
            status.total += 1
            if info.enabled:
                status.available += 1
                status.status = "available"
            categories[info.category] = status
            providers.setdefault(info.provider, []).append(info.name)

        return RegistryStatusReport(
            initialized=self._initialized,
            total_plugins=len(infos),
            enabled_plugins=sum(1 for info in infos if info.enabled),
            categories=categories,
            providers=providers,
            disabled_plugins=[info for info in infos if not info.enabled],
        )

    async def cleanup(self) -> None:
        """Release every plugin client."""
        with self._lock:
            held = [(entry, entry.client) for entry in self._entries.values() if entry.client is not None]
            for entry, _ in held:
                entry.client = None

        for entry, client in held:
            await self._release(entry.plugin, client)
        logger.info(f"Released {len(held)} plugin clients")

    def _entry(self, name: str) -> _PluginEntry:
        if name not in self._entries:
            raise KeyError(
                f"Plugin '{name}' not found. "
                f"Available: {list(self._entries.keys())}"
            )
        return self._entries[name]
