"""Tests for capability registry probing and fallback execution."""

import pytest

from mediaflow.services.plugins import CapabilityCategory, CapabilityRegistry
from mediaflow.services.plugins.registry import (
    AllPluginsFailedError,
    FallbackFailure,
    FallbackSuccess,
    NoAvailablePluginsError,
    REASON_MANUALLY_DISABLED,
    REASON_TEST_FAILED,
)

from tests.fakes import FakePlugin

OCR = CapabilityCategory.OCR


async def _registry(*plugins, environ=None, chains=None) -> CapabilityRegistry:
    registry = CapabilityRegistry(fallback_chains=chains, environ=environ or {})
    for plugin in plugins:
        registry.register(plugin)
    await registry.initialize_and_probe()
    return registry


@pytest.mark.asyncio
async def test_first_candidate_success_is_not_a_fallback():
    registry = await _registry(FakePlugin("primary", OCR, result="hello"))

    outcome = await registry.try_execute("ocr", b"img", {})

    assert isinstance(outcome, FallbackSuccess)
    assert outcome.result == "hello"
    assert outcome.plugin == "primary"
    assert outcome.fallback_used is False


@pytest.mark.asyncio
async def test_falls_back_past_failing_plugins():
    first = FakePlugin("first", OCR, error=RuntimeError("rate limited"), priority=1)
    second = FakePlugin("second", OCR, error=TimeoutError(), priority=2)
    third = FakePlugin("third", OCR, result="text", priority=3, provider="backup")
    registry = await _registry(third, second, first)

    outcome = await registry.try_execute(OCR, b"img", {"language": "en"})

    assert isinstance(outcome, FallbackSuccess)
    assert (outcome.plugin, outcome.provider, outcome.fallback_used) == ("third", "backup", True)
    assert [a.plugin for a in outcome.attempts] == ["first", "second"]
    assert outcome.attempts[1].error == "TimeoutError"
    assert third.calls == [(b"img", {"language": "en"})]


@pytest.mark.asyncio
async def test_all_failed_reports_last_error():
    registry = await _registry(
        FakePlugin("a", OCR, error=RuntimeError("quota"), priority=1),
        FakePlugin("b", OCR, error=RuntimeError("bad gateway"), priority=2),
    )

    outcome = await registry.try_execute("ocr", b"img")

    assert isinstance(outcome, FallbackFailure)
    assert not outcome.no_candidates
    assert outcome.last_error == "bad gateway"

    with pytest.raises(AllPluginsFailedError, match="Last error: bad gateway"):
        await registry.execute_with_fallback("ocr", b"img")


@pytest.mark.asyncio
async def test_no_candidates():
    registry = await _registry(FakePlugin("tagger", CapabilityCategory.TAGGING, result=[]))

    outcome = await registry.try_execute("ocr", b"img")

    assert isinstance(outcome, FallbackFailure)
    assert outcome.no_candidates
    with pytest.raises(NoAvailablePluginsError, match="No available plugins for category: ocr"):
        await registry.execute_with_fallback("ocr", b"img")


@pytest.mark.asyncio
async def test_probe_disables_with_reasons():
    missing = FakePlugin("needs_key", OCR, dependencies=["OCR_API_KEY", "OCR_URL"])
    unhealthy = FakePlugin("unhealthy", OCR, healthy=False)
    broken = FakePlugin("broken", OCR, init_error=ConnectionError("refused"))
    ok = FakePlugin("ok", OCR, dependencies=["OCR_URL"])

    registry = await _registry(missing, unhealthy, broken, ok, environ={"OCR_URL": "http://ocr"})

    assert registry.get_plugin_info("needs_key").disabled_reason == (
        "Missing required environment variables: OCR_API_KEY"
    )
    assert registry.get_plugin_info("unhealthy").disabled_reason == REASON_TEST_FAILED
    assert registry.get_plugin_info("broken").disabled_reason == "Initialization error: refused"
    assert registry.get_plugin_info("ok").enabled
    assert registry.get_fallback_chain("ocr") == ["ok"]
    # Probe client of an unhealthy plugin is released
    assert unhealthy.clients[0].closed


@pytest.mark.asyncio
async def test_explicit_chain_precedes_priority_order():
    registry = await _registry(
        FakePlugin("cheap", OCR, priority=1),
        FakePlugin("accurate", OCR, priority=50),
        FakePlugin("local", OCR, priority=20),
        chains={"ocr": ["accurate", "unknown_plugin"]},
    )

    assert registry.get_fallback_chain(OCR) == ["accurate", "cheap", "local"]


@pytest.mark.asyncio
async def test_manual_toggle_changes_candidates():
    registry = await _registry(FakePlugin("only", OCR, result="x"))

    info = registry.set_enabled("only", False)

    assert info.enabled is False
    assert info.disabled_reason == REASON_MANUALLY_DISABLED
    assert not registry.is_feature_available("ocr")
    assert (await registry.try_execute("ocr", b"")).no_candidates

    registry.set_enabled("only", True)
    assert registry.is_feature_available(OCR)
    with pytest.raises(KeyError):
        registry.set_enabled("ghost", True)


@pytest.mark.asyncio
async def test_plugin_enabled_after_startup_gets_a_client():
    plugin = FakePlugin("late", OCR, healthy=False, result="late text")
    registry = await _registry(plugin)
    registry.set_enabled("late", True)

    outcome = await registry.try_execute("ocr", b"img")

    assert isinstance(outcome, FallbackSuccess)
    assert len(plugin.clients) == 2


@pytest.mark.asyncio
async def test_status_report_and_cleanup():
    objects = FakePlugin("objects", CapabilityCategory.OBJECT_DETECTION, provider="claude")
    ocr = FakePlugin("ocr", OCR, provider="claude")
    whisper = FakePlugin("whisper", CapabilityCategory.TRANSCRIPTION, provider="whisper", healthy=False)
    registry = await _registry(objects, ocr, whisper)

    report = registry.get_status_report()

    assert report.initialized
    assert (report.total_plugins, report.enabled_plugins) == (3, 2)
    assert report.categories["transcription"].status == "unavailable"
    assert report.categories["ocr"].available == 1
    assert report.providers == {"claude": ["objects", "ocr"], "whisper": ["whisper"]}
    assert [p.name for p in report.disabled_plugins] == ["whisper"]

    await registry.cleanup()
    assert objects.clients[0].closed and ocr.clients[0].closed


def test_duplicate_registration_rejected():
    registry = CapabilityRegistry(environ={})
    registry.register(FakePlugin("dup", OCR))

    with pytest.raises(ValueError, match="already registered"):
        registry.register(FakePlugin("dup", OCR))
