"""Shared fixtures: payloads, configuration and an orchestrator factory."""

from typing import Any

import pytest

from mediaflow.config import ProcessingConfig, Settings
from mediaflow.services.pipeline import MediaOrchestrator, ResourceAwareExecutor
from mediaflow.services.plugins import BasePlugin, CapabilityRegistry
from mediaflow.services.processors import audio_processor, video_processor

from tests.fakes import make_jpeg


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_jpeg()


@pytest.fixture
def mp3_bytes() -> bytes:
    # ID3v2 header followed by an MPEG-1 Layer III frame header
    return b"ID3\x03\x00\x00\x00\x00\x00\x00" + b"\xff\xfb\x90\x64" + b"\x00" * 4096


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(config_dir=tmp_path / "config", results_dir=None, thumbnail_dir=None)


@pytest.fixture
def config() -> ProcessingConfig:
    return ProcessingConfig(
        overrides={"performance": {"memory": {"admission_wait_seconds": 0}}},
    )


@pytest.fixture(autouse=True)
def no_ffmpeg(monkeypatch):
    """Keep processors away from ffprobe/ffmpeg subprocesses."""

    async def no_probe(buffer: bytes) -> None:
        return None

    async def no_frame(buffer: bytes, timestamp_seconds: float = 1.0) -> None:
        return None

    monkeypatch.setattr(audio_processor, "probe_media_async", no_probe)
    monkeypatch.setattr(video_processor, "probe_media_async", no_probe)
    monkeypatch.setattr(video_processor, "extract_video_frame_async", no_frame)


@pytest.fixture
def make_orchestrator(settings, config):
    """Factory building an orchestrator over fake plugins."""

    def factory(
        plugins: list[BasePlugin],
        environ: dict[str, str] | None = None,
        fallback_chains: dict[str, list[str]] | None = None,
        processing_config: ProcessingConfig | None = None,
        clock=None,
        **kwargs: Any,
    ) -> MediaOrchestrator:
        registry = CapabilityRegistry(fallback_chains=fallback_chains, environ=environ or {})
        for plugin in plugins:
            registry.register(plugin)

        cfg = processing_config or config
        options: dict[str, Any] = {}
        if clock is not None:
            options["clock"] = clock
        return MediaOrchestrator(
            settings,
            cfg,
            registry=registry,
            executor=ResourceAwareExecutor.from_config(cfg, memory_probe=lambda: 0.0),
            sinks=kwargs.pop("sinks", []),
            **options,
            **kwargs,
        )

    return factory
