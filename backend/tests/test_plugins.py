"""Tests for shipped plugins: reply parsing, normalization and wiring."""

import pytest

from mediaflow.config import ProcessingConfig, Settings
from mediaflow.services.ai_clients.base import ChatUsage
from mediaflow.services.plugins import (
    CapabilityCategory,
    ClaudeTaskPlugin,
    OllamaTaskPlugin,
    PluginError,
    build_registry,
    create_default_plugins,
)
from mediaflow.services.plugins.tasks import (
    DESCRIPTION_TASK,
    OBJECT_DETECTION_TASK,
    OCR_TASK,
    SENTIMENT_TASK,
    TAGGING_TASK,
)
from mediaflow.services.plugins.transcription import normalize_transcription

from tests.fakes import make_jpeg


class ScriptedLLMClient:
    """LLM client double returning a fixed reply."""

    def __init__(self, reply: str):
        self.reply = reply
        self.chats: list[tuple[list, dict]] = []
        self.images: list[tuple[bytes, str, dict]] = []

    async def chat(self, messages, **kwargs):
        self.chats.append((messages, kwargs))
        return self.reply, ChatUsage(input_tokens=10, output_tokens=5)

    async def analyze_image(self, image, prompt, **kwargs):
        self.images.append((image, prompt, kwargs))
        return self.reply, ChatUsage(input_tokens=100, output_tokens=20)

    async def check_health(self) -> bool:
        return True

    async def close(self) -> None:
        pass


# ═══════════════════════════════════════════════════════════════════════════
# Reply parsing
# ═══════════════════════════════════════════════════════════════════════════


def test_objects_parsed_from_fenced_json():
    reply = 'Here you go:\n```json\n[{"label": "dog", "confidence": 0.92}, "ball", {"name": "tree"}, 7]\n```'

    objects = OBJECT_DETECTION_TASK.parse(reply, "claude_object_detection")

    assert objects == [
        {"label": "dog", "confidence": 0.92, "bounding_box": None},
        {"label": "ball"},
        {"label": "tree", "confidence": None, "bounding_box": None},
    ]


def test_objects_wrapped_in_object_key():
    reply = '{"objects": [{"label": "car"}]}'
    assert OBJECT_DETECTION_TASK.parse(reply, "p")[0]["label"] == "car"


def test_unparseable_objects_raise_plugin_error():
    with pytest.raises(PluginError, match="not a JSON list"):
        OBJECT_DETECTION_TASK.parse("I see a dog and a ball.", "ollama_object_detection")


def test_ocr_no_text_marker_means_empty_string():
    assert OCR_TASK.parse("  NO_TEXT \n", "p") == ""
    assert OCR_TASK.parse("EXIT\nFloor 2", "p") == "EXIT\nFloor 2"


def test_empty_description_raises():
    with pytest.raises(PluginError):
        DESCRIPTION_TASK.parse("   ", "p")


def test_sentiment_parsed_and_normalized():
    reply = 'Result: {"sentiment": "Positive", "confidence": 0.75, "key_emotions": ["joy", "relief"]}'

    assert SENTIMENT_TASK.parse(reply, "p") == {
        "sentiment": "positive",
        "confidence": 0.75,
        "key_emotions": ["joy", "relief"],
    }
    with pytest.raises(PluginError):
        SENTIMENT_TASK.parse('{"mood": "ok"}', "p")


def test_tags_from_array_or_plain_list():
    assert TAGGING_TASK.parse('["Beach", "sunset", "beach"]', "p") == ["beach", "sunset"]
    assert TAGGING_TASK.parse("- travel\n- Ocean", "p") == ["travel", "ocean"]
    with pytest.raises(PluginError):
        TAGGING_TASK.parse("", "p")


def test_tags_are_capped():
    reply = str([f"tag{i}" for i in range(20)]).replace("'", '"')
    assert len(TAGGING_TASK.parse(reply, "p")) == 10


# ═══════════════════════════════════════════════════════════════════════════
# Transcription normalization
# ═══════════════════════════════════════════════════════════════════════════


def test_normalize_transcription_drops_empty_segments():
    raw = {
        "text": " Hello world ",
        "language": "en",
        "duration": 2.0,
        "segments": [
            {"start": 0, "end": 1.0, "text": " Hello "},
            {"start": 1.0, "end": 1.2, "text": "  "},
            {"start": 1.2, "end": 2.0, "text": "world", "speaker": "SPEAKER_01"},
        ],
    }

    result = normalize_transcription(raw, "whisper_local")

    assert result["text"] == "Hello world"
    assert result["language"] == "en"
    assert [s["text"] for s in result["segments"]] == ["Hello", "world"]
    assert result["segments"][1]["speaker"] == "SPEAKER_01"


def test_normalize_transcription_builds_text_from_segments():
    raw = {"segments": [{"start": 0, "end": 1, "text": "one"}, {"start": 1, "end": 2, "text": "two"}]}
    assert normalize_transcription(raw, "p")["text"] == "one two"


def test_empty_transcription_raises():
    with pytest.raises(PluginError, match="empty"):
        normalize_transcription({"text": "", "segments": []}, "openai_whisper")


# ═══════════════════════════════════════════════════════════════════════════
# LLM plugins
# ═══════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_vision_plugin_sends_jpeg_and_parses_reply():
    plugin = ClaudeTaskPlugin(Settings(), OBJECT_DETECTION_TASK)
    client = ScriptedLLMClient('[{"label": "lamp", "confidence": 0.8}]')

    result = await plugin.execute(client, make_jpeg(2000, 1000), {})

    assert result[0]["label"] == "lamp"
    image, prompt, kwargs = client.images[0]
    assert image[:3] == b"\xff\xd8\xff"
    assert prompt == OBJECT_DETECTION_TASK.prompt
    assert kwargs == {"mime_type": "image/jpeg", "num_predict": OBJECT_DETECTION_TASK.max_tokens}


@pytest.mark.asyncio
async def test_description_respects_max_tokens_option():
    plugin = OllamaTaskPlugin(Settings(), DESCRIPTION_TASK)
    client = ScriptedLLMClient("A quiet harbor at dawn.")

    result = await plugin.execute(client, make_jpeg(), {"max_tokens": 120})

    assert result == "A quiet harbor at dawn."
    assert client.images[0][2]["num_predict"] == 120


@pytest.mark.asyncio
async def test_text_plugin_uses_system_prompt():
    plugin = OllamaTaskPlugin(Settings(), SENTIMENT_TASK)
    client = ScriptedLLMClient('{"sentiment": "neutral"}')

    result = await plugin.execute(client, "It was fine.", {})

    assert result["sentiment"] == "neutral"
    messages, kwargs = client.chats[0]
    assert messages[0] == {"role": "system", "content": SENTIMENT_TASK.prompt}
    assert messages[1] == {"role": "user", "content": "It was fine."}
    assert kwargs["num_predict"] == SENTIMENT_TASK.max_tokens


def test_plugin_identity():
    claude = ClaudeTaskPlugin(Settings(), OCR_TASK)
    ollama = OllamaTaskPlugin(Settings(), TAGGING_TASK)

    assert (claude.name, claude.category, claude.provider) == ("claude_ocr", CapabilityCategory.OCR, "anthropic")
    assert claude.dependencies == ["ANTHROPIC_API_KEY"]
    assert claude.priority < ollama.priority
    assert ollama.name == "ollama_tagging"
    assert ollama.supported_formats == ["text/plain"]


def test_default_plugins_match_configured_chains():
    settings = Settings()
    names = {plugin.name for plugin in create_default_plugins(settings)}

    chains = ProcessingConfig().get_config("plugins.fallback_chains")
    assert {name for chain in chains.values() for name in chain} == names
    assert len(names) == 12


@pytest.mark.asyncio
async def test_default_registry_without_credentials_has_no_providers(monkeypatch):
    for var in ("ANTHROPIC_API_KEY", "OLLAMA_URL", "WHISPER_URL", "OPENAI_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    registry = build_registry(Settings(), ProcessingConfig())

    await registry.initialize_and_probe()

    report = registry.get_status_report()
    assert report.total_plugins == 12
    assert report.enabled_plugins == 0
    assert all(status.status == "unavailable" for status in report.categories.values())
