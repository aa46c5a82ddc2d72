"""
Prompt and response parsing for LLM-backed capabilities.

Each AnalysisTask pairs a category with the prompt sent to a model and
the parser that turns the model's reply into the category's result
type. Parsers raise PluginError on unusable replies so the registry can
fall back to the next provider.
"""

from dataclasses import dataclass
from typing import Any, Callable

from mediaflow.utils.json_utils import extract_json, parse_json_safe, parse_string_list

from .base import CapabilityCategory, PluginError

NO_TEXT_MARKER = "NO_TEXT"
MAX_TAGS = 10


@dataclass(frozen=True)
class AnalysisTask:
    """LLM task definition.

    Attributes:
        suffix: Plugin name suffix (plugin name = "<provider>_<suffix>")
        category: Capability category served
        prompt: Instruction (for text tasks, the system prompt)
        parse: reply text -> category result
        max_tokens: Generation limit
    """

    suffix: str
    category: CapabilityCategory
    prompt: str
    parse: Callable[[str, str], Any]
    max_tokens: int = 1024


def _parse_objects(reply: str, plugin_name: str) -> list[dict]:
    data = parse_json_safe(extract_json(reply), default=None)
    if isinstance(data, dict):
        data = data.get("objects")
    if not isinstance(data, list):
        raise PluginError(plugin_name, "Object detection reply is not a JSON list")

    objects = []
    for item in data:
        if isinstance(item, str):
            objects.append({"label": item})
            continue
        if not isinstance(item, dict):
            continue
        label = item.get("label") or item.get("name")
        if not label:
            continue
        confidence = item.get("confidence")
        objects.append({
            "label": str(label),
            "confidence": float(confidence) if isinstance(confidence, (int, float)) else None,
            "bounding_box": item.get("bounding_box"),
        })
    return objects


def _parse_ocr(reply: str, plugin_name: str) -> str:
    text = (reply or "").strip()
    if text.upper() == NO_TEXT_MARKER:
        return ""
    return text


def _parse_description(reply: str, plugin_name: str) -> str:
    text = (reply or "").strip()
    if not text:
        raise PluginError(plugin_name, "Empty description")
    return text


def _parse_sentiment(reply: str, plugin_name: str) -> dict:
    data = parse_json_safe(extract_json(reply, json_type="object"), default=None)
    if not isinstance(data, dict) or not data.get("sentiment"):
        raise PluginError(plugin_name, "Sentiment reply is not a JSON object with 'sentiment'")

    confidence = data.get("confidence")
    emotions = data.get("key_emotions") or []
    return {
        "sentiment": str(data["sentiment"]).lower(),
        "confidence": float(confidence) if isinstance(confidence, (int, float)) else None,
        "key_emotions": [str(e) for e in emotions] if isinstance(emotions, list) else [],
    }


def _parse_tags(reply: str, plugin_name: str) -> list[str]:
    tags: list[str] = []
    for tag in parse_string_list(reply):
        tag = tag.lower()
        if tag not in tags:
            tags.append(tag)
    tags = tags[:MAX_TAGS]
    if not tags:
        raise PluginError(plugin_name, "No tags in reply")
    return tags


OBJECT_DETECTION_TASK = AnalysisTask(
    suffix="object_detection",
    category=CapabilityCategory.OBJECT_DETECTION,
    prompt=(
        "List the distinct objects visible in this image. Reply with a JSON array "
        'only, e.g. [{"label": "dog", "confidence": 0.92}]. '
        "Confidence is between 0 and 1."
    ),
    parse=_parse_objects,
)

OCR_TASK = AnalysisTask(
    suffix="ocr",
    category=CapabilityCategory.OCR,
    prompt=(
        "Transcribe all text visible in this image exactly as written, preserving "
        f"line breaks. Reply with the text only, or {NO_TEXT_MARKER} if there is none."
    ),
    parse=_parse_ocr,
    max_tokens=2048,
)

DESCRIPTION_TASK = AnalysisTask(
    suffix="image_description",
    category=CapabilityCategory.IMAGE_ANALYSIS,
    prompt=(
        "Describe this image in two or three sentences for a media library: "
        "subject, setting and notable details."
    ),
    parse=_parse_description,
    max_tokens=500,
)

SENTIMENT_TASK = AnalysisTask(
    suffix="sentiment",
    category=CapabilityCategory.SENTIMENT,
    prompt=(
        "You analyze the sentiment of transcribed speech. Reply with a JSON object "
        'only: {"sentiment": "positive|negative|neutral|mixed", '
        '"confidence": 0.0-1.0, "key_emotions": ["..."]}.'
    ),
    parse=_parse_sentiment,
    max_tokens=300,
)

TAGGING_TASK = AnalysisTask(
    suffix="tagging",
    category=CapabilityCategory.TAGGING,
    prompt=(
        f"You generate search tags for media. Reply with a JSON array of at most "
        f"{MAX_TAGS} short lowercase tags."
    ),
    parse=_parse_tags,
    max_tokens=200,
)

VISION_TASKS = (OBJECT_DETECTION_TASK, OCR_TASK, DESCRIPTION_TASK)
TEXT_TASKS = (SENTIMENT_TASK, TAGGING_TASK)
