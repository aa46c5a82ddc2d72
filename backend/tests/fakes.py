"""In-memory doubles for plugins and media payloads."""

import io
from typing import Any

from PIL import Image, ImageDraw

from mediaflow.services.plugins import BasePlugin, CapabilityCategory


class FakeClient:
    """Client handed out by FakePlugin.initialize()."""

    def __init__(self, name: str):
        self.name = name
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakePlugin(BasePlugin):
    """In-memory plugin with a scripted result or error."""

    def __init__(
        self,
        name: str,
        category: CapabilityCategory,
        result: Any = None,
        error: Exception | None = None,
        healthy: bool = True,
        dependencies: list[str] | None = None,
        priority: int = 10,
        provider: str = "fake",
        init_error: Exception | None = None,
    ):
        self.name = name
        self.category = category
        self.result = result
        self.error = error
        self.healthy = healthy
        self.dependencies = dependencies or []
        self.priority = priority
        self.provider = provider
        self.init_error = init_error
        self.calls: list[tuple[Any, dict]] = []
        self.clients: list[FakeClient] = []

    async def initialize(self) -> FakeClient:
        if self.init_error is not None:
            raise self.init_error
        client = FakeClient(self.name)
        self.clients.append(client)
        return client

    async def execute(self, client: FakeClient, input: Any, options: dict[str, Any]) -> Any:
        self.calls.append((input, options))
        if self.error is not None:
            raise self.error
        return self.result

    async def test(self, client: FakeClient) -> bool:
        return self.healthy


def make_jpeg(width: int = 640, height: int = 480) -> bytes:
    image = Image.new("RGB", (width, height), (40, 90, 160))
    draw = ImageDraw.Draw(image)
    draw.rectangle((width // 4, height // 4, width // 2, height // 2), fill=(240, 230, 200))
    draw.ellipse((width // 2, height // 2, width - 20, height - 20), fill=(20, 20, 20))
    out = io.BytesIO()
    image.save(out, format="JPEG", quality=90)
    return out.getvalue()


def healthy_image_plugins() -> list[FakePlugin]:
    return [
        FakePlugin(
            "fake_objects",
            CapabilityCategory.OBJECT_DETECTION,
            result=[{"label": "lamp", "confidence": 0.9}, {"label": "table", "confidence": 0.7}],
        ),
        FakePlugin("fake_ocr", CapabilityCategory.OCR, result=""),
        FakePlugin("fake_describer", CapabilityCategory.IMAGE_ANALYSIS, result="A lamp on a table."),
        FakePlugin("fake_tagger", CapabilityCategory.TAGGING, result=["lamp", "interior"]),
    ]
