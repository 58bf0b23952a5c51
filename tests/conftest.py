import io
import json
from pathlib import Path
from typing import Callable, Dict, List

import httpx
import pytest
from PIL import Image

from image_summarizer.core.settings import Settings
from image_summarizer.services.coordinator import BatchCoordinator
from image_summarizer.services.preprocess import ImagePreprocessor
from image_summarizer.services.storage import FileStore
from image_summarizer.vlm.ollama_client import OllamaClient

DEFAULT_REPLY = "A red square centred on a plain white background."


def make_image(size=(64, 48), fmt="PNG", color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def raise_timeout(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


def raise_refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)


class FakeOllama:
    """In-process stand-in for the Ollama HTTP API."""

    def __init__(self):
        self.up = True
        self.tags_status = 200
        self.models: List[str] = ["gemma3:4b", "llava:7b"]
        self.reply = DEFAULT_REPLY
        self.generate_calls: List[dict] = []
        self.tags_calls = 0
        # generate call index (0-based) -> handler overriding the default reply
        self.generate_effects: Dict[int, Callable[[httpx.Request], httpx.Response]] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.up:
            raise_refused(request)
        if request.url.path == "/api/tags":
            self.tags_calls += 1
            return httpx.Response(self.tags_status, json={"models": [{"name": n} for n in self.models]})
        if request.url.path == "/api/generate":
            index = len(self.generate_calls)
            self.generate_calls.append(json.loads(request.content))
            effect = self.generate_effects.get(index)
            if effect is not None:
                return effect(request)
            return httpx.Response(200, json={"model": "gemma3:4b", "response": self.reply, "done": True})
        return httpx.Response(404, json={"error": "not found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def staged_files(settings: Settings) -> List[Path]:
    if not settings.upload_dir.exists():
        return []
    return sorted(settings.upload_dir.iterdir())


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(_env_file=None, upload_dir=tmp_path / "uploads")


@pytest.fixture
def fake_ollama() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
async def ollama(settings, fake_ollama):
    client = OllamaClient(settings, transport=fake_ollama.transport())
    yield client
    await client.aclose()


@pytest.fixture
def store(settings) -> FileStore:
    return FileStore(settings.upload_dir)


@pytest.fixture
def coordinator(settings, store, ollama) -> BatchCoordinator:
    return BatchCoordinator(
        settings=settings,
        store=store,
        preprocessor=ImagePreprocessor(settings.max_image_dimension, settings.jpeg_quality),
        client=ollama,
    )
