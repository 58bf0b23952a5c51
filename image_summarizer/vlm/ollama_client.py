"""
Ollama vision client:
- liveness check and model listing over GET /api/tags
- one non-streaming POST /api/generate per image, base64 payload
- transport failures mapped onto the small error taxonomy in core.errors

Nothing here is cached: backend state (service restarted, model unloaded) is
re-checked on every call.
"""

from __future__ import annotations
import asyncio
import base64
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from ..core.errors import (
    AnalysisError,
    InferenceTimeoutError,
    ModelNotFoundError,
    ProcessingError,
    ServiceUnavailableError,
)
from ..core.settings import Settings
from ..services.schema import ServiceHealth

logger = logging.getLogger(__name__)

TAGS_PATH = "/api/tags"
GENERATE_PATH = "/api/generate"


def base_name(model_id: str) -> str:
    return (model_id or "").split(":", 1)[0]


def find_model(names: List[str], model_id: str) -> Optional[str]:
    """
    First listed model whose untagged name starts with the requested base name.
    Listing order decides ties.
    """
    wanted = base_name(model_id)
    if not wanted:
        return None
    for name in names:
        if base_name(name).startswith(wanted):
            return name
    return None


class OllamaClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.model = settings.vision_model
        self._http = httpx.AsyncClient(
            base_url=settings.backend_url,
            timeout=settings.inference_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ---- availability ----

    async def check_liveness(self) -> bool:
        try:
            resp = await self._http.get(TAGS_PATH, timeout=self.settings.liveness_timeout)
        except httpx.HTTPError as e:
            logger.debug("Liveness check failed: %r", e)
            return False
        return resp.status_code == 200

    async def list_models(self) -> Dict[str, Any]:
        """Raw /api/tags payload."""
        try:
            resp = await self._http.get(TAGS_PATH, timeout=self.settings.liveness_timeout)
            resp.raise_for_status()
            data = resp.json()
        except httpx.ConnectError as e:
            raise ServiceUnavailableError(f"Cannot connect to Ollama at {self.settings.backend_url}") from e
        except httpx.TimeoutException as e:
            raise ServiceUnavailableError("Ollama did not answer the model listing in time") from e
        except (httpx.HTTPError, ValueError) as e:
            raise ProcessingError(f"Failed to list models: {e}") from e
        if not isinstance(data, dict):
            raise ProcessingError("Invalid model listing from Ollama")
        return data

    async def model_names(self) -> List[str]:
        data = await self.list_models()
        models = data.get("models") or []
        return [m["name"] for m in models if isinstance(m, dict) and isinstance(m.get("name"), str)]

    async def check_model_availability(self, model_id: Optional[str] = None) -> bool:
        try:
            names = await self.model_names()
        except AnalysisError:
            return False
        return find_model(names, model_id or self.model) is not None

    async def health(self) -> ServiceHealth:
        reachable = await self.check_liveness()
        names: List[str] = []
        if reachable:
            try:
                names = await self.model_names()
            except AnalysisError as e:
                logger.warning("Failed to fetch models: %s", e)
        matched = find_model(names, self.model)
        return ServiceHealth(
            backend_reachable=reachable,
            model_available=matched is not None,
            available_model_names=frozenset(names),
            matched_model=matched,
        )

    # ---- inference ----

    def _payload(self, image_b64: str, prompt: str) -> Dict[str, Any]:
        s = self.settings
        return {
            "model": self.model,
            "prompt": prompt,
            "images": [image_b64],
            "stream": False,
            "options": {
                "temperature": s.temperature,
                "top_p": s.top_p,
                "max_tokens": s.max_tokens,
            },
        }

    async def infer(self, image_path: Path, prompt: str) -> str:
        """
        Describe one image. Liveness and model checks run first so a down
        backend or missing model never costs a generate call.
        """
        if not await self.check_liveness():
            raise ServiceUnavailableError("Ollama server is not running. Please start Ollama with: ollama serve")
        if not await self.check_model_availability(self.model):
            raise ModelNotFoundError(
                f"Model {self.model} not found. Please install with: ollama pull {self.model}"
            )

        try:
            raw = await asyncio.to_thread(Path(image_path).read_bytes)
        except OSError as e:
            raise ProcessingError(f"Failed to read image file: {e}") from e
        image_b64 = base64.b64encode(raw).decode("ascii")

        logger.info("Analyzing image with %s...", self.model)
        try:
            # httpx timeouts bound each phase; wait_for bounds the whole call
            resp = await asyncio.wait_for(
                self._http.post(
                    GENERATE_PATH,
                    json=self._payload(image_b64, prompt),
                    timeout=self.settings.inference_timeout,
                ),
                timeout=self.settings.inference_timeout,
            )
            resp.raise_for_status()
        except httpx.ConnectError as e:
            raise ServiceUnavailableError(
                f"Cannot connect to Ollama. Make sure Ollama is running on port {self.settings.ollama_port}"
            ) from e
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise InferenceTimeoutError("Analysis timed out. Try with a smaller image or simpler prompt") from e
        except httpx.HTTPError as e:
            raise ProcessingError(f"Vision analysis failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise ProcessingError("Invalid response from Ollama") from e
        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise ProcessingError("Invalid response from Ollama")
        return text.strip()
