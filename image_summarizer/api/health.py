# Common language: backend/ops health checks. Every call re-checks the inference backend;
# nothing here is cached between requests.

import logging
from typing import List

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..core.errors import AnalysisError
from ..core.settings import Settings
from ..vlm.ollama_client import OllamaClient, find_model
from .responses import timestamp

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _client(request: Request) -> OllamaClient:
    return request.app.state.ollama


@router.get("/health")
async def health(request: Request):
    settings = _settings(request)
    state = await _client(request).health()
    return {
        "status": "healthy",
        "timestamp": timestamp(),
        "services": {
            "api": True,
            "backendReachable": state.backend_reachable,
            "model": settings.vision_model if state.model_available else "not_available",
        },
        "config": {
            "maxFileSize": settings.max_file_size_label,
            "allowedExtensions": list(settings.allowed_extensions),
            "ollamaUrl": settings.backend_url,
            "model": settings.vision_model,
        },
    }


@router.get("/status")
async def status(request: Request):
    """
    Backend running flag plus the models it currently serves.
    """
    settings = _settings(request)
    client = _client(request)
    running = await client.check_liveness()

    available: List[str] = []
    if running:
        try:
            available = await client.model_names()
        except AnalysisError as e:
            # listing can fail right after a successful liveness check; report what we know
            logger.warning("Failed to fetch models: %s", e)

    return {
        "backend": {
            "running": running,
            "url": settings.backend_url,
            "availableModels": available,
        },
        "currentModel": settings.vision_model,
        "modelAvailable": find_model(available, settings.vision_model) is not None,
    }


@router.get("/models")
async def models(request: Request):
    try:
        return await _client(request).list_models()
    except AnalysisError as e:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch models", "message": e.message},
        )
