"""
Purpose:
- FastAPI application factory and router mounts.
- Builds Settings once and wires the pipeline components onto app.state.
- Maps the error taxonomy onto JSON responses; unmatched routes get a 404 listing.
- Uvicorn serves this on settings.host:settings.port.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from rich.logging import RichHandler
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.errors import AnalysisError, UploadValidationError
from .core.settings import Settings
from .api.analyze import router as analyze_router
from .api.health import router as health_router
from .api.responses import error_body, not_found_body, request_error_message
from .services.coordinator import BatchCoordinator
from .services.preprocess import ImagePreprocessor
from .services.storage import FileStore
from .vlm.ollama_client import OllamaClient

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    list(map(root.removeHandler, root.handlers[:]))
    root.addHandler(RichHandler(rich_tracebacks=True))


async def _check_backend(client: OllamaClient) -> None:
    healthy = await client.check_liveness()
    model_ok = healthy and await client.check_model_availability()
    if not healthy:
        logger.warning("Ollama not detected at %s. Start with: ollama serve", client.settings.backend_url)
    elif not model_ok:
        logger.warning("Model %s not found. Install with: ollama pull %s", client.model, client.model)
    else:
        logger.info("Ready to analyze images with %s", client.model)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await _check_backend(app.state.ollama)
    yield
    removed = await app.state.store.purge()
    if removed:
        logger.info("Cleaned up %d temporary files", removed)
    await app.state.ollama.aclose()


def _register_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(UploadValidationError)
    async def _validation(request: Request, exc: UploadValidationError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(AnalysisError)
    async def _analysis(request: Request, exc: AnalysisError):
        logger.error("Analysis failed: %s", exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message))

    @app.exception_handler(RequestValidationError)
    async def _malformed(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": request_error_message(exc.errors())})

    @app.exception_handler(StarletteHTTPException)
    async def _http(request: Request, exc: StarletteHTTPException):
        # a known path with the wrong method is answered like an unknown route
        if exc.status_code in (404, 405):
            return JSONResponse(status_code=404, content=not_found_body(request))
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": str(exc) if settings.is_development else "Something went wrong",
            },
        )


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or Settings()
    # uvicorn --factory skips main(); install the handler unless logging is already configured
    if not logging.getLogger().handlers:
        setup_logging(settings.log_level)
    app = FastAPI(title="Image Summarizer API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # one immutable config, shared by reference
    store = FileStore(settings.upload_dir)
    ollama = OllamaClient(settings, transport=transport)
    app.state.settings = settings
    app.state.store = store
    app.state.ollama = ollama
    app.state.coordinator = BatchCoordinator(
        settings=settings,
        store=store,
        preprocessor=ImagePreprocessor(settings.max_image_dimension, settings.jpeg_quality),
        client=ollama,
    )

    _register_error_handlers(app, settings)
    app.include_router(health_router)
    app.include_router(analyze_router)
    return app


def main() -> None:
    import uvicorn

    settings = Settings()
    setup_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
