"""
Purpose:
- /analyze-image : one upload, errors answered as HTTP errors.
- /batch-analyze : up to settings.batch_max_files uploads, per-item outcomes.
"""

from typing import List, Optional

from fastapi import APIRouter, File, Form, Request, UploadFile

from ..core.errors import UploadValidationError
from ..services.coordinator import BatchCoordinator
from ..services.ingest import read_upload
from ..services.schema import AnalysisRequest
from .responses import timestamp

router = APIRouter(tags=["analyze"])


def _coordinator(request: Request) -> BatchCoordinator:
    return request.app.state.coordinator


@router.post("/analyze-image")
async def analyze_image(
    request: Request,
    image: Optional[UploadFile] = File(default=None),
    prompt: Optional[str] = Form(default=None),
):
    coordinator = _coordinator(request)
    upload = await read_upload(image, coordinator.settings)
    outcome = await coordinator.analyze(AnalysisRequest(upload=upload, prompt=prompt))
    return {
        "success": True,
        "summary": outcome.summary,
        "filename": outcome.filename,
        "fileSize": outcome.file_size,
        "processingTime": outcome.processing_time_label,
        "timestamp": timestamp(),
        "model": coordinator.settings.vision_model,
    }


@router.post("/batch-analyze")
async def batch_analyze(
    request: Request,
    images: Optional[List[UploadFile]] = File(default=None),
    prompt: Optional[str] = Form(default=None),
):
    coordinator = _coordinator(request)
    settings = coordinator.settings
    files = images or []
    if not files:
        raise UploadValidationError("No image files provided")
    if len(files) > settings.batch_max_files:
        raise UploadValidationError(f"Too many files. Maximum is {settings.batch_max_files}")

    requests = [
        AnalysisRequest(upload=await read_upload(f, settings), prompt=prompt)
        for f in files
    ]
    outcome = await coordinator.run_batch(requests)
    return {
        "success": True,
        "results": [r.as_dict() for r in outcome.results],
        "summary": outcome.summary_dict(),
        "timestamp": timestamp(),
    }
