"""
Purpose:
- Cheap, early rejection of uploads before anything touches disk or the backend.
- Reads the multipart body with a hard cap so an oversized file is never held whole.
"""

from __future__ import annotations
from pathlib import PurePath
from typing import Optional
from fastapi import UploadFile

from ..core.errors import UploadValidationError
from ..core.settings import Settings
from .schema import IncomingUpload


def file_extension(filename: str) -> str:
    return PurePath(filename or "").suffix.lower()


def validate_upload(filename: str, size: int, settings: Settings) -> str:
    """
    Accept only allowed extensions and sizes within the configured limit.
    Returns the normalized extension.
    """
    if not filename:
        raise UploadValidationError("No image file provided")
    ext = file_extension(filename)
    if ext not in settings.allowed_extensions:
        raise UploadValidationError(
            f"File type not allowed. Use: {', '.join(settings.allowed_extensions)}"
        )
    if size > settings.max_file_size:
        raise UploadValidationError(
            f"File too large. Maximum size is {settings.max_file_size_label}"
        )
    if size == 0:
        raise UploadValidationError("Uploaded file is empty")
    return ext


async def read_upload(upload: Optional[UploadFile], settings: Settings) -> IncomingUpload:
    if upload is None:
        raise UploadValidationError("No image file provided")

    # one byte past the limit is enough to know it is too large
    content = await upload.read(settings.max_file_size + 1)
    return IncomingUpload(
        # a nameless part is rejected later by validate_upload, per item in a batch
        filename=upload.filename or "",
        content=content,
        content_type=upload.content_type,
    )


def normalize_prompt(prompt: Optional[str], settings: Settings) -> str:
    prompt = (prompt or "").strip()
    return prompt or settings.default_prompt
