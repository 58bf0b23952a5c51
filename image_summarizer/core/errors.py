"""
Purpose:
- Small, stable error taxonomy for the analysis pipeline.
- Each error carries the HTTP status the API layer answers with.
"""

from __future__ import annotations


class AnalysisError(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UploadValidationError(AnalysisError):
    """Bad extension, oversized or missing file. User input defect."""

    status_code = 400


class ServiceUnavailableError(AnalysisError):
    """Inference backend is not reachable."""


class ModelNotFoundError(AnalysisError):
    """Backend is up but the requested model is not installed."""


class InferenceTimeoutError(AnalysisError):
    """Generate call exceeded the configured wall-clock bound."""


class ProcessingError(AnalysisError):
    """Malformed backend response or an unexpected transport/internal fault."""
