"""
Purpose:
- Shared JSON shapes for API answers (timestamps, error bodies, 404 listing).
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import Request

AVAILABLE_ENDPOINTS = [
    "GET /health",
    "GET /status",
    "GET /models",
    "POST /analyze-image",
    "POST /batch-analyze",
]


def timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def error_body(message: str) -> Dict[str, Any]:
    return {"error": message, "timestamp": timestamp()}


def not_found_body(request: Request) -> Dict[str, Any]:
    return {
        "error": "Endpoint not found",
        "path": request.url.path,
        "method": request.method,
        "availableEndpoints": AVAILABLE_ENDPOINTS,
    }


def request_error_message(errors: List[Dict[str, Any]]) -> str:
    """Human-readable message for a malformed request (wrong field types, text instead of a file)."""
    for err in errors:
        loc = err.get("loc") or ()
        if "images" in loc:
            return "No image files provided"
        if "image" in loc:
            return "No image file provided"
    if errors:
        return f"Invalid request: {errors[0].get('msg', 'malformed input')}"
    return "Invalid request"
