"""
Purpose:
- Data model for one analysis run: incoming upload, staged artifact, request,
  per-item outcome, batch aggregate and backend health.
- Outcomes are pydantic models so the "exactly one of summary/error" rule is
  enforced at construction time.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional
from pydantic import BaseModel, model_validator


@dataclass(frozen=True)
class IncomingUpload:
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class UploadedArtifact:
    artifact_id: str          # uuid4 hex, also the staged file stem
    path: Path                # staged file on disk
    original_filename: str
    size: int
    extension: str            # lowercased, with leading dot
    derived: List[Path] = field(default_factory=list)  # preprocessed copies
    released: bool = False


@dataclass(frozen=True)
class AnalysisRequest:
    upload: IncomingUpload
    prompt: Optional[str] = None


class AnalysisOutcome(BaseModel):
    success: bool
    filename: str
    summary: Optional[str] = None
    error: Optional[str] = None
    processing_time: Optional[float] = None   # seconds
    file_size: Optional[int] = None

    @model_validator(mode="after")
    def _one_of_summary_or_error(self) -> "AnalysisOutcome":
        if (self.summary is None) == (self.error is None):
            raise ValueError("exactly one of summary/error must be set")
        if self.success != (self.summary is not None):
            raise ValueError("success flag disagrees with payload")
        return self

    @classmethod
    def ok(cls, filename: str, summary: str, processing_time: float, file_size: int) -> "AnalysisOutcome":
        return cls(success=True, filename=filename, summary=summary,
                   processing_time=processing_time, file_size=file_size)

    @classmethod
    def failed(cls, filename: str, error: str) -> "AnalysisOutcome":
        return cls(success=False, filename=filename, error=error)

    @property
    def processing_time_label(self) -> str:
        return f"{(self.processing_time or 0.0):.1f}s"

    def as_dict(self) -> Dict[str, Any]:
        """Wire shape used in batch results."""
        if not self.success:
            return {"success": False, "filename": self.filename, "error": self.error}
        return {
            "success": True,
            "filename": self.filename,
            "summary": self.summary,
            "processingTime": self.processing_time_label,
            "fileSize": self.file_size,
        }


@dataclass(frozen=True)
class BatchOutcome:
    results: List[AnalysisOutcome]
    total: int
    successful: int
    failed: int

    @classmethod
    def from_results(cls, results: List[AnalysisOutcome]) -> "BatchOutcome":
        successful = sum(1 for r in results if r.success)
        return cls(results=list(results), total=len(results),
                   successful=successful, failed=len(results) - successful)

    def summary_dict(self) -> Dict[str, int]:
        return {"total": self.total, "successful": self.successful, "failed": self.failed}


@dataclass(frozen=True)
class ServiceHealth:
    backend_reachable: bool
    model_available: bool
    available_model_names: FrozenSet[str] = frozenset()
    matched_model: Optional[str] = None
