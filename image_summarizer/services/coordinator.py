"""
Purpose:
- Drive validate -> stage -> preprocess -> infer -> release for one upload.
- Batch mode: per-item failure isolation, submission-ordered results, each
  item's files released as soon as that item finishes.
"""

from __future__ import annotations
import asyncio
import logging
import time
from typing import List, Optional

from ..core.errors import AnalysisError
from ..core.settings import Settings
from ..vlm.ollama_client import OllamaClient
from .ingest import normalize_prompt, validate_upload
from .preprocess import ImagePreprocessor
from .schema import AnalysisOutcome, AnalysisRequest, BatchOutcome
from .storage import FileStore

logger = logging.getLogger(__name__)


class BatchCoordinator:
    def __init__(
        self,
        settings: Settings,
        store: FileStore,
        preprocessor: ImagePreprocessor,
        client: OllamaClient,
    ):
        self.settings = settings
        self.store = store
        self.preprocessor = preprocessor
        self.client = client

    async def analyze(self, request: AnalysisRequest) -> AnalysisOutcome:
        """
        Single-item pipeline. Raises AnalysisError subclasses; callers that
        need an outcome record either way use run_single().
        """
        upload = request.upload
        validate_upload(upload.filename, upload.size, self.settings)
        prompt = normalize_prompt(request.prompt, self.settings)

        logger.info("Processing image: %s (%.2fMB)", upload.filename, upload.size / 1024 / 1024)
        started = time.perf_counter()
        async with self.store.staged(upload) as artifact:
            image_path = await self.preprocessor.optimize(artifact.path)
            if image_path != artifact.path:
                artifact.derived.append(image_path)
            summary = await self.client.infer(image_path, prompt)
        elapsed = time.perf_counter() - started

        logger.info("Analysis completed in %.1fs", elapsed)
        return AnalysisOutcome.ok(
            filename=upload.filename,
            summary=summary,
            processing_time=elapsed,
            file_size=upload.size,
        )

    async def run_single(self, request: AnalysisRequest) -> AnalysisOutcome:
        try:
            return await self.analyze(request)
        except AnalysisError as e:
            logger.error("Analysis failed for %s: %s", request.upload.filename, e.message)
            return AnalysisOutcome.failed(request.upload.filename, e.message)
        except Exception as e:
            logger.exception("Unexpected failure analyzing %s", request.upload.filename)
            return AnalysisOutcome.failed(request.upload.filename, f"Analysis failed: {e}")

    async def run_batch(self, requests: List[AnalysisRequest], concurrency: Optional[int] = None) -> BatchOutcome:
        total = len(requests)
        limit = concurrency or self.settings.batch_concurrency
        gate = asyncio.Semaphore(limit)
        logger.info("Processing batch of %d images (in flight: %d)", total, limit)

        async def _one(index: int, request: AnalysisRequest) -> AnalysisOutcome:
            async with gate:
                logger.info("Processing %d/%d: %s", index + 1, total, request.upload.filename)
                return await self.run_single(request)

        # gather keeps submission order; the semaphore admits waiters FIFO
        results = await asyncio.gather(*(_one(i, r) for i, r in enumerate(requests)))
        outcome = BatchOutcome.from_results(list(results))
        logger.info("Batch processing completed: %d/%d successful", outcome.successful, outcome.total)
        return outcome
