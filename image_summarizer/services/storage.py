"""
Purpose:
- Stage uploads under settings.upload_dir/<uuid4><ext> and delete them again.
- release() is the single place staged files (and their preprocessed copies) go away.
- Deletion failures are logged, never raised.
"""

from __future__ import annotations
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from ..core.errors import ProcessingError
from .ingest import file_extension
from .schema import IncomingUpload, UploadedArtifact

logger = logging.getLogger(__name__)


def _ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return True
    except OSError as e:
        logger.warning("Failed to cleanup file %s: %s", path, e)
        return False


class FileStore:
    def __init__(self, upload_dir: Path):
        self.upload_dir = Path(upload_dir)

    async def stage(self, upload: IncomingUpload) -> UploadedArtifact:
        """
        Write the payload to a fresh path named by a random id, never by the
        client's filename, so concurrent uploads cannot collide.
        """
        artifact_id = uuid.uuid4().hex
        ext = file_extension(upload.filename)
        path = self.upload_dir / f"{artifact_id}{ext}"

        def _write() -> None:
            _ensure_dir(self.upload_dir)
            # "xb": refuse to overwrite even if a uuid ever repeated
            with path.open("xb") as fh:
                try:
                    fh.write(upload.content)
                except OSError:
                    fh.close()
                    _unlink(path)
                    raise

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise ProcessingError(f"Failed to store upload: {e}") from e
        return UploadedArtifact(
            artifact_id=artifact_id,
            path=path,
            original_filename=upload.filename,
            size=upload.size,
            extension=ext,
        )

    async def release(self, artifact: UploadedArtifact) -> None:
        if artifact.released:
            logger.warning("Artifact %s already released", artifact.artifact_id)
            return
        artifact.released = True

        def _delete() -> None:
            for p in [*artifact.derived, artifact.path]:
                _unlink(p)

        await asyncio.to_thread(_delete)

    @asynccontextmanager
    async def staged(self, upload: IncomingUpload) -> AsyncIterator[UploadedArtifact]:
        artifact = await self.stage(upload)
        try:
            yield artifact
        finally:
            await self.release(artifact)

    async def purge(self) -> int:
        """Remove every leftover file in the upload dir. Used on shutdown."""

        def _purge() -> int:
            if not self.upload_dir.exists():
                return 0
            removed = 0
            for p in self.upload_dir.iterdir():
                if p.is_file() and _unlink(p):
                    removed += 1
            return removed

        return await asyncio.to_thread(_purge)
