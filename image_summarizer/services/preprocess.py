"""
Purpose:
- Downscale + re-encode an image to JPEG so the backend gets a bounded payload.
- Best effort only: any failure hands back the original path unchanged.
"""

from __future__ import annotations
import asyncio
import logging
from pathlib import Path
from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

OPTIMIZED_SUFFIX = "_optimized.jpg"


def optimized_path_for(source: Path) -> Path:
    return source.with_name(source.name + OPTIMIZED_SUFFIX)


class ImagePreprocessor:
    def __init__(self, max_dimension: int = 1024, quality: int = 85):
        self.max_dimension = max_dimension
        self.quality = quality

    def _render(self, source: Path, target: Path) -> None:
        with Image.open(source) as img:
            img = ImageOps.exif_transpose(img)
            # thumbnail() keeps aspect ratio and never enlarges
            img.thumbnail((self.max_dimension, self.max_dimension))
            img.convert("RGB").save(target, format="JPEG", quality=self.quality)

    async def optimize(self, source: Path) -> Path:
        source = Path(source)
        target = optimized_path_for(source)
        try:
            await asyncio.to_thread(self._render, source, target)
            return target
        except Exception as e:
            logger.warning("Image optimization failed, using original: %s", e)
            # a half-written target would otherwise outlive the request
            try:
                target.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning("Failed to cleanup optimized image %s: %s", target, cleanup_error)
            return source
