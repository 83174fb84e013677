"""A single page editing session: the loaded image, its regions and last results."""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .annotator import RoiAnnotationStore
from .errors import ValidationError
from .geometry import display_height
from .pipeline import EMPTY_PLACEHOLDER, PipelineResult, TranslationPipeline, export_text
from .types import TranslationItem

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_WIDTH = int(os.environ.get("STUDIO_DISPLAY_WIDTH", "640"))


@dataclass(frozen=True)
class SourceImage:
    image: Image.Image
    natural_width: int
    natural_height: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "SourceImage":
        try:
            with Image.open(io.BytesIO(data)) as im:
                image = im.convert("RGB")
        except (UnidentifiedImageError, OSError) as exc:
            raise ValidationError("File is not a readable image") from exc
        return cls(image=image, natural_width=image.width, natural_height=image.height)


class StudioSession:
    """Keeps regions and results tied to the image they were drawn on.

    Loading a new image replaces it in one step and clears regions,
    selection, any half-drawn rectangle, and previous results.
    """

    def __init__(self, display_width: int = DEFAULT_DISPLAY_WIDTH) -> None:
        self.display_width = display_width
        self.store = RoiAnnotationStore()
        self._source: Optional[SourceImage] = None
        self._results: List[TranslationItem] = []
        self._running = False
        self._generation = 0

    @property
    def source(self) -> Optional[SourceImage]:
        return self._source

    @property
    def results(self) -> List[TranslationItem]:
        return list(self._results)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def display_height(self) -> int:
        if self._source is None:
            return 0
        return display_height(self._source.natural_width, self._source.natural_height, self.display_width)

    def load_image(self, data: bytes) -> SourceImage:
        source = SourceImage.from_bytes(data)
        self._source = source
        self._generation += 1
        self.store.clear_all()
        self._results = []
        self._running = False
        logger.info("Loaded %sx%s image", source.natural_width, source.natural_height)
        return source

    def _claim_run(self) -> Tuple[int, SourceImage]:
        source = self._source
        if source is None or len(self.store) == 0:
            raise ValidationError("Upload an image and mark at least one region")
        if self._running:
            raise ValidationError("A translation is already running", status_code=409)
        self._running = True
        return self._generation, source

    def begin_run(self) -> int:
        """Mark a run in flight and return the image generation it belongs to."""
        generation, _ = self._claim_run()
        return generation

    def finish_run(self, generation: int, items: List[TranslationItem]) -> bool:
        """Store results unless the image was replaced while the run was in flight."""
        if generation != self._generation:
            logger.info("Discarding results for a replaced image")
            return False
        self._results = sorted(items, key=lambda item: item["id"])
        self._running = False
        return True

    def abort_run(self) -> None:
        self._running = False

    def translate(
        self,
        pipeline: TranslationPipeline,
        user_id: str,
        strategy: str,
        source_lang: str = "ja",
    ) -> PipelineResult:
        generation, source = self._claim_run()
        try:
            result = pipeline.run(
                user_id,
                source.image,
                self.store.rois,
                self.display_width,
                strategy,
                source_lang=source_lang,
                reading_order=self.store.reading_order,
            )
        except Exception:
            self.abort_run()
            raise
        self.finish_run(generation, result.items)
        return result

    def export_text(self, placeholder: str = EMPTY_PLACEHOLDER) -> str:
        return export_text(self._results, placeholder)


__all__ = ["SourceImage", "StudioSession", "DEFAULT_DISPLAY_WIDTH"]
