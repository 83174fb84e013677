"""Interchangeable ways of turning a composed mosaic into translations."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Protocol

from .assign import TieBreak, assign_words, items_for_translation
from .errors import ValidationError
from .mosaic import MosaicResult
from .ocr import MAX_BASE64_CHARS, OCRProvider, check_image_size
from .translate import Translator, char_count, translate_crops, translate_items

logger = logging.getLogger(__name__)

DEFAULT_CREDITS_PER_ROI_TEXT = 1
DEFAULT_CREDITS_PER_ROI_DIRECT = 10


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, value)
        return default


@dataclass
class StrategyOutcome:
    translations: Dict[int, str] = field(default_factory=dict)
    sources: Dict[int, str] = field(default_factory=dict)
    billable_rois: int = 0
    char_count: int = 0
    provider: str = ""
    model: str = ""

    @property
    def empty(self) -> bool:
        return self.billable_rois == 0


class TranslationStrategy(Protocol):
    name: str
    credits_per_roi: int
    needs_crops: bool

    def execute(self, mosaic: MosaicResult, *, source_lang: str, request_id: str) -> StrategyOutcome:
        ...


class OcrTextStrategy:
    """OCR the whole mosaic once, route words back to cells, translate the text."""

    name = "ocr-text"
    needs_crops = False

    def __init__(
        self,
        ocr: OCRProvider,
        translator: Translator,
        credits_per_roi: int | None = None,
        tie_break: TieBreak = "first",
        max_image_base64_chars: int = MAX_BASE64_CHARS,
    ) -> None:
        self._ocr = ocr
        self._max_image_base64_chars = max_image_base64_chars
        self._translator = translator
        self._tie_break = tie_break
        self.credits_per_roi = (
            credits_per_roi
            if credits_per_roi is not None
            else _env_int("CREDITS_PER_ROI_TEXT", DEFAULT_CREDITS_PER_ROI_TEXT)
        )

    def execute(self, mosaic: MosaicResult, *, source_lang: str, request_id: str) -> StrategyOutcome:
        check_image_size(mosaic.mosaic_png, self._max_image_base64_chars)
        result = self._ocr.detect(mosaic.mosaic_png, language_hint=source_lang)
        cell_texts = assign_words(
            result["words"],
            mosaic.cells,
            source_lang=source_lang,
            tie_break=self._tie_break,
        )
        items = items_for_translation(cell_texts, mosaic.roi_ids)
        outcome = StrategyOutcome(
            sources=cell_texts,
            provider=self._translator.name,
            model=self._translator.model,
        )
        if not items:
            logger.info("No text recognized in any region for request=%s", request_id)
            return outcome

        translated = translate_items(
            items,
            source_lang=source_lang,
            request_id=request_id,
            translator=self._translator,
        )
        outcome.translations = {item["id"]: item["text"] for item in translated}
        outcome.billable_rois = len(items)
        outcome.char_count = char_count(items)
        return outcome


class DirectImageStrategy:
    """Send every ROI crop to a multimodal model that reads and translates at once."""

    name = "direct-image"
    needs_crops = True

    def __init__(self, translator: Translator, credits_per_roi: int | None = None) -> None:
        self._translator = translator
        self.credits_per_roi = (
            credits_per_roi
            if credits_per_roi is not None
            else _env_int("CREDITS_PER_ROI_DIRECT", DEFAULT_CREDITS_PER_ROI_DIRECT)
        )

    def execute(self, mosaic: MosaicResult, *, source_lang: str, request_id: str) -> StrategyOutcome:
        if not mosaic.crops:
            raise ValidationError("Could not build crops for direct translation")
        translated = translate_crops(
            mosaic.crops,
            source_lang=source_lang,
            request_id=request_id,
            translator=self._translator,
        )
        return StrategyOutcome(
            translations={item["id"]: item["text"] for item in translated},
            sources={crop["roi_id"]: "" for crop in mosaic.crops},
            billable_rois=len(mosaic.crops),
            char_count=sum(len(item["text"]) for item in translated),
            provider=f"{self._translator.name}-multi",
            model=self._translator.model,
        )


def build_strategies(ocr: OCRProvider, text_translator: Translator, image_translator: Translator) -> Dict[str, TranslationStrategy]:
    strategies: List[TranslationStrategy] = [
        OcrTextStrategy(ocr, text_translator),
        DirectImageStrategy(image_translator),
    ]
    return {strategy.name: strategy for strategy in strategies}


__all__ = [
    "StrategyOutcome",
    "TranslationStrategy",
    "OcrTextStrategy",
    "DirectImageStrategy",
    "build_strategies",
]
