"""End-to-end translation run over one page and its regions."""

from __future__ import annotations

import logging
import uuid
import warnings
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence

from PIL import Image

from .abuse import EmptyResultTracker
from .errors import EmptyResultWarning, ProviderFormatError, QuotaExceededError, ValidationError
from .ledger import CreditLedger, LedgerEntry
from .mosaic import MosaicOptions, compose
from .strategies import TranslationStrategy
from .translate import resolve_results
from .types import ROI, HistoryItem, TranslationItem

logger = logging.getLogger(__name__)

EMPTY_PLACEHOLDER = "(sin texto)"


@dataclass
class PipelineResult:
    request_id: str
    strategy: str
    items: List[TranslationItem]
    credits_spent: int
    empty: bool


def export_text(items: Sequence[TranslationItem], placeholder: str = EMPTY_PLACEHOLDER) -> str:
    """One ``#<id> <text>`` line per region, ascending by id."""
    ordered = sorted(items, key=lambda item: item["id"])
    return "\n".join(f"#{item['id']} {item['text'] or placeholder}" for item in ordered)


class TranslationPipeline:
    """Compose, run a strategy, and charge credits all-or-nothing.

    Validation and quota failures happen before any provider call and never
    touch the ledger. Invalid provider output is logged to history as a
    failed attempt without a charge. Every request gets a fresh id, so a
    user retry is a new request and never collides with an earlier one.
    """

    def __init__(
        self,
        ledger: CreditLedger,
        strategies: Dict[str, TranslationStrategy],
        abuse: Optional[EmptyResultTracker] = None,
    ) -> None:
        self._ledger = ledger
        self._strategies = strategies
        self._abuse = abuse if abuse is not None else EmptyResultTracker()

    @property
    def strategy_names(self) -> List[str]:
        return sorted(self._strategies)

    def run(
        self,
        user_id: str,
        source: Image.Image,
        rois: Sequence[ROI],
        display_width: float,
        strategy: str,
        *,
        source_lang: str = "ja",
        target_lang: str = "es",
        reading_order: Optional[Sequence[int]] = None,
        options: Optional[MosaicOptions] = None,
    ) -> PipelineResult:
        selected = self._strategies.get(strategy)
        if selected is None:
            raise ValidationError(f"Unknown translation mode '{strategy}'")

        blocked, blocked_until = self._abuse.is_blocked(user_id)
        if blocked:
            raise QuotaExceededError(
                "Too many empty requests; try again later",
                reason="cooldown",
                retry_at=blocked_until,
            )
        if not rois:
            raise ValidationError("Upload an image and mark at least one region")

        request_id = uuid.uuid4().hex
        opts = replace(options or MosaicOptions(), return_crops=selected.needs_crops)
        order = list(reading_order) if reading_order is not None else [roi["id"] for roi in rois]
        mosaic = compose(source, rois, display_width, opts, reading_order=order)

        base_entry: LedgerEntry = {
            "user_id": user_id,
            "request_id": request_id,
            "source_lang": source_lang,
            "target_lang": target_lang,
            "roi_count": len(mosaic.cells),
            "provider": selected.name,
        }
        try:
            outcome = selected.execute(mosaic, source_lang=source_lang, request_id=request_id)
        except ProviderFormatError as exc:
            logger.error("Provider returned invalid output for request=%s: %s", request_id, exc)
            self._ledger.record_failure({**base_entry, "char_count": 0, "error": str(exc)})  # type: ignore[typeddict-item]
            raise

        items = resolve_results(mosaic.roi_ids, {str(roi_id): text for roi_id, text in outcome.translations.items()})
        if outcome.empty:
            count, until = self._abuse.note_empty(user_id)
            self._abuse.prune()
            warnings.warn(EmptyResultWarning(f"No text recognized (request={request_id}, strike={count})"))
            logger.warning(
                "Empty OCR for user=%s request=%s strike=%s blocked_until=%s",
                user_id,
                request_id,
                count,
                until or "-",
            )
            return PipelineResult(request_id, selected.name, items, 0, True)

        self._abuse.reset(user_id)
        needed = selected.credits_per_roi * outcome.billable_rois
        history: List[HistoryItem] = [
            {"roi_id": item["id"], "src": outcome.sources.get(item["id"], ""), "dst": item["text"]}
            for item in items
        ]
        self._ledger.spend_and_log(
            {
                **base_entry,  # type: ignore[typeddict-item]
                "credits": needed,
                "roi_count": outcome.billable_rois,
                "char_count": outcome.char_count,
                "provider": outcome.provider or selected.name,
                "model": outcome.model,
                "items": history,
            }
        )
        return PipelineResult(request_id, selected.name, items, needed, False)


__all__ = ["TranslationPipeline", "PipelineResult", "export_text", "EMPTY_PLACEHOLDER"]
