"""Assign OCR words back to the mosaic cells they were read from."""

from __future__ import annotations

from typing import Dict, List, Literal, Optional, Sequence

from .geometry import contains
from .text import fragment_separator, normalize_source
from .types import BBox, MosaicCell, OCRWord, Point, TranslationItem

TieBreak = Literal["first", "smallest"]


def _polygon_to_box(poly: Sequence[Sequence[float]]) -> Optional[BBox]:
    if not poly:
        return None
    xs = [p[0] for p in poly]
    ys = [p[1] for p in poly]
    return (min(xs), min(ys), max(xs), max(ys))


def _box_center(box: BBox) -> Point:
    x0, y0, x1, y1 = box
    return ((x0 + x1) / 2.0, (y0 + y1) / 2.0)


def word_centroid(box: Sequence[Sequence[float]]) -> Optional[Point]:
    """Midpoint of the polygon's bounding box (not the true polygon centroid)."""
    bbox = _polygon_to_box(box)
    if bbox is None:
        return None
    return _box_center(bbox)


def find_cell(
    point: Point,
    cells: Sequence[MosaicCell],
    tie_break: TieBreak = "first",
) -> Optional[MosaicCell]:
    px, py = point
    hits = [cell for cell in cells if contains(cell, px, py)]
    if not hits:
        return None
    if tie_break == "smallest":
        return min(hits, key=lambda cell: cell["w"] * cell["h"])
    return hits[0]


def assign_words(
    words: Sequence[OCRWord],
    cells: Sequence[MosaicCell],
    *,
    source_lang: str = "ja",
    tie_break: TieBreak = "first",
) -> Dict[int, str]:
    """Map every cell's ROI id to the normalized text of the words inside it.

    Words keep the provider's emission order within a cell. A word whose
    centroid sits in the padding between cells belongs to no cell and is
    dropped. Cells that received nothing map to an empty string.
    """
    fragments: Dict[int, List[str]] = {cell["roi_id"]: [] for cell in cells}
    for word in words:
        center = word_centroid(word["box"])
        if center is None:
            continue
        cell = find_cell(center, cells, tie_break)
        if cell is not None:
            fragments[cell["roi_id"]].append(word["text"])

    separator = fragment_separator(source_lang)
    return {
        roi_id: normalize_source(separator.join(parts), source_lang)
        for roi_id, parts in fragments.items()
    }


def items_for_translation(
    cell_texts: Dict[int, str],
    reading_order: Sequence[int],
) -> List[TranslationItem]:
    """Non-empty items in reading order; empty cells are left for the final result only."""
    return [
        {"id": roi_id, "text": cell_texts[roi_id]}
        for roi_id in reading_order
        if cell_texts.get(roi_id)
    ]


__all__ = ["TieBreak", "word_centroid", "find_cell", "assign_words", "items_for_translation"]
