"""Typed structures shared by the studio modules."""

from __future__ import annotations

from typing import List, Literal, Sequence, Tuple, TypedDict

Point = Tuple[float, float]
BBox = Tuple[float, float, float, float]
Polygon = Sequence[Point]

CropFormat = Literal["png", "jpeg"]


class Rect(TypedDict):
    """Axis-aligned rectangle given by its top-left corner and size."""

    x: float
    y: float
    w: float
    h: float


class ROI(Rect):
    """User-drawn region of interest in display space."""

    id: int


class MosaicCell(TypedDict):
    """Placement of one ROI inside the composite sheet."""

    index: int
    roi_id: int
    x: int
    y: int
    w: int
    h: int


class RoiCrop(TypedDict):
    """Independently sized crop of one ROI."""

    roi_id: int
    mime_type: str
    image_data: bytes


class OCRWord(TypedDict):
    """Single OCR word with associated polygon."""

    text: str
    box: Polygon


class OCRResult(TypedDict):
    full_text: str
    words: List[OCRWord]


class TranslationItem(TypedDict):
    id: int
    text: str


class HistoryItem(TypedDict):
    roi_id: int
    src: str
    dst: str


__all__ = [
    "Point",
    "BBox",
    "Polygon",
    "CropFormat",
    "Rect",
    "ROI",
    "MosaicCell",
    "RoiCrop",
    "OCRWord",
    "OCRResult",
    "TranslationItem",
    "HistoryItem",
]
