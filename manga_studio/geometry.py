"""Mapping between the scaled preview and the source image pixel grid."""

from __future__ import annotations

import math
from typing import Any, Mapping

from .errors import InvalidDimensions
from .types import Rect


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up (no banker's rounding)."""
    return int(math.floor(value + 0.5))


def compute_scale(natural_width: float, display_width: float) -> float:
    """Return ``display_width / natural_width``.

    Only uniform scaling is supported, so one factor describes both axes.
    """
    if not natural_width or natural_width <= 0:
        raise InvalidDimensions(f"natural width must be positive, got {natural_width!r}")
    scale = display_width / natural_width
    if not math.isfinite(scale) or scale <= 0:
        raise InvalidDimensions(f"display width must be positive, got {display_width!r}")
    return scale


def _check_scale(scale: float) -> None:
    if not math.isfinite(scale) or scale <= 0:
        raise InvalidDimensions(f"scale must be positive, got {scale!r}")


def to_source(rect: Rect, scale: float) -> Rect:
    _check_scale(scale)
    return {
        "x": rect["x"] / scale,
        "y": rect["y"] / scale,
        "w": rect["w"] / scale,
        "h": rect["h"] / scale,
    }


def to_display(rect: Rect, scale: float) -> Rect:
    _check_scale(scale)
    return {
        "x": rect["x"] * scale,
        "y": rect["y"] * scale,
        "w": rect["w"] * scale,
        "h": rect["h"] * scale,
    }


def display_height(natural_width: float, natural_height: float, display_width: float) -> int:
    return round_half_up(natural_height * compute_scale(natural_width, display_width))


def contains(rect: Mapping[str, Any], x: float, y: float) -> bool:
    """Inclusive point-in-rectangle test shared by hit-testing and word assignment."""
    return rect["x"] <= x <= rect["x"] + rect["w"] and rect["y"] <= y <= rect["y"] + rect["h"]


__all__ = [
    "round_half_up",
    "compute_scale",
    "to_source",
    "to_display",
    "display_height",
    "contains",
]
