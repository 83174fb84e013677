"""Interactive store for the rectangles a user draws over the preview."""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, List, Optional

from .geometry import contains
from .types import ROI, Point, Rect

logger = logging.getLogger(__name__)

DEFAULT_MIN_SIZE = 4.0

RoiListener = Callable[[List[ROI]], None]


def _coerce_point(point: Any) -> Optional[Point]:
    try:
        x, y = point
        px, py = float(x), float(y)
    except (TypeError, ValueError, OverflowError):
        return None
    if not (math.isfinite(px) and math.isfinite(py)):
        return None
    return (px, py)


def normalize_rect(rect: Rect) -> Rect:
    """Flip negative extents so ``x, y`` is the top-left corner."""
    x = rect["x"] + rect["w"] if rect["w"] < 0 else rect["x"]
    y = rect["y"] + rect["h"] if rect["h"] < 0 else rect["y"]
    return {"x": x, "y": y, "w": abs(rect["w"]), "h": abs(rect["h"])}


class RoiAnnotationStore:
    """Ordered ROI list plus the drawing and selection state of one editing session.

    Identifiers come from a counter that only moves forward, so an id is
    never handed out twice even after deletions or ``clear_all``. The list
    order is the order in which the user drew the rectangles; that order is
    the reading order used by every later stage.
    """

    def __init__(self, min_size: float = DEFAULT_MIN_SIZE) -> None:
        self._min_size = min_size
        self._rois: List[ROI] = []
        self._next_id = 1
        self._pending: Optional[Rect] = None
        self._selected_id: Optional[int] = None
        self._listeners: List[RoiListener] = []

    def __len__(self) -> int:
        return len(self._rois)

    @property
    def rois(self) -> List[ROI]:
        return [dict(roi) for roi in self._rois]  # type: ignore[misc]

    @property
    def reading_order(self) -> List[int]:
        return [roi["id"] for roi in self._rois]

    @property
    def selected_id(self) -> Optional[int]:
        return self._selected_id

    @property
    def pending(self) -> Optional[Rect]:
        if self._pending is None:
            return None
        return dict(self._pending)  # type: ignore[return-value]

    def subscribe(self, listener: RoiListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.rois
        for listener in list(self._listeners):
            listener(snapshot)

    def hit_test(self, point: Any) -> Optional[ROI]:
        """Return the first ROI containing the point; overlapping ROIs resolve by list order."""
        coerced = _coerce_point(point)
        if coerced is None:
            return None
        px, py = coerced
        for roi in self._rois:
            if contains(roi, px, py):
                return dict(roi)  # type: ignore[return-value]
        return None

    def press(self, point: Any) -> Optional[ROI]:
        """Mouse-down: select the ROI under the pointer, or start drawing a new one."""
        hit = self.select_at(point)
        if hit is None:
            self.begin_draw(point)
        return hit

    def select_at(self, point: Any) -> Optional[ROI]:
        hit = self.hit_test(point)
        self._selected_id = hit["id"] if hit is not None else None
        return hit

    def select(self, roi_id: Optional[int]) -> None:
        if roi_id is None or any(roi["id"] == roi_id for roi in self._rois):
            self._selected_id = roi_id

    def begin_draw(self, point: Any) -> None:
        coerced = _coerce_point(point)
        if coerced is None:
            return
        self._selected_id = None
        self._pending = {"x": coerced[0], "y": coerced[1], "w": 0.0, "h": 0.0}

    def update_draw(self, point: Any) -> None:
        if self._pending is None:
            return
        coerced = _coerce_point(point)
        if coerced is None:
            return
        self._pending["w"] = coerced[0] - self._pending["x"]
        self._pending["h"] = coerced[1] - self._pending["y"]

    def cancel_draw(self) -> None:
        self._pending = None

    def commit_draw(self) -> Optional[ROI]:
        if self._pending is None:
            return None
        rect = normalize_rect(self._pending)
        self._pending = None
        if rect["w"] <= self._min_size or rect["h"] <= self._min_size:
            logger.debug("Discarding degenerate rectangle %.1fx%.1f", rect["w"], rect["h"])
            return None
        roi: ROI = {"id": self._next_id, **rect}
        self._next_id += 1
        self._rois.append(roi)
        self._notify()
        return dict(roi)  # type: ignore[return-value]

    def delete(self, roi_id: int) -> bool:
        remaining = [roi for roi in self._rois if roi["id"] != roi_id]
        if len(remaining) == len(self._rois):
            return False
        self._rois = remaining
        if self._selected_id == roi_id:
            self._selected_id = None
        self._notify()
        return True

    def delete_selected(self) -> bool:
        if self._selected_id is None:
            return False
        removed = self.delete(self._selected_id)
        self._selected_id = None
        return removed

    def clear_all(self) -> None:
        self._rois = []
        self._selected_id = None
        self._pending = None
        self._notify()


__all__ = ["RoiAnnotationStore", "RoiListener", "normalize_rect", "DEFAULT_MIN_SIZE"]
