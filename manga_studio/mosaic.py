"""Compose ROI crops into a single-column sheet sized for OCR."""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from PIL import Image

from .errors import ValidationError
from .geometry import compute_scale, round_half_up, to_source
from .types import ROI, CropFormat, MosaicCell, Rect, RoiCrop

logger = logging.getLogger(__name__)

BACKGROUND = (255, 255, 255)
RESAMPLE = Image.Resampling.LANCZOS

_MIME_TYPES = {"png": "image/png", "jpeg": "image/jpeg"}


@dataclass(frozen=True)
class MosaicOptions:
    cell_width: int = 600
    padding: int = 18
    return_crops: bool = False
    crop_max_width: int = 768
    crop_format: CropFormat = "png"
    crop_quality: float = 0.85


@dataclass
class MosaicResult:
    mosaic_png: bytes
    width: int
    height: int
    cells: List[MosaicCell]
    crops: List[RoiCrop] = field(default_factory=list)

    @property
    def roi_ids(self) -> List[int]:
        return [cell["roi_id"] for cell in self.cells]


def scaled_height(source_w: float, source_h: float, width: int) -> int:
    """Height keeping the source aspect ratio at ``width``, never below one pixel."""
    return max(1, round_half_up((source_h / source_w) * width))


def data_url(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64," + base64.b64encode(data).decode("ascii")


def _ordered(rois: Sequence[ROI], reading_order: Optional[Sequence[int]]) -> List[ROI]:
    if reading_order is None:
        return list(rois)
    by_id = {roi["id"]: roi for roi in rois}
    missing = [roi_id for roi_id in reading_order if roi_id not in by_id]
    if missing or len(reading_order) != len(by_id):
        raise ValidationError(f"Reading order does not match the ROI list (missing {missing})")
    return [by_id[roi_id] for roi_id in reading_order]


def _render_region(image: Image.Image, src: Rect, size: Tuple[int, int]) -> Image.Image:
    """Stretch ``src`` onto a ``size`` canvas.

    Parts of ``src`` outside the image are clipped and the visible part lands
    on the matching sub-rectangle of the canvas; the rest stays background.
    """
    out_w, out_h = size
    canvas = Image.new("RGB", size, BACKGROUND)
    x0 = max(src["x"], 0.0)
    y0 = max(src["y"], 0.0)
    x1 = min(src["x"] + src["w"], float(image.width))
    y1 = min(src["y"] + src["h"], float(image.height))
    if x1 <= x0 or y1 <= y0:
        return canvas

    fx = out_w / src["w"]
    fy = out_h / src["h"]
    left = round_half_up((x0 - src["x"]) * fx)
    top = round_half_up((y0 - src["y"]) * fy)
    right = round_half_up((x1 - src["x"]) * fx)
    bottom = round_half_up((y1 - src["y"]) * fy)
    target = (max(1, right - left), max(1, bottom - top))
    patch = image.resize(target, RESAMPLE, box=(x0, y0, x1, y1))
    canvas.paste(patch, (left, top))
    return canvas


def _encode(image: Image.Image, crop_format: CropFormat, quality: float) -> bytes:
    buffer = io.BytesIO()
    if crop_format == "jpeg":
        image.save(buffer, format="JPEG", quality=max(1, min(95, round_half_up(quality * 100))))
    else:
        image.save(buffer, format="PNG")
    return buffer.getvalue()


def compose(
    source: Image.Image,
    rois: Sequence[ROI],
    display_width: float,
    options: Optional[MosaicOptions] = None,
    *,
    reading_order: Optional[Sequence[int]] = None,
) -> MosaicResult:
    """Stack every ROI of ``source`` into one column, in reading order.

    Cell ``index`` is the ROI's position in the reading order and
    ``roi_id`` points back at the ROI. Heights are rounded per cell and the
    running offset sums already-rounded heights, so rounding error never
    accumulates across cells.
    """
    opts = options or MosaicOptions()
    ordered = _ordered(rois, reading_order)
    if not ordered:
        raise ValidationError("No regions to compose")
    if opts.cell_width <= 0 or opts.padding < 0:
        raise ValidationError("Invalid mosaic cell width or padding")

    image = source if source.mode == "RGB" else source.convert("RGB")
    scale = compute_scale(image.width, display_width)

    patches: List[Tuple[ROI, Rect, int]] = []
    for roi in ordered:
        if roi["w"] <= 0 or roi["h"] <= 0:
            raise ValidationError(f"ROI {roi['id']} has an empty area")
        src = to_source(roi, scale)
        patches.append((roi, src, scaled_height(src["w"], src["h"], opts.cell_width)))

    sheet_w = opts.cell_width + 2 * opts.padding
    sheet_h = opts.padding + sum(height + opts.padding for _, _, height in patches)
    sheet = Image.new("RGB", (sheet_w, sheet_h), BACKGROUND)

    cells: List[MosaicCell] = []
    y = opts.padding
    for index, (roi, src, height) in enumerate(patches):
        sheet.paste(_render_region(image, src, (opts.cell_width, height)), (opts.padding, y))
        cells.append(
            {
                "index": index,
                "roi_id": roi["id"],
                "x": opts.padding,
                "y": y,
                "w": opts.cell_width,
                "h": height,
            }
        )
        y += height + opts.padding

    crops: List[RoiCrop] = []
    if opts.return_crops:
        for roi, src, _ in patches:
            width = max(1, min(opts.crop_max_width, round_half_up(src["w"])))
            crop = _render_region(image, src, (width, scaled_height(src["w"], src["h"], width)))
            crops.append(
                {
                    "roi_id": roi["id"],
                    "mime_type": _MIME_TYPES[opts.crop_format],
                    "image_data": _encode(crop, opts.crop_format, opts.crop_quality),
                }
            )

    logger.debug("Composed %s cells into a %sx%s mosaic", len(cells), sheet_w, sheet_h)
    return MosaicResult(
        mosaic_png=_encode(sheet, "png", 1.0),
        width=sheet_w,
        height=sheet_h,
        cells=cells,
        crops=crops,
    )


__all__ = ["MosaicOptions", "MosaicResult", "compose", "scaled_height", "data_url"]
