"""
A4 print-sheet layout and rendering.

All physical sizes are expressed at SHEET_DPI and converted through one scale
factor, so a preview render and the export render differ only by that scale.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterator, List, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFilter

from passportprint.core.models import (
    A4_MM,
    DEFAULT_PREVIEW_PX,
    MM_PER_INCH,
    PHOTO_SHEET_PX,
    SHEET_DPI,
    SHEET_PX,
)

logger = logging.getLogger(__name__)

MARGIN_MM = 10.0
GAP_MM = 7.0
MIN_GAP = 2.0  # canonical sheet pixels

SHADOW_ALPHA = 0.10
SHADOW_BLUR = 8.0
SHADOW_OFFSET_Y = 3.0
STROKE_WIDTH = 1.2
STROKE_RGBA = (0, 0, 0, 46)  # ~18% black

GRIDS = {1: (1, 1), 4: (2, 2), 8: (2, 4), 12: (3, 4)}


def grid_for_quantity(quantity: int) -> Tuple[int, int]:
    """(cols, rows) for a quantity; unlisted quantities use two columns."""
    if quantity in GRIDS:
        return GRIDS[quantity]
    return 2, max(1, math.ceil(quantity / 2))


def _mm_to_sheet_px(mm: float) -> float:
    return mm * (SHEET_DPI / MM_PER_INCH)


@dataclass(frozen=True)
class SheetLayout:
    """Geometry of one render; every length is in target-canvas pixels."""
    quantity: int
    cols: int
    rows: int
    canvas_w: int
    canvas_h: int
    scale: float
    photo_w: float
    photo_h: float
    margin_px: float
    gap_x_px: float
    gap_y_px: float
    start_x: float
    start_y: float

    @property
    def grid_w(self) -> float:
        return self.cols * self.photo_w + (self.cols - 1) * self.gap_x_px

    @property
    def grid_h(self) -> float:
        return self.rows * self.photo_h + (self.rows - 1) * self.gap_y_px

    def slots(self) -> Iterator[Tuple[float, float]]:
        """Top-left corner of each drawn photo, row-major, `quantity` at most."""
        for r in range(self.rows):
            for c in range(self.cols):
                if r * self.cols + c >= self.quantity:
                    return
                yield (
                    self.start_x + c * (self.photo_w + self.gap_x_px),
                    self.start_y + r * (self.photo_h + self.gap_y_px),
                )

    def slot_centers(self) -> List[Tuple[float, float]]:
        return [(x + self.photo_w / 2.0, y + self.photo_h / 2.0) for x, y in self.slots()]


def plan_layout(quantity: int, canvas_w: int, canvas_h: int) -> SheetLayout:
    if quantity < 1:
        raise ValueError("quantity must be >= 1")
    if canvas_w <= 0 or canvas_h <= 0:
        raise ValueError("canvas size must be positive")

    scale = min(canvas_w / SHEET_PX[0], canvas_h / SHEET_PX[1])
    photo_w = PHOTO_SHEET_PX[0] * scale
    photo_h = PHOTO_SHEET_PX[1] * scale
    margin = _mm_to_sheet_px(MARGIN_MM) * scale
    gap = _mm_to_sheet_px(GAP_MM) * scale
    min_gap = MIN_GAP * scale

    cols, rows = grid_for_quantity(quantity)
    max_w = canvas_w - margin * 2
    max_h = canvas_h - margin * 2

    gap_x = gap
    if cols * photo_w + (cols - 1) * gap_x > max_w and cols > 1:
        gap_x = max(min_gap, (max_w - cols * photo_w) / (cols - 1))

    gap_y = gap
    if rows * photo_h + (rows - 1) * gap_y > max_h and rows > 1:
        gap_y = max(min_gap, (max_h - rows * photo_h) / (rows - 1))

    grid_w = cols * photo_w + (cols - 1) * gap_x
    grid_h = rows * photo_h + (rows - 1) * gap_y
    if grid_w > max_w or grid_h > max_h:
        logger.warning("Sheet grid %dx%d for qty %d overflows the printable area", cols, rows, quantity)

    return SheetLayout(
        quantity=quantity,
        cols=cols,
        rows=rows,
        canvas_w=canvas_w,
        canvas_h=canvas_h,
        scale=scale,
        photo_w=photo_w,
        photo_h=photo_h,
        margin_px=margin,
        gap_x_px=gap_x,
        gap_y_px=gap_y,
        start_x=(canvas_w - grid_w) / 2.0,
        start_y=(canvas_h - grid_h) / 2.0,
    )


@dataclass(frozen=True)
class PrintSheet:
    image: Image.Image  # RGB
    layout: SheetLayout

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size

    def describe(self) -> str:
        return (
            f"A4 {A4_MM[0]:.0f}×{A4_MM[1]:.0f}mm • {self.image.width}×{self.image.height}px "
            f"• Qty {self.layout.quantity}"
        )


def render_sheet(photo: np.ndarray, layout: SheetLayout) -> PrintSheet:
    """Draw `layout.quantity` copies of `photo` on a white canvas."""
    canvas = Image.new("RGB", (layout.canvas_w, layout.canvas_h), (255, 255, 255))
    pw = max(1, int(round(layout.photo_w)))
    ph = max(1, int(round(layout.photo_h)))
    tile = Image.fromarray(photo[..., :3]).resize((pw, ph), Image.LANCZOS)

    slots = [(int(round(x)), int(round(y))) for x, y in layout.slots()]

    # Drop shadow: blurred rectangles, offset downward, blended as translucent black.
    shadow = Image.new("L", canvas.size, 0)
    sdraw = ImageDraw.Draw(shadow)
    offset = int(round(SHADOW_OFFSET_Y * layout.scale))
    for x, y in slots:
        sdraw.rectangle([x, y + offset, x + pw - 1, y + ph - 1 + offset], fill=int(255 * SHADOW_ALPHA))
    blur = SHADOW_BLUR * layout.scale / 2.0
    if blur > 0:
        shadow = shadow.filter(ImageFilter.GaussianBlur(blur))
    canvas.paste((0, 0, 0), (0, 0, canvas.width, canvas.height), shadow)

    for x, y in slots:
        canvas.paste(tile, (x, y))

    stroke = max(1, int(round(STROKE_WIDTH * layout.scale)))
    overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    odraw = ImageDraw.Draw(overlay)
    for x, y in slots:
        odraw.rectangle([x, y, x + pw - 1, y + ph - 1], outline=STROKE_RGBA, width=stroke)
    canvas = Image.alpha_composite(canvas.convert("RGBA"), overlay).convert("RGB")

    return PrintSheet(image=canvas, layout=layout)


def render_sheets(
    photo: np.ndarray,
    quantity: int,
    preview_size: Tuple[int, int] = DEFAULT_PREVIEW_PX,
) -> Tuple[PrintSheet, PrintSheet]:
    """Render (preview, export) sheets from the same layout rules."""
    export = render_sheet(photo, plan_layout(quantity, *SHEET_PX))
    preview = render_sheet(photo, plan_layout(quantity, *preview_size))
    logger.info("Rendered sheet qty=%d export=%s preview=%s", quantity, export.size, preview.size)
    return preview, export
