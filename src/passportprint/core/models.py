from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Union

MM_PER_INCH = 25.4

# Keep the A4 sheet at 300 DPI; render the photo itself at a higher DPI and
# downsample it onto the sheet.
SHEET_DPI = 300
PHOTO_DPI = 450

A4_MM = (210.0, 297.0)
PHOTO_MM = (35.0, 45.0)
PHOTO_ASPECT = PHOTO_MM[0] / PHOTO_MM[1]  # 35:45


def px_from_mm(mm: float, dpi: float) -> int:
    """Millimetres -> whole pixels at `dpi` (half-up rounding)."""
    return int((mm / MM_PER_INCH) * dpi + 0.5)


PHOTO_PX = (px_from_mm(PHOTO_MM[0], PHOTO_DPI), px_from_mm(PHOTO_MM[1], PHOTO_DPI))
PHOTO_SHEET_PX = (px_from_mm(PHOTO_MM[0], SHEET_DPI), px_from_mm(PHOTO_MM[1], SHEET_DPI))
SHEET_PX = (px_from_mm(A4_MM[0], SHEET_DPI), px_from_mm(A4_MM[1], SHEET_DPI))

# A4 at 72 DPI, a comfortable on-screen preview.
DEFAULT_PREVIEW_PX = (595, 842)

BACKGROUND_ENGINES = ("on_device", "removebg")
MASK_POLICIES = ("lite", "aggressive")


class FaceSentinel(str, Enum):
    """Detector outcomes that carry no usable box."""
    NONE = "none"
    MULTIPLE = "multiple"


@dataclass(frozen=True)
class NormalizedFaceBox:
    """
    Face bounding box as fractions (0..1) of the frame width/height.

    xmin/ymin are kept alongside the centre because detectors report one or
    the other; both are always populated.
    """
    x_center: float
    y_center: float
    width: float
    height: float
    xmin: float
    ymin: float

    def center_px(self, frame_w: float, frame_h: float) -> Tuple[float, float]:
        return self.x_center * frame_w, self.y_center * frame_h


FaceResult = Union[NormalizedFaceBox, FaceSentinel]


def box_from_relative(xmin: float, ymin: float, width: float, height: float) -> NormalizedFaceBox:
    """Build a box from a relative top-left corner + size."""
    return NormalizedFaceBox(
        x_center=xmin + width / 2.0,
        y_center=ymin + height / 2.0,
        width=width,
        height=height,
        xmin=xmin,
        ymin=ymin,
    )


def box_from_pixels(x: float, y: float, w: float, h: float, frame_w: int, frame_h: int) -> FaceResult:
    """Build a normalized box from a pixel box; a degenerate frame yields NONE."""
    if frame_w <= 0 or frame_h <= 0:
        return FaceSentinel.NONE
    w = max(1.0, float(w))
    h = max(1.0, float(h))
    return box_from_relative(x / frame_w, y / frame_h, w / frame_w, h / frame_h)


@dataclass(frozen=True)
class CropRect:
    """Source-pixel crop window; sw/sh is always 35/45."""
    sx: float
    sy: float
    sw: float
    sh: float

    def as_int_box(self, src_w: int, src_h: int) -> Tuple[int, int, int, int]:
        """Integer (left, top, right, bottom) clamped to the source."""
        left = max(0, int(round(self.sx)))
        top = max(0, int(round(self.sy)))
        right = min(src_w, max(left + 1, int(round(self.sx + self.sw))))
        bottom = min(src_h, max(top + 1, int(round(self.sy + self.sh))))
        return left, top, right, bottom


@dataclass(frozen=True)
class ProcessingParams:
    """
    Parameters that control how the passport photo and sheet are generated.

    background_engine:
        "on_device" (segmentation mask + refinement) or "removebg" (remote cutout).
    mask_policy:
        "lite" keeps hair/skin detail, "aggressive" forces a cleaner white cut.
    enhancement_profile:
        Name of a profile in passportprint.imaging.enhance.PROFILES.
    quantity:
        Number of copies laid out on the A4 sheet.
    miss_streak_threshold:
        Consecutive no-face results before the live detector escalates.
    """
    background_engine: str = "on_device"
    mask_policy: str = "lite"
    enhancement_profile: str = "passport_safe"
    quantity: int = 4
    preview_size: Tuple[int, int] = DEFAULT_PREVIEW_PX
    miss_streak_threshold: int = 8
    live_interval_s: float = 0.22

    def __post_init__(self) -> None:
        if self.background_engine not in BACKGROUND_ENGINES:
            raise ValueError(f"Unknown background engine: {self.background_engine!r}")
        if self.mask_policy not in MASK_POLICIES:
            raise ValueError(f"Unknown mask policy: {self.mask_policy!r}")
        if self.quantity < 1:
            raise ValueError("quantity must be >= 1")
