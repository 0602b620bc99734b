from __future__ import annotations

import numpy as np

from passportprint.core.models import PHOTO_ASPECT, PHOTO_PX, CropRect, NormalizedFaceBox
from passportprint.imaging.raster import resize, to_rgba

# Face box height as a share of the photo height.
DESIRED_FACE_FRACTION = 0.55
MIN_CROP_H_FRACTION = 0.45
MAX_CROP_H_FRACTION = 0.98
# Window shifts up by this share of its height so the chin is not too low.
VERTICAL_BIAS = 0.08


def _clamp(n: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, n))


def plan_crop(box: NormalizedFaceBox, src_w: int, src_h: int) -> CropRect:
    """
    Derive the 35:45 source window around a face.

    The width constraint always wins; the window is translated (never
    resized) to stay inside the source.
    """
    if src_w <= 0 or src_h <= 0:
        raise ValueError("source dimensions must be positive")

    crop_h = (box.height * src_h) / DESIRED_FACE_FRACTION
    crop_h = _clamp(crop_h, src_h * MIN_CROP_H_FRACTION, src_h * MAX_CROP_H_FRACTION)
    crop_w = crop_h * PHOTO_ASPECT
    if crop_w > src_w:
        crop_w = float(src_w)
        crop_h = crop_w / PHOTO_ASPECT

    cx, cy = box.center_px(src_w, src_h)
    cy -= crop_h * VERTICAL_BIAS

    sx = _clamp(cx - crop_w / 2.0, 0.0, src_w - crop_w)
    sy = _clamp(cy - crop_h / 2.0, 0.0, src_h - crop_h)
    return CropRect(sx=sx, sy=sy, sw=crop_w, sh=crop_h)


def render_crop(frame: np.ndarray, crop: CropRect, size=PHOTO_PX) -> np.ndarray:
    """Cut `crop` out of an RGB frame and resample it to an RGBA photo raster."""
    h, w = frame.shape[:2]
    left, top, right, bottom = crop.as_int_box(w, h)
    window = frame[top:bottom, left:right]
    return to_rgba(resize(np.ascontiguousarray(window[..., :3]), size))


def anchor_in_photo(box: NormalizedFaceBox, crop: CropRect, src_w: int, src_h: int, size=PHOTO_PX):
    """Map the face centre from frame pixels into photo-raster pixels."""
    cx, cy = box.center_px(src_w, src_h)
    return (
        (cx - crop.sx) * size[0] / crop.sw,
        (cy - crop.sy) * size[1] / crop.sh,
    )
