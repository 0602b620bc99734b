from __future__ import annotations

import numpy as np

PURE_WHITE_MIN = 252
FRINGE_MIN_BRIGHTNESS = 210
FRINGE_MAX_SATURATION = 0.22
FRINGE_RAMP = 45.0


def decontaminate_edges(photo: np.ndarray) -> np.ndarray:
    """
    Push bright, desaturated fringe pixels toward white.

    Meant for cutouts already flattened onto white: the yellow/gray halo left
    around hair and shoulders is bright and low in saturation, while skin,
    hair and clothing are either darker or more saturated and stay untouched.
    Alpha (if present) is preserved. Returns a new array.
    """
    out = photo.copy()
    rgb = photo[..., :3].astype(np.float64)
    mx = rgb.max(axis=-1)
    mn = rgb.min(axis=-1)
    sat = np.divide(mx - mn, mx, out=np.zeros_like(mx), where=mx > 0)

    pure_white = np.all(photo[..., :3] >= PURE_WHITE_MIN, axis=-1)
    fringe = (~pure_white) & (mx > FRINGE_MIN_BRIGHTNESS) & (sat < FRINGE_MAX_SATURATION)
    if not fringe.any():
        return out

    k = np.clip((mx - FRINGE_MIN_BRIGHTNESS) / FRINGE_RAMP, 0.0, 1.0)[..., None]
    lifted = np.floor(rgb + (255.0 - rgb) * k + 0.5)
    out[..., :3] = np.where(fringe[..., None], lifted, rgb).astype(np.uint8)
    return out
