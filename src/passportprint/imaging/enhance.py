"""
Print-safe tone mapping and sharpening for the finished photo.

Passport photos must keep natural skin texture, so every profile is mild:
a small brightness/contrast nudge, optional gamma, optional shadow lift and
warm bias, then a 3x3 sharpening kernel on interior pixels only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

logger = logging.getLogger(__name__)

MID_GRAY = 128.0

# Strong centre, small negative 4-neighbours; weights sum to 1.
KERNEL_STANDARD = np.array(
    [[0.0, -1.0, 0.0],
     [-1.0, 5.0, -1.0],
     [0.0, -1.0, 0.0]],
    dtype=np.float64,
)

# Gentler weights that keep pores/texture intact; also sums to 1.
KERNEL_LOW = np.array(
    [[0.0, -0.6, 0.0],
     [-0.6, 3.4, -0.6],
     [0.0, -0.6, 0.0]],
    dtype=np.float64,
)

KERNELS: Dict[str, np.ndarray] = {"standard": KERNEL_STANDARD, "low": KERNEL_LOW}


@dataclass(frozen=True)
class EnhancementProfile:
    """
    brightness:
        Offset added after contrast (-255..255).
    contrast:
        Multiplier around mid-gray 128; 1 = none.
    gamma:
        1 = none; >1 brightens mid-tones.
    shadow_threshold / shadow_lift:
        When luma is below the threshold, add lift * (threshold - luma).
    warm_bias:
        Added to red, subtracted from blue.
    sharpen:
        Kernel name in KERNELS, or None to skip sharpening.
    """
    name: str
    brightness: float = 0.0
    contrast: float = 1.0
    gamma: float = 1.0
    shadow_threshold: Optional[float] = None
    shadow_lift: float = 0.0
    warm_bias: float = 0.0
    sharpen: Optional[str] = "low"


PROFILES: Dict[str, EnhancementProfile] = {
    # No skin tone shift and no shadow lift: both can look artificial on faces.
    "passport_safe": EnhancementProfile("passport_safe", brightness=2, contrast=1.04, gamma=1.0, sharpen="low"),
    "studio": EnhancementProfile(
        "studio",
        brightness=4,
        contrast=1.06,
        gamma=1.05,
        shadow_threshold=70,
        shadow_lift=0.18,
        warm_bias=2,
        sharpen="standard",
    ),
    "none": EnhancementProfile("none", sharpen=None),
}


def get_profile(name: str) -> EnhancementProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(f"Unknown enhancement profile: {name!r}") from None


def apply_tone(photo: np.ndarray, profile: EnhancementProfile) -> np.ndarray:
    """Per-pixel tone curve on RGB; alpha untouched. Returns a new array."""
    rgb = photo[..., :3].astype(np.float64)
    c = (rgb - MID_GRAY) * profile.contrast + MID_GRAY + profile.brightness

    if profile.warm_bias:
        c[..., 0] += profile.warm_bias
        c[..., 2] -= profile.warm_bias

    c = 255.0 * np.power(np.clip(c, 0.0, 255.0) / 255.0, 1.0 / profile.gamma)

    if profile.shadow_threshold is not None and profile.shadow_lift:
        luma = 0.2126 * c[..., 0] + 0.7152 * c[..., 1] + 0.0722 * c[..., 2]
        deficit = np.clip(profile.shadow_threshold - luma, 0.0, None)
        c += (deficit * profile.shadow_lift)[..., None]

    out = photo.copy()
    out[..., :3] = np.rint(np.clip(c, 0.0, 255.0)).astype(np.uint8)
    return out


def sharpen(photo: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    """
    3x3 convolution over RGB interior pixels.

    The outer row/column on each side is copied unchanged from the input, as
    is alpha everywhere.
    """
    out = photo.copy()
    h, w = photo.shape[:2]
    if h < 3 or w < 3:
        return out
    rgb = photo[..., :3].astype(np.float64)
    # windows: (h-2, w-2, 3, 3, 3) -> channel axis moved before the window axes
    windows = sliding_window_view(rgb, (3, 3), axis=(0, 1))
    acc = np.einsum("yxcij,ij->yxc", windows, kernel)
    out[1:-1, 1:-1, :3] = np.rint(np.clip(acc, 0.0, 255.0)).astype(np.uint8)
    return out


def enhance(photo: np.ndarray, profile: EnhancementProfile | str = "passport_safe") -> np.ndarray:
    if isinstance(profile, str):
        profile = get_profile(profile)
    toned = apply_tone(photo, profile)
    if profile.sharpen is None:
        return toned
    return sharpen(toned, KERNELS[profile.sharpen])
