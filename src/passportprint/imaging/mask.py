"""
Segmentation-mask refinement.

Turns a raw person-confidence grid (uint8, higher = more foreground) into an
alpha stencil for compositing the photo over white. Two policies:

lite
    Smooth ramp plus a 1px feather; preserves hair and skin detail.
aggressive
    Hard thresholds, morphological closing, a halo-trimming erosion and
    connected-component retention from the face anchor, then a feather.
    Cleaner white at the cost of some hair detail.

All 3x3 operators leave the one-pixel border untouched.
"""
from __future__ import annotations

import logging
import math
from typing import Optional, Tuple

import cv2
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

logger = logging.getLogger(__name__)

LITE_SOFT = 60
LITE_HARD = 210
LITE_EXPONENT = 0.9

AGGRESSIVE_SOFT = 145
AGGRESSIVE_HARD = 205

COMPONENT_THRESHOLD = 40
SEED_SEARCH_RADIUS = 14


def _round_half_up(x: np.ndarray) -> np.ndarray:
    return np.floor(x + 0.5)


def _as_grid(grid: np.ndarray) -> np.ndarray:
    grid = np.asarray(grid)
    if grid.ndim == 3:
        grid = grid[..., 0]
    if grid.ndim != 2:
        raise ValueError("confidence grid must be 2-D")
    return grid


def _apply_3x3(src: np.ndarray, reduce) -> np.ndarray:
    """Apply a 3x3 window reduction to interior pixels; border copies source."""
    dst = src.copy()
    h, w = src.shape
    if h < 3 or w < 3:
        return dst
    windows = sliding_window_view(src, (3, 3))
    dst[1:-1, 1:-1] = reduce(windows)
    return dst


def dilate3x3(alpha: np.ndarray) -> np.ndarray:
    return _apply_3x3(alpha, lambda win: win.max(axis=(2, 3)))


def erode3x3(alpha: np.ndarray) -> np.ndarray:
    return _apply_3x3(alpha, lambda win: win.min(axis=(2, 3)))


def box_blur3x3(alpha: np.ndarray) -> np.ndarray:
    """3x3 mean, truncated to an integer."""
    return _apply_3x3(
        alpha,
        lambda win: (win.astype(np.int32).sum(axis=(2, 3)) // 9).astype(alpha.dtype),
    )


def lite_alpha(grid: np.ndarray) -> np.ndarray:
    """Per-pixel lite ramp, before feathering."""
    v = _as_grid(grid).astype(np.float64)
    t = np.clip((v - LITE_SOFT) / (LITE_HARD - LITE_SOFT), 0.0, 1.0)
    return _round_half_up(255.0 * np.power(t, LITE_EXPONENT)).astype(np.uint8)


def aggressive_alpha(grid: np.ndarray) -> np.ndarray:
    """Per-pixel hard thresholds with a linear ramp in between."""
    v = _as_grid(grid).astype(np.float64)
    ramp = _round_half_up((v - AGGRESSIVE_SOFT) / (AGGRESSIVE_HARD - AGGRESSIVE_SOFT) * 255.0)
    a = np.where(v >= AGGRESSIVE_HARD, 255.0, np.where(v <= AGGRESSIVE_SOFT, 0.0, ramp))
    return a.astype(np.uint8)


def find_seed(
    alpha: np.ndarray,
    point: Tuple[float, float],
    threshold: int = COMPONENT_THRESHOLD,
    radius: int = SEED_SEARCH_RADIUS,
) -> Optional[Tuple[int, int]]:
    """
    Return the (x, y) seed for component retention.

    Uses the anchor itself when it is foreground, else scans square rings of
    growing radius (top/bottom edges first, then left/right) and returns the
    first foreground pixel found. None when nothing is in reach.
    """
    h, w = alpha.shape
    sx = min(max(math.floor(point[0] + 0.5), 0), w - 1)
    sy = min(max(math.floor(point[1] + 0.5), 0), h - 1)
    if alpha[sy, sx] >= threshold:
        return sx, sy

    for r in range(1, radius + 1):
        y0, y1 = max(sy - r, 0), min(sy + r, h - 1)
        x0, x1 = max(sx - r, 0), min(sx + r, w - 1)
        for x in range(x0, x1 + 1):
            if alpha[y0, x] >= threshold:
                return x, y0
            if alpha[y1, x] >= threshold:
                return x, y1
        for y in range(y0, y1 + 1):
            if alpha[y, x0] >= threshold:
                return x0, y
            if alpha[y, x1] >= threshold:
                return x1, y
    return None


def keep_component(
    alpha: np.ndarray,
    point: Optional[Tuple[float, float]],
    threshold: int = COMPONENT_THRESHOLD,
) -> np.ndarray:
    """
    Zero every pixel not 4-connected to the anchor's foreground region.

    Pixels below `threshold` count as background for connectivity. With no
    anchor, or no foreground near it, the mask is returned unchanged.
    """
    if point is None:
        return alpha
    seed = find_seed(alpha, point, threshold)
    if seed is None:
        logger.debug("No foreground within %d px of anchor %s; keeping full mask", SEED_SEARCH_RADIUS, point)
        return alpha

    fg = (alpha >= threshold).astype(np.uint8)
    _, labels = cv2.connectedComponents(fg, connectivity=4)
    keep = labels == labels[seed[1], seed[0]]
    return np.where(keep, alpha, 0).astype(alpha.dtype)


def refine_mask_lite(grid: np.ndarray) -> np.ndarray:
    return box_blur3x3(lite_alpha(grid))


def refine_mask_aggressive(grid: np.ndarray, anchor: Optional[Tuple[float, float]]) -> np.ndarray:
    alpha = aggressive_alpha(grid)
    closed = erode3x3(dilate3x3(alpha))
    trimmed = erode3x3(closed)
    kept = keep_component(trimmed, anchor)
    return box_blur3x3(kept)


def refine_mask(grid: np.ndarray, policy: str = "lite", anchor: Optional[Tuple[float, float]] = None) -> np.ndarray:
    """Dispatch to the named refinement policy."""
    if policy == "lite":
        return refine_mask_lite(grid)
    if policy == "aggressive":
        return refine_mask_aggressive(grid, anchor)
    raise ValueError(f"Unknown mask policy: {policy!r}")
