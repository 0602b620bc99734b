from __future__ import annotations

import io
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, ImageOps

from passportprint.core.errors import EncodingFailure


def load_image_rgb(path: str) -> np.ndarray:
    """Load a still image, apply EXIF orientation, return an RGB uint8 array."""
    img = Image.open(path)
    img = ImageOps.exif_transpose(img)
    if img.mode != "RGB":
        img = img.convert("RGB")
    return np.array(img)


def to_rgba(rgb: np.ndarray) -> np.ndarray:
    """RGB (or gray) array -> opaque RGBA array."""
    if rgb.ndim == 2:
        rgb = np.stack([rgb, rgb, rgb], axis=-1)
    if rgb.shape[-1] == 4:
        return rgb.astype(np.uint8, copy=True)
    alpha = np.full(rgb.shape[:2] + (1,), 255, dtype=np.uint8)
    return np.concatenate([rgb.astype(np.uint8), alpha], axis=-1)


def resize(img: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Resize to (width, height); area filter when shrinking, Lanczos when growing."""
    w, h = size
    if w <= 0 or h <= 0:
        raise ValueError("size must be positive")
    src_h, src_w = img.shape[:2]
    interp = cv2.INTER_AREA if (w < src_w and h < src_h) else cv2.INTER_LANCZOS4
    return cv2.resize(img, (w, h), interpolation=interp)


def composite_on_white(photo: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """
    Blend an RGBA/RGB photo over white using `alpha` as the stencil.

    alpha 255 keeps the photo, alpha 0 reveals white. The result is opaque.
    """
    a = alpha.astype(np.float32)[..., None] / 255.0
    rgb = photo[..., :3].astype(np.float32)
    out = rgb * a + 255.0 * (1.0 - a)
    return to_rgba(np.clip(np.rint(out), 0, 255).astype(np.uint8))


def flatten_on_white(rgba: np.ndarray) -> np.ndarray:
    """Flatten an RGBA image using its own alpha channel."""
    if rgba.shape[-1] != 4:
        return to_rgba(rgba)
    return composite_on_white(rgba, rgba[..., 3])


def encode_png(img: np.ndarray) -> bytes:
    try:
        buf = io.BytesIO()
        Image.fromarray(img).save(buf, format="PNG")
    except (OSError, ValueError) as e:
        raise EncodingFailure(f"Failed to encode image: {e}") from e
    return buf.getvalue()


def decode_image_rgba(data: bytes) -> np.ndarray:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except OSError as e:
        raise EncodingFailure(f"Failed to decode image: {e}") from e
    return np.array(img.convert("RGBA"))
