"""
remove.bg background removal client.

The photo is uploaded as PNG and comes back with the background already
replaced by pure white. Failures are surfaced as-is and never retried; the
user decides whether to try again.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

import numpy as np
import requests

from passportprint.core.errors import MissingApiKey, RemoteServiceFailure
from passportprint.imaging.raster import decode_image_rgba, encode_png, flatten_on_white, resize

logger = logging.getLogger(__name__)

REMOVEBG_URL = "https://api.remove.bg/v1.0/removebg"
DEFAULT_TIMEOUT = 60


def request_cutout(
    png_bytes: bytes,
    api_key: Optional[str],
    *,
    url: str = REMOVEBG_URL,
    timeout: int = DEFAULT_TIMEOUT,
) -> bytes:
    """POST the PNG and return the response PNG bytes."""
    key = (api_key or "").strip()
    if not key:
        raise MissingApiKey()
    if not png_bytes:
        raise ValueError("Empty image bytes provided")

    files = {"image_file": ("photo.png", png_bytes, "image/png")}
    data = {"size": "auto", "format": "png", "bg_color": "FFFFFF"}
    headers = {"X-Api-Key": key}

    start = time.time()
    try:
        response = requests.post(url, headers=headers, files=files, data=data, timeout=timeout)
    except requests.exceptions.Timeout as e:
        raise RemoteServiceFailure(f"remove.bg request timed out after {timeout}s") from e
    except requests.exceptions.RequestException as e:
        raise RemoteServiceFailure(f"Could not connect to remove.bg: {e}") from e
    elapsed_ms = (time.time() - start) * 1000

    if not 200 <= response.status_code < 300:
        logger.warning("remove.bg returned HTTP %d after %.0fms", response.status_code, elapsed_ms)
        raise RemoteServiceFailure.from_response(response.status_code, response.text or "")

    logger.info(
        "remove.bg ok: %d bytes in, %d bytes out, %.0fms",
        len(png_bytes),
        len(response.content),
        elapsed_ms,
    )
    return response.content


def remove_background_remote(
    photo: np.ndarray,
    api_key: Optional[str],
    *,
    url: str = REMOVEBG_URL,
    timeout: int = DEFAULT_TIMEOUT,
) -> np.ndarray:
    """
    Cut out `photo` remotely and return an opaque RGBA raster of the same size,
    flattened onto white.
    """
    h, w = photo.shape[:2]
    out = decode_image_rgba(request_cutout(encode_png(photo), api_key, url=url, timeout=timeout))
    if out.shape[:2] != (h, w):
        out = resize(out, (w, h))
    return flatten_on_white(out)
