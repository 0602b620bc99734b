"""
Frame + face box -> finished passport photo.

Each stage is a synchronous transformation over numpy rasters. The only
blocking calls are the segmenter and the remote cutout, which the capture
session runs off the event loop; `process_capture` chains everything for
callers that do not need that.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np

from passportprint.core.errors import (
    FaceMisaligned,
    MultipleFacesDetected,
    NoFaceDetected,
    SegmentationUnavailable,
    SegmentationUnsupported,
)
from passportprint.core.models import (
    PHOTO_DPI,
    PHOTO_MM,
    PHOTO_PX,
    CropRect,
    FaceResult,
    FaceSentinel,
    NormalizedFaceBox,
    ProcessingParams,
)
from passportprint.detection.backends import FaceDetector, Segmenter
from passportprint.imaging.crop import anchor_in_photo, plan_crop, render_crop
from passportprint.imaging.decontaminate import decontaminate_edges
from passportprint.imaging.enhance import enhance
from passportprint.imaging.mask import refine_mask
from passportprint.imaging.raster import composite_on_white, load_image_rgb
from passportprint.services.removebg import remove_background_remote
from passportprint.validation.validator import validate_face_box

logger = logging.getLogger(__name__)

NOTE_REMOTE = "Studio background removal applied."
NOTE_ON_DEVICE = "Background set to pure white."
NOTE_NO_SEGMENTATION = "Segmentation unavailable (kept original background)."
NOTE_SEGMENTATION_UNSUPPORTED = "Segmentation not supported on this device (kept original background)."

RemoteCutout = Callable[[np.ndarray, Optional[str]], np.ndarray]


@dataclass(frozen=True)
class PreparedPhoto:
    raster: np.ndarray  # RGBA at PHOTO_PX
    crop: CropRect
    anchor: Tuple[float, float]


@dataclass(frozen=True)
class ProcessedPhoto:
    raster: np.ndarray  # RGBA at PHOTO_PX
    crop: CropRect
    note: str
    background_replaced: bool

    def describe(self) -> str:
        h, w = self.raster.shape[:2]
        return f"{PHOTO_MM[0]:.0f}×{PHOTO_MM[1]:.0f}mm • {w}×{h}px @ {PHOTO_DPI}DPI"


def require_usable_face(box: FaceResult) -> NormalizedFaceBox:
    """Return the box when it validates as ok, else raise the matching error."""
    check = validate_face_box(box)
    if box is FaceSentinel.MULTIPLE:
        raise MultipleFacesDetected(check.message)
    if box is None or box is FaceSentinel.NONE:
        raise NoFaceDetected(check.message)
    if not check.ok:
        raise FaceMisaligned(check.message)
    return box


def prepare_photo(frame: np.ndarray, box: NormalizedFaceBox) -> PreparedPhoto:
    h, w = frame.shape[:2]
    crop = plan_crop(box, w, h)
    raster = render_crop(frame, crop, PHOTO_PX)
    anchor = anchor_in_photo(box, crop, w, h, PHOTO_PX)
    logger.debug("Crop %s -> photo %dx%d, anchor %s", crop, PHOTO_PX[0], PHOTO_PX[1], anchor)
    return PreparedPhoto(raster=raster, crop=crop, anchor=anchor)


def whiten_with_mask(
    raster: np.ndarray,
    grid: np.ndarray,
    policy: str = "lite",
    anchor: Optional[Tuple[float, float]] = None,
) -> np.ndarray:
    alpha = refine_mask(grid, policy, anchor)
    if alpha.shape != raster.shape[:2]:
        raise ValueError(f"mask {alpha.shape} does not match photo {raster.shape[:2]}")
    return composite_on_white(raster, alpha)


def whiten_on_device(
    prepared: PreparedPhoto,
    segmenter: Optional[Segmenter],
    policy: str = "lite",
) -> Tuple[np.ndarray, str, bool]:
    """(raster, note, background_replaced); degrades instead of failing."""
    if segmenter is None:
        logger.warning("No segmenter configured; keeping original background")
        return prepared.raster, NOTE_NO_SEGMENTATION, False
    try:
        grid = segmenter.segment(prepared.raster[..., :3])
    except SegmentationUnsupported as e:
        logger.warning("Segmenter %s cannot run here (%s); keeping original background", segmenter.name, e)
        return prepared.raster, NOTE_SEGMENTATION_UNSUPPORTED, False
    except SegmentationUnavailable as e:
        logger.warning("Segmentation failed (%s); keeping original background", e)
        return prepared.raster, NOTE_NO_SEGMENTATION, False
    return whiten_with_mask(prepared.raster, grid, policy, prepared.anchor), NOTE_ON_DEVICE, True


def whiten_remote(
    prepared: PreparedPhoto,
    api_key: Optional[str],
    remote: RemoteCutout = remove_background_remote,
) -> np.ndarray:
    """Remote cutout flattened on white, then fringe cleanup. Errors propagate."""
    return decontaminate_edges(remote(prepared.raster, api_key))


def finalize(raster: np.ndarray, profile: str) -> np.ndarray:
    return enhance(raster, profile)


def process_capture(
    frame: np.ndarray,
    box: FaceResult,
    params: ProcessingParams = ProcessingParams(),
    *,
    segmenter: Optional[Segmenter] = None,
    api_key: Optional[str] = None,
    remote: RemoteCutout = remove_background_remote,
) -> ProcessedPhoto:
    face = require_usable_face(box)
    prepared = prepare_photo(frame, face)

    if params.background_engine == "removebg":
        raster, note, replaced = whiten_remote(prepared, api_key, remote), NOTE_REMOTE, True
    else:
        raster, note, replaced = whiten_on_device(prepared, segmenter, params.mask_policy)

    photo = ProcessedPhoto(
        raster=finalize(raster, params.enhancement_profile),
        crop=prepared.crop,
        note=note,
        background_replaced=replaced,
    )
    logger.info("Processed photo (%s): %s", params.background_engine, note)
    return photo


def process_image_file(
    path: str,
    detector: FaceDetector,
    params: ProcessingParams = ProcessingParams(),
    *,
    segmenter: Optional[Segmenter] = None,
    api_key: Optional[str] = None,
    remote: RemoteCutout = remove_background_remote,
) -> ProcessedPhoto:
    """Still-image path: load with EXIF orientation applied, detect once, process."""
    frame = load_image_rgb(path)
    box = detector.detect(frame)
    logger.debug("Detected %s in %s (%dx%d)", box, path, frame.shape[1], frame.shape[0])
    return process_capture(frame, box, params, segmenter=segmenter, api_key=api_key, remote=remote)
