"""
Face detection and person segmentation adapters.

Every detector returns a NormalizedFaceBox or a FaceSentinel; every
segmenter returns an HxW uint8 confidence grid (higher = more foreground).
Model libraries are imported when a backend is first used so the pure
pipeline stays importable without them.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, Sequence

import cv2
import numpy as np

from passportprint.core.errors import DetectionTransientFailure, SegmentationUnavailable, SegmentationUnsupported
from passportprint.core.models import FaceResult, FaceSentinel, box_from_pixels, box_from_relative
from passportprint.detection.selector import DetectorMode

logger = logging.getLogger(__name__)

DETECT_MAX_W = 360
DETECT_MIN_SIDE = 160


class FaceDetector(Protocol):
    name: str

    def detect(self, frame_rgb: np.ndarray) -> FaceResult:
        ...


class Segmenter(Protocol):
    name: str

    def segment(self, photo_rgb: np.ndarray) -> np.ndarray:
        ...


def downscale_for_detection(frame: np.ndarray) -> np.ndarray:
    """Shrink a live frame for fast detection (normalized output is unaffected)."""
    h, w = frame.shape[:2]
    scale = min(1.0, DETECT_MAX_W / float(w))
    new_w = max(DETECT_MIN_SIDE, int(round(w * scale)))
    new_h = max(DETECT_MIN_SIDE, int(round(h * scale)))
    if (new_w, new_h) == (w, h):
        return frame
    return cv2.resize(frame, (new_w, new_h), interpolation=cv2.INTER_AREA)


def _pick_single(boxes: Sequence[FaceResult]) -> FaceResult:
    if not boxes:
        return FaceSentinel.NONE
    if len(boxes) > 1:
        return FaceSentinel.MULTIPLE
    return boxes[0]


def _rgb(frame: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(frame[..., :3])


class MediaPipeFaceDetector:
    """Primary detector: MediaPipe short-range face detection."""

    name = "mediapipe"

    def __init__(self, min_detection_confidence: float = 0.5) -> None:
        self.min_detection_confidence = min_detection_confidence
        self._detector: Any = None

    def _get(self) -> Any:
        if self._detector is None:
            import mediapipe as mp

            self._detector = mp.solutions.face_detection.FaceDetection(
                model_selection=0,  # short-range (studio distance)
                min_detection_confidence=self.min_detection_confidence,
            )
        return self._detector

    def detect(self, frame_rgb: np.ndarray) -> FaceResult:
        try:
            results = self._get().process(_rgb(frame_rgb))
        except RuntimeError as e:
            raise DetectionTransientFailure(f"MediaPipe face detection aborted: {e}") from e

        boxes = []
        for det in results.detections or []:
            bb = det.location_data.relative_bounding_box
            boxes.append(box_from_relative(bb.xmin, bb.ymin, bb.width, bb.height))
        return _pick_single(boxes)

    def close(self) -> None:
        if self._detector is not None:
            self._detector.close()
            self._detector = None


class OpenCvCascadeDetector:
    """Native fallback: OpenCV's bundled frontal-face Haar cascade, no model download."""

    name = "opencv_cascade"

    def __init__(self, scale_factor: float = 1.1, min_neighbors: int = 5) -> None:
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self._cascade: Optional[cv2.CascadeClassifier] = None

    def _get(self) -> cv2.CascadeClassifier:
        if self._cascade is None:
            path = cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
            cascade = cv2.CascadeClassifier(path)
            if cascade.empty():
                raise DetectionTransientFailure(f"Could not load Haar cascade from {path}")
            self._cascade = cascade
        return self._cascade

    def detect(self, frame_rgb: np.ndarray) -> FaceResult:
        h, w = frame_rgb.shape[:2]
        gray = cv2.cvtColor(_rgb(frame_rgb), cv2.COLOR_RGB2GRAY)
        min_side = max(24, min(w, h) // 10)
        faces = self._get().detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=(min_side, min_side),
        )
        return _pick_single([box_from_pixels(x, y, fw, fh, w, h) for (x, y, fw, fh) in faces])


class FaceMeshDetector:
    """
    Secondary model fallback: MediaPipe Face Mesh.

    The box is the landmark extent, which tracks the face outline rather than
    the detector's square-ish box.
    """

    name = "face_mesh"

    def __init__(self, min_detection_confidence: float = 0.5) -> None:
        self.min_detection_confidence = min_detection_confidence
        self._mesh: Any = None

    def _get(self) -> Any:
        if self._mesh is None:
            import mediapipe as mp

            self._mesh = mp.solutions.face_mesh.FaceMesh(
                static_image_mode=True,
                refine_landmarks=True,
                max_num_faces=2,
                min_detection_confidence=self.min_detection_confidence,
            )
        return self._mesh

    def detect(self, frame_rgb: np.ndarray) -> FaceResult:
        try:
            results = self._get().process(_rgb(frame_rgb))
        except RuntimeError as e:
            raise DetectionTransientFailure(f"Face mesh aborted: {e}") from e

        boxes = []
        for face in results.multi_face_landmarks or []:
            xs = [lm.x for lm in face.landmark]
            ys = [lm.y for lm in face.landmark]
            x0, y0 = max(0.0, min(xs)), max(0.0, min(ys))
            x1, y1 = min(1.0, max(xs)), min(1.0, max(ys))
            boxes.append(box_from_relative(x0, y0, x1 - x0, y1 - y0))
        return _pick_single(boxes)

    def close(self) -> None:
        if self._mesh is not None:
            self._mesh.close()
            self._mesh = None


class MediaPipeSegmenter:
    """MediaPipe selfie segmentation; landscape model gives cleaner edges."""

    name = "mediapipe"

    def __init__(self) -> None:
        self._seg: Any = None

    def _get(self) -> Any:
        if self._seg is None:
            import mediapipe as mp

            self._seg = mp.solutions.selfie_segmentation.SelfieSegmentation(model_selection=1)
        return self._seg

    def segment(self, photo_rgb: np.ndarray) -> np.ndarray:
        try:
            results = self._get().process(_rgb(photo_rgb))
        except RuntimeError as e:
            raise SegmentationUnsupported(f"Segmentation not supported on this device: {e}") from e
        mask = getattr(results, "segmentation_mask", None)
        if mask is None:
            raise SegmentationUnavailable("Segmentation unavailable.")
        return np.clip(np.rint(np.asarray(mask, dtype=np.float32) * 255.0), 0, 255).astype(np.uint8)

    def close(self) -> None:
        if self._seg is not None:
            self._seg.close()
            self._seg = None


class RembgSegmenter:
    """rembg (U^2-Net family) run locally, used only for its mask."""

    name = "rembg"

    def __init__(self, session: Any = None) -> None:
        self.session = session

    def segment(self, photo_rgb: np.ndarray) -> np.ndarray:
        from PIL import Image
        from rembg import remove

        mask = remove(Image.fromarray(_rgb(photo_rgb)), only_mask=True, session=self.session)
        if mask is None:
            raise SegmentationUnavailable("rembg returned no mask.")
        grid = np.asarray(mask.convert("L") if hasattr(mask, "convert") else mask)
        if grid.shape[:2] != photo_rgb.shape[:2]:
            grid = cv2.resize(grid, (photo_rgb.shape[1], photo_rgb.shape[0]), interpolation=cv2.INTER_LINEAR)
        return grid.astype(np.uint8)


def default_detectors() -> Dict[DetectorMode, FaceDetector]:
    """One detector per DetectorMode."""
    return {
        DetectorMode.PRIMARY: MediaPipeFaceDetector(),
        DetectorMode.NATIVE_FALLBACK: OpenCvCascadeDetector(),
        DetectorMode.SECONDARY_MODEL_FALLBACK: FaceMeshDetector(),
    }
