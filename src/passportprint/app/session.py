from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Callable, Mapping, Optional, Set, Tuple

import numpy as np

from passportprint.app.pipeline import (
    NOTE_REMOTE,
    ProcessedPhoto,
    RemoteCutout,
    finalize,
    prepare_photo,
    whiten_on_device,
    whiten_remote,
)
from passportprint.app.settings import SettingsStore
from passportprint.core.errors import DetectionTransientFailure, RemoteServiceFailure
from passportprint.core.models import FaceResult, FaceSentinel, ProcessingParams
from passportprint.detection.backends import FaceDetector, Segmenter, downscale_for_detection
from passportprint.detection.selector import DetectorMode, DetectorSelector
from passportprint.imaging.export import export_filename, save_jpeg, save_pdf
from passportprint.imaging.sheet import PrintSheet, render_sheets
from passportprint.services.removebg import remove_background_remote
from passportprint.validation.report import IDLE_CHECK, FaceCheck, Severity
from passportprint.validation.validator import validate_face_box

logger = logging.getLogger(__name__)

FrameSource = Callable[[], Optional[np.ndarray]]


class CaptureSession:
    """
    State for one camera session: live validation, capture, sheet, export.

    Runs on a single asyncio loop. Inference and network calls are awaited
    in worker threads; everything else runs on the loop. `stop()` bumps the
    liveness generation so results that arrive afterwards are dropped.
    """

    def __init__(
        self,
        detectors: Mapping[DetectorMode, FaceDetector],
        *,
        params: ProcessingParams = ProcessingParams(),
        segmenter: Optional[Segmenter] = None,
        settings: Optional[SettingsStore] = None,
        remote: RemoteCutout = remove_background_remote,
    ) -> None:
        self.detectors = dict(detectors)
        self.segmenter = segmenter
        self.settings = settings
        self.remote = remote
        if settings is not None:
            params = replace(params, background_engine=settings.bg_engine)
        self.params = params
        self.selector = DetectorSelector(params.miss_streak_threshold)

        self.frame_source: Optional[FrameSource] = None
        self.running = False
        self.last_check: FaceCheck = IDLE_CHECK
        self.photo: Optional[ProcessedPhoto] = None
        self.preview_sheet: Optional[PrintSheet] = None
        self.export_sheet: Optional[PrintSheet] = None

        self._generation = 0
        self._detecting = False
        self._timer: Optional[asyncio.Task] = None
        self._live_tasks: Set[asyncio.Task] = set()

    # ---------- Lifecycle ----------

    def start(self, frame_source: Optional[FrameSource] = None) -> None:
        """Begin live validation; must be called from inside the event loop."""
        self.stop()
        self.frame_source = frame_source
        self.running = True
        self.selector.reset()
        self.last_check = FaceCheck(Severity.INFO, "Detecting face…", rule_id="Idle")
        self.start_timer()
        logger.info("Capture session started")

    def stop(self) -> None:
        """Stop the timer; in-flight detections finish but are discarded."""
        self.stop_timer()
        if self.running:
            logger.info("Capture session stopped")
        self.running = False
        self._drop_in_flight()
        self.last_check = IDLE_CHECK

    def reset(self) -> None:
        """Clear the photo and sheets and restore default params."""
        self.photo = None
        self.preview_sheet = None
        self.export_sheet = None
        engine = self.params.background_engine
        self.params = replace(ProcessingParams(), background_engine=engine)

    def _drop_in_flight(self) -> None:
        self._generation += 1
        self._detecting = False

    @property
    def timer_active(self) -> bool:
        return self._timer is not None

    def start_timer(self) -> None:
        if self._timer is None and self.running and self.frame_source is not None:
            self._timer = asyncio.get_running_loop().create_task(self._tick_forever())

    def stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _tick_forever(self) -> None:
        # Ticks fire on schedule; validate_live skips a tick while one is in flight.
        while True:
            frame = self.frame_source() if self.frame_source else None
            if frame is not None:
                task = asyncio.ensure_future(self.validate_live(frame))
                self._live_tasks.add(task)
                task.add_done_callback(self._live_tasks.discard)
            await asyncio.sleep(self.params.live_interval_s)

    # ---------- Detection ----------

    def _detector(self) -> FaceDetector:
        try:
            return self.detectors[self.selector.mode]
        except KeyError:
            raise ValueError(f"No detector configured for mode {self.selector.mode.value}") from None

    async def _detect_once(self, frame: np.ndarray, generation: int) -> Tuple[FaceResult, bool]:
        detector = self._detector()
        try:
            box = await asyncio.to_thread(detector.detect, frame)
        except DetectionTransientFailure as e:
            if generation != self._generation:
                return FaceSentinel.NONE, False
            logger.warning("Detector %s failed on this frame: %s", detector.name, e)
            return FaceSentinel.NONE, self.selector.record_failure()
        # A late result belongs to a stopped session and must not touch the streak.
        if generation != self._generation:
            return box, False
        return box, self.selector.record(box)

    async def _detect(self, frame: np.ndarray, generation: int) -> FaceResult:
        box, escalated = await self._detect_once(frame, generation)
        if escalated:
            # New backend: try it right away for a faster unlock.
            box, _ = await self._detect_once(frame, generation)
        return box

    async def validate_live(self, frame: np.ndarray) -> Optional[FaceCheck]:
        """
        One live validation pass; None when skipped or stale.

        Any detector error blocks capture with a "Face detection error." check
        rather than escaping into the timer's task.
        """
        if not self.running or self._detecting:
            return None
        self._detecting = True
        generation = self._generation
        try:
            try:
                box = await self._detect(downscale_for_detection(frame), generation)
            except Exception as e:
                if generation != self._generation:
                    return None
                logger.exception("Live face detection failed")
                self.last_check = FaceCheck(Severity.BAD, f"Face detection error. {e}".strip(), "Detection")
                return self.last_check
            if generation != self._generation:
                logger.debug("Discarding stale detection result")
                return None
            self.last_check = validate_face_box(box)
            return self.last_check
        finally:
            if generation == self._generation:
                self._detecting = False

    @property
    def can_capture(self) -> bool:
        return self.running and self.last_check.ok

    # ---------- Capture ----------

    @property
    def api_key(self) -> Optional[str]:
        return self.settings.removebg_key if self.settings is not None else None

    def set_background_engine(self, engine: str) -> None:
        self.params = replace(self.params, background_engine=engine)
        if self.settings is not None:
            self.settings.bg_engine = engine

    def _back_to_live(self, generation: int, check: FaceCheck) -> None:
        if generation != self._generation:
            return
        self.last_check = check
        self.start_timer()

    async def capture(self, frame: np.ndarray) -> Optional[ProcessedPhoto]:
        """
        Capture and process `frame`.

        Refused unless the last live check was ok. The live timer is paused
        for the duration and restarted whenever the user is sent back to
        live preview: a blocked capture or any failure. Failures are re-raised
        after that so the caller can show them verbatim.
        """
        if not self.running:
            return None
        if not self.last_check.ok:
            self.last_check = FaceCheck(Severity.BAD, "Capture blocked. Fix the validation message first.", "Capture")
            return None

        self.stop_timer()
        # Live results still in flight must not overwrite the capture outcome.
        self._drop_in_flight()
        generation = self._generation
        self.last_check = FaceCheck(Severity.INFO, "Processing photo… (background + enhancement)", "Capture")

        try:
            photo = await self._process(frame, generation)
        except RemoteServiceFailure as e:
            self._back_to_live(generation, FaceCheck(Severity.BAD, str(e), "Background"))
            raise
        except Exception as e:
            logger.exception("Capture failed")
            self._back_to_live(generation, FaceCheck(Severity.BAD, f"Capture failed. {e}".strip(), "Capture"))
            raise
        if photo is None or generation != self._generation:
            return None

        self.photo = photo
        self.last_check = FaceCheck(Severity.OK, f"Done. {photo.note}", "Capture")
        self.render_sheets()
        return self.photo

    async def _process(self, frame: np.ndarray, generation: int) -> Optional[ProcessedPhoto]:
        # Re-run detection on the full captured frame for a stable box.
        box = await self._detect(frame, generation)
        if generation != self._generation:
            return None
        check = validate_face_box(box)
        if not check.ok:
            self._back_to_live(generation, FaceCheck(check.severity, f"Capture blocked: {check.message}", check.rule_id))
            return None

        prepared = prepare_photo(frame, box)
        if self.params.background_engine == "removebg":
            raster = await asyncio.to_thread(whiten_remote, prepared, self.api_key, self.remote)
            note, replaced = NOTE_REMOTE, True
        else:
            raster, note, replaced = await asyncio.to_thread(
                whiten_on_device, prepared, self.segmenter, self.params.mask_policy
            )
        if generation != self._generation:
            logger.debug("Discarding capture finished after stop")
            return None

        return ProcessedPhoto(
            raster=finalize(raster, self.params.enhancement_profile),
            crop=prepared.crop,
            note=note,
            background_replaced=replaced,
        )

    def retake(self) -> None:
        if not self.running:
            return
        self.photo = None
        self.preview_sheet = None
        self.export_sheet = None
        self.last_check = FaceCheck(Severity.INFO, "Detecting face…", rule_id="Idle")
        self.start_timer()

    # ---------- Sheet + export ----------

    def render_sheets(self, quantity: Optional[int] = None) -> Tuple[PrintSheet, PrintSheet]:
        if self.photo is None:
            raise RuntimeError("No processed photo yet; capture first.")
        if quantity is not None:
            self.params = replace(self.params, quantity=quantity)
        self.preview_sheet, self.export_sheet = render_sheets(
            self.photo.raster, self.params.quantity, self.params.preview_size
        )
        return self.preview_sheet, self.export_sheet

    def _export_path(self, target: str | Path, ext: str) -> Path:
        target = Path(target)
        if target.is_dir():
            return target / export_filename(self.params.quantity, ext)
        return target

    def export_jpeg(self, target: str | Path) -> Path:
        if self.export_sheet is None:
            self.render_sheets()
        path = self._export_path(target, "jpg")
        save_jpeg(self.export_sheet, str(path))
        return path

    def export_pdf(self, target: str | Path) -> Path:
        if self.export_sheet is None:
            self.render_sheets()
        path = self._export_path(target, "pdf")
        save_pdf(self.export_sheet, str(path))
        return path
