import asyncio
import tempfile
import threading
import unittest
from pathlib import Path

import numpy as np

from passportprint.app.pipeline import NOTE_ON_DEVICE
from passportprint.app.session import CaptureSession
from passportprint.app.settings import SettingsStore
from passportprint.core.errors import DetectionTransientFailure, RemoteServiceFailure
from passportprint.core.models import FaceSentinel, ProcessingParams, box_from_relative
from passportprint.detection.selector import DetectorMode
from passportprint.validation.report import IDLE_CHECK, FaceCheck, Severity

FACE = box_from_relative(0.39, 0.30, 0.22, 0.30)
TINY_FACE = box_from_relative(0.47, 0.42, 0.06, 0.06)
FRAME = np.full((480, 640, 3), 120, dtype=np.uint8)


class FakeDetector:
    """Returns scripted results in order, then `default` forever."""

    def __init__(self, *script, default=FACE, name="fake"):
        self.script = list(script)
        self.default = default
        self.name = name
        self.calls = 0

    def detect(self, frame_rgb):
        self.calls += 1
        result = self.script.pop(0) if self.script else self.default
        if isinstance(result, Exception):
            raise result
        return result


class BlockingDetector:
    name = "blocking"

    def __init__(self, result=FACE):
        self.result = result
        self.entered = threading.Event()
        self.release = threading.Event()

    def detect(self, frame_rgb):
        self.entered.set()
        self.release.wait(5)
        return self.result


class WhiteBackgroundSegmenter:
    name = "fake"

    def segment(self, photo_rgb):
        grid = np.zeros(photo_rgb.shape[:2], dtype=np.uint8)
        grid[150:, 150:-150] = 255
        return grid


def _detectors(primary, native=None, secondary=None):
    return {
        DetectorMode.PRIMARY: primary,
        DetectorMode.NATIVE_FALLBACK: native or FakeDetector(name="native"),
        DetectorMode.SECONDARY_MODEL_FALLBACK: secondary or FakeDetector(name="secondary"),
    }


async def _wait_for(predicate, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TestLiveValidation(unittest.IsolatedAsyncioTestCase):
    async def asyncTearDown(self):
        for session in getattr(self, "sessions", []):
            session.stop()

    def _session(self, detectors, **kwargs):
        session = CaptureSession(detectors, **kwargs)
        self.sessions = getattr(self, "sessions", []) + [session]
        return session

    async def test_idle_until_started(self):
        session = self._session(_detectors(FakeDetector()))
        self.assertIs(session.last_check, IDLE_CHECK)
        self.assertIsNone(await session.validate_live(FRAME))
        self.assertFalse(session.can_capture)

    async def test_ok_face_unlocks_capture(self):
        session = self._session(_detectors(FakeDetector()))
        session.start()
        self.assertEqual(session.last_check.message, "Detecting face…")
        check = await session.validate_live(FRAME)
        self.assertTrue(check.ok)
        self.assertTrue(session.can_capture)

    async def test_multiple_faces_block(self):
        session = self._session(_detectors(FakeDetector(FaceSentinel.MULTIPLE)))
        session.start()
        check = await session.validate_live(FRAME)
        self.assertEqual(check.severity, Severity.BAD)
        self.assertEqual(check.rule_id, "Multiple faces")

    async def test_escalation_retries_on_next_backend(self):
        primary = FakeDetector(default=FaceSentinel.NONE, name="primary")
        native = FakeDetector(default=FACE, name="native")
        session = self._session(_detectors(primary, native), params=ProcessingParams(miss_streak_threshold=2))
        session.start()

        first = await session.validate_live(FRAME)
        self.assertEqual(first.rule_id, "No face")
        self.assertEqual(session.selector.mode, DetectorMode.PRIMARY)

        second = await session.validate_live(FRAME)
        self.assertTrue(second.ok)
        self.assertEqual(session.selector.mode, DetectorMode.NATIVE_FALLBACK)
        self.assertEqual(primary.calls, 2)
        self.assertEqual(native.calls, 1)

    async def test_transient_failure_counts_as_miss(self):
        primary = FakeDetector(DetectionTransientFailure("aborted"))
        session = self._session(_detectors(primary))
        session.start()
        check = await session.validate_live(FRAME)
        self.assertEqual(check.rule_id, "No face")
        self.assertEqual(session.selector.miss_streak, 1)

    async def test_start_resets_detector_mode(self):
        session = self._session(_detectors(FakeDetector()))
        session.selector.mode = DetectorMode.SECONDARY_MODEL_FALLBACK
        session.start()
        self.assertEqual(session.selector.mode, DetectorMode.PRIMARY)

    async def test_detector_error_blocks_capture(self):
        detector = FakeDetector(FACE, OSError("camera backend died"))
        session = self._session(_detectors(detector))
        session.start()
        self.assertTrue((await session.validate_live(FRAME)).ok)

        check = await session.validate_live(FRAME)

        self.assertEqual(check.severity, Severity.BAD)
        self.assertEqual(check.rule_id, "Detection")
        self.assertEqual(check.message, "Face detection error. camera backend died")
        self.assertFalse(session.can_capture)

    async def test_detector_error_on_timer_tick_is_reported(self):
        detector = FakeDetector(default=OSError("camera backend died"))
        session = self._session(_detectors(detector), params=ProcessingParams(live_interval_s=0.01))
        session.start(lambda: FRAME)
        await _wait_for(lambda: session.last_check.rule_id == "Detection")
        self.assertFalse(session.can_capture)

    async def test_one_detection_in_flight(self):
        blocking = BlockingDetector()
        session = self._session(_detectors(blocking))
        session.start()
        first = asyncio.create_task(session.validate_live(FRAME))
        await _wait_for(blocking.entered.is_set)

        self.assertIsNone(await session.validate_live(FRAME))

        blocking.release.set()
        self.assertTrue((await first).ok)

    async def test_result_after_stop_is_discarded(self):
        blocking = BlockingDetector()
        session = self._session(_detectors(blocking))
        session.start()
        pending = asyncio.create_task(session.validate_live(FRAME))
        await _wait_for(blocking.entered.is_set)

        session.stop()
        blocking.release.set()
        self.assertIsNone(await pending)
        self.assertIs(session.last_check, IDLE_CHECK)

    async def test_late_result_leaves_new_session_streak_alone(self):
        blocking = BlockingDetector(result=FaceSentinel.NONE)
        session = self._session(_detectors(blocking))
        session.start()
        pending = asyncio.create_task(session.validate_live(FRAME))
        await _wait_for(blocking.entered.is_set)

        session.stop()
        session.start()
        blocking.release.set()

        self.assertIsNone(await pending)
        self.assertEqual(session.selector.miss_streak, 0)
        self.assertEqual(session.selector.mode, DetectorMode.PRIMARY)

    async def test_timer_drives_validation(self):
        session = self._session(_detectors(FakeDetector()), params=ProcessingParams(live_interval_s=0.01))
        session.start(lambda: FRAME)
        self.assertTrue(session.timer_active)
        await _wait_for(lambda: session.can_capture)
        session.stop()
        self.assertFalse(session.timer_active)
        self.assertFalse(session.can_capture)

    async def test_no_timer_without_frame_source(self):
        session = self._session(_detectors(FakeDetector()))
        session.start()
        self.assertFalse(session.timer_active)


class TestCapture(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.sessions = []

    async def asyncTearDown(self):
        for session in self.sessions:
            session.stop()
        self._tmp.cleanup()

    def _session(self, detector=None, **kwargs):
        kwargs.setdefault("segmenter", WhiteBackgroundSegmenter())
        session = CaptureSession(_detectors(detector or FakeDetector()), **kwargs)
        self.sessions.append(session)
        return session

    async def _ready(self, session):
        session.start(lambda: FRAME)
        await _wait_for(lambda: session.can_capture)

    async def test_refused_until_validation_ok(self):
        session = self._session()
        session.start()
        self.assertIsNone(await session.capture(FRAME))
        self.assertEqual(session.last_check.severity, Severity.BAD)
        self.assertEqual(session.last_check.message, "Capture blocked. Fix the validation message first.")
        self.assertIsNone(session.photo)

    async def test_capture_builds_photo_and_sheets(self):
        session = self._session()
        await self._ready(session)

        photo = await session.capture(FRAME)

        self.assertIsNotNone(photo)
        self.assertEqual(photo.note, NOTE_ON_DEVICE)
        self.assertEqual(session.last_check.message, f"Done. {NOTE_ON_DEVICE}")
        self.assertFalse(session.timer_active)
        self.assertEqual(session.export_sheet.size, (2480, 3508))
        self.assertEqual(session.preview_sheet.size, (595, 842))
        self.assertEqual(session.export_sheet.layout.quantity, 4)

    async def test_blocked_capture_returns_to_live(self):
        detector = FakeDetector(default=TINY_FACE)
        session = self._session(detector)
        session.start(lambda: FRAME)
        session.last_check = FaceCheck(Severity.OK, "Perfect framing. Ready to capture.")

        self.assertIsNone(await session.capture(FRAME))

        self.assertTrue(session.last_check.message.startswith("Capture blocked: Face too far"))
        self.assertTrue(session.timer_active)
        self.assertIsNone(session.photo)

    async def test_remote_failure_returns_to_live(self):
        def remote(raster, api_key):
            raise RemoteServiceFailure.from_response(402, "Insufficient credits")

        session = self._session(params=ProcessingParams(background_engine="removebg"), remote=remote)
        await self._ready(session)

        with self.assertRaises(RemoteServiceFailure):
            await session.capture(FRAME)

        self.assertEqual(session.last_check.severity, Severity.BAD)
        self.assertEqual(session.last_check.rule_id, "Background")
        self.assertIn("402", session.last_check.message)
        self.assertTrue(session.timer_active)
        self.assertIsNone(session.photo)

    async def test_processing_error_returns_to_live(self):
        detector = FakeDetector(FACE, OSError("camera backend died"))
        session = self._session(detector, params=ProcessingParams(live_interval_s=60))
        await self._ready(session)

        with self.assertRaises(OSError):
            await session.capture(FRAME)

        self.assertEqual(session.last_check.severity, Severity.BAD)
        self.assertEqual(session.last_check.message, "Capture failed. camera backend died")
        self.assertTrue(session.timer_active)
        self.assertIsNone(session.photo)

    async def test_quantity_change_rerenders(self):
        session = self._session()
        await self._ready(session)
        await session.capture(FRAME)

        preview, export = session.render_sheets(quantity=8)

        self.assertEqual(export.layout.quantity, 8)
        self.assertEqual((export.layout.cols, export.layout.rows), (2, 4))
        self.assertEqual(preview.layout.quantity, 8)

    async def test_render_without_photo(self):
        session = self._session()
        with self.assertRaises(RuntimeError):
            session.render_sheets()

    async def test_retake_clears_photo(self):
        session = self._session()
        await self._ready(session)
        await session.capture(FRAME)
        session.retake()
        self.assertIsNone(session.photo)
        self.assertIsNone(session.export_sheet)
        self.assertTrue(session.timer_active)

    async def test_export_into_directory(self):
        session = self._session()
        await self._ready(session)
        await session.capture(FRAME)

        jpg = session.export_jpeg(self._tmp.name)
        pdf = session.export_pdf(Path(self._tmp.name) / "sheet.pdf")

        self.assertTrue(jpg.name.startswith("passport_sheet_"))
        self.assertTrue(jpg.name.endswith("_x4.jpg"))
        self.assertTrue(jpg.read_bytes().startswith(b"\xff\xd8"))
        self.assertTrue(pdf.read_bytes().startswith(b"%PDF"))

    async def test_engine_follows_settings(self):
        settings = SettingsStore(Path(self._tmp.name) / "settings.json")
        settings.bg_engine = "removebg"
        session = self._session(settings=settings)
        self.assertEqual(session.params.background_engine, "removebg")

        session.set_background_engine("on_device")
        self.assertEqual(SettingsStore(settings.path).bg_engine, "on_device")
