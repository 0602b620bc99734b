from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from passportprint.core.models import FaceResult, FaceSentinel

logger = logging.getLogger(__name__)

DEFAULT_MISS_THRESHOLD = 8  # ~2 s of live ticks


class DetectorMode(str, Enum):
    PRIMARY = "primary"
    NATIVE_FALLBACK = "native_fallback"
    SECONDARY_MODEL_FALLBACK = "secondary_model_fallback"


_NEXT_MODE = {
    DetectorMode.PRIMARY: DetectorMode.NATIVE_FALLBACK,
    DetectorMode.NATIVE_FALLBACK: DetectorMode.SECONDARY_MODEL_FALLBACK,
}


class DetectorSelector:
    """
    Which detector backend is live, and when to move to the next one.

    Every no-face result or transient backend failure extends the miss
    streak; any face (including "multiple") resets it. When the streak hits
    the threshold the mode escalates one step and the streak restarts. The
    last mode never escalates.
    """

    def __init__(self, threshold: int = DEFAULT_MISS_THRESHOLD, mode: DetectorMode = DetectorMode.PRIMARY) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self.threshold = threshold
        self.mode = mode
        self.miss_streak = 0

    @property
    def is_final(self) -> bool:
        return self.mode not in _NEXT_MODE

    def record(self, result: Optional[FaceResult]) -> bool:
        """Record one detection outcome; True when the mode just escalated."""
        if result is None or result is FaceSentinel.NONE:
            return self._miss()
        self.miss_streak = 0
        return False

    def record_failure(self) -> bool:
        return self._miss()

    def _miss(self) -> bool:
        if self.is_final:
            return False
        self.miss_streak += 1
        if self.miss_streak < self.threshold:
            return False
        previous = self.mode
        self.mode = _NEXT_MODE[self.mode]
        self.miss_streak = 0
        logger.warning("Face detector escalated %s -> %s after %d misses", previous.value, self.mode.value, self.threshold)
        return True

    def reset(self) -> None:
        self.mode = DetectorMode.PRIMARY
        self.miss_streak = 0
