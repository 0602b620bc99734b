from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Severity(str, Enum):
    INFO = "info"
    OK = "ok"
    WARN = "warn"
    BAD = "bad"


@dataclass(frozen=True)
class FaceCheck:
    """
    Result of validating one face detection.

    rule_id names the rule that decided the outcome ("Multiple faces",
    "No face", "Distance", "Centering" or "Framing").
    """
    severity: Severity
    message: str
    rule_id: str = "Framing"
    metrics: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.severity is Severity.OK

    @property
    def status_label(self) -> str:
        return {
            Severity.OK: "Face OK",
            Severity.WARN: "Adjust",
            Severity.BAD: "Blocked",
        }.get(self.severity, "Ready")


IDLE_CHECK = FaceCheck(Severity.INFO, "No camera running.", rule_id="Idle")
