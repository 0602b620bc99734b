from __future__ import annotations

from typing import List

from passportprint.core.models import FaceResult, FaceSentinel
from passportprint.validation.report import FaceCheck, Severity

# Distance heuristics tuned for the 35x45 guide box.
TOO_FAR = 0.18
TOO_CLOSE = 0.58

# Head framing sits slightly above the true vertical centre.
TARGET_X = 0.50
TARGET_Y = 0.45
MAX_X_OFFSET = 0.14
MAX_Y_OFFSET = 0.20


def validate_face_box(box: FaceResult) -> FaceCheck:
    """
    Classify a detection as ok / warn / bad.

    warn covers problems the user fixes by moving (distance, centering);
    bad covers frames that cannot be used at all.
    """
    if box is FaceSentinel.MULTIPLE:
        return FaceCheck(
            Severity.BAD,
            "Multiple faces detected. Only one person must be in frame.",
            rule_id="Multiple faces",
        )
    if box is None or box is FaceSentinel.NONE:
        return FaceCheck(Severity.BAD, "No face detected. Please face the camera.", rule_id="No face")

    face_h = box.height
    x_off = abs(box.x_center - TARGET_X)
    y_off = abs(box.y_center - TARGET_Y)
    metrics = {"face_h": face_h, "x_off": x_off, "y_off": y_off}

    if face_h < TOO_FAR:
        return FaceCheck(Severity.WARN, "Face too far. Move closer to the camera.", "Distance", metrics)
    if face_h > TOO_CLOSE:
        return FaceCheck(Severity.WARN, "Face too close. Move back slightly.", "Distance", metrics)
    if x_off > MAX_X_OFFSET or y_off > MAX_Y_OFFSET:
        return FaceCheck(Severity.WARN, "Center your face inside the guide.", "Centering", metrics)

    return FaceCheck(
        Severity.OK,
        "Face detected and correctly sized. You can take the photo.",
        rule_id="Framing",
        metrics=metrics,
    )


def format_check_text(check: FaceCheck) -> str:
    lines: List[str] = []
    lines.append(f"Status: {check.status_label}")
    mark = "✅" if check.ok else "❌"
    lines.append(f"{mark} {check.rule_id}: {check.message}")
    return "\n".join(lines)
