from __future__ import annotations

from typing import Optional


class PassportPrintError(Exception):
    """Base class for pipeline errors."""


class NoFaceDetected(PassportPrintError):
    def __init__(self, message: str = "No face detected. Please face the camera.") -> None:
        super().__init__(message)


class MultipleFacesDetected(PassportPrintError):
    def __init__(self, message: str = "Multiple faces detected. Only one person must be in frame.") -> None:
        super().__init__(message)


class FaceMisaligned(PassportPrintError):
    """The face is present but too far, too close or off-centre."""


class DetectionTransientFailure(PassportPrintError):
    """The detector backend aborted on this frame; try again or switch backend."""


class SegmentationUnavailable(PassportPrintError):
    """No person mask could be produced for this photo."""


class SegmentationUnsupported(SegmentationUnavailable):
    """The segmentation engine itself failed to run on this device."""


class RemoteServiceFailure(PassportPrintError):
    """
    Remote background removal failed (network error or non-2xx status).

    The response body is surfaced verbatim; callers never retry automatically.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @classmethod
    def from_response(cls, status_code: int, body: str) -> "RemoteServiceFailure":
        return cls(f"remove.bg error ({status_code}). {body}".strip(), status_code=status_code, body=body)


class MissingApiKey(RemoteServiceFailure):
    def __init__(self) -> None:
        super().__init__("Missing remove.bg API key. Set it in the background settings.")


class EncodingFailure(PassportPrintError):
    """JPEG/PDF/PNG encoding failed."""
