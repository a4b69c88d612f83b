"""Exception hierarchy for attendance-taking attempts."""

from __future__ import annotations

from typing import Optional

from .models import PermissionState, PositionErrorKind


class AttendanceError(Exception):
    """Base class; ``user_message`` is safe to show to the teacher."""

    def __init__(self, user_message: str) -> None:
        super().__init__(user_message)
        self.user_message = user_message


class MissingPermissionError(AttendanceError):
    def __init__(self, permissions: PermissionState) -> None:
        messages = permissions.missing_messages() or ["Required permissions are unavailable."]
        super().__init__(" ".join(messages))
        self.permissions = permissions


class AcquisitionError(AttendanceError):
    """Location search ended without a usable fix."""


class AcquisitionTimeout(AcquisitionError):
    def __init__(self, user_message: str = "Could not get accurate location within timeout") -> None:
        super().__init__(user_message)


class AcquisitionCancelled(AcquisitionError):
    def __init__(self, user_message: str = "Location search was cancelled.") -> None:
        super().__init__(user_message)


HARDWARE_ERROR_MESSAGES = {
    PositionErrorKind.PERMISSION_DENIED: "Location permission denied. Please enable location access.",
    PositionErrorKind.UNAVAILABLE: "Location information is unavailable.",
    PositionErrorKind.TIMEOUT: "Location request timed out.",
    PositionErrorKind.UNKNOWN: "An unknown error occurred while getting location.",
}


class AcquisitionHardwareError(AcquisitionError):
    def __init__(self, kind: PositionErrorKind) -> None:
        super().__init__(HARDWARE_ERROR_MESSAGES.get(kind, HARDWARE_ERROR_MESSAGES[PositionErrorKind.UNKNOWN]))
        self.kind = kind


class IssuanceError(AttendanceError):
    """Backend rejected the request or could not be reached.

    ``reason`` is one of ``validation``, ``network``, ``http``, ``rejected`` or
    ``invalid_response``. For ``rejected`` the message is the backend's own
    error text.
    """

    def __init__(self, user_message: str, *, reason: str, status: Optional[int] = None) -> None:
        super().__init__(user_message)
        self.reason = reason
        self.status = status


class AttemptInProgressError(AttendanceError):
    def __init__(self) -> None:
        super().__init__("Attendance is already being taken; wait for the current attempt to finish.")


__all__ = [
    "AttendanceError",
    "MissingPermissionError",
    "AcquisitionError",
    "AcquisitionTimeout",
    "AcquisitionCancelled",
    "AcquisitionHardwareError",
    "HARDWARE_ERROR_MESSAGES",
    "IssuanceError",
    "AttemptInProgressError",
]
