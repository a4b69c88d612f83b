"""Proximity-verified classroom attendance sessions.

A teacher device finds its location within a deadline, asks the backend for a
short-lived attendance link bound to that location and a random
near-ultrasonic frequency, then plays the tone for student devices to hear.
"""

from .emitter import EmitterHandle, FrequencyEmitter
from .errors import (
    AcquisitionCancelled,
    AcquisitionError,
    AcquisitionHardwareError,
    AcquisitionTimeout,
    AttemptInProgressError,
    AttendanceError,
    IssuanceError,
    MissingPermissionError,
)
from .issuer import SessionIssuer
from .location import LocationAcquirer, ResolutionCell
from .models import (
    AcquisitionProgress,
    AcquisitionState,
    AcquisitionStatus,
    AttendanceSession,
    LocationSample,
    PermissionState,
    PositionErrorKind,
)
from .orchestrator import AttendanceOrchestrator, AttendancePhase, AttendanceResult
from .permissions import PermissionProbe

__all__ = [
    "AcquisitionCancelled",
    "AcquisitionError",
    "AcquisitionHardwareError",
    "AcquisitionProgress",
    "AcquisitionState",
    "AcquisitionStatus",
    "AcquisitionTimeout",
    "AttemptInProgressError",
    "AttendanceError",
    "AttendanceOrchestrator",
    "AttendancePhase",
    "AttendanceResult",
    "AttendanceSession",
    "EmitterHandle",
    "FrequencyEmitter",
    "IssuanceError",
    "LocationAcquirer",
    "LocationSample",
    "MissingPermissionError",
    "PermissionProbe",
    "PermissionState",
    "PositionErrorKind",
    "ResolutionCell",
    "SessionIssuer",
]
