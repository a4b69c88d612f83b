"""Domain objects shared by the attendance components."""

from __future__ import annotations

import enum
import random
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

LOW_FREQUENCY_HZ = 19000
HIGH_FREQUENCY_HZ = 19400  # exclusive

APPROXIMATE_ACCURACY_M = 100.0


@dataclass(frozen=True)
class LocationSample:
    """Single fix delivered by the positioning subsystem."""

    latitude: float
    longitude: float
    accuracy_meters: float
    captured_at_epoch_ms: int


class PositionErrorKind(enum.Enum):
    """Terminal errors a positioning subscription can report."""

    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class AcquisitionStatus(enum.Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AcquisitionStatus.SUCCEEDED, AcquisitionStatus.TIMED_OUT, AcquisitionStatus.FAILED)


@dataclass(frozen=True)
class AcquisitionState:
    """Snapshot of a location search."""

    status: AcquisitionStatus = AcquisitionStatus.IDLE
    best_sample: Optional[LocationSample] = None
    elapsed_ms: int = 0


@dataclass(frozen=True)
class AcquisitionProgress:
    """Progress update pushed to the caller while a search runs."""

    fraction: float
    message: str
    latest_sample: Optional[LocationSample] = None
    best_sample: Optional[LocationSample] = None


@dataclass(frozen=True)
class PermissionState:
    positioning_granted: bool
    audio_granted: bool

    @property
    def granted(self) -> bool:
        return self.positioning_granted and self.audio_granted

    def missing_messages(self) -> list[str]:
        messages = []
        if not self.positioning_granted:
            messages.append("Geolocation permission is required for attendance.")
        if not self.audio_granted:
            messages.append("Speaker access is required for frequency emission.")
        return messages


@dataclass(frozen=True)
class AttendanceSession:
    """Server-issued attendance session bound to a location and a frequency.

    ``issued_at_epoch_ms`` and ``expires_at_epoch_ms`` come from the backend;
    expiry is only observed on the client, never enforced.
    """

    issuer_id: str
    course_id: str
    link_id: str
    frequency_hz: int
    latitude: float
    longitude: float
    issued_at_epoch_ms: int
    expires_at_epoch_ms: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at_epoch_ms

    def remaining_ms(self, now_ms: int) -> int:
        return max(self.expires_at_epoch_ms - now_ms, 0)


def validate_frequency(frequency_hz: int) -> int:
    if isinstance(frequency_hz, bool) or not isinstance(frequency_hz, int):
        raise ValueError(f"Frequency must be an integer, got {frequency_hz!r}")
    if not LOW_FREQUENCY_HZ <= frequency_hz < HIGH_FREQUENCY_HZ:
        raise ValueError(
            f"Frequency {frequency_hz} Hz outside [{LOW_FREQUENCY_HZ}, {HIGH_FREQUENCY_HZ}) Hz"
        )
    return frequency_hz


def choose_frequency(rng: Optional[random.Random] = None) -> int:
    """Pick a tone frequency uniformly from the near-ultrasonic band."""
    source = rng or random
    return source.randrange(LOW_FREQUENCY_HZ, HIGH_FREQUENCY_HZ)


def describe_accuracy(accuracy_meters: float, desired_accuracy_meters: float) -> str:
    rounded = round(accuracy_meters)
    if accuracy_meters > APPROXIMATE_ACCURACY_M:
        return f"Getting approximate location... (Accuracy: {rounded}m)"
    if accuracy_meters > desired_accuracy_meters:
        return f"Improving location accuracy... (Accuracy: {rounded}m)"
    return f"High accuracy achieved! (Accuracy: {rounded}m)"


def build_redemption_url(domain: str, course_id: str, link_id: str) -> str:
    base = domain.rstrip("/")
    return (
        f"{base}/dashboard/student/courses/{quote(course_id, safe='')}"
        f"/mark_attendance?linkId={quote(link_id, safe='')}"
    )
