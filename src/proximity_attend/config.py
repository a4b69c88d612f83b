"""Runtime settings read from the environment (and an optional ``.env``)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .utils.env_utils import env_float, env_int, env_str, load_env

DEFAULT_API_URL = "http://127.0.0.1:3000/api/attendance/links"
DEFAULT_DOMAIN = "http://127.0.0.1:3000"


@dataclass(frozen=True)
class Settings:
    api_url: str = DEFAULT_API_URL
    domain: str = DEFAULT_DOMAIN
    http_timeout_s: float = 15.0
    teacher_id: Optional[str] = None
    course_id: Optional[str] = None

    desired_accuracy_m: float = 20.0
    max_duration_ms: int = 5000
    poll_interval_ms: int = 100
    permission_read_timeout_ms: int = 10_000

    tone_amplitude: float = 0.1
    audio_sample_rate: int = 48_000
    audio_device: Optional[str] = None

    fixed_latitude: Optional[float] = None
    fixed_longitude: Optional[float] = None
    fixed_accuracy_m: float = 10.0

    @classmethod
    def from_env(cls, env_file: Optional[str] = ".env") -> "Settings":
        if env_file:
            load_env(env_file)
        defaults = cls()
        return cls(
            api_url=env_str("ATTENDANCE_API_URL", defaults.api_url),
            domain=env_str("ATTENDANCE_DOMAIN", defaults.domain),
            http_timeout_s=env_float("ATTENDANCE_HTTP_TIMEOUT_S", defaults.http_timeout_s),
            teacher_id=env_str("TEACHER_ID"),
            course_id=env_str("COURSE_ID"),
            desired_accuracy_m=env_float("LOCATION_DESIRED_ACCURACY_M", defaults.desired_accuracy_m),
            max_duration_ms=env_int("LOCATION_MAX_DURATION_MS", defaults.max_duration_ms),
            poll_interval_ms=env_int("LOCATION_POLL_INTERVAL_MS", defaults.poll_interval_ms),
            permission_read_timeout_ms=env_int("PERMISSION_READ_TIMEOUT_MS", defaults.permission_read_timeout_ms),
            tone_amplitude=env_float("TONE_AMPLITUDE", defaults.tone_amplitude),
            audio_sample_rate=env_int("AUDIO_SAMPLE_RATE", defaults.audio_sample_rate),
            audio_device=env_str("AUDIO_DEVICE"),
            fixed_latitude=env_float("FIXED_LATITUDE", None),
            fixed_longitude=env_float("FIXED_LONGITUDE", None),
            fixed_accuracy_m=env_float("FIXED_ACCURACY_M", defaults.fixed_accuracy_m),
        )


__all__ = ["Settings", "DEFAULT_API_URL", "DEFAULT_DOMAIN"]
