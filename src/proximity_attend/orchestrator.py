"""Workflow orchestration: permissions, location, session, tone."""

from __future__ import annotations

import enum
import logging
import random
from dataclasses import dataclass
from time import perf_counter
from typing import Callable, Optional, Protocol, Union

from .emitter import EmitterHandle, FrequencyEmitter
from .errors import AttemptInProgressError, MissingPermissionError
from .models import (
    AttendanceSession,
    LocationSample,
    PermissionState,
    build_redemption_url,
    choose_frequency,
)
from .utils.logger import LayeredAdapter, get_logger


class PermissionChecker(Protocol):
    async def probe(self) -> PermissionState:
        """Report which capabilities are usable right now."""


class LocationProvider(Protocol):
    async def acquire(self, desired_accuracy_meters: float, max_duration_ms: int) -> LocationSample:
        """Return the best fix found before the deadline."""

    def cancel(self) -> None:
        """Abort the in-flight search, if any."""


class SessionProvider(Protocol):
    async def issue(
        self,
        issuer_id: str,
        course_id: str,
        latitude: float,
        longitude: float,
        frequency_hz: int,
    ) -> AttendanceSession:
        """Ask the backend for a session bound to the location and frequency."""


class AttendancePhase(enum.Enum):
    IDLE = "idle"
    CHECKING_PERMISSIONS = "checking_permissions"
    ACQUIRING_LOCATION = "acquiring_location"
    ISSUING = "issuing"
    EMITTING = "emitting"
    FAILED = "failed"


@dataclass(frozen=True)
class AttendanceResult:
    """Outcome of a successful attempt."""

    session: AttendanceSession
    location: LocationSample
    link_url: str
    emitter: EmitterHandle
    elapsed_seconds: float


class AttendanceOrchestrator:
    """Run one attendance-taking attempt at a time.

    Each collaborator releases its own resources when it fails, so an abort
    here only records the error. The tone starts strictly after the backend
    has issued a session.
    """

    def __init__(
        self,
        probe: PermissionChecker,
        acquirer: LocationProvider,
        issuer: SessionProvider,
        emitter: FrequencyEmitter,
        *,
        issuer_id: str,
        course_id: str,
        domain: str,
        desired_accuracy_meters: float = 20.0,
        max_duration_ms: int = 5000,
        rng: Optional[random.Random] = None,
        logger: Optional[Union[logging.Logger, LayeredAdapter]] = None,
        timer: Callable[[], float] = perf_counter,
    ) -> None:
        self._probe = probe
        self._acquirer = acquirer
        self._issuer = issuer
        self._emitter = emitter
        self.issuer_id = issuer_id
        self.course_id = course_id
        self.domain = domain
        self.desired_accuracy_meters = desired_accuracy_meters
        self.max_duration_ms = max_duration_ms
        self._rng = rng or random.Random()
        self._logger = logger or get_logger("orchestrator")
        self._timer = timer
        self._in_flight = False

        self.phase = AttendancePhase.IDLE
        self.permissions: Optional[PermissionState] = None
        self.location: Optional[LocationSample] = None
        self.frequency_hz: Optional[int] = None
        self.session: Optional[AttendanceSession] = None
        self.link_url: Optional[str] = None
        self.last_error: Optional[BaseException] = None

    @property
    def busy(self) -> bool:
        return self._in_flight

    @property
    def is_emitting(self) -> bool:
        return self._emitter.is_emitting

    async def take_attendance(self) -> AttendanceResult:
        """Probe, locate, pick a frequency, issue the session, start the tone.

        A second call while one is running raises :class:`AttemptInProgressError`.
        Component errors are re-raised unchanged.
        """
        if self._in_flight:
            raise AttemptInProgressError()
        self._in_flight = True
        self.last_error = None
        start = self._timer()
        result: Optional[AttendanceResult] = None
        try:
            result = await self._run(start)
        except Exception as exc:
            self.last_error = exc
            self._logger.error("Error taking attendance: %s", getattr(exc, "user_message", exc))
            raise
        finally:
            self._in_flight = False
            # Also covers task cancellation, which is not an Exception.
            if result is None:
                # A previous session may still be audible.
                self.phase = AttendancePhase.EMITTING if self._emitter.is_emitting else AttendancePhase.FAILED
        return result

    async def _run(self, start: float) -> AttendanceResult:
        self.phase = AttendancePhase.CHECKING_PERMISSIONS
        self._logger.info("Checking permissions...", extra={"layer": "step"})
        permissions = await self._probe.probe()
        self.permissions = permissions
        if not permissions.granted:
            raise MissingPermissionError(permissions)

        self.phase = AttendancePhase.ACQUIRING_LOCATION
        self._logger.info("Getting location...", extra={"layer": "step"})
        location = await self._acquirer.acquire(self.desired_accuracy_meters, self.max_duration_ms)
        self._logger.info(
            "Final coordinates: %.6f, %.6f (accuracy %.0fm)",
            location.latitude,
            location.longitude,
            location.accuracy_meters,
        )

        frequency = choose_frequency(self._rng)
        self._logger.info("Generated frequency: %s Hz", frequency)

        self.phase = AttendancePhase.ISSUING
        self._logger.info("Generating link...", extra={"layer": "step"})
        session = await self._issuer.issue(
            self.issuer_id,
            self.course_id,
            location.latitude,
            location.longitude,
            frequency,
        )
        link_url = build_redemption_url(self.domain, self.course_id, session.link_id)
        # Committed together so a failed retry never mixes two attempts.
        self.location = location
        self.frequency_hz = frequency
        self.session = session
        self.link_url = link_url
        self._logger.info("Generated link: %s", link_url)

        handle = self._emitter.start(session.frequency_hz)
        self.phase = AttendancePhase.EMITTING
        elapsed = self._timer() - start
        self._logger.info(
            "Attendance session %s ready (elapsed %.2fs)", session.link_id, elapsed, extra={"layer": "success"}
        )
        return AttendanceResult(
            session=session,
            location=location,
            link_url=link_url,
            emitter=handle,
            elapsed_seconds=elapsed,
        )

    def stop_emission(self) -> None:
        """Stop the tone; independent of any running attempt."""
        self._emitter.stop()
        if self.phase is AttendancePhase.EMITTING:
            self.phase = AttendancePhase.IDLE

    def close(self) -> None:
        """Tear down: cancel an in-flight location search and stop the tone."""
        self._acquirer.cancel()
        self.stop_emission()


__all__ = [
    "AttendanceOrchestrator",
    "AttendancePhase",
    "AttendanceResult",
    "PermissionChecker",
    "LocationProvider",
    "SessionProvider",
]
