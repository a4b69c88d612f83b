"""Bounded-time location search over a push-based positioning source.

One search owns exactly one hardware subscription, one deadline timer and one
progress poller. Three events race to end it:

* a fix at or below the desired accuracy (early exit with that fix),
* a terminal hardware error,
* the deadline (best fix so far, or a timeout when there is none).

The first one settles a :class:`ResolutionCell`; everything after that is
discarded. Resources are released before the caller can observe the result.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Callable, Generator, Optional, Union

from .errors import AcquisitionCancelled, AcquisitionHardwareError, AcquisitionTimeout
from .hardware.positioning import PositionSource
from .models import (
    AcquisitionProgress,
    AcquisitionState,
    AcquisitionStatus,
    LocationSample,
    PositionErrorKind,
    describe_accuracy,
)
from .utils.logger import LayeredAdapter, get_logger

ProgressCallback = Callable[[AcquisitionProgress], None]

INITIAL_MESSAGE = "Initializing location services..."


class ResolutionCell:
    """Awaitable slot that accepts exactly one outcome.

    ``before`` runs once, by the winning writer, ahead of the outcome being
    stored; losing writers get ``False`` and have no effect.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._future: asyncio.Future = (loop or asyncio.get_running_loop()).create_future()
        self._claimed = False

    @property
    def resolved(self) -> bool:
        return self._claimed or self._future.done()

    def resolve(self, value: Any, *, before: Optional[Callable[[], None]] = None) -> bool:
        return self._settle(partial(self._future.set_result, value), before)

    def reject(self, error: BaseException, *, before: Optional[Callable[[], None]] = None) -> bool:
        return self._settle(partial(self._future.set_exception, error), before)

    def _settle(self, apply: Callable[[], None], before: Optional[Callable[[], None]]) -> bool:
        if self.resolved:
            return False
        self._claimed = True
        try:
            if before is not None:
                before()
        finally:
            if not self._future.done():
                apply()
        return True

    def __await__(self) -> Generator[Any, None, Any]:
        return self._future.__await__()


class _Attempt:
    """Resources and bookkeeping for one in-flight search."""

    def __init__(
        self, loop: asyncio.AbstractEventLoop, desired_accuracy_meters: float, max_duration_ms: int
    ) -> None:
        self.loop = loop
        self.desired_accuracy_meters = desired_accuracy_meters
        self.max_duration_ms = max_duration_ms
        self.started_at = loop.time()
        self.cell = ResolutionCell(loop)
        self.subscription: Optional[object] = None
        self.deadline: Optional[asyncio.TimerHandle] = None
        self.poller: Optional[asyncio.Task] = None
        self.best: Optional[LocationSample] = None
        self.latest: Optional[LocationSample] = None
        self.message = INITIAL_MESSAGE
        self.fraction = 0.0


class LocationAcquirer:
    """Find the most accurate fix available within a deadline."""

    def __init__(
        self,
        source: PositionSource,
        *,
        poll_interval_ms: int = 100,
        on_progress: Optional[ProgressCallback] = None,
        logger: Optional[Union[logging.Logger, LayeredAdapter]] = None,
    ) -> None:
        if poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")
        self._source = source
        self._poll_interval = poll_interval_ms / 1000.0
        self.on_progress = on_progress
        self._logger = logger or get_logger("location")
        self._state = AcquisitionState()
        self._attempt: Optional[_Attempt] = None

    @property
    def state(self) -> AcquisitionState:
        attempt = self._attempt
        if attempt is not None and self._state.status is AcquisitionStatus.IN_PROGRESS:
            return AcquisitionState(self._state.status, attempt.best, self._elapsed_ms(attempt))
        return self._state

    @property
    def in_progress(self) -> bool:
        return self._attempt is not None and not self._attempt.cell.resolved

    async def acquire(self, desired_accuracy_meters: float, max_duration_ms: int) -> LocationSample:
        """Search until a fix is good enough, the hardware fails, or time runs out.

        Raises :class:`AcquisitionHardwareError`, :class:`AcquisitionTimeout`
        or :class:`AcquisitionCancelled`.
        """
        if desired_accuracy_meters <= 0:
            raise ValueError("desired_accuracy_meters must be positive")
        if max_duration_ms <= 0:
            raise ValueError("max_duration_ms must be positive")

        # A new search tears down the previous one before touching hardware.
        self.cancel()

        loop = asyncio.get_running_loop()
        attempt = _Attempt(loop, desired_accuracy_meters, max_duration_ms)
        self._attempt = attempt
        self._state = AcquisitionState(status=AcquisitionStatus.IN_PROGRESS)
        self._logger.debug(
            "Location search started (target %.0fm, deadline %dms)", desired_accuracy_meters, max_duration_ms
        )
        self._report(attempt)

        try:
            attempt.subscription = self._source.subscribe(
                partial(self._on_sample, attempt),
                partial(self._on_error, attempt),
                high_accuracy=True,
                timeout_ms=max_duration_ms,
                max_cache_age_ms=0,
            )
        except Exception as exc:
            self._logger.error("Positioning subscription failed: %s", exc)
            error = AcquisitionHardwareError(PositionErrorKind.UNKNOWN)
            error.__cause__ = exc
            attempt.cell.reject(error, before=partial(self._conclude, attempt, AcquisitionStatus.FAILED))

        if attempt.cell.resolved:
            # Settled while subscribing; the handle arrived after cleanup ran.
            self._release(attempt)
        else:
            attempt.deadline = loop.call_later(max_duration_ms / 1000.0, self._on_deadline, attempt)
            attempt.poller = loop.create_task(self._poll_progress(attempt))

        try:
            return await attempt.cell
        except asyncio.CancelledError:
            if not self._state.status.is_terminal:
                self._conclude(attempt, AcquisitionStatus.FAILED)
            raise
        finally:
            self._release(attempt)
            if self._attempt is attempt:
                self._attempt = None

    def cancel(self) -> None:
        """Abort the in-flight search, if any. Safe to call at any time."""
        attempt = self._attempt
        if attempt is None:
            return
        if attempt.cell.reject(
            AcquisitionCancelled(), before=partial(self._conclude, attempt, AcquisitionStatus.FAILED)
        ):
            self._logger.debug("Location search cancelled")
        self._release(attempt)

    # ------------------------------------------------------------------
    # Racing events

    def _on_sample(self, attempt: _Attempt, sample: LocationSample) -> None:
        if attempt.cell.resolved:
            self._logger.debug("Discarding late fix (%.1fm)", sample.accuracy_meters)
            return

        attempt.latest = sample
        # Ties keep the earlier fix.
        if attempt.best is None or sample.accuracy_meters < attempt.best.accuracy_meters:
            attempt.best = sample
        attempt.message = describe_accuracy(sample.accuracy_meters, attempt.desired_accuracy_meters)
        self._logger.debug("Fix received: %.1fm (best %.1fm)", sample.accuracy_meters, attempt.best.accuracy_meters)

        if sample.accuracy_meters <= attempt.desired_accuracy_meters:
            attempt.cell.resolve(sample, before=partial(self._conclude, attempt, AcquisitionStatus.SUCCEEDED))
        self._report(attempt)

    def _on_error(self, attempt: _Attempt, kind: PositionErrorKind) -> None:
        if attempt.cell.resolved:
            self._logger.debug("Discarding late positioning error: %s", kind.value)
            return
        if attempt.best is not None:
            # Best-effort policy: once any fix has arrived, a hardware error resolves with the best fix.
            self._logger.warning(
                "Positioning stopped early (%s); using best fix (%.1fm)", kind.value, attempt.best.accuracy_meters
            )
            attempt.cell.resolve(attempt.best, before=partial(self._conclude, attempt, AcquisitionStatus.SUCCEEDED))
        else:
            error = AcquisitionHardwareError(kind)
            self._logger.debug("Positioning error: %s", kind.value)
            attempt.cell.reject(error, before=partial(self._conclude, attempt, AcquisitionStatus.FAILED))
        self._report(attempt)

    def _on_deadline(self, attempt: _Attempt) -> None:
        attempt.deadline = None
        if attempt.cell.resolved:
            return
        if attempt.best is not None:
            self._logger.debug("Deadline reached; best fix %.1fm", attempt.best.accuracy_meters)
            attempt.cell.resolve(attempt.best, before=partial(self._conclude, attempt, AcquisitionStatus.SUCCEEDED))
        else:
            attempt.cell.reject(
                AcquisitionTimeout(), before=partial(self._conclude, attempt, AcquisitionStatus.TIMED_OUT)
            )
        self._report(attempt)

    async def _poll_progress(self, attempt: _Attempt) -> None:
        while not attempt.cell.resolved:
            await asyncio.sleep(self._poll_interval)
            if attempt.cell.resolved:
                break
            self._report(attempt)

    # ------------------------------------------------------------------
    # Cleanup and reporting

    def _conclude(self, attempt: _Attempt, status: AcquisitionStatus) -> None:
        self._release(attempt)
        attempt.fraction = 1.0
        if self._attempt is attempt:
            self._state = AcquisitionState(status, attempt.best, self._elapsed_ms(attempt))

    def _release(self, attempt: _Attempt) -> None:
        if attempt.subscription is not None:
            subscription, attempt.subscription = attempt.subscription, None
            self._source.unsubscribe(subscription)
        if attempt.deadline is not None:
            attempt.deadline.cancel()
            attempt.deadline = None
        if attempt.poller is not None:
            attempt.poller.cancel()
            attempt.poller = None

    def _elapsed_ms(self, attempt: _Attempt) -> int:
        return round((attempt.loop.time() - attempt.started_at) * 1000)

    def _report(self, attempt: _Attempt) -> None:
        if not attempt.cell.resolved:
            fraction = min(self._elapsed_ms(attempt) / attempt.max_duration_ms, 1.0)
            attempt.fraction = max(attempt.fraction, fraction)
        if self.on_progress is None:
            return
        self.on_progress(
            AcquisitionProgress(
                fraction=attempt.fraction,
                message=attempt.message,
                latest_sample=attempt.latest,
                best_sample=attempt.best,
            )
        )


__all__ = ["LocationAcquirer", "ResolutionCell", "ProgressCallback", "INITIAL_MESSAGE"]
