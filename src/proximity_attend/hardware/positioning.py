"""Positioning sources.

A source is a callback registry: ``subscribe`` starts delivering fixes to
``on_sample`` until ``unsubscribe`` is called or a single terminal error is
reported through ``on_error``. Callbacks run on the event loop thread.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from ..models import LocationSample, PositionErrorKind
from ..utils.logger import get_logger

SampleCallback = Callable[[LocationSample], None]
ErrorCallback = Callable[[PositionErrorKind], None]

LOGGER = get_logger("positioning")


class PositionSource(Protocol):
    """Push-based positioning hardware."""

    def subscribe(
        self,
        on_sample: SampleCallback,
        on_error: ErrorCallback,
        *,
        high_accuracy: bool,
        timeout_ms: int,
        max_cache_age_ms: int,
    ) -> object:
        """Start delivering fixes; return an opaque subscription handle."""

    def unsubscribe(self, handle: object) -> None:
        """Stop the subscription. Safe to call more than once."""


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ScriptedEvent:
    """A fix or a terminal error delivered ``delay_ms`` after subscribing."""

    delay_ms: float
    sample: Optional[LocationSample] = None
    error: Optional[PositionErrorKind] = None

    @classmethod
    def fix(
        cls,
        delay_ms: float,
        accuracy_meters: float,
        latitude: float = 0.0,
        longitude: float = 0.0,
    ) -> "ScriptedEvent":
        sample = LocationSample(
            latitude=latitude,
            longitude=longitude,
            accuracy_meters=accuracy_meters,
            captured_at_epoch_ms=0,
        )
        return cls(delay_ms=delay_ms, sample=sample)

    @classmethod
    def failure(cls, delay_ms: float, kind: PositionErrorKind) -> "ScriptedEvent":
        return cls(delay_ms=delay_ms, error=kind)


class _ScriptedSubscription:
    def __init__(self, subscription_id: int) -> None:
        self.subscription_id = subscription_id
        self.timers: List[asyncio.TimerHandle] = []
        self.closed = False

    def close(self) -> None:
        self.closed = True
        for timer in self.timers:
            timer.cancel()
        self.timers.clear()


class ScriptedPositionSource:
    """Replay a fixed schedule of fixes on the running event loop.

    Every subscription replays the whole schedule from its own start. Samples
    with ``captured_at_epoch_ms == 0`` are stamped with the delivery time.
    """

    def __init__(self, events: Sequence[ScriptedEvent]) -> None:
        self._events = sorted(events, key=lambda event: event.delay_ms)
        self._ids = itertools.count(1)
        self._active: Dict[int, _ScriptedSubscription] = {}
        self.subscribe_calls: List[Dict[str, object]] = []
        self.delivered: List[LocationSample] = []

    @property
    def active_subscriptions(self) -> int:
        return len(self._active)

    def subscribe(
        self,
        on_sample: SampleCallback,
        on_error: ErrorCallback,
        *,
        high_accuracy: bool,
        timeout_ms: int,
        max_cache_age_ms: int,
    ) -> _ScriptedSubscription:
        loop = asyncio.get_running_loop()
        subscription = _ScriptedSubscription(next(self._ids))
        self._active[subscription.subscription_id] = subscription
        self.subscribe_calls.append(
            {
                "high_accuracy": high_accuracy,
                "timeout_ms": timeout_ms,
                "max_cache_age_ms": max_cache_age_ms,
            }
        )
        for event in self._events:
            timer = loop.call_later(
                event.delay_ms / 1000.0,
                self._deliver,
                subscription,
                event,
                on_sample,
                on_error,
            )
            subscription.timers.append(timer)
        return subscription

    def unsubscribe(self, handle: object) -> None:
        if not isinstance(handle, _ScriptedSubscription):
            return
        handle.close()
        self._active.pop(handle.subscription_id, None)

    def _deliver(
        self,
        subscription: _ScriptedSubscription,
        event: ScriptedEvent,
        on_sample: SampleCallback,
        on_error: ErrorCallback,
    ) -> None:
        if subscription.closed:
            return
        if event.error is not None:
            # Terminal: nothing else is delivered on this subscription.
            self.unsubscribe(subscription)
            on_error(event.error)
            return
        sample = event.sample
        if sample is None:
            return
        if not sample.captured_at_epoch_ms:
            sample = LocationSample(
                latitude=sample.latitude,
                longitude=sample.longitude,
                accuracy_meters=sample.accuracy_meters,
                captured_at_epoch_ms=_now_ms(),
            )
        self.delivered.append(sample)
        on_sample(sample)


class StaticPositionSource:
    """Report a configured classroom position, once per subscription.

    Without coordinates every subscription fails with ``UNAVAILABLE``.
    """

    def __init__(
        self,
        latitude: Optional[float],
        longitude: Optional[float],
        accuracy_meters: float = 10.0,
    ) -> None:
        self._latitude = latitude
        self._longitude = longitude
        self._accuracy = accuracy_meters
        self._pending: Dict[int, asyncio.Handle] = {}
        self._ids = itertools.count(1)

    @property
    def configured(self) -> bool:
        return self._latitude is not None and self._longitude is not None

    def subscribe(
        self,
        on_sample: SampleCallback,
        on_error: ErrorCallback,
        *,
        high_accuracy: bool,
        timeout_ms: int,
        max_cache_age_ms: int,
    ) -> int:
        loop = asyncio.get_running_loop()
        handle_id = next(self._ids)

        def deliver() -> None:
            self._pending.pop(handle_id, None)
            if not self.configured:
                LOGGER.warning("No fixed position configured (FIXED_LATITUDE / FIXED_LONGITUDE)")
                on_error(PositionErrorKind.UNAVAILABLE)
                return
            on_sample(
                LocationSample(
                    latitude=float(self._latitude),
                    longitude=float(self._longitude),
                    accuracy_meters=self._accuracy,
                    captured_at_epoch_ms=_now_ms(),
                )
            )

        self._pending[handle_id] = loop.call_soon(deliver)
        return handle_id

    def unsubscribe(self, handle: object) -> None:
        pending = self._pending.pop(handle, None)  # type: ignore[arg-type]
        if pending is not None:
            pending.cancel()


__all__ = [
    "PositionSource",
    "ScriptedEvent",
    "ScriptedPositionSource",
    "StaticPositionSource",
]
