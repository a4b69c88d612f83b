"""Check that positioning and audio output are usable right now."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Union

from .hardware.audio import AudioOutput
from .hardware.positioning import PositionSource
from .models import LocationSample, PermissionState, PositionErrorKind
from .utils.logger import LayeredAdapter, get_logger


class PermissionProbe:
    """One positioning read plus one audio context open/close.

    Never raises; each failed check only clears its own flag. The positioning
    read may surface the platform's permission prompt.
    """

    def __init__(
        self,
        positioning: PositionSource,
        audio: AudioOutput,
        *,
        read_timeout_ms: int = 10_000,
        logger: Optional[Union[logging.Logger, LayeredAdapter]] = None,
    ) -> None:
        self._positioning = positioning
        self._audio = audio
        self._read_timeout = read_timeout_ms / 1000.0
        self._logger = logger or get_logger("permissions")

    async def probe(self) -> PermissionState:
        positioning = await self._check_positioning()
        audio = self._check_audio()
        state = PermissionState(positioning_granted=positioning, audio_granted=audio)
        self._logger.debug("Permissions: positioning=%s audio=%s", positioning, audio)
        return state

    async def _check_positioning(self) -> bool:
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future = loop.create_future()

        def on_sample(sample: LocationSample) -> None:
            if not outcome.done():
                outcome.set_result(True)

        def on_error(kind: PositionErrorKind) -> None:
            if not outcome.done():
                self._logger.debug("Positioning check failed: %s", kind.value)
                outcome.set_result(False)

        handle = None
        try:
            handle = self._positioning.subscribe(
                on_sample,
                on_error,
                high_accuracy=False,
                timeout_ms=int(self._read_timeout * 1000),
                max_cache_age_ms=0,
            )
            return await asyncio.wait_for(outcome, self._read_timeout)
        except asyncio.TimeoutError:
            self._logger.debug("Positioning check timed out")
            return False
        except Exception as exc:
            self._logger.debug("Positioning check raised: %s", exc)
            return False
        finally:
            if handle is not None:
                try:
                    self._positioning.unsubscribe(handle)
                except Exception as exc:
                    self._logger.debug("Unsubscribe after positioning check failed: %s", exc)

    def _check_audio(self) -> bool:
        try:
            self._audio.probe()
        except Exception as exc:
            self._logger.debug("Audio check failed: %s", exc)
            return False
        return True


__all__ = ["PermissionProbe"]
