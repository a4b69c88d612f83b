"""Single continuous tone on top of an :class:`AudioOutput`."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from .hardware.audio import AudioOutput
from .utils.logger import LayeredAdapter, get_logger

DEFAULT_AMPLITUDE = 0.1


@dataclass
class EmitterHandle:
    frequency_hz: int
    tone: object = field(repr=False)
    released: bool = False


class FrequencyEmitter:
    """Owns at most one playing tone; starting a new one stops the old."""

    def __init__(
        self,
        audio: AudioOutput,
        *,
        amplitude: float = DEFAULT_AMPLITUDE,
        logger: Optional[Union[logging.Logger, LayeredAdapter]] = None,
    ) -> None:
        if not 0.0 < amplitude <= 1.0:
            raise ValueError("amplitude must be in (0, 1]")
        self._audio = audio
        self._amplitude = amplitude
        self._logger = logger or get_logger("emitter")
        self._active: Optional[EmitterHandle] = None

    @property
    def is_emitting(self) -> bool:
        return self._active is not None

    @property
    def active_handle(self) -> Optional[EmitterHandle]:
        return self._active

    @property
    def frequency_hz(self) -> Optional[int]:
        return self._active.frequency_hz if self._active else None

    def start(self, frequency_hz: int) -> EmitterHandle:
        self.stop()
        tone = self._audio.create_tone(frequency_hz, self._amplitude)
        handle = EmitterHandle(frequency_hz=frequency_hz, tone=tone)
        self._active = handle
        self._logger.info("Emitting %s Hz", frequency_hz)
        return handle

    def stop(self, handle: Optional[EmitterHandle] = None) -> None:
        """Stop ``handle`` (default: the active tone). Repeated calls are no-ops."""
        target = handle or self._active
        if target is None or target.released:
            return
        target.released = True
        if self._active is target:
            self._active = None
        self._audio.stop(target.tone)
        self._logger.info("Stopped emitting %s Hz", target.frequency_hz)


__all__ = ["EmitterHandle", "FrequencyEmitter", "DEFAULT_AMPLITUDE"]
