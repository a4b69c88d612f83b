"""Audio output interface and a silent implementation."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Dict, List, Protocol


class AudioOutput(Protocol):
    """Tone-capable audio device."""

    def probe(self) -> None:
        """Open and immediately close an output context; raise if unusable."""

    def create_tone(self, frequency_hz: int, amplitude: float) -> object:
        """Start a continuous sine tone and return its handle."""

    def stop(self, handle: object) -> None:
        """Halt the tone and release its resources."""


@dataclass
class RecordedTone:
    tone_id: int
    frequency_hz: int
    amplitude: float
    playing: bool = True


class NullAudioOutput:
    """Keeps track of tones without producing sound."""

    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self.tones: List[RecordedTone] = []
        self._playing: Dict[int, RecordedTone] = {}
        self._ids = itertools.count(1)

    @property
    def playing(self) -> List[RecordedTone]:
        return list(self._playing.values())

    def probe(self) -> None:
        if not self.available:
            raise RuntimeError("Audio output unavailable")

    def create_tone(self, frequency_hz: int, amplitude: float) -> RecordedTone:
        self.probe()
        tone = RecordedTone(tone_id=next(self._ids), frequency_hz=frequency_hz, amplitude=amplitude)
        self.tones.append(tone)
        self._playing[tone.tone_id] = tone
        return tone

    def stop(self, handle: object) -> None:
        if not isinstance(handle, RecordedTone):
            return
        handle.playing = False
        self._playing.pop(handle.tone_id, None)


__all__ = ["AudioOutput", "NullAudioOutput", "RecordedTone"]
