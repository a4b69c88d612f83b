"""PortAudio tone output through ``sounddevice``."""

from __future__ import annotations

from typing import Optional, Union

import numpy as np
import sounddevice as sd

from ..utils.logger import get_logger

LOGGER = get_logger("audio")


class _SineStream:
    """Continuous sine generator feeding one output stream."""

    def __init__(self, frequency_hz: int, amplitude: float, sample_rate: int) -> None:
        self.frequency_hz = frequency_hz
        self.amplitude = amplitude
        self.sample_rate = sample_rate
        self._phase = 0
        self.stream: Optional[sd.OutputStream] = None

    def callback(self, outdata, frames, time_info, status) -> None:
        if status:
            LOGGER.debug("Output stream status: %s", status)
        t = (self._phase + np.arange(frames)) / self.sample_rate
        outdata[:, 0] = self.amplitude * np.sin(2 * np.pi * self.frequency_hz * t)
        self._phase += frames


class SoundDeviceAudioOutput:
    def __init__(self, *, sample_rate: int = 48000, device: Optional[Union[int, str]] = None) -> None:
        self.sample_rate = sample_rate
        self.device = device

    def probe(self) -> None:
        stream = sd.OutputStream(samplerate=self.sample_rate, channels=1, device=self.device, dtype="float32")
        stream.close()

    def create_tone(self, frequency_hz: int, amplitude: float) -> _SineStream:
        if frequency_hz * 2 >= self.sample_rate:
            raise ValueError(f"{frequency_hz} Hz cannot be played at {self.sample_rate} Hz sample rate")
        tone = _SineStream(frequency_hz, amplitude, self.sample_rate)
        stream = sd.OutputStream(
            samplerate=self.sample_rate,
            channels=1,
            device=self.device,
            dtype="float32",
            callback=tone.callback,
        )
        try:
            stream.start()
        except BaseException:
            stream.close()
            raise
        tone.stream = stream
        LOGGER.debug("Tone %s Hz started (amplitude %.2f)", frequency_hz, amplitude)
        return tone

    def stop(self, handle: object) -> None:
        if not isinstance(handle, _SineStream) or handle.stream is None:
            return
        stream, handle.stream = handle.stream, None
        try:
            stream.stop()
        finally:
            stream.close()
        LOGGER.debug("Tone %s Hz stopped", handle.frequency_hz)


__all__ = ["SoundDeviceAudioOutput"]
