"""Hardware collaborators: positioning sources and audio outputs.

The sounddevice backend lives in :mod:`.sounddevice_output` and is imported
lazily because loading it requires the PortAudio shared library.
"""

from .audio import AudioOutput, NullAudioOutput
from .positioning import PositionSource, ScriptedEvent, ScriptedPositionSource, StaticPositionSource

__all__ = [
    "AudioOutput",
    "NullAudioOutput",
    "PositionSource",
    "ScriptedEvent",
    "ScriptedPositionSource",
    "StaticPositionSource",
]
