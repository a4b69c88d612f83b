import asyncio

from proximity_attend.hardware.audio import NullAudioOutput
from proximity_attend.hardware.positioning import ScriptedEvent, ScriptedPositionSource, StaticPositionSource
from proximity_attend.models import PositionErrorKind
from proximity_attend.permissions import PermissionProbe


def test_both_capabilities_granted():
    source = ScriptedPositionSource([ScriptedEvent.fix(5, 500.0)])
    probe = PermissionProbe(source, NullAudioOutput())

    state = asyncio.run(probe.probe())

    assert state.positioning_granted
    assert state.audio_granted
    assert state.granted
    assert state.missing_messages() == []
    assert source.active_subscriptions == 0
    assert source.subscribe_calls[0]["high_accuracy"] is False


def test_positioning_denied():
    source = ScriptedPositionSource([ScriptedEvent.failure(5, PositionErrorKind.PERMISSION_DENIED)])
    probe = PermissionProbe(source, NullAudioOutput())

    state = asyncio.run(probe.probe())

    assert not state.positioning_granted
    assert state.audio_granted
    assert not state.granted
    assert state.missing_messages() == ["Geolocation permission is required for attendance."]


def test_audio_unavailable():
    probe = PermissionProbe(StaticPositionSource(1.0, 2.0), NullAudioOutput(available=False))

    state = asyncio.run(probe.probe())

    assert state.positioning_granted
    assert not state.audio_granted
    assert state.missing_messages() == ["Speaker access is required for frequency emission."]


def test_positioning_read_times_out():
    source = ScriptedPositionSource([])
    probe = PermissionProbe(source, NullAudioOutput(), read_timeout_ms=20)

    state = asyncio.run(probe.probe())

    assert not state.positioning_granted
    assert source.active_subscriptions == 0


def test_never_raises_when_hardware_throws():
    class ExplodingSource:
        def subscribe(self, *args, **kwargs):
            raise RuntimeError("driver crashed")

        def unsubscribe(self, handle):
            raise AssertionError("nothing to unsubscribe")

    class ExplodingAudio(NullAudioOutput):
        def probe(self):
            raise OSError("no PortAudio")

    state = asyncio.run(PermissionProbe(ExplodingSource(), ExplodingAudio()).probe())

    assert not state.positioning_granted
    assert not state.audio_granted


def test_unconfigured_static_source_is_not_granted():
    probe = PermissionProbe(StaticPositionSource(None, None), NullAudioOutput())

    state = asyncio.run(probe.probe())

    assert not state.positioning_granted
