import asyncio
import logging
import random
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import test_utils, web

from proximity_attend.emitter import FrequencyEmitter
from proximity_attend.errors import (
    AcquisitionCancelled,
    AcquisitionTimeout,
    AttemptInProgressError,
    IssuanceError,
    MissingPermissionError,
)
from proximity_attend.hardware.audio import NullAudioOutput
from proximity_attend.hardware.positioning import ScriptedEvent, ScriptedPositionSource
from proximity_attend.issuer import SessionIssuer
from proximity_attend.location import LocationAcquirer
from proximity_attend.models import (
    HIGH_FREQUENCY_HZ,
    LOW_FREQUENCY_HZ,
    AttendanceSession,
    PermissionState,
    PositionErrorKind,
)
from proximity_attend.orchestrator import AttendanceOrchestrator, AttendancePhase
from proximity_attend.permissions import PermissionProbe

DOMAIN = "https://attend.example.edu"


async def _echo_issue(issuer_id, course_id, latitude, longitude, frequency_hz):
    return AttendanceSession(
        issuer_id=issuer_id,
        course_id=course_id,
        link_id="link-1",
        frequency_hz=frequency_hz,
        latitude=latitude,
        longitude=longitude,
        issued_at_epoch_ms=1_000,
        expires_at_epoch_ms=301_000,
    )


def _build(events, *, audio=None, issuer=None, probe=None, max_duration_ms=5000, seed=11):
    source = ScriptedPositionSource(events)
    audio = audio or NullAudioOutput()
    issuer = issuer or MagicMock(issue=AsyncMock(side_effect=_echo_issue))
    acquirer = LocationAcquirer(source)
    orchestrator = AttendanceOrchestrator(
        probe or PermissionProbe(source, audio),
        acquirer,
        issuer,
        FrequencyEmitter(audio),
        issuer_id="teacher-1",
        course_id="course-9",
        domain=DOMAIN,
        desired_accuracy_meters=20.0,
        max_duration_ms=max_duration_ms,
        rng=random.Random(seed),
        logger=logging.getLogger("test.orchestrator"),
    )
    return orchestrator, source, audio, issuer


def test_successful_attempt_emits_issued_frequency(virtual_loop):
    orchestrator, source, audio, issuer = _build([ScriptedEvent.fix(200, 12.0, 40.0, -74.0)])

    result = virtual_loop.run_until_complete(orchestrator.take_attendance())

    chosen = orchestrator.frequency_hz
    assert LOW_FREQUENCY_HZ <= chosen < HIGH_FREQUENCY_HZ
    issuer.issue.assert_awaited_once_with("teacher-1", "course-9", 40.0, -74.0, chosen)
    assert result.session.frequency_hz == chosen
    assert [tone.frequency_hz for tone in audio.playing] == [chosen]
    assert result.emitter.frequency_hz == chosen
    assert result.link_url == f"{DOMAIN}/dashboard/student/courses/course-9/mark_attendance?linkId=link-1"
    assert orchestrator.phase is AttendancePhase.EMITTING
    assert orchestrator.is_emitting
    assert source.active_subscriptions == 0


def test_positioning_denied_aborts_before_network(virtual_loop):
    orchestrator, source, audio, issuer = _build(
        [ScriptedEvent.failure(100, PositionErrorKind.PERMISSION_DENIED)]
    )

    with pytest.raises(MissingPermissionError) as excinfo:
        virtual_loop.run_until_complete(orchestrator.take_attendance())

    assert not excinfo.value.permissions.positioning_granted
    issuer.issue.assert_not_called()
    assert orchestrator.session is None
    assert audio.tones == []
    assert orchestrator.phase is AttendancePhase.FAILED
    assert orchestrator.last_error is excinfo.value
    # Only the permission read subscribed; the location search never started.
    assert len(source.subscribe_calls) == 1
    assert source.active_subscriptions == 0


def test_audio_unavailable_aborts_before_location_search(virtual_loop):
    orchestrator, source, audio, issuer = _build(
        [ScriptedEvent.fix(100, 10.0)], audio=NullAudioOutput(available=False)
    )

    with pytest.raises(MissingPermissionError):
        virtual_loop.run_until_complete(orchestrator.take_attendance())

    assert orchestrator.permissions == PermissionState(positioning_granted=True, audio_granted=False)
    assert len(source.subscribe_calls) == 1
    issuer.issue.assert_not_called()


def test_location_failure_skips_issuance(virtual_loop):
    # Permissions pass; the search never gets a fix.
    probe = MagicMock(probe=AsyncMock(return_value=PermissionState(True, True)))
    orchestrator, source, audio, issuer = _build([], probe=probe)

    with pytest.raises(AcquisitionTimeout):
        virtual_loop.run_until_complete(orchestrator.take_attendance())

    issuer.issue.assert_not_called()
    assert audio.tones == []
    assert orchestrator.frequency_hz is None
    assert orchestrator.location is None
    assert source.active_subscriptions == 0
    assert virtual_loop.time() == pytest.approx(5.0)


def test_issuance_failure_emits_nothing(virtual_loop):
    failure = IssuanceError("Course not found", reason="rejected")
    issuer = MagicMock(issue=AsyncMock(side_effect=failure))
    orchestrator, source, audio, _ = _build([ScriptedEvent.fix(1000, 30.0)], issuer=issuer)

    with pytest.raises(IssuanceError) as excinfo:
        virtual_loop.run_until_complete(orchestrator.take_attendance())

    assert excinfo.value is failure
    issuer.issue.assert_awaited_once()
    assert audio.tones == []
    assert not orchestrator.is_emitting
    assert orchestrator.session is None
    assert orchestrator.location is None
    assert orchestrator.frequency_hz is None
    assert orchestrator.link_url is None
    assert orchestrator.phase is AttendancePhase.FAILED


def test_failed_retry_keeps_previous_session_state_consistent(virtual_loop):
    orchestrator, source, audio, issuer = _build([ScriptedEvent.fix(200, 12.0, 40.0, -74.0)])
    first = virtual_loop.run_until_complete(orchestrator.take_attendance())

    failure = IssuanceError("Backend unavailable", reason="http", status=503)
    issuer.issue.side_effect = failure
    with pytest.raises(IssuanceError):
        virtual_loop.run_until_complete(orchestrator.take_attendance())

    assert issuer.issue.await_count == 2
    assert orchestrator.last_error is failure
    # Everything still describes the first session, which is still audible.
    assert orchestrator.session == first.session
    assert orchestrator.frequency_hz == first.session.frequency_hz
    assert orchestrator.location == first.location
    assert orchestrator.link_url == first.link_url
    assert [tone.frequency_hz for tone in audio.playing] == [first.session.frequency_hz]
    assert orchestrator.phase is AttendancePhase.EMITTING


def test_second_attempt_while_in_flight_is_rejected(virtual_loop):
    orchestrator, source, audio, issuer = _build([ScriptedEvent.fix(600, 10.0)])

    async def scenario():
        first = asyncio.create_task(orchestrator.take_attendance())
        await asyncio.sleep(0.2)
        assert orchestrator.busy
        with pytest.raises(AttemptInProgressError):
            await orchestrator.take_attendance()
        return await first

    result = virtual_loop.run_until_complete(scenario())

    assert result.session.link_id == "link-1"
    issuer.issue.assert_awaited_once()
    assert not orchestrator.busy


def test_close_during_search_cancels_and_releases(virtual_loop):
    orchestrator, source, audio, issuer = _build([ScriptedEvent.fix(100, 90.0)])

    async def scenario():
        task = asyncio.create_task(orchestrator.take_attendance())
        await asyncio.sleep(1.0)
        assert orchestrator.phase is AttendancePhase.ACQUIRING_LOCATION
        orchestrator.close()
        with pytest.raises(AcquisitionCancelled):
            await task

    virtual_loop.run_until_complete(scenario())

    assert source.active_subscriptions == 0
    issuer.issue.assert_not_called()
    assert audio.tones == []
    assert orchestrator.phase is AttendancePhase.FAILED


def test_task_cancellation_marks_attempt_failed(virtual_loop):
    orchestrator, source, audio, issuer = _build([ScriptedEvent.fix(100, 90.0)])

    async def scenario():
        task = asyncio.create_task(orchestrator.take_attendance())
        await asyncio.sleep(1.0)
        assert orchestrator.phase is AttendancePhase.ACQUIRING_LOCATION
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    virtual_loop.run_until_complete(scenario())

    assert orchestrator.phase is AttendancePhase.FAILED
    assert not orchestrator.busy
    assert source.active_subscriptions == 0
    issuer.issue.assert_not_called()


def test_stop_emission_is_independent_and_repeatable(virtual_loop):
    orchestrator, source, audio, issuer = _build([ScriptedEvent.fix(100, 10.0)])
    virtual_loop.run_until_complete(orchestrator.take_attendance())

    orchestrator.stop_emission()
    orchestrator.stop_emission()
    orchestrator.close()

    assert audio.playing == []
    assert not orchestrator.is_emitting
    assert orchestrator.phase is AttendancePhase.IDLE
    assert orchestrator.session is not None


def test_new_session_replaces_previous_tone(virtual_loop):
    orchestrator, source, audio, issuer = _build([ScriptedEvent.fix(100, 10.0)])

    virtual_loop.run_until_complete(orchestrator.take_attendance())
    virtual_loop.run_until_complete(orchestrator.take_attendance())

    assert len(audio.tones) == 2
    assert [tone.frequency_hz for tone in audio.playing] == [orchestrator.frequency_hz]


def test_end_to_end_against_backend():
    received = []

    async def handler(request: web.Request) -> web.Response:
        body = await request.json()
        received.append(body)
        return web.json_response(
            {
                "success": True,
                "linkId": "abc123",
                "expiresAt": "2026-10-18T10:05:00Z",
                "frequency": body["frequency"],
            }
        )

    async def scenario():
        app = web.Application()
        app.router.add_post("/api/attendance/links", handler)
        async with test_utils.TestServer(app) as server:
            issuer = SessionIssuer(str(server.make_url("/api/attendance/links")))
            orchestrator, source, audio, _ = _build(
                [ScriptedEvent.fix(10, 150.0, 1.0, 2.0), ScriptedEvent.fix(20, 45.0, 3.0, 4.0)],
                issuer=issuer,
                max_duration_ms=80,
            )
            result = await orchestrator.take_attendance()
            orchestrator.close()
            return result, audio

    result, audio = asyncio.run(scenario())

    assert received[0]["latitude"] == 3.0
    assert received[0]["longitude"] == 4.0
    assert result.session.frequency_hz == received[0]["frequency"]
    assert audio.tones[0].frequency_hz == received[0]["frequency"]
    assert audio.playing == []
    assert result.link_url.endswith("/courses/course-9/mark_attendance?linkId=abc123")
