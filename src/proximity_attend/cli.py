"""Command-line entry point: take attendance from this machine."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import time
from typing import List, Optional, Tuple

from rich.console import Console
from rich.panel import Panel

from .config import Settings
from .emitter import FrequencyEmitter
from .errors import AttendanceError
from .hardware.audio import AudioOutput, NullAudioOutput
from .hardware.positioning import PositionSource, ScriptedEvent, ScriptedPositionSource, StaticPositionSource
from .issuer import SessionIssuer
from .location import LocationAcquirer
from .orchestrator import AttendanceOrchestrator, AttendanceResult
from .permissions import PermissionProbe
from .utils.logger import debug_detail, logger, set_log_profile, step, success
from .utils.progress import LocationProgressDisplay

# Fixes that tighten like a phone GPS warming up.
SIMULATED_FIXES = (
    (1000, 150.0),
    (2000, 80.0),
    (3000, 45.0),
    (4000, 15.0),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proximity-attend",
        description="Issue a location-bound attendance link and emit its near-ultrasonic tone.",
    )
    parser.add_argument("--teacher-id", help="Issuer id (default: TEACHER_ID)")
    parser.add_argument("--course-id", help="Course id (default: COURSE_ID)")
    parser.add_argument("--env-file", default=".env", help="Optional .env file to load (default: .env)")
    parser.add_argument("--simulate", action="store_true", help="Use scripted GPS fixes instead of the fixed position")
    parser.add_argument("--mute", action="store_true", help="Do not play the tone (no audio device needed)")
    parser.add_argument(
        "--log-profile",
        choices=["quiet", "user", "debug", "verbose"],
        help="Console verbosity (default: LOG_PROFILE or user)",
    )
    return parser


def build_position_source(settings: Settings, simulate: bool) -> PositionSource:
    if simulate:
        lat = settings.fixed_latitude if settings.fixed_latitude is not None else 0.0
        lon = settings.fixed_longitude if settings.fixed_longitude is not None else 0.0
        return ScriptedPositionSource(
            [ScriptedEvent.fix(delay, accuracy, lat, lon) for delay, accuracy in SIMULATED_FIXES]
        )
    return StaticPositionSource(settings.fixed_latitude, settings.fixed_longitude, settings.fixed_accuracy_m)


def build_audio_output(settings: Settings, mute: bool) -> AudioOutput:
    if mute:
        return NullAudioOutput()
    # PortAudio is only loaded when a real device is wanted.
    from .hardware.sounddevice_output import SoundDeviceAudioOutput

    device: Optional[object] = settings.audio_device
    if isinstance(device, str) and device.isdigit():
        device = int(device)
    return SoundDeviceAudioOutput(sample_rate=settings.audio_sample_rate, device=device)  # type: ignore[arg-type]


def build_orchestrator(
    settings: Settings,
    *,
    teacher_id: str,
    course_id: str,
    positioning: PositionSource,
    audio: AudioOutput,
) -> Tuple[AttendanceOrchestrator, LocationAcquirer]:
    acquirer = LocationAcquirer(positioning, poll_interval_ms=settings.poll_interval_ms)
    orchestrator = AttendanceOrchestrator(
        PermissionProbe(positioning, audio, read_timeout_ms=settings.permission_read_timeout_ms),
        acquirer,
        SessionIssuer(settings.api_url, timeout_s=settings.http_timeout_s),
        FrequencyEmitter(audio, amplitude=settings.tone_amplitude),
        issuer_id=teacher_id,
        course_id=course_id,
        domain=settings.domain,
        desired_accuracy_meters=settings.desired_accuracy_m,
        max_duration_ms=settings.max_duration_ms,
    )
    return orchestrator, acquirer


def _print_summary(console: Console, result: AttendanceResult) -> None:
    session = result.session
    expires = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(session.expires_at_epoch_ms / 1000))
    console.print(
        Panel(
            "\n".join(
                [
                    f"[bold]Link:[/bold] {result.link_url}",
                    f"[bold]Emitting frequency:[/bold] {session.frequency_hz} Hz",
                    f"[bold]Location accuracy:[/bold] {round(result.location.accuracy_meters)}m",
                    f"[bold]Expires at:[/bold] {expires}",
                ]
            ),
            title="Attendance Link Generated",
            border_style="green",
        )
    )


async def _emit_until_expired(orchestrator: AttendanceOrchestrator, check_interval_s: float = 1.0) -> None:
    session = orchestrator.session
    if session is None:
        return
    step("Emitting tone; press Ctrl+C to stop")
    while orchestrator.is_emitting:
        if session.is_expired(int(time.time() * 1000)):
            logger.warning("Attendance link %s has expired", session.link_id)
            break
        await asyncio.sleep(check_interval_s)


async def run(args: argparse.Namespace, settings: Settings) -> int:
    teacher_id = args.teacher_id or settings.teacher_id
    course_id = args.course_id or settings.course_id
    if not teacher_id or not course_id:
        logger.error("Teacher id and course id are required (--teacher-id/--course-id or TEACHER_ID/COURSE_ID)")
        return 2

    try:
        audio = build_audio_output(settings, args.mute)
    except OSError as exc:
        logger.error("Audio backend unavailable: %s (use --mute to run without sound)", exc)
        return 1

    orchestrator, acquirer = build_orchestrator(
        settings,
        teacher_id=teacher_id,
        course_id=course_id,
        positioning=build_position_source(settings, args.simulate),
        audio=audio,
    )
    debug_detail(f"Backend {settings.api_url}; target {settings.desired_accuracy_m}m within {settings.max_duration_ms}ms")
    source_kind = "scripted" if args.simulate else "fixed"
    debug_detail(f"Position source: {source_kind}; audio: {'muted' if args.mute else 'sounddevice'}")
    console = Console()
    try:
        try:
            with LocationProgressDisplay(console) as display:
                acquirer.on_progress = display.update
                result = await orchestrator.take_attendance()
        except AttendanceError:
            # The orchestrator has already logged the error itself.
            if orchestrator.permissions is not None:
                for message in orchestrator.permissions.missing_messages():
                    logger.warning(message)
            return 1
        finally:
            acquirer.on_progress = None

        _print_summary(console, result)
        await _emit_until_expired(orchestrator)
    finally:
        orchestrator.close()
    success("Frequency emission stopped")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = Settings.from_env(args.env_file)
    # LOG_PROFILE may only have arrived with the .env file.
    set_log_profile(args.log_profile or os.getenv("LOG_PROFILE") or "user")
    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        success("Frequency emission stopped")
        return 0
    except Exception:
        logger.exception("Attendance run failed")
        raise


if __name__ == "__main__":
    sys.exit(main())
