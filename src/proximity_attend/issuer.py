"""Backend round-trip that turns a location and frequency into a session."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

import aiohttp

from .errors import IssuanceError
from .models import AttendanceSession, validate_frequency
from .utils.logger import LayeredAdapter, get_logger


def parse_timestamp_ms(value: Any) -> int:
    """Accept epoch milliseconds or an ISO-8601 string."""
    if isinstance(value, bool):
        raise ValueError(f"Not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValueError(f"Not a timestamp: {value!r}")
        return int(value)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    raise ValueError(f"Not a timestamp: {value!r}")


class SessionIssuer:
    """POST the attendance request and validate the backend's answer.

    No retries: a failure surfaces once as :class:`IssuanceError`.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout_s: float = 15.0,
        session: Optional[aiohttp.ClientSession] = None,
        logger: Optional[Union[logging.Logger, LayeredAdapter]] = None,
    ) -> None:
        if not endpoint:
            raise ValueError("endpoint is required")
        self.endpoint = endpoint
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._session = session
        self._logger = logger or get_logger("issuer")

    async def issue(
        self,
        issuer_id: str,
        course_id: str,
        latitude: float,
        longitude: float,
        frequency_hz: int,
    ) -> AttendanceSession:
        payload = self._build_payload(issuer_id, course_id, latitude, longitude, frequency_hz)
        self._logger.debug("Requesting attendance link from %s", self.endpoint)
        status, body = await self._post(payload)
        session = self._parse_response(status, body, payload)
        self._logger.debug("Link %s issued, expires at %s", session.link_id, session.expires_at_epoch_ms)
        return session

    def _build_payload(
        self,
        issuer_id: str,
        course_id: str,
        latitude: float,
        longitude: float,
        frequency_hz: int,
    ) -> Dict[str, Any]:
        if not issuer_id or not str(issuer_id).strip():
            raise IssuanceError("Teacher id is required.", reason="validation")
        if not course_id or not str(course_id).strip():
            raise IssuanceError("Course id is required.", reason="validation")
        if not (math.isfinite(latitude) and -90.0 <= latitude <= 90.0):
            raise IssuanceError(f"Invalid latitude: {latitude}", reason="validation")
        if not (math.isfinite(longitude) and -180.0 <= longitude <= 180.0):
            raise IssuanceError(f"Invalid longitude: {longitude}", reason="validation")
        try:
            validate_frequency(frequency_hz)
        except ValueError as exc:
            raise IssuanceError(str(exc), reason="validation") from exc
        return {
            "teacherId": str(issuer_id),
            "courseId": str(course_id),
            "latitude": float(latitude),
            "longitude": float(longitude),
            "frequency": frequency_hz,
        }

    async def _post(self, payload: Dict[str, Any]) -> tuple[int, Any]:
        try:
            if self._session is not None:
                return await self._send(self._session, payload)
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                return await self._send(session, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self._logger.debug("Issuance request failed: %r", exc)
            raise IssuanceError(
                "Could not reach the attendance service. Check your connection and try again.",
                reason="network",
            ) from exc

    async def _send(self, session: aiohttp.ClientSession, payload: Dict[str, Any]) -> tuple[int, Any]:
        async with session.post(self.endpoint, json=payload, timeout=self._timeout) as response:
            try:
                body = await response.json(content_type=None)
            except ValueError:
                body = None
            return response.status, body

    def _parse_response(self, status: int, body: Any, payload: Dict[str, Any]) -> AttendanceSession:
        error_text = body.get("error") if isinstance(body, dict) else None

        if status >= 400:
            if error_text:
                raise IssuanceError(str(error_text), reason="rejected", status=status)
            raise IssuanceError(f"Attendance service returned HTTP {status}.", reason="http", status=status)
        if not isinstance(body, dict):
            raise IssuanceError("Attendance service sent an unreadable response.", reason="invalid_response", status=status)
        if body.get("success") is not True:
            raise IssuanceError(
                str(error_text or "Attendance service rejected the request."), reason="rejected", status=status
            )

        link_id = body.get("linkId")
        if not isinstance(link_id, str) or not link_id:
            raise IssuanceError("Attendance service response is missing linkId.", reason="invalid_response", status=status)
        try:
            expires_at = parse_timestamp_ms(body.get("expiresAt"))
            issued_raw = body.get("issuedAt")
            issued_at = parse_timestamp_ms(issued_raw) if issued_raw is not None else int(time.time() * 1000)
        except ValueError as exc:
            raise IssuanceError(
                "Attendance service response has an invalid timestamp.", reason="invalid_response", status=status
            ) from exc

        frequency = body.get("frequency", payload["frequency"])
        if frequency != payload["frequency"]:
            raise IssuanceError(
                f"Attendance service echoed frequency {frequency}, expected {payload['frequency']}.",
                reason="invalid_response",
                status=status,
            )

        return AttendanceSession(
            issuer_id=payload["teacherId"],
            course_id=payload["courseId"],
            link_id=link_id,
            frequency_hz=payload["frequency"],
            latitude=payload["latitude"],
            longitude=payload["longitude"],
            issued_at_epoch_ms=issued_at,
            expires_at_epoch_ms=expires_at,
        )


__all__ = ["SessionIssuer", "parse_timestamp_ms"]
