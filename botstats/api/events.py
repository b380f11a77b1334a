"""Bot event ingestion endpoints.

This is the thin FastAPI adapter. It parses JSON bodies, validates the
fields each event kind requires, converts them to core events and calls
the processor.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from botstats.core.models import (
    ConnectEvent,
    DisconnectEvent,
    HeartbeatEvent,
    SystemInfoEvent,
    TrackEvent,
)

router = APIRouter(prefix="/api")


class EventValidationError(ValueError):
    """Raised when a request body is missing or has malformed fields."""


def _optional_str(body: dict, key: str) -> str | None:
    value = body.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        raise EventValidationError(f"{key} must be a string")
    return value


def _required_str(body: dict, key: str) -> str:
    value = _optional_str(body, key)
    if value is None:
        raise EventValidationError(f"{key} required")
    return value


def parse_connect(body: dict, ip: str) -> ConnectEvent:
    user_id = _optional_str(body, "userId")
    instance_id = _optional_str(body, "instanceId")
    if user_id is None and instance_id is None:
        raise EventValidationError("userId or instanceId required")
    return ConnectEvent(
        user_id=user_id,
        user_agent=_optional_str(body, "userAgent") or "Unknown",
        instance_id=instance_id,
        ip_address=ip,
        location=body.get("location"),
    )


def parse_disconnect(body: dict) -> DisconnectEvent:
    return DisconnectEvent(
        instance_id=_required_str(body, "instanceId"),
        reason=_optional_str(body, "reason") or "unknown",
    )


def parse_heartbeat(body: dict) -> HeartbeatEvent:
    return HeartbeatEvent(instance_id=_required_str(body, "instanceId"))


def parse_track(body: dict) -> TrackEvent:
    payload = body.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise EventValidationError("payload must be an object")
    return TrackEvent(
        instance_id=_required_str(body, "instanceId"),
        user_id=_required_str(body, "userId"),
        event_type=_optional_str(body, "eventType") or "message",
        payload=payload,
    )


def parse_system_info(body: dict) -> SystemInfoEvent:
    return SystemInfoEvent(
        instance_id=_required_str(body, "instanceId"),
        payload=body.get("systemInfo", body.get("payload")),
    )


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _error(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(content={"success": False, "error": message}, status_code=status_code)


async def _read_body(request: Request) -> dict[str, Any]:
    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise EventValidationError("invalid JSON")
    if not isinstance(body, dict):
        raise EventValidationError("body must be a JSON object")
    return body


async def _rejected(request: Request, exc: EventValidationError) -> JSONResponse:
    from botstats.main import get_diagnostics, get_process_stats

    get_process_stats().record_rejected()
    await get_diagnostics().append(f"{request.url.path}: {exc}", _client_ip(request))
    return _error(str(exc))


@router.post("/connect")
async def connect(request: Request) -> JSONResponse:
    """Register a bot instance coming online (first connect or reconnect)."""
    from botstats.main import get_processor

    try:
        event = parse_connect(await _read_body(request), _client_ip(request))
    except EventValidationError as exc:
        return await _rejected(request, exc)

    result = await get_processor().connect(event)
    return JSONResponse(content={
        "success": True,
        "instanceId": result.instance_id,
        "isReconnection": result.is_reconnection,
        "healthScore": result.health_score,
        "qualityIssues": list(result.quality_issues),
    })


@router.post("/disconnect")
async def disconnect(request: Request) -> JSONResponse:
    from botstats.main import get_processor

    try:
        event = parse_disconnect(await _read_body(request))
    except EventValidationError as exc:
        return await _rejected(request, exc)

    # Unknown instances are a silent no-op for the caller.
    await get_processor().disconnect(event, _client_ip(request))
    return JSONResponse(content={"success": True})


@router.post("/heartbeat")
async def heartbeat(request: Request) -> JSONResponse:
    from botstats.main import get_processor

    try:
        event = parse_heartbeat(await _read_body(request))
    except EventValidationError as exc:
        return await _rejected(request, exc)

    known = await get_processor().heartbeat(event, _client_ip(request))
    return JSONResponse(content={"success": True, "known": known})


@router.post("/track")
async def track(request: Request) -> JSONResponse:
    """Track a message, reaction, group/status update or error reported by a bot."""
    from botstats.main import get_processor

    try:
        event = parse_track(await _read_body(request))
    except EventValidationError as exc:
        return await _rejected(request, exc)

    await get_processor().track(event)
    return JSONResponse(content={"success": True})


@router.post("/system-info")
async def system_info(request: Request) -> JSONResponse:
    from botstats.main import get_processor

    try:
        event = parse_system_info(await _read_body(request))
    except EventValidationError as exc:
        return await _rejected(request, exc)

    known = await get_processor().system_info(event, _client_ip(request))
    return JSONResponse(content={"success": True, "known": known})
