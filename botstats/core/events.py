"""Event application: the incremental statistic-update rules.

Each ``apply_*`` function mutates the given Dataset in place for one event
at time ``now_ms``. They never do I/O and never raise for unknown ids:
events that refer to an instance the dataset does not track are no-ops
(the caller may log them). Serialization and persistence live in
``botstats.core.processor``.
"""

from __future__ import annotations

import structlog

from botstats.core import classifier
from botstats.core.classifier import LivenessWindows
from botstats.core.models import (
    STATUS_CONNECTED,
    STATUS_DISCONNECTED,
    ConnectEvent,
    ConnectResult,
    Dataset,
    DisconnectEvent,
    HeartbeatEvent,
    Instance,
    Session,
    SystemInfoEvent,
    TrackEvent,
    day_from_ms,
)

log = structlog.get_logger()

DEFAULT_EVENT_LIMIT = 500

# Track event types with counter effects.
EVENT_MESSAGE = "message"
EVENT_REACTION = "message_reaction"
EVENT_GROUP_UPDATE = "group_update"
EVENT_STATUS_UPDATE = "status_update"
EVENT_ERROR = "error"
EVENT_HEARTBEAT = "heartbeat"

# Event types that create the user record when it is missing.
_USER_CREATING_EVENTS = frozenset({EVENT_MESSAGE, EVENT_REACTION})


def _refresh_after_shape_change(dataset: Dataset, instance: Instance,
                                now_ms: int, windows: LivenessWindows) -> None:
    classifier.refresh_instance(instance, now_ms)
    classifier.refresh_dataset_metrics(dataset)
    classifier.refresh_connection_stats(dataset, now_ms, windows)


# ---------------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------------

def is_claimable(dataset: Dataset, instance_id: str, user_id: str | None, now_ms: int,
                 windows: LivenessWindows) -> bool:
    """False when ``instance_id`` is a live identity owned by another user."""
    existing = dataset.get_instance(instance_id)
    if (existing is not None
            and user_id is not None
            and existing.user_id not in (None, user_id)
            and classifier.is_active(existing, now_ms, windows)):
        log.warning("instance_id_claimed_by_other_user",
                    instance=instance_id, user=user_id, owner=existing.user_id)
        return False
    return True


def usable_supplied_id(dataset: Dataset, event: ConnectEvent, now_ms: int,
                       windows: LivenessWindows) -> str | None:
    """Return the caller's instance id unless it is a live identity of another user."""
    if not event.instance_id:
        return None
    if not is_claimable(dataset, event.instance_id, event.user_id, now_ms, windows):
        return None
    return event.instance_id


def _open_session(instance: Instance, event: ConnectEvent, now_ms: int) -> None:
    instance.sessions.append(Session(
        start=now_ms,
        ip=event.ip_address,
        user_agent=event.user_agent,
        location=event.location,
    ))


def apply_connect(dataset: Dataset, event: ConnectEvent, instance_id: str, now_ms: int,
                  windows: LivenessWindows,
                  event_limit: int = DEFAULT_EVENT_LIMIT) -> ConnectResult:
    """Connect (or reconnect) ``instance_id``, already resolved by the caller."""
    stats = dataset.statistics
    instance = dataset.get_instance(instance_id)

    if instance is not None and instance.is_connected and instance.current_session is not None:
        # Duplicate connect: the session is already open, only refresh liveness.
        instance.touch(now_ms, heartbeat=True)
        if event.user_id is not None and instance.user_id != event.user_id:
            log.info("instance_owner_changed", instance=instance_id,
                     previous=instance.user_id, user=event.user_id)
            instance.user_id = event.user_id
        _upsert_connecting_user(dataset, event, instance_id, now_ms)
        classifier.refresh_connection_stats(dataset, now_ms, windows)
        log.debug("duplicate_connect", instance=instance_id)
        return ConnectResult(
            instance_id=instance_id,
            is_reconnection=False,
            health_score=instance.health_score,
            quality_issues=tuple(instance.quality_issues),
        )

    is_reconnection = instance is not None
    if instance is None:
        instance = Instance(
            id=instance_id,
            first_seen=now_ms,
            last_active=now_ms,
            last_heartbeat=now_ms,
            connection_count=1,
        )
        dataset.instances[instance_id] = instance
        stats.total_connections += 1
    else:
        instance.connection_count += 1
        stats.reconnections += 1

    instance.status = STATUS_CONNECTED
    instance.touch(now_ms, heartbeat=True)
    instance.user_agent = event.user_agent
    instance.remember_ip(event.ip_address)
    if event.user_id is not None:
        instance.user_id = event.user_id
    _open_session(instance, event, now_ms)

    _upsert_connecting_user(dataset, event, instance_id, now_ms)

    stats.bump("user_agents", event.user_agent)
    stats.bump("daily_active", day_from_ms(now_ms))
    stats.record_event({
        "type": "connection",
        "instanceId": instance_id,
        "timestamp": now_ms,
        "isReconnection": is_reconnection,
    }, event_limit)

    _refresh_after_shape_change(dataset, instance, now_ms, windows)

    return ConnectResult(
        instance_id=instance_id,
        is_reconnection=is_reconnection,
        health_score=instance.health_score,
        quality_issues=tuple(instance.quality_issues),
    )


def _upsert_connecting_user(dataset: Dataset, event: ConnectEvent, instance_id: str,
                            now_ms: int) -> None:
    if event.user_id is None:
        return
    user = dataset.ensure_user(event.user_id, now_ms)
    user.last_active = max(user.last_active, now_ms)
    user.link_instance(instance_id)


# ---------------------------------------------------------------------------
# Heartbeat / disconnect / system info
# ---------------------------------------------------------------------------

def apply_heartbeat(dataset: Dataset, event: HeartbeatEvent, now_ms: int,
                    windows: LivenessWindows) -> bool:
    """Returns False when the instance is unknown (nothing changed)."""
    instance = dataset.get_instance(event.instance_id)
    if instance is None:
        return False
    instance.touch(now_ms, heartbeat=True)
    dataset.statistics.heartbeats += 1
    classifier.refresh_connection_stats(dataset, now_ms, windows)
    return True


def apply_disconnect(dataset: Dataset, event: DisconnectEvent, now_ms: int,
                     windows: LivenessWindows,
                     event_limit: int = DEFAULT_EVENT_LIMIT) -> bool:
    """Close the open session. Returns False when the instance is unknown."""
    instance = dataset.get_instance(event.instance_id)
    if instance is None:
        return False

    if not instance.is_connected:
        # Nothing open to close; counting it would break
        # connectionCount >= disconnectionCount.
        instance.touch(now_ms)
        classifier.refresh_connection_stats(dataset, now_ms, windows)
        log.debug("duplicate_disconnect", instance=event.instance_id)
        return True

    stats = dataset.statistics
    session = instance.current_session
    duration = None
    if session is not None:
        session.end = max(now_ms, session.start)
        session.duration = session.end - session.start
        session.disconnect_reason = event.reason
        duration = session.duration

    instance.status = STATUS_DISCONNECTED
    instance.touch(now_ms)
    instance.disconnection_count += 1
    instance.last_disconnect = {"timestamp": now_ms, "reason": event.reason}

    stats.disconnections += 1
    stats.bump("daily_disconnections", day_from_ms(now_ms))
    stats.bump("disconnect_reasons", event.reason)
    stats.record_event({
        "type": "disconnection",
        "instanceId": event.instance_id,
        "timestamp": now_ms,
        "reason": event.reason,
        "duration": duration,
    }, event_limit)

    _refresh_after_shape_change(dataset, instance, now_ms, windows)
    return True


def apply_system_info(dataset: Dataset, event: SystemInfoEvent, now_ms: int,
                      windows: LivenessWindows) -> bool:
    instance = dataset.get_instance(event.instance_id)
    if instance is None:
        return False
    instance.system_info = event.payload
    instance.last_heartbeat = max(instance.last_heartbeat, now_ms)
    dataset.statistics.system_info[event.instance_id] = {
        "timestamp": now_ms,
        "info": event.payload,
    }
    classifier.refresh_connection_stats(dataset, now_ms, windows)
    return True


# ---------------------------------------------------------------------------
# Track
# ---------------------------------------------------------------------------

def apply_track(dataset: Dataset, event: TrackEvent, now_ms: int,
                windows: LivenessWindows) -> None:
    """Dispatch a tracked bot event into the matching counters.

    Activity timestamps are refreshed first for whatever instance and user
    exist. Unrecognized event types stop there.
    """
    stats = dataset.statistics
    payload = event.payload or {}

    instance = dataset.get_instance(event.instance_id)
    if instance is not None:
        instance.touch(now_ms)

    user = dataset.get_user(event.user_id)
    if user is None and event.event_type in _USER_CREATING_EVENTS:
        user = dataset.ensure_user(event.user_id, now_ms)
    if user is not None:
        user.last_active = max(user.last_active, now_ms)
        user.link_instance(event.instance_id)

    if event.event_type == EVENT_MESSAGE:
        stats.total_messages += 1
        stats.bump("message_types", str(payload.get("messageType") or "text"))
        user.total_messages += 1
    elif event.event_type == EVENT_REACTION:
        stats.bump("reactions", str(payload.get("reaction") or "unknown"))
        user.total_reactions += 1
    elif event.event_type == EVENT_GROUP_UPDATE:
        key = f"{payload.get('groupId') or 'unknown'}:{payload.get('action') or 'unknown'}"
        stats.bump("group_events", key)
    elif event.event_type == EVENT_STATUS_UPDATE:
        stats.bump("status_updates", str(payload.get("status") or "unknown"))
    elif event.event_type == EVENT_ERROR:
        stats.bump("errors", str(payload.get("errorType") or "unknown"))
    elif event.event_type == EVENT_HEARTBEAT:
        apply_heartbeat(dataset, HeartbeatEvent(instance_id=event.instance_id), now_ms, windows)
        return
    else:
        log.debug("unknown_track_event", event_type=event.event_type,
                  instance=event.instance_id)

    classifier.refresh_connection_stats(dataset, now_ms, windows)
