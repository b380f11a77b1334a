"""botstats: core aggregate data model.

These are plain dataclasses with no framework dependencies. The persisted
JSON document uses camelCase keys; conversion happens in ``to_dict`` /
``from_dict`` so the rest of the core only sees attributes.

Reading tolerates older, narrower documents: every missing field falls
back to its default.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

SCHEMA_VERSION = "1.3.0"

STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"


def iso_from_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()


def day_from_ms(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


@dataclass
class Session:
    start: int
    end: int | None = None
    duration: int | None = None
    ip: str = "unknown"
    user_agent: str = "Unknown"
    disconnect_reason: str | None = None
    location: Any = None

    @property
    def is_open(self) -> bool:
        return self.end is None

    def to_dict(self) -> dict:
        return {
            "start": self.start,
            "end": self.end,
            "duration": self.duration,
            "ip": self.ip,
            "userAgent": self.user_agent,
            "disconnectReason": self.disconnect_reason,
            "location": self.location,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Session:
        return cls(
            start=data.get("start", 0),
            end=data.get("end"),
            duration=data.get("duration"),
            ip=data.get("ip", "unknown"),
            user_agent=data.get("userAgent", "Unknown"),
            disconnect_reason=data.get("disconnectReason"),
            location=data.get("location"),
        )


def _repair_sessions(sessions: list[Session], current: Any, *, connected: bool,
                     last_active: int) -> list[Session]:
    """Restore the one-open-session-at-the-tail shape on older documents.

    Older writers closed a separate ``currentSession`` copy and left the
    matching ``sessions`` entry open. That closed copy replaces the entry.
    Any other open session, and the tail of a disconnected instance, is
    marked ended with an unknown duration: at the next session's start, or
    at ``last_active`` for the tail.
    """
    if isinstance(current, dict) and current.get("end") is not None:
        closed = Session.from_dict(current)
        for index in range(len(sessions) - 1, -1, -1):
            if sessions[index].start == closed.start:
                sessions[index] = closed
                break
        else:
            sessions.append(closed)

    for index, session in enumerate(sessions):
        if not session.is_open:
            continue
        if index < len(sessions) - 1:
            session.end = max(session.start, sessions[index + 1].start)
        elif not connected:
            session.end = max(session.start, last_active)
        else:
            continue
        session.disconnect_reason = session.disconnect_reason or "unknown"
    return sessions


@dataclass
class Instance:
    """One reporting bot process."""
    id: str
    first_seen: int
    last_active: int
    last_heartbeat: int
    status: str = STATUS_CONNECTED
    user_agent: str = "Unknown"
    ip_address: str = "unknown"
    ip_history: list[str] = field(default_factory=list)
    user_id: str | None = None
    connection_count: int = 0
    disconnection_count: int = 0
    sessions: list[Session] = field(default_factory=list)

    # Cached derived fields, recomputed on connect/disconnect.
    avg_session_duration: float = 0.0
    health_score: int = 100
    quality_issues: list[str] = field(default_factory=list)

    last_disconnect: dict | None = None
    system_info: Any = None

    @property
    def is_connected(self) -> bool:
        return self.status == STATUS_CONNECTED

    @property
    def current_session(self) -> Session | None:
        """The open session, if any. At most one exists at a time."""
        if self.sessions and self.sessions[-1].is_open:
            return self.sessions[-1]
        return None

    @property
    def closed_sessions(self) -> list[Session]:
        return [s for s in self.sessions if s.duration is not None]

    def touch(self, now_ms: int, *, heartbeat: bool = False) -> None:
        """Refresh activity timestamps without ever moving them backwards."""
        self.last_active = max(self.last_active, now_ms)
        if heartbeat:
            self.last_heartbeat = max(self.last_heartbeat, now_ms)

    def remember_ip(self, ip: str) -> None:
        if ip not in self.ip_history:
            self.ip_history.append(ip)
        self.ip_address = ip

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "firstSeen": self.first_seen,
            "lastActive": self.last_active,
            "lastHeartbeat": self.last_heartbeat,
            "status": self.status,
            "userAgent": self.user_agent,
            "ipAddress": self.ip_address,
            "ipHistory": list(self.ip_history),
            "userId": self.user_id,
            "connectionCount": self.connection_count,
            "disconnectionCount": self.disconnection_count,
            "sessions": [s.to_dict() for s in self.sessions],
            "avgSessionDuration": self.avg_session_duration,
            "healthScore": self.health_score,
            "qualityIssues": list(self.quality_issues),
            "lastDisconnect": self.last_disconnect,
            "systemInfo": self.system_info,
        }

    @classmethod
    def from_dict(cls, instance_id: str, data: dict) -> Instance:
        first_seen = data.get("firstSeen", 0)
        last_active = data.get("lastActive", first_seen)
        status = data.get("status", STATUS_DISCONNECTED)
        sessions = _repair_sessions(
            [Session.from_dict(s) for s in data.get("sessions", [])],
            data.get("currentSession"),
            connected=status == STATUS_CONNECTED,
            last_active=last_active,
        )
        return cls(
            id=data.get("id", instance_id),
            first_seen=first_seen,
            last_active=last_active,
            last_heartbeat=data.get("lastHeartbeat", last_active),
            status=status,
            user_agent=data.get("userAgent", "Unknown"),
            ip_address=data.get("ipAddress", "unknown"),
            ip_history=list(data.get("ipHistory", [])),
            user_id=data.get("userId"),
            connection_count=data.get("connectionCount", 0),
            disconnection_count=data.get("disconnectionCount", 0),
            sessions=sessions,
            avg_session_duration=data.get("avgSessionDuration", 0.0),
            health_score=data.get("healthScore", 100),
            quality_issues=list(data.get("qualityIssues", [])),
            last_disconnect=data.get("lastDisconnect"),
            system_info=data.get("systemInfo"),
        )


@dataclass
class User:
    """One end-user identity, seen through one or more instances."""
    id: str
    first_seen: int
    last_active: int
    instances: list[str] = field(default_factory=list)
    total_messages: int = 0
    total_reactions: int = 0

    def link_instance(self, instance_id: str) -> None:
        if instance_id not in self.instances:
            self.instances.append(instance_id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "firstSeen": self.first_seen,
            "lastActive": self.last_active,
            "instances": list(self.instances),
            "totalMessages": self.total_messages,
            "totalReactions": self.total_reactions,
        }

    @classmethod
    def from_dict(cls, user_id: str, data: dict) -> User:
        first_seen = data.get("firstSeen", 0)
        return cls(
            id=data.get("id", user_id),
            first_seen=first_seen,
            last_active=data.get("lastActive", first_seen),
            instances=list(data.get("instances", [])),
            total_messages=data.get("totalMessages", 0),
            total_reactions=data.get("totalReactions", 0),
        )


@dataclass
class SessionMetrics:
    avg_duration: float = 0.0
    min_duration: int = 0
    max_duration: int = 0
    failed_connections: int = 0

    def to_dict(self) -> dict:
        return {
            "avgDuration": self.avg_duration,
            "minDuration": self.min_duration,
            "maxDuration": self.max_duration,
            "failedConnections": self.failed_connections,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SessionMetrics:
        return cls(
            avg_duration=data.get("avgDuration", 0.0),
            min_duration=data.get("minDuration", 0),
            max_duration=data.get("maxDuration", 0),
            failed_connections=data.get("failedConnections", 0),
        )


@dataclass
class QualityMetrics:
    stability_score: float = 100.0
    health_score: int = 100
    connection_quality: float = 100.0

    def to_dict(self) -> dict:
        return {
            "stabilityScore": self.stability_score,
            "healthScore": self.health_score,
            "connectionQuality": self.connection_quality,
        }

    @classmethod
    def from_dict(cls, data: dict) -> QualityMetrics:
        return cls(
            stability_score=data.get("stabilityScore", 100.0),
            health_score=data.get("healthScore", 100),
            connection_quality=data.get("connectionQuality", 100.0),
        )


# Breakdown maps: category key -> occurrence count.
BREAKDOWN_FIELDS = {
    "daily_active": "dailyActive",
    "daily_disconnections": "dailyDisconnections",
    "user_agents": "userAgents",
    "message_types": "messageTypes",
    "group_events": "groupEvents",
    "status_updates": "statusUpdates",
    "reactions": "reactions",
    "errors": "errors",
    "disconnect_reasons": "disconnectReasons",
}

_COUNTER_FIELDS = {
    "total_connections": "totalConnections",
    "current_connections": "currentConnections",
    "peak_connections": "peakConnections",
    "disconnections": "disconnections",
    "reconnections": "reconnections",
    "total_messages": "totalMessages",
    "heartbeats": "heartbeats",
}


@dataclass
class Statistics:
    """Dataset-wide counters, ratchets, breakdowns and derived metrics."""
    total_connections: int = 0
    current_connections: int = 0
    peak_connections: int = 0
    disconnections: int = 0
    reconnections: int = 0
    total_messages: int = 0
    heartbeats: int = 0

    daily_active: dict[str, int] = field(default_factory=dict)
    daily_disconnections: dict[str, int] = field(default_factory=dict)
    user_agents: dict[str, int] = field(default_factory=dict)
    message_types: dict[str, int] = field(default_factory=dict)
    group_events: dict[str, int] = field(default_factory=dict)
    status_updates: dict[str, int] = field(default_factory=dict)
    reactions: dict[str, int] = field(default_factory=dict)
    errors: dict[str, int] = field(default_factory=dict)
    disconnect_reasons: dict[str, int] = field(default_factory=dict)
    system_info: dict[str, dict] = field(default_factory=dict)

    connection_events: list[dict] = field(default_factory=list)
    session_metrics: SessionMetrics = field(default_factory=SessionMetrics)
    quality_metrics: QualityMetrics = field(default_factory=QualityMetrics)

    def bump(self, breakdown: str, key: str, amount: int = 1) -> None:
        """Increment ``key`` in the named breakdown map."""
        counts: dict[str, int] = getattr(self, breakdown)
        counts[key] = counts.get(key, 0) + amount

    def record_event(self, entry: dict, limit: int) -> None:
        self.connection_events.append(entry)
        if limit > 0 and len(self.connection_events) > limit:
            del self.connection_events[: len(self.connection_events) - limit]

    def to_dict(self) -> dict:
        data: dict[str, Any] = {key: getattr(self, attr) for attr, key in _COUNTER_FIELDS.items()}
        for attr, key in BREAKDOWN_FIELDS.items():
            data[key] = dict(getattr(self, attr))
        data["systemInfo"] = dict(self.system_info)
        data["connectionEvents"] = list(self.connection_events)
        data["sessionMetrics"] = self.session_metrics.to_dict()
        data["qualityMetrics"] = self.quality_metrics.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Statistics:
        stats = cls()
        for attr, key in _COUNTER_FIELDS.items():
            setattr(stats, attr, data.get(key, 0))
        for attr, key in BREAKDOWN_FIELDS.items():
            setattr(stats, attr, dict(data.get(key, {})))
        stats.system_info = dict(data.get("systemInfo", {}))
        stats.connection_events = list(data.get("connectionEvents", []))
        if "disconnectReasons" not in data:
            # Older documents only kept reasons on the event list.
            for entry in stats.connection_events:
                if isinstance(entry, dict) and entry.get("type") == "disconnection":
                    stats.bump("disconnect_reasons", str(entry.get("reason") or "unknown"))
        stats.session_metrics = SessionMetrics.from_dict(data.get("sessionMetrics", {}))
        stats.quality_metrics = QualityMetrics.from_dict(data.get("qualityMetrics", {}))
        return stats


@dataclass
class DatasetSettings:
    version: str = SCHEMA_VERSION
    created_at: str = ""
    last_maintenance: str | None = None

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "createdAt": self.created_at,
            "lastMaintenance": self.last_maintenance,
        }

    @classmethod
    def from_dict(cls, data: dict) -> DatasetSettings:
        return cls(
            version=data.get("version", SCHEMA_VERSION),
            created_at=data.get("createdAt", ""),
            last_maintenance=data.get("lastMaintenance"),
        )


@dataclass
class Dataset:
    """The whole aggregate. The unit of consistency for reads and writes."""
    instances: dict[str, Instance] = field(default_factory=dict)
    users: dict[str, User] = field(default_factory=dict)
    statistics: Statistics = field(default_factory=Statistics)
    settings: DatasetSettings = field(default_factory=DatasetSettings)

    @classmethod
    def new(cls, now_ms: int) -> Dataset:
        return cls(settings=DatasetSettings(created_at=iso_from_ms(now_ms)))

    def get_instance(self, instance_id: str) -> Instance | None:
        return self.instances.get(instance_id)

    def get_user(self, user_id: str) -> User | None:
        return self.users.get(user_id)

    def ensure_user(self, user_id: str, now_ms: int) -> User:
        """Return the user, creating it on first reference."""
        user = self.users.get(user_id)
        if user is None:
            user = User(id=user_id, first_seen=now_ms, last_active=now_ms)
            self.users[user_id] = user
        return user

    def to_dict(self) -> dict:
        return {
            "instances": {iid: inst.to_dict() for iid, inst in self.instances.items()},
            "users": {uid: user.to_dict() for uid, user in self.users.items()},
            "statistics": self.statistics.to_dict(),
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Dataset:
        return cls(
            instances={
                iid: Instance.from_dict(iid, raw)
                for iid, raw in (data.get("instances") or {}).items()
            },
            users={
                uid: User.from_dict(uid, raw)
                for uid, raw in (data.get("users") or {}).items()
            },
            statistics=Statistics.from_dict(data.get("statistics") or {}),
            settings=DatasetSettings.from_dict(data.get("settings") or {}),
        )


# ---------------------------------------------------------------------------
# Inbound events (validated at the HTTP boundary)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConnectEvent:
    user_id: str | None
    user_agent: str = "Unknown"
    instance_id: str | None = None
    ip_address: str = "unknown"
    location: Any = None


@dataclass(frozen=True)
class DisconnectEvent:
    instance_id: str
    reason: str = "unknown"


@dataclass(frozen=True)
class HeartbeatEvent:
    instance_id: str


@dataclass(frozen=True)
class TrackEvent:
    instance_id: str
    user_id: str
    event_type: str = "message"
    payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class SystemInfoEvent:
    instance_id: str
    payload: Any = None


Event = Union[ConnectEvent, DisconnectEvent, HeartbeatEvent, TrackEvent, SystemInfoEvent]


@dataclass(frozen=True)
class ConnectResult:
    instance_id: str
    is_reconnection: bool
    health_score: int
    quality_issues: tuple[str, ...] = ()
