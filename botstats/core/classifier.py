"""Liveness and health classification.

Pure functions over an Instance / Dataset snapshot plus "now" (epoch ms).
Used at write time to refresh cached fields and at read time to classify
instances for reporting. Every ratio over an empty set yields the neutral
value (100 for scores, 0 for durations) rather than raising.
"""

from __future__ import annotations

from dataclasses import dataclass

from botstats.core.models import Dataset, Instance, SessionMetrics, Statistics, User

MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS

# Quality issue tags.
FREQUENT_RECONNECTIONS = "frequent_reconnections"
SHORT_SESSIONS = "short_sessions"
IP_INSTABILITY = "ip_instability"
STABLE = "stable"

# Thresholds.
FREQUENT_RECONNECT_COUNT = 5
FREQUENT_RECONNECT_PERIOD_MS = HOUR_MS
SHORT_SESSION_MS = 30_000
HEALTHY_SESSION_MS = 60_000
DISCONNECTION_RATE_LIMIT = 0.3
NEEDS_ATTENTION_BELOW = 70

_ISSUE_PENALTIES = {
    FREQUENT_RECONNECTIONS: 30,
    SHORT_SESSIONS: 20,
    IP_INSTABILITY: 15,
}
_DISCONNECTION_RATE_PENALTY = 20
_SHORT_AVERAGE_MAX_PENALTY = 15

_RECOMMENDATIONS = {
    FREQUENT_RECONNECTIONS: "Check network stability and bot reconnection logic",
    SHORT_SESSIONS: "Investigate why sessions are ending prematurely",
    IP_INSTABILITY: "Bot may be changing networks frequently - consider static IP",
}
NEEDS_ATTENTION = "This instance needs attention - review connection logs"
NO_ISSUES = "No critical issues detected"

NORMAL_DISCONNECT_REASON = "normal"


@dataclass(frozen=True)
class LivenessWindows:
    """Thresholds (ms) after which a silent instance stops counting as live."""
    concurrent_ms: int = 30 * MINUTE_MS
    heartbeat_ms: int = 0  # 0 disables the heartbeat-aware check
    disconnected_ms: int = 12 * HOUR_MS

    @classmethod
    def from_config(cls, concurrent_minutes: float, heartbeat_minutes: float,
                    disconnected_hours: float) -> LivenessWindows:
        return cls(
            concurrent_ms=int(concurrent_minutes * MINUTE_MS),
            heartbeat_ms=int(heartbeat_minutes * MINUTE_MS),
            disconnected_ms=int(disconnected_hours * HOUR_MS),
        )


# ---------------------------------------------------------------------------
# Liveness
# ---------------------------------------------------------------------------

def is_active(instance: Instance, now_ms: int, windows: LivenessWindows) -> bool:
    """Connected and heard from within the concurrent window.

    ``status`` alone is not enough: a bot that vanished without sending a
    disconnect still reads ``connected`` until the window runs out.
    """
    if not instance.is_connected:
        return False
    if now_ms - instance.last_active >= windows.concurrent_ms:
        return False
    if windows.heartbeat_ms > 0 and now_ms - instance.last_heartbeat >= windows.heartbeat_ms:
        return False
    return True


def is_user_active(user: User, now_ms: int, windows: LivenessWindows) -> bool:
    return now_ms - user.last_active < windows.concurrent_ms


def is_recently_disconnected(instance: Instance, now_ms: int, windows: LivenessWindows) -> bool:
    return now_ms - instance.last_active < windows.disconnected_ms


def count_active(dataset: Dataset, now_ms: int, windows: LivenessWindows) -> int:
    return sum(1 for inst in dataset.instances.values() if is_active(inst, now_ms, windows))


# ---------------------------------------------------------------------------
# Per-instance health
# ---------------------------------------------------------------------------

def average_session_duration(instance: Instance) -> float:
    durations = [s.duration for s in instance.closed_sessions]
    if not durations:
        return 0.0
    return sum(durations) / len(durations)


def quality_issues(instance: Instance, now_ms: int) -> list[str]:
    issues = []
    if (instance.connection_count > FREQUENT_RECONNECT_COUNT
            and now_ms - instance.first_seen < FREQUENT_RECONNECT_PERIOD_MS):
        issues.append(FREQUENT_RECONNECTIONS)
    # An instance that never finished a session has no average to judge.
    if instance.closed_sessions and instance.avg_session_duration < SHORT_SESSION_MS:
        issues.append(SHORT_SESSIONS)
    if len(instance.ip_history) > 1:
        issues.append(IP_INSTABILITY)
    return issues or [STABLE]


def health_score(instance: Instance) -> int:
    """0-100 composite score; expects ``quality_issues`` to be current."""
    score = 100.0
    for tag, penalty in _ISSUE_PENALTIES.items():
        if tag in instance.quality_issues:
            score -= penalty

    if instance.connection_count > 0:
        rate = instance.disconnection_count / instance.connection_count
        if rate > DISCONNECTION_RATE_LIMIT:
            score -= _DISCONNECTION_RATE_PENALTY

    if instance.closed_sessions and instance.avg_session_duration < HEALTHY_SESSION_MS:
        shortfall = 1 - instance.avg_session_duration / HEALTHY_SESSION_MS
        score -= shortfall * _SHORT_AVERAGE_MAX_PENALTY

    return round(min(100.0, max(0.0, score)))


def recommendations(instance: Instance) -> list[str]:
    recs = [_RECOMMENDATIONS[tag] for tag in _RECOMMENDATIONS if tag in instance.quality_issues]
    if instance.health_score < NEEDS_ATTENTION_BELOW:
        recs.append(NEEDS_ATTENTION)
    return recs or [NO_ISSUES]


def refresh_instance(instance: Instance, now_ms: int) -> None:
    """Recompute the cached derived fields of one instance, in dependency order."""
    instance.avg_session_duration = average_session_duration(instance)
    instance.quality_issues = quality_issues(instance, now_ms)
    instance.health_score = health_score(instance)


# ---------------------------------------------------------------------------
# Dataset-level metrics
# ---------------------------------------------------------------------------

def failed_connections(stats: Statistics) -> int:
    """Disconnections that ended for any reason other than a normal shutdown."""
    return sum(
        count for reason, count in stats.disconnect_reasons.items()
        if reason != NORMAL_DISCONNECT_REASON
    )


def _success_ratio_score(failed: int, total: int) -> float:
    if total <= 0:
        return 100.0
    return min(100.0, max(0.0, 100.0 * (1 - failed / total)))


def stability_score(stats: Statistics) -> float:
    return _success_ratio_score(failed_connections(stats), stats.total_connections)


def connection_quality(stats: Statistics) -> float:
    # Every first connect and every reconnect counts as a connection event.
    connection_events = stats.total_connections + stats.reconnections
    return _success_ratio_score(failed_connections(stats), connection_events)


def dataset_health_score(dataset: Dataset) -> int:
    scores = [inst.health_score for inst in dataset.instances.values()]
    if not scores:
        return 100
    return round(sum(scores) / len(scores))


def session_metrics(dataset: Dataset) -> SessionMetrics:
    durations = [
        s.duration
        for inst in dataset.instances.values()
        for s in inst.closed_sessions
    ]
    metrics = SessionMetrics(failed_connections=failed_connections(dataset.statistics))
    if durations:
        metrics.avg_duration = sum(durations) / len(durations)
        metrics.min_duration = min(durations)
        metrics.max_duration = max(durations)
    return metrics


def refresh_dataset_metrics(dataset: Dataset) -> None:
    """Recompute session and quality metrics, trusting per-instance caches."""
    stats = dataset.statistics
    stats.session_metrics = session_metrics(dataset)
    stats.quality_metrics.stability_score = stability_score(stats)
    stats.quality_metrics.health_score = dataset_health_score(dataset)
    stats.quality_metrics.connection_quality = connection_quality(stats)


def refresh_connection_stats(dataset: Dataset, now_ms: int, windows: LivenessWindows) -> None:
    """Recompute ``currentConnections`` from scratch and ratchet the peak."""
    stats = dataset.statistics
    stats.current_connections = count_active(dataset, now_ms, windows)
    if stats.current_connections > stats.peak_connections:
        stats.peak_connections = stats.current_connections
