"""Read-model projections for the dashboard and monitoring endpoints.

Every function here is read-only: it classifies the snapshot against
``now_ms`` and returns JSON-serializable dicts. Cached ``status`` and
health fields are never trusted for liveness; instances are reclassified
on every call.
"""

from __future__ import annotations

import copy

from botstats.core import classifier
from botstats.core.classifier import LivenessWindows
from botstats.core.models import Dataset, Instance, iso_from_ms

ERROR_FEED_LIMIT = 50


def stats_view(dataset: Dataset, now_ms: int, windows: LivenessWindows) -> dict:
    active = classifier.count_active(dataset, now_ms, windows)
    active_users = sum(
        1 for user in dataset.users.values()
        if classifier.is_user_active(user, now_ms, windows)
    )
    statistics = dataset.statistics.to_dict()
    # The stored figure is from the last write; report the live one.
    statistics["currentConnections"] = active
    statistics["peakConnections"] = max(dataset.statistics.peak_connections, active)
    return {
        "totalInstances": len(dataset.instances),
        "activeInstances": active,
        "inactiveInstances": len(dataset.instances) - active,
        "totalUsers": len(dataset.users),
        "activeUsers": active_users,
        "statistics": statistics,
        "lastUpdate": iso_from_ms(now_ms),
    }


def _seconds_since(timestamp_ms: int, now_ms: int) -> float:
    return round(max(0, now_ms - timestamp_ms) / 1000, 1)


def instances_view(dataset: Dataset, now_ms: int, windows: LivenessWindows) -> dict:
    ordered = sorted(dataset.instances.values(), key=lambda i: i.last_active, reverse=True)
    entries = []
    for inst in ordered:
        entry = inst.to_dict()
        entry["isActive"] = classifier.is_active(inst, now_ms, windows)
        entry["inactiveForSeconds"] = _seconds_since(inst.last_active, now_ms)
        entries.append(entry)
    active = sum(1 for e in entries if e["isActive"])
    return {
        "instances": entries,
        "total": len(entries),
        "active": active,
        "inactive": len(entries) - active,
    }


def users_view(dataset: Dataset, now_ms: int, windows: LivenessWindows) -> dict:
    ordered = sorted(dataset.users.values(), key=lambda u: u.last_active, reverse=True)
    entries = []
    for user in ordered:
        entry = user.to_dict()
        entry["isActive"] = classifier.is_user_active(user, now_ms, windows)
        entry["inactiveForSeconds"] = _seconds_since(user.last_active, now_ms)
        entries.append(entry)
    return {
        "users": entries,
        "total": len(entries),
        "active": sum(1 for e in entries if e["isActive"]),
    }


def _reclassified(instance: Instance, now_ms: int) -> Instance:
    """A copy of ``instance`` with its derived fields recomputed for ``now_ms``."""
    fresh = copy.deepcopy(instance)
    classifier.refresh_instance(fresh, now_ms)
    return fresh


def instance_health_view(dataset: Dataset, instance_id: str, now_ms: int,
                         windows: LivenessWindows) -> dict | None:
    instance = dataset.get_instance(instance_id)
    if instance is None:
        return None
    fresh = _reclassified(instance, now_ms)
    last_session = fresh.sessions[-1].to_dict() if fresh.sessions else None
    return {
        "instanceId": instance_id,
        "status": fresh.status,
        "isActive": classifier.is_active(fresh, now_ms, windows),
        "healthScore": fresh.health_score,
        "qualityIssues": fresh.quality_issues,
        "avgSessionDuration": fresh.avg_session_duration,
        "connectionCount": fresh.connection_count,
        "disconnectionCount": fresh.disconnection_count,
        "lastSession": last_session,
        "lastDisconnect": fresh.last_disconnect,
        "recommendations": classifier.recommendations(fresh),
    }


def health_summary_view(dataset: Dataset, now_ms: int, windows: LivenessWindows) -> dict:
    stats = dataset.statistics
    healthy = []
    degraded = []
    recent_disconnects = []
    for inst in dataset.instances.values():
        fresh = _reclassified(inst, now_ms)
        if fresh.health_score >= classifier.NEEDS_ATTENTION_BELOW:
            healthy.append(inst.id)
        else:
            degraded.append({
                "instanceId": inst.id,
                "healthScore": fresh.health_score,
                "qualityIssues": fresh.quality_issues,
                "recommendations": classifier.recommendations(fresh),
            })
        if not inst.is_connected and classifier.is_recently_disconnected(inst, now_ms, windows):
            recent_disconnects.append({
                "instanceId": inst.id,
                "timestamp": inst.last_disconnect["timestamp"] if inst.last_disconnect else inst.last_active,
                "reason": inst.last_disconnect["reason"] if inst.last_disconnect else None,
            })

    degraded.sort(key=lambda d: d["healthScore"])
    recent_disconnects.sort(key=lambda d: d["timestamp"], reverse=True)
    active = classifier.count_active(dataset, now_ms, windows)

    return {
        "qualityMetrics": stats.quality_metrics.to_dict(),
        "sessionMetrics": stats.session_metrics.to_dict(),
        "instances": {
            "total": len(dataset.instances),
            "healthy": len(healthy),
            "degraded": len(degraded),
        },
        "degradedInstances": degraded,
        "recentDisconnects": recent_disconnects,
        "connections": {
            "current": active,
            "peak": max(stats.peak_connections, active),
            "total": stats.total_connections,
            "disconnections": stats.disconnections,
            "reconnections": stats.reconnections,
            "heartbeats": stats.heartbeats,
        },
        "lastUpdate": iso_from_ms(now_ms),
    }


def error_feed_view(dataset: Dataset, now_ms: int, limit: int = ERROR_FEED_LIMIT) -> dict:
    """Synthetic error feed: abnormal disconnects newest first, then error counts."""
    disconnects = [
        {
            "type": "disconnect",
            "instanceId": inst.id,
            "timestamp": inst.last_disconnect["timestamp"],
            "message": inst.last_disconnect["reason"],
        }
        for inst in dataset.instances.values()
        if inst.last_disconnect
        and inst.last_disconnect.get("reason") != classifier.NORMAL_DISCONNECT_REASON
    ]
    disconnects.sort(key=lambda e: e["timestamp"], reverse=True)

    error_types = [
        {"type": "error", "errorType": error_type, "count": count}
        for error_type, count in sorted(
            dataset.statistics.errors.items(), key=lambda kv: kv[1], reverse=True,
        )
    ]

    feed = (disconnects + error_types)[:limit]
    return {"errors": feed, "total": len(feed), "lastUpdate": iso_from_ms(now_ms)}
