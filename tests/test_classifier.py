"""Tests for liveness and health classification."""

from __future__ import annotations

from botstats.core import classifier
from botstats.core.classifier import LivenessWindows
from botstats.core.models import (
    STATUS_DISCONNECTED,
    Dataset,
    Instance,
    Session,
    Statistics,
    User,
)

NOW = 1_700_000_000_000
MINUTE = 60_000


def make_instance(**overrides) -> Instance:
    fields = dict(
        id="bot-1",
        first_seen=NOW - 2 * 3_600_000,
        last_active=NOW,
        last_heartbeat=NOW,
        connection_count=1,
    )
    fields.update(overrides)
    return Instance(**fields)


def closed(duration_ms: int, start: int = NOW - 3_600_000) -> Session:
    return Session(start=start, end=start + duration_ms, duration=duration_ms)


# ---------------------------------------------------------------------------
# Liveness
# ---------------------------------------------------------------------------

def test_active_within_window():
    windows = LivenessWindows()
    inst = make_instance(last_active=NOW - 10 * MINUTE)
    assert classifier.is_active(inst, NOW, windows)


def test_inactive_after_window_even_if_connected():
    windows = LivenessWindows()
    inst = make_instance(last_active=NOW - 40 * MINUTE)
    assert inst.is_connected
    assert not classifier.is_active(inst, NOW, windows)


def test_window_boundary_is_exclusive():
    windows = LivenessWindows(concurrent_ms=30 * MINUTE)
    inst = make_instance(last_active=NOW - 30 * MINUTE)
    assert not classifier.is_active(inst, NOW, windows)


def test_disconnected_never_active():
    inst = make_instance(status=STATUS_DISCONNECTED)
    assert not classifier.is_active(inst, NOW, LivenessWindows())


def test_heartbeat_aware_window():
    windows = LivenessWindows(heartbeat_ms=5 * MINUTE)
    inst = make_instance(last_active=NOW - MINUTE, last_heartbeat=NOW - 6 * MINUTE)
    assert not classifier.is_active(inst, NOW, windows)

    inst.last_heartbeat = NOW - 4 * MINUTE
    assert classifier.is_active(inst, NOW, windows)


def test_user_and_recent_disconnect_windows():
    windows = LivenessWindows()
    user = User(id="u1", first_seen=NOW, last_active=NOW - 29 * MINUTE)
    assert classifier.is_user_active(user, NOW, windows)

    inst = make_instance(status=STATUS_DISCONNECTED, last_active=NOW - 11 * 60 * MINUTE)
    assert classifier.is_recently_disconnected(inst, NOW, windows)
    inst.last_active = NOW - 13 * 60 * MINUTE
    assert not classifier.is_recently_disconnected(inst, NOW, windows)


# ---------------------------------------------------------------------------
# Per-instance health
# ---------------------------------------------------------------------------

def test_fresh_instance_is_stable_and_healthy():
    inst = make_instance()
    classifier.refresh_instance(inst, NOW)
    assert inst.quality_issues == ["stable"]
    assert inst.health_score == 100
    assert inst.avg_session_duration == 0.0
    assert classifier.recommendations(inst) == [classifier.NO_ISSUES]


def test_frequent_reconnections_only_in_first_hour():
    inst = make_instance(connection_count=6, first_seen=NOW - 30 * MINUTE)
    assert "frequent_reconnections" in classifier.quality_issues(inst, NOW)

    inst.connection_count = 5
    assert "frequent_reconnections" not in classifier.quality_issues(inst, NOW)

    inst.connection_count = 6
    inst.first_seen = NOW - 61 * MINUTE
    assert "frequent_reconnections" not in classifier.quality_issues(inst, NOW)


def test_short_sessions_need_a_closed_session():
    inst = make_instance(avg_session_duration=0.0)
    assert "short_sessions" not in classifier.quality_issues(inst, NOW)

    inst.sessions = [closed(10_000)]
    classifier.refresh_instance(inst, NOW)
    assert inst.avg_session_duration == 10_000
    assert "short_sessions" in inst.quality_issues


def test_ip_instability():
    inst = make_instance(ip_history=["10.0.0.1", "10.0.0.2"])
    assert classifier.quality_issues(inst, NOW) == ["ip_instability"]


def test_health_score_penalties():
    # ip_instability (-15), disconnection rate 1/2 > 0.3 (-20),
    # average 45s is 15s short of a minute (-3.75).
    inst = make_instance(
        ip_history=["a", "b"],
        connection_count=2,
        disconnection_count=1,
        sessions=[closed(45_000)],
    )
    classifier.refresh_instance(inst, NOW)
    assert inst.quality_issues == ["ip_instability"]
    assert inst.health_score == round(100 - 15 - 20 - 3.75)


def test_health_score_clamped_at_zero():
    inst = make_instance(
        first_seen=NOW - MINUTE,
        connection_count=6,
        disconnection_count=6,
        ip_history=["a", "b"],
        sessions=[closed(0) for _ in range(6)],
    )
    classifier.refresh_instance(inst, NOW)
    assert inst.health_score == 0
    recs = classifier.recommendations(inst)
    assert classifier.NEEDS_ATTENTION in recs
    assert len(recs) == 4


def test_health_score_ignores_zero_connections():
    inst = make_instance(connection_count=0, disconnection_count=0)
    classifier.refresh_instance(inst, NOW)
    assert inst.health_score == 100


# ---------------------------------------------------------------------------
# Dataset metrics
# ---------------------------------------------------------------------------

def test_empty_dataset_metrics_are_neutral():
    dataset = Dataset.new(NOW)
    classifier.refresh_dataset_metrics(dataset)
    quality = dataset.statistics.quality_metrics
    assert quality.stability_score == 100.0
    assert quality.connection_quality == 100.0
    assert quality.health_score == 100
    metrics = dataset.statistics.session_metrics
    assert (metrics.avg_duration, metrics.min_duration, metrics.max_duration) == (0.0, 0, 0)


def test_stability_and_connection_quality():
    stats = Statistics(
        total_connections=4,
        reconnections=4,
        disconnect_reasons={"normal": 3, "timeout": 1},
    )
    assert classifier.failed_connections(stats) == 1
    assert classifier.stability_score(stats) == 75.0
    assert classifier.connection_quality(stats) == 87.5


def test_stability_never_negative():
    stats = Statistics(total_connections=1, disconnect_reasons={"timeout": 3})
    assert classifier.stability_score(stats) == 0.0


def test_session_metrics_over_all_instances():
    dataset = Dataset.new(NOW)
    dataset.instances["a"] = make_instance(id="a", sessions=[closed(10_000), closed(30_000)])
    dataset.instances["b"] = make_instance(id="b", sessions=[closed(50_000), Session(start=NOW)])
    dataset.statistics.disconnect_reasons = {"error": 2}

    metrics = classifier.session_metrics(dataset)
    assert metrics.avg_duration == 30_000
    assert metrics.min_duration == 10_000
    assert metrics.max_duration == 50_000
    assert metrics.failed_connections == 2


def test_dataset_health_is_mean_of_cached_scores():
    dataset = Dataset.new(NOW)
    dataset.instances["a"] = make_instance(id="a", health_score=100)
    dataset.instances["b"] = make_instance(id="b", health_score=45)
    assert classifier.dataset_health_score(dataset) == 72


def test_connection_stats_ratchet_peak():
    windows = LivenessWindows()
    dataset = Dataset.new(NOW)
    dataset.instances["a"] = make_instance(id="a")
    dataset.instances["b"] = make_instance(id="b")
    classifier.refresh_connection_stats(dataset, NOW, windows)
    assert dataset.statistics.current_connections == 2
    assert dataset.statistics.peak_connections == 2

    dataset.instances["b"].status = STATUS_DISCONNECTED
    classifier.refresh_connection_stats(dataset, NOW, windows)
    assert dataset.statistics.current_connections == 1
    assert dataset.statistics.peak_connections == 2
