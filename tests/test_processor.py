"""Tests for the serialized event processor and its storage degradation."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from botstats.core.classifier import HOUR_MS
from botstats.core.models import (
    ConnectEvent,
    DisconnectEvent,
    HeartbeatEvent,
    Instance,
    Session,
    SystemInfoEvent,
    TrackEvent,
)


@pytest.mark.asyncio
async def test_first_connect_mints_an_id(processor, store):
    result = await processor.connect(ConnectEvent(user_id="u1"))

    assert result.instance_id
    assert result.is_reconnection is False

    dataset = await store.load()
    assert list(dataset.instances) == [result.instance_id]
    stats = dataset.statistics
    assert stats.total_connections == 1
    assert stats.current_connections == 1
    assert stats.peak_connections == 1


@pytest.mark.asyncio
async def test_reconnect_without_id_reuses_registry_id(processor, store, clock):
    first = await processor.connect(ConnectEvent(user_id="u1"))
    clock.advance(minutes=5)
    await processor.disconnect(DisconnectEvent(first.instance_id, "normal"))
    clock.advance(minutes=1)

    second = await processor.connect(ConnectEvent(user_id="u1"))

    assert second.instance_id == first.instance_id
    assert second.is_reconnection is True
    dataset = await store.load()
    inst = dataset.instances[first.instance_id]
    assert dataset.statistics.reconnections == 1
    assert inst.connection_count == 2
    assert [s.duration for s in inst.sessions] == [5 * 60_000, None]


@pytest.mark.asyncio
async def test_claimed_instance_id_is_not_hijacked(processor):
    alice = await processor.connect(ConnectEvent(user_id="alice", instance_id="shared"))
    bob = await processor.connect(ConnectEvent(user_id="bob", instance_id="shared"))

    assert alice.instance_id == "shared"
    assert bob.instance_id != "shared"
    assert bob.is_reconnection is False


@pytest.mark.asyncio
async def test_remembered_id_taken_by_another_live_user_is_not_reused(processor, store, clock):
    await processor.connect(ConnectEvent(user_id="bob", instance_id="shared"))
    clock.advance(minutes=1)
    await processor.disconnect(DisconnectEvent("shared", "normal"))
    clock.advance(minutes=1)
    alice = await processor.connect(ConnectEvent(user_id="alice", instance_id="shared"))
    assert alice.instance_id == "shared"
    clock.advance(minutes=1)

    bob = await processor.connect(ConnectEvent(user_id="bob"))

    assert bob.instance_id != "shared"
    assert bob.is_reconnection is False
    dataset = await store.load()
    assert dataset.instances["shared"].user_id == "alice"
    assert dataset.instances[bob.instance_id].user_id == "bob"


@pytest.mark.asyncio
async def test_concurrent_events_lose_no_updates(processor, store):
    await asyncio.gather(*[
        processor.connect(ConnectEvent(user_id=f"user-{n}", instance_id=f"bot-{n}"))
        for n in range(20)
    ])
    await asyncio.gather(*[
        processor.track(TrackEvent(f"bot-{n % 20}", f"user-{n % 20}", "message"))
        for n in range(40)
    ])

    dataset = await store.load()
    assert len(dataset.instances) == 20
    assert dataset.statistics.total_connections == 20
    assert dataset.statistics.total_messages == 40
    assert dataset.statistics.peak_connections == 20


@pytest.mark.asyncio
async def test_unknown_instance_is_a_logged_no_op(processor, store, config):
    await processor.connect(ConnectEvent(user_id="u1", instance_id="i1"))
    before = store.path.read_bytes()

    assert await processor.disconnect(DisconnectEvent("ghost"), "10.1.1.1") is False
    assert await processor.heartbeat(HeartbeatEvent("ghost")) is False
    assert await processor.system_info(SystemInfoEvent("ghost", {"os": "linux"})) is False

    assert store.path.read_bytes() == before
    from botstats.main import get_process_stats
    assert get_process_stats().unknown_references == 3
    log_text = Path(config.logging.diagnostics_file).read_text()
    assert "[10.1.1.1] disconnect for unknown instance ghost" in log_text


@pytest.mark.asyncio
async def test_corrupt_dataset_degrades_to_empty(processor, store):
    store.path.parent.mkdir(parents=True, exist_ok=True)
    store.path.write_text("definitely not json")

    result = await processor.connect(ConnectEvent(user_id="u1", instance_id="i1"))

    assert result.instance_id == "i1"
    from botstats.main import get_process_stats
    assert get_process_stats().storage_errors == 1
    # The write that followed replaced the unreadable document.
    dataset = await store.load()
    assert list(dataset.instances) == ["i1"]


@pytest.mark.asyncio
async def test_save_failure_is_swallowed(processor, monkeypatch):
    async def broken_save(dataset):
        raise OSError("disk full")

    monkeypatch.setattr(processor._store, "save", broken_save)

    result = await processor.connect(ConnectEvent(user_id="u1", instance_id="i1"))
    assert result.instance_id == "i1"
    from botstats.main import get_process_stats
    assert get_process_stats().storage_errors >= 1


@pytest.mark.asyncio
async def test_stats_read_ratchets_stale_peak(processor, store, clock):
    dataset = await store.load()
    now = clock()
    dataset.instances["i1"] = Instance(
        id="i1", first_seen=now, last_active=now, last_heartbeat=now,
        connection_count=1, sessions=[Session(start=now)],
    )
    await store.save(dataset)

    view = await processor.stats_view()

    assert view["activeInstances"] == 1
    assert (await store.load()).statistics.peak_connections == 1


@pytest.mark.asyncio
async def test_silent_instance_drops_out_of_stats(processor, clock):
    await processor.connect(ConnectEvent(user_id="u1"))

    clock.advance(minutes=10)
    assert (await processor.stats_view())["activeInstances"] == 1

    clock.advance(minutes=30)
    view = await processor.stats_view()
    assert view["activeInstances"] == 0
    assert view["inactiveInstances"] == 1
    assert view["statistics"]["peakConnections"] == 1


@pytest.mark.asyncio
async def test_maintenance_evicts_stale_and_backs_up(processor, store, clock, config):
    await processor.connect(ConnectEvent(user_id="u1", instance_id="old"))
    clock.advance(hours=30)
    await processor.connect(ConnectEvent(user_id="u2", instance_id="fresh"))

    evicted = await processor.run_maintenance(stale_threshold_ms=24 * HOUR_MS, retention_days=7)

    assert evicted == ["old"]
    dataset = await store.load()
    assert list(dataset.instances) == ["fresh"]
    assert dataset.settings.last_maintenance is not None
    backups = list(store.path.parent.joinpath("backups").glob("db-*.json"))
    assert len(backups) == 1
