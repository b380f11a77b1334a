"""Event processor: serialized read-modify-write over the dataset store.

This is the core business entry point. It depends on the DatasetStore,
IdentityRegistry and DiagnosticSink protocols, not concrete implementations.

Every mutating operation holds one asyncio.Lock across load → apply → save,
so concurrent requests in this process can no longer overwrite each
other's updates. Reads take no lock and may see a slightly stale snapshot.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

import structlog

from botstats.core import events, maintenance, projector
from botstats.core.models import (
    ConnectEvent,
    ConnectResult,
    Dataset,
    DisconnectEvent,
    HeartbeatEvent,
    SystemInfoEvent,
    TrackEvent,
)

if TYPE_CHECKING:
    from botstats.core.classifier import LivenessWindows
    from botstats.core.stats import ProcessStats
    from botstats.storage.base import DatasetStore, DiagnosticSink, IdentityRegistry

log = structlog.get_logger()

T = TypeVar("T")

SYSTEM_SOURCE = "SYSTEM"


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class EventProcessor:
    """Applies bot events to the persisted dataset and serves read views."""

    def __init__(
        self,
        store: DatasetStore,
        registry: IdentityRegistry,
        diagnostics: DiagnosticSink,
        stats: ProcessStats,
        windows: LivenessWindows,
        *,
        event_limit: int = events.DEFAULT_EVENT_LIMIT,
        clock: Callable[[], int] = wall_clock_ms,
    ) -> None:
        self._store = store
        self._registry = registry
        self._diagnostics = diagnostics
        self._stats = stats
        self._windows = windows
        self._event_limit = event_limit
        self._lock = asyncio.Lock()
        self.clock = clock

    @property
    def windows(self) -> LivenessWindows:
        return self._windows

    # ------------------------------------------------------------------
    # Storage with degradation
    # ------------------------------------------------------------------

    async def _load(self) -> Dataset:
        """Load the dataset; on failure log it and carry on with an empty one."""
        try:
            return await self._store.load()
        except (OSError, ValueError) as exc:
            log.error("dataset_load_failed", exc_info=True)
            self._stats.record_storage_error()
            await self._diagnostics.append(f"DB read error: {exc}", SYSTEM_SOURCE)
            return Dataset.new(self.clock())

    async def _save(self, dataset: Dataset) -> None:
        """Persist the dataset; failures are logged and swallowed."""
        try:
            await self._store.save(dataset)
        except (OSError, TypeError, ValueError) as exc:
            log.error("dataset_save_failed", exc_info=True)
            self._stats.record_storage_error()
            await self._diagnostics.append(f"DB write error: {exc}", SYSTEM_SOURCE)

    async def _mutate(self, apply: Callable[[Dataset, int], Awaitable[T]]) -> T:
        async with self._lock:
            dataset = await self._load()
            result = await apply(dataset, self.clock())
            await self._save(dataset)
            return result

    async def _unknown_instance(self, kind: str, instance_id: str, source_ip: str) -> None:
        self._stats.record_unknown_reference()
        log.info("unknown_instance", kind=kind, instance=instance_id)
        await self._diagnostics.append(f"{kind} for unknown instance {instance_id}", source_ip)

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    async def connect(self, event: ConnectEvent) -> ConnectResult:
        async def apply(dataset: Dataset, now_ms: int) -> ConnectResult:
            supplied = events.usable_supplied_id(dataset, event, now_ms, self._windows)
            instance_id = await self._registry.resolve_or_mint(
                event.user_id, supplied,
                reusable=lambda iid: events.is_claimable(
                    dataset, iid, event.user_id, now_ms, self._windows),
            )
            return events.apply_connect(dataset, event, instance_id, now_ms,
                                        self._windows, self._event_limit)

        result = await self._mutate(apply)
        self._stats.record_event("connect")
        log.info("instance_connected", instance=result.instance_id, user=event.user_id,
                 reconnection=result.is_reconnection, health=result.health_score)
        return result

    async def disconnect(self, event: DisconnectEvent, source_ip: str = SYSTEM_SOURCE) -> bool:
        async def apply(dataset: Dataset, now_ms: int) -> bool:
            return events.apply_disconnect(dataset, event, now_ms, self._windows,
                                           self._event_limit)

        applied = await self._mutate_known(apply)
        if not applied:
            await self._unknown_instance("disconnect", event.instance_id, source_ip)
            return False
        self._stats.record_event("disconnect")
        log.info("instance_disconnected", instance=event.instance_id, reason=event.reason)
        return True

    async def heartbeat(self, event: HeartbeatEvent, source_ip: str = SYSTEM_SOURCE) -> bool:
        async def apply(dataset: Dataset, now_ms: int) -> bool:
            return events.apply_heartbeat(dataset, event, now_ms, self._windows)

        applied = await self._mutate_known(apply)
        if not applied:
            await self._unknown_instance("heartbeat", event.instance_id, source_ip)
            return False
        self._stats.record_event("heartbeat")
        log.debug("heartbeat_received", instance=event.instance_id)
        return True

    async def track(self, event: TrackEvent) -> None:
        async def apply(dataset: Dataset, now_ms: int) -> None:
            events.apply_track(dataset, event, now_ms, self._windows)

        await self._mutate(apply)
        self._stats.record_event(f"track:{event.event_type}")
        log.debug("event_tracked", instance=event.instance_id, user=event.user_id,
                  event_type=event.event_type)

    async def system_info(self, event: SystemInfoEvent, source_ip: str = SYSTEM_SOURCE) -> bool:
        async def apply(dataset: Dataset, now_ms: int) -> bool:
            return events.apply_system_info(dataset, event, now_ms, self._windows)

        applied = await self._mutate_known(apply)
        if not applied:
            await self._unknown_instance("system_info", event.instance_id, source_ip)
            return False
        self._stats.record_event("system_info")
        return True

    async def _mutate_known(self, apply: Callable[[Dataset, int], Awaitable[bool]]) -> bool:
        """Like ``_mutate`` but skips the write when ``apply`` reports a no-op."""
        async with self._lock:
            dataset = await self._load()
            applied = await apply(dataset, self.clock())
            if applied:
                await self._save(dataset)
            return applied

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    async def stats_view(self) -> dict:
        dataset = await self._load()
        view = projector.stats_view(dataset, self.clock(), self._windows)
        if view["activeInstances"] > dataset.statistics.peak_connections:
            await self._ratchet_peak(view["activeInstances"])
        return view

    async def _ratchet_peak(self, observed: int) -> None:
        async with self._lock:
            dataset = await self._load()
            if observed > dataset.statistics.peak_connections:
                dataset.statistics.peak_connections = observed
                await self._save(dataset)
                log.info("peak_connections_raised", peak=observed)

    async def instances_view(self) -> dict:
        return projector.instances_view(await self._load(), self.clock(), self._windows)

    async def users_view(self) -> dict:
        return projector.users_view(await self._load(), self.clock(), self._windows)

    async def instance_health(self, instance_id: str) -> dict | None:
        return projector.instance_health_view(await self._load(), instance_id,
                                              self.clock(), self._windows)

    async def health_summary(self) -> dict:
        return projector.health_summary_view(await self._load(), self.clock(), self._windows)

    async def error_feed(self) -> dict:
        return projector.error_feed_view(await self._load(), self.clock())

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def run_maintenance(self, stale_threshold_ms: int, retention_days: int) -> list[str]:
        """Evict stale instances, then snapshot and prune backups."""
        async def apply(dataset: Dataset, now_ms: int) -> tuple[Dataset, list[str]]:
            return dataset, maintenance.sweep(dataset, now_ms, stale_threshold_ms, self._windows)

        dataset, evicted = await self._mutate(apply)
        self._stats.record_maintenance(len(evicted))
        log.info("maintenance_completed", evicted=len(evicted),
                 instances=len(dataset.instances))

        try:
            await self._store.snapshot_for_backup(dataset)
            await self._store.prune_old_backups(retention_days)
        except OSError as exc:
            log.error("backup_failed", exc_info=True)
            self._stats.record_storage_error()
            await self._diagnostics.append(f"Backup error: {exc}", SYSTEM_SOURCE)
        return evicted

    async def run_maintenance_loop(self, interval_seconds: float, stale_threshold_ms: int,
                                   retention_days: int) -> None:
        """Run the maintenance sweep forever. Runs as a background task."""
        log.info("maintenance_loop_started", interval_seconds=interval_seconds)
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.run_maintenance(stale_threshold_ms, retention_days)
            except Exception:
                log.error("maintenance_failed", exc_info=True)
