"""Process-level counters for the collector itself.

These describe this server process (uptime, events handled, storage
failures), not the bot fleet; fleet statistics live in the persisted
Dataset. Nothing here is persisted. No framework dependencies.
"""

from __future__ import annotations

import threading
import time


class ProcessStats:
    """Thread-safe in-memory counters, reset on restart."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()

        self.events_by_kind: dict[str, int] = {}
        self.events_rejected: int = 0
        self.unknown_references: int = 0
        self.storage_errors: int = 0
        self.maintenance_runs: int = 0
        self.instances_evicted: int = 0

    def record_event(self, kind: str) -> None:
        with self._lock:
            self.events_by_kind[kind] = self.events_by_kind.get(kind, 0) + 1

    def record_rejected(self, count: int = 1) -> None:
        with self._lock:
            self.events_rejected += count

    def record_unknown_reference(self) -> None:
        with self._lock:
            self.unknown_references += 1

    def record_storage_error(self) -> None:
        with self._lock:
            self.storage_errors += 1

    def record_maintenance(self, evicted: int) -> None:
        with self._lock:
            self.maintenance_runs += 1
            self.instances_evicted += evicted

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all counters."""
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "events_processed": sum(self.events_by_kind.values()),
                "events_by_kind": dict(self.events_by_kind),
                "events_rejected": self.events_rejected,
                "unknown_references": self.unknown_references,
                "storage_errors": self.storage_errors,
                "maintenance_runs": self.maintenance_runs,
                "instances_evicted": self.instances_evicted,
            }
