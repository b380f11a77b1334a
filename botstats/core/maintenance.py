"""Periodic maintenance sweep: stale-instance eviction."""

from __future__ import annotations

from botstats.core import classifier
from botstats.core.classifier import LivenessWindows
from botstats.core.models import Dataset, iso_from_ms


def evict_stale_instances(dataset: Dataset, now_ms: int, threshold_ms: int) -> list[str]:
    """Delete instances silent for longer than ``threshold_ms``.

    Users keep their instance membership lists; counters and breakdowns are
    historical and are left untouched. Returns the evicted ids.
    """
    stale = [
        iid for iid, inst in dataset.instances.items()
        if now_ms - inst.last_active > threshold_ms
    ]
    for iid in stale:
        del dataset.instances[iid]
        dataset.statistics.system_info.pop(iid, None)
    return stale


def sweep(dataset: Dataset, now_ms: int, threshold_ms: int,
          windows: LivenessWindows) -> list[str]:
    """Evict stale instances and bring derived metrics back in line."""
    evicted = evict_stale_instances(dataset, now_ms, threshold_ms)
    classifier.refresh_dataset_metrics(dataset)
    classifier.refresh_connection_stats(dataset, now_ms, windows)
    dataset.settings.last_maintenance = iso_from_ms(now_ms)
    return evicted
