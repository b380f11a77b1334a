"""File-based dataset storage.

The dataset is one pretty-printed JSON document. Writes go to a sibling
temp file which then replaces the target, so readers never observe a
half-written document.

Backups are timestamped copies in ``backup_dir``:
    backup_dir/db-YYYYMMDDTHHMMSSffffff.json
"""

from __future__ import annotations

import json
import os
import time
from datetime import datetime, timezone
from pathlib import Path

import structlog

from botstats.core.models import Dataset

log = structlog.get_logger()

_BACKUP_PREFIX = "db-"


def write_json_atomic(path: Path, data: dict) -> None:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    tmp_path.replace(path)


class FileDatasetStore:
    """DatasetStore backed by a single JSON file on disk."""

    def __init__(self, path: str | Path, backup_dir: str | Path) -> None:
        self._path = Path(path)
        self._backup_dir = Path(backup_dir)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> Dataset:
        """Read the dataset, creating a default one on first use.

        Raises OSError or ValueError when the file exists but cannot be read
        or parsed; the caller decides how to degrade.
        """
        if not self._path.exists():
            dataset = Dataset.new(int(time.time() * 1000))
            await self.save(dataset)
            log.info("dataset_created", path=str(self._path))
            return dataset

        with open(self._path, encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError(f"dataset root must be an object, got {type(raw).__name__}")
        try:
            return Dataset.from_dict(raw)
        except (AttributeError, TypeError) as exc:
            raise ValueError(f"malformed dataset document: {exc}") from exc

    async def save(self, dataset: Dataset) -> None:
        write_json_atomic(self._path, dataset.to_dict())
        log.debug("dataset_written", path=str(self._path),
                  instances=len(dataset.instances))

    async def snapshot_for_backup(self, dataset: Dataset) -> Path:
        self._backup_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        backup_path = self._backup_dir / f"{_BACKUP_PREFIX}{stamp}.json"
        write_json_atomic(backup_path, dataset.to_dict())
        log.info("backup_written", path=str(backup_path))
        return backup_path

    async def prune_old_backups(self, retention_days: int, now: float | None = None) -> int:
        """Delete backups older than ``retention_days``. Returns the count removed."""
        if not self._backup_dir.exists():
            return 0
        cutoff = (now if now is not None else time.time()) - retention_days * 86_400
        removed = 0
        for backup in sorted(self._backup_dir.glob(f"{_BACKUP_PREFIX}*.json")):
            if backup.stat().st_mtime < cutoff:
                os.remove(backup)
                removed += 1
        if removed:
            log.info("backups_pruned", removed=removed, retention_days=retention_days)
        return removed
