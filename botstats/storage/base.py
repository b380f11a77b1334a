"""Storage interfaces (ports) for the dataset, identity registry and diagnostics."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from botstats.core.models import Dataset


class DatasetStore(Protocol):
    """Port: persists the whole dataset as one document."""

    async def load(self) -> Dataset: ...

    async def save(self, dataset: Dataset) -> None: ...

    async def snapshot_for_backup(self, dataset: Dataset) -> Path: ...

    async def prune_old_backups(self, retention_days: int) -> int: ...


class IdentityRegistry(Protocol):
    """Port: remembers the last instance id issued to each user."""

    async def resolve_or_mint(
        self,
        user_id: str | None,
        supplied_id: str | None,
        reusable: Callable[[str], bool] | None = None,
    ) -> str: ...


class DiagnosticSink(Protocol):
    """Port: best-effort diagnostic log. Must never raise."""

    async def append(self, message: str, source_ip: str, stack: str | None = None) -> None: ...
