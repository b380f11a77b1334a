"""Identity registry: user id -> last instance id issued to that user.

Kept in its own small JSON document next to the dataset so a bot that
reconnects without remembering its id is handed the same one again.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Callable

import structlog

from botstats.storage.file_storage import write_json_atomic

log = structlog.get_logger()


def mint_instance_id() -> str:
    return uuid.uuid4().hex


class FileIdentityRegistry:
    """IdentityRegistry backed by a JSON file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError):
            log.warning("registry_read_failed", path=str(self._path), exc_info=True)
            return {}
        return raw if isinstance(raw, dict) else {}

    def lookup(self, user_id: str) -> str | None:
        return self._read().get(user_id)

    async def resolve_or_mint(
        self,
        user_id: str | None,
        supplied_id: str | None,
        reusable: Callable[[str], bool] | None = None,
    ) -> str:
        """Prefer ``supplied_id``, then the id last issued to ``user_id``, else mint one.

        A remembered id is only handed back when ``reusable`` accepts it.
        """
        mapping = self._read()
        remembered = mapping.get(user_id) if user_id is not None else None
        if supplied_id:
            instance_id = supplied_id
        elif remembered and (reusable is None or reusable(remembered)):
            return remembered
        else:
            if remembered:
                log.info("remembered_instance_unusable", instance=remembered, user=user_id)
            instance_id = mint_instance_id()
            log.info("instance_id_minted", instance=instance_id, user=user_id)

        if user_id is not None and mapping.get(user_id) != instance_id:
            mapping[user_id] = instance_id
            try:
                write_json_atomic(self._path, mapping)
            except OSError:
                log.error("registry_write_failed", path=str(self._path), exc_info=True)
        return instance_id
