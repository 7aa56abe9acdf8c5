"""In-memory settings store shared by watchers and the setup flow."""

from __future__ import annotations

import asyncio
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from buyalert.models import SettingOpts, settings_key
from buyalert.utils.logging import get_logger

logger = get_logger(__name__)

Key = Tuple[int, str]


class SettingsStore:
    """Concurrency-safe CRUD over ``SettingOpts`` keyed by (user, token).

    Writers take ``_lock`` and publish a fresh read-only mapping, so readers
    never wait and always see a complete collection. Records are copied on
    the way in and out; callers cannot mutate stored state.
    """

    def __init__(self, records: Iterable[SettingOpts] = ()) -> None:
        self._lock = asyncio.Lock()
        self._records: Mapping[Key, SettingOpts] = MappingProxyType(
            _index(records)
        )
        self._selected: Dict[int, SettingOpts] = {}
        self._version = 0

    @property
    def version(self) -> int:
        """Bumped on every mutation of the collection."""
        return self._version

    def __len__(self) -> int:
        return len(self._records)

    async def upsert(self, opts: SettingOpts) -> bool:
        """Insert or replace by composite key; True when a record was replaced."""
        record = opts.model_copy(deep=True)
        async with self._lock:
            updated = dict(self._records)
            replaced = record.key in updated
            updated[record.key] = record
            self._publish(updated)
        logger.debug(
            "settings_upserted",
            user_id=record.user_id,
            token=record.token_address,
            replaced=replaced,
        )
        return replaced

    async def find(self, user_id: int, token_address: str) -> SettingOpts:
        """Stored record, or a default one when nothing matches."""
        record = self._records.get(settings_key(user_id, token_address))
        if record is None:
            return SettingOpts.default(user_id, token_address)
        return record.model_copy(deep=True)

    async def exists(self, user_id: int, token_address: str) -> bool:
        return settings_key(user_id, token_address) in self._records

    async def delete(self, user_id: int, token_address: str) -> bool:
        key = settings_key(user_id, token_address)
        async with self._lock:
            if key not in self._records:
                return False
            updated = dict(self._records)
            del updated[key]
            self._publish(updated)
        logger.debug("settings_deleted", user_id=user_id, token=token_address)
        return True

    async def list_for_user(self, user_id: int) -> List[SettingOpts]:
        return [
            record.model_copy(deep=True)
            for record in self._records.values()
            if record.user_id == int(user_id)
        ]

    async def snapshot_all(self) -> List[SettingOpts]:
        """Every record in insertion order."""
        return [record.model_copy(deep=True) for record in self._records.values()]

    async def restore(self, records: Iterable[SettingOpts]) -> None:
        """Replace the whole collection at once (startup reload)."""
        indexed = _index(records)
        async with self._lock:
            self._records = MappingProxyType(indexed)
        logger.info("settings_restored", count=len(indexed))

    async def get_selected(self, session_id: int) -> Optional[SettingOpts]:
        """Draft being edited in ``session_id``, if any."""
        draft = self._selected.get(int(session_id))
        return draft.model_copy(deep=True) if draft else None

    async def set_selected(self, session_id: int, opts: SettingOpts) -> None:
        async with self._lock:
            self._selected[int(session_id)] = opts.model_copy(deep=True)

    async def clear_selected(self, session_id: int) -> None:
        async with self._lock:
            self._selected.pop(int(session_id), None)

    def _publish(self, records: Dict[Key, SettingOpts]) -> None:
        self._records = MappingProxyType(records)
        self._version += 1


def _index(records: Iterable[SettingOpts]) -> Dict[Key, SettingOpts]:
    indexed: Dict[Key, SettingOpts] = {}
    for record in records:
        indexed[record.key] = record.model_copy(deep=True)
    return indexed


__all__ = ["SettingsStore"]
