"""Durable storage for the settings collection."""

from __future__ import annotations

import asyncio
import json
import os
import shutil
from pathlib import Path
from typing import List, Protocol, Sequence

from pydantic import ValidationError as SchemaError
from sqlalchemy.exc import SQLAlchemyError

from buyalert.config import Settings
from buyalert.errors import PersistenceError
from buyalert.models import SettingOpts
from buyalert.utils.logging import get_logger

from .db import Database
from .repository import Repository

logger = get_logger(__name__)


class SettingsBackend(Protocol):
    """Whole-collection load/save used by the settings store."""

    async def load(self) -> List[SettingOpts]:
        ...

    async def save(self, records: Sequence[SettingOpts]) -> None:
        ...

    async def close(self) -> None:
        ...


class JsonFileBackend:
    """One JSON array on disk, rewritten atomically on every save."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()

    async def load(self) -> List[SettingOpts]:
        return await asyncio.to_thread(self._read)

    async def save(self, records: Sequence[SettingOpts]) -> None:
        payload = [record.model_dump(mode="json") for record in records]
        await asyncio.to_thread(self._write, payload)

    async def close(self) -> None:
        return None

    def _read(self) -> List[SettingOpts]:
        if not self.path.exists():
            logger.info("settings_file_missing", path=str(self.path))
            return []
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Could not load {self.path}: {exc}") from exc
        try:
            data = json.loads(raw) if raw.strip() else []
            if not isinstance(data, list):
                raise ValueError(f"expected a JSON array, got {type(data).__name__}")
            return [SettingOpts.model_validate(item) for item in data]
        except (ValueError, SchemaError) as exc:
            self._set_aside()
            raise PersistenceError(f"Could not load {self.path}: {exc}") from exc

    def _set_aside(self) -> None:
        """Keep an unreadable file under ``<name>.corrupt`` for manual repair."""
        target = self.path.with_name(self.path.name + ".corrupt")
        try:
            shutil.copy2(self.path, target)
        except OSError as exc:
            logger.error("settings_file_backup_failed", path=str(target), error=str(exc))
            return
        logger.warning("settings_file_set_aside", path=str(target))

    def _write(self, payload: list) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceError(f"Could not write {self.path}: {exc}") from exc


class SqlBackend:
    """Relational table keyed by (user_id, token_address)."""

    def __init__(self, db: Database) -> None:
        self.db = db
        self._ready = False

    async def _ensure_ready(self) -> None:
        if self._ready:
            return
        self.db.connect()
        await self.db.init_models()
        self._ready = True

    async def load(self) -> List[SettingOpts]:
        try:
            await self._ensure_ready()
            async with self.db.session() as session:
                return await Repository(session).all_settings()
        except (SQLAlchemyError, SchemaError, ValueError) as exc:
            raise PersistenceError(f"Could not load settings table: {exc}") from exc

    async def save(self, records: Sequence[SettingOpts]) -> None:
        try:
            await self._ensure_ready()
            async with self.db.session() as session:
                await Repository(session).replace_settings(records)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not save settings table: {exc}") from exc

    async def close(self) -> None:
        await self.db.dispose()
        self._ready = False


def build_backend(settings: Settings) -> SettingsBackend:
    """Pick the persistence backend named in configuration."""
    if settings.settings_backend == "sql":
        return SqlBackend(Database(settings.database_url))
    return JsonFileBackend(settings.settings_file)


__all__ = ["SettingsBackend", "JsonFileBackend", "SqlBackend", "build_backend"]
