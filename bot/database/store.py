from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import sqlite3
from contextlib import suppress
from pathlib import Path
from typing import Any, Protocol

import asyncpg

from core.config import StorageConfig
from core.errors import PersistenceDegradedError
from database.base import Database
from utils.time import to_iso, utc_now

LOGGER = logging.getLogger(__name__)

DOCUMENT_NAMES = ("guildConfigs", "premiumGuilds", "premiumKeys", "reviews", "ratedTickets")


class DocumentStore(Protocol):
    async def load(self, name: str) -> dict[str, Any]: ...
    async def save(self, name: str, data: dict[str, Any]) -> None: ...
    async def close(self) -> None: ...


class JsonFileStore(DocumentStore):
    """One ``<name>.json`` file per document, replaced atomically on every save."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        return self.directory / f"{name}.json"

    def _read(self, name: str) -> dict[str, Any]:
        path = self.path_for(name)
        if not path.exists() or path.stat().st_size == 0:
            return {}
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            LOGGER.exception("Failed reading document %s; starting empty", path, extra={"document": name})
            return {}
        if not isinstance(raw, dict):
            LOGGER.warning("Document %s is not a JSON object; starting empty", path, extra={"document": name})
            return {}
        return raw

    def _write(self, name: str, payload: str) -> None:
        path = self.path_for(name)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            with suppress(OSError):
                tmp.unlink(missing_ok=True)
            raise PersistenceDegradedError(f"Could not write {path}: {exc}") from exc

    async def load(self, name: str) -> dict[str, Any]:
        return await asyncio.to_thread(self._read, name)

    async def save(self, name: str, data: dict[str, Any]) -> None:
        payload = json.dumps(data, indent=2, ensure_ascii=False)
        await asyncio.to_thread(self._write, name, payload)

    async def close(self) -> None:
        return None


DOCUMENTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    name TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class SqlDocumentStore(DocumentStore):
    """Documents stored as JSON text rows, for deployments that already run a database."""

    def __init__(self, database: Database) -> None:
        self.database = database
        self._ready = False

    async def _ensure_schema(self) -> None:
        if self._ready:
            return
        await self.database.connect()
        await self.database.execute(DOCUMENTS_TABLE_SQL)
        self._ready = True

    async def load(self, name: str) -> dict[str, Any]:
        await self._ensure_schema()
        row = await self.database.fetchone("SELECT payload FROM documents WHERE name = ?;", [name])
        if not row:
            return {}
        try:
            raw = json.loads(row["payload"])
        except ValueError:
            LOGGER.exception("Stored document %s is not valid JSON; starting empty", name, extra={"document": name})
            return {}
        return raw if isinstance(raw, dict) else {}

    async def save(self, name: str, data: dict[str, Any]) -> None:
        payload = json.dumps(data, ensure_ascii=False)
        try:
            await self._ensure_schema()
            await self.database.execute(
                """
                INSERT INTO documents(name, payload, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at;
                """,
                [name, payload, to_iso(utc_now())],
            )
        except (OSError, sqlite3.Error, asyncpg.PostgresError) as exc:
            raise PersistenceDegradedError(f"Could not write document {name}: {exc}") from exc

    async def close(self) -> None:
        await self.database.close()


class MemoryDocumentStore(DocumentStore):
    """Process-local store; ``fail_writes`` simulates a full disk."""

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None) -> None:
        self.documents: dict[str, dict[str, Any]] = copy.deepcopy(initial or {})
        self.fail_writes = False
        self.save_count: dict[str, int] = {}

    async def load(self, name: str) -> dict[str, Any]:
        return copy.deepcopy(self.documents.get(name, {}))

    async def save(self, name: str, data: dict[str, Any]) -> None:
        if self.fail_writes:
            raise PersistenceDegradedError(f"No space left to write {name}")
        self.documents[name] = copy.deepcopy(data)
        self.save_count[name] = self.save_count.get(name, 0) + 1

    async def close(self) -> None:
        return None


def build_store(config: StorageConfig) -> DocumentStore:
    if config.backend == "sql":
        return SqlDocumentStore(Database(url=config.url))
    if config.backend == "memory":
        return MemoryDocumentStore()
    return JsonFileStore(Path(config.directory))
