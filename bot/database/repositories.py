from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Iterator
from typing import Any

from core.errors import PersistenceDegradedError
from database.store import DocumentStore
from utils.scheduler import ScheduledTask, Scheduler

LOGGER = logging.getLogger(__name__)


class DocumentRepository:
    """In-memory copy of one persisted document with an explicit write policy.

    With ``debounce_seconds=None`` every ``put`` writes through before
    returning. With a debounce window, writes are coalesced: each change
    reschedules a single flush, so a burst of edits costs one write.

    A failed write never raises to the caller. The repository is marked
    degraded, keeps the in-memory data authoritative and retries after
    ``retry_seconds``; debounced flushes are skipped until that retry (or an
    explicit ``flush``) succeeds.
    """

    def __init__(
        self,
        store: DocumentStore,
        name: str,
        scheduler: Scheduler,
        *,
        debounce_seconds: float | None = None,
        retry_seconds: float = 30.0,
    ) -> None:
        self.store = store
        self.name = name
        self.scheduler = scheduler
        self.debounce_seconds = debounce_seconds
        self.retry_seconds = retry_seconds
        self._data: dict[str, Any] = {}
        self._dirty = False
        self._degraded = False
        self._pending: ScheduledTask | None = None
        self._retry: ScheduledTask | None = None
        self._write_lock = asyncio.Lock()

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def dirty(self) -> bool:
        return self._dirty

    async def load(self) -> None:
        self._data = await self.store.load(self.name)
        self._dirty = False
        LOGGER.info("Loaded document %s (%s entries)", self.name, len(self._data), extra={"document": self.name})

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return copy.deepcopy(default)
        return copy.deepcopy(self._data[key])

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def items(self) -> Iterator[tuple[str, Any]]:
        for key in list(self._data.keys()):
            yield key, copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        """Stage a change in memory; call ``commit`` (or ``put``) to persist it."""
        self._data[key] = copy.deepcopy(value)
        self._dirty = True

    def delete(self, key: str) -> bool:
        if key not in self._data:
            return False
        del self._data[key]
        self._dirty = True
        return True

    async def put(self, key: str, value: Any) -> bool:
        self.set(key, value)
        return await self.commit()

    async def commit(self) -> bool:
        if self.debounce_seconds is None:
            return await self.flush()
        self._schedule_flush()
        return True

    def _schedule_flush(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
        if self._degraded:
            # The retry timer owns the next attempt.
            self._pending = None
            return
        self._pending = self.scheduler.schedule(
            self.debounce_seconds or 0.0, self._debounced_flush, name=f"flush:{self.name}"
        )

    async def _debounced_flush(self) -> None:
        self._pending = None
        await self.flush()

    async def _retry_flush(self) -> None:
        self._retry = None
        LOGGER.info("Retrying write of document %s", self.name, extra={"document": self.name})
        await self.flush()

    async def flush(self) -> bool:
        async with self._write_lock:
            if not self._dirty:
                return True
            snapshot = copy.deepcopy(self._data)
            self._dirty = False
            try:
                await self.store.save(self.name, snapshot)
            except PersistenceDegradedError as exc:
                self._dirty = True
                if not self._degraded:
                    LOGGER.error(
                        "Persisting document %s failed; keeping in-memory copy: %s",
                        self.name,
                        exc.user_message,
                        extra={"document": self.name},
                    )
                self._degraded = True
                if self._retry is None:
                    self._retry = self.scheduler.schedule(
                        self.retry_seconds, self._retry_flush, name=f"retry:{self.name}"
                    )
                return False
            if self._degraded:
                LOGGER.info("Document %s persisted again after degraded writes", self.name, extra={"document": self.name})
                self._degraded = False
                if self._retry is not None:
                    self._retry.cancel()
                    self._retry = None
            return True

    async def close(self) -> None:
        for task in (self._pending, self._retry):
            if task is not None:
                task.cancel()
        self._pending = None
        self._retry = None
        await self.flush()
