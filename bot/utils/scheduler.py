from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

LOGGER = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class ScheduledTask(Protocol):
    def cancel(self) -> None: ...

    @property
    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def schedule(self, delay_seconds: float, callback: Callback, *, name: str = "") -> ScheduledTask: ...
    def cancel_pending(self) -> None: ...


async def run_callback(callback: Callback, name: str) -> None:
    try:
        await callback()
    except asyncio.CancelledError:
        raise
    except Exception:
        LOGGER.exception("Scheduled callback failed: %s", name or callback)


class _AsyncioTask:
    def __init__(self, owner: AsyncioScheduler, callback: Callback, name: str) -> None:
        self._owner = owner
        self._callback = callback
        self._name = name
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _fire(self) -> None:
        self._handle = None
        self._task = asyncio.create_task(run_callback(self._callback, self._name))
        self._task.add_done_callback(lambda _: self._owner._pending.discard(self))

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._owner._pending.discard(self)


class AsyncioScheduler:
    """Fire-and-forget timers on the running event loop; nothing survives a restart."""

    def __init__(self) -> None:
        self._pending: set[_AsyncioTask] = set()

    def schedule(self, delay_seconds: float, callback: Callback, *, name: str = "") -> ScheduledTask:
        loop = asyncio.get_running_loop()
        task = _AsyncioTask(self, callback, name)
        task._handle = loop.call_later(max(0.0, delay_seconds), task._fire)
        self._pending.add(task)
        return task

    def cancel_pending(self) -> None:
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    @property
    def pending_count(self) -> int:
        return len(self._pending)
