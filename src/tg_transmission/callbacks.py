"""Short-lived handlers for inline keyboard buttons.

A button payload is ``<id><data>`` where ``<id>`` is a fixed-width token
returned by :meth:`CallbackRegistry.register`. The registry keeps the handler
for an hour; the first button press consumes it.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import anyio

from .logging import get_logger

if TYPE_CHECKING:
    from anyio.abc import TaskGroup

logger = get_logger(__name__)

CALLBACK_ID_LEN = 36
CALLBACK_TTL_S = 60 * 60

CallbackHandler = Callable[[Any], Awaitable[Any]]


def new_callback_id() -> str:
    return str(uuid.uuid4())


def split_callback_data(data: str | None) -> tuple[str | None, str]:
    if data is None or len(data) <= CALLBACK_ID_LEN:
        return None, data or ""
    return data[:CALLBACK_ID_LEN], data[CALLBACK_ID_LEN:]


@dataclass(slots=True)
class _Entry:
    handler: CallbackHandler
    expires_at: float
    timer: anyio.CancelScope | None = field(default=None)


class CallbackRegistry:
    def __init__(
        self,
        *,
        ttl_s: float = CALLBACK_TTL_S,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        new_id: Callable[[], str] = new_callback_id,
    ) -> None:
        self._ttl_s = ttl_s
        self._clock = clock
        self._sleep = sleep
        self._new_id = new_id
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._task_group: TaskGroup | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def attach(self, task_group: TaskGroup | None) -> None:
        """Run expiry timers on ``task_group``; detached registries only check deadlines."""
        self._task_group = task_group

    def register(self, handler: CallbackHandler) -> str:
        task_group = self._task_group
        entry = _Entry(handler=handler, expires_at=self._clock() + self._ttl_s)
        if task_group is not None:
            entry.timer = anyio.CancelScope()
        with self._lock:
            callback_id = self._new_id()
            while callback_id in self._entries:
                callback_id = self._new_id()
            self._entries[callback_id] = entry
        if task_group is not None and entry.timer is not None:
            task_group.start_soon(self._expire, callback_id, entry, entry.timer)
        logger.debug("callbacks.registered", callback_id=callback_id)
        return callback_id

    def consume(self, callback_id: str | None) -> CallbackHandler | None:
        if callback_id is None:
            return None
        with self._lock:
            entry = self._entries.pop(callback_id, None)
        if entry is None:
            return None
        if entry.timer is not None:
            entry.timer.cancel()
        if self._clock() >= entry.expires_at:
            logger.debug("callbacks.expired", callback_id=callback_id)
            return None
        return entry.handler

    async def _expire(
        self, callback_id: str, entry: _Entry, timer: anyio.CancelScope
    ) -> None:
        with timer:
            await self._sleep(self._ttl_s)
            with self._lock:
                if self._entries.get(callback_id) is entry:
                    del self._entries[callback_id]
                    removed = True
                else:
                    removed = False
            if removed:
                logger.debug("callbacks.expired", callback_id=callback_id)
