"""In-process durable store using asyncio for local development.

Keeps records and queue lists in memory, honoring per-key expiry and
blocking pops. No external dependencies (Redis) needed; state is lost when
the process exits and is only visible to tasks on the same event loop.
"""

import asyncio
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple

from jpeg2avif.store.base import DurableStore


class MemoryStore(DurableStore):
    """Local store. Safe for any number of coroutines on one event loop."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._values: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lists: Dict[str, Deque[str]] = {}
        self._changed: Optional[asyncio.Condition] = None

    def _condition(self) -> asyncio.Condition:
        # Created lazily so the store can be built outside a running loop
        if self._changed is None:
            self._changed = asyncio.Condition()
        return self._changed

    def _live(self, key: str) -> Optional[str]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._values[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._values[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)
        self._lists.pop(key, None)

    async def lpush(self, key: str, value: str) -> None:
        cond = self._condition()
        async with cond:
            self._lists.setdefault(key, deque()).appendleft(value)
            cond.notify_all()

    async def brpop(self, key: str, timeout: float) -> Optional[str]:
        cond = self._condition()
        async with cond:
            try:
                await asyncio.wait_for(
                    cond.wait_for(lambda: bool(self._lists.get(key))),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                return None
            return self._lists[key].pop()

    async def scan(self, prefix: str) -> List[str]:
        return [key for key in list(self._values) if key.startswith(prefix) and self._live(key) is not None]

    async def ping(self) -> bool:
        return True

    def list_length(self, key: str) -> int:
        return len(self._lists.get(key, ()))
