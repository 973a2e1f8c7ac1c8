"""Durable store interface used for job records and the work queue."""

from abc import ABC, abstractmethod
from typing import List, Optional


class DurableStore(ABC):
    """Key/value store with per-key expiry and FIFO blocking lists.

    Every method is a single atomic operation against the backing service.
    Implementations raise ``StoreUnavailable`` when the service cannot be
    reached; callers never see backend-specific connection errors.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value for *key*, or None if missing or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """Store *value* under *key*, replacing it; expire after *ttl* seconds."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def lpush(self, key: str, value: str) -> None:
        """Push *value* onto the head of list *key*."""
        ...

    @abstractmethod
    async def brpop(self, key: str, timeout: float) -> Optional[str]:
        """Pop from the tail of list *key*, waiting up to *timeout* seconds.

        Together with ``lpush`` this is a FIFO queue. The pop is atomic: an
        element is handed to exactly one caller.
        """
        ...

    @abstractmethod
    async def scan(self, prefix: str) -> List[str]:
        """Return all live keys starting with *prefix*."""
        ...

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backing service answers."""
        ...

    async def close(self) -> None:
        return None
