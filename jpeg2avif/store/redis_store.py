"""Redis-backed durable store (production)."""

import logging
from typing import List, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from jpeg2avif.errors import StoreUnavailable
from jpeg2avif.store.base import DurableStore

logger = logging.getLogger(__name__)

_UNAVAILABLE = (RedisConnectionError, RedisTimeoutError, OSError)


class RedisStore(DurableStore):
    """Thin async wrapper mapping the store contract onto Redis commands.

    SET EX / GET / DEL for records, LPUSH / BRPOP for the queue.
    """

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "RedisStore":
        client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password or None,
            socket_connect_timeout=settings.redis_connect_timeout,
            # BRPOP blocks server-side; a socket timeout would cut it short
            socket_timeout=None,
            decode_responses=True,
        )
        logger.info(
            "Redis store configured for %s:%s db=%s",
            settings.redis_host, settings.redis_port, settings.redis_db,
        )
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except _UNAVAILABLE as exc:
            raise StoreUnavailable(f"Redis GET failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        try:
            await self._client.set(key, value, ex=ttl)
        except _UNAVAILABLE as exc:
            raise StoreUnavailable(f"Redis SET failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except _UNAVAILABLE as exc:
            raise StoreUnavailable(f"Redis DEL failed: {exc}") from exc

    async def lpush(self, key: str, value: str) -> None:
        try:
            await self._client.lpush(key, value)
        except _UNAVAILABLE as exc:
            raise StoreUnavailable(f"Redis LPUSH failed: {exc}") from exc

    async def brpop(self, key: str, timeout: float) -> Optional[str]:
        try:
            result = await self._client.brpop([key], timeout=timeout)
        except _UNAVAILABLE as exc:
            raise StoreUnavailable(f"Redis BRPOP failed: {exc}") from exc
        if result is None:
            return None
        _key, value = result
        return value

    async def scan(self, prefix: str) -> List[str]:
        try:
            return [key async for key in self._client.scan_iter(match=f"{prefix}*")]
        except _UNAVAILABLE as exc:
            raise StoreUnavailable(f"Redis SCAN failed: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except _UNAVAILABLE:
            return False

    async def close(self) -> None:
        await self._client.aclose()
