"""FIFO work queue carrying job references over the durable store."""

import logging
from typing import Optional

from pydantic import ValidationError

from jpeg2avif.jobs.models import QueueEntry
from jpeg2avif.store.base import DurableStore

logger = logging.getLogger(__name__)


class WorkQueue:
    """Producers ``push`` at the head, consumers ``pop`` from the tail.

    Entries hold only the job id; the payload lives in the job record.
    """

    def __init__(self, store: DurableStore, key: str = "jpeg2avif:queue"):
        self._store = store
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    async def push(self, entry: QueueEntry) -> None:
        await self._store.lpush(self._key, entry.model_dump_json(by_alias=True))

    async def pop(self, timeout: float) -> Optional[QueueEntry]:
        """Wait up to *timeout* seconds for the oldest entry; None on timeout."""
        raw = await self._store.brpop(self._key, timeout)
        if raw is None:
            return None
        try:
            return QueueEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("Dropping malformed queue entry: %.200s", raw)
            return None
