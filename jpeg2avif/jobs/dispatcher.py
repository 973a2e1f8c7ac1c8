"""Producer side of the job pipeline."""

import logging
from typing import Optional

from jpeg2avif.jobs.models import JobRecord, QueueEntry
from jpeg2avif.jobs.queue import WorkQueue
from jpeg2avif.jobs.registry import JobRegistry

logger = logging.getLogger(__name__)


class JobDispatcher:
    """Submits conversion jobs and answers status queries."""

    def __init__(self, registry: JobRegistry, queue: WorkQueue):
        self.registry = registry
        self.queue = queue

    async def submit(
        self,
        original_name: str,
        payload: bytes,
        request_id: Optional[str] = None,
    ) -> JobRecord:
        """Store a queued record, then enqueue its id.

        The push happens only after the record is stored, so a consumer can
        never pop a reference to a record that does not exist yet. If the push
        fails the record is left queued and unreferenced until it expires.
        """
        job = await self.registry.create(original_name, payload, len(payload), request_id=request_id)
        await self.queue.push(QueueEntry(job_id=job.id))
        logger.info("Queued job %s (%s, %d bytes)", job.id, original_name, len(payload))
        return job

    async def get_status(self, job_id: str) -> Optional[JobRecord]:
        return await self.registry.get(job_id)

    async def delete(self, job_id: str) -> None:
        await self.registry.delete(job_id)
