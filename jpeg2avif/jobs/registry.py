"""Job registry: the only writer of job records in the durable store."""

import base64
import logging
from datetime import timedelta
from typing import Any, Optional

from pydantic import ValidationError

from jpeg2avif.errors import InvalidJobTransition, JobNotFound
from jpeg2avif.jobs.models import ALLOWED_TRANSITIONS, LEASE_TRANSITIONS, JobRecord, JobStatus, QueueEntry, utcnow
from jpeg2avif.store.base import DurableStore

logger = logging.getLogger(__name__)


class JobRegistry:
    """Creates, reads, mutates and deletes job records.

    Records are stored as one opaque JSON value per job, so ``update`` is a
    read-modify-write done here rather than a field patch in the store. It
    assumes a single writer per job id at a time (the worker that popped it);
    concurrent updates of the same job would be last-write-wins.
    """

    def __init__(
        self,
        store: DurableStore,
        key_prefix: str = "jpeg2avif:job:",
        ttl_seconds: int = 86400,
        lease_seconds: int = 0,
        max_deliveries: int = 3,
    ):
        self._store = store
        self._key_prefix = key_prefix
        self._ttl = ttl_seconds
        self._lease_seconds = lease_seconds
        self._max_deliveries = max_deliveries

    @property
    def leases_enabled(self) -> bool:
        return self._lease_seconds > 0

    def _allowed_targets(self, status: JobStatus) -> set:
        allowed = set(ALLOWED_TRANSITIONS[status])
        if self.leases_enabled:
            allowed |= LEASE_TRANSITIONS.get(status, set())
        return allowed

    def _key(self, job_id: str) -> str:
        return f"{self._key_prefix}{job_id}"

    async def _save(self, job: JobRecord) -> None:
        await self._store.set(self._key(job.id), job.to_json(), ttl=self._ttl)

    async def create(
        self,
        original_name: str,
        payload: bytes,
        size: int,
        request_id: Optional[str] = None,
    ) -> JobRecord:
        job = JobRecord(
            original_name=original_name,
            file_size=size,
            image_data=base64.b64encode(payload).decode("ascii"),
            request_id=request_id,
        )
        await self._save(job)
        logger.info("Created job %s with status: %s", job.id, job.status.value)
        return job

    async def get(self, job_id: str) -> Optional[JobRecord]:
        raw = await self._store.get(self._key(job_id))
        if raw is None:
            return None
        return JobRecord.from_json(raw)

    async def update(self, job_id: str, **changes: Any) -> JobRecord:
        """Merge *changes* into the stored record and persist it with a fresh TTL.

        Raises:
            JobNotFound: the record is absent (never existed, expired or deleted).
            InvalidJobTransition: the record is terminal or the status change
                is not allowed.
        """
        job = await self.get(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        if job.status.is_terminal:
            raise InvalidJobTransition(f"Job {job_id} is {job.status.value} and can no longer change")

        target = changes.get("status")
        if target is not None:
            target = JobStatus(target)
            if target != job.status and target not in self._allowed_targets(job.status):
                raise InvalidJobTransition(f"Illegal transition: {job.status.value} -> {target.value}")

        merged = {**job.model_dump(), **changes, "id": job.id, "updated_at": utcnow()}
        updated = JobRecord.model_validate(merged)
        await self._save(updated)
        logger.info("Updated job %s status to: %s", job_id, updated.status.value)
        return updated

    async def delete(self, job_id: str) -> None:
        await self._store.delete(self._key(job_id))
        logger.info("Deleted job %s", job_id)

    # ── Leases ───────────────────────────────────────────────────────

    async def start_processing(self, job_id: str) -> JobRecord:
        """Move a queued job to processing, counting the delivery."""
        job = await self.get(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        changes: dict[str, Any] = {"status": JobStatus.PROCESSING, "attempts": job.attempts + 1}
        if self.leases_enabled:
            changes["lease_expires_at"] = utcnow() + timedelta(seconds=self._lease_seconds)
        return await self.update(job_id, **changes)

    async def requeue_expired(self, queue) -> int:
        """Recover processing jobs whose lease ran out (their worker is gone).

        Each is put back to queued and re-pushed, or failed once it has been
        delivered ``max_deliveries`` times. Returns the number of jobs touched.
        No-op while leases are disabled.
        """
        if not self.leases_enabled:
            return 0
        now = utcnow()
        recovered = 0
        for key in await self._store.scan(self._key_prefix):
            job_id = key[len(self._key_prefix):]
            try:
                job = await self.get(job_id)
            except ValidationError as exc:
                logger.error("Job %s record is unreadable, leaving it to expire: %s", job_id, exc)
                continue
            if job is None or job.status != JobStatus.PROCESSING:
                continue
            if job.lease_expires_at is None or job.lease_expires_at > now:
                continue
            if job.attempts >= self._max_deliveries:
                await self.update(
                    job_id,
                    status=JobStatus.FAILED,
                    error=f"Lease expired after {job.attempts} delivery attempts",
                    lease_expires_at=None,
                )
                logger.warning("Job %s failed after %d expired leases", job_id, job.attempts)
            else:
                await self.update(job_id, status=JobStatus.QUEUED, lease_expires_at=None)
                await queue.push(QueueEntry(job_id=job_id))
                logger.warning("Job %s lease expired; re-queued (attempt %d)", job_id, job.attempts)
            recovered += 1
        return recovered
