"""Worker loop: drains the work queue and drives each job through the pipeline."""

import asyncio
import logging
import time
from typing import Optional

from pydantic import ValidationError

from jpeg2avif.errors import ConversionError
from jpeg2avif.jobs.models import JobStatus, QueueEntry
from jpeg2avif.jobs.queue import WorkQueue
from jpeg2avif.jobs.registry import JobRegistry
from jpeg2avif.processing.pipeline import ConversionPipeline


class ConversionWorker:
    """Sequential consumer. Run several instances for scale-out.

    ``run`` only returns when ``stop`` is called. Anything that goes wrong
    while handling a single job is logged and written to that job; only a
    store failure while popping or fetching the record escapes ``run``, and
    the supervisor restarts the worker.
    """

    def __init__(
        self,
        registry: JobRegistry,
        queue: WorkQueue,
        pipeline: ConversionPipeline,
        pop_timeout: float = 30.0,
        name: str = "worker-0",
        logger: Optional[logging.Logger] = None,
    ):
        self._registry = registry
        self._queue = queue
        self._pipeline = pipeline
        self._pop_timeout = pop_timeout
        self.name = name
        self._log = logger or logging.getLogger(__name__)
        self._running = False
        self.processed = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        self._running = False

    async def run(self) -> None:
        if self._running:
            self._log.warning("%s already running", self.name)
            return
        self._running = True
        self._log.info("Starting conversion worker %s", self.name)
        try:
            while self._running:
                await self.run_once()
        finally:
            self._running = False
            self._log.info("Conversion worker %s stopped", self.name)

    async def run_once(self) -> bool:
        """One loop iteration. Returns True if a job was processed."""
        entry = await self._queue.pop(self._pop_timeout)
        if entry is None:
            # Idle: a good moment to recover abandoned jobs
            await self._registry.requeue_expired(self._queue)
            return False
        return await self._handle_entry(entry)

    async def _handle_entry(self, entry: QueueEntry) -> bool:
        try:
            job = await self._registry.get(entry.job_id)
        except ValidationError as exc:
            self._log.error("Job %s record is unreadable, skipping: %s", entry.job_id, exc)
            return False
        if job is None:
            self._log.warning("Job %s not found in store, skipping", entry.job_id)
            return False
        if job.status != JobStatus.QUEUED:
            self._log.warning("Job %s is %s, not queued; skipping", job.id, job.status.value)
            return False

        try:
            await self.process_job(job.id, job.payload_bytes(), job.original_name)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._log.exception("%s: unexpected error handling job %s", self.name, job.id)
        return True

    async def process_job(self, job_id: str, payload: bytes, original_name: str) -> None:
        start = time.monotonic()
        self._log.info("Processing job %s (%s)", job_id, original_name)

        await self._registry.start_processing(job_id)
        try:
            result = await self._pipeline.run(job_id, payload, original_name)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            elapsed = int((time.monotonic() - start) * 1000)
            if isinstance(exc, ConversionError):
                self._log.error("Job %s failed: %s", job_id, exc)
            else:
                self._log.exception("Job %s failed with unexpected error", job_id)
            await self._registry.update(
                job_id,
                status=JobStatus.FAILED,
                error=str(exc) or type(exc).__name__,
                processing_time=elapsed,
                lease_expires_at=None,
            )
            return

        elapsed = int((time.monotonic() - start) * 1000)
        await self._registry.update(
            job_id,
            status=JobStatus.COMPLETED,
            results=result,
            processing_time=elapsed,
            lease_expires_at=None,
        )
        self.processed += 1
        self._log.info(
            "Job %s completed in %dms (original %d bytes, thumbnail %d, full-size %d)",
            job_id, elapsed, result.original_size, result.thumbnail.size, result.full_size.size,
        )
