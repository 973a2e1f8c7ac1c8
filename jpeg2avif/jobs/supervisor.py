"""Supervised worker task with fixed-backoff restart."""

import asyncio
import logging
from typing import Optional

from jpeg2avif.jobs.worker import ConversionWorker


class WorkerSupervisor:
    """Owns one cancellable asyncio task running a worker loop.

    If the loop dies with an exception (typically ``StoreUnavailable`` from
    the queue pop), the failure is logged and the loop is restarted after
    ``restart_backoff`` seconds, until ``stop`` is called.
    """

    def __init__(
        self,
        worker: ConversionWorker,
        restart_backoff: float = 5.0,
        logger: Optional[logging.Logger] = None,
    ):
        self._worker = worker
        self._restart_backoff = restart_backoff
        self._log = logger or logging.getLogger(__name__)
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self.restarts = 0

    @property
    def worker(self) -> ConversionWorker:
        return self._worker

    @property
    def is_alive(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        self._stopping = False
        self._task = asyncio.create_task(self._supervise(), name=f"supervisor:{self._worker.name}")

    async def stop(self) -> None:
        self._stopping = True
        self._worker.stop()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _supervise(self) -> None:
        while not self._stopping:
            try:
                await self._worker.run()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self._stopping:
                    break
                self.restarts += 1
                self._log.error(
                    "Worker %s crashed: %s; restarting in %.1fs",
                    self._worker.name, exc, self._restart_backoff,
                )
                await asyncio.sleep(self._restart_backoff)
            else:
                # run() only returns cleanly after stop()
                break
