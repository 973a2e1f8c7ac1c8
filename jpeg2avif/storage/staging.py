"""Filesystem staging area for the metadata tool, with guaranteed cleanup."""

import logging
import os
import shutil
import tempfile
import time
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class StagingArea:
    """Per-job scratch directories under one base directory.

    ``job_dir`` is a context manager: the directory is removed when the block
    exits, however it exits. ``cleanup_expired`` sweeps directories left
    behind by a process that died mid-job.
    """

    def __init__(self, base_dir: Optional[str] = None, ttl_hours: int = 2):
        if base_dir:
            self._base_dir = base_dir
        else:
            self._base_dir = os.path.join(tempfile.gettempdir(), "jpeg2avif_staging")
        os.makedirs(self._base_dir, exist_ok=True)
        self._ttl_seconds = ttl_hours * 3600

    @property
    def base_dir(self) -> str:
        return self._base_dir

    @contextmanager
    def job_dir(self, job_id: str) -> Iterator[str]:
        path = os.path.join(self._base_dir, job_id)
        os.makedirs(path, exist_ok=True)
        try:
            yield path
        finally:
            self._remove(path)

    def _remove(self, path: str) -> None:
        # A timed-out metadata thread may still be writing here; sweep twice
        for _ in range(2):
            shutil.rmtree(path, ignore_errors=True)
            if not os.path.exists(path):
                return
        logger.warning("Staging dir %s still in use; left for the stale sweep", path)

    def cleanup_expired(self) -> int:
        """Remove job directories older than TTL. Returns count of removed dirs."""
        now = time.time()
        removed = 0
        if not os.path.exists(self._base_dir):
            return 0
        for entry in os.listdir(self._base_dir):
            job_dir = os.path.join(self._base_dir, entry)
            if not os.path.isdir(job_dir):
                continue
            if now - os.path.getmtime(job_dir) > self._ttl_seconds:
                shutil.rmtree(job_dir, ignore_errors=True)
                removed += 1
        if removed:
            logger.info("Removed %d stale staging dir(s) from %s", removed, self._base_dir)
        return removed
