"""Health check endpoint."""

import platform
import sys
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter

from jpeg2avif.jobs.supervisor import WorkerSupervisor
from jpeg2avif.store.base import DurableStore

router = APIRouter()

# Wired in during lifespan
_store: Optional[DurableStore] = None
_supervisors: List[WorkerSupervisor] = []


def set_runtime(store: Optional[DurableStore], supervisors: Optional[List[WorkerSupervisor]] = None):
    global _store, _supervisors
    _store = store
    _supervisors = list(supervisors or [])


@router.get("/health")
async def health_check():
    """Liveness plus store connectivity and worker state."""
    connected = await _store.ping() if _store is not None else False
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "store": "connected" if connected else "disconnected",
        "workers": [
            {
                "name": sup.worker.name,
                "alive": sup.is_alive,
                "restarts": sup.restarts,
                "processed": sup.worker.processed,
            }
            for sup in _supervisors
        ],
        "python_version": sys.version,
        "platform": platform.platform(),
    }
