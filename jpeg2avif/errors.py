"""Custom exceptions and FastAPI error handler registration."""
from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ── Store / registry ────────────────────────────────────────────────


class StoreUnavailable(Exception):
    """The durable store could not be reached. Transient; never corrupts state."""


class JobNotFound(Exception):
    """Requested job ID does not exist (or has expired)."""


class InvalidJobTransition(Exception):
    """A status change not allowed by the job lifecycle."""


# ── Conversion (fatal to the job, never to the worker) ──────────────


class ConversionError(Exception):
    """Base class for errors that fail a single job."""


class MetadataExtractionFailed(ConversionError):
    """Provenance metadata could not be read from the original."""


class MetadataWriteFailed(ConversionError):
    """Provenance metadata could not be written into a variant."""


class DecodeFailed(ConversionError):
    """The original image is malformed or not decodable."""


class StageTimeout(ConversionError):
    """A pipeline stage exceeded its time bound."""

    def __init__(self, stage: str, timeout: float):
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"{stage} timed out after {int(timeout * 1000)}ms")


# ── Error → HTTP mapping ────────────────────────────────────────────

_EXCEPTION_STATUS = {
    JobNotFound: 404,
    InvalidJobTransition: 409,
    StoreUnavailable: 503,
}


def _make_handler(status_code: int):
    """Create a handler that renders an exception as a failure body."""

    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"success": False, "error": str(exc)})

    return _handler


def register_error_handlers(app: FastAPI) -> None:
    """Register custom exception handlers on the FastAPI app."""
    for exc_cls, status in _EXCEPTION_STATUS.items():
        app.add_exception_handler(exc_cls, _make_handler(status))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})
