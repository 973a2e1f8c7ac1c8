"""Conversion API: submit an image, poll its job, delete it.

  POST   /convert             - receive a JPEG, queue a conversion job
  POST   /convert-sync        - retired synchronous endpoint (410)
  GET    /status/{job_id}     - poll job status and fetch results
  DELETE /status/{job_id}     - drop a job record before its TTL
"""

import logging
import time
import uuid
from typing import Optional

from fastapi import APIRouter, File, HTTPException, Response, UploadFile
from fastapi.responses import JSONResponse

from jpeg2avif.jobs.dispatcher import JobDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()

# Wired in during lifespan
_dispatcher: Optional[JobDispatcher] = None
_max_upload_bytes = 50 * 1024 * 1024

_JPEG_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/pjpeg"}


def set_dispatcher(dispatcher: Optional[JobDispatcher], max_upload_bytes: Optional[int] = None):
    global _dispatcher, _max_upload_bytes
    _dispatcher = dispatcher
    if max_upload_bytes is not None:
        _max_upload_bytes = max_upload_bytes


def _require_dispatcher() -> JobDispatcher:
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Service temporarily unavailable - job queue not ready")
    return _dispatcher


def _fail(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


# ---------------------------------------------------------------------------
# POST /convert
# ---------------------------------------------------------------------------

@router.post("/convert")
async def convert_image(image: Optional[UploadFile] = File(default=None)):
    """Accept a JPEG upload and queue it for conversion.

    Returns immediately with the job id; the conversion happens in a worker.
    """
    started = time.monotonic()
    request_id = f"req_{uuid.uuid4().hex[:12]}"
    dispatcher = _require_dispatcher()

    if image is None:
        return _fail(400, "No image file provided")
    if (image.content_type or "").lower() not in _JPEG_CONTENT_TYPES:
        return _fail(400, "Only JPEG files are allowed")

    payload = await image.read(_max_upload_bytes + 1)
    if len(payload) > _max_upload_bytes:
        limit_mb = _max_upload_bytes // (1024 * 1024)
        return _fail(400, f"File too large. Maximum size is {limit_mb}MB.")
    if not payload:
        return _fail(400, "No image file provided")

    filename = image.filename or "upload.jpg"
    logger.info("Conversion request %s received: %s (%d bytes)", request_id, filename, len(payload))

    # StoreUnavailable propagates to the registered 503 handler
    job = await dispatcher.submit(filename, payload, request_id=request_id)

    elapsed = int((time.monotonic() - started) * 1000)
    return {
        "success": True,
        "jobId": job.id,
        "status": job.status.value,
        "message": "Image queued for conversion",
        "processingTime": elapsed,
        "statusUrl": f"/status/{job.id}",
    }


@router.post("/convert-sync")
async def convert_sync():
    return _fail(
        410,
        "Synchronous conversion endpoint deprecated. Use POST /convert and GET /status/{jobId} instead.",
        migration={
            "step1": "POST /convert - returns jobId immediately",
            "step2": "GET /status/{jobId} - check status and get results",
        },
    )


# ---------------------------------------------------------------------------
# GET /status/{job_id}
# ---------------------------------------------------------------------------

@router.get("/status/{job_id}")
async def get_status(job_id: str):
    """Return job status, plus results or error once terminal."""
    dispatcher = _require_dispatcher()

    job = await dispatcher.get_status(job_id)
    if job is None:
        return _fail(404, "Job not found")

    response = {
        "success": True,
        "jobId": job.id,
        "status": job.status.value,
        "createdAt": job.created_at.isoformat(),
        "updatedAt": job.updated_at.isoformat(),
        "processingTime": job.processing_time,
    }
    if job.results is not None:
        response["results"] = job.results.model_dump(by_alias=True)
    if job.error is not None:
        response["error"] = job.error
    return response


@router.delete("/status/{job_id}", status_code=204)
async def delete_job(job_id: str):
    dispatcher = _require_dispatcher()
    await dispatcher.delete(job_id)
    return Response(status_code=204)
