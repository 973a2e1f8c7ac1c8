from __future__ import annotations

import base64
import json
from datetime import timedelta

import pytest
from pydantic import ValidationError

from jpeg2avif.errors import InvalidJobTransition, JobNotFound, StoreUnavailable
from jpeg2avif.jobs.models import JobRecord, JobStatus, utcnow
from jpeg2avif.jobs.queue import WorkQueue
from jpeg2avif.jobs.registry import JobRegistry
from jpeg2avif.store.memory_store import MemoryStore

from conftest import make_result


class DownStore(MemoryStore):
    async def set(self, key, value, ttl=None):
        raise StoreUnavailable("connection refused")

    async def get(self, key):
        raise StoreUnavailable("connection refused")


async def test_create_stores_queued_record(registry: JobRegistry, store: MemoryStore) -> None:
    job = await registry.create("photo.jpg", b"\xff\xd8jpeg", 6, request_id="req_1")

    assert job.status == JobStatus.QUEUED
    assert job.original_name == "photo.jpg"
    assert job.file_size == 6
    assert job.payload_bytes() == b"\xff\xd8jpeg"

    raw = json.loads(await store.get(f"test:job:{job.id}"))
    assert raw["status"] == "queued"
    assert raw["originalName"] == "photo.jpg"
    assert base64.b64decode(raw["imageData"]) == b"\xff\xd8jpeg"
    assert "results" not in raw and "error" not in raw


async def test_create_ids_are_unique(registry: JobRegistry) -> None:
    ids = {(await registry.create("a.jpg", b"x", 1)).id for _ in range(50)}
    assert len(ids) == 50


async def test_get_unknown_is_none(registry: JobRegistry) -> None:
    assert await registry.get("does-not-exist") is None


async def test_update_merges_and_refreshes_timestamp(registry: JobRegistry) -> None:
    job = await registry.create("photo.jpg", b"x", 1)
    updated = await registry.update(job.id, status=JobStatus.PROCESSING)

    assert updated.id == job.id
    assert updated.status == JobStatus.PROCESSING
    assert updated.original_name == "photo.jpg"
    assert updated.created_at == job.created_at
    assert updated.updated_at >= job.updated_at
    assert (await registry.get(job.id)).status == JobStatus.PROCESSING


async def test_update_refreshes_ttl() -> None:
    now = [0.0]
    store = MemoryStore(clock=lambda: now[0])
    registry = JobRegistry(store, key_prefix="t:", ttl_seconds=100)
    job = await registry.create("photo.jpg", b"x", 1)

    now[0] = 90
    await registry.update(job.id, status=JobStatus.PROCESSING)
    now[0] = 150
    assert await registry.get(job.id) is not None
    now[0] = 191
    assert await registry.get(job.id) is None


async def test_update_cannot_change_id(registry: JobRegistry) -> None:
    job = await registry.create("photo.jpg", b"x", 1)
    updated = await registry.update(job.id, id="something-else", status=JobStatus.PROCESSING)
    assert updated.id == job.id


async def test_update_after_delete_raises_not_found(registry: JobRegistry) -> None:
    job = await registry.create("photo.jpg", b"x", 1)
    assert await registry.get(job.id) is not None
    await registry.delete(job.id)

    with pytest.raises(JobNotFound):
        await registry.update(job.id, status=JobStatus.PROCESSING)


async def test_full_success_lifecycle(registry: JobRegistry) -> None:
    job = await registry.create("photo.jpg", b"x", 1)
    await registry.update(job.id, status=JobStatus.PROCESSING)
    done = await registry.update(job.id, status=JobStatus.COMPLETED, results=make_result(), processing_time=42)

    assert done.status == JobStatus.COMPLETED
    assert done.results is not None and done.error is None
    assert done.processing_time == 42

    reloaded = await registry.get(job.id)
    assert reloaded.results.thumbnail.size == len(base64.b64decode(reloaded.results.thumbnail.data))


async def test_queued_cannot_skip_processing(registry: JobRegistry) -> None:
    job = await registry.create("photo.jpg", b"x", 1)
    with pytest.raises(InvalidJobTransition):
        await registry.update(job.id, status=JobStatus.COMPLETED, results=make_result())
    with pytest.raises(InvalidJobTransition):
        await registry.update(job.id, status=JobStatus.FAILED, error="boom")
    assert (await registry.get(job.id)).status == JobStatus.QUEUED


async def test_terminal_records_never_change(registry: JobRegistry) -> None:
    job = await registry.create("photo.jpg", b"x", 1)
    await registry.update(job.id, status=JobStatus.PROCESSING)
    await registry.update(job.id, status=JobStatus.FAILED, error="Decode failed")

    with pytest.raises(InvalidJobTransition):
        await registry.update(job.id, status=JobStatus.PROCESSING)
    with pytest.raises(InvalidJobTransition):
        await registry.update(job.id, processing_time=1)
    assert (await registry.get(job.id)).error == "Decode failed"


async def test_results_and_error_are_mutually_exclusive(registry: JobRegistry) -> None:
    job = await registry.create("photo.jpg", b"x", 1)
    await registry.update(job.id, status=JobStatus.PROCESSING)

    with pytest.raises(ValidationError):
        await registry.update(job.id, status=JobStatus.COMPLETED)
    with pytest.raises(ValidationError):
        await registry.update(job.id, status=JobStatus.FAILED, error="x", results=make_result())
    with pytest.raises(ValidationError):
        await registry.update(job.id, error="not failed yet")
    assert (await registry.get(job.id)).status == JobStatus.PROCESSING


async def test_store_outage_surfaces_as_store_unavailable() -> None:
    registry = JobRegistry(DownStore())
    with pytest.raises(StoreUnavailable):
        await registry.create("photo.jpg", b"x", 1)
    with pytest.raises(StoreUnavailable):
        await registry.get("any")
    with pytest.raises(StoreUnavailable):
        await registry.update("any", status=JobStatus.PROCESSING)


def test_record_round_trips_through_json() -> None:
    job = JobRecord(original_name="a.jpg", file_size=1, image_data="eA==")
    again = JobRecord.from_json(job.to_json())
    assert again == job


# ── Leases ───────────────────────────────────────────────────────────


async def test_requeue_is_noop_without_leases(registry: JobRegistry, queue: WorkQueue) -> None:
    job = await registry.create("photo.jpg", b"x", 1)
    await registry.start_processing(job.id)
    assert await registry.requeue_expired(queue) == 0
    assert (await registry.get(job.id)).status == JobStatus.PROCESSING


async def test_expired_lease_is_requeued(store: MemoryStore, queue: WorkQueue) -> None:
    registry = JobRegistry(store, key_prefix="test:job:", lease_seconds=60, max_deliveries=3)
    job = await registry.create("photo.jpg", b"x", 1)
    started = await registry.start_processing(job.id)
    assert started.attempts == 1
    assert started.lease_expires_at is not None

    # Not yet expired
    assert await registry.requeue_expired(queue) == 0

    await registry.update(job.id, lease_expires_at=utcnow() - timedelta(seconds=1))
    assert await registry.requeue_expired(queue) == 1

    recovered = await registry.get(job.id)
    assert recovered.status == JobStatus.QUEUED
    assert recovered.lease_expires_at is None
    entry = await queue.pop(0.1)
    assert entry is not None and entry.job_id == job.id


async def test_expired_lease_fails_after_max_deliveries(store: MemoryStore, queue: WorkQueue) -> None:
    registry = JobRegistry(store, key_prefix="test:job:", lease_seconds=60, max_deliveries=1)
    job = await registry.create("photo.jpg", b"x", 1)
    await registry.start_processing(job.id)
    await registry.update(job.id, lease_expires_at=utcnow() - timedelta(seconds=1))

    assert await registry.requeue_expired(queue) == 1
    failed = await registry.get(job.id)
    assert failed.status == JobStatus.FAILED
    assert "Lease expired" in failed.error
    assert await queue.pop(0.05) is None


async def test_processing_cannot_go_back_to_queued_without_leases(registry: JobRegistry) -> None:
    assert not registry.leases_enabled
    job = await registry.create("photo.jpg", b"x", 1)
    await registry.update(job.id, status=JobStatus.PROCESSING)

    with pytest.raises(InvalidJobTransition):
        await registry.update(job.id, status=JobStatus.QUEUED)
    assert (await registry.get(job.id)).status == JobStatus.PROCESSING


async def test_processing_can_go_back_to_queued_with_leases(store: MemoryStore) -> None:
    registry = JobRegistry(store, key_prefix="test:job:", lease_seconds=60)
    job = await registry.create("photo.jpg", b"x", 1)
    await registry.update(job.id, status=JobStatus.PROCESSING)

    assert (await registry.update(job.id, status=JobStatus.QUEUED)).status == JobStatus.QUEUED


async def test_requeue_skips_unreadable_records(store: MemoryStore, queue: WorkQueue) -> None:
    registry = JobRegistry(store, key_prefix="test:job:", lease_seconds=60)
    await store.set("test:job:corrupt", "{not json", ttl=60)
    job = await registry.create("photo.jpg", b"x", 1)
    await registry.start_processing(job.id)
    await registry.update(job.id, lease_expires_at=utcnow() - timedelta(seconds=1))

    assert await registry.requeue_expired(queue) == 1
    assert (await registry.get(job.id)).status == JobStatus.QUEUED
