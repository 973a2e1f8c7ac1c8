"""jpeg2avif conversion service - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jpeg2avif.api.v1 import convert as convert_api
from jpeg2avif.api.v1 import health as health_api
from jpeg2avif.api.v1.router import v1_router
from jpeg2avif.config import Settings, settings as default_settings
from jpeg2avif.errors import register_error_handlers
from jpeg2avif.jobs.dispatcher import JobDispatcher
from jpeg2avif.jobs.queue import WorkQueue
from jpeg2avif.jobs.registry import JobRegistry
from jpeg2avif.jobs.supervisor import WorkerSupervisor
from jpeg2avif.jobs.worker import ConversionWorker
from jpeg2avif.logging_config import configure_logging
from jpeg2avif.processing.metadata import ExifToolMetadata, MetadataTool
from jpeg2avif.processing.pipeline import ConversionPipeline, PipelineOptions
from jpeg2avif.storage.staging import StagingArea
from jpeg2avif.store.base import DurableStore
from jpeg2avif.store.memory_store import MemoryStore
from jpeg2avif.store.redis_store import RedisStore

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> DurableStore:
    backend = settings.store_backend.lower().strip()
    if backend == "redis":
        return RedisStore.from_settings(settings)
    if backend == "memory":
        return MemoryStore()
    raise ValueError(f"Unknown store_backend '{settings.store_backend}'. Valid: ['redis', 'memory']")


@dataclass
class Runtime:
    """Everything one process needs to produce and/or consume jobs."""

    settings: Settings
    store: DurableStore
    registry: JobRegistry
    queue: WorkQueue
    dispatcher: JobDispatcher
    pipeline: ConversionPipeline
    staging: StagingArea
    supervisors: List[WorkerSupervisor] = field(default_factory=list)

    async def start_workers(self, count: int) -> None:
        for index in range(count):
            worker = ConversionWorker(
                registry=self.registry,
                queue=self.queue,
                pipeline=self.pipeline,
                pop_timeout=self.settings.queue_pop_timeout_seconds,
                name=f"worker-{index}",
                logger=logging.getLogger(f"jpeg2avif.worker.{index}"),
            )
            supervisor = WorkerSupervisor(worker, restart_backoff=self.settings.worker_restart_backoff_seconds)
            await supervisor.start()
            self.supervisors.append(supervisor)
        if count:
            logger.info("Started %d conversion worker(s)", count)

    async def shutdown(self) -> None:
        for supervisor in self.supervisors:
            await supervisor.stop()
        self.supervisors.clear()
        self.staging.cleanup_expired()
        await self.store.close()


def build_runtime(
    settings: Settings,
    store: Optional[DurableStore] = None,
    metadata_tool: Optional[MetadataTool] = None,
    staging: Optional[StagingArea] = None,
) -> Runtime:
    store = store or build_store(settings)
    staging = staging or StagingArea(settings.staging_dir, ttl_hours=settings.staging_ttl_hours)
    registry = JobRegistry(
        store,
        key_prefix=settings.job_key_prefix,
        ttl_seconds=settings.job_ttl_seconds,
        lease_seconds=settings.lease_seconds,
        max_deliveries=settings.max_deliveries,
    )
    queue = WorkQueue(store, key=settings.queue_key)
    pipeline = ConversionPipeline(
        metadata_tool=metadata_tool or ExifToolMetadata(settings.exiftool_path),
        staging=staging,
        options=PipelineOptions.from_settings(settings),
        logger=logging.getLogger("jpeg2avif.pipeline"),
    )
    return Runtime(
        settings=settings,
        store=store,
        registry=registry,
        queue=queue,
        dispatcher=JobDispatcher(registry, queue),
        pipeline=pipeline,
        staging=staging,
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DurableStore] = None,
    metadata_tool: Optional[MetadataTool] = None,
    staging: Optional[StagingArea] = None,
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        configure_logging(settings.log_level)
        logger.info("Starting jpeg2avif service on port %s (store: %s)", settings.port, settings.store_backend)

        runtime = build_runtime(settings, store=store, metadata_tool=metadata_tool, staging=staging)
        runtime.staging.cleanup_expired()
        if not await runtime.store.ping():
            logger.warning("Durable store not reachable at startup; requests will get 503 until it is")

        await runtime.start_workers(settings.worker_count)
        app.state.runtime = runtime

        convert_api.set_dispatcher(runtime.dispatcher, max_upload_bytes=settings.max_upload_bytes)
        health_api.set_runtime(runtime.store, runtime.supervisors)

        yield

        logger.info("Shutting down jpeg2avif service")
        convert_api.set_dispatcher(None)
        health_api.set_runtime(None)
        await runtime.shutdown()

    app = FastAPI(
        title="jpeg2avif",
        description="Non-blocking JPEG to AVIF conversion with provenance metadata",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(v1_router)
    return app
