"""Per-job conversion pipeline: JPEG in, two AVIF variants with provenance out.

Stages:
1. Read provenance metadata from a staged copy of the original
2. Decode the original (Pillow)
3. Encode thumbnail and full-size variants concurrently
4. Write the minimal provenance tag set into each staged variant
5. Assemble the result
6. Remove the staging directory, whatever happened above

Every stage has its own time bound and any failure aborts the job; there is
no partial output. Stages run in threads via ``asyncio.to_thread``. A thread
cannot be interrupted, so a stage that times out is reported as failed
immediately but its codec call may keep running in the background until it
returns.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, TypeVar

from jpeg2avif.errors import MetadataExtractionFailed, MetadataWriteFailed, StageTimeout
from jpeg2avif.jobs.models import ConversionResult, PreservedMetadata, VariantResult
from jpeg2avif.processing import codec
from jpeg2avif.processing.metadata import (
    MetadataTool,
    MetadataToolError,
    extract_provenance,
    preserved_tags,
)
from jpeg2avif.storage.staging import StagingArea

T = TypeVar("T")


@dataclass(frozen=True)
class PipelineOptions:
    thumbnail_max_dimension: int = 200
    thumbnail_quality: int = 80
    full_size_quality: int = 85
    avif_speed: int = 6
    decode_timeout: float = 30.0
    thumbnail_timeout: float = 30.0
    full_size_timeout: float = 60.0
    metadata_read_timeout: float = 10.0
    metadata_write_timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings) -> "PipelineOptions":
        return cls(
            thumbnail_max_dimension=settings.thumbnail_max_dimension,
            thumbnail_quality=settings.thumbnail_quality,
            full_size_quality=settings.full_size_quality,
            avif_speed=settings.avif_speed,
            decode_timeout=settings.decode_timeout_seconds,
            thumbnail_timeout=settings.thumbnail_timeout_seconds,
            full_size_timeout=settings.full_size_timeout_seconds,
            metadata_read_timeout=settings.metadata_read_timeout_seconds,
            metadata_write_timeout=settings.metadata_write_timeout_seconds,
        )


async def _bounded(awaitable: Awaitable[T], timeout: float, stage: str) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise StageTimeout(stage, timeout) from exc


async def _gather_or_cancel(*awaitables: Awaitable[Any]) -> list:
    """Like gather, but the first failure cancels the siblings."""
    tasks = [asyncio.ensure_future(aw) for aw in awaitables]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _write_file(path: str, payload: bytes) -> None:
    with open(path, "wb") as fh:
        fh.write(payload)


def _read_file(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()


class ConversionPipeline:
    """Converts one original image into thumbnail and full-size AVIF variants."""

    def __init__(
        self,
        metadata_tool: MetadataTool,
        staging: StagingArea,
        options: Optional[PipelineOptions] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._metadata = metadata_tool
        self._staging = staging
        self._options = options or PipelineOptions()
        self._log = logger or logging.getLogger(__name__)

    async def run(self, job_id: str, payload: bytes, original_name: str) -> ConversionResult:
        opts = self._options
        stem = os.path.splitext(os.path.basename(original_name))[0] or "image"

        with self._staging.job_dir(job_id) as work_dir:
            original_path = os.path.join(work_dir, f"{job_id}_original.jpg")
            thumb_path = os.path.join(work_dir, f"{job_id}_{stem}_thumb.avif")
            full_path = os.path.join(work_dir, f"{job_id}_{stem}.avif")

            # 1. Provenance
            await asyncio.to_thread(_write_file, original_path, payload)
            try:
                raw_tags = await _bounded(
                    asyncio.to_thread(self._metadata.read, original_path),
                    opts.metadata_read_timeout,
                    "Metadata extraction",
                )
            except MetadataToolError as exc:
                raise MetadataExtractionFailed(f"Metadata extraction failed: {exc}") from exc
            provenance = extract_provenance(raw_tags)

            # 2. Decode
            decoded = await _bounded(
                asyncio.to_thread(codec.decode_image, payload),
                opts.decode_timeout,
                "Decode",
            )
            self._log.debug(
                "Job %s decoded %s %dx%d (camera: %s %s)",
                job_id, decoded.format, decoded.width, decoded.height,
                provenance.make or "-", provenance.model or "-",
            )

            # 3. Variants, concurrently; either failing fails the job
            thumb_bytes, full_bytes = await _gather_or_cancel(
                _bounded(
                    asyncio.to_thread(
                        codec.render_thumbnail,
                        decoded.image,
                        opts.thumbnail_max_dimension,
                        opts.thumbnail_quality,
                        opts.avif_speed,
                    ),
                    opts.thumbnail_timeout,
                    "Thumbnail conversion",
                ),
                _bounded(
                    asyncio.to_thread(
                        codec.encode_avif,
                        decoded.image,
                        opts.full_size_quality,
                        opts.avif_speed,
                    ),
                    opts.full_size_timeout,
                    "Full-size conversion",
                ),
            )

            # 4. Provenance re-attachment
            tags = preserved_tags(provenance, decoded.width, decoded.height)
            await asyncio.to_thread(_write_file, thumb_path, thumb_bytes)
            await asyncio.to_thread(_write_file, full_path, full_bytes)
            await self._write_tags(thumb_path, tags, "Thumbnail metadata copy")
            await self._write_tags(full_path, tags, "Full-size metadata copy")

            final_thumb = await asyncio.to_thread(_read_file, thumb_path)
            final_full = await asyncio.to_thread(_read_file, full_path)

        # 5. Assembly
        return ConversionResult(
            thumbnail=VariantResult.from_bytes(f"{stem}_thumb.avif", final_thumb),
            full_size=VariantResult.from_bytes(f"{stem}.avif", final_full),
            original_size=len(payload),
            metadata_preserved=True,
            preserved_metadata=PreservedMetadata(
                has_gps=provenance.has_gps,
                has_timestamp=provenance.has_timestamp,
                dimensions=f"{decoded.width}x{decoded.height}",
            ),
        )

    async def _write_tags(self, path: str, tags: dict[str, Any], stage: str) -> None:
        try:
            await _bounded(
                asyncio.to_thread(self._metadata.write, path, tags),
                self._options.metadata_write_timeout,
                stage,
            )
        except MetadataToolError as exc:
            raise MetadataWriteFailed(f"{stage} failed: {exc}") from exc
