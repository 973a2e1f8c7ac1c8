from __future__ import annotations

import io
import os
import shutil
import time
from pathlib import Path

import pytest
from PIL import Image, features

from jpeg2avif.jobs.models import ConversionResult, PreservedMetadata, VariantResult
from jpeg2avif.jobs.queue import WorkQueue
from jpeg2avif.jobs.registry import JobRegistry
from jpeg2avif.processing.metadata import MetadataTool, MetadataToolError
from jpeg2avif.storage.staging import StagingArea
from jpeg2avif.store.memory_store import MemoryStore

requires_avif = pytest.mark.skipif(not features.check("avif"), reason="Pillow built without AVIF support")
requires_exiftool = pytest.mark.skipif(shutil.which("exiftool") is None, reason="exiftool not installed")

GPS_TAGS = {
    "GPSLatitude": 37.775,
    "GPSLatitudeRef": "N",
    "GPSLongitude": 122.4194,
    "GPSLongitudeRef": "W",
}


def make_jpeg(
    width: int = 640,
    height: int = 480,
    *,
    gps: bool = False,
    timestamp: bool = False,
    camera: bool = False,
    color: tuple[int, int, int] = (200, 100, 50),
) -> bytes:
    image = Image.new("RGB", (width, height), color)
    exif = Image.Exif()
    if camera:
        exif[0x010F] = "TestCam"  # Make
        exif[0x0110] = "Model X"  # Model
        exif[0x0131] = "EditorSoft 2.0"  # Software
        exif[0x013B] = "Jane Doe"  # Artist
    if timestamp:
        exif[0x0132] = "2024:05:01 09:00:00"  # DateTime (ModifyDate)
        exif.get_ifd(0x8769)[0x9003] = "2024:05:01 08:30:00"  # DateTimeOriginal
    if gps:
        gps_ifd = exif.get_ifd(0x8825)
        gps_ifd[1] = "N"
        gps_ifd[2] = (37.0, 46.0, 30.0)
        gps_ifd[3] = "W"
        gps_ifd[4] = (122.0, 25.0, 10.0)

    buf = io.BytesIO()
    if camera or timestamp or gps:
        image.save(buf, format="JPEG", quality=90, exif=exif.tobytes())
    else:
        image.save(buf, format="JPEG", quality=90)
    return buf.getvalue()


def make_result(original_size: int = 1234, *, has_gps: bool = False) -> ConversionResult:
    return ConversionResult(
        thumbnail=VariantResult.from_bytes("photo_thumb.avif", b"thumb-bytes"),
        full_size=VariantResult.from_bytes("photo.avif", b"full-size-bytes"),
        original_size=original_size,
        preserved_metadata=PreservedMetadata(has_gps=has_gps, has_timestamp=True, dimensions="640x480"),
    )


class FakeMetadataTool(MetadataTool):
    """Returns canned tags and records writes instead of running exiftool."""

    def __init__(
        self,
        tags: dict | None = None,
        *,
        fail_read: bool = False,
        fail_write: bool = False,
        read_delay: float = 0.0,
    ):
        self.tags = dict(tags or {})
        self.fail_read = fail_read
        self.fail_write = fail_write
        self.read_delay = read_delay
        self.reads: list[str] = []
        self.writes: list[tuple[str, dict]] = []

    def read(self, path: str) -> dict:
        assert os.path.exists(path), "original must be staged before reading"
        self.reads.append(path)
        if self.read_delay:
            time.sleep(self.read_delay)
        if self.fail_read:
            raise MetadataToolError("corrupt EXIF segment")
        return dict(self.tags)

    def write(self, path: str, tags: dict) -> None:
        assert os.path.exists(path), "variant must be staged before writing"
        if self.fail_write:
            raise MetadataToolError("file format not writable")
        self.writes.append((os.path.basename(path), dict(tags)))


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def registry(store: MemoryStore) -> JobRegistry:
    return JobRegistry(store, key_prefix="test:job:", ttl_seconds=86400)


@pytest.fixture
def queue(store: MemoryStore) -> WorkQueue:
    return WorkQueue(store, key="test:queue")


@pytest.fixture
def staging(tmp_path: Path) -> StagingArea:
    return StagingArea(str(tmp_path / "staging"))
