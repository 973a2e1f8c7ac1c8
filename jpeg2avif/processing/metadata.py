"""Provenance metadata: what is read from the original and what is carried forward.

Reading and writing go through a ``MetadataTool`` operating on files in the
staging area. The production tool drives exiftool (via PyExifTool), which can
rewrite the EXIF block of an AVIF container without re-encoding pixels.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import exiftool
from exiftool.exceptions import ExifToolException

# First match wins
TIMESTAMP_TAGS = ("DateTimeOriginal", "ModifyDate", "CreateDate")
GPS_TAGS = ("GPSLatitude", "GPSLongitude", "GPSLatitudeRef", "GPSLongitudeRef")


class MetadataToolError(Exception):
    """The metadata tool could not read or write a file."""


class MetadataTool(ABC):
    """Reads and writes EXIF tags of files on disk.

    Tag names are bare exiftool names (``DateTimeOriginal``, ``GPSLatitude``).
    Numeric values are plain numbers: GPS coordinates are unsigned decimal
    degrees with the hemisphere in the matching ``Ref`` tag.
    """

    @abstractmethod
    def read(self, path: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def write(self, path: str, tags: Dict[str, Any]) -> None:
        """Replace all metadata in *path* with exactly *tags*."""
        ...


class ExifToolMetadata(MetadataTool):
    """MetadataTool backed by the exiftool executable."""

    def __init__(self, executable: str = "exiftool"):
        self._executable = executable

    def _helper(self) -> exiftool.ExifToolHelper:
        # -G: group-prefixed keys so EXIF can be told apart from Composite/File
        # -n: numeric values in and out
        return exiftool.ExifToolHelper(executable=self._executable, common_args=["-G", "-n"])

    def read(self, path: str) -> Dict[str, Any]:
        try:
            with self._helper() as et:
                records = et.get_metadata(path)
        except (ExifToolException, OSError, ValueError) as exc:
            raise MetadataToolError(str(exc)) from exc
        if not records:
            raise MetadataToolError(f"exiftool returned nothing for {path}")
        return {
            key.split(":", 1)[1]: value
            for key, value in records[0].items()
            if key.startswith("EXIF:")
        }

    def write(self, path: str, tags: Dict[str, Any]) -> None:
        # -all= runs before the assignments, so only *tags* survive
        args = ["-overwrite_original", "-all="]
        args.extend(f"-EXIF:{name}={value}" for name, value in tags.items())
        args.append(path)
        try:
            with self._helper() as et:
                et.execute(*args)
        except (ExifToolException, OSError, ValueError) as exc:
            raise MetadataToolError(str(exc)) from exc


@dataclass(frozen=True)
class Provenance:
    """The subset of original metadata the pipeline cares about."""

    timestamp: Optional[Tuple[str, str]] = None  # (tag name, value)
    gps: Optional[Dict[str, Any]] = None
    make: Optional[str] = None
    model: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def has_gps(self) -> bool:
        return self.gps is not None

    @property
    def has_timestamp(self) -> bool:
        return self.timestamp is not None


def _present(value: Any) -> bool:
    return value is not None and value != ""


def extract_provenance(tags: Dict[str, Any]) -> Provenance:
    timestamp = None
    for name in TIMESTAMP_TAGS:
        if _present(tags.get(name)):
            timestamp = (name, str(tags[name]))
            break

    gps = None
    if _present(tags.get("GPSLatitude")) and _present(tags.get("GPSLongitude")):
        gps = {name: tags[name] for name in GPS_TAGS if _present(tags.get(name))}

    return Provenance(
        timestamp=timestamp,
        gps=gps,
        make=tags.get("Make"),
        model=tags.get("Model"),
        width=tags.get("ImageWidth") or tags.get("ExifImageWidth"),
        height=tags.get("ImageHeight") or tags.get("ExifImageHeight"),
    )


def preserved_tags(provenance: Provenance, width: int, height: int) -> Dict[str, Any]:
    """Build the minimal tag set written into every variant.

    Dimensions come from the decoded image, never from the original tags.
    """
    tags: Dict[str, Any] = {"ImageWidth": width, "ImageHeight": height}
    if provenance.timestamp is not None:
        name, value = provenance.timestamp
        tags[name] = value
    if provenance.gps is not None:
        tags.update(provenance.gps)
    return tags
