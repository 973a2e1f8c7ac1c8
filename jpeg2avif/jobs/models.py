"""Job record data model for async conversion."""

import base64
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

# Extra edges that only exist while leases are enabled
LEASE_TRANSITIONS = {
    JobStatus.PROCESSING: {JobStatus.QUEUED},
}


class _CamelModel(BaseModel):
    """Stored and served with camelCase keys, built with snake_case names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VariantResult(_CamelModel):
    filename: str
    data: str  # base64
    size: int
    format: str = "avif"

    @model_validator(mode="after")
    def _size_matches_data(self) -> "VariantResult":
        if len(base64.b64decode(self.data)) != self.size:
            raise ValueError(f"size {self.size} does not match decoded data length for {self.filename}")
        return self

    @classmethod
    def from_bytes(cls, filename: str, payload: bytes, format: str = "avif") -> "VariantResult":
        return cls(
            filename=filename,
            data=base64.b64encode(payload).decode("ascii"),
            size=len(payload),
            format=format,
        )


class PreservedMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    has_gps: bool = Field(alias="hasGPS")
    has_timestamp: bool = Field(alias="hasTimestamp")
    dimensions: str


class ConversionResult(_CamelModel):
    thumbnail: VariantResult
    full_size: VariantResult
    original_size: int
    metadata_preserved: bool = True
    preserved_metadata: PreservedMetadata


class QueueEntry(_CamelModel):
    """What travels through the work queue: a reference, never the payload."""

    job_id: str


class JobRecord(_CamelModel):
    """Tracks the lifecycle of one conversion request."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    original_name: str
    file_size: int
    image_data: str  # base64 of the original upload
    request_id: Optional[str] = None
    processing_time: Optional[int] = None  # ms, set once terminal
    results: Optional[ConversionResult] = None
    error: Optional[str] = None
    attempts: int = 0
    lease_expires_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _outcome_matches_status(self) -> "JobRecord":
        if (self.results is not None) != (self.status == JobStatus.COMPLETED):
            raise ValueError("results must be present if and only if status is completed")
        if (self.error is not None) != (self.status == JobStatus.FAILED):
            raise ValueError("error must be present if and only if status is failed")
        return self

    def payload_bytes(self) -> bytes:
        return base64.b64decode(self.image_data)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, raw: str) -> "JobRecord":
        return cls.model_validate_json(raw)
