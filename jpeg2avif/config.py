"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # HTTP
    port: int = 3000
    cors_origins: list[str] = ["*"]
    max_upload_bytes: int = 50 * 1024 * 1024

    # Logging
    log_level: str = "INFO"

    # Durable store
    store_backend: str = "redis"  # "redis" or "memory"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    redis_connect_timeout: float = 10.0

    # Job records and queue
    job_key_prefix: str = "jpeg2avif:job:"
    queue_key: str = "jpeg2avif:queue"
    job_ttl_seconds: int = 86400

    # Worker
    worker_count: int = 1
    queue_pop_timeout_seconds: float = 30.0
    worker_restart_backoff_seconds: float = 5.0

    # Leases (0 disables; a crashed job then stays in "processing")
    lease_seconds: int = 0
    max_deliveries: int = 3

    # Conversion
    thumbnail_max_dimension: int = 200
    thumbnail_quality: int = 80
    full_size_quality: int = 85
    avif_speed: int = 6
    decode_timeout_seconds: float = 30.0
    thumbnail_timeout_seconds: float = 30.0
    full_size_timeout_seconds: float = 60.0
    metadata_read_timeout_seconds: float = 10.0
    metadata_write_timeout_seconds: float = 10.0
    exiftool_path: str = "exiftool"

    # Staging area for the metadata tool
    staging_dir: Optional[str] = None
    staging_ttl_hours: int = 2

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
