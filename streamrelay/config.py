"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Service
    port: int = 3000
    service_name: str = "stream-relay"
    log_level: str = "INFO"

    # Retry policy
    max_attempts: int = 3
    backoff_base_ms: int = 1000
    backoff_max_ms: int = 10000

    # Timeouts (seconds)
    probe_timeout_s: float = 15.0
    source_read_timeout_s: float = 60.0
    connect_timeout_s: float = 30.0
    upload_timeout_s: float = 600.0

    # Streaming
    chunk_size_bytes: int = 64 * 1024
    default_content_type: str = "video/webm"
    follow_source_redirects: bool = True

    # Job retention
    job_retention_max: int = 100
    eviction_interval_s: float = 60.0
    shutdown_grace_s: float = 30.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
