"""Application configuration via environment variables."""

import os
import tempfile

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Worker pool
    max_concurrent_jobs: int = 4
    job_timeout_seconds: float = 300.0

    # Task limits
    max_files_per_task: int = 50
    max_total_size_bytes: int = 1024 * 1024 * 1024  # 1 GB per batch
    max_upload_bytes: int = 100 * 1024 * 1024  # 100 MB per file
    max_retries: int = 3

    # Storage
    upload_dir: str = os.path.join(tempfile.gettempdir(), "docbatch_uploads")
    task_result_ttl_hours: int = 24

    # Service
    port: int = 8000
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "DOCBATCH_"}


settings = Settings()
