"""Batch document processing service - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docbatch.config import Settings, settings
from docbatch.logging_config import configure_logging
from docbatch.api.v1.router import v1_router
from docbatch.api.v1.health import router as health_root_router
from docbatch.api.v1 import batch as batch_api
from docbatch.api.v1 import health as health_api
from docbatch.jobs.manager import TaskQueueManager
from docbatch.jobs.store import InMemoryTaskStore
from docbatch.jobs.worker_pool import WorkerPool
from docbatch.processing.processor import DocumentPipeline, FileProcessor
from docbatch.storage.uploads import UploadStore

logger = logging.getLogger(__name__)


def create_app(
    processor: Optional[FileProcessor] = None,
    app_settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the app. The worker pool and task manager live for the lifespan."""
    cfg = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(cfg.log_level)
        logger.info("Starting batch document service on port %d", cfg.port)
        logger.info(
            "Worker slots: %d, job timeout: %gs, upload dir: %s",
            cfg.max_concurrent_jobs, cfg.job_timeout_seconds, cfg.upload_dir,
        )

        pool = WorkerPool(
            processor or DocumentPipeline(),
            size=cfg.max_concurrent_jobs,
            job_timeout=cfg.job_timeout_seconds,
        )
        manager = TaskQueueManager(
            InMemoryTaskStore(),
            pool,
            max_files_per_task=cfg.max_files_per_task,
            max_total_size_bytes=cfg.max_total_size_bytes,
            max_retries=cfg.max_retries,
        )
        uploads = UploadStore(cfg.upload_dir, ttl_hours=cfg.task_result_ttl_hours)
        await pool.start()

        # Wire the queue into API endpoints
        batch_api.set_manager(manager)
        batch_api.set_upload_store(uploads)
        batch_api.set_settings(cfg)
        health_api.set_dispatcher(pool)

        yield

        logger.info("Shutting down batch document service")
        batch_api.set_manager(None)
        batch_api.set_upload_store(None)
        health_api.set_dispatcher(None)
        await pool.stop()
        uploads.cleanup_expired()

    app = FastAPI(
        title="Batch Document Service",
        description="Batch parsing, translation and manual generation for uploaded documents",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints
    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run("docbatch.main:app", host="0.0.0.0", port=settings.port)
