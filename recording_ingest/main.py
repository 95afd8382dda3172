"""Service entry point for recording ingestion.

Wires the pipeline and serves a FastAPI app under uvicorn:
``POST /recordings`` accepts a job descriptor from the call-completion
webhook layer and ``GET /healthz`` reports queue depth and breaker state.
The worker pool lives in the app lifespan; on SIGTERM uvicorn runs the
lifespan shutdown, which drains the queue for a bounded time.
"""

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from recording_ingest.config import IngestConfig
from recording_ingest.observability.logger import setup_logging
from recording_ingest.pipeline import IngestionPipeline
from recording_ingest.queue.scheduler import IngestionScheduler
from recording_ingest.recording.downloader import Downloader
from recording_ingest.recording.uploader import Uploader
from recording_ingest.storage.call_store import CallRecordStore
from recording_ingest.storage.object_store import ObjectStore
from recording_ingest.utils.circuit_breaker import CircuitBreaker
from recording_ingest.utils.errors import SchedulerBusyError
from recording_ingest.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Time allowed for queued runs to finish before workers are cancelled
SHUTDOWN_TIMEOUT_SECONDS = 25
MAX_REQUEST_BODY_BYTES = 64 * 1024

CloseFn = Callable[[], Awaitable[None]]


def create_app(
    scheduler: IngestionScheduler,
    breakers: list[CircuitBreaker],
    on_shutdown: list[CloseFn] | None = None,
) -> FastAPI:
    """Build the intake/health app bound to a scheduler.

    Args:
        scheduler: Worker pool that receives accepted jobs.
        breakers: Breakers reported by the health endpoint.
        on_shutdown: Coroutine functions awaited after the workers stop,
            e.g. HTTP client ``close`` methods.

    Returns:
        FastAPI application whose lifespan starts and drains the scheduler.
    """
    closers = list(on_shutdown or [])

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await scheduler.start()
        yield
        try:
            await asyncio.wait_for(scheduler.join(), timeout=SHUTDOWN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(
                "Shutdown timeout (%ds) reached with %d recordings unfinished",
                SHUTDOWN_TIMEOUT_SECONDS,
                scheduler.in_flight,
            )
        await scheduler.stop()
        for close in closers:
            await close()

    app = FastAPI(title="Recording Ingestion Service", lifespan=lifespan)

    @app.get("/")
    @app.get("/healthz")
    async def health() -> dict[str, Any]:
        """Queue depth and breaker state."""
        return {
            "status": "ok",
            "pending": scheduler.pending,
            "in_flight": scheduler.in_flight,
            "breakers": {
                breaker.name: breaker.snapshot().as_dict() for breaker in breakers
            },
        }

    @app.post("/recordings", status_code=202)
    async def create_recording(request: Request) -> JSONResponse:
        """Queue a recording for ingestion and answer without waiting for it."""
        body = await request.body()
        if len(body) > MAX_REQUEST_BODY_BYTES:
            raise HTTPException(status_code=413, detail="Request body too large")
        try:
            payload = json.loads(body or b"null")
            outcome = scheduler.enqueue(payload)
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError too
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except SchedulerBusyError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        status_code = 202 if outcome["queued"] else 409
        return JSONResponse(outcome, status_code=status_code)

    return app


def build_server(app: FastAPI, port: int) -> uvicorn.Server:
    """Configure uvicorn for the intake app.

    Logging is left to the root JSON handler installed by setup_logging().
    """
    config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        http="h11",
        log_config=None,
        timeout_graceful_shutdown=SHUTDOWN_TIMEOUT_SECONDS,
    )
    return uvicorn.Server(config)


def build_scheduler(
    config: IngestConfig,
) -> tuple[IngestionScheduler, CircuitBreaker, Downloader, CallRecordStore]:
    """Wire the pipeline collaborators from config and environment."""
    storage_breaker = CircuitBreaker(
        "storage",
        failure_threshold=config.breaker_failure_threshold,
        cooldown_seconds=config.breaker_cooldown_seconds,
    )
    downloader = Downloader(
        policy=RetryPolicy(
            max_attempts=config.max_download_attempts,
            base_delay=config.retry_base_delay_seconds,
        ),
        timeout_seconds=config.download_timeout_seconds,
        max_size_bytes=config.max_recording_size_bytes,
        user_agent=config.user_agent,
    )
    call_store = CallRecordStore()
    pipeline = IngestionPipeline(
        downloader=downloader,
        uploader=Uploader(ObjectStore(), storage_breaker),
        call_store=call_store,
        max_size_bytes=config.max_recording_size_bytes,
    )
    scheduler = IngestionScheduler(
        pipeline,
        max_concurrency=config.max_concurrency,
        max_backlog=config.max_backlog,
    )
    return scheduler, storage_breaker, downloader, call_store


def main() -> None:
    """Start the recording ingestion service."""
    config = IngestConfig.from_env()
    setup_logging(config.log_level)
    logger.info("Recording ingestion service starting")

    scheduler, storage_breaker, downloader, call_store = build_scheduler(config)
    app = create_app(
        scheduler,
        [storage_breaker],
        on_shutdown=[downloader.close, call_store.close],
    )
    port = int(os.environ.get("PORT", "8080"))
    build_server(app, port).run()


if __name__ == "__main__":
    main()
