"""REST API over the timeline store.

Read-only views of batches, observations and cards, plus a trigger to
reprocess a batch:

    GET  /health                      -> {"status": "ok", ...}
    GET  /batches?status=failed       -> [Batch, ...]
    GET  /batches/{id}                -> Batch
    POST /batches/{id}/reprocess      -> ProcessedBatchResult
    GET  /timeline?start=&end=        -> [TimelineCard, ...]
    GET  /observations?start=&end=    -> [Observation, ...]

Omitted ranges default to the last 24 hours. When given an analysis loop,
the app runs it in the background for as long as it is served, so API
reprocessing and background processing go through one orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from daytrace import __version__
from daytrace.domain.models import Batch, BatchStatus, Observation, ProcessedBatchResult, TimelineCard
from daytrace.errors import BatchBusyError, BatchNotFoundError
from daytrace.pipeline.orchestrator import BatchProcessor
from daytrace.pipeline.runner import AnalysisLoop
from daytrace.storage.database import TimelineStore

logger = logging.getLogger(__name__)

DEFAULT_RANGE_SECONDS = 24 * 3600


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = __version__
    pending_batches: int = 0
    failed_batches: int = 0


def _resolve_range(start: int | None, end: int | None) -> tuple[int, int]:
    end = int(time.time()) if end is None else end
    start = end - DEFAULT_RANGE_SECONDS if start is None else start
    if start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    return start, end


def create_app(
    store: TimelineStore,
    processor: BatchProcessor | None = None,
    analysis_loop: AnalysisLoop | None = None,
) -> FastAPI:
    """Create the API application.

    Args:
        store: Open timeline store shared with the analysis loop.
        processor: Orchestrator used by the reprocess endpoint. Without
            one, reprocess requests are rejected with 503.
        analysis_loop: Loop run for the lifetime of the app. It should be
            built on ``processor`` so API reprocessing and background
            processing share the same batch locks.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Startup
        loop = app.state.analysis_loop
        if loop is not None:
            app.state.loop_task = asyncio.create_task(loop.run())
            logger.info("Analysis loop started with the API")
        yield
        # Shutdown
        if loop is not None:
            loop.stop()
            await app.state.loop_task
        logger.info("API stopped")

    app = FastAPI(
        title="daytrace",
        description="Activity timeline built from screen captures",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.processor = processor
    app.state.analysis_loop = analysis_loop

    @app.get("/health")
    async def health_check() -> HealthResponse:
        return HealthResponse(
            pending_batches=len(store.list_batches(BatchStatus.PENDING)),
            failed_batches=len(store.list_batches(BatchStatus.FAILED)),
        )

    @app.get("/batches")
    async def list_batches(status: BatchStatus | None = None, limit: int | None = None) -> list[Batch]:
        return store.list_batches(status, limit)

    @app.get("/batches/{batch_id}")
    async def get_batch(batch_id: int) -> Batch:
        try:
            return store.get_batch(batch_id)
        except BatchNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    @app.post("/batches/{batch_id}/reprocess")
    async def reprocess_batch(batch_id: int) -> ProcessedBatchResult:
        if app.state.processor is None:
            raise HTTPException(status_code=503, detail="Batch processing is not enabled")
        if app.state.processor.is_busy(batch_id):
            raise HTTPException(status_code=409, detail=f"Batch {batch_id} is already being processed")
        try:
            result = await app.state.processor.reprocess_batch(batch_id)
        except BatchNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except BatchBusyError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        logger.info("Reprocess of batch %d via API: %s", batch_id, result.status.value)
        return result

    @app.get("/timeline")
    async def timeline(start: int | None = None, end: int | None = None) -> list[TimelineCard]:
        start, end = _resolve_range(start, end)
        return store.cards_in_range(start, end)

    @app.get("/observations")
    async def observations(start: int | None = None, end: int | None = None) -> list[Observation]:
        start, end = _resolve_range(start, end)
        return store.observations_in_range(start, end)

    return app


def run_server(app: FastAPI, host: str = "127.0.0.1", port: int = 8765) -> None:
    """Serve ``app`` with uvicorn until interrupted."""
    logger.info("Serving API on http://%s:%d", host, port)
    uvicorn.run(app, host=host, port=port)
