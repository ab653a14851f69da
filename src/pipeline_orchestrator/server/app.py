"""FastAPI app factory.

Endpoints are thin wrappers over `PipelineRunner` and its store.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pipeline_orchestrator import __version__
from pipeline_orchestrator.domain.errors import PipelineError, RecordNotFound, RunAlreadyExists
from pipeline_orchestrator.domain.models import QueueItem, RunMetadata
from pipeline_orchestrator.runtime.runner import PipelineRunner
from pipeline_orchestrator.runtime.step_executor import StepExecutor
from pipeline_orchestrator.server.config import ServerSettings
from pipeline_orchestrator.server.models import (
    ApiLogEntry,
    ApiQueueItem,
    ApiRun,
    ApiRunDetail,
    CreateRunRequest,
    TickResponse,
)
from pipeline_orchestrator.server.ticker import BackgroundTicker

logger = logging.getLogger(__name__)


def _to_api_run(metadata: RunMetadata) -> ApiRun:
    return ApiRun.model_validate(metadata.model_dump(mode="json"))


def _to_api_queue_item(item: QueueItem) -> ApiQueueItem:
    return ApiQueueItem.model_validate(item.model_dump(mode="json"))


def _status_for(error: PipelineError) -> int:
    if isinstance(error, RecordNotFound):
        return 404
    if isinstance(error, RunAlreadyExists):
        return 409
    return 422


def create_app(
    settings: ServerSettings | None = None, executor: StepExecutor | None = None
) -> FastAPI:
    settings = settings or ServerSettings()
    runner = PipelineRunner.from_settings(settings, executor=executor)
    ticker = BackgroundTicker(runner, settings.auto_tick_interval_seconds)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if settings.auto_tick_enabled:
            ticker.start()
        try:
            yield
        finally:
            if ticker.running:
                ticker.stop()

    app = FastAPI(
        title="Local Pipeline Orchestrator",
        version=__version__,
        description="REST API over the local-first pipeline runner.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    # Expose collaborators for request handlers and tests that want them.
    app.state.settings = settings
    app.state.runner = runner
    app.state.ticker = ticker

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(_: Request, exc: PipelineError) -> JSONResponse:
        status_code = _status_for(exc)
        if status_code == 422:
            logger.warning("Request failed", extra={"error": str(exc)})
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/v1/pipelines/{pipeline_id}/runs", response_model=ApiRun, status_code=201)
    def create_run(pipeline_id: str, req: CreateRunRequest) -> ApiRun:
        metadata = runner.create_run(pipeline_id, req.inputs, user_id=req.user_id)
        return _to_api_run(metadata)

    @app.get("/api/v1/runs", response_model=list[ApiRun])
    def list_runs(pipeline_id: str | None = None) -> list[ApiRun]:
        return [_to_api_run(m) for m in runner.store.list_runs(pipeline_id)]

    @app.get("/api/v1/runs/{pipeline_id}/{run_id}", response_model=ApiRunDetail)
    def get_run(pipeline_id: str, run_id: str) -> ApiRunDetail:
        summary = runner.get_run(pipeline_id, run_id)
        return ApiRunDetail(
            run=_to_api_run(summary.metadata),
            completed=summary.completed_steps,
            queued=summary.queued_steps,
            pending=summary.pending_steps,
        )

    @app.get("/api/v1/runs/{pipeline_id}/{run_id}/logs", response_model=list[ApiLogEntry])
    def get_logs(pipeline_id: str, run_id: str, step: str | None = None) -> list[ApiLogEntry]:
        store = runner.store
        store.read_metadata(pipeline_id, run_id)
        streams = [step] if step is not None else store.list_log_streams(pipeline_id, run_id)
        entries: list[ApiLogEntry] = []
        for name in streams:
            for entry in store.read_log(pipeline_id, run_id, name):
                entries.append(
                    ApiLogEntry(
                        step=name,
                        timestamp=entry.timestamp,
                        level=entry.level,
                        message=entry.message,
                        metadata=entry.metadata,
                    )
                )
        return entries

    @app.get("/api/v1/queue", response_model=list[ApiQueueItem])
    def get_queue() -> list[ApiQueueItem]:
        return [_to_api_queue_item(item) for item in runner.store.read_queue()]

    @app.post("/api/v1/tick", response_model=TickResponse)
    def tick() -> TickResponse:
        if ticker.running:
            raise HTTPException(
                status_code=409,
                detail="Background ticking is enabled; manual ticks are disabled",
            )
        item = runner.tick()
        return TickResponse(processed=_to_api_queue_item(item) if item is not None else None)

    return app
