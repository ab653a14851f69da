"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CreateRunRequest(BaseModel):
    inputs: dict[str, Any] = Field(default_factory=dict)
    user_id: str | None = None


class ApiRun(BaseModel):
    run_id: str
    pipeline_id: str
    created_at: str
    status: str
    user_id: str | None = None
    notes: str | None = None


class ApiRunDetail(BaseModel):
    run: ApiRun
    completed: list[str]
    queued: list[str]
    pending: list[str]


class ApiLogEntry(BaseModel):
    step: str
    timestamp: str
    level: str
    message: str
    metadata: dict[str, Any] | None = None


class ApiQueueItem(BaseModel):
    pipeline_id: str
    run_id: str
    step_id: str
    attempt: int = 0


class TickResponse(BaseModel):
    processed: ApiQueueItem | None = None
