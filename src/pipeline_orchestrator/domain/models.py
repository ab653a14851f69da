"""Persisted records for pipelines, runs and the execution queue.

On disk every record uses camelCase keys (`runId`, `pipelineId`, `stepId`, ...)
so run directories stay readable by other tooling; Python code uses the
snake_case attributes. Use `to_json()` when writing.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pipeline_orchestrator.domain.state_machine import RunStatus


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class _FrozenRecord(_Record):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class PipelineInputBinding(_FrozenRecord):
    """Input read from the run's top-level input bag."""

    source: Literal["pipeline"] = "pipeline"
    key: str


class StepInputBinding(_FrozenRecord):
    """Input read from a named output of another step's execution name."""

    source: Literal["step"] = "step"
    step_id: str = Field(alias="stepId")
    key: str | None = None
    output: str | None = None

    def resolved_output(self, local_name: str) -> str:
        """Output key to read from the dependency's output bag."""

        return self.output or local_name


InputBinding = Annotated[PipelineInputBinding | StepInputBinding, Field(discriminator="source")]


class StepConfig(_FrozenRecord):
    step_id: str = Field(alias="stepId")
    version: str
    alias: str | None = None
    inputs: dict[str, InputBinding] = Field(default_factory=dict)

    @property
    def execution_name(self) -> str:
        """Name used for dependency tracking: the alias if given, else the step id."""

        return self.alias or self.step_id


class PipelineDefinition(_FrozenRecord):
    id: str
    name: str
    description: str | None = None
    steps: list[StepConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_execution_names(self) -> PipelineDefinition:
        # Execution names become record file names under the run directory.
        seen: set[str] = set()
        for name in self.execution_names():
            if not name or name.startswith(".") or "/" in name or "\\" in name:
                raise ValueError(f"Invalid execution name {name!r}")
            if name in seen:
                raise ValueError(f"Duplicate execution name {name!r}")
            seen.add(name)
        return self

    def execution_names(self) -> list[str]:
        return [step.execution_name for step in self.steps]


class RunMetadata(_Record):
    run_id: str = Field(alias="runId")
    pipeline_id: str = Field(alias="pipelineId")
    created_at: str = Field(alias="createdAt")
    user_id: str | None = Field(default=None, alias="userId")
    status: RunStatus = RunStatus.PENDING
    notes: str | None = None


class QueueItem(_FrozenRecord):
    """A durable "this step, in this run, is eligible to execute" record.

    `step_id` is the execution name. `attempt` counts previous failed executions.
    """

    pipeline_id: str = Field(alias="pipelineId")
    run_id: str = Field(alias="runId")
    step_id: str = Field(alias="stepId")
    attempt: int = Field(default=0, ge=0)

    def belongs_to(self, pipeline_id: str, run_id: str) -> bool:
        return self.pipeline_id == pipeline_id and self.run_id == run_id


class DeadLetterEntry(_Record):
    item: QueueItem
    error: str
    failed_at: str = Field(alias="failedAt")


LogLevel = Literal["debug", "info", "warn", "error"]


class LogEntry(_Record):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    timestamp: str
    level: LogLevel = "info"
    message: str
    metadata: dict[str, Any] | None = None


class ToolManifest(_FrozenRecord):
    name: str
    description: str | None = None
    parameters: dict[str, Any] | None = None
    module: str


class StepManifest(_FrozenRecord):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    id: str
    version: str
    name: str
    description: str | None = None
    entry: str = "step.py"
    inputs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)
    tools: list[ToolManifest] = Field(default_factory=list)


class StepLogRecord(BaseModel):
    level: LogLevel = "info"
    message: str
    metadata: dict[str, Any] | None = None


class StepResult(BaseModel):
    """What a step returns: an `outputs` bag plus optional structured logs."""

    outputs: dict[str, Any]
    logs: list[StepLogRecord] = Field(default_factory=list)
