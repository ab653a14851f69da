"""Error taxonomy shared by the store, the step executors and the runner.

Anything raised while a step executes is recorded as a failed attempt inside
the tick, wrapped as `StepExecutionError` when it is not one already. Errors
raised before execution (unknown pipeline, missing manifest or dependency
outputs) are definition problems and propagate to the caller.
"""

from __future__ import annotations

from pathlib import Path


class PipelineError(Exception):
    """Base class for all orchestrator errors."""


class RecordNotFound(PipelineError):
    """A required persisted record does not exist."""

    def __init__(self, what: str, path: Path | None = None) -> None:
        self.what = what
        self.path = path
        location = f" ({path})" if path is not None else ""
        super().__init__(f"{what} not found{location}")


class PipelineNotFound(RecordNotFound):
    def __init__(self, pipeline_id: str, path: Path | None = None) -> None:
        self.pipeline_id = pipeline_id
        super().__init__(f"Pipeline {pipeline_id!r}", path)


class StepNotFound(RecordNotFound):
    """A step manifest, step entry module, or execution name is missing."""

    def __init__(self, step_id: str, version: str | None = None, path: Path | None = None) -> None:
        self.step_id = step_id
        self.version = version
        label = f"Step {step_id!r}" if version is None else f"Step {step_id!r} version {version!r}"
        super().__init__(label, path)


class RunAlreadyExists(PipelineError):
    def __init__(self, pipeline_id: str, run_id: str) -> None:
        self.pipeline_id = pipeline_id
        self.run_id = run_id
        super().__init__(f"Run {run_id!r} already exists for pipeline {pipeline_id!r}")


class StoreCorrupted(PipelineError):
    """A persisted record exists but cannot be decoded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        super().__init__(f"Corrupted record at {path}: {reason}")


class InvalidPipelineDefinition(PipelineError):
    pass


class InvalidManifest(PipelineError):
    pass


class MissingDependency(PipelineError):
    """Input materialisation found no output bag for a declared dependency."""

    def __init__(self, step: str, dependency: str) -> None:
        self.step = step
        self.dependency = dependency
        super().__init__(f"Missing outputs for dependency {dependency!r} of step {step!r}")


class StepExecutionError(PipelineError):
    """The step implementation raised, timed out, or could not be invoked."""

    def __init__(self, step_id: str, message: str) -> None:
        self.step_id = step_id
        self.message = message
        super().__init__(message)


class InvalidStepResult(StepExecutionError):
    """The step returned something other than a mapping with an `outputs` mapping."""
