"""Scheduling and execution runtime.

- resolver        → pure dependency resolution over a run snapshot
- run_store       → durable run state and the global queue (JSON files)
- pipeline_loader → pipeline definitions by identifier
- step_executor   → the step execution contract and its implementations
- runner          → run creation and the tick-driven control loop
- evaluator       → scenario-based evaluation of individual steps
"""

from pipeline_orchestrator.runtime.pipeline_loader import PipelineLoader
from pipeline_orchestrator.runtime.resolver import RunStateSnapshot, compute_runnable_steps
from pipeline_orchestrator.runtime.run_store import FileRunStore
from pipeline_orchestrator.runtime.runner import PipelineRunner, RunSummary
from pipeline_orchestrator.runtime.step_executor import (
    FileStepExecutor,
    RegistryStepExecutor,
    StepContext,
    StepExecutor,
)

__all__ = [
    "FileRunStore",
    "FileStepExecutor",
    "PipelineLoader",
    "PipelineRunner",
    "RegistryStepExecutor",
    "RunStateSnapshot",
    "RunSummary",
    "StepContext",
    "StepExecutor",
    "compute_runnable_steps",
]
