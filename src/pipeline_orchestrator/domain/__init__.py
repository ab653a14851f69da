"""Shared domain types.

- Pipeline definitions and input bindings
- Run metadata and queue items
- Step manifests and step results
- The run status state machine
"""

from pipeline_orchestrator.domain.models import (
    InputBinding,
    PipelineDefinition,
    PipelineInputBinding,
    QueueItem,
    RunMetadata,
    StepConfig,
    StepInputBinding,
    StepManifest,
    StepResult,
)
from pipeline_orchestrator.domain.state_machine import RunStatus

__all__ = [
    "InputBinding",
    "PipelineDefinition",
    "PipelineInputBinding",
    "QueueItem",
    "RunMetadata",
    "RunStatus",
    "StepConfig",
    "StepInputBinding",
    "StepManifest",
    "StepResult",
]
