"""Dependency resolution: which steps of a run may execute next.

This module is intentionally pure. It never reads the store and never mutates
the snapshot it is given, so it can be re-evaluated any number of times.

A step is runnable iff:
- its execution name is neither completed nor enqueued
- every pipeline-sourced binding's key is present in the pipeline inputs
- every step-sourced binding's dependency has an output bag containing the
  referenced output key

Cycles are not detected: a step waiting on data that never appears is simply
never returned.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pipeline_orchestrator.domain.models import (
    PipelineDefinition,
    PipelineInputBinding,
    StepConfig,
    StepInputBinding,
)


@dataclass(frozen=True, slots=True)
class RunStateSnapshot:
    completed_steps: frozenset[str] = frozenset()
    enqueued_steps: frozenset[str] = frozenset()
    available_outputs: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    pipeline_inputs: Mapping[str, Any] = field(default_factory=dict)


def execution_name(step: StepConfig) -> str:
    return step.execution_name


def find_step_by_execution_name(pipeline: PipelineDefinition, name: str) -> StepConfig | None:
    for step in pipeline.steps:
        if step.execution_name == name:
            return step
    return None


def dependencies_satisfied(step: StepConfig, snapshot: RunStateSnapshot) -> bool:
    name = step.execution_name
    if name in snapshot.completed_steps or name in snapshot.enqueued_steps:
        return False

    for local_name, binding in step.inputs.items():
        if isinstance(binding, PipelineInputBinding):
            if binding.key not in snapshot.pipeline_inputs:
                return False
        elif isinstance(binding, StepInputBinding):
            outputs = snapshot.available_outputs.get(binding.step_id)
            if outputs is None:
                return False
            if binding.resolved_output(local_name) not in outputs:
                return False
    return True


def compute_runnable_steps(pipeline: PipelineDefinition, snapshot: RunStateSnapshot) -> list[str]:
    """Return newly runnable execution names in pipeline definition order."""

    return [
        step.execution_name for step in pipeline.steps if dependencies_satisfied(step, snapshot)
    ]
