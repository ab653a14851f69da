"""Local Pipeline Orchestrator.

A local-first workflow engine: pipelines are DAGs of versioned steps, and all
run state (metadata, inputs, outputs, logs, the global queue) is persisted to
disk so a run can be paused, crash, and resume without losing progress.
"""

__version__ = "0.1.0"

from pipeline_orchestrator.orchestrator.config import RunnerSettings
from pipeline_orchestrator.runtime.runner import PipelineRunner

__all__ = ["__version__", "PipelineRunner", "RunnerSettings"]
