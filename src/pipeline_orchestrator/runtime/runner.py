"""The pipeline runner: run creation and the tick-driven control loop.

Forward progress happens only through `tick()`, which pops at most one item off
the global queue and executes it to completion before returning. Callers drive
the system by calling `tick()` repeatedly (CLI, timer thread, tests).

Completion is always derived from persisted facts: a step is done iff its output
record exists, and a run is done iff every step is done and the queue holds
nothing for it.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pipeline_orchestrator.domain.errors import MissingDependency, StepExecutionError, StepNotFound
from pipeline_orchestrator.domain.models import (
    PipelineDefinition,
    PipelineInputBinding,
    QueueItem,
    RunMetadata,
    StepConfig,
    StepInputBinding,
)
from pipeline_orchestrator.domain.state_machine import RunStatus, transition
from pipeline_orchestrator.runtime.pipeline_loader import PipelineLoader
from pipeline_orchestrator.runtime.resolver import (
    RunStateSnapshot,
    compute_runnable_steps,
    find_step_by_execution_name,
)
from pipeline_orchestrator.runtime.run_store import FileRunStore
from pipeline_orchestrator.runtime.step_executor import FileStepExecutor, StepExecutor

if TYPE_CHECKING:
    from pipeline_orchestrator.orchestrator.config import RunnerSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RunSummary:
    metadata: RunMetadata
    completed_steps: list[str]
    queued_steps: list[str]
    pending_steps: list[str]

    def to_json(self) -> dict[str, object]:
        return {
            "metadata": self.metadata.to_json(),
            "completed": self.completed_steps,
            "queued": self.queued_steps,
            "pending": self.pending_steps,
        }


def _log_entry(
    level: str, message: str, metadata: Mapping[str, Any] | None = None
) -> dict[str, Any]:
    entry: dict[str, Any] = {"level": level, "message": message}
    if metadata:
        entry["metadata"] = dict(metadata)
    return entry


class PipelineRunner:
    """Creates runs and executes queued steps one tick at a time.

    Failed executions are re-enqueued with an incremented attempt counter. Once an
    item reaches `max_step_attempts` it is dead-lettered and its run is marked
    `failed`. `max_step_attempts=0` retries forever.
    """

    def __init__(
        self,
        *,
        store: FileRunStore,
        loader: PipelineLoader,
        executor: StepExecutor,
        max_step_attempts: int = 3,
    ) -> None:
        if max_step_attempts < 0:
            raise ValueError("max_step_attempts must be >= 0")
        self.store = store
        self.loader = loader
        self.executor = executor
        self.max_step_attempts = max_step_attempts
        # One tick at a time per process: the store is not safe for concurrent pops.
        self._tick_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls, settings: RunnerSettings, executor: StepExecutor | None = None
    ) -> PipelineRunner:
        return cls(
            store=FileRunStore(settings.data_path),
            loader=PipelineLoader(settings.pipelines_path),
            executor=executor
            or FileStepExecutor(
                settings.steps_path, timeout_seconds=settings.step_timeout_seconds
            ),
            max_step_attempts=settings.max_step_attempts,
        )

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_run(
        self,
        pipeline_id: str,
        initial_inputs: Mapping[str, Any] | None = None,
        user_id: str | None = None,
    ) -> RunMetadata:
        pipeline = self.loader.load(pipeline_id)
        metadata = RunMetadata(
            run_id=str(uuid.uuid4()),
            pipeline_id=pipeline_id,
            created_at=datetime.now(tz=UTC).isoformat(),
            user_id=user_id,
            status=RunStatus.PENDING,
        )
        self.store.init_run(metadata, dict(initial_inputs or {}))
        seeded = self.enqueue_runnable_steps(pipeline, pipeline_id, metadata.run_id, {}, set())
        logger.info(
            "Run created",
            extra={"pipeline_id": pipeline_id, "run_id": metadata.run_id, "enqueued": seeded},
        )
        return metadata

    def enqueue_runnable_steps(
        self,
        pipeline: PipelineDefinition,
        pipeline_id: str,
        run_id: str,
        available_outputs: Mapping[str, Mapping[str, Any]],
        enqueued_steps: set[str],
    ) -> list[str]:
        """Append every newly runnable step of a run to the queue.

        `enqueued_steps` is updated in place so repeated calls never enqueue the
        same execution name twice.
        """

        snapshot = RunStateSnapshot(
            completed_steps=frozenset(self.store.list_completed_steps(pipeline_id, run_id)),
            enqueued_steps=frozenset(enqueued_steps),
            available_outputs=available_outputs,
            pipeline_inputs=self.store.read_pipeline_inputs(pipeline_id, run_id),
        )

        added: list[str] = []
        for name in compute_runnable_steps(pipeline, snapshot):
            if name in enqueued_steps:
                continue
            self.store.append_queue_item(
                QueueItem(pipeline_id=pipeline_id, run_id=run_id, step_id=name)
            )
            enqueued_steps.add(name)
            added.append(name)
        return added

    def resume_run(self, pipeline_id: str, run_id: str) -> list[str]:
        """Re-seed the queue for a run from its persisted state.

        Recovers items lost when the process died between popping an item and
        finishing it. Steps already queued or completed are left alone.
        """

        metadata = self.store.read_metadata(pipeline_id, run_id)
        if metadata.status.is_terminal:
            return []
        pipeline = self.loader.load(pipeline_id)
        added = self.enqueue_runnable_steps(
            pipeline,
            pipeline_id,
            run_id,
            self.store.load_all_outputs(pipeline_id, run_id),
            self._collect_enqueued_steps(pipeline_id, run_id),
        )
        if added:
            logger.info(
                "Run resumed",
                extra={"pipeline_id": pipeline_id, "run_id": run_id, "enqueued": added},
            )
        return added

    def get_run(self, pipeline_id: str, run_id: str) -> RunSummary:
        metadata = self.store.read_metadata(pipeline_id, run_id)
        pipeline = self.loader.load(pipeline_id)
        completed = self.store.list_completed_steps(pipeline_id, run_id)
        queued = [
            item.step_id for item in self.store.read_queue() if item.belongs_to(pipeline_id, run_id)
        ]
        pending = [
            name
            for name in pipeline.execution_names()
            if name not in completed and name not in queued
        ]
        return RunSummary(
            metadata=metadata, completed_steps=completed, queued_steps=queued, pending_steps=pending
        )

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def tick(self) -> QueueItem | None:
        """Pop and fully execute one queue item. Returns None when the queue is empty."""

        with self._tick_lock:
            item = self.store.pop_queue_item()
            if item is None:
                return None
            self._execute_queue_item(item)
            return item

    def run_until_idle(self, max_ticks: int | None = None) -> list[QueueItem]:
        processed: list[QueueItem] = []
        while max_ticks is None or len(processed) < max_ticks:
            item = self.tick()
            if item is None:
                break
            processed.append(item)
        return processed

    def _execute_queue_item(self, item: QueueItem) -> None:
        pipeline_id, run_id, name = item.pipeline_id, item.run_id, item.step_id
        extra = {"pipeline_id": pipeline_id, "run_id": run_id, "step": name}

        pipeline = self.loader.load(pipeline_id)
        metadata = self.store.read_metadata(pipeline_id, run_id)
        if metadata.status.is_terminal:
            self.store.log_system(
                "Dropped queue item of finished run",
                {**extra, "status": metadata.status.value},
            )
            logger.warning("Dropped queue item of finished run", extra=extra)
            return

        pipeline_inputs = self.store.read_pipeline_inputs(pipeline_id, run_id)
        enqueued_steps = self._collect_enqueued_steps(pipeline_id, run_id)
        completed_outputs = self.store.load_all_outputs(pipeline_id, run_id)

        if name in completed_outputs:
            # At most one success per step per run.
            self.store.log_system("Skipped already completed step", extra)
            logger.warning("Skipped already completed step", extra=extra)
            self._evaluate_run_completion(pipeline, pipeline_id, run_id)
            return

        step = find_step_by_execution_name(pipeline, name)
        if step is None:
            raise StepNotFound(name)
        manifest = self.executor.load_manifest(step.step_id, step.version)

        self._set_status(pipeline_id, run_id, RunStatus.RUNNING)
        inputs = self._materialize_inputs(step, pipeline_inputs, completed_outputs)
        self.store.write_step_input(pipeline_id, run_id, name, inputs)
        self.store.append_log(
            pipeline_id, run_id, name, _log_entry("info", "Step started", {"attempt": item.attempt})
        )
        logger.info("Step started", extra={**extra, "attempt": item.attempt})

        # A step thread abandoned on timeout must not write into the retry's log.
        sink_closed = threading.Event()

        def log_sink(message: str, metadata: Mapping[str, Any] | None = None) -> None:
            if sink_closed.is_set():
                return
            self.store.append_log(pipeline_id, run_id, name, _log_entry("info", message, metadata))

        try:
            result = self.executor.execute(manifest, inputs, log_sink)
        except StepExecutionError as e:
            sink_closed.set()
            self._handle_failure(item, e)
            return
        except Exception as e:
            # Missing entry modules and foreign executor errors still cost an attempt.
            sink_closed.set()
            self._handle_failure(item, StepExecutionError(manifest.id, str(e) or type(e).__name__))
            return
        sink_closed.set()

        self.store.write_step_output(pipeline_id, run_id, name, result.outputs)
        for record in result.logs:
            self.store.append_log(
                pipeline_id, run_id, name, _log_entry(record.level, record.message, record.metadata)
            )
        self.store.append_log(pipeline_id, run_id, name, _log_entry("info", "Step completed"))
        logger.info("Step completed", extra=extra)

        added = self.enqueue_runnable_steps(
            pipeline,
            pipeline_id,
            run_id,
            self.store.load_all_outputs(pipeline_id, run_id),
            enqueued_steps,
        )
        if added:
            logger.debug("Enqueued downstream steps", extra={**extra, "enqueued": added})
        self._evaluate_run_completion(pipeline, pipeline_id, run_id)

    def _handle_failure(self, item: QueueItem, error: StepExecutionError) -> None:
        pipeline_id, run_id, name = item.pipeline_id, item.run_id, item.step_id
        attempts = item.attempt + 1
        message = str(error)
        self.store.append_log(
            pipeline_id,
            run_id,
            name,
            _log_entry("error", "Step failed", {"error": message, "attempt": attempts}),
        )
        extra = {"pipeline_id": pipeline_id, "run_id": run_id, "step": name, "attempt": attempts}
        retried = item.model_copy(update={"attempt": attempts})

        if self.max_step_attempts and attempts >= self.max_step_attempts:
            self.store.append_dead_letter(retried, message)
            dropped = self.store.remove_run_items(pipeline_id, run_id)
            self._set_status(pipeline_id, run_id, RunStatus.FAILED)
            self.store.log_system(
                "Step exhausted its attempts; run failed", {**extra, "dropped_items": dropped}
            )
            logger.error(
                "Step exhausted its attempts; run failed", extra={**extra, "error": message}
            )
            return

        self.store.append_queue_item(retried)
        logger.warning("Step failed; re-enqueued", extra={**extra, "error": message})

    def _collect_enqueued_steps(self, pipeline_id: str, run_id: str) -> set[str]:
        return {
            item.step_id for item in self.store.read_queue() if item.belongs_to(pipeline_id, run_id)
        }

    def _materialize_inputs(
        self,
        step: StepConfig,
        pipeline_inputs: Mapping[str, Any],
        outputs: Mapping[str, Mapping[str, Any]],
    ) -> dict[str, Any]:
        inputs: dict[str, Any] = {}
        for local_name, binding in step.inputs.items():
            if isinstance(binding, PipelineInputBinding):
                inputs[local_name] = pipeline_inputs.get(binding.key)
            elif isinstance(binding, StepInputBinding):
                step_outputs = outputs.get(binding.step_id)
                if step_outputs is None:
                    raise MissingDependency(step.execution_name, binding.step_id)
                inputs[local_name] = step_outputs.get(binding.resolved_output(local_name))
        return inputs

    def _evaluate_run_completion(
        self, pipeline: PipelineDefinition, pipeline_id: str, run_id: str
    ) -> bool:
        completed = set(self.store.list_completed_steps(pipeline_id, run_id))
        remaining = [name for name in pipeline.execution_names() if name not in completed]
        in_queue = any(item.belongs_to(pipeline_id, run_id) for item in self.store.read_queue())
        if remaining or in_queue:
            return False
        self._set_status(pipeline_id, run_id, RunStatus.COMPLETED)
        logger.info("Run completed", extra={"pipeline_id": pipeline_id, "run_id": run_id})
        return True

    def _set_status(self, pipeline_id: str, run_id: str, status: RunStatus) -> RunMetadata:
        current = self.store.read_metadata(pipeline_id, run_id)
        if current.status == status:
            return current
        transition(current=current.status, to=status)
        return self.store.update_status(pipeline_id, run_id, status)
