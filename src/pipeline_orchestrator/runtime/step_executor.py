"""Step execution behind a narrow contract.

The runner only needs two capabilities from an executor:
- `load_manifest(step_id, version)`
- `execute(manifest, inputs, log)` returning a validated `StepResult`

Two implementations ship here:
- `FileStepExecutor` loads Python step modules from `<steps_dir>/<id>/<version>/`
- `RegistryStepExecutor` is an in-process plugin registry

A step entry module exposes `run(context)`; a tool module exposes `handler(args)`.
`run` returns either a `StepResult` or a mapping with an `outputs` mapping (and an
optional `logs` list).
"""

from __future__ import annotations

import importlib.util
import json
import uuid
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Protocol

from pydantic import ValidationError

from pipeline_orchestrator.domain.errors import (
    InvalidManifest,
    InvalidStepResult,
    StepExecutionError,
    StepNotFound,
)
from pipeline_orchestrator.domain.models import StepManifest, StepResult

ToolHandler = Callable[[dict[str, Any]], Any]


class LogSink(Protocol):
    def __call__(self, message: str, metadata: Mapping[str, Any] | None = None) -> None: ...


@dataclass(frozen=True, slots=True)
class StepContext:
    """Everything a step sees. Keep this explicit; there is no global context."""

    inputs: dict[str, Any]
    tools: dict[str, ToolHandler]
    log: LogSink


StepFunction = Callable[[StepContext], Any]


class StepExecutor(Protocol):
    def load_manifest(self, step_id: str, version: str) -> StepManifest: ...

    def execute(
        self, manifest: StepManifest, inputs: Mapping[str, Any], log: LogSink
    ) -> StepResult: ...


def coerce_step_result(manifest: StepManifest, raw: object) -> StepResult:
    """Validate what a step returned.

    Raises:
        InvalidStepResult: If the result is not a mapping with a JSON-serialisable
            `outputs` mapping.
    """

    if isinstance(raw, StepResult):
        result = raw
    elif isinstance(raw, Mapping):
        try:
            result = StepResult.model_validate(dict(raw))
        except ValidationError as e:
            raise InvalidStepResult(
                manifest.id, f"Step {manifest.id} returned an invalid result: {e}"
            ) from e
    else:
        raise InvalidStepResult(
            manifest.id,
            f"Step {manifest.id} returned an invalid result of type {type(raw).__name__}",
        )

    try:
        json.dumps(result.outputs)
    except (TypeError, ValueError) as e:
        raise InvalidStepResult(
            manifest.id, f"Step {manifest.id} returned non-JSON outputs: {e}"
        ) from e
    return result


def _call(func: StepFunction, context: StepContext, timeout_seconds: float | None) -> Any:
    if timeout_seconds is None:
        return func(context)

    # A timed-out step thread cannot be killed; it is abandoned, not stopped.
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pipeline-step")
    try:
        future = pool.submit(func, context)
        try:
            return future.result(timeout=timeout_seconds)
        except TimeoutError as e:
            if future.done():
                raise
            raise _StepTimeout(timeout_seconds) from e
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


class _StepTimeout(Exception):
    def __init__(self, seconds: float) -> None:
        super().__init__(f"timed out after {seconds:g}s")


def run_step_function(
    manifest: StepManifest,
    func: StepFunction,
    context: StepContext,
    *,
    timeout_seconds: float | None = None,
) -> StepResult:
    try:
        raw = _call(func, context, timeout_seconds)
    except _StepTimeout as e:
        raise StepExecutionError(manifest.id, f"Step {manifest.id} {e}") from e
    except Exception as e:
        raise StepExecutionError(manifest.id, str(e) or type(e).__name__) from e
    return coerce_step_result(manifest, raw)


class FileStepExecutor:
    """Load and run Python step modules from a directory tree.

    Layout: `<steps_dir>/<step_id>/<version>/manifest.json` plus the entry and
    tool modules it names. Modules are loaded fresh on every execution under a
    unique module name, so edits to step code are picked up without a restart.
    """

    def __init__(self, steps_dir: Path, *, timeout_seconds: float | None = None) -> None:
        self._steps_dir = steps_dir
        self._timeout_seconds = timeout_seconds

    def step_dir(self, step_id: str, version: str) -> Path:
        return self._steps_dir / step_id / version

    def load_manifest(self, step_id: str, version: str) -> StepManifest:
        path = self.step_dir(step_id, version) / "manifest.json"
        if not path.exists():
            raise StepNotFound(step_id, version, path)
        try:
            return StepManifest.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as e:
            raise InvalidManifest(f"Invalid step manifest {path}: {e}") from e

    def _load_module(self, manifest: StepManifest, relative: str) -> ModuleType:
        path = self.step_dir(manifest.id, manifest.version) / relative
        if not path.is_file():
            raise StepNotFound(manifest.id, manifest.version, path)

        module_name = f"_pipeline_step_{manifest.id}_{uuid.uuid4().hex}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise StepExecutionError(manifest.id, f"Cannot load module {path}")
        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise StepExecutionError(manifest.id, f"Failed to import {path.name}: {e}") from e
        return module

    def _build_tools(self, manifest: StepManifest) -> dict[str, ToolHandler]:
        tools: dict[str, ToolHandler] = {}
        for tool in manifest.tools:
            handler = getattr(self._load_module(manifest, tool.module), "handler", None)
            if not callable(handler):
                raise StepExecutionError(
                    manifest.id, f"Tool {tool.name} did not define a callable 'handler'"
                )
            tools[tool.name] = handler
        return tools

    def execute(
        self, manifest: StepManifest, inputs: Mapping[str, Any], log: LogSink
    ) -> StepResult:
        run = getattr(self._load_module(manifest, manifest.entry), "run", None)
        if not callable(run):
            raise StepExecutionError(
                manifest.id, f"Step {manifest.id} entry did not define a callable 'run'"
            )
        context = StepContext(inputs=dict(inputs), tools=self._build_tools(manifest), log=log)
        return run_step_function(manifest, run, context, timeout_seconds=self._timeout_seconds)


@dataclass(frozen=True, slots=True)
class _RegisteredStep:
    manifest: StepManifest
    func: StepFunction
    tools: dict[str, ToolHandler]


class RegistryStepExecutor:
    """In-process step registry, for embedding and tests."""

    def __init__(self, *, timeout_seconds: float | None = None) -> None:
        self._steps: dict[tuple[str, str], _RegisteredStep] = {}
        self._timeout_seconds = timeout_seconds

    def register(
        self,
        manifest: StepManifest,
        func: StepFunction,
        *,
        tools: Mapping[str, ToolHandler] | None = None,
    ) -> None:
        key = (manifest.id, manifest.version)
        if key in self._steps:
            raise ValueError(
                f"Step {manifest.id!r} version {manifest.version!r} already registered"
            )
        self._steps[key] = _RegisteredStep(manifest=manifest, func=func, tools=dict(tools or {}))

    def load_manifest(self, step_id: str, version: str) -> StepManifest:
        registered = self._steps.get((step_id, version))
        if registered is None:
            raise StepNotFound(step_id, version)
        return registered.manifest

    def execute(
        self, manifest: StepManifest, inputs: Mapping[str, Any], log: LogSink
    ) -> StepResult:
        registered = self._steps.get((manifest.id, manifest.version))
        if registered is None:
            raise StepNotFound(manifest.id, manifest.version)
        context = StepContext(inputs=dict(inputs), tools=dict(registered.tools), log=log)
        return run_step_function(
            manifest, registered.func, context, timeout_seconds=self._timeout_seconds
        )
