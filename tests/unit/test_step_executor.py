"""Unit tests for the step executors."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

import pytest

from pipeline_orchestrator.domain.errors import (
    InvalidManifest,
    InvalidStepResult,
    StepExecutionError,
    StepNotFound,
)
from pipeline_orchestrator.domain.models import StepManifest, StepResult
from pipeline_orchestrator.orchestrator.config import RunnerSettings
from pipeline_orchestrator.orchestrator.scaffold import init_workspace
from pipeline_orchestrator.runtime.step_executor import (
    FileStepExecutor,
    RegistryStepExecutor,
    StepContext,
    coerce_step_result,
)

MANIFEST = StepManifest(id="s", version="v1", name="S")


class _Logs:
    def __init__(self) -> None:
        self.entries: list[tuple[str, Any]] = []

    def __call__(self, message: str, metadata: Any = None) -> None:
        self.entries.append((message, metadata))


def _write_step(
    steps_dir: Path,
    source: str,
    *,
    step_id: str = "custom",
    manifest: dict[str, Any] | None = None,
    files: dict[str, str] | None = None,
) -> Path:
    step_dir = steps_dir / step_id / "v1"
    step_dir.mkdir(parents=True)
    data = {"id": step_id, "version": "v1", "name": step_id, "entry": "step.py"}
    data.update(manifest or {})
    (step_dir / "manifest.json").write_text(json.dumps(data), encoding="utf-8")
    (step_dir / "step.py").write_text(source, encoding="utf-8")
    for name, content in (files or {}).items():
        (step_dir / name).write_text(content, encoding="utf-8")
    return step_dir


def test_scaffolded_steps_execute(settings: RunnerSettings) -> None:
    init_workspace(settings)
    executor = FileStepExecutor(settings.steps_path)
    logs = _Logs()

    echo = executor.load_manifest("echo", "v1")
    assert echo.name == "Echo Input"
    assert executor.execute(echo, {"text": "hi"}, logs).outputs == {"text": "hi"}
    assert logs.entries == [("Echoing input", {"text": "hi"})]

    upper = executor.load_manifest("uppercase", "v1")
    assert executor.execute(upper, {"text": "hi"}, logs).outputs == {"text": "HI"}
    assert executor.execute(upper, {}, logs).outputs == {"text": ""}


def test_missing_manifest_is_not_found(tmp_path: Path) -> None:
    with pytest.raises(StepNotFound):
        FileStepExecutor(tmp_path).load_manifest("nope", "v1")


def test_malformed_manifest_is_invalid(tmp_path: Path) -> None:
    step_dir = tmp_path / "bad" / "v1"
    step_dir.mkdir(parents=True)
    (step_dir / "manifest.json").write_text('{"id": "bad"}', encoding="utf-8")

    with pytest.raises(InvalidManifest):
        FileStepExecutor(tmp_path).load_manifest("bad", "v1")


def test_missing_entry_module_is_not_found(tmp_path: Path) -> None:
    step_dir = _write_step(tmp_path, "")
    (step_dir / "step.py").unlink()
    executor = FileStepExecutor(tmp_path)

    with pytest.raises(StepNotFound):
        executor.execute(executor.load_manifest("custom", "v1"), {}, _Logs())


def test_entry_without_run_fails_execution(tmp_path: Path) -> None:
    _write_step(tmp_path, "VALUE = 1\n")
    executor = FileStepExecutor(tmp_path)

    with pytest.raises(StepExecutionError, match="run"):
        executor.execute(executor.load_manifest("custom", "v1"), {}, _Logs())


def test_import_error_fails_execution(tmp_path: Path) -> None:
    _write_step(tmp_path, "raise ImportError('no such dependency')\n")
    executor = FileStepExecutor(tmp_path)

    with pytest.raises(StepExecutionError, match="no such dependency"):
        executor.execute(executor.load_manifest("custom", "v1"), {}, _Logs())


def test_step_exception_is_wrapped(tmp_path: Path) -> None:
    _write_step(tmp_path, "def run(context):\n    raise ValueError('bad input')\n")
    executor = FileStepExecutor(tmp_path)

    with pytest.raises(StepExecutionError, match="bad input") as excinfo:
        executor.execute(executor.load_manifest("custom", "v1"), {}, _Logs())
    assert excinfo.value.step_id == "custom"
    assert isinstance(excinfo.value.__cause__, ValueError)


def test_modules_are_reloaded_on_every_execution(tmp_path: Path) -> None:
    step_dir = _write_step(tmp_path, "def run(context):\n    return {'outputs': {'v': 1}}\n")
    executor = FileStepExecutor(tmp_path)
    manifest = executor.load_manifest("custom", "v1")
    assert executor.execute(manifest, {}, _Logs()).outputs == {"v": 1}

    (step_dir / "step.py").write_text(
        "def run(context):\n    return {'outputs': {'v': 'two'}}\n", encoding="utf-8"
    )
    assert executor.execute(manifest, {}, _Logs()).outputs == {"v": "two"}


def test_tools_are_loaded_from_manifest(tmp_path: Path) -> None:
    _write_step(
        tmp_path,
        "def run(context):\n"
        "    return {'outputs': {'sum': context.tools['add']({'a': 2, 'b': 3})}}\n",
        manifest={"tools": [{"name": "add", "module": "add_tool.py"}]},
        files={"add_tool.py": "def handler(args):\n    return args['a'] + args['b']\n"},
    )
    executor = FileStepExecutor(tmp_path)

    result = executor.execute(executor.load_manifest("custom", "v1"), {}, _Logs())
    assert result.outputs == {"sum": 5}


def test_tool_without_handler_fails_execution(tmp_path: Path) -> None:
    _write_step(
        tmp_path,
        "def run(context):\n    return {'outputs': {}}\n",
        manifest={"tools": [{"name": "broken", "module": "broken.py"}]},
        files={"broken.py": "X = 1\n"},
    )
    executor = FileStepExecutor(tmp_path)

    with pytest.raises(StepExecutionError, match="handler"):
        executor.execute(executor.load_manifest("custom", "v1"), {}, _Logs())


def test_timeout_is_an_execution_failure() -> None:
    executor = RegistryStepExecutor(timeout_seconds=0.05)
    executor.register(MANIFEST, lambda context: time.sleep(1))

    with pytest.raises(StepExecutionError, match="timed out"):
        executor.execute(MANIFEST, {}, _Logs())


def test_timeout_allows_fast_steps() -> None:
    executor = RegistryStepExecutor(timeout_seconds=5)
    executor.register(MANIFEST, lambda context: {"outputs": {"ok": True}})

    assert executor.execute(MANIFEST, {}, _Logs()).outputs == {"ok": True}


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "text",
        {"result": 1},
        {"outputs": [1, 2]},
        {"outputs": {"when": object()}},
    ],
)
def test_invalid_results_are_rejected(raw: Any) -> None:
    with pytest.raises(InvalidStepResult):
        coerce_step_result(MANIFEST, raw)


def test_step_result_instances_are_accepted() -> None:
    result = StepResult(outputs={"a": 1})
    assert coerce_step_result(MANIFEST, result) is result


def test_registry_passes_inputs_tools_and_log() -> None:
    seen: dict[str, Any] = {}

    def step(context: StepContext) -> dict[str, Any]:
        seen["inputs"] = context.inputs
        context.log("hello", {"n": 1})
        return {"outputs": {"doubled": context.tools["double"]({"x": context.inputs["x"]})}}

    executor = RegistryStepExecutor()
    executor.register(MANIFEST, step, tools={"double": lambda args: args["x"] * 2})
    logs = _Logs()

    result = executor.execute(executor.load_manifest("s", "v1"), {"x": 4}, logs)

    assert result.outputs == {"doubled": 8}
    assert seen["inputs"] == {"x": 4}
    assert logs.entries == [("hello", {"n": 1})]


def test_registry_rejects_duplicates_and_unknown_steps() -> None:
    executor = RegistryStepExecutor()
    executor.register(MANIFEST, lambda context: {"outputs": {}})

    with pytest.raises(ValueError):
        executor.register(MANIFEST, lambda context: {"outputs": {}})
    with pytest.raises(StepNotFound):
        executor.load_manifest("s", "v2")
