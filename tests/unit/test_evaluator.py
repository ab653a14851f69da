"""Unit tests for scenario-based step evaluation."""

from __future__ import annotations

import json
from pathlib import Path

from pipeline_orchestrator.domain.models import StepManifest
from pipeline_orchestrator.orchestrator.config import RunnerSettings
from pipeline_orchestrator.orchestrator.scaffold import init_workspace
from pipeline_orchestrator.runtime.evaluator import StepEvaluator
from pipeline_orchestrator.runtime.step_executor import FileStepExecutor, RegistryStepExecutor


def _write_scenario(steps_dir: Path, step_id: str, name: str, payload: dict) -> None:
    eval_dir = steps_dir / step_id / "v1" / "eval"
    eval_dir.mkdir(parents=True, exist_ok=True)
    (eval_dir / f"{name}.json").write_text(json.dumps(payload), encoding="utf-8")


def test_scaffolded_scenarios_pass_and_report_is_written(settings: RunnerSettings) -> None:
    init_workspace(settings)
    evaluator = StepEvaluator(
        FileStepExecutor(settings.steps_path), settings.steps_path, settings.data_path
    )

    results = evaluator.evaluate("uppercase", "v1")

    assert [r.scenario for r in results] == ["uppercase conversion"]
    assert results[0].success
    assert results[0].actual == {"text": "HELLO"}
    assert results[0].error is None

    [report_path] = (settings.data_path / "steps" / "uppercase" / "v1" / "eval").glob("*.json")
    report = json.loads(report_path.read_text(encoding="utf-8"))
    assert report["stepId"] == "uppercase"
    assert report["version"] == "v1"
    assert report["manifest"]["name"] == "Uppercase Transformer"
    assert report["results"][0]["success"] is True
    assert "durationMs" in report["results"][0]


def test_mismatch_and_failure_are_reported(tmp_path: Path) -> None:
    manifest = StepManifest(id="double", version="v1", name="Double")
    executor = RegistryStepExecutor()

    def double(context):
        if context.inputs.get("x") is None:
            raise ValueError("x is required")
        return {"outputs": {"y": context.inputs["x"] * 2}}

    executor.register(manifest, double)
    steps_dir = tmp_path / "steps"
    _write_scenario(
        steps_dir, "double", "a_ok", {"name": "ok", "inputs": {"x": 2}, "expected": {"y": 4}}
    )
    _write_scenario(
        steps_dir, "double", "b_wrong", {"name": "wrong", "inputs": {"x": 2}, "expected": {"y": 5}}
    )
    _write_scenario(steps_dir, "double", "c_error", {"name": "error", "inputs": {}})
    _write_scenario(steps_dir, "double", "d_no_expectation", {"name": "smoke", "inputs": {"x": 1}})

    results = StepEvaluator(executor, steps_dir, tmp_path / "data").evaluate("double", "v1")

    by_name = {r.scenario: r for r in results}
    assert [r.scenario for r in results] == ["ok", "wrong", "error", "smoke"]
    assert by_name["ok"].success
    assert not by_name["wrong"].success
    assert by_name["wrong"].actual == {"y": 4}
    assert "Expected" in (by_name["wrong"].error or "")
    assert not by_name["error"].success
    assert by_name["error"].error == "x is required"
    assert by_name["smoke"].success


def test_expected_comparison_ignores_key_order(tmp_path: Path) -> None:
    manifest = StepManifest(id="pair", version="v1", name="Pair")
    executor = RegistryStepExecutor()
    executor.register(manifest, lambda context: {"outputs": {"a": 1, "b": [1, 2]}})
    steps_dir = tmp_path / "steps"
    _write_scenario(
        steps_dir, "pair", "basic", {"name": "basic", "expected": {"b": [1, 2], "a": 1}}
    )

    [result] = StepEvaluator(executor, steps_dir, tmp_path / "data").evaluate("pair", "v1")
    assert result.success


def test_step_without_eval_dir_has_no_scenarios(tmp_path: Path) -> None:
    executor = RegistryStepExecutor()
    executor.register(StepManifest(id="x", version="v1", name="X"), lambda c: {"outputs": {}})

    evaluator = StepEvaluator(executor, tmp_path / "steps", tmp_path / "data")
    assert evaluator.load_scenarios("x", "v1") == []
    assert evaluator.evaluate("x", "v1") == []


def test_missing_entry_module_is_a_failed_scenario_not_an_abort(tmp_path: Path) -> None:
    steps_dir = tmp_path / "steps"
    step_dir = steps_dir / "gone" / "v1"
    step_dir.mkdir(parents=True)
    (step_dir / "manifest.json").write_text(
        json.dumps({"id": "gone", "version": "v1", "name": "Gone", "entry": "gone.py"}),
        encoding="utf-8",
    )
    _write_scenario(steps_dir, "gone", "basic", {"name": "basic", "inputs": {"x": 1}})

    evaluator = StepEvaluator(FileStepExecutor(steps_dir), steps_dir, tmp_path / "data")
    [result] = evaluator.evaluate("gone", "v1")

    assert not result.success
    assert "not found" in (result.error or "")
    [report_path] = (tmp_path / "data" / "steps" / "gone" / "v1" / "eval").glob("*.json")
    report = json.loads(report_path.read_text(encoding="utf-8"))
    assert report["results"][0]["success"] is False
