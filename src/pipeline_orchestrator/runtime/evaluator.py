"""Scenario-based evaluation of a single step version.

Scenarios live next to the step as `<steps_dir>/<id>/<version>/eval/*.json`:

    {"name": "basic echo", "inputs": {"text": "hi"}, "expected": {"text": "hi"}}

Each scenario is executed through the same `StepExecutor` contract the runner
uses. A report is written to `<data_dir>/steps/<id>/<version>/eval/<stamp>.json`.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from pipeline_orchestrator.domain.errors import PipelineError
from pipeline_orchestrator.domain.models import StepManifest
from pipeline_orchestrator.runtime.step_executor import StepExecutor

logger = logging.getLogger(__name__)


class EvaluationScenario(BaseModel):
    name: str
    description: str | None = None
    inputs: dict[str, Any] = Field(default_factory=dict)
    expected: dict[str, Any] | None = None


class EvaluationResult(BaseModel):
    scenario: str
    success: bool
    duration_ms: float = Field(serialization_alias="durationMs")
    error: str | None = None
    expected: dict[str, Any] | None = None
    actual: dict[str, Any] | None = None


def _normalise(value: Any) -> Any:
    return json.loads(json.dumps(value, sort_keys=True))


def _discard_log(message: str, metadata: Any = None) -> None:
    return None


class StepEvaluator:
    def __init__(self, executor: StepExecutor, steps_dir: Path, data_dir: Path) -> None:
        self._executor = executor
        self._steps_dir = steps_dir
        self._data_dir = data_dir

    def load_scenarios(self, step_id: str, version: str) -> list[EvaluationScenario]:
        eval_dir = self._steps_dir / step_id / version / "eval"
        if not eval_dir.is_dir():
            return []
        return [
            EvaluationScenario.model_validate(json.loads(path.read_text(encoding="utf-8")))
            for path in sorted(eval_dir.glob("*.json"))
        ]

    def evaluate(self, step_id: str, version: str) -> list[EvaluationResult]:
        manifest = self._executor.load_manifest(step_id, version)
        results = [self._run_scenario(manifest, s) for s in self.load_scenarios(step_id, version)]
        report_path = self._persist_report(manifest, results)
        logger.info(
            "Step evaluated",
            extra={
                "step": step_id,
                "version": version,
                "passed": sum(r.success for r in results),
                "total": len(results),
                "report": str(report_path),
            },
        )
        return results

    def _run_scenario(
        self, manifest: StepManifest, scenario: EvaluationScenario
    ) -> EvaluationResult:
        start = time.perf_counter()
        try:
            result = self._executor.execute(manifest, scenario.inputs, _discard_log)
        except PipelineError as e:
            return EvaluationResult(
                scenario=scenario.name,
                success=False,
                duration_ms=(time.perf_counter() - start) * 1000,
                error=str(e),
                expected=scenario.expected,
            )

        duration_ms = (time.perf_counter() - start) * 1000
        actual = result.outputs
        success = True
        error: str | None = None
        if scenario.expected is not None:
            success = _normalise(scenario.expected) == _normalise(actual)
            if not success:
                error = (
                    f"Expected {json.dumps(scenario.expected, sort_keys=True)} "
                    f"but received {json.dumps(actual, sort_keys=True)}"
                )
        return EvaluationResult(
            scenario=scenario.name,
            success=success,
            duration_ms=duration_ms,
            error=error,
            expected=scenario.expected,
            actual=actual,
        )

    def _persist_report(self, manifest: StepManifest, results: list[EvaluationResult]) -> Path:
        now = datetime.now(tz=UTC)
        report_dir = self._data_dir / "steps" / manifest.id / manifest.version / "eval"
        report_dir.mkdir(parents=True, exist_ok=True)
        stamp = now.isoformat().replace(":", "-").replace(".", "-").replace("+", "_")
        path = report_dir / f"{stamp}.json"
        payload = {
            "stepId": manifest.id,
            "version": manifest.version,
            "manifest": manifest.model_dump(
                mode="json", include={"id", "version", "name", "description"}
            ),
            "generatedAt": now.isoformat(),
            "results": [r.model_dump(mode="json", by_alias=True) for r in results],
        }
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        return path
