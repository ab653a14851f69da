"""Test configuration and fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from pipeline_orchestrator.domain.models import StepManifest
from pipeline_orchestrator.orchestrator.config import RunnerSettings
from pipeline_orchestrator.orchestrator.scaffold import SAMPLE_PIPELINE
from pipeline_orchestrator.runtime.pipeline_loader import PipelineLoader
from pipeline_orchestrator.runtime.run_store import FileRunStore
from pipeline_orchestrator.runtime.runner import PipelineRunner
from pipeline_orchestrator.runtime.step_executor import RegistryStepExecutor, StepContext

_SETTINGS_ENV = (
    "PIPELINE_WORKSPACE",
    "PIPELINE_DATA_DIR",
    "PIPELINE_PIPELINES_DIR",
    "PIPELINE_STEPS_DIR",
    "PIPELINE_MAX_STEP_ATTEMPTS",
    "PIPELINE_STEP_TIMEOUT_SECONDS",
    "PIPELINE_AUTO_TICK_ENABLED",
    "PIPELINE_AUTO_TICK_INTERVAL_SECONDS",
    "PIPELINE_CORS_ORIGINS",
    "LOG_LEVEL",
)


def _echo(context: StepContext) -> dict[str, Any]:
    text = context.inputs.get("text")
    context.log("Echoing input", {"text": text})
    return {"outputs": {"text": "" if text is None else str(text)}}


def _uppercase(context: StepContext) -> dict[str, Any]:
    text = context.inputs.get("text")
    return {"outputs": {"text": str(text).upper()}}


def _manifest(step_id: str, version: str = "v1") -> StepManifest:
    return StepManifest(id=step_id, version=version, name=step_id)


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate settings from the developer's environment and any stray .env file."""
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def settings(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> RunnerSettings:
    monkeypatch.setenv("PIPELINE_WORKSPACE", str(clean_env))
    return RunnerSettings()


@pytest.fixture
def store(tmp_path: Path) -> FileRunStore:
    return FileRunStore(tmp_path / "data")


@pytest.fixture
def pipelines_dir(tmp_path: Path) -> Path:
    path = tmp_path / "pipelines"
    path.mkdir()
    return path


@pytest.fixture
def write_pipeline(pipelines_dir: Path) -> Callable[[dict[str, Any]], str]:
    """Write a pipeline definition to the pipelines dir; returns its id."""

    def _write(definition: dict[str, Any]) -> str:
        (pipelines_dir / f"{definition['id']}.json").write_text(
            json.dumps(definition), encoding="utf-8"
        )
        return definition["id"]

    return _write


@pytest.fixture
def registry() -> RegistryStepExecutor:
    executor = RegistryStepExecutor()
    executor.register(_manifest("echo"), _echo)
    executor.register(_manifest("uppercase"), _uppercase)
    return executor


@pytest.fixture
def runner(
    store: FileRunStore,
    pipelines_dir: Path,
    registry: RegistryStepExecutor,
    write_pipeline: Callable[[dict[str, Any]], str],
) -> PipelineRunner:
    write_pipeline(SAMPLE_PIPELINE)
    return PipelineRunner(store=store, loader=PipelineLoader(pipelines_dir), executor=registry)
