"""Workspace scaffolding for `pipeline-orchestrator init`.

Creates the data/steps/pipelines directories, two sample steps (`echo` and
`uppercase`, each with an eval scenario) and a `sample` pipeline chaining them.
Existing files are never overwritten.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pipeline_orchestrator.orchestrator.config import RunnerSettings

_ECHO_STEP = '''\
def run(context):
    text = context.inputs.get("text")
    if text is None:
        text = ""
    context.log("Echoing input", {"text": text})
    return {"outputs": {"text": str(text)}}
'''

_UPPERCASE_STEP = '''\
def run(context):
    text = context.inputs.get("text")
    if text is None:
        text = ""
    result = str(text).upper()
    context.log("Converted to uppercase", {"text": result})
    return {"outputs": {"text": result}}
'''

_SAMPLE_STEPS: list[dict[str, Any]] = [
    {
        "manifest": {
            "id": "echo",
            "version": "v1",
            "name": "Echo Input",
            "entry": "step.py",
            "inputs": ["text"],
            "outputs": ["text"],
            "tools": [],
        },
        "source": _ECHO_STEP,
        "scenario": {
            "name": "basic echo",
            "inputs": {"text": "hello world"},
            "expected": {"text": "hello world"},
        },
    },
    {
        "manifest": {
            "id": "uppercase",
            "version": "v1",
            "name": "Uppercase Transformer",
            "entry": "step.py",
            "inputs": ["text"],
            "outputs": ["text"],
            "tools": [],
        },
        "source": _UPPERCASE_STEP,
        "scenario": {
            "name": "uppercase conversion",
            "inputs": {"text": "hello"},
            "expected": {"text": "HELLO"},
        },
    },
]

SAMPLE_PIPELINE: dict[str, Any] = {
    "id": "sample",
    "name": "Sample Echo Pipeline",
    "description": "Demonstrates chaining two simple steps.",
    "steps": [
        {
            "stepId": "echo",
            "version": "v1",
            "alias": "echo",
            "inputs": {"text": {"source": "pipeline", "key": "text"}},
        },
        {
            "stepId": "uppercase",
            "version": "v1",
            "alias": "uppercase",
            "inputs": {
                "text": {"source": "step", "stepId": "echo", "output": "text", "key": "text"}
            },
        },
    ],
}


def _write_if_missing(path: Path, content: str, created: list[Path]) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    created.append(path)


def _json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def init_workspace(settings: RunnerSettings) -> list[Path]:
    """Scaffold a workspace. Returns the files that were created."""

    for directory in (settings.data_path / "runs", settings.steps_path, settings.pipelines_path):
        directory.mkdir(parents=True, exist_ok=True)

    created: list[Path] = []
    for sample in _SAMPLE_STEPS:
        manifest = sample["manifest"]
        step_dir = settings.steps_path / manifest["id"] / manifest["version"]
        if (step_dir / "manifest.json").exists():
            continue
        _write_if_missing(step_dir / "manifest.json", _json(manifest), created)
        _write_if_missing(step_dir / manifest["entry"], sample["source"], created)
        _write_if_missing(step_dir / "eval" / "basic.json", _json(sample["scenario"]), created)

    _write_if_missing(settings.pipelines_path / "sample.json", _json(SAMPLE_PIPELINE), created)
    return created
