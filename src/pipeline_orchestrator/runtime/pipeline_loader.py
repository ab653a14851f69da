"""Resolve pipeline identifiers to definitions stored as `<pipelines_dir>/<id>.json`."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError

from pipeline_orchestrator.domain.errors import InvalidPipelineDefinition, PipelineNotFound
from pipeline_orchestrator.domain.models import PipelineDefinition


class PipelineLoader:
    def __init__(self, root: Path) -> None:
        self._root = root

    def path_for(self, pipeline_id: str) -> Path:
        return self._root / f"{pipeline_id}.json"

    def load(self, pipeline_id: str) -> PipelineDefinition:
        path = self.path_for(pipeline_id)
        if not path.exists():
            raise PipelineNotFound(pipeline_id, path)
        try:
            return PipelineDefinition.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as e:
            raise InvalidPipelineDefinition(f"Invalid pipeline definition {path}: {e}") from e

    def list_pipelines(self) -> list[str]:
        if not self._root.exists():
            return []
        return sorted(p.stem for p in self._root.glob("*.json") if p.is_file())
