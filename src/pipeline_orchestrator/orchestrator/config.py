"""Configuration for the local-first pipeline runner.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Directory settings are resolved against `PIPELINE_WORKSPACE` unless they are
absolute.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RunnerSettings(BaseSettings):
    """Settings for the runner and the CLI.

    Environment variables:
    - PIPELINE_WORKSPACE              (optional)
    - PIPELINE_DATA_DIR               (optional)
    - PIPELINE_PIPELINES_DIR          (optional)
    - PIPELINE_STEPS_DIR              (optional)
    - PIPELINE_MAX_STEP_ATTEMPTS      (optional)
    - PIPELINE_STEP_TIMEOUT_SECONDS   (optional)
    - LOG_LEVEL                       (optional)

    Notes:
        Fields may also be passed by name, e.g. `RunnerSettings(workspace_root=tmp)`.
    """

    workspace_root: Path = Field(
        default=Path("."),
        validation_alias="PIPELINE_WORKSPACE",
        description="Root directory that relative data/pipelines/steps paths resolve against",
    )
    data_dir: Path = Field(
        default=Path("data"),
        validation_alias="PIPELINE_DATA_DIR",
        description="Directory holding run state and the global queue",
    )
    pipelines_dir: Path = Field(
        default=Path("pipelines"),
        validation_alias="PIPELINE_PIPELINES_DIR",
        description="Directory holding `<pipeline-id>.json` definitions",
    )
    steps_dir: Path = Field(
        default=Path("steps"),
        validation_alias="PIPELINE_STEPS_DIR",
        description="Directory holding `<step-id>/<version>/` step packages",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    max_step_attempts: int = Field(
        default=3,
        ge=0,
        validation_alias="PIPELINE_MAX_STEP_ATTEMPTS",
        description=(
            "Executions allowed per queue item before it is dead-lettered and its run "
            "marked failed. 0 retries forever."
        ),
    )
    step_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        validation_alias="PIPELINE_STEP_TIMEOUT_SECONDS",
        description="Per-step execution timeout; unset means no timeout",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value!r}")
        return level

    @property
    def data_path(self) -> Path:
        return self.workspace_root / self.data_dir

    @property
    def pipelines_path(self) -> Path:
        return self.workspace_root / self.pipelines_dir

    @property
    def steps_path(self) -> Path:
        return self.workspace_root / self.steps_dir
