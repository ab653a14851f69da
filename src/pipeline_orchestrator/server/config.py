"""Configuration for the REST server."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from pipeline_orchestrator.orchestrator.config import RunnerSettings


class ServerSettings(RunnerSettings):
    """Runner settings plus REST-only concerns.

    Auto-tick is off by default: with it enabled the server owns the single
    ticking worker for its data directory, so do not also run `drain` from the
    CLI against the same workspace.
    """

    auto_tick_enabled: bool = Field(
        default=False,
        validation_alias="PIPELINE_AUTO_TICK_ENABLED",
        description="If true, a background thread calls tick() on an interval.",
    )
    auto_tick_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        validation_alias="PIPELINE_AUTO_TICK_INTERVAL_SECONDS",
        description="Sleep between ticks when the queue is empty.",
    )

    # Dev-friendly CORS. Override via PIPELINE_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="PIPELINE_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
