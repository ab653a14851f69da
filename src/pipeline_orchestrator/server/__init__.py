"""FastAPI server adapter for the pipeline runner.

Design intent:
- Keep scheduling logic in `pipeline_orchestrator.runtime.*`
- Keep server-specific concerns (routing, CORS, the background ticker) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from pipeline_orchestrator.server.app import create_app
