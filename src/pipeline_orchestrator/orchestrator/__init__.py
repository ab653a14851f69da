"""Process-level wiring for the local-first pipeline runner.

Provides:
- Settings loaded from the environment / .env
- Structured logging
- Workspace scaffolding
- The `pipeline-orchestrator` CLI
"""
