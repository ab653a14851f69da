"""CLI entrypoint for the local-first pipeline runner.

Exit codes:
- 0 success
- 1 unexpected error
- 2 configuration error
- 3 pipeline error (missing record, invalid definition, corrupted store, ...)
- 4 evaluation finished with failing scenarios
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from pipeline_orchestrator import __version__
from pipeline_orchestrator.domain.errors import PipelineError
from pipeline_orchestrator.orchestrator.config import RunnerSettings
from pipeline_orchestrator.orchestrator.logging import configure_logging
from pipeline_orchestrator.orchestrator.scaffold import init_workspace
from pipeline_orchestrator.runtime.evaluator import StepEvaluator
from pipeline_orchestrator.runtime.runner import PipelineRunner

logger = logging.getLogger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _load_inputs(path: str | None) -> dict[str, Any]:
    if path is None:
        return {}
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Inputs file {path} must contain a JSON object")
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pipeline-orchestrator",
        description="Local-first pipeline runner with durable, resumable runs",
    )
    parser.add_argument(
        "--version", action="version", version=f"local-pipeline-orchestrator {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Scaffold data/, steps/ and pipelines/ with a sample")

    run = subparsers.add_parser("run", help="Create a run and enqueue its first steps")
    run.add_argument("pipeline_id", help="Pipeline identifier (file name without .json)")
    run.add_argument(
        "--inputs",
        default=None,
        help="Path to a JSON file holding the run's input object",
    )
    run.add_argument("--user", default=None, help="Optional user id recorded on the run")

    subparsers.add_parser("tick", help="Process at most one queued step")

    drain = subparsers.add_parser("drain", help="Tick until the queue is empty")
    drain.add_argument(
        "--max-ticks",
        type=int,
        default=None,
        help="Stop after this many ticks even if work remains",
    )

    resume = subparsers.add_parser(
        "resume", help="Re-enqueue runnable steps of a run (after a crash)"
    )
    resume.add_argument("pipeline_id")
    resume.add_argument("run_id")

    inspect = subparsers.add_parser("inspect", help="Show run metadata and step progress")
    inspect.add_argument("pipeline_id")
    inspect.add_argument("run_id")

    logs = subparsers.add_parser("logs", help="Print step logs of a run")
    logs.add_argument("pipeline_id")
    logs.add_argument("run_id")
    logs.add_argument("--step", default=None, help="Only print this step's log")

    evaluate = subparsers.add_parser("eval", help="Evaluate a step against its scenarios")
    evaluate.add_argument("step_id")
    evaluate.add_argument("--version", dest="step_version", default="v1", help="Step version")

    subparsers.add_parser("queue", help="Print the global queue")

    return parser


def _print_logs(runner: PipelineRunner, pipeline_id: str, run_id: str, step: str | None) -> None:
    store = runner.store
    store.read_metadata(pipeline_id, run_id)
    streams = [step] if step is not None else store.list_log_streams(pipeline_id, run_id)
    for name in streams:
        print(f"== {name} ==")
        for entry in store.read_log(pipeline_id, run_id, name):
            line = f"{entry.timestamp} [{entry.level}] {entry.message}"
            if entry.metadata:
                line += f" {json.dumps(entry.metadata, ensure_ascii=False)}"
            print(line)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = RunnerSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "init":
            created = init_workspace(settings)
            for path in created:
                print(f"Created {path}")
            if not created:
                print("Workspace already initialised")
            return 0

        runner = PipelineRunner.from_settings(settings)

        if args.command == "run":
            metadata = runner.create_run(
                args.pipeline_id, _load_inputs(args.inputs), user_id=args.user
            )
            print(f"Created run {metadata.run_id} for pipeline {metadata.pipeline_id}")
            return 0

        if args.command == "tick":
            item = runner.tick()
            if item is None:
                print("Queue is empty")
            else:
                print(f"Processed {item.step_id} ({item.pipeline_id}/{item.run_id})")
            return 0

        if args.command == "drain":
            processed = runner.run_until_idle(max_ticks=args.max_ticks)
            print(f"Processed {len(processed)} queue item(s)")
            return 0

        if args.command == "resume":
            added = runner.resume_run(args.pipeline_id, args.run_id)
            if added:
                print(f"Enqueued {', '.join(added)}")
            else:
                print("Nothing to enqueue")
            return 0

        if args.command == "inspect":
            _print_json(runner.get_run(args.pipeline_id, args.run_id).to_json())
            return 0

        if args.command == "logs":
            _print_logs(runner, args.pipeline_id, args.run_id, args.step)
            return 0

        if args.command == "eval":
            evaluator = StepEvaluator(runner.executor, settings.steps_path, settings.data_path)
            results = evaluator.evaluate(args.step_id, args.step_version)
            _print_json([r.model_dump(mode="json", by_alias=True) for r in results])
            return 0 if all(r.success for r in results) else 4

        if args.command == "queue":
            _print_json([item.to_json() for item in runner.store.read_queue()])
            return 0

        parser.error(f"Unknown command: {args.command}")
        return 2
    except PipelineError as e:
        logger.error("Command failed", extra={"command": args.command, "error": str(e)})
        print(f"Error: {e}", file=sys.stderr)
        return 3
    except Exception:
        logger.exception("Unexpected error")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
