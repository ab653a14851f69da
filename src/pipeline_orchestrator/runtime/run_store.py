"""JSON-file backed run state and global execution queue.

Layout under the store root:

    queue.json                                  global FIFO of queue items
    dead_letter.json                            items that exhausted their attempts
    system.log                                  ndjson system events
    runs/<pipeline>/<run>/metadata.json
    runs/<pipeline>/<run>/pipeline_inputs.json  immutable pipeline input bag
    runs/<pipeline>/<run>/inputs/<step>.json    materialised step inputs
    runs/<pipeline>/<run>/outputs/<step>.json   presence == step completed
    runs/<pipeline>/<run>/logs/<step>.ndjson    append-only step log

The store holds no business logic. Records are written atomically (temp file
plus rename) so a crash never leaves a truncated JSON file behind. Queue and
metadata read-modify-write cycles are serialised with an in-process lock; a
second process ticking against the same directory is not supported.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from pipeline_orchestrator.domain.errors import RecordNotFound, RunAlreadyExists, StoreCorrupted
from pipeline_orchestrator.domain.models import DeadLetterEntry, LogEntry, QueueItem, RunMetadata
from pipeline_orchestrator.domain.state_machine import RunStatus


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise StoreCorrupted(path, str(e)) from e


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps(data, indent=2, ensure_ascii=False) + "\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _append_line(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(line + "\n")


def _record_names(directory: Path, suffix: str) -> list[str]:
    if not directory.exists():
        return []
    return sorted(
        p.name[: -len(suffix)]
        for p in directory.iterdir()
        if p.is_file() and p.name.endswith(suffix) and not p.name.startswith(".")
    )


class FileRunStore:
    def __init__(self, root: Path) -> None:
        self._root = root
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def queue_path(self) -> Path:
        return self._root / "queue.json"

    @property
    def dead_letter_path(self) -> Path:
        return self._root / "dead_letter.json"

    @property
    def system_log_path(self) -> Path:
        return self._root / "system.log"

    def run_dir(self, pipeline_id: str, run_id: str) -> Path:
        return self._root / "runs" / pipeline_id / run_id

    def _metadata_path(self, pipeline_id: str, run_id: str) -> Path:
        return self.run_dir(pipeline_id, run_id) / "metadata.json"

    def _pipeline_inputs_path(self, pipeline_id: str, run_id: str) -> Path:
        # Outside inputs/ so no execution name can overwrite it.
        return self.run_dir(pipeline_id, run_id) / "pipeline_inputs.json"

    def _input_path(self, pipeline_id: str, run_id: str, name: str) -> Path:
        return self.run_dir(pipeline_id, run_id) / "inputs" / f"{name}.json"

    def _output_path(self, pipeline_id: str, run_id: str, step_id: str) -> Path:
        return self.run_dir(pipeline_id, run_id) / "outputs" / f"{step_id}.json"

    def _log_path(self, pipeline_id: str, run_id: str, step_id: str) -> Path:
        return self.run_dir(pipeline_id, run_id) / "logs" / f"{step_id}.ndjson"

    # ------------------------------------------------------------------
    # Run metadata and pipeline inputs
    # ------------------------------------------------------------------

    def init_run(self, metadata: RunMetadata, pipeline_inputs: Mapping[str, Any]) -> None:
        """Create the run record and its immutable input bag.

        Raises:
            RunAlreadyExists: If metadata for this run is already on disk.
        """

        metadata_path = self._metadata_path(metadata.pipeline_id, metadata.run_id)
        with self._lock:
            if metadata_path.exists():
                raise RunAlreadyExists(metadata.pipeline_id, metadata.run_id)
            # Metadata goes last: its presence marks the run as created.
            _write_json(
                self._pipeline_inputs_path(metadata.pipeline_id, metadata.run_id),
                dict(pipeline_inputs),
            )
            _write_json(metadata_path, metadata.to_json())

    def _read_metadata_unlocked(self, pipeline_id: str, run_id: str) -> RunMetadata:
        path = self._metadata_path(pipeline_id, run_id)
        if not path.exists():
            raise RecordNotFound(f"Run {run_id!r} of pipeline {pipeline_id!r}", path)
        try:
            return RunMetadata.model_validate(_read_json(path))
        except ValidationError as e:
            raise StoreCorrupted(path, str(e)) from e

    def read_metadata(self, pipeline_id: str, run_id: str) -> RunMetadata:
        return self._read_metadata_unlocked(pipeline_id, run_id)

    def update_status(self, pipeline_id: str, run_id: str, status: RunStatus) -> RunMetadata:
        with self._lock:
            current = self._read_metadata_unlocked(pipeline_id, run_id)
            updated = current.model_copy(update={"status": status})
            _write_json(self._metadata_path(pipeline_id, run_id), updated.to_json())
            return updated

    def read_pipeline_inputs(self, pipeline_id: str, run_id: str) -> dict[str, Any]:
        path = self._pipeline_inputs_path(pipeline_id, run_id)
        if not path.exists():
            raise RecordNotFound(f"Pipeline inputs of run {run_id!r}", path)
        return _read_json(path)

    def list_runs(self, pipeline_id: str | None = None) -> list[RunMetadata]:
        runs_root = self._root / "runs"
        if not runs_root.exists():
            return []
        if pipeline_id is not None:
            pipeline_dirs = [runs_root / pipeline_id]
        else:
            pipeline_dirs = sorted(p for p in runs_root.iterdir() if p.is_dir())

        runs: list[RunMetadata] = []
        for pipeline_dir in pipeline_dirs:
            if not pipeline_dir.is_dir():
                continue
            for run_dir in sorted(p for p in pipeline_dir.iterdir() if p.is_dir()):
                if (run_dir / "metadata.json").exists():
                    runs.append(self.read_metadata(pipeline_dir.name, run_dir.name))
        return sorted(runs, key=lambda r: r.created_at)

    # ------------------------------------------------------------------
    # Step inputs, outputs and logs
    # ------------------------------------------------------------------

    def write_step_input(
        self, pipeline_id: str, run_id: str, step_id: str, inputs: Mapping[str, Any]
    ) -> None:
        _write_json(self._input_path(pipeline_id, run_id, step_id), dict(inputs))

    def read_step_input(self, pipeline_id: str, run_id: str, step_id: str) -> dict[str, Any] | None:
        path = self._input_path(pipeline_id, run_id, step_id)
        return _read_json(path) if path.exists() else None

    def write_step_output(
        self, pipeline_id: str, run_id: str, step_id: str, outputs: Mapping[str, Any]
    ) -> None:
        _write_json(self._output_path(pipeline_id, run_id, step_id), dict(outputs))

    def read_step_output(
        self, pipeline_id: str, run_id: str, step_id: str
    ) -> dict[str, Any] | None:
        path = self._output_path(pipeline_id, run_id, step_id)
        return _read_json(path) if path.exists() else None

    def list_completed_steps(self, pipeline_id: str, run_id: str) -> list[str]:
        return _record_names(self.run_dir(pipeline_id, run_id) / "outputs", ".json")

    def load_all_outputs(self, pipeline_id: str, run_id: str) -> dict[str, dict[str, Any]]:
        outputs_dir = self.run_dir(pipeline_id, run_id) / "outputs"
        return {
            name: _read_json(outputs_dir / f"{name}.json")
            for name in self.list_completed_steps(pipeline_id, run_id)
        }

    def append_log(
        self, pipeline_id: str, run_id: str, step_id: str, entry: Mapping[str, Any]
    ) -> None:
        record = {"timestamp": _utc_iso_now(), **entry}
        _append_line(
            self._log_path(pipeline_id, run_id, step_id),
            json.dumps(record, ensure_ascii=False, default=str),
        )

    def list_log_streams(self, pipeline_id: str, run_id: str) -> list[str]:
        return _record_names(self.run_dir(pipeline_id, run_id) / "logs", ".ndjson")

    def read_log(self, pipeline_id: str, run_id: str, step_id: str) -> list[LogEntry]:
        path = self._log_path(pipeline_id, run_id, step_id)
        if not path.exists():
            raise RecordNotFound(f"Log stream {step_id!r} of run {run_id!r}", path)

        entries: list[LogEntry] = []
        for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
            if not line.strip():
                continue
            try:
                entries.append(LogEntry.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                raise StoreCorrupted(path, f"line {lineno}: {e}") from e
        return entries

    # ------------------------------------------------------------------
    # Global queue
    # ------------------------------------------------------------------

    def _read_queue_unlocked(self) -> list[QueueItem]:
        if not self.queue_path.exists():
            return []
        raw = _read_json(self.queue_path)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise StoreCorrupted(self.queue_path, "expected a JSON list")
        try:
            return [QueueItem.model_validate(item) for item in raw]
        except ValidationError as e:
            raise StoreCorrupted(self.queue_path, str(e)) from e

    def _write_queue_unlocked(self, queue: list[QueueItem]) -> None:
        _write_json(self.queue_path, [item.to_json() for item in queue])

    def read_queue(self) -> list[QueueItem]:
        with self._lock:
            return self._read_queue_unlocked()

    def write_queue(self, queue: list[QueueItem]) -> None:
        with self._lock:
            self._write_queue_unlocked(queue)

    def append_queue_item(self, item: QueueItem) -> None:
        with self._lock:
            queue = self._read_queue_unlocked()
            queue.append(item)
            self._write_queue_unlocked(queue)

    def pop_queue_item(self) -> QueueItem | None:
        """Remove and return the oldest queue item, or None when the queue is empty."""

        with self._lock:
            queue = self._read_queue_unlocked()
            if not queue:
                return None
            item = queue.pop(0)
            self._write_queue_unlocked(queue)
            return item

    def remove_run_items(self, pipeline_id: str, run_id: str) -> int:
        with self._lock:
            queue = self._read_queue_unlocked()
            kept = [item for item in queue if not item.belongs_to(pipeline_id, run_id)]
            if len(kept) != len(queue):
                self._write_queue_unlocked(kept)
            return len(queue) - len(kept)

    # ------------------------------------------------------------------
    # Dead letters and system log
    # ------------------------------------------------------------------

    def append_dead_letter(self, item: QueueItem, error: str) -> DeadLetterEntry:
        entry = DeadLetterEntry(item=item, error=error, failed_at=_utc_iso_now())
        with self._lock:
            entries = self.read_dead_letters()
            entries.append(entry)
            _write_json(self.dead_letter_path, [e.to_json() for e in entries])
        return entry

    def read_dead_letters(self) -> list[DeadLetterEntry]:
        if not self.dead_letter_path.exists():
            return []
        raw = _read_json(self.dead_letter_path)
        if not isinstance(raw, list):
            raise StoreCorrupted(self.dead_letter_path, "expected a JSON list")
        return [DeadLetterEntry.model_validate(e) for e in raw]

    def log_system(self, message: str, metadata: Mapping[str, Any] | None = None) -> None:
        record: dict[str, Any] = {"timestamp": _utc_iso_now(), "message": message}
        if metadata:
            record["metadata"] = dict(metadata)
        _append_line(self.system_log_path, json.dumps(record, ensure_ascii=False, default=str))
