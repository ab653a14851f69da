"""Background ticking thread for the REST server."""

from __future__ import annotations

import logging
import threading

from pipeline_orchestrator.runtime.runner import PipelineRunner

logger = logging.getLogger(__name__)


class BackgroundTicker:
    """Calls `runner.tick()` on a daemon thread until stopped.

    Ticks back-to-back while the queue has work and sleeps `interval_seconds`
    once it is empty. A tick that raises is logged and the loop carries on; the
    popped item is not re-enqueued.
    """

    def __init__(self, runner: PipelineRunner, interval_seconds: float) -> None:
        self._runner = runner
        self._interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="pipeline-ticker", daemon=True)
        self._thread.start()
        logger.info("Background ticker started", extra={"interval": self._interval_seconds})

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Background ticker stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                item = self._runner.tick()
            except Exception:
                logger.exception("Background tick failed")
                item = None
            if item is None:
                self._stop.wait(self._interval_seconds)
