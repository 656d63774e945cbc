"""Signal-driven flush of completed work before the process exits."""

from __future__ import annotations

import logging
import signal
import sys
import threading
from collections.abc import Iterable
from enum import Enum
from typing import Any, Callable

from src.progress_store import ProgressStore
from src.result_sink import CsvResultSink
from src.schema import ProcessingProgress

logger = logging.getLogger("doc_extract.shutdown")

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownState(str, Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    EXITED = "exited"


def exit_code_for_signal(signum: int) -> int:
    return 128 + int(signum)


class ShutdownCoordinator:
    """Flush the result sink and progress ledger once, then exit.

    The first shutdown request sets ``cancel_event`` (which the scheduler and
    task runners observe), closes the sink, saves progress and calls
    ``exit_func``. Later requests are ignored. In-flight provider calls are not
    awaited.
    """

    def __init__(
        self,
        cancel_event: threading.Event,
        *,
        sink: CsvResultSink,
        progress_store: ProgressStore,
        progress: ProcessingProgress,
        exit_func: Callable[[int], Any] = sys.exit,
    ) -> None:
        self.cancel_event = cancel_event
        self.sink = sink
        self.progress_store = progress_store
        self.progress = progress
        self.exit_func = exit_func
        self.state = ShutdownState.RUNNING
        self._lock = threading.Lock()
        self._previous_handlers: dict[int, Any] = {}

    def install(self, signals: Iterable[int] = DEFAULT_SIGNALS) -> bool:
        """Register signal handlers. Only possible from the main thread."""
        if threading.current_thread() is not threading.main_thread():
            logger.warning("Signal handlers can only be installed from the main thread")
            return False
        for signum in signals:
            self._previous_handlers[signum] = signal.signal(signum, self.handle_signal)
        return True

    def restore(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def handle_signal(self, signum: int, frame: Any) -> None:
        try:
            signal_name = signal.Signals(signum).name
        except ValueError:
            signal_name = str(signum)
        logger.info("Received signal %s; initiating shutdown", signal_name)
        self.request_shutdown(
            f"signal {signal_name}", exit_code=exit_code_for_signal(signum)
        )

    def request_shutdown(self, reason: str, *, exit_code: int = 1) -> None:
        # Non-blocking acquire: a second signal delivered mid-flush must not deadlock.
        if not self._lock.acquire(blocking=False):
            logger.warning("Shutdown already in progress; ignoring %s", reason)
            return
        try:
            if self.state is not ShutdownState.RUNNING:
                logger.warning("Shutdown already requested; ignoring %s", reason)
                return
            self.state = ShutdownState.SHUTTING_DOWN
        finally:
            self._lock.release()

        logger.warning("Shutting down gracefully (%s)", reason)
        self.cancel_event.set()
        try:
            self.sink.close()
        except OSError as exc:
            logger.error("Failed to close result sink during shutdown: %s", exc)
        if self.progress_store.save(self.progress):
            logger.info(
                "Progress saved during shutdown: %d completed, %d failed",
                len(self.progress.completed),
                len(self.progress.failed),
            )
        self.state = ShutdownState.EXITED
        self.exit_func(exit_code)

    def complete(self) -> None:
        """Mark a normal finish so late signals no longer trigger a flush."""
        with self._lock:
            if self.state is ShutdownState.RUNNING:
                self.state = ShutdownState.EXITED
        self.restore()
