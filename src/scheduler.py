"""Bounded worker pool that drives work items through the task runner."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from src.progress_store import ProgressStore
from src.result_sink import CsvResultSink
from src.schema import ExtractionRecord, ProcessingProgress, TaskAttemptResult, WorkItem
from src.task_runner import TaskRunner

logger = logging.getLogger("doc_extract.pipeline")

DEFAULT_CHECKPOINT_EVERY = 10
MAX_CONCURRENCY = 20

_WORKER_EXITED = object()


@dataclass
class SchedulerStats:
    """Counters accumulated while the scheduler runs."""

    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0
    checkpoints: int = 0
    failed_checkpoints: int = 0
    failed_files: list[str] = field(default_factory=list)

    @property
    def terminal(self) -> int:
        return self.succeeded + self.failed


class Scheduler:
    """Run work items on at most ``concurrency_limit`` worker threads.

    Workers pull items in FIFO order from a shared queue and push each terminal
    result onto a completion queue. Only the thread calling :meth:`run_all`
    consumes that queue, so the progress ledger and the result sink are never
    mutated concurrently. Output rows therefore follow completion order.

    Setting ``cancel_event`` stops workers from starting new items; results that
    are already in flight are still recorded before the final save.
    """

    def __init__(
        self,
        runner: TaskRunner,
        *,
        progress: ProcessingProgress,
        progress_store: ProgressStore,
        sink: CsvResultSink,
        output_path: Path | str,
        cancel_event: threading.Event | None = None,
        checkpoint_every: int = DEFAULT_CHECKPOINT_EVERY,
    ) -> None:
        if checkpoint_every < 1:
            raise ValueError("checkpoint_every must be >= 1")
        self.runner = runner
        self.progress = progress
        self.progress_store = progress_store
        self.sink = sink
        self.output_path = Path(output_path)
        self.cancel_event = cancel_event or threading.Event()
        self.checkpoint_every = checkpoint_every
        self.stats = SchedulerStats()
        self._work_queue: queue.Queue[WorkItem | None] = queue.Queue()
        self._completions: queue.Queue[object] = queue.Queue()
        self._cancel_logged = False

    def _worker(self, worker_id: int) -> None:
        worker_logger = logger.getChild(f"worker-{worker_id}")
        worker_logger.debug("Worker %d started", worker_id)
        try:
            while not self.cancel_event.is_set():
                item = self._work_queue.get()
                if item is None:  # Poison pill
                    break
                if self.cancel_event.is_set():
                    break
                try:
                    result = self.runner.run(item)
                except Exception as exc:
                    worker_logger.exception("Unexpected error processing %s", item.filename)
                    result = TaskAttemptResult(
                        filename=item.filename,
                        success=False,
                        attempts=1,
                        error=str(exc) or exc.__class__.__name__,
                    )
                self._completions.put(result)
        finally:
            worker_logger.debug("Worker %d exiting", worker_id)
            self._completions.put(_WORKER_EXITED)

    def run_all(
        self, items: Sequence[WorkItem], concurrency_limit: int
    ) -> SchedulerStats:
        """Process ``items`` and return the run counters."""
        if not 1 <= concurrency_limit <= MAX_CONCURRENCY:
            raise ValueError(
                f"concurrency_limit must be between 1 and {MAX_CONCURRENCY}"
            )
        if not items:
            logger.info("No work items to schedule")
            return self.stats

        self.sink.open(self.output_path)

        worker_count = min(concurrency_limit, len(items))
        for item in items:
            self._work_queue.put(item)
        for _ in range(worker_count):
            self._work_queue.put(None)

        threads = [
            threading.Thread(
                target=self._worker,
                args=(worker_id,),
                name=f"extract-worker-{worker_id}",
                daemon=True,
            )
            for worker_id in range(1, worker_count + 1)
        ]
        logger.info(
            "Scheduling %d items on %d worker(s)", len(items), worker_count
        )
        for thread in threads:
            thread.start()

        active_workers = worker_count
        try:
            while active_workers:
                message = self._completions.get()
                if message is _WORKER_EXITED:
                    active_workers -= 1
                    continue
                assert isinstance(message, TaskAttemptResult)
                self._handle_result(message)
                self._observe_cancellation(active_workers)
        except BaseException:
            # Stop workers picking up new items; in-flight calls are abandoned.
            self.cancel_event.set()
            raise
        finally:
            self._finish()

        return self.stats

    def _observe_cancellation(self, active_workers: int) -> None:
        if self.cancel_event.is_set() and not self._cancel_logged:
            self._cancel_logged = True
            logger.warning(
                "Cancellation requested; no new items will start "
                "(%d worker(s) finishing in-flight items)",
                active_workers,
            )

    def _handle_result(self, result: TaskAttemptResult) -> None:
        if result.cancelled:
            self.stats.cancelled += 1
            logger.info("Abandoned %s after cancellation", result.filename)
            return

        if result.success:
            try:
                record = ExtractionRecord.from_result(result)
            except ValidationError as exc:
                result = TaskAttemptResult(
                    filename=result.filename,
                    success=False,
                    attempts=result.attempts,
                    error=f"Extraction payload rejected: {exc.error_count()} error(s)",
                )
            else:
                # Write before marking completed so a sink failure never records
                # a completion without its row.
                self.sink.write(record)
                self.progress.mark_completed(result.filename)
                self.stats.succeeded += 1
                logger.info(
                    "Completed: %s (%d/%d, %d attempt(s))",
                    result.filename,
                    self.stats.succeeded,
                    self.progress.total_files,
                    result.attempts,
                )

        if not result.success:
            self.progress.mark_failed(result.filename)
            self.stats.failed += 1
            self.stats.failed_files.append(result.filename)
            logger.error(
                "Failed: %s after %d attempt(s) - %s",
                result.filename,
                result.attempts,
                result.error,
            )

        if self.stats.terminal % self.checkpoint_every == 0:
            self._checkpoint()

    def _checkpoint(self) -> None:
        if self.progress_store.save(self.progress):
            self.stats.checkpoints += 1
            logger.debug(
                "Checkpoint saved after %d terminal results", self.stats.terminal
            )
        else:
            self.stats.failed_checkpoints += 1
            logger.error(
                "Checkpoint after %d terminal results was not saved",
                self.stats.terminal,
            )

    def _finish(self) -> None:
        try:
            if not self.progress_store.save(self.progress):
                logger.error("Final progress save failed for %s", self.progress_store.path)
        finally:
            self.sink.close()
