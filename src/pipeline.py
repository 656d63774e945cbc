"""End-to-end bulk extraction run: discover, filter, schedule, report."""

from __future__ import annotations

import logging
import sys
import threading
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, Field

from src.config_utils import (
    PipelineSettings,
    default_output_path,
    default_progress_path,
    resolve_api_key,
    resolve_settings,
)
from src.discover_files import discover_documents
from src.model_providers import ProviderCall, build_model_provider
from src.progress_store import ProgressStore, filter_pending
from src.result_sink import CsvResultSink
from src.retry_policy import RetryPolicy
from src.scheduler import MAX_CONCURRENCY, Scheduler
from src.schema import Provider, ReasoningEffort, RunSummary, WorkItem
from src.shutdown import ShutdownCoordinator
from src.task_runner import TaskRunner

logger = logging.getLogger("doc_extract.pipeline")


class RunOptions(BaseModel):
    """Validated options for one bulk extraction run."""

    folder: Path = Path("documents")
    output: Path | None = None
    concurrency: int = Field(default=3, ge=1, le=MAX_CONCURRENCY)
    model: str = Field(min_length=1)
    provider: Provider = Provider.OPENAI
    reasoning_effort: ReasoningEffort | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    retries: int = Field(default=3, ge=0, le=10)
    progress_file: Path | None = None
    retry_failed: bool = False


def resolve_provider_call(
    options: RunOptions,
    settings: PipelineSettings,
    environ: Mapping[str, str] | None = None,
) -> ProviderCall:
    """Check the provider credential and bind the provider adapter."""
    api_key = resolve_api_key(options.provider, environ)
    return build_model_provider(options.provider, settings=settings, api_key=api_key)


def run_pipeline(
    options: RunOptions,
    *,
    settings: PipelineSettings | None = None,
    provider_call: ProviderCall | None = None,
    environ: Mapping[str, str] | None = None,
    install_signals: bool = True,
    exit_func: Callable[[int], Any] = sys.exit,
    sleep: Callable[[float], None] | None = None,
) -> RunSummary:
    """Run one batch and return its summary.

    Raises ``ConfigurationError`` for a missing credential and
    ``InputFolderError`` for a bad folder, both before anything is scheduled.
    Errors from the result sink propagate after a final progress save.
    """
    settings = settings or resolve_settings()
    if provider_call is None:
        provider_call = resolve_provider_call(options, settings, environ)

    progress_path = options.progress_file or default_progress_path(
        settings, options.model
    )
    store = ProgressStore(progress_path)
    progress = store.load()

    discovered = discover_documents(options.folder, settings.file_extensions)
    logger.info("Found %d matching files in %s", len(discovered), options.folder)

    if options.retry_failed and progress.failed:
        logger.info("Retrying %d previously failed files", len(progress.failed))
        progress.failed = []

    pending = filter_pending(discovered, progress)
    logger.info(
        "%d files to process (%d already completed, %d failed)",
        len(pending),
        len(progress.completed),
        len(progress.failed),
    )
    summary = RunSummary(
        discovered=len(discovered),
        skipped=len(discovered) - len(pending),
        failed_files=list(progress.failed),
    )
    if not pending:
        logger.info("All files already processed")
        return summary

    progress.total_files = len(discovered)
    store.save(progress)

    output_path = options.output or default_output_path(settings, options.model)
    cancel_event = threading.Event()
    sink = CsvResultSink()
    runner = TaskRunner(
        provider_call,
        model=options.model,
        retry_policy=RetryPolicy(
            max_retries=options.retries,
            base_ms=settings.retry_base_ms,
            cap_ms=settings.retry_cap_ms,
        ),
        temperature=options.temperature,
        reasoning_effort=options.reasoning_effort,
        cancel_event=cancel_event,
        sleep=sleep,
    )
    scheduler = Scheduler(
        runner,
        progress=progress,
        progress_store=store,
        sink=sink,
        output_path=output_path,
        cancel_event=cancel_event,
        checkpoint_every=settings.checkpoint_every,
    )
    coordinator = ShutdownCoordinator(
        cancel_event,
        sink=sink,
        progress_store=store,
        progress=progress,
        exit_func=exit_func,
    )
    if install_signals:
        coordinator.install()

    items = [WorkItem.from_folder(options.folder, name) for name in pending]
    start_time = time.monotonic()
    try:
        stats = scheduler.run_all(items, options.concurrency)
    finally:
        coordinator.complete()

    summary.succeeded = stats.succeeded
    summary.failed = stats.failed
    summary.elapsed_seconds = time.monotonic() - start_time
    summary.failed_files = list(progress.failed)
    summary.output_path = output_path
    summary.cancelled = cancel_event.is_set()

    if not progress.failed and not summary.cancelled:
        summary.progress_cleared = store.clear()
    return summary
