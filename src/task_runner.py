"""Run one work item through the model provider with bounded retries."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from src.model_providers import ProviderCall
from src.retry_policy import RetryPolicy
from src.schema import ProviderRequest, ReasoningEffort, TaskAttemptResult, WorkItem

logger = logging.getLogger("doc_extract.runner")

CANCELLED_MESSAGE = "Cancelled before completion"


class TaskRunner:
    """Execute up to ``retry_policy.max_attempts`` provider calls for one item.

    This is the only retry layer: the provider adapters never retry on their
    own, so ``attempts`` on the returned result is exactly the number of
    provider calls made. The runner touches neither the progress ledger nor the
    result sink.
    """

    def __init__(
        self,
        provider_call: ProviderCall,
        *,
        model: str,
        retry_policy: RetryPolicy,
        temperature: float | None = None,
        reasoning_effort: ReasoningEffort | None = None,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.provider_call = provider_call
        self.model = model
        self.retry_policy = retry_policy
        self.temperature = temperature
        self.reasoning_effort = reasoning_effort
        self.cancel_event = cancel_event
        self._sleep = sleep

    def _build_request(self, item: WorkItem) -> ProviderRequest:
        return ProviderRequest(
            files=[item.path],
            model=self.model,
            temperature=self.temperature,
            reasoning_effort=self.reasoning_effort,
        )

    def _is_cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _pause(self, delay: float) -> bool:
        """Wait ``delay`` seconds; return False if cancellation interrupted the wait."""
        if self._sleep is not None:
            self._sleep(delay)
            return not self._is_cancelled()
        if self.cancel_event is not None:
            return not self.cancel_event.wait(delay)
        time.sleep(delay)
        return True

    def run(self, item: WorkItem) -> TaskAttemptResult:
        request = self._build_request(item)
        max_attempts = self.retry_policy.max_attempts
        last_error = "No attempts were made"
        attempts = 0

        logger.info("Processing: %s", item.filename)
        for attempt_index in range(max_attempts):
            if self._is_cancelled():
                return TaskAttemptResult(
                    filename=item.filename,
                    success=False,
                    attempts=attempts,
                    error=CANCELLED_MESSAGE,
                    cancelled=True,
                )

            attempts += 1
            try:
                response = self.provider_call(request)
            except Exception as exc:
                # Adapters report failures as values; anything raised is treated the same way.
                logger.debug("Provider raised for %s", item.filename, exc_info=True)
                last_error = str(exc) or exc.__class__.__name__
            else:
                if response.success:
                    return TaskAttemptResult(
                        filename=item.filename,
                        success=True,
                        attempts=attempts,
                        data=response.data,
                    )
                last_error = response.error or "Model provider request failed"

            logger.warning(
                "Attempt %d/%d failed for %s: %s",
                attempts,
                max_attempts,
                item.filename,
                last_error,
            )

            if not self.retry_policy.should_retry(attempt_index):
                break

            delay = self.retry_policy.backoff_delay(attempt_index)
            logger.info(
                "Retrying %s in %.1fs (attempt %d/%d)",
                item.filename,
                delay,
                attempts + 1,
                max_attempts,
            )
            if not self._pause(delay):
                return TaskAttemptResult(
                    filename=item.filename,
                    success=False,
                    attempts=attempts,
                    error=CANCELLED_MESSAGE,
                    cancelled=True,
                )

        return TaskAttemptResult(
            filename=item.filename,
            success=False,
            attempts=attempts,
            error=last_error,
        )
