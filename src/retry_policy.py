"""Exponential backoff policy shared by every work item in a run."""

from __future__ import annotations

from dataclasses import dataclass

from src.config_utils import DEFAULT_RETRY_BASE_MS, DEFAULT_RETRY_CAP_MS


@dataclass(frozen=True)
class RetryPolicy:
    """Decide whether another attempt is allowed and how long to wait first.

    ``attempt_index`` is the zero-based index of the attempt that just failed,
    so the delay after the first failure is ``base_ms``.
    """

    max_retries: int
    base_ms: int = DEFAULT_RETRY_BASE_MS
    cap_ms: int = DEFAULT_RETRY_CAP_MS

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_ms < 0 or self.cap_ms < 0:
            raise ValueError("backoff values must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def should_retry(self, attempt_index: int) -> bool:
        """Return True when a retry is allowed after failed attempt ``attempt_index``."""
        return attempt_index < self.max_retries

    def backoff_delay(self, attempt_index: int) -> float:
        """Return the delay in seconds before the retry following ``attempt_index``."""
        delay_ms = min(self.base_ms * (2 ** max(attempt_index, 0)), self.cap_ms)
        return delay_ms / 1000.0
