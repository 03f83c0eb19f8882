# indexer/backoff.py
"""
Exponential backoff with jitter, plus the retry policy of one stream.

Usage:
    backoff = BackoffState(initial=1.0, maximum=60.0)

    try:
        do_something()
        backoff.record_success()
    except SourceUnavailable:
        delay = backoff.record_failure()
        stop_event.wait(delay)
"""

from dataclasses import dataclass
from typing import Optional
import random
import time

from django.conf import settings


BACKOFF_MULTIPLIER = 2.0
BACKOFF_JITTER = 0.1  # 10% jitter to prevent thundering herd


@dataclass
class BackoffState:
    """
    Tracks consecutive failures of one operation and the delay to apply.

    Attributes:
        initial: Delay after the first failure, in seconds
        maximum: Cap on the delay, in seconds
        consecutive_failures: Failures since the last success
        total_failures: Failures since creation
        last_failure_time: Monotonic timestamp of last failure
    """

    initial: float = 1.0
    maximum: float = 60.0
    consecutive_failures: int = 0
    total_failures: int = 0
    last_failure_time: Optional[float] = None

    def record_failure(self) -> float:
        """Record a failure and return the delay to wait before retrying."""
        self.consecutive_failures += 1
        self.total_failures += 1
        self.last_failure_time = time.monotonic()

        delay = min(
            self.initial * (BACKOFF_MULTIPLIER ** (self.consecutive_failures - 1)),
            self.maximum,
        )
        jitter = delay * BACKOFF_JITTER * random.uniform(-1.0, 1.0)
        return max(0.0, delay + jitter)

    def record_success(self) -> None:
        """Reset consecutive failures; total is kept for diagnostics."""
        self.consecutive_failures = 0


@dataclass(frozen=True)
class RetryPolicy:
    """
    How one stream reacts to failures.

    processor_retries: extra attempts for a failing event before halting
        (0 halts on the first failure)
    checkpoint_retries: extra attempts for a failing checkpoint write
    source_retries: consecutive source failures tolerated before
        SourceUnavailable is raised to the caller (None retries forever)
    backoff_initial / backoff_max: bounds of every backoff in the stream
    """

    processor_retries: int = 0
    checkpoint_retries: int = 5
    source_retries: Optional[int] = None
    backoff_initial: float = 1.0
    backoff_max: float = 60.0

    @classmethod
    def from_settings(cls, **overrides) -> "RetryPolicy":
        values = {
            "processor_retries": settings.INDEXER_PROCESSOR_RETRIES,
            "checkpoint_retries": settings.INDEXER_CHECKPOINT_RETRIES,
            "backoff_initial": settings.INDEXER_BACKOFF_INITIAL,
            "backoff_max": settings.INDEXER_BACKOFF_MAX,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def new_backoff(self) -> BackoffState:
        return BackoffState(initial=self.backoff_initial, maximum=self.backoff_max)
