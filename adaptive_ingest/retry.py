import time
from collections.abc import Callable
from typing import TypeVar

from adaptive_ingest.errors import IngestError


T = TypeVar("T")


def run_with_recovery(
    fn: Callable[[int], T],
    *,
    max_retries: int,
    backoff_seconds: float,
    should_retry: Callable[[IngestError], bool],
    on_attempt_failure: Callable[[int, IngestError], None] | None = None,
) -> T:
    """Call ``fn(attempt)`` until it succeeds or the failure is not recoverable.

    The attempt number lets ``fn`` switch to its recovery strategy. The last
    error is re-raised unchanged so callers can still classify it.
    """
    attempt = 1
    while True:
        try:
            return fn(attempt)
        except IngestError as exc:
            if on_attempt_failure:
                on_attempt_failure(attempt, exc)
            if attempt > max_retries or not should_retry(exc):
                raise
            time.sleep(backoff_seconds * attempt)
            attempt += 1
