"""Retry/backoff helpers for operations that fail on transient contention."""

from __future__ import annotations

import time
from typing import Callable, Tuple, Type, TypeVar

T = TypeVar("T")


class RetryConfig:
    def __init__(self, *, attempts: int = 5, backoff_seconds: float = 0.05) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds


def call_with_retry(
    func: Callable[[], T],
    *,
    retry_on: Tuple[Type[BaseException], ...],
    should_retry: Callable[[BaseException], bool] | None = None,
    retry_config: RetryConfig | None = None,
) -> T:
    """Invoke ``func`` until it succeeds or the attempts are exhausted.

    Only exceptions matching ``retry_on`` (and accepted by ``should_retry``
    when given) are retried; anything else propagates immediately.
    """
    config = retry_config or RetryConfig()
    attempt = 0
    last_exception: BaseException | None = None

    while attempt < config.attempts:
        try:
            return func()
        except retry_on as exc:
            if should_retry is not None and not should_retry(exc):
                raise
            last_exception = exc
            attempt += 1
            if attempt >= config.attempts:
                break
            time.sleep(config.backoff_seconds * attempt)

    if last_exception is not None:
        raise last_exception
    raise RuntimeError("Operation failed without raising an exception")


__all__ = ["RetryConfig", "call_with_retry"]
