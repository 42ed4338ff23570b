"""Bounded exponential backoff for retryable connector calls."""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, TypeVar

from connectors.aws.config import RetryConfig
from connectors.aws.errors import ConnectorError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retry(
    operation: Callable[[], T],
    *,
    retry: RetryConfig,
    mapper: Callable[[Exception], ConnectorError],
    description: str,
    sleep: Callable[[float], None] = time.sleep,
    jitter: Callable[[], float] = lambda: random.uniform(-1.0, 1.0),
) -> tuple[T, int]:
    """Run ``operation`` until it succeeds, fails fatally, or attempts run out.

    Returns the result and the number of attempts used. Non-retryable errors
    are raised on first sight; a retryable error is re-raised once
    ``retry.max_attempts`` attempts have failed.
    """

    max_attempts = max(1, retry.max_attempts)
    attempts = 0
    while True:
        attempts += 1
        try:
            return operation(), attempts
        except Exception as exc:  # noqa: BLE001
            mapped = mapper(exc)
            if not mapped.retryable:
                raise mapped from exc
            if attempts >= max_attempts:
                raise ConnectorError(
                    mapped.code,
                    f"{description} failed after {attempts} attempts: {mapped}",
                    cause=mapped.cause or exc,
                ) from exc
            delay = retry.backoff_seconds(attempts, jitter=jitter())
            logger.warning(
                "retry_scheduled",
                extra={
                    "event": "retry_scheduled",
                    "operation": description,
                    "attempt": attempts,
                    "code": mapped.code.value,
                    "backoff_ms": int(delay * 1000),
                },
            )
            sleep(delay)
