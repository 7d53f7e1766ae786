"""Retry utilities with exponential backoff."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .exceptions import TransientError

T = TypeVar("T")
logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 0.05
    multiplier: float = 2.0
    max_delay: float = 1.0
    retryable_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (TransientError,)
    )


def compute_delay(config: RetryConfig, attempt: int) -> float:
    return min(config.base_delay * (config.multiplier**attempt), config.max_delay)


def with_retry_sync(
    operation: Callable[[], T],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute an idempotent operation, retrying transient failures.

    Only retryable exceptions are caught; anything else propagates on the
    first attempt. The last retryable exception is re-raised once the
    attempts are exhausted.
    """
    if config is None:
        config = RetryConfig()

    last_exception: Exception | None = None

    for attempt in range(config.max_attempts):
        try:
            return operation()
        except config.retryable_exceptions as e:
            last_exception = e
            if attempt == config.max_attempts - 1:
                logger.error(
                    "%s failed after %d attempts: %s", operation_name, config.max_attempts, e
                )
                raise

            delay = compute_delay(config, attempt)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                operation_name,
                attempt + 1,
                config.max_attempts,
                delay,
                e,
            )
            sleep(delay)

    raise last_exception  # type: ignore
