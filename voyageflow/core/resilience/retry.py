"""Retry helpers with backoff for transient failures."""

import asyncio
import random
from typing import (
    Any,
    Awaitable,
    Callable,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from voyageflow.core.catalog.schema import (
    BackoffStrategy,
    RetryPolicy,
)
from voyageflow.core.errors import is_transient_error
from voyageflow.core.logging import logger

MAX_BACKOFF_MS = 10000


class RetryConfig(BaseModel):
    """Retry settings for tool calls."""

    max_attempts: int = Field(default=3, ge=1)
    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=MAX_BACKOFF_MS, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(default=0.2, ge=0.0, le=1.0)


def compute_backoff_ms(attempt: int, policy: RetryPolicy, max_backoff_ms: int = MAX_BACKOFF_MS) -> int:
    """Delay before retry number ``attempt`` (1-based) of a stage.

    Linear grows as ``backoff_ms * attempt``; exponential as
    ``backoff_ms * 2 ** (attempt - 1)``. Both are capped.
    """
    if policy.backoff == BackoffStrategy.LINEAR:
        delay = policy.backoff_ms * attempt
    else:
        delay = policy.backoff_ms * (2 ** (attempt - 1))
    return min(delay, max_backoff_ms)


def compute_jittered_delay_ms(attempt: int, config: RetryConfig) -> int:
    """Exponential delay with +/- jitter for tool-level retries."""
    base = min(config.initial_delay_ms * (config.multiplier ** (attempt - 1)), config.max_delay_ms)
    spread = base * config.jitter
    return max(0, int(base + random.uniform(-spread, spread)))


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    config: Optional[RetryConfig] = None,
    is_retryable: Callable[[BaseException], bool] = is_transient_error,
    operation: str = "operation",
) -> Any:
    """Call ``func`` until it succeeds, fails permanently, or attempts run out.

    Args:
        func: Zero-argument coroutine function.
        config: Attempt count and delay settings.
        is_retryable: Predicate deciding whether an error is worth retrying.
        operation: Name used in log events.

    Returns:
        Any: The first successful result.

    Raises:
        Exception: The last error once retries are exhausted or the error is permanent.
    """
    config = config or RetryConfig()
    attempt = 1
    while True:
        try:
            return await func()
        except Exception as e:
            if attempt >= config.max_attempts or not is_retryable(e):
                raise
            delay_ms = compute_jittered_delay_ms(attempt, config)
            logger.warning(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                delay_ms=delay_ms,
                error=str(e),
            )
            await asyncio.sleep(delay_ms / 1000)
            attempt += 1
