"""
Bounded retry with exponential backoff for settlement operations.

Wura retries in two shapes. Settlement-store I/O is wrapped whole with
``retry_async``. Chain submission and confirmation polling drive a
``RetryContext`` by hand because they must act between attempts (look up an
earlier broadcast, record a hash). Both use the same ``RetryConfig``: a fixed
attempt budget, exponential backoff capped at ``max_delay`` with some jitter,
and a predicate deciding which failures earn another attempt (by default the
``transient`` flag carried by chain errors).

Usage:
    from wura_core.retry import RetryConfig, retry_async

    raw = await retry_async(client.get, key, config=STORE_RETRY_CONFIG)
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import (
    Awaitable,
    Callable,
    Optional,
    ParamSpec,
    TypeVar,
)

from .constants import RetryDefaults
from .exceptions import is_transient

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Retry attempts after the first call (0 means a single attempt)
        base_delay: Initial delay between retries in seconds
        max_delay: Cap on a single delay in seconds
        exponential_base: Base for exponential backoff calculation
        jitter: Maximum jitter factor (0.0-1.0) applied to each delay
        retry_condition: Predicate deciding whether an exception is retried
        on_retry: Optional callback ``(attempt, exception, delay)`` before each retry
    """

    max_retries: int = RetryDefaults.DEFAULT_MAX_RETRIES
    base_delay: float = RetryDefaults.DEFAULT_BASE_DELAY
    max_delay: float = RetryDefaults.DEFAULT_MAX_DELAY
    exponential_base: float = RetryDefaults.DEFAULT_EXPONENTIAL_BASE
    jitter: float = RetryDefaults.DEFAULT_JITTER
    retry_condition: Callable[[BaseException], bool] = is_transient
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0.0 and 1.0")

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (``attempt`` is 0-based)."""
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)

        if self.jitter > 0:
            jitter_range = delay * self.jitter
            delay = delay + random.uniform(-jitter_range, jitter_range)

        return max(0.0, delay)

    def should_retry(self, exception: BaseException) -> bool:
        # Cancellation and interpreter shutdown are never retried
        if not isinstance(exception, Exception):
            return False
        return self.retry_condition(exception)


SUBMIT_RETRY_CONFIG = RetryConfig(
    max_retries=RetryDefaults.SUBMIT_MAX_RETRIES,
    base_delay=RetryDefaults.SUBMIT_BASE_DELAY,
    max_delay=RetryDefaults.SUBMIT_MAX_DELAY,
    jitter=0.2,
)

CONFIRM_RETRY_CONFIG = RetryConfig(
    max_retries=RetryDefaults.CONFIRM_MAX_RETRIES,
    base_delay=RetryDefaults.CONFIRM_BASE_DELAY,
    max_delay=RetryDefaults.CONFIRM_MAX_DELAY,
    jitter=0.1,
)


@dataclass
class RetryStats:
    """Statistics about retry execution.

    Attributes:
        attempts: Total number of attempts (including initial)
        total_delay: Total delay time in seconds
        success: Whether the operation eventually succeeded
        last_exception: The last exception if operation failed
    """

    attempts: int = 0
    total_delay: float = 0.0
    success: bool = False
    last_exception: Optional[BaseException] = None


class RetryExhausted(Exception):
    """Raised when every attempt failed with a retryable error.

    Attributes:
        stats: Statistics about the retry attempts
        original_exception: The last exception that was raised
    """

    def __init__(
        self,
        message: str,
        stats: RetryStats,
        original_exception: BaseException,
    ) -> None:
        super().__init__(message)
        self.stats = stats
        self.original_exception = original_exception


async def retry_async(
    func: Callable[P, Awaitable[T]],
    *args: P.args,
    config: Optional[RetryConfig] = None,
    **kwargs: P.kwargs,
) -> T:
    """Execute an async function with retry logic.

    Non-retryable exceptions propagate unchanged on the first occurrence.

    Raises:
        RetryExhausted: If every attempt failed with a retryable error
    """
    if config is None:
        config = RetryConfig()

    stats = RetryStats()
    name = getattr(func, "__name__", repr(func))

    for attempt in range(config.max_retries + 1):
        stats.attempts = attempt + 1

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            stats.last_exception = e

            if not config.should_retry(e):
                logger.debug("%s raised non-retryable %s", name, type(e).__name__)
                raise

            if attempt >= config.max_retries:
                break

            delay = config.calculate_delay(attempt)
            stats.total_delay += delay

            logger.warning(
                "Retry %d/%d for %s after %s: %s. Waiting %.2fs",
                attempt + 1,
                config.max_retries,
                name,
                type(e).__name__,
                e,
                delay,
            )

            if config.on_retry:
                config.on_retry(attempt + 1, e, delay)

            await asyncio.sleep(delay)
        else:
            stats.success = True
            return result

    raise RetryExhausted(
        f"All {config.max_retries + 1} attempts failed for {name}",
        stats=stats,
        original_exception=stats.last_exception,
    ) from stats.last_exception


class RetryContext:
    """Explicit retry loop for flows that need to act between attempts.

        ctx = RetryContext(config=SUBMIT_RETRY_CONFIG)
        while ctx.should_continue():
            try:
                pending = await client.submit_transfer(dest, amount)
                ctx.mark_success()
            except ChainError as e:
                await ctx.handle_exception(e)
    """

    def __init__(self, config: Optional[RetryConfig] = None) -> None:
        self.config = config or RetryConfig()
        self.stats = RetryStats(attempts=1)
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """0-based index of the current attempt."""
        return self._attempt

    def should_continue(self) -> bool:
        return self._attempt <= self.config.max_retries and not self.stats.success

    def mark_success(self) -> None:
        self.stats.success = True

    async def handle_exception(self, exception: BaseException) -> None:
        """Sleep before the next attempt, or raise.

        Raises:
            The exception itself if it is not retryable
            RetryExhausted: If the attempt budget is spent
        """
        self.stats.last_exception = exception

        if not self.config.should_retry(exception):
            raise exception

        if self._attempt >= self.config.max_retries:
            raise RetryExhausted(
                f"All {self.config.max_retries + 1} attempts failed",
                stats=self.stats,
                original_exception=exception,
            ) from exception

        delay = self.config.calculate_delay(self._attempt)
        self.stats.total_delay += delay

        if self.config.on_retry:
            self.config.on_retry(self._attempt + 1, exception, delay)

        await asyncio.sleep(delay)
        self._attempt += 1
        self.stats.attempts = self._attempt + 1

    async def __aenter__(self) -> "RetryContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        return False


__all__ = [
    "RetryConfig",
    "RetryStats",
    "RetryExhausted",
    "RetryContext",
    "retry_async",
    "SUBMIT_RETRY_CONFIG",
    "CONFIRM_RETRY_CONFIG",
]
