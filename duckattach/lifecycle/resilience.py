"""Retry logic for attach statements and connection probes.

:class:`RetryExecutor` re-issues a fallible async operation under a bounded
:class:`RetryPolicy`. Only transient failures (timeouts, network errors) are
retried; every other error propagates unchanged on the attempt where it
happened, so callers can still reconcile "already attached" errors or route
auth failures themselves.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from duckattach.engine.pool import EngineConnectionPool
from duckattach.exceptions import MaxRetriesExceededError
from duckattach.lifecycle.classify import is_transient_error
from duckattach.logging import get_logger
from duckattach.utils.sql import redact_secrets

logger = get_logger(__name__)


@dataclass
class RetryPolicy:
    """Bounded retry policy.

    ``max_retries`` is the total number of attempts. With exponential backoff
    the delay after failed attempt *n* is ``retry_delay_ms * 2^(n-1)``,
    capped at ``max_delay_ms``; ``jitter`` is a fraction (0.3 = ±30%).
    """

    max_retries: int = 3
    timeout_ms: int = 30000
    retry_delay_ms: int = 1000
    exponential_backoff: bool = True
    max_delay_ms: int = 60000
    jitter: float = 0.0


class RetryExecutor:
    """Implements retry with timeout and fixed or exponential backoff."""

    def __init__(
        self,
        pool: Optional[EngineConnectionPool] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.pool = pool
        self._sleep = sleep

    def should_retry(
        self, error: BaseException, attempt: int, policy: RetryPolicy
    ) -> bool:
        """Retry only transient failures, and only while attempts remain."""
        if attempt >= policy.max_retries:
            return False
        return is_transient_error(error)

    def calculate_delay(self, attempt: int, policy: RetryPolicy) -> float:
        """Delay in seconds after failed attempt ``attempt`` (1-based)."""
        if policy.exponential_backoff:
            delay_ms = policy.retry_delay_ms * (2 ** (attempt - 1))
        else:
            delay_ms = policy.retry_delay_ms
        delay_ms = min(delay_ms, policy.max_delay_ms)

        if policy.jitter:
            delay_ms *= 1 + random.uniform(-policy.jitter, policy.jitter)

        return max(delay_ms, 0) / 1000.0

    async def execute(
        self, statement: str, policy: RetryPolicy, source_name: str = "unknown"
    ) -> Any:
        """Run ``statement`` on the engine pool under ``policy``."""
        if self.pool is None:
            raise ValueError("RetryExecutor needs an engine pool to run statements")
        logger.debug("Executing with retry: %s", redact_secrets(statement))
        return await self.run(
            lambda: self.pool.query(statement), policy, source_name=source_name
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[Any]],
        policy: RetryPolicy,
        source_name: str = "unknown",
    ) -> Any:
        """Run an arbitrary async operation under ``policy``.

        Raises:
            MaxRetriesExceededError: every attempt failed transiently
            Exception: the first non-transient error, unchanged
        """
        if policy.max_retries < 1:
            raise ValueError("RetryPolicy.max_retries must be at least 1")

        start_time = time.time()
        last_error: Optional[BaseException] = None
        timeout = policy.timeout_ms / 1000.0 if policy.timeout_ms else None

        for attempt in range(1, policy.max_retries + 1):
            try:
                result = await asyncio.wait_for(operation(), timeout=timeout)
                if attempt > 1:
                    logger.info(
                        "Operation for %s succeeded after %d attempts",
                        source_name,
                        attempt,
                    )
                return result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                if not is_transient_error(e):
                    logger.debug(
                        "Non-retryable error for %s on attempt %d: %s",
                        source_name,
                        attempt,
                        redact_secrets(str(e)),
                    )
                    raise

                if not self.should_retry(e, attempt, policy):
                    break

                delay = self.calculate_delay(attempt, policy)
                logger.warning(
                    "Retry attempt %d/%d for %s after error: %s. "
                    "Next retry in %.2f seconds",
                    attempt,
                    policy.max_retries,
                    source_name,
                    redact_secrets(str(e)) or type(e).__name__,
                    delay,
                )
                if delay > 0:
                    await self._sleep(delay)

        logger.error(
            "Operation for %s failed after %d attempts in %.2fs",
            source_name,
            policy.max_retries,
            time.time() - start_time,
        )
        raise MaxRetriesExceededError(
            attempts=policy.max_retries,
            last_error=last_error,
            source_name=source_name,
        )
