"""Catalog verification after an attach.

The engine may report an ATTACH as finished before the new catalog entry is
visible (notably for Iceberg and MotherDuck), so the pipeline polls a
catalog-introspection query until the entry shows up.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from duckattach.engine.pool import EngineConnectionPool
from duckattach.exceptions import VerificationTimeoutError
from duckattach.lifecycle.classify import is_duplicate_error, sanitize_error_message
from duckattach.logging import get_logger

logger = get_logger(__name__)


@dataclass
class VerificationPolicy:
    """How long to wait for a catalog entry to appear."""

    max_attempts: int = 3
    delay_ms: int = 500
    settle_ms: int = 0


class VerificationPoller:
    """Polls a predicate query until it returns at least one row."""

    def __init__(
        self,
        pool: EngineConnectionPool,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.pool = pool
        self._sleep = sleep

    async def verify(
        self,
        predicate_query: str,
        max_attempts: int,
        delay_ms: int,
        name: str = "",
        settle_ms: int = 0,
        source_name: Optional[str] = None,
    ) -> bool:
        """Return True once ``predicate_query`` yields a row.

        A duplicate-attach error raised while polling also counts as
        presence. Other query errors use up an attempt and polling continues.

        Raises:
            VerificationTimeoutError: no row after ``max_attempts`` polls
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        if settle_ms > 0:
            logger.debug("Waiting %dms for '%s' to settle", settle_ms, name)
            await self._sleep(settle_ms / 1000.0)

        for attempt in range(1, max_attempts + 1):
            try:
                rows = await self.pool.query(predicate_query)
                if rows:
                    logger.debug("'%s' confirmed on check %d", name, attempt)
                    return True
                logger.debug(
                    "'%s' not visible yet (check %d/%d)", name, attempt, max_attempts
                )
            except Exception as e:
                if is_duplicate_error(e):
                    logger.debug("'%s' reported as already attached; confirmed", name)
                    return True
                logger.warning(
                    "Verification query for '%s' failed (check %d/%d): %s",
                    name,
                    attempt,
                    max_attempts,
                    sanitize_error_message(str(e)),
                )

            if attempt < max_attempts and delay_ms > 0:
                await self._sleep(delay_ms / 1000.0)

        raise VerificationTimeoutError(
            name=name, attempts=max_attempts, source_name=source_name
        )

    async def verify_with_policy(
        self,
        predicate_query: str,
        policy: VerificationPolicy,
        name: str = "",
        source_name: Optional[str] = None,
    ) -> bool:
        return await self.verify(
            predicate_query,
            max_attempts=policy.max_attempts,
            delay_ms=policy.delay_ms,
            name=name,
            settle_ms=policy.settle_ms,
            source_name=source_name,
        )
