"""Pooled access to the shared DuckDB connection.

The lifecycle code only talks to the engine through
:class:`EngineConnectionPool`: ``query`` for one-off statements and
``acquire``/``release`` (or the ``connection()`` context manager) when a
sequence of statements must run on the same handle.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import duckdb

from duckattach.exceptions import EngineError
from duckattach.logging import get_logger
from duckattach.utils.sql import redact_secrets

logger = get_logger(__name__)

Row = Tuple[Any, ...]


class EngineHandle(ABC):
    """A connection handle lent out by the pool."""

    @abstractmethod
    async def query(self, sql: str) -> List[Row]:
        """Run ``sql`` and return all result rows."""


class EngineConnectionPool(ABC):
    """Acquire/release semantics over a shared query-engine connection."""

    @abstractmethod
    async def acquire(self) -> EngineHandle:
        """Borrow a handle, waiting until one is free."""

    @abstractmethod
    async def release(self, handle: EngineHandle) -> None:
        """Return a handle previously obtained from :meth:`acquire`."""

    async def query(self, sql: str) -> List[Row]:
        """Run one statement on a temporarily acquired handle."""
        async with self.connection() as handle:
            return await handle.query(sql)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[EngineHandle]:
        handle = await self.acquire()
        try:
            yield handle
        finally:
            await self.release(handle)

    async def close(self) -> None:
        """Release engine resources; the default pool holds none."""


class DuckDBHandle(EngineHandle):
    """Handle wrapping one DuckDB cursor of the shared database instance."""

    def __init__(self, cursor: duckdb.DuckDBPyConnection, index: int):
        self._cursor = cursor
        self.index = index
        self.query_count = 0

    def _run(self, sql: str) -> List[Row]:
        relation = self._cursor.execute(sql)
        if relation.description is None:
            return []
        return relation.fetchall()

    async def query(self, sql: str) -> List[Row]:
        start = time.time()
        worker = asyncio.ensure_future(asyncio.to_thread(self._run, sql))
        try:
            rows = await asyncio.shield(worker)
        except asyncio.CancelledError:
            # The worker thread owns the cursor until the statement stops
            self._cursor.interrupt()
            await self._wait_for_worker(worker)
            raise
        except duckdb.Error as e:
            logger.debug(
                "Statement failed on handle %d: %s", self.index, redact_secrets(sql)
            )
            raise EngineError(str(e), statement=redact_secrets(sql)) from e

        self.query_count += 1
        logger.debug(
            "Handle %d ran statement in %.3fs: %s",
            self.index,
            time.time() - start,
            redact_secrets(sql),
        )
        return rows

    async def _wait_for_worker(self, worker: asyncio.Future) -> None:
        while not worker.done():
            try:
                await asyncio.wait({worker})
            except asyncio.CancelledError:
                continue
        if not worker.cancelled() and worker.exception() is not None:
            logger.debug(
                "Interrupted statement on handle %d: %s",
                self.index,
                worker.exception(),
            )

    def close(self) -> None:
        self._cursor.close()


class DuckDBConnectionPool(EngineConnectionPool):
    """Pool of cursors over a single DuckDB database instance.

    All cursors share the instance catalog and secret manager, so a database
    attached (or a secret created) through one handle is visible through every
    other handle.
    """

    def __init__(
        self,
        database_path: str = ":memory:",
        size: int = 2,
        config: Optional[Dict[str, Any]] = None,
    ):
        if size < 1:
            raise ValueError("Pool size must be at least 1")
        self.database_path = database_path
        self.size = size
        self._config = config or {}
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._handles: List[DuckDBHandle] = []
        self._idle: Optional[asyncio.Queue] = None
        self._open_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    async def open(self) -> None:
        async with self._open_lock:
            if self._connection is not None:
                return
            logger.info(
                "Opening DuckDB pool on %s with %d handle(s)",
                self.database_path,
                self.size,
            )
            self._connection = await asyncio.to_thread(
                duckdb.connect, self.database_path, config=self._config
            )
            self._idle = asyncio.Queue()
            self._handles = [
                DuckDBHandle(self._connection.cursor(), index)
                for index in range(self.size)
            ]
            for handle in self._handles:
                self._idle.put_nowait(handle)

    async def acquire(self) -> EngineHandle:
        if self._connection is None:
            await self.open()
        handle = await self._idle.get()
        logger.debug("Acquired handle %d", handle.index)
        return handle

    async def release(self, handle: EngineHandle) -> None:
        if not isinstance(handle, DuckDBHandle) or handle not in self._handles:
            raise ValueError("Handle does not belong to this pool")
        logger.debug("Released handle %d", handle.index)
        self._idle.put_nowait(handle)

    async def close(self) -> None:
        if self._connection is None:
            return
        for handle in self._handles:
            handle.close()
        self._connection.close()
        self._connection = None
        self._handles = []
        self._idle = None
        logger.info("Closed DuckDB pool on %s", self.database_path)
