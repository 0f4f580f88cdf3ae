"""Statement execution on an async SQLAlchemy engine."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from .errors import TransactionStateError

logger = logging.getLogger(__name__)


class Transaction:
    """A unit of work pinned to one connection.

    The connection is acquired and the transaction begun lazily, on the first
    statement (or an explicit :meth:`prepare`). Statements issued concurrently
    through the same transaction are serialized by an ``asyncio.Lock`` since a
    single connection cannot run two statements at once.

    ``commit``/``rollback`` may be called exactly once; the connection is
    released afterwards.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.connection: Optional[AsyncConnection] = None
        self.lock = asyncio.Lock()
        self._trans = None
        self._done = False

    @property
    def started(self) -> bool:
        return self.connection is not None

    @property
    def done(self) -> bool:
        return self._done

    async def prepare(self) -> AsyncConnection:
        if self._done:
            raise TransactionStateError("transaction already completed")
        if self.connection is None:
            self.connection = await self.engine.connect()
            self._trans = await self.connection.begin()
        return self.connection

    async def commit(self) -> None:
        if self._done:
            raise TransactionStateError("transaction already completed")
        self._done = True
        try:
            if self._trans is not None:
                await self._trans.commit()
        finally:
            await self._release()

    async def rollback(self) -> None:
        if self._done:
            raise TransactionStateError("transaction already completed")
        self._done = True
        try:
            if self._trans is not None:
                logger.warning("rolling back transaction")
                await self._trans.rollback()
        finally:
            await self._release()

    async def _release(self) -> None:
        if self.connection is not None:
            await self.connection.close()
        self.connection = None
        self._trans = None

    async def __aenter__(self) -> "Transaction":
        await self.prepare()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._done:
            return
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()


class ExecutionGateway:
    """Run SQL text with bound parameters and return rows as plain dicts.

    Without a transaction each statement runs in its own short transaction.
    Driver failures propagate as :class:`sqlalchemy.exc.SQLAlchemyError`; the
    public operations wrap them.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    def transaction(self) -> Transaction:
        return Transaction(self.engine)

    async def execute(self, sql: str, params: Optional[Dict[str, Any]] = None,
                      transaction: Optional[Transaction] = None) -> List[Dict[str, Any]]:
        logger.debug("SQL: %s | params=%s", sql, params)
        stmt = text(sql)
        if transaction is None:
            async with self.engine.begin() as conn:
                return await self._run(conn, stmt, params)
        async with transaction.lock:
            conn = await transaction.prepare()
            return await self._run(conn, stmt, params)

    @staticmethod
    async def _run(conn: AsyncConnection, stmt, params) -> List[Dict[str, Any]]:
        result = await conn.execute(stmt, params or {})
        if not result.returns_rows:
            return []
        return [dict(r._mapping) for r in result.fetchall()]
