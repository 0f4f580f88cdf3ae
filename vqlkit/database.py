"""Public CRUD surface.

Example::

    db = Database(DatabaseConfig.from_env(), schemas=[post, tag])
    await db.connect()
    await db.init()
    created = await db.insert('Post', {'title': 'Hello', 'tags': [1, 2]})
    found = await db.find('Post', created.items[0]['id'], QueryOption(relations=['tags']))
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from .adapters import BaseAdapter, get_adapter
from .config import DatabaseConfig, create_engine
from .core.condition import Condition
from .core.fields import Schema
from .core.query import QueryOption, Vql
from .errors import ConfigurationError, DatabaseError, ErrorCode, wrap_error
from .gateway import ExecutionGateway, Transaction
from .mutations import WritePipeline
from .queries import QueryRunner
from .registry import SchemaRegistry
from .sql.ddl import SchemaBuilder

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    items: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0


@dataclass
class UpsertResult:
    items: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class DeleteResult:
    items: List[Dict[str, Any]] = field(default_factory=list)


def _as_options(options: Any) -> Optional[QueryOption]:
    if options is None or isinstance(options, QueryOption):
        return options
    if isinstance(options, Mapping):
        return QueryOption(**options)
    raise DatabaseError(ErrorCode.WRONG_INPUT, f"unsupported query options: {options!r}")


class Database:
    """Async database facade bound to one engine and one schema registry."""

    def __init__(self, config: Optional[DatabaseConfig] = None, schemas: Iterable[Schema] = (), *,
                 engine: Optional[AsyncEngine] = None, registry: Optional[SchemaRegistry] = None):
        self.config = config or DatabaseConfig()
        self.registry = registry if registry is not None else SchemaRegistry(schemas)
        self.engine = engine
        self.adapter: Optional[BaseAdapter] = None
        self.gateway: Optional[ExecutionGateway] = None
        self.runner: Optional[QueryRunner] = None
        self.writer: Optional[WritePipeline] = None

    # --- lifecycle -------------------------------------------------------------
    async def connect(self) -> "Database":
        if self.engine is None:
            self.engine = create_engine(self.config)
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.error("database connection failed: %s", exc)
            raise wrap_error(ErrorCode.CONNECTION, exc) from exc
        self.adapter = get_adapter(self.engine.dialect.name)
        self.gateway = ExecutionGateway(self.engine)
        self.runner = QueryRunner(self.registry, self.adapter, self.gateway)
        self.writer = WritePipeline(self.registry, self.adapter, self.gateway, self.runner)
        return self

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    async def __aenter__(self) -> "Database":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _require(self) -> None:
        if self.gateway is None:
            raise ConfigurationError("Database.connect() must be awaited first")

    def transaction(self) -> Transaction:
        """A caller-owned transaction; pass it to operations, then commit or roll back."""
        self._require()
        return self.gateway.transaction()

    async def initialize_schema(self) -> int:
        """Drop and recreate every registered table and its side tables."""
        self._require()
        try:
            return await SchemaBuilder(self.registry, self.adapter).initialize(self.gateway)
        except SQLAlchemyError as exc:
            raise wrap_error(ErrorCode.QUERY, exc) from exc

    init = initialize_schema

    # --- reads -----------------------------------------------------------------
    async def find(self, target: Union[str, Vql], id_or_values: Any = None, options: Any = None,
                   transaction: Optional[Transaction] = None) -> QueryResult:
        """Find by :class:`Vql`, by primary key, or by a mapping of field values."""
        self._require()
        if isinstance(id_or_values, Transaction):
            transaction, id_or_values = id_or_values, None
        if isinstance(id_or_values, QueryOption) and options is None:
            options, id_or_values = id_or_values, None
        options = _as_options(options)
        if isinstance(target, Vql):
            vql = target
        elif isinstance(id_or_values, Mapping) or id_or_values is None:
            vql = self.runner.by_values(target, id_or_values, options)
        elif isinstance(id_or_values, (int, str)) and not isinstance(id_or_values, bool):
            vql = self.runner.by_id(target, id_or_values, options)
        else:
            raise DatabaseError(ErrorCode.WRONG_INPUT, f"cannot find {target} by {type(id_or_values).__name__}")
        try:
            items = await self.runner.select(vql, transaction)
        except SQLAlchemyError as exc:
            raise wrap_error(ErrorCode.QUERY, exc) from exc
        return QueryResult(items=items, total=len(items))

    async def count(self, target: Union[str, Vql], values: Optional[Mapping[str, Any]] = None,
                    options: Any = None, transaction: Optional[Transaction] = None) -> QueryResult:
        """Total number of matching rows, independent of pagination."""
        self._require()
        if isinstance(values, Transaction):
            transaction, values = values, None
        vql = target if isinstance(target, Vql) else self.runner.by_values(target, values, _as_options(options))
        try:
            total = await self.runner.count(vql, transaction)
        except SQLAlchemyError as exc:
            raise wrap_error(ErrorCode.QUERY, exc) from exc
        return QueryResult(items=[], total=total)

    # --- writes ----------------------------------------------------------------
    async def insert(self, model: str, value: Union[Dict[str, Any], List[Dict[str, Any]]],
                     transaction: Optional[Transaction] = None) -> UpsertResult:
        self._require()
        if isinstance(value, list):
            return UpsertResult(items=await self.writer.insert_all(model, value, transaction))
        if not isinstance(value, Mapping):
            raise DatabaseError(ErrorCode.WRONG_INPUT, f"cannot insert {type(value).__name__} into {model}")
        return UpsertResult(items=await self.writer.insert_one(model, dict(value), transaction))

    async def update(self, model: str, value: Dict[str, Any], condition: Optional[Condition] = None,
                     transaction: Optional[Transaction] = None) -> UpsertResult:
        """Update the row identified by ``value``'s primary key, or every row matching ``condition``."""
        self._require()
        if isinstance(condition, Transaction):
            transaction, condition = condition, None
        if condition is None:
            return UpsertResult(items=await self.writer.update_one(model, value, transaction))
        if not isinstance(condition, Condition):
            raise DatabaseError(ErrorCode.WRONG_INPUT, f"update condition must be a Condition, got {condition!r}")
        return UpsertResult(items=await self.writer.update_all(model, condition, value, transaction))

    async def remove(self, model: str, id_or_condition: Any,
                     transaction: Optional[Transaction] = None) -> DeleteResult:
        self._require()
        return DeleteResult(items=await self.writer.remove(model, id_or_condition, transaction))

    async def increase(self, model: str, id: Any, field_name: str, delta: Any = 1,
                       transaction: Optional[Transaction] = None) -> UpsertResult:
        self._require()
        return UpsertResult(items=await self.writer.increase(model, id, field_name, delta, transaction))
