"""Read path: compile, execute, normalize and fan out."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from .core.condition import Condition, Operator, and_, eq
from .core.hydration import Hydrator
from .core.query import QueryOption, Vql
from .gateway import ExecutionGateway, Transaction
from .sql.builders import RelationLoader
from .sql.compiler import QueryCompiler

logger = logging.getLogger(__name__)


class QueryRunner:
    def __init__(self, registry, adapter, gateway: ExecutionGateway):
        self.registry = registry
        self.adapter = adapter
        self.gateway = gateway
        self.compiler = QueryCompiler(registry, adapter)
        self.hydrator = Hydrator(registry, adapter)
        self.loader = RelationLoader(registry, adapter, gateway, self.hydrator)

    async def select(self, vql: Vql, transaction: Optional[Transaction] = None) -> List[Dict[str, Any]]:
        sql, params = self.compiler.select_sql(vql)
        rows = await self.gateway.execute(sql, params, transaction)
        rows = self.hydrator.normalize(vql.model, rows)
        await self.loader.attach(rows, vql, transaction)
        return rows

    async def count(self, vql: Vql, transaction: Optional[Transaction] = None) -> int:
        sql, params = self.compiler.count_sql(vql)
        rows = await self.gateway.execute(sql, params, transaction)
        return int(rows[0]['total']) if rows else 0

    # --- descriptor builders ---------------------------------------------------
    def by_id(self, model: str, id: Any, options: Optional[QueryOption] = None) -> Vql:
        vql = Vql(model).where(eq(self.registry.primary_key(model), id))
        if options is not None:
            options.apply(vql)
        return vql.limit_to(1)

    def by_values(self, model: str, values: Optional[Mapping[str, Any]] = None,
                  options: Optional[QueryOption] = None) -> Vql:
        """AND of equalities over ``values``; an empty mapping matches everything."""
        vql = Vql(model)
        if values:
            vql.where(and_(*(Condition(Operator.EQUAL_TO).compare(k, v) for k, v in values.items())))
        if options is not None:
            options.apply(vql)
        return vql

    async def find_by_id(self, model: str, id: Any, options: Optional[QueryOption] = None,
                         transaction: Optional[Transaction] = None) -> List[Dict[str, Any]]:
        return await self.select(self.by_id(model, id, options), transaction)
