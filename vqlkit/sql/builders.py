from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..core.fields import RelationKind, Schema
from ..core.query import RelationRequest, Vql
from ..core.utils import ParamCollector, chunked

logger = logging.getLogger(__name__)

OWNER_KEY = '_owner_key'
RELATED_KEY = '_related_key'


class RelationLoader:
    """Secondary queries for relations that cannot ride on the main SELECT.

    Many-to-many and reverse relations, and list fields, are fetched with one
    query per field constrained by ``IN (<parent keys>)`` and stitched back onto
    the parent rows. Every requested field starts as an empty list so parents
    without matches still carry the key.
    """

    def __init__(self, registry, adapter, gateway, hydrator):
        self.registry = registry
        self.adapter = adapter
        self.gateway = gateway
        self.hydrator = hydrator

    # --- helpers -------------------------------------------------------------
    def _columns(self, schema: Schema, alias: str, fields: Optional[List[str]]) -> List[str]:
        """Projected columns of the related entity; its primary key is always included."""
        a = self.adapter
        pk = self.registry.primary_key(schema.name)
        out: List[str] = []
        names: List[str] = []
        if schema.get_field(pk) is None:
            names.append(pk)
        for fdef in schema:
            if not fdef.has_column:
                continue
            if fields is not None and fdef.name not in fields and fdef.name != pk:
                continue
            names.append(fdef.name)
        for name in names:
            out.append(a.column(alias, name))
        return out

    def _parent_keys(self, rows: List[Dict[str, Any]], pk: str) -> List[Any]:
        seen = []
        for row in rows:
            key = row.get(pk)
            if key is not None and key not in seen:
                seen.append(key)
        return seen

    async def _fetch_in(self, sql_for_keys, keys: List[Any], transaction) -> List[Dict[str, Any]]:
        """Run the per-field query in chunks that fit the dialect's parameter limit."""
        out: List[Dict[str, Any]] = []
        for chunk in chunked(keys, self.adapter.max_bind_params):
            params = ParamCollector()
            sql = sql_for_keys(params.in_list(chunk))
            out.extend(await self.gateway.execute(sql, params.values, transaction))
        return out

    @staticmethod
    def _merge(rows: List[Dict[str, Any]], pk: str, field_name: str,
               found: List[Tuple[Any, Any]]) -> None:
        index: Dict[Any, List[Dict[str, Any]]] = {}
        for row in rows:
            row[field_name] = []
            index.setdefault(row.get(pk), []).append(row)
        for owner, item in found:
            for row in index.get(owner, []):
                row[field_name].append(item)

    # --- relations -----------------------------------------------------------
    async def attach_relations(self, rows: List[Dict[str, Any]], vql: Vql, transaction=None) -> None:
        requests = [
            req for req in vql.relations
            if not self.registry.relation_field(vql.model, req.name).relation.kind.has_column
        ]
        if not rows or not requests:
            return
        await asyncio.gather(*(self._attach_relation(rows, vql.model, req, transaction) for req in requests))

    async def _attach_relation(self, rows, model: str, req: RelationRequest, transaction) -> None:
        pk = self.registry.primary_key(model)
        keys = self._parent_keys(rows, pk)
        fdef = self.registry.relation_field(model, req.name)
        if not keys:
            self._merge(rows, pk, req.name, [])
            return
        if fdef.relation.kind is RelationKind.MANY_TO_MANY:
            table, owner_col, related_col = self.registry.junction(model, req.name)
            found = await self._junction_query(fdef.relation.target, table, owner_col, related_col,
                                               req, keys, transaction)
        else:
            back = self.registry.reverse_field(model, req.name)
            if back is None:
                found = []
            elif back.relation.kind is RelationKind.MANY_TO_MANY:
                table, target_col, model_col = self.registry.junction(fdef.relation.target, back.name)
                found = await self._junction_query(fdef.relation.target, table, model_col, target_col,
                                                   req, keys, transaction)
            else:
                found = await self._foreign_key_query(fdef.relation.target, back.name, req, keys, transaction)
        self._merge(rows, pk, req.name, found)

    async def _junction_query(self, target: str, table: str, owner_col: str, related_col: str,
                              req: RelationRequest, keys, transaction) -> List[Tuple[Any, Any]]:
        a = self.adapter
        schema = self.registry.get_schema(target)
        target_pk = self.registry.primary_key(target)
        alias = req.name
        jalias = f"{req.name}_junction"
        cols = self._columns(schema, alias, req.fields)
        cols.append(f"{a.column(jalias, owner_col)} AS {a.quote(OWNER_KEY)}")
        cols.append(f"{a.column(jalias, related_col)} AS {a.quote(RELATED_KEY)}")

        def build(in_list: str) -> str:
            return (
                f"SELECT {', '.join(cols)} FROM {a.from_clause(target, alias)} "
                f"JOIN {a.from_clause(table, jalias)} "
                f"ON {a.column(alias, target_pk)} = {a.column(jalias, related_col)} "
                f"WHERE {a.column(jalias, owner_col)} IN ({in_list}) "
                f"ORDER BY {a.column(jalias, 'id')}"
            )

        found = []
        for row in await self._fetch_in(build, keys, transaction):
            owner = row.pop(OWNER_KEY)
            related = row.pop(RELATED_KEY)
            row[target_pk] = related
            found.append((owner, self.hydrator.normalize_row(target, row)))
        return found

    async def _foreign_key_query(self, target: str, fk: str, req: RelationRequest, keys,
                                 transaction) -> List[Tuple[Any, Any]]:
        a = self.adapter
        schema = self.registry.get_schema(target)
        alias = req.name
        cols = self._columns(schema, alias, req.fields)
        cols.append(f"{a.column(alias, fk)} AS {a.quote(OWNER_KEY)}")
        target_pk = self.registry.primary_key(target)

        def build(in_list: str) -> str:
            return (
                f"SELECT {', '.join(cols)} FROM {a.from_clause(target, alias)} "
                f"WHERE {a.column(alias, fk)} IN ({in_list}) ORDER BY {a.column(alias, target_pk)}"
            )

        found = []
        for row in await self._fetch_in(build, keys, transaction):
            owner = row.pop(OWNER_KEY)
            found.append((owner, self.hydrator.normalize_row(target, row)))
        return found

    # --- lists -----------------------------------------------------------------
    def requested_lists(self, vql: Vql) -> List[str]:
        schema = self.registry.get_schema(vql.model)
        selected = [f for f in vql.fields if isinstance(f, str)]
        return [
            fdef.name for fdef in schema
            if fdef.is_list and (not vql.fields or fdef.name in selected)
        ]

    async def attach_lists(self, rows: List[Dict[str, Any]], vql: Vql, transaction=None) -> None:
        names = self.requested_lists(vql)
        if not rows or not names:
            return
        await asyncio.gather(*(self._attach_list(rows, vql.model, name, transaction) for name in names))

    async def _attach_list(self, rows, model: str, name: str, transaction) -> None:
        a = self.adapter
        pk = self.registry.primary_key(model)
        keys = self._parent_keys(rows, pk)
        if not keys:
            self._merge(rows, pk, name, [])
            return
        table = self.registry.list_table(model, name)

        def build(in_list: str) -> str:
            return (
                f"SELECT {a.quote('fk')}, {a.quote('value')} FROM {a.table_ident(table)} "
                f"WHERE {a.quote('fk')} IN ({in_list}) ORDER BY {a.quote('id')}"
            )

        found = [(row['fk'], row['value']) for row in await self._fetch_in(build, keys, transaction)]
        self._merge(rows, pk, name, found)

    async def attach(self, rows: List[Dict[str, Any]], vql: Vql, transaction=None) -> None:
        """Attach every fan-out relation and list field requested by ``vql``."""
        await asyncio.gather(
            self.attach_relations(rows, vql, transaction),
            self.attach_lists(rows, vql, transaction),
        )
