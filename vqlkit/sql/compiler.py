"""Compile :class:`~vqlkit.core.query.Vql` descriptions into dialect SQL.

The compiler produces the pieces of a SELECT (projection, WHERE, ORDER BY,
pagination and JOINs) plus the bound parameters they reference. Literal
values never appear in the SQL text; they are collected as ``:pN``
placeholders by a :class:`~vqlkit.core.utils.ParamCollector`.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from ..adapters.base import BaseAdapter
from ..core.condition import Condition
from ..core.fields import FieldDef, Schema
from ..core.filters import operator_symbol
from ..core.naming import camel_case
from ..core.query import JoinType, RelationRequest, Vql
from ..core.utils import ParamCollector, as_id
from ..errors import ConfigurationError, RelationNotFoundError
from ..registry import SchemaRegistry

logger = logging.getLogger(__name__)

JOIN_KEYWORDS: Dict[JoinType, str] = {
    JoinType.JOIN: 'FULL OUTER JOIN',
    JoinType.LEFT: 'LEFT JOIN',
    JoinType.RIGHT: 'RIGHT JOIN',
    JoinType.INNER: 'INNER JOIN',
}


class AliasAllocator:
    """Hands out unique aliases within one compilation.

    The preferred alias is used as is; a numeric suffix is appended only when
    it is already taken.
    """

    def __init__(self):
        self._used: Set[str] = set()

    def allocate(self, base: str) -> str:
        alias = base
        n = 2
        while alias in self._used:
            alias = f"{base}_{n}"
            n += 1
        self._used.add(alias)
        return alias


@dataclass
class CompileContext:
    params: ParamCollector = field(default_factory=ParamCollector)
    aliases: AliasAllocator = field(default_factory=AliasAllocator)


@dataclass
class CompiledQuery:
    model: str
    alias: str
    fields: List[str]
    field_names: List[str]
    condition: str
    order_by: str
    limit: str
    join: str
    params: Dict[str, Any]
    default_sort: bool = False


class ConditionCompiler:
    """Translate a :class:`Condition` tree into a parenthesized SQL boolean expression."""

    def __init__(self, registry: SchemaRegistry, adapter: BaseAdapter):
        self.registry = registry
        self.adapter = adapter

    def compile(self, model: str, condition: Optional[Condition], alias: Optional[str] = None,
                params: Optional[ParamCollector] = None) -> str:
        """Return the SQL fragment; values are bound into ``params``.

        A comparison on a field the schema does not know compiles to ``''``;
        connectors drop empty children and compile to ``''`` when none survive.
        """
        if condition is None:
            return ''
        if params is None:
            params = ParamCollector()
        alias = alias or model
        model = condition.model or model
        symbol = operator_symbol(condition.operator)
        if not condition.is_connector:
            cmp = condition.comparison
            if cmp is None:
                return ''
            fdef = self.registry.get_field(model, cmp.field)
            if fdef is None and cmp.field != self.registry.primary_key(model):
                return ''
            if cmp.is_field:
                rhs = str(cmp.value)
            else:
                rhs = params.bind(self._literal(fdef, cmp.value))
            return f"({self.adapter.column(alias, cmp.field)} {symbol} {rhs})"
        children: List[str] = []
        for child in condition.children:
            sql = self.compile(model, child, alias, params).strip()
            if sql:
                children.append(sql)
        if not children:
            return ''
        return '(' + f' {symbol} '.join(children) + ')'

    def compile_with_params(self, model: str, condition: Optional[Condition],
                            alias: Optional[str] = None) -> Tuple[str, Dict[str, Any]]:
        params = ParamCollector()
        sql = self.compile(model, condition, alias, params)
        return sql, params.values

    def _literal(self, fdef: Optional[FieldDef], value: Any) -> Any:
        if isinstance(value, dict):
            pk = self.registry.primary_key(fdef.relation.target) if fdef is not None and fdef.is_relation else 'id'
            return as_id(value, pk)
        return value


class QueryCompiler:
    def __init__(self, registry: SchemaRegistry, adapter: BaseAdapter):
        self.registry = registry
        self.adapter = adapter
        self.conditions = ConditionCompiler(registry, adapter)

    # --- public API --------------------------------------------------------------
    def compile(self, vql: Vql, alias: Optional[str] = None) -> CompiledQuery:
        ctx = CompileContext()
        root_alias = ctx.aliases.allocate(alias or vql.model)
        return self._compile(vql, root_alias, ctx, prefix='', root=True)

    def select_sql(self, vql: Vql) -> Tuple[str, Dict[str, Any]]:
        c = self.compile(vql)
        parts = [
            f"SELECT {', '.join(c.fields) if c.fields else '*'}",
            f"FROM {self.adapter.from_clause(vql.model, c.alias)}",
        ]
        if c.join:
            parts.append(c.join)
        if c.condition:
            parts.append(f"WHERE {c.condition}")
        if c.order_by:
            parts.append(f"ORDER BY {c.order_by}")
        if c.limit:
            parts.append(c.limit)
        return ' '.join(parts), c.params

    def count_sql(self, vql: Vql) -> Tuple[str, Dict[str, Any]]:
        c = self.compile(vql)
        parts = [
            "SELECT COUNT(*) AS total",
            f"FROM {self.adapter.from_clause(vql.model, c.alias)}",
        ]
        if c.join:
            parts.append(c.join)
        if c.condition:
            parts.append(f"WHERE {c.condition}")
        return ' '.join(parts), c.params

    # --- compilation -------------------------------------------------------------
    def _compile(self, vql: Vql, alias: str, ctx: CompileContext, *, prefix: str, root: bool) -> CompiledQuery:
        a = self.adapter
        schema = self.registry.get_schema(vql.model)
        pk = self.registry.primary_key(vql.model)

        offset = vql.offset
        if not offset and vql.page and vql.limit:
            offset = (vql.page - 1) * vql.limit
        limit = a.limit_clause(offset, vql.limit) if vql.limit else ''

        order_parts: List[str] = []
        for ob in vql.order_by:
            if schema.get_field(ob.field) is not None:
                order_parts.append(f"{a.column(alias, ob.field)} {'ASC' if ob.ascending else 'DESC'}")
        default_sort = False
        if not order_parts and limit:
            # paged results must be deterministic
            order_parts.append(a.column(alias, pk))
            default_sort = True

        requested = {r.name for r in vql.relations}
        fields, field_names = self._project(vql, schema, alias, ctx, prefix=prefix, requested=requested)
        if root and pk not in field_names and self._needs_correlation(vql, schema):
            fields.insert(0, self._column(alias, pk, prefix))
            field_names.insert(0, pk)

        for req in vql.relations:
            fdef = schema.get_field(req.name)
            if fdef is None or not fdef.is_relation:
                raise RelationNotFoundError(req.name, vql.model, alias)
            if fdef.relation.kind.has_column:
                embedded = self._embedded_relation(alias, fdef, req, ctx, prefix)
                if embedded:
                    fields.append(embedded)
            elif not root:
                logger.warning(
                    "%s.%s: many-to-many and reverse relations are only fetched for the root query; ignored on %s",
                    vql.model, req.name, alias,
                )

        condition = self.conditions.compile(vql.model, vql.condition, alias, ctx.params)
        order_by = ','.join(order_parts)

        joins: List[str] = []
        for join in vql.joins:
            if schema.get_field(join.field) is None:
                raise RelationNotFoundError(join.field, vql.model, alias)
            if join.vql.model not in self.registry:
                raise ConfigurationError(f"model {join.vql.model} is not registered")
            join_alias = ctx.aliases.allocate(f"{alias}_{join.field}")
            join_pk = self.registry.primary_key(join.vql.model)
            keyword = JOIN_KEYWORDS.get(join.type, 'LEFT JOIN')
            joins.append(
                f"{keyword} {a.from_clause(join.vql.model, join_alias)} "
                f"ON ({a.column(alias, join.field)} = {a.column(join_alias, join_pk)})"
            )
            joined = self._compile(join.vql, join_alias, ctx, prefix=f"{join_alias}_", root=False)
            fields.extend(joined.fields)
            if joined.condition:
                condition = f"({condition} AND {joined.condition})" if condition else joined.condition
            if joined.order_by and not default_sort:
                order_by = f"{order_by},{joined.order_by}" if order_by else joined.order_by
            if joined.join:
                joins.append(joined.join)

        return CompiledQuery(
            model=vql.model,
            alias=alias,
            fields=fields,
            field_names=field_names,
            condition=condition,
            order_by=order_by,
            limit=limit,
            join=' '.join(joins),
            params=ctx.params.values,
            default_sort=default_sort,
        )

    def _column(self, alias: str, name: str, prefix: str) -> str:
        col = self.adapter.column(alias, name)
        if prefix:
            return f"{col} AS {self.adapter.quote(prefix + name)}"
        return col

    def _project(self, vql: Vql, schema: Schema, alias: str, ctx: CompileContext, *,
                 prefix: str, requested: Set[str]) -> Tuple[List[str], List[str]]:
        """Columns of ``schema`` to project.

        List fields and relations without a column are never projected; a
        foreign-key column is replaced by its embedded snapshot when that
        relation is requested.
        """
        fields: List[str] = []
        names: List[str] = []
        pk = self.registry.primary_key(schema.name)
        if vql.fields:
            for item in vql.fields:
                if isinstance(item, Vql):
                    sub = self._sub_query(item, ctx)
                    if sub:
                        fields.append(sub)
                    continue
                fdef = schema.get_field(item)
                if fdef is None and item == pk:
                    fields.append(self._column(alias, item, prefix))
                    names.append(item)
                    continue
                if fdef is None or not fdef.has_column:
                    continue
                if fdef.is_relation and item in requested:
                    continue
                fields.append(self._column(alias, item, prefix))
                names.append(item)
            return fields, names
        if schema.get_field(pk) is None:
            # implicit surrogate key
            fields.append(self._column(alias, pk, prefix))
            names.append(pk)
        for fdef in schema:
            if not fdef.has_column:
                continue
            if fdef.is_relation and fdef.name in requested:
                continue
            fields.append(self._column(alias, fdef.name, prefix))
            names.append(fdef.name)
        return fields, names

    def _needs_correlation(self, vql: Vql, schema: Schema) -> bool:
        """Fan-out queries correlate on the primary key, so it must be projected."""
        for req in vql.relations:
            fdef = schema.get_field(req.name)
            if fdef is not None and fdef.is_relation and not fdef.relation.kind.has_column:
                return True
        for fdef in schema:
            if fdef.is_list and (not vql.fields or fdef.name in vql.fields):
                return True
        return False

    def _embedded_relation(self, alias: str, fdef: FieldDef, req: RelationRequest,
                           ctx: CompileContext, prefix: str) -> str:
        a = self.adapter
        related = self.registry.get_schema(fdef.relation.target)
        related_pk = self.registry.primary_key(related.name)
        inner = ctx.aliases.allocate(f"{alias}_{fdef.name}")
        pairs: List[Tuple[str, str]] = []
        for rdef in related:
            if req.fields is not None and rdef.name not in req.fields:
                continue
            if not rdef.is_embeddable:
                continue
            pairs.append((rdef.name, a.column(inner, rdef.name)))
        if not pairs:
            return ''
        where = f"{a.column(inner, related_pk)} = {a.column(alias, fdef.name)}"
        sub = a.single_row_subquery(a.json_object(pairs), related.name, inner, where)
        return f"{sub} AS {a.quote(prefix + fdef.name)}"

    def _sub_query(self, sub: Vql, ctx: CompileContext) -> str:
        """Embed the first row of an independent query as a JSON snapshot column."""
        a = self.adapter
        sub = sub.clone()
        sub.relations = []
        sub.joins = []
        sub.limit = 0
        inner = ctx.aliases.allocate(sub.model)
        compiled = self._compile(sub, inner, ctx, prefix='', root=False)
        pairs = [(name, a.column(inner, name)) for name in compiled.field_names]
        if not pairs:
            return ''
        sql = a.single_row_subquery(a.json_object(pairs), sub.model, inner, compiled.condition, compiled.order_by)
        return f"{sql} AS {a.quote(camel_case(sub.model))}"

