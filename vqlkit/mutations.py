"""Write pipeline: INSERT/UPDATE/DELETE plus the relation and list side tables.

Every public operation takes an optional transaction. When none is given the
operation creates one and owns it: it commits on success and rolls back on
failure. A transaction handed in by the caller is never committed or rolled
back here. Dependent steps (junction rows, list rows, weak related rows) run
concurrently and are serialized on the transaction's connection.
"""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from .core.condition import Condition, or_, eq
from .core.fields import FieldDef, FieldType, NUMERIC_TYPES, RelationKind
from .core.query import Vql
from .core.utils import ParamCollector, as_id, chunked
from .errors import DatabaseError, ErrorCode, wrap_error
from .gateway import Transaction

_logger = logging.getLogger(__name__)

# SQL Server rejects more than 1000 row value expressions per INSERT.
MAX_ROWS_PER_INSERT = 1000


async def gather_steps(steps: Iterable[Any]) -> List[Any]:
    """Run dependent steps concurrently; on the first failure cancel the others."""
    tasks = [asyncio.ensure_future(s) for s in steps]
    if not tasks:
        return []
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


class WritePipeline:
    def __init__(self, registry, adapter, gateway, runner):
        self.registry = registry
        self.adapter = adapter
        self.gateway = gateway
        self.runner = runner

    # --- transaction ownership ---------------------------------------------------
    @asynccontextmanager
    async def unit_of_work(self, transaction: Optional[Transaction], code: ErrorCode):
        owned = transaction is None
        txn = transaction if transaction is not None else self.gateway.transaction()
        try:
            yield txn
        except Exception as exc:
            if owned and not txn.done:
                await txn.rollback()
            if isinstance(exc, SQLAlchemyError):
                raise wrap_error(code, exc) from exc
            raise
        else:
            if owned:
                try:
                    await txn.commit()
                except SQLAlchemyError as exc:
                    raise wrap_error(code, exc) from exc

    # --- helpers -------------------------------------------------------------------
    def analyse_value(self, model: str, value: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any], Dict[str, Any]]:
        """Split a value object into plain column values, relation values and list values.

        Keys the schema does not know are dropped.
        """
        schema = self.registry.get_schema(model)
        pk = self.registry.primary_key(model)
        properties: Dict[str, Any] = {}
        relations: Dict[str, Any] = {}
        lists: Dict[str, Any] = {}
        for key, raw in (value or {}).items():
            fdef = schema.get_field(key)
            if fdef is None:
                if key == pk:
                    properties[key] = raw
                continue
            if fdef.is_relation:
                relations[key] = raw
            elif fdef.is_list:
                lists[key] = raw
            elif fdef.type is FieldType.OBJECT and raw is not None and not isinstance(raw, str):
                properties[key] = json.dumps(raw)
            else:
                properties[key] = raw
        return properties, relations, lists

    @staticmethod
    def _missing_value(fdef: Optional[FieldDef]) -> Any:
        if fdef is None:
            return None
        if fdef.default is not None:
            return fdef.default
        if fdef.is_relation:
            return None
        if fdef.type in NUMERIC_TYPES or fdef.type is FieldType.BOOLEAN:
            return 0
        return ''

    def _in_condition(self, alias_column: str, params: ParamCollector, ids: List[Any]) -> str:
        if not ids:
            return '1 = 0'
        return f"{alias_column} IN ({params.in_list(ids)})"

    async def _execute(self, sql: str, params: ParamCollector, transaction) -> List[Dict[str, Any]]:
        return await self.gateway.execute(sql, params.values, transaction)

    async def _insert_rows(self, table: str, columns: List[str], rows: List[Dict[str, Any]],
                           transaction, pk: Optional[str] = None) -> List[Any]:
        """Multi-row INSERT in chunks bounded by the bind-parameter limit.

        Returns the generated primary keys when ``pk`` is given.
        """
        a = self.adapter
        ids: List[Any] = []
        if not columns:
            for _ in rows:
                result = await self.gateway.execute(a.insert_returning(table, [], [], pk or 'id'), {}, transaction)
                ids.extend(r[pk or 'id'] for r in result)
            return ids
        size = min(MAX_ROWS_PER_INSERT, max(1, a.max_bind_params // len(columns)))
        for chunk in chunked(rows, size):
            params = ParamCollector()
            placeholders = [[params.bind(row.get(c)) for c in columns] for row in chunk]
            if pk is not None:
                sql = a.insert_returning(table, columns, placeholders, pk)
                result = await self._execute(sql, params, transaction)
                ids.extend(r[pk] for r in result)
            else:
                cols = ', '.join(a.quote(c) for c in columns)
                values = ', '.join('(' + ', '.join(p) + ')' for p in placeholders)
                await self._execute(f"INSERT INTO {a.table_ident(table)} ({cols}) VALUES {values}", params, transaction)
        return ids

    async def _update_row(self, model: str, assignments: Dict[str, Any], ids: List[Any], transaction) -> None:
        if not assignments or not ids:
            return
        a = self.adapter
        pk = self.registry.primary_key(model)
        for chunk in chunked(ids, max(1, a.max_bind_params - len(assignments))):
            params = ParamCollector()
            sets = ', '.join(f"{a.quote(k)} = {params.bind(v)}" for k, v in assignments.items())
            where = self._in_condition(a.quote(pk), params, chunk)
            await self._execute(f"UPDATE {a.table_ident(model)} SET {sets} WHERE {where}", params, transaction)

    def _check_condition(self, model: str, condition: Optional[Condition]) -> None:
        """Refuse a condition that filters nothing, e.g. one naming only unknown fields."""
        if condition is None:
            return
        sql, _ = self.runner.compiler.conditions.compile_with_params(model, condition)
        if not sql:
            raise DatabaseError(ErrorCode.WRONG_INPUT, f"{model}: condition matches no known field")

    async def _select_ids(self, model: str, condition: Optional[Condition], transaction) -> List[Any]:
        pk = self.registry.primary_key(model)
        rows = await self.runner.select(Vql(model).select(pk).where(condition), transaction)
        return [r[pk] for r in rows]

    async def _select_by_ids(self, model: str, ids: List[Any], transaction) -> List[Dict[str, Any]]:
        pk = self.registry.primary_key(model)
        out: List[Dict[str, Any]] = []
        for chunk in chunked(ids, self.adapter.max_bind_params):
            vql = Vql(model).where(or_(*(eq(pk, i) for i in chunk))).sort_by(pk)
            out.extend(await self.runner.select(vql, transaction))
        return out

    # --- insert ----------------------------------------------------------------------
    async def insert_one(self, model: str, value: Dict[str, Any],
                         transaction: Optional[Transaction] = None) -> List[Dict[str, Any]]:
        pk = self.registry.primary_key(model)
        async with self.unit_of_work(transaction, ErrorCode.INSERT) as txn:
            properties, relations, lists = self.analyse_value(model, value)
            if pk in properties and not properties[pk]:
                del properties[pk]
            columns = list(properties.keys())
            ids = await self._insert_rows(model, columns, [properties], txn, pk=pk)
            new_id = ids[0]
            await gather_steps(
                [self.add_relation(model, new_id, name, v, txn) for name, v in relations.items() if v is not None]
                + [self.add_list(model, new_id, name, v, txn) for name, v in lists.items() if v is not None]
            )
            return await self.runner.find_by_id(model, new_id, transaction=txn)

    async def insert_all(self, model: str, values: List[Dict[str, Any]],
                         transaction: Optional[Transaction] = None) -> List[Dict[str, Any]]:
        """Insert many rows with as few statements as the dialect allows.

        Plain columns and foreign keys go into chunked multi-row INSERTs.
        Value objects that need dependent writes (many-to-many links, list
        values, weak objects without a key) are inserted one by one, since
        returned ids carry no guaranteed order to match them back.

        Columns missing from some value objects get the field default, or a
        type-appropriate placeholder (0, '' or NULL). An empty input issues no
        statement at all.
        """
        if not values:
            return []
        schema = self.registry.get_schema(model)
        pk = self.registry.primary_key(model)
        async with self.unit_of_work(transaction, ErrorCode.INSERT) as txn:
            bulk: List[Dict[str, Any]] = []
            single: List[Dict[str, Any]] = []
            for value in values:
                properties, relations, lists = self.analyse_value(model, value)
                if self._fold_foreign_keys(model, relations, properties) and all(v is None for v in lists.values()):
                    bulk.append(properties)
                else:
                    single.append(value)
            ids: List[Any] = []
            if bulk:
                columns: List[str] = []
                for properties in bulk:
                    for key, raw in properties.items():
                        if key == pk and not raw:
                            continue
                        if key not in columns:
                            columns.append(key)
                rows = [
                    {c: p[c] if c in p else self._missing_value(schema.get_field(c)) for c in columns}
                    for p in bulk
                ]
                ids.extend(await self._insert_rows(model, columns, rows, txn, pk=pk))
            for value in single:
                for row in await self.insert_one(model, dict(value), txn):
                    ids.append(row[pk])
            return await self._select_by_ids(model, ids, txn)

    def _fold_foreign_keys(self, model: str, relations: Dict[str, Any], properties: Dict[str, Any]) -> bool:
        """Move foreign-key relation values into ``properties``.

        False when a relation value needs a write of its own.
        """
        for name, raw in relations.items():
            if raw is None:
                continue
            fdef = self.registry.relation_field(model, name)
            kind = fdef.relation.kind
            if kind is RelationKind.REVERSE:
                _logger.debug("ignoring write to reverse relation %s.%s", model, name)
                continue
            if not kind.has_column:
                return False
            related_id = as_id(raw, self.registry.primary_key(fdef.relation.target))
            if related_id is None:
                return False
            properties[name] = related_id
        return True

    # --- update ----------------------------------------------------------------------
    async def update_one(self, model: str, value: Dict[str, Any],
                         transaction: Optional[Transaction] = None) -> List[Dict[str, Any]]:
        pk = self.registry.primary_key(model)
        id = as_id((value or {}).get(pk))
        if id is None:
            raise DatabaseError(ErrorCode.WRONG_INPUT, f"{model}: {pk} is required to update a row")
        async with self.unit_of_work(transaction, ErrorCode.UPDATE) as txn:
            properties, relations, lists = self.analyse_value(model, value)
            properties.pop(pk, None)
            steps = self._relation_updates(model, id, relations, properties, txn)
            steps.extend(self.update_list(model, id, name, v, txn) for name, v in lists.items())
            await gather_steps(steps)
            await self._update_row(model, properties, [id], txn)
            return await self.runner.find_by_id(model, id, transaction=txn)

    def _relation_updates(self, model: str, id: Any, relations: Dict[str, Any],
                          properties: Dict[str, Any], txn) -> List[Any]:
        """Fold foreign-key relations into ``properties``; return the side-table steps."""
        steps = []
        for name, raw in relations.items():
            fdef = self.registry.relation_field(model, name)
            kind = fdef.relation.kind
            if kind.has_column:
                target_pk = self.registry.primary_key(fdef.relation.target)
                related_id = as_id(raw, target_pk)
                if related_id is None and isinstance(raw, dict) and fdef.relation.weak:
                    steps.append(self.add_one_to_many_relation(model, id, name, raw, txn))
                else:
                    properties[name] = related_id
            elif kind is RelationKind.MANY_TO_MANY:
                steps.append(self.update_relations(model, id, name, raw, txn))
            else:
                _logger.debug("ignoring write to reverse relation %s.%s", model, name)
        return steps

    async def update_all(self, model: str, condition: Optional[Condition], value: Dict[str, Any],
                         transaction: Optional[Transaction] = None) -> List[Dict[str, Any]]:
        pk = self.registry.primary_key(model)
        self._check_condition(model, condition)
        async with self.unit_of_work(transaction, ErrorCode.UPDATE) as txn:
            ids = await self._select_ids(model, condition, txn)
            if not ids:
                return []
            properties, relations, lists = self.analyse_value(model, value)
            properties.pop(pk, None)
            steps = []
            for id in ids:
                steps.extend(self._relation_updates(model, id, relations, properties, txn))
                steps.extend(self.update_list(model, id, name, v, txn) for name, v in lists.items())
            await gather_steps(steps)
            await self._update_row(model, properties, ids, txn)
            return await self._select_by_ids(model, ids, txn)

    async def increase(self, model: str, id: Any, field_name: str, delta: Any = 1,
                       transaction: Optional[Transaction] = None) -> List[Dict[str, Any]]:
        """Atomically add ``delta`` to a numeric column and re-fetch the row."""
        fdef = self.registry.get_field(model, field_name)
        if fdef is None or fdef.type not in NUMERIC_TYPES or fdef.is_relation:
            raise DatabaseError(ErrorCode.WRONG_INPUT, f"{model}.{field_name} is not a numeric field")
        row_id = as_id(id)
        if row_id is None:
            raise DatabaseError(ErrorCode.WRONG_INPUT, f"{model}: id is required")
        a = self.adapter
        pk = self.registry.primary_key(model)
        async with self.unit_of_work(transaction, ErrorCode.UPDATE) as txn:
            params = ParamCollector()
            col = a.quote(field_name)
            sql = (
                f"UPDATE {a.table_ident(model)} SET {col} = COALESCE({col}, 0) + {params.bind(delta)} "
                f"WHERE {a.quote(pk)} = {params.bind(row_id)}"
            )
            await self._execute(sql, params, txn)
            return await self.runner.find_by_id(model, row_id, transaction=txn)

    # --- delete ----------------------------------------------------------------------
    async def remove(self, model: str, target: Any,
                     transaction: Optional[Transaction] = None) -> List[Dict[str, Any]]:
        """Delete by id (int/str) or by :class:`Condition`; anything else is invalid input."""
        if isinstance(target, Condition):
            return await self.delete_all(model, target, transaction)
        if isinstance(target, (int, str)) and not isinstance(target, bool):
            return await self.delete_one(model, target, transaction)
        raise DatabaseError(ErrorCode.WRONG_INPUT, f"cannot remove {model} by {type(target).__name__}")

    async def delete_one(self, model: str, id: Any,
                         transaction: Optional[Transaction] = None) -> List[Dict[str, Any]]:
        a = self.adapter
        pk = self.registry.primary_key(model)
        row_id = as_id(id)
        async with self.unit_of_work(transaction, ErrorCode.DELETE) as txn:
            rows = await self.runner.select(Vql(model).where(eq(pk, row_id)).limit_to(1), txn)
            if not rows:
                return []
            await gather_steps(self._cascade_steps(model, row_id, rows[0], txn))
            params = ParamCollector()
            await self._execute(
                f"DELETE FROM {a.table_ident(model)} WHERE {a.quote(pk)} = {params.bind(row_id)}", params, txn
            )
            return rows

    async def delete_all(self, model: str, condition: Optional[Condition],
                         transaction: Optional[Transaction] = None) -> List[Dict[str, Any]]:
        self._check_condition(model, condition)
        async with self.unit_of_work(transaction, ErrorCode.DELETE) as txn:
            ids = await self._select_ids(model, condition, txn)
            deleted: List[Dict[str, Any]] = []
            for id in ids:
                deleted.extend(await self.delete_one(model, id, txn))
            return deleted

    def _cascade_steps(self, model: str, id: Any, row: Dict[str, Any], txn) -> List[Any]:
        """Clear everything that references the row about to be deleted."""
        a = self.adapter
        schema = self.registry.get_schema(model)
        steps = []
        for fdef in schema:
            if fdef.is_list:
                steps.append(self._clear_list(model, id, fdef.name, txn))
                continue
            if not fdef.is_relation:
                continue
            kind = fdef.relation.kind
            if kind.has_column:
                if fdef.relation.weak and row.get(fdef.name) is not None:
                    steps.append(self.remove_one_to_many_relation(model, id, fdef.name, row[fdef.name], txn))
            elif kind is RelationKind.MANY_TO_MANY:
                steps.append(self.remove_many_to_many_relation(model, id, fdef.name, None, txn))
            else:
                back = self.registry.reverse_field(model, fdef.name)
                if back is None:
                    continue
                target = fdef.relation.target
                params = ParamCollector()
                if back.relation.kind is RelationKind.MANY_TO_MANY:
                    table, _, model_col = self.registry.junction(target, back.name)
                    sql = f"DELETE FROM {a.table_ident(table)} WHERE {a.quote(model_col)} = {params.bind(id)}"
                else:
                    col = a.quote(back.name)
                    sql = f"UPDATE {a.table_ident(target)} SET {col} = NULL WHERE {col} = {params.bind(id)}"
                steps.append(self._execute(sql, params, txn))
        return steps

    # --- relation primitives -------------------------------------------------------------
    async def add_relation(self, model: str, id: Any, field_name: str, value: Any,
                           transaction: Optional[Transaction] = None) -> None:
        fdef = self.registry.relation_field(model, field_name)
        kind = fdef.relation.kind
        if kind.has_column:
            await self.add_one_to_many_relation(model, id, field_name, value, transaction)
        elif kind is RelationKind.MANY_TO_MANY:
            await self.add_many_to_many_relation(model, id, field_name, value, transaction)
        else:
            _logger.debug("ignoring write to reverse relation %s.%s", model, field_name)

    async def remove_relation(self, model: str, id: Any, field_name: str, value: Any = None,
                              transaction: Optional[Transaction] = None) -> None:
        fdef = self.registry.relation_field(model, field_name)
        kind = fdef.relation.kind
        if kind.has_column:
            await self.remove_one_to_many_relation(model, id, field_name, value, transaction)
        elif kind is RelationKind.MANY_TO_MANY:
            await self.remove_many_to_many_relation(model, id, field_name, value, transaction)
        else:
            _logger.debug("ignoring write to reverse relation %s.%s", model, field_name)

    async def add_one_to_many_relation(self, model: str, id: Any, field_name: str, value: Any,
                                       transaction: Optional[Transaction] = None) -> Optional[Any]:
        """Point the foreign key of row ``id`` at ``value``.

        ``value`` may be a raw id or an object; an object without primary key
        is inserted first when the relation is weak. Returns the related id.
        """
        fdef = self.registry.relation_field(model, field_name)
        target = fdef.relation.target
        target_pk = self.registry.primary_key(target)
        async with self.unit_of_work(transaction, ErrorCode.UPDATE) as txn:
            related_id = as_id(value, target_pk)
            if related_id is None and isinstance(value, dict):
                if not fdef.relation.weak:
                    _logger.warning("%s.%s: related object without %s ignored", model, field_name, target_pk)
                    return None
                inserted = await self.insert_one(target, value, txn)
                related_id = inserted[0][target_pk]
            if related_id is None:
                return None
            await self._update_row(model, {field_name: related_id}, [id], txn)
            return related_id

    async def add_many_to_many_relation(self, model: str, id: Any, field_name: str, values: Any,
                                        transaction: Optional[Transaction] = None) -> List[Any]:
        """Insert junction rows pairing ``id`` with every related id in ``values``.

        Objects without primary key on a weak relation are inserted first.
        """
        fdef = self.registry.relation_field(model, field_name)
        target = fdef.relation.target
        target_pk = self.registry.primary_key(target)
        table, owner_col, related_col = self.registry.junction(model, field_name)
        async with self.unit_of_work(transaction, ErrorCode.UPDATE) as txn:
            existing: List[Any] = []
            created: List[Dict[str, Any]] = []
            for item in _as_list(values):
                related_id = as_id(item, target_pk)
                if related_id is not None:
                    existing.append(related_id)
                elif isinstance(item, dict) and fdef.relation.weak:
                    created.append(item)
                else:
                    _logger.warning("%s.%s: related value %r ignored", model, field_name, item)
            if created:
                inserted = await self.insert_all(target, created, txn)
                existing.extend(r[target_pk] for r in inserted)
            rows = [{owner_col: id, related_col: rid} for rid in existing]
            if rows:
                await self._insert_rows(table, [owner_col, related_col], rows, txn)
            return existing

    async def remove_one_to_many_relation(self, model: str, id: Any, field_name: str, value: Any = None,
                                          transaction: Optional[Transaction] = None) -> None:
        """Clear the foreign key; on a weak relation also delete the related row."""
        a = self.adapter
        fdef = self.registry.relation_field(model, field_name)
        target = fdef.relation.target
        related_id = as_id(value, self.registry.primary_key(target))
        pk = self.registry.primary_key(model)
        async with self.unit_of_work(transaction, ErrorCode.UPDATE) as txn:
            params = ParamCollector()
            where = f"{a.quote(pk)} = {params.bind(id)}"
            if related_id is not None:
                where += f" AND {a.quote(field_name)} = {params.bind(related_id)}"
            await self._execute(
                f"UPDATE {a.table_ident(model)} SET {a.quote(field_name)} = NULL WHERE {where}", params, txn
            )
            if fdef.relation.weak and related_id is not None:
                await self.delete_one(target, related_id, txn)

    async def remove_many_to_many_relation(self, model: str, id: Any, field_name: str, values: Any = None,
                                           transaction: Optional[Transaction] = None) -> None:
        """Delete junction rows of ``id``; all of them when ``values`` is None.

        On a weak relation the related rows are deleted as well.
        """
        a = self.adapter
        fdef = self.registry.relation_field(model, field_name)
        target = fdef.relation.target
        target_pk = self.registry.primary_key(target)
        table, owner_col, related_col = self.registry.junction(model, field_name)
        async with self.unit_of_work(transaction, ErrorCode.UPDATE) as txn:
            related_ids: Optional[List[Any]] = None
            if values is not None:
                related_ids = [rid for rid in (as_id(v, target_pk) for v in _as_list(values)) if rid is not None]
            params = ParamCollector()
            where = f"{a.quote(owner_col)} = {params.bind(id)}"
            if related_ids is not None:
                where += f" AND {self._in_condition(a.quote(related_col), params, related_ids)}"
            if fdef.relation.weak and related_ids is None:
                found = await self._execute(
                    f"SELECT {a.quote(related_col)} FROM {a.table_ident(table)} WHERE {where}", params, txn
                )
                related_ids = [r[related_col] for r in found]
            await self._execute(f"DELETE FROM {a.table_ident(table)} WHERE {where}", params, txn)
            if fdef.relation.weak:
                for rid in related_ids or []:
                    await self.delete_one(target, rid, txn)

    async def update_relations(self, model: str, id: Any, field_name: str, values: Any,
                               transaction: Optional[Transaction] = None) -> List[Any]:
        """Replace all junction rows of ``id`` with ``values``."""
        a = self.adapter
        table, owner_col, _ = self.registry.junction(model, field_name)
        async with self.unit_of_work(transaction, ErrorCode.UPDATE) as txn:
            params = ParamCollector()
            await self._execute(
                f"DELETE FROM {a.table_ident(table)} WHERE {a.quote(owner_col)} = {params.bind(id)}", params, txn
            )
            return await self.add_many_to_many_relation(model, id, field_name, values, txn)

    # --- lists ---------------------------------------------------------------------------
    async def add_list(self, model: str, id: Any, field_name: str, values: Any,
                       transaction: Optional[Transaction] = None) -> None:
        table = self.registry.list_table(model, field_name)
        rows = [{'fk': id, 'value': v} for v in _as_list(values)]
        if not rows:
            return
        async with self.unit_of_work(transaction, ErrorCode.UPDATE) as txn:
            await self._insert_rows(table, ['fk', 'value'], rows, txn)

    async def _clear_list(self, model: str, id: Any, field_name: str, transaction) -> None:
        a = self.adapter
        params = ParamCollector()
        table = self.registry.list_table(model, field_name)
        await self._execute(f"DELETE FROM {a.table_ident(table)} WHERE {a.quote('fk')} = {params.bind(id)}",
                            params, transaction)

    async def update_list(self, model: str, id: Any, field_name: str, values: Any,
                          transaction: Optional[Transaction] = None) -> None:
        """Replace the stored list with ``values``."""
        async with self.unit_of_work(transaction, ErrorCode.UPDATE) as txn:
            await self._clear_list(model, id, field_name, txn)
            await self.add_list(model, id, field_name, values, txn)
