from __future__ import annotations
import json
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..core.fields import FieldDef, FieldType, STRING_TYPES
from ..errors import ConfigurationError

TypeRule = Callable[[FieldDef], Optional[str]]


class BaseAdapter:
    """Dialect hooks used by the compiler, the write pipeline and the DDL builder.

    Subclasses override identifier quoting, pagination, the embedded JSON
    object expression, INSERT-with-generated-id syntax and the type table.
    """

    name = 'base'
    # Stand-in for '"' inside string-concatenated JSON snapshots.
    quote_marker = '<#quote#>'
    string_prefix = ''
    max_bind_params = 999

    # --- identifiers -------------------------------------------------------------
    def quote(self, ident: str) -> str:
        return '"' + str(ident).replace('"', '""') + '"'

    def table_ident(self, name: str) -> str:
        raw = str(name)
        if '.' in raw:
            schema, table = raw.split('.', 1)
            return f"{self.quote(schema)}.{self.quote(table)}"
        return self.quote(raw)

    def column(self, alias: str, name: str) -> str:
        return f"{self.quote(alias)}.{self.quote(name)}"

    def from_clause(self, table: str, alias: str) -> str:
        if alias == table:
            return self.table_ident(table)
        return f"{self.table_ident(table)} AS {self.quote(alias)}"

    # --- query shape ---------------------------------------------------------------
    def limit_clause(self, offset: int, limit: int) -> str:
        return f"LIMIT {int(limit)} OFFSET {int(offset or 0)}"

    def single_row_subquery(self, expr: str, table: str, alias: str, where: str = '', order_by: str = '') -> str:
        sql = f"SELECT {expr} FROM {self.from_clause(table, alias)}"
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        return f"({sql} LIMIT 1)"

    def json_object(self, pairs: Sequence[Tuple[str, str]]) -> str:
        raise NotImplementedError

    def decode_embedded(self, raw: str) -> str:
        """Turn a stored embedded snapshot back into parseable JSON text."""
        return raw

    def insert_returning(self, table: str, columns: Sequence[str], rows: Sequence[Sequence[str]], pk: str) -> str:
        """INSERT statement returning the generated primary key of every inserted row.

        ``rows`` holds already rendered placeholders (``:p0``...), one list per row.
        """
        if not columns:
            return f"INSERT INTO {self.table_ident(table)} DEFAULT VALUES RETURNING {self.quote(pk)}"
        cols = ', '.join(self.quote(c) for c in columns)
        values = ', '.join('(' + ', '.join(r) + ')' for r in rows)
        return f"INSERT INTO {self.table_ident(table)} ({cols}) VALUES {values} RETURNING {self.quote(pk)}"

    # --- literals ------------------------------------------------------------------
    def escape(self, value: Any) -> str:
        """Render a Python value as an inline SQL literal.

        Only used where bound parameters are not available (DDL defaults).
        """
        if value is None:
            return 'NULL'
        if isinstance(value, bool):
            return '1' if value else '0'
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        s = str(value).replace("'", "''")
        return f"{self.string_prefix}'{s}'"

    # --- DDL -------------------------------------------------------------------------
    def type_table(self) -> Dict[FieldType, TypeRule]:
        raise NotImplementedError

    def column_type(self, fdef: FieldDef) -> Optional[str]:
        """Native column type for ``fdef``; ``None`` when the field has no column."""
        if not fdef.has_column:
            return None
        rule = self.type_table().get(fdef.type)
        if rule is None:
            raise ConfigurationError(f"{self.name}: no column type for {fdef.type!r}")
        return rule(fdef)

    def list_value_type(self, item_type: FieldType) -> str:
        rule = self.type_table().get(item_type)
        if rule is None or item_type in (FieldType.LIST, FieldType.RELATION):
            raise ConfigurationError(f"{self.name}: unsupported list item type {item_type!r}")
        return rule(FieldDef(name='value', type=item_type))

    def identity_suffix(self, fdef: FieldDef) -> str:
        return ''

    def drop_table(self, table: str) -> str:
        return f"DROP TABLE IF EXISTS {self.table_ident(table)}"

    def create_table(self, table: str, definitions: List[str]) -> str:
        body = ',\n '.join(definitions)
        return f"CREATE TABLE {self.table_ident(table)} (\n {body}\n)"

    @staticmethod
    def string_length(fdef: FieldDef) -> int:
        return int(fdef.max_length) if fdef.max_length else 255

    @staticmethod
    def decimal_precision(fdef: FieldDef) -> int:
        digits = len(str(int(fdef.max))) if fdef.max else 18
        return digits + 10

    @staticmethod
    def is_string_like(fdef: FieldDef) -> bool:
        return fdef.type in STRING_TYPES
