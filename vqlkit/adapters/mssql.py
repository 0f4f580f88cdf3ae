from __future__ import annotations
from typing import Dict, Sequence, Tuple

from ..core.fields import FieldDef, FieldType
from .base import BaseAdapter, TypeRule


class MSSQLAdapter(BaseAdapter):
    name = 'mssql'
    string_prefix = 'N'
    max_bind_params = 2100

    def quote(self, ident: str) -> str:
        return '[' + str(ident).replace(']', ']]') + ']'

    def limit_clause(self, offset: int, limit: int) -> str:
        # Requires an ORDER BY; the compiler injects one when none was given.
        return f"OFFSET {int(offset or 0)} ROWS FETCH NEXT {int(limit)} ROWS ONLY"

    def single_row_subquery(self, expr: str, table: str, alias: str, where: str = '', order_by: str = '') -> str:
        sql = f"SELECT TOP 1 {expr} FROM {self.from_clause(table, alias)}"
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        return f"({sql})"

    def json_object(self, pairs: Sequence[Tuple[str, str]]) -> str:
        """Build ``{"field":"value",...}`` with CONCAT.

        Structural quotes are written as :attr:`quote_marker` so that quotes
        inside values can be told apart when the snapshot is decoded.
        """
        q = self.quote_marker
        parts = [f"'{q}{key}{q}:','{q}',{expr},'{q}'" for key, expr in pairs]
        return "CONCAT('{'," + ",',',".join(parts) + ",'}')"

    def decode_embedded(self, raw: str) -> str:
        search = ['\n', '"', '\r', '\t', '\v', "'", self.quote_marker]
        replace = ['\\n', '”', '\\r', '\\t', '\\v', '’', '"']
        for s, r in zip(search, replace):
            raw = raw.replace(s, r)
        return raw

    def insert_returning(self, table: str, columns: Sequence[str], rows: Sequence[Sequence[str]], pk: str) -> str:
        output = f"OUTPUT INSERTED.{self.quote(pk)}"
        if not columns:
            return f"INSERT INTO {self.table_ident(table)} {output} DEFAULT VALUES"
        cols = ', '.join(self.quote(c) for c in columns)
        values = ', '.join('(' + ', '.join(r) + ')' for r in rows)
        return f"INSERT INTO {self.table_ident(table)} ({cols}) {output} VALUES {values}"

    def _string_type(self, fdef: FieldDef) -> str:
        if fdef.primary:
            return 'BIGINT'
        return f"NVARCHAR({self.string_length(fdef)})"

    def type_table(self) -> Dict[FieldType, TypeRule]:
        return {
            FieldType.BOOLEAN: lambda f: 'BIT',
            FieldType.STRING: self._string_type,
            FieldType.EMAIL: self._string_type,
            FieldType.PASSWORD: self._string_type,
            FieldType.TEL: self._string_type,
            FieldType.URL: self._string_type,
            FieldType.FILE: self._string_type,
            FieldType.NUMBER: lambda f: f"DECIMAL({self.decimal_precision(f)},10)",
            FieldType.FLOAT: lambda f: f"DECIMAL({self.decimal_precision(f)},10)",
            FieldType.ENUM: lambda f: 'INT',
            FieldType.INTEGER: lambda f: 'INT',
            FieldType.OBJECT: lambda f: 'NVARCHAR(MAX)',
            FieldType.TEXT: lambda f: 'NVARCHAR(MAX)',
            FieldType.TIMESTAMP: lambda f: 'BIGINT',
            FieldType.RELATION: lambda f: 'BIGINT',
            FieldType.LIST: lambda f: None,
        }

    def identity_suffix(self, fdef: FieldDef) -> str:
        return ' IDENTITY(1,1)'

    def drop_table(self, table: str) -> str:
        return f"IF OBJECT_ID(N'{table}', N'U') IS NOT NULL DROP TABLE {self.table_ident(table)}"
