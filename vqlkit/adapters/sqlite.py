from __future__ import annotations
from typing import Dict, Sequence, Tuple

from ..core.fields import FieldDef, FieldType
from .base import BaseAdapter, TypeRule


class SQLiteAdapter(BaseAdapter):
    name = 'sqlite'
    max_bind_params = 999

    def json_object(self, pairs: Sequence[Tuple[str, str]]) -> str:
        args = ', '.join(f"'{key}', {expr}" for key, expr in pairs)
        return f"json_object({args})"

    def _string_type(self, fdef: FieldDef) -> str:
        # INTEGER primary keys alias the rowid and get generated values
        if fdef.primary:
            return 'INTEGER'
        return f"VARCHAR({self.string_length(fdef)})"

    def _integer_type(self, fdef: FieldDef) -> str:
        return 'INTEGER'

    def type_table(self) -> Dict[FieldType, TypeRule]:
        return {
            FieldType.BOOLEAN: lambda f: 'INTEGER',
            FieldType.STRING: self._string_type,
            FieldType.EMAIL: self._string_type,
            FieldType.PASSWORD: self._string_type,
            FieldType.TEL: self._string_type,
            FieldType.URL: self._string_type,
            FieldType.FILE: self._string_type,
            FieldType.NUMBER: lambda f: 'REAL',
            FieldType.FLOAT: lambda f: 'REAL',
            FieldType.ENUM: self._integer_type,
            FieldType.INTEGER: self._integer_type,
            FieldType.OBJECT: lambda f: 'TEXT',
            FieldType.TEXT: lambda f: 'TEXT',
            FieldType.TIMESTAMP: lambda f: 'INTEGER' if f.primary else 'BIGINT',
            FieldType.RELATION: lambda f: 'BIGINT',
            FieldType.LIST: lambda f: None,
        }
