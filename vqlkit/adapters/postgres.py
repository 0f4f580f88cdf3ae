from __future__ import annotations
from typing import Dict, Sequence, Tuple

from ..core.fields import FieldDef, FieldType
from .base import BaseAdapter, TypeRule


class PostgresAdapter(BaseAdapter):
    name = 'postgres'
    max_bind_params = 32767

    def json_object(self, pairs: Sequence[Tuple[str, str]]) -> str:
        args = ', '.join(f"'{key}', {expr}" for key, expr in pairs)
        return f"CAST(json_build_object({args}) AS TEXT)"

    def _string_type(self, fdef: FieldDef) -> str:
        if fdef.primary:
            return 'BIGSERIAL'
        return f"VARCHAR({self.string_length(fdef)})"

    def _integer_type(self, fdef: FieldDef) -> str:
        return 'SERIAL' if fdef.primary else 'INTEGER'

    def type_table(self) -> Dict[FieldType, TypeRule]:
        return {
            # Booleans are stored as 0/1 like every other dialect
            FieldType.BOOLEAN: lambda f: 'SMALLINT',
            FieldType.STRING: self._string_type,
            FieldType.EMAIL: self._string_type,
            FieldType.PASSWORD: self._string_type,
            FieldType.TEL: self._string_type,
            FieldType.URL: self._string_type,
            FieldType.FILE: self._string_type,
            FieldType.NUMBER: lambda f: f"NUMERIC({self.decimal_precision(f)},10)",
            FieldType.FLOAT: lambda f: f"NUMERIC({self.decimal_precision(f)},10)",
            FieldType.ENUM: self._integer_type,
            FieldType.INTEGER: self._integer_type,
            FieldType.OBJECT: lambda f: 'TEXT',
            FieldType.TEXT: lambda f: 'TEXT',
            FieldType.TIMESTAMP: lambda f: 'BIGSERIAL' if f.primary else 'BIGINT',
            FieldType.RELATION: lambda f: 'BIGINT',
            FieldType.LIST: lambda f: None,
        }
