from __future__ import annotations

import logging
from typing import List, Tuple

from ..core.fields import FieldDef, FieldType, RelationKind, Schema
from ..core.naming import translation_table

logger = logging.getLogger(__name__)


class SchemaBuilder:
    """DROP/CREATE statements for every registered entity and its side tables.

    Side tables: ``<Entity>_translation`` when multilingual fields exist, a
    junction table per many-to-many field and a list table per list field.
    """

    def __init__(self, registry, adapter):
        self.registry = registry
        self.adapter = adapter

    def _default(self, value) -> str:
        # literal defaults are inlined; escape ':' so text() does not read a bind
        return self.adapter.escape(value).replace(':', '\\:')

    def column_definition(self, fdef: FieldDef, pk: str) -> str:
        a = self.adapter
        native = a.column_type(fdef)
        parts = [a.quote(fdef.name), native]
        if fdef.primary or fdef.name == pk:
            parts.append('NOT NULL')
            if fdef.type in (FieldType.INTEGER, FieldType.TIMESTAMP) or a.is_string_like(fdef):
                suffix = a.identity_suffix(fdef)
                if suffix:
                    parts.append(suffix.strip())
        else:
            if fdef.required and not fdef.is_relation:
                parts.append('NOT NULL')
            if fdef.default is not None:
                parts.append(f"DEFAULT {self._default(fdef.default)}")
            if fdef.unique:
                parts.append('UNIQUE')
        return ' '.join(parts)

    def _surrogate_pk(self, name: str) -> str:
        fdef = FieldDef(name=name, type=FieldType.INTEGER, primary=True)
        return self.column_definition(fdef, name)

    def entity_table(self, schema: Schema) -> List[str]:
        a = self.adapter
        pk = self.registry.primary_key(schema.name)
        definitions: List[str] = []
        if schema.get_field(pk) is None:
            definitions.append(self._surrogate_pk(pk))
        for fdef in schema:
            if fdef.has_column:
                definitions.append(self.column_definition(fdef, pk))
        definitions.append(f"PRIMARY KEY ({a.quote(pk)})")
        return [a.drop_table(schema.name), a.create_table(schema.name, definitions)]

    def translation_table(self, schema: Schema) -> List[str]:
        """Per-entity table holding the multilingual columns, keyed by the entity's primary key."""
        fields = schema.multilingual_fields
        if not fields:
            return []
        a = self.adapter
        table = translation_table(schema.name)
        pk = self.registry.primary_key(schema.name)
        key = FieldDef(name=pk, type=FieldType.RELATION)
        definitions = [self.column_definition(fdef, pk) for fdef in fields]
        definitions.append(f"{a.quote(pk)} {a.column_type(key)} NOT NULL")
        definitions.append(f"PRIMARY KEY ({a.quote(pk)})")
        return [a.drop_table(table), a.create_table(table, definitions)]

    def junction_tables(self, schema: Schema) -> List[str]:
        a = self.adapter
        out: List[str] = []
        for fdef in schema:
            if not fdef.is_relation or fdef.relation.kind is not RelationKind.MANY_TO_MANY:
                continue
            table, owner_col, related_col = self.registry.junction(schema.name, fdef.name)
            definitions = [
                self._surrogate_pk('id'),
                f"{a.quote(owner_col)} INTEGER",
                f"{a.quote(related_col)} INTEGER",
                f"PRIMARY KEY ({a.quote('id')})",
            ]
            out.extend([a.drop_table(table), a.create_table(table, definitions)])
        return out

    def list_tables(self, schema: Schema) -> List[str]:
        a = self.adapter
        out: List[str] = []
        for fdef in schema:
            if not fdef.is_list:
                continue
            table = self.registry.list_table(schema.name, fdef.name)
            value_type = a.list_value_type(fdef.list_type or FieldType.STRING)
            definitions = [
                self._surrogate_pk('id'),
                f"{a.quote('fk')} INTEGER",
                f"{a.quote('value')} {value_type}",
                f"PRIMARY KEY ({a.quote('id')})",
            ]
            out.extend([a.drop_table(table), a.create_table(table, definitions)])
        return out

    def statements(self) -> List[Tuple[str, str]]:
        """``(entity, sql)`` pairs in execution order."""
        out: List[Tuple[str, str]] = []
        for schema in self.registry.schemas:
            for sql in (
                self.entity_table(schema)
                + self.translation_table(schema)
                + self.junction_tables(schema)
                + self.list_tables(schema)
            ):
                out.append((schema.name, sql))
        return out

    async def initialize(self, gateway, transaction=None) -> int:
        statements = self.statements()
        for entity, sql in statements:
            logger.debug("initializing %s", entity)
            await gateway.execute(sql, None, transaction)
        logger.info("initialized %d tables", len(self.registry.schemas))
        return len(statements)
