"""Read-only schema registry consumed by the compiler and the write pipeline."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .core.fields import FieldDef, RelationKind, Schema
from .core.naming import junction_columns, junction_table, list_table
from .errors import ConfigurationError, RelationNotFoundError

logger = logging.getLogger(__name__)


class SchemaRegistry:
    """Process-wide registry of entity schemas.

    Primary keys are resolved once, when the registry is built, so lookups never
    depend on the order of first use. Relation targets are validated eagerly as
    well: a relation to an unregistered entity is a configuration error.
    """

    def __init__(self, schemas: Iterable[Schema] = ()):
        self._schemas: Dict[str, Schema] = {}
        self._primary_keys: Dict[str, str] = {}
        for schema in schemas:
            self._schemas[schema.name] = schema
        for name, schema in self._schemas.items():
            self._primary_keys[name] = self._resolve_pk(schema)
        self._validate_relations()

    # --- construction helpers -------------------------------------------------
    @staticmethod
    def _resolve_pk(schema: Schema) -> str:
        for fdef in schema:
            if fdef.primary:
                return fdef.name
        return 'id'

    def _validate_relations(self) -> None:
        for schema in self._schemas.values():
            for fdef in schema:
                if not fdef.is_relation:
                    continue
                if fdef.relation.target not in self._schemas:
                    raise ConfigurationError(
                        f"relation {schema.name}.{fdef.name} targets unknown model {fdef.relation.target}"
                    )

    # --- lookups ---------------------------------------------------------------
    def __contains__(self, name: str) -> bool:
        return name in self._schemas

    @property
    def names(self) -> List[str]:
        return list(self._schemas.keys())

    @property
    def schemas(self) -> List[Schema]:
        return list(self._schemas.values())

    def get_schema(self, name: str) -> Schema:
        try:
            return self._schemas[name]
        except KeyError:
            raise ConfigurationError(f"model {name} is not registered") from None

    def get_fields(self, name: str) -> Dict[str, FieldDef]:
        return self.get_schema(name).get_fields()

    def get_field_names(self, name: str) -> List[str]:
        return self.get_schema(name).get_field_names()

    def get_field(self, name: str, field_name: str) -> Optional[FieldDef]:
        schema = self._schemas.get(name)
        if schema is None:
            return None
        return schema.get_field(field_name)

    def primary_key(self, name: str) -> str:
        return self._primary_keys.get(name, 'id')

    def relation_field(self, name: str, field_name: str) -> FieldDef:
        """Return a relation field or raise :class:`RelationNotFoundError`."""
        fdef = self.get_field(name, field_name)
        if fdef is None or not fdef.is_relation:
            raise RelationNotFoundError(field_name, name)
        return fdef

    def related_schema(self, name: str, field_name: str) -> Schema:
        return self.get_schema(self.relation_field(name, field_name).relation.target)

    def reverse_field(self, name: str, field_name: str) -> Optional[FieldDef]:
        """Locate the field on the related entity whose relation points back at ``name``."""
        fdef = self.relation_field(name, field_name)
        related = self.get_schema(fdef.relation.target)
        for candidate in related:
            if not candidate.is_relation:
                continue
            if candidate.relation.kind is RelationKind.REVERSE:
                continue
            if candidate.relation.target == name:
                return candidate
        logger.warning("no reverse side found for %s.%s on %s", name, field_name, related.name)
        return None

    # --- side tables -----------------------------------------------------------
    def junction(self, name: str, field_name: str) -> tuple[str, str, str]:
        """Return ``(table, owner_column, related_column)`` for a many-to-many field."""
        fdef = self.relation_field(name, field_name)
        owner_col, related_col = junction_columns(name, fdef.relation.target, field_name)
        return junction_table(name, field_name), owner_col, related_col

    def list_table(self, name: str, field_name: str) -> str:
        return list_table(name, field_name)
