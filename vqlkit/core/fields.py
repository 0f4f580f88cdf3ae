from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class FieldType(Enum):
    """Semantic field types understood by the compiler and the type-mapping tables."""

    STRING = 'string'
    EMAIL = 'email'
    PASSWORD = 'password'
    TEL = 'tel'
    URL = 'url'
    FILE = 'file'
    TEXT = 'text'
    NUMBER = 'number'
    FLOAT = 'float'
    INTEGER = 'integer'
    BOOLEAN = 'boolean'
    ENUM = 'enum'
    TIMESTAMP = 'timestamp'
    OBJECT = 'object'
    LIST = 'list'
    RELATION = 'relation'


STRING_TYPES = frozenset({
    FieldType.STRING, FieldType.EMAIL, FieldType.PASSWORD,
    FieldType.TEL, FieldType.URL, FieldType.FILE,
})

NUMERIC_TYPES = frozenset({
    FieldType.NUMBER, FieldType.FLOAT, FieldType.INTEGER,
    FieldType.TIMESTAMP, FieldType.ENUM, FieldType.RELATION,
})


class RelationKind(Enum):
    ONE_TO_ONE = 'one_to_one'
    ONE_TO_MANY = 'one_to_many'
    MANY_TO_MANY = 'many_to_many'
    REVERSE = 'reverse'

    @property
    def has_column(self) -> bool:
        """One-to-one and one-to-many relations are stored as a foreign-key column."""
        return self in (RelationKind.ONE_TO_ONE, RelationKind.ONE_TO_MANY)


@dataclass(frozen=True)
class Relation:
    """Relation metadata attached to a RELATION field.

    Attributes:
        target: Name of the related entity (resolved through the registry).
        kind: Storage/semantic kind of the relation.
        weak: When True the related rows are owned by this entity; inserting a
            nested object without primary key creates it, removing the
            relation deletes it.
    """

    target: str
    kind: RelationKind
    weak: bool = False


@dataclass
class FieldDef:
    """Normalized, read-only description of a single entity field."""

    name: str
    type: FieldType
    required: bool = False
    unique: bool = False
    default: Any = None
    max_length: Optional[int] = None
    max: Optional[float] = None
    primary: bool = False
    multilingual: bool = False
    list_type: Optional[FieldType] = None
    relation: Optional[Relation] = None

    @property
    def is_list(self) -> bool:
        return self.type is FieldType.LIST

    @property
    def is_relation(self) -> bool:
        return self.type is FieldType.RELATION and self.relation is not None

    @property
    def has_column(self) -> bool:
        """Whether this field is stored as a column on the entity's own table."""
        if self.is_list:
            return False
        if self.is_relation:
            return self.relation.kind.has_column
        return True

    @property
    def is_embeddable(self) -> bool:
        """Fields that may appear inside an embedded JSON snapshot of the entity."""
        return self.has_column


def field(type: FieldType = FieldType.STRING, /, **props: Any) -> FieldDef:
    """Declare a scalar field.

    Examples:
        title = field(FieldType.STRING, max_length=100, required=True)
        id = field(FieldType.INTEGER, primary=True)
    """
    return FieldDef(name='', type=type, **props)


def relation(target: str, kind: RelationKind = RelationKind.ONE_TO_MANY, *, weak: bool = False, **props: Any) -> FieldDef:
    """Declare a relation to another entity by name."""
    return FieldDef(name='', type=FieldType.RELATION, relation=Relation(target=target, kind=kind, weak=weak), **props)


def list_of(item_type: FieldType = FieldType.STRING, **props: Any) -> FieldDef:
    """Declare a list-of-scalar field stored in a side table."""
    return FieldDef(name='', type=FieldType.LIST, list_type=item_type, **props)


class Schema:
    """An entity: a name plus an ordered mapping of field name to :class:`FieldDef`.

    Fields may be given as keyword arguments (declaration order is kept) or
    added later with :meth:`add_field`.
    """

    def __init__(self, name: str, /, **fields: FieldDef):
        self.name = name
        self.fields: Dict[str, FieldDef] = {}
        for fname, fdef in fields.items():
            self.add_field(fname, fdef)

    def add_field(self, name: str, fdef: FieldDef) -> FieldDef:
        fdef.name = name
        self.fields[name] = fdef
        return fdef

    def get_fields(self) -> Dict[str, FieldDef]:
        return self.fields

    def get_field_names(self) -> List[str]:
        return list(self.fields.keys())

    def get_field(self, name: str) -> Optional[FieldDef]:
        return self.fields.get(name)

    @property
    def multilingual_fields(self) -> List[FieldDef]:
        return [f for f in self.fields.values() if f.multilingual]

    def __iter__(self) -> Iterator[FieldDef]:
        return iter(self.fields.values())

    def __repr__(self) -> str:
        return f"Schema({self.name!r}, fields={self.get_field_names()!r})"
