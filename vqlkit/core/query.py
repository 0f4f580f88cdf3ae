from __future__ import annotations
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Sequence, Union

from .condition import Condition


class JoinType(Enum):
    JOIN = 'join'  # full outer
    LEFT = 'left'
    RIGHT = 'right'
    INNER = 'inner'


@dataclass
class OrderBy:
    field: str
    ascending: bool = True


@dataclass
class RelationRequest:
    """A relation to fetch, optionally restricted to some fields of the related entity."""

    name: str
    fields: Optional[List[str]] = None


@dataclass
class Join:
    type: JoinType
    field: str
    vql: "Vql"


def as_relation_request(raw: Any) -> RelationRequest:
    if isinstance(raw, RelationRequest):
        return raw
    if isinstance(raw, str):
        return RelationRequest(name=raw)
    if isinstance(raw, dict):
        fields = raw.get('fields')
        return RelationRequest(name=raw['name'], fields=list(fields) if fields is not None else None)
    raise TypeError(f"Unsupported relation request form: {raw!r}")


def as_order_by(raw: Any) -> OrderBy:
    if isinstance(raw, OrderBy):
        return raw
    if isinstance(raw, str):
        # "title" / "title:desc"
        name, _, direction = raw.partition(':')
        return OrderBy(field=name, ascending=(direction or 'asc').lower() != 'desc')
    if isinstance(raw, dict):
        return OrderBy(field=raw['field'], ascending=bool(raw.get('ascending', True)))
    if isinstance(raw, (tuple, list)) and raw:
        return OrderBy(field=raw[0], ascending=bool(raw[1]) if len(raw) > 1 else True)
    raise TypeError(f"Unsupported order_by form: {raw!r}")


class Vql:
    """Structured, schema-aware query description.

    Built fluently; every builder returns ``self``::

        Vql('Post').select('id', 'title') \\
            .where(Condition(Operator.EQUAL_TO).compare('status', 'open')) \\
            .sort_by('title') \\
            .limit_to(10).from_page(2) \\
            .fetch_record_for('tags', {'name': 'author', 'fields': ['name']})
    """

    def __init__(self, model: str):
        self.model = model
        self.fields: List[Union[str, "Vql"]] = []
        self.condition: Optional[Condition] = None
        self.order_by: List[OrderBy] = []
        self.limit: int = 0
        self.offset: int = 0
        self.page: int = 0
        self.relations: List[RelationRequest] = []
        self.joins: List[Join] = []

    def select(self, *fields: Union[str, "Vql"]) -> "Vql":
        self.fields.extend(fields)
        return self

    def where(self, condition: Optional[Condition]) -> "Vql":
        self.condition = condition
        return self

    def sort_by(self, field: str, ascending: bool = True) -> "Vql":
        self.order_by.append(OrderBy(field=field, ascending=ascending))
        return self

    def order(self, items: Sequence[Any]) -> "Vql":
        self.order_by = [as_order_by(x) for x in (items or [])]
        return self

    def limit_to(self, limit: int) -> "Vql":
        self.limit = int(limit or 0)
        return self

    def from_offset(self, offset: int) -> "Vql":
        self.offset = int(offset or 0)
        return self

    def from_page(self, page: int) -> "Vql":
        self.page = int(page or 0)
        return self

    def fetch_record_for(self, *relations: Any) -> "Vql":
        self.relations.extend(as_relation_request(r) for r in relations)
        return self

    def join(self, vql: "Vql", field: str, type: JoinType = JoinType.LEFT) -> "Vql":
        self.joins.append(Join(type=type, field=field, vql=vql))
        return self

    def clone(self) -> "Vql":
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        return f"Vql({self.model!r})"


@dataclass
class QueryOption:
    """Options accepted by ``find``/``count`` when querying by id or by values."""

    fields: Optional[List[str]] = None
    relations: Optional[List[Any]] = None
    order_by: List[Any] = field(default_factory=list)
    limit: int = 0
    offset: int = 0
    page: int = 0

    def apply(self, vql: Vql) -> Vql:
        if self.fields:
            vql.select(*self.fields)
        if self.offset or self.page:
            vql.from_offset(self.offset if self.offset else (self.page - 1) * int(self.limit or 0))
        if self.relations:
            vql.fetch_record_for(*self.relations)
        if self.limit:
            vql.limit_to(self.limit)
        vql.order(self.order_by or [])
        return vql
