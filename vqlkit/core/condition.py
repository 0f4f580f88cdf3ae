from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional


class Operator(Enum):
    # connectors
    AND = 'and'
    OR = 'or'
    # comparisons
    EQUAL_TO = 'eq'
    NOT_EQUAL_TO = 'ne'
    GREATER_THAN = 'gt'
    GREATER_THAN_OR_EQUAL_TO = 'gte'
    LESS_THAN = 'lt'
    LESS_THAN_OR_EQUAL_TO = 'lte'
    LIKE = 'like'
    NOT_LIKE = 'not_like'

    @property
    def is_connector(self) -> bool:
        return self in (Operator.AND, Operator.OR)


@dataclass
class Comparison:
    field: str
    value: Any = None
    # When True ``value`` is a raw column reference (e.g. ``Post.author``), not a literal.
    is_field: bool = False


class Condition:
    """Node of a filter tree.

    A leaf holds a :class:`Comparison`; a connector (AND/OR) holds an ordered
    list of children. ``model`` optionally overrides the entity whose schema is
    used to validate the compared field.

    Examples:
        Condition(Operator.EQUAL_TO).compare('status', 'open')
        Condition(Operator.AND).append(
            Condition(Operator.GREATER_THAN).compare('views', 10),
            Condition(Operator.LIKE).compare('title', '%sql%'),
        )
    """

    def __init__(self, operator: Operator, model: Optional[str] = None):
        self.operator = operator
        self.model = model
        self.comparison: Optional[Comparison] = None
        self.children: List[Condition] = []

    @property
    def is_connector(self) -> bool:
        return self.operator.is_connector

    def compare(self, field: str, value: Any, is_field: bool = False) -> "Condition":
        if self.is_connector:
            raise ValueError(f"{self.operator.name} is a connector; use append()")
        self.comparison = Comparison(field=field, value=value, is_field=is_field)
        return self

    def append(self, *children: "Condition") -> "Condition":
        if not self.is_connector:
            raise ValueError(f"{self.operator.name} is a comparison; use compare()")
        self.children.extend(children)
        return self

    def __repr__(self) -> str:
        if self.is_connector:
            return f"Condition({self.operator.name}, {self.children!r})"
        return f"Condition({self.operator.name}, {self.comparison!r})"


def and_(*children: Condition) -> Condition:
    return Condition(Operator.AND).append(*children)


def or_(*children: Condition) -> Condition:
    return Condition(Operator.OR).append(*children)


def eq(field: str, value: Any) -> Condition:
    return Condition(Operator.EQUAL_TO).compare(field, value)
