from __future__ import annotations
import json
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


def coerce_param(value: Any) -> Any:
    """Normalize a Python value before binding it as a statement parameter.

    Booleans bind as 0/1, enums as their value, dicts/lists as JSON text.
    """
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def as_id(value: Any, pk: str = 'id') -> Optional[Any]:
    """Resolve a raw id or an object's primary key; ``None`` when there is none.

    Numeric strings become ints so they compare equal to integer keys.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        return as_id(value.get(pk), pk)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        try:
            return int(s)
        except ValueError:
            return s
    return value


class ParamCollector:
    """Collects bound parameters for one statement and hands out ``:pN`` placeholders.

    Names are sequential, so compiling the same description twice yields the
    same SQL text and the same parameter mapping.
    """

    def __init__(self, prefix: str = 'p'):
        self.prefix = prefix
        self.values: Dict[str, Any] = {}

    def bind(self, value: Any) -> str:
        name = f"{self.prefix}{len(self.values)}"
        self.values[name] = coerce_param(value)
        return f":{name}"

    def bind_many(self, values: Iterable[Any]) -> List[str]:
        return [self.bind(v) for v in values]

    def in_list(self, values: Iterable[Any]) -> str:
        return ', '.join(self.bind_many(values))


def chunked(items: List[Any], size: int) -> Iterable[List[Any]]:
    size = max(1, int(size))
    for i in range(0, len(items), size):
        yield items[i:i + size]
