from __future__ import annotations

from typing import Tuple

__all__ = [
    'camel_case',
    'pascal_case',
    'junction_table',
    'junction_columns',
    'list_table',
    'translation_table',
]


def camel_case(name: str) -> str:
    """Lower the first character: ``PostTag`` -> ``postTag``."""
    if not name:
        return name
    return name[0].lower() + name[1:]


def pascal_case(name: str) -> str:
    """Upper the first character: ``tags`` -> ``Tags``."""
    if not name:
        return name
    return name[0].upper() + name[1:]


def junction_table(owner: str, field_name: str) -> str:
    """Many-to-many junction table, e.g. ``PostHasTags``."""
    return f"{owner}Has{pascal_case(field_name)}"


def junction_columns(owner: str, related: str, field_name: str) -> Tuple[str, str]:
    """Return ``(owner_column, related_column)`` of a junction table.

    Self-referencing relations would produce the same name twice, in that case
    the related column is named after the field.
    """
    owner_col = camel_case(owner)
    related_col = camel_case(related)
    if owner_col == related_col:
        related_col = camel_case(field_name)
    return owner_col, related_col


def list_table(owner: str, field_name: str) -> str:
    """Side table holding a list-of-scalar field, e.g. ``PostKeywordsList``."""
    return f"{owner}{pascal_case(field_name)}List"


def translation_table(owner: str) -> str:
    return f"{owner}_translation"
