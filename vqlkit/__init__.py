"""vqlkit public API and lightweight lazy exports.

This __init__ avoids importing SQLAlchemy-backed submodules at import time so
that schema declarations (fields, conditions, query descriptions) can be
imported on their own.

Exposes:
- field, relation, list_of, Schema, FieldType, RelationKind
- Condition, Operator, Vql, QueryOption, JoinType
- Lazy attributes: Database, DatabaseConfig, SchemaRegistry, Transaction
- Errors: DatabaseError, ErrorCode, ConfigurationError, RelationNotFoundError
"""
from __future__ import annotations

from .core.condition import Condition, Operator, and_, eq, or_
from .core.fields import FieldType, RelationKind, Schema, field, list_of, relation
from .core.query import JoinType, QueryOption, Vql
from .errors import (
    ConfigurationError,
    DatabaseError,
    ErrorCode,
    RelationNotFoundError,
    TransactionStateError,
)

_LAZY = {
    'Database': 'database',
    'QueryResult': 'database',
    'UpsertResult': 'database',
    'DeleteResult': 'database',
    'DatabaseConfig': 'config',
    'create_engine': 'config',
    'SchemaRegistry': 'registry',
    'Transaction': 'gateway',
}


def __getattr__(name: str):  # PEP 562 lazy exports
    import importlib as _importlib
    module = _LAZY.get(name)
    if module is None:
        raise AttributeError(name)
    return getattr(_importlib.import_module(f"{__name__}.{module}"), name)


__all__ = [
    'field', 'relation', 'list_of', 'Schema', 'FieldType', 'RelationKind',
    'Condition', 'Operator', 'and_', 'or_', 'eq',
    'Vql', 'QueryOption', 'JoinType',
    'DatabaseError', 'ErrorCode', 'ConfigurationError', 'RelationNotFoundError', 'TransactionStateError',
    *_LAZY.keys(),
]
