"""Error taxonomy shared by the compiler, the gateway and the write pipeline."""
from __future__ import annotations

from enum import Enum


class ErrorCode(Enum):
    CONNECTION = 'db_connection'
    QUERY = 'db_query'
    INSERT = 'db_insert'
    UPDATE = 'db_update'
    DELETE = 'db_delete'
    WRONG_INPUT = 'wrong_input'


class DatabaseError(Exception):
    """Structured failure raised by every public database operation.

    Attributes:
        code: The :class:`ErrorCode` describing which kind of operation failed.
        message: Message of the underlying failure (driver text or our own).
    """

    def __init__(self, code: ErrorCode, message: str | None = None):
        self.code = code
        self.message = message or ''
        super().__init__(f"{code.value}: {self.message}" if self.message else code.value)


class ConfigurationError(Exception):
    """Schema or query description is inconsistent; indicates a programming error."""


class RelationNotFoundError(ConfigurationError):
    def __init__(self, field: str, model: str, alias: str | None = None):
        self.field = field
        self.model = model
        self.alias = alias or model
        super().__init__(f"FIELD {field} NOT FOUND IN model {model} as {self.alias}")


class TransactionStateError(Exception):
    """Commit or rollback requested on a transaction that already finished."""


def wrap_error(code: ErrorCode, exc: BaseException) -> DatabaseError:
    """Convert any failure into a :class:`DatabaseError` carrying ``code``."""
    if isinstance(exc, DatabaseError) and exc.code == code:
        return exc
    if isinstance(exc, DatabaseError):
        return DatabaseError(code, exc.message)
    return DatabaseError(code, str(exc))


__all__ = [
    'ErrorCode',
    'DatabaseError',
    'ConfigurationError',
    'RelationNotFoundError',
    'TransactionStateError',
    'wrap_error',
]
