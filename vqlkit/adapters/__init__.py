from __future__ import annotations

import logging

from .base import BaseAdapter
from .sqlite import SQLiteAdapter
from .postgres import PostgresAdapter
from .mssql import MSSQLAdapter

logger = logging.getLogger(__name__)


def get_adapter(dialect_name: str) -> BaseAdapter:
    dn = (dialect_name or '').lower()
    logger.info("Detected database dialect: %s", dn)
    if dn.startswith('postgres'):
        return PostgresAdapter()
    if dn.startswith('mssql') or 'pyodbc' in dn:
        return MSSQLAdapter()
    if not dn.startswith('sqlite'):
        logger.warning("Unsupported database dialect: %s. Falling back to SQLite adapter.", dn)
    return SQLiteAdapter()


__all__ = [
    'BaseAdapter',
    'SQLiteAdapter',
    'PostgresAdapter',
    'MSSQLAdapter',
    'get_adapter',
]
