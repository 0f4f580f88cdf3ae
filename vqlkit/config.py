"""Connection configuration and engine construction.

Settings are read from the environment (optionally from a ``.env`` file via
python-dotenv). Pool options are chosen per dialect:

- SQLite: driver defaults, no pool sizing.
- ``mssql+aioodbc``: ``NullPool`` and MARS enabled on the ODBC DSN so
  concurrent statements on one logical unit of work do not fail with
  "Connection is busy".
- anything else: a sized async queue pool with pre-ping.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from urllib.parse import quote_plus, unquote_plus

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

logger = logging.getLogger(__name__)

DEFAULT_URL = "sqlite+aiosqlite:///vqlkit.db"


def _as_bool(raw: str | None, default: bool = False) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 't', 'yes', 'y', 'on')


def _as_int(raw: str | None, default: int) -> int:
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass
class DatabaseConfig:
    url: str = DEFAULT_URL
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_recycle: int = 3600
    pool_pre_ping: bool = True

    @classmethod
    def from_env(cls, prefix: str = "VQLKIT_", dotenv: bool = True) -> "DatabaseConfig":
        """Build a config from ``<prefix>DATABASE_URL``, ``<prefix>ECHO``, ``<prefix>POOL_SIZE`` ..."""
        if dotenv:
            load_dotenv()
        env = os.environ
        return cls(
            url=env.get(f"{prefix}DATABASE_URL") or DEFAULT_URL,
            echo=_as_bool(env.get(f"{prefix}ECHO")),
            pool_size=_as_int(env.get(f"{prefix}POOL_SIZE"), 5),
            max_overflow=_as_int(env.get(f"{prefix}MAX_OVERFLOW"), 10),
            pool_recycle=_as_int(env.get(f"{prefix}POOL_RECYCLE"), 3600),
            pool_pre_ping=_as_bool(env.get(f"{prefix}POOL_PRE_PING"), True),
        )


def with_mars(url: str) -> str:
    """Enable MARS on an ``mssql+aioodbc:///?odbc_connect=...`` URL when missing."""
    prefix = "mssql+aioodbc:///"
    if not url.startswith(prefix) or "odbc_connect=" not in url:
        return url
    idx = url.find("odbc_connect=")
    dsn = unquote_plus(url[idx + len("odbc_connect="):])
    if 'MARS_Connection' in dsn or 'MultipleActiveResultSets' in dsn:
        return url
    if not dsn.endswith(';'):
        dsn += ';'
    dsn += 'MARS_Connection=Yes;MultipleActiveResultSets=True'
    return prefix + "?odbc_connect=" + quote_plus(dsn)


def create_engine(config: DatabaseConfig) -> AsyncEngine:
    url = config.url
    lowered = url.lower()
    logger.debug("creating engine for %s", lowered.split(":", 1)[0])
    if lowered.startswith("sqlite"):
        return create_async_engine(url, echo=config.echo)
    if lowered.startswith("mssql+aioodbc"):
        return create_async_engine(
            with_mars(url),
            echo=config.echo,
            poolclass=NullPool,
            pool_pre_ping=False,
            pool_recycle=-1,
        )
    return create_async_engine(
        url,
        echo=config.echo,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_recycle=config.pool_recycle,
        pool_pre_ping=config.pool_pre_ping,
    )
