"""Engine construction and lookup for the library database."""

from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Iterator
from urllib.parse import unquote, urlparse

from flask import g, has_app_context
from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.engine.default import DefaultDialect

db_lock = Lock()
"""Serializes writes so SQLite never sees two concurrent writers."""

_MARIADB_DIALECTS = frozenset({"mysql", "mariadb"})


class DatabaseEngine:
    """Thin wrapper around an :class:`~sqlalchemy.engine.Engine`."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @property
    def is_mariadb(self) -> bool:
        return self.dialect_name in _MARIADB_DIALECTS

    @contextmanager
    def sa_connection(self) -> Iterator[Connection]:
        """Yield a plain connection for reads."""

        with self._engine.connect() as conn:
            yield conn

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Yield a connection inside a transaction committed on success."""

        with self._engine.begin() as conn:
            yield conn

    def dispose(self) -> None:
        self._engine.dispose()


_fallback_engine: DatabaseEngine | None = None


def set_fallback_engine(engine: DatabaseEngine | None) -> None:
    """Configure the engine used outside a Flask application context."""

    global _fallback_engine
    _fallback_engine = engine


def _timeout_ms(timeout: float | None) -> int | None:
    if timeout is None:
        return None
    value = int(max(timeout, 0) * 1000)
    return value or None


def _configure_sqlite_connection(conn: Any, *, busy_timeout: float | None = None) -> None:
    """Enable WAL and foreign keys and wait on locks instead of failing."""

    if not isinstance(conn, sqlite3.Connection):
        return
    pragmas = [("journal_mode", "WAL"), ("foreign_keys", "ON")]
    busy_ms = _timeout_ms(busy_timeout)
    if busy_ms is not None:
        pragmas.insert(0, ("busy_timeout", busy_ms))
    for name, value in pragmas:
        try:
            conn.execute(f"PRAGMA {name}={value}").fetchall()
        except sqlite3.OperationalError:  # pragma: no cover - read-only or in-memory files
            continue


def _configure_mariadb_connection(conn: Any, *, lock_timeout: float | None = None) -> None:
    """Bound how long deletes and updates wait on row locks."""

    if lock_timeout is None:
        return
    seconds = max(int(lock_timeout), 1)
    cursor = conn.cursor()
    try:
        cursor.execute("SET SESSION innodb_lock_wait_timeout = %s", (seconds,))
    finally:
        cursor.close()


def _resolve_sqlite_path_from_dsn(dsn: str) -> str:
    """Return the absolute database file path named by a ``sqlite:///`` DSN."""

    parsed = urlparse(dsn)
    if parsed.scheme != "sqlite":
        raise ValueError(f"Not a SQLite DSN: {dsn!r}")
    path = unquote(parsed.path or "")
    if parsed.netloc and parsed.netloc != "localhost":
        path = f"//{parsed.netloc}{path}"
    if not path:
        raise ValueError("SQLite DSN must include a filesystem path")
    return os.fspath(Path(path).resolve())


def build_engine_from_dsn(
    dsn: str,
    *,
    timeout: float | None = None,
    pool_recycle: int = 1_800,
) -> DatabaseEngine:
    """Create a :class:`DatabaseEngine` for a SQLite or MariaDB ``dsn``."""

    scheme = urlparse(dsn).scheme
    dialect = scheme.split("+", 1)[0]
    effective_timeout = timeout if timeout is not None else 5.0

    if dialect == "sqlite":
        engine = create_engine(
            f"sqlite:///{_resolve_sqlite_path_from_dsn(dsn)}",
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def _on_sqlite_connect(dbapi_conn, connection_record):  # type: ignore[no-untyped-def]
            _configure_sqlite_connection(dbapi_conn, busy_timeout=effective_timeout)

        return DatabaseEngine(engine)

    engine = create_engine(dsn, pool_recycle=pool_recycle, pool_pre_ping=True)
    if dialect in _MARIADB_DIALECTS:

        @event.listens_for(engine, "connect")
        def _on_mariadb_connect(dbapi_conn, connection_record):  # type: ignore[no-untyped-def]
            _configure_mariadb_connection(dbapi_conn, lock_timeout=effective_timeout)

    return DatabaseEngine(engine)


def get_engine(
    engine_factory: Callable[[], DatabaseEngine] | None = None,
    *,
    context_key: str = 'db',
) -> DatabaseEngine:
    """Return the engine for the current request or process.

    Inside an application context the engine is cached on ``flask.g``.
    Elsewhere the fallback engine is used, created from ``engine_factory``
    on first use.
    """

    global _fallback_engine

    if has_app_context():
        engine = getattr(g, context_key, None)
        if engine is None:
            engine = engine_factory() if engine_factory is not None else _fallback_engine
            if engine is None:
                raise RuntimeError('Database connection is not configured')
            setattr(g, context_key, engine)
        return engine

    if _fallback_engine is None:
        if engine_factory is None:
            raise RuntimeError('Database connection is not configured')
        _fallback_engine = engine_factory()
    return _fallback_engine


def get_table_columns(engine: DatabaseEngine, table_name: str) -> set[str]:
    """Return the column names of ``table_name``, empty when it is missing."""

    with engine.sa_connection() as conn:
        inspector = inspect(conn)
        if not inspector.has_table(table_name):
            return set()
        return {column['name'] for column in inspector.get_columns(table_name)}


def _quote_identifier(identifier: str, engine: DatabaseEngine | Engine | None = None) -> str:
    """Quote ``identifier`` for ``engine``'s dialect (or the fallback engine)."""

    if isinstance(engine, DatabaseEngine):
        engine = engine.engine
    if engine is None and _fallback_engine is not None:
        engine = _fallback_engine.engine
    dialect = engine.dialect if engine is not None else DefaultDialect()
    return dialect.identifier_preparer.quote(identifier)
