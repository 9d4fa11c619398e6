"""SQLAlchemy-backed storage for a user's library entries and dismissals."""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Mapping, Sequence

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from db import utils as db_utils
from helpers import clean_text, now_utc_iso
from library.errors import PersistenceError, SessionError, StaleTargetError
from library.models import LibraryEntry

logger = logging.getLogger(__name__)

LIBRARY_TABLE = "library_entries"
DISMISSED_TABLE = "dismissed_duplicates"

_UPDATABLE_COLUMNS = (
    "canonical_game_id",
    "title",
    "platform",
    "playtime_hours",
    "achievements_earned",
    "achievements_total",
    "completion_percentage",
    "last_played_at",
    "status",
    "priority",
    "notes",
    "tags",
    "cover_url",
    "steam_appid",
    "psn_communication_id",
    "xbox_title_id",
    "epic_catalog_item_id",
)


def _quote(engine: db_utils.DatabaseEngine, name: str) -> str:
    return db_utils._quote_identifier(name, engine)


def _library_table_sql(engine: db_utils.DatabaseEngine) -> list[str]:
    table = _quote(engine, LIBRARY_TABLE)
    if engine.is_mariadb:
        return [
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id VARCHAR(64) PRIMARY KEY,
                user_id VARCHAR(64) NOT NULL,
                canonical_game_id VARCHAR(64),
                title VARCHAR(512) NOT NULL,
                platform VARCHAR(128),
                playtime_hours DOUBLE DEFAULT 0,
                achievements_earned INT DEFAULT 0,
                achievements_total INT DEFAULT 0,
                completion_percentage DOUBLE DEFAULT 0,
                last_played_at VARCHAR(64),
                status VARCHAR(32),
                priority VARCHAR(32),
                notes LONGTEXT,
                tags LONGTEXT,
                cover_url TEXT,
                steam_appid VARCHAR(64),
                psn_communication_id VARCHAR(64),
                xbox_title_id VARCHAR(64),
                epic_catalog_item_id VARCHAR(64),
                updated_at VARCHAR(64),
                INDEX {_quote(engine, f'{LIBRARY_TABLE}_user_idx')} (user_id)
            )
            """
        ]
    return [
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            canonical_game_id TEXT,
            title TEXT NOT NULL,
            platform TEXT,
            playtime_hours REAL DEFAULT 0,
            achievements_earned INTEGER DEFAULT 0,
            achievements_total INTEGER DEFAULT 0,
            completion_percentage REAL DEFAULT 0,
            last_played_at TEXT,
            status TEXT,
            priority TEXT,
            notes TEXT,
            tags TEXT,
            cover_url TEXT,
            steam_appid TEXT,
            psn_communication_id TEXT,
            xbox_title_id TEXT,
            epic_catalog_item_id TEXT,
            updated_at TEXT
        )
        """,
        f"""
        CREATE INDEX IF NOT EXISTS {_quote(engine, f'{LIBRARY_TABLE}_user_idx')}
        ON {table} (user_id)
        """,
    ]


def _dismissed_table_sql(engine: db_utils.DatabaseEngine) -> list[str]:
    table = _quote(engine, DISMISSED_TABLE)
    if engine.is_mariadb:
        return [
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id BIGINT AUTO_INCREMENT PRIMARY KEY,
                user_id VARCHAR(64) NOT NULL,
                normalized_title VARCHAR(255) NOT NULL,
                game_ids LONGTEXT,
                created_at VARCHAR(64),
                UNIQUE KEY {_quote(engine, f'{DISMISSED_TABLE}_user_title_uq')} (user_id, normalized_title)
            )
            """
        ]
    return [
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            normalized_title TEXT NOT NULL,
            game_ids TEXT,
            created_at TEXT,
            UNIQUE (user_id, normalized_title)
        )
        """
    ]


def ensure_schema(engine: db_utils.DatabaseEngine) -> None:
    """Create the library and dismissal tables when they are missing."""

    statements = _library_table_sql(engine) + _dismissed_table_sql(engine)
    with db_utils.db_lock, engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))


def _encode_tags(value: Any) -> str:
    if value is None:
        return json.dumps([])
    if isinstance(value, str):
        return json.dumps([value])
    return json.dumps([str(tag) for tag in value])


def _decode_ids(value: Any) -> list[str]:
    if not value:
        return []
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        return []
    if not isinstance(decoded, list):
        return []
    return [str(item) for item in decoded]


class LibraryStore:
    """Library persistence for one authenticated user.

    Every query is scoped to ``user_id``; entries owned by other users are
    invisible to the store.  Database errors surface as
    :class:`PersistenceError`.
    """

    def __init__(self, engine: db_utils.DatabaseEngine, user_id: str | None) -> None:
        user = clean_text(user_id)
        if not user:
            raise SessionError()
        self._engine = engine
        self.user_id = user
        self._library = _quote(engine, LIBRARY_TABLE)
        self._dismissed = _quote(engine, DISMISSED_TABLE)

    @contextmanager
    def _read(self) -> Iterator[Connection]:
        try:
            with self._engine.sa_connection() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.exception("Library read failed for user %s", self.user_id)
            raise PersistenceError(f"Library read failed: {exc}") from exc

    @contextmanager
    def _write(self) -> Iterator[Connection]:
        try:
            with db_utils.db_lock, self._engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            logger.exception("Library write failed for user %s", self.user_id)
            raise PersistenceError(f"Library write failed: {exc}") from exc

    # ------------------------------------------------------------------
    # reads

    def library_snapshot(self) -> list[LibraryEntry]:
        """Return every entry of the user in a stable order."""

        statement = text(
            f"SELECT * FROM {self._library} WHERE user_id = :user_id ORDER BY title, id"
        )
        try:
            with self._read() as conn:
                rows = conn.execute(statement, {"user_id": self.user_id}).mappings().all()
        except PersistenceError as exc:
            raise SessionError("Library could not be loaded.") from exc
        return [LibraryEntry.from_mapping(row) for row in rows]

    def fetch_records(self, ids: Sequence[str]) -> list[LibraryEntry]:
        """Return the entries among ``ids`` that still exist."""

        if not ids:
            return []
        statement = text(
            f"SELECT * FROM {self._library} WHERE user_id = :user_id AND id IN :ids"
        ).bindparams(bindparam("ids", expanding=True))
        with self._read() as conn:
            rows = conn.execute(
                statement, {"user_id": self.user_id, "ids": list(ids)}
            ).mappings().all()
        return [LibraryEntry.from_mapping(row) for row in rows]

    def dismissed_keys(self) -> set[str]:
        statement = text(
            f"SELECT normalized_title FROM {self._dismissed} WHERE user_id = :user_id"
        )
        with self._read() as conn:
            rows = conn.execute(statement, {"user_id": self.user_id}).all()
        return {row[0] for row in rows}

    def list_dismissals(self) -> list[dict[str, Any]]:
        statement = text(
            f"SELECT normalized_title, game_ids, created_at FROM {self._dismissed} "
            "WHERE user_id = :user_id ORDER BY normalized_title"
        )
        with self._read() as conn:
            rows = conn.execute(statement, {"user_id": self.user_id}).mappings().all()
        return [
            {
                'key': row["normalized_title"],
                'game_ids': _decode_ids(row["game_ids"]),
                'created_at': row["created_at"],
            }
            for row in rows
        ]

    # ------------------------------------------------------------------
    # writes

    def insert_records(self, entries: Iterable[LibraryEntry | Mapping[str, Any]]) -> int:
        """Insert library entries for the user; returns the number inserted."""

        rows: list[dict[str, Any]] = []
        timestamp = now_utc_iso()
        for item in entries:
            entry = item if isinstance(item, LibraryEntry) else LibraryEntry.from_mapping(item)
            row = entry.to_dict()
            row["tags"] = _encode_tags(entry.tags)
            row["user_id"] = self.user_id
            row["updated_at"] = timestamp
            rows.append(row)
        if not rows:
            return 0

        columns = list(rows[0])
        statement = text(
            f"INSERT INTO {self._library} ({', '.join(columns)}) "
            f"VALUES ({', '.join(f':{column}' for column in columns)})"
        )
        with self._write() as conn:
            conn.execute(statement, rows)
        return len(rows)

    def update_record(self, entry_id: str, fields: Mapping[str, Any]) -> None:
        """Apply ``fields`` to one entry; unknown columns are ignored."""

        values = {key: fields[key] for key in _UPDATABLE_COLUMNS if key in fields}
        if "tags" in values:
            values["tags"] = _encode_tags(values["tags"])
        values["updated_at"] = now_utc_iso()

        assignments = ", ".join(f"{column} = :{column}" for column in values)
        statement = text(
            f"UPDATE {self._library} SET {assignments} "
            "WHERE user_id = :user_id AND id = :entry_id"
        )
        params = {**values, "user_id": self.user_id, "entry_id": entry_id}
        with self._write() as conn:
            updated = conn.execute(statement, params).rowcount
        if updated == 0:
            raise StaleTargetError([entry_id])

    def delete_records(self, ids: Sequence[str]) -> int:
        if not ids:
            return 0
        statement = text(
            f"DELETE FROM {self._library} WHERE user_id = :user_id AND id IN :ids"
        ).bindparams(bindparam("ids", expanding=True))
        with self._write() as conn:
            deleted = conn.execute(
                statement, {"user_id": self.user_id, "ids": list(ids)}
            ).rowcount
        logger.info("Deleted %d library entries for user %s", deleted, self.user_id)
        return deleted

    def upsert_dismissal(self, key: str, member_ids: Sequence[str]) -> None:
        """Remember that the group ``key`` was intentionally kept."""

        delete_statement = text(
            f"DELETE FROM {self._dismissed} "
            "WHERE user_id = :user_id AND normalized_title = :key"
        )
        insert_statement = text(
            f"INSERT INTO {self._dismissed} (user_id, normalized_title, game_ids, created_at) "
            "VALUES (:user_id, :key, :game_ids, :created_at)"
        )
        params = {
            "user_id": self.user_id,
            "key": key,
            "game_ids": json.dumps(list(member_ids)),
            "created_at": now_utc_iso(),
        }
        with self._write() as conn:
            conn.execute(delete_statement, params)
            conn.execute(insert_statement, params)

    def clear_dismissal(self, key: str) -> bool:
        statement = text(
            f"DELETE FROM {self._dismissed} "
            "WHERE user_id = :user_id AND normalized_title = :key"
        )
        with self._write() as conn:
            removed = conn.execute(statement, {"user_id": self.user_id, "key": key}).rowcount
        return removed > 0

    def clear_all_dismissals(self) -> int:
        statement = text(f"DELETE FROM {self._dismissed} WHERE user_id = :user_id")
        with self._write() as conn:
            removed = conn.execute(statement, {"user_id": self.user_id}).rowcount
        return removed


__all__ = [
    "DISMISSED_TABLE",
    "LIBRARY_TABLE",
    "LibraryStore",
    "ensure_schema",
]
