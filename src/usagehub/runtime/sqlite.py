"""Access to editor state databases.

VS Code derived editors keep their login state in a SQLite ``state.vscdb``
that the running editor holds open. Reads go through a ``file:`` URI with
``mode=ro&immutable=1`` so they never take a lock or create journal files
next to it. :func:`write_item` is the one writer, used to store a refreshed
token where the editor will find it.
"""

from __future__ import annotations

import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Any
from urllib.parse import quote

from usagehub.config import expand_path
from usagehub.exceptions import DataError, TransportError

WRITE_TIMEOUT = 5.0


def _uri(path: Path) -> str:
    return f"file:{quote(str(path))}?mode=ro&immutable=1"


def _existing(db_path: str | Path) -> Path:
    path = expand_path(db_path)
    if not path.is_file():
        raise TransportError(f"sqlite database not found: {path}")
    return path


def query(db_path: str | Path, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
    """Run a read-only *sql* statement and return rows as dicts.

    Raises:
        TransportError: If the database is missing or cannot be opened.
        DataError: If the statement fails.
    """
    path = _existing(db_path)
    try:
        connection = sqlite3.connect(_uri(path), uri=True)
    except sqlite3.Error as exc:
        raise TransportError(f"sqlite open failed: {exc}") from exc

    with closing(connection):
        connection.row_factory = sqlite3.Row
        try:
            rows = connection.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise DataError(f"sqlite error: {exc}") from exc
    return [dict(row) for row in rows]


def read_item(db_path: str | Path, key: str) -> str | None:
    """Return the ``ItemTable`` value stored under *key*, decoded as text."""
    rows = query(db_path, "SELECT value FROM ItemTable WHERE key = ? LIMIT 1", (key,))
    if not rows:
        return None
    value = rows[0].get("value")
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value if isinstance(value, str) else None


def write_item(db_path: str | Path, key: str, value: str) -> None:
    """Insert or replace the ``ItemTable`` row for *key*.

    The database must already exist; it is never created.

    Raises:
        TransportError: If the database is missing or cannot be opened.
        DataError: If the write fails, e.g. because the editor holds a lock
            longer than :data:`WRITE_TIMEOUT`.
    """
    path = _existing(db_path)
    try:
        connection = sqlite3.connect(path, timeout=WRITE_TIMEOUT)
    except sqlite3.Error as exc:
        raise TransportError(f"sqlite open failed: {exc}") from exc

    with closing(connection):
        try:
            with connection:
                connection.execute(
                    "INSERT OR REPLACE INTO ItemTable (key, value) VALUES (?, ?)",
                    (key, value),
                )
        except sqlite3.Error as exc:
            raise DataError(f"sqlite error: {exc}") from exc
