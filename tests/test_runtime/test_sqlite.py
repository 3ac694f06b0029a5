"""Tests for usagehub.runtime.sqlite -- editor state databases."""

from __future__ import annotations

import json
import sqlite3
from contextlib import closing
from pathlib import Path

import pytest

from usagehub.exceptions import DataError, TransportError
from usagehub.runtime import sqlite


@pytest.fixture
def state_db(tmp_path: Path) -> Path:
    path = tmp_path / "state.vscdb"
    with closing(sqlite3.connect(path)) as connection:
        connection.execute("CREATE TABLE ItemTable (key TEXT UNIQUE, value BLOB)")
        connection.execute(
            "INSERT INTO ItemTable VALUES (?, ?)",
            ("windsurfAuthStatus", json.dumps({"apiKey": "sk-ws"})),
        )
        connection.execute(
            "INSERT INTO ItemTable VALUES (?, ?)",
            ("binaryItem", b'{"apiKey": "sk-bin"}'),
        )
        connection.commit()
    return path


class TestQuery:

    def test_rows_as_dicts(self, state_db: Path) -> None:
        rows = sqlite.query(state_db, "SELECT key FROM ItemTable ORDER BY key")
        assert rows == [{"key": "binaryItem"}, {"key": "windsurfAuthStatus"}]

    def test_database_is_not_modified(self, state_db: Path) -> None:
        before = state_db.read_bytes()
        sqlite.query(state_db, "SELECT * FROM ItemTable")
        assert state_db.read_bytes() == before
        assert not (state_db.parent / "state.vscdb-journal").exists()

    def test_writes_are_rejected(self, state_db: Path) -> None:
        with pytest.raises(DataError):
            sqlite.query(state_db, "DELETE FROM ItemTable")

    def test_bad_statement(self, state_db: Path) -> None:
        with pytest.raises(DataError):
            sqlite.query(state_db, "SELECT * FROM Missing")

    def test_missing_database(self, tmp_path: Path) -> None:
        with pytest.raises(TransportError):
            sqlite.query(tmp_path / "absent.vscdb", "SELECT 1")


class TestReadItem:

    def test_text_value(self, state_db: Path) -> None:
        assert json.loads(sqlite.read_item(state_db, "windsurfAuthStatus")) == {"apiKey": "sk-ws"}

    def test_blob_value_is_decoded(self, state_db: Path) -> None:
        assert sqlite.read_item(state_db, "binaryItem") == '{"apiKey": "sk-bin"}'

    def test_missing_key(self, state_db: Path) -> None:
        assert sqlite.read_item(state_db, "nope") is None


class TestWriteItem:

    def test_replaces_existing_value(self, state_db: Path) -> None:
        sqlite.write_item(state_db, "windsurfAuthStatus", "new")
        assert sqlite.read_item(state_db, "windsurfAuthStatus") == "new"

    def test_inserts_new_key(self, state_db: Path) -> None:
        sqlite.write_item(state_db, "cursorAuth/accessToken", "tok")
        assert sqlite.read_item(state_db, "cursorAuth/accessToken") == "tok"
        assert sqlite.read_item(state_db, "binaryItem") == '{"apiKey": "sk-bin"}'

    def test_missing_database_is_not_created(self, tmp_path: Path) -> None:
        with pytest.raises(TransportError):
            sqlite.write_item(tmp_path / "absent.vscdb", "k", "v")
        assert not (tmp_path / "absent.vscdb").exists()

    def test_missing_table(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.vscdb"
        with closing(sqlite3.connect(path)) as connection:
            connection.execute("CREATE TABLE Other (x)")
        with pytest.raises(DataError):
            sqlite.write_item(path, "k", "v")
