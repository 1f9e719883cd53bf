from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from model_combiner.models import utc_now


class KeyValueStore:
    """Durable string key-value table in a single sqlite file."""

    def __init__(self, db_path: str):
        self._db_path = Path(db_path)
        if db_path != ":memory:":
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._initialize_schema()

    def close(self) -> None:
        self._conn.close()

    def get(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM kv_entries WHERE key = ? LIMIT 1",
            (key,),
        ).fetchone()
        return None if row is None else str(row["value"])

    def set(self, key: str, value: str) -> None:
        with self.transaction():
            self._upsert(key, value)

    def set_many(self, values: dict[str, str]) -> None:
        with self.transaction():
            for key, value in values.items():
                self._upsert(key, value)

    def delete(self, *keys: str) -> None:
        with self.transaction():
            self._conn.executemany(
                "DELETE FROM kv_entries WHERE key = ?",
                [(k,) for k in keys],
            )

    def keys(self) -> list[str]:
        rows = self._conn.execute("SELECT key FROM kv_entries ORDER BY key ASC").fetchall()
        return [str(row["key"]) for row in rows]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()

    def _upsert(self, key: str, value: str) -> None:
        self._conn.execute(
            """
            INSERT INTO kv_entries (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, utc_now()),
        )

    def _initialize_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS kv_entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )
        self._conn.commit()
