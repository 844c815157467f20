"""SQLite snapshot of knowledge entries.

The entry store is authoritative and lives in memory; this is a
non-transactional mirror written on demand and read back at start-up.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path

import aiosqlite

from code_memory.config import DB_PATH
from code_memory.models import MemoryEntry, entry_from_record, entry_to_record

_SCHEMA = """
CREATE TABLE IF NOT EXISTS entries (
    id               TEXT PRIMARY KEY,
    type             TEXT NOT NULL,
    content          TEXT NOT NULL,
    source           TEXT NOT NULL,
    page_id          TEXT,
    file_path        TEXT,
    symbol_name      TEXT,
    tags             TEXT NOT NULL DEFAULT '[]',
    relevance        REAL DEFAULT 1.0,
    confidence       REAL DEFAULT 1.0,
    extra            TEXT NOT NULL DEFAULT '{}',
    embedding        TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL,
    expires_at       TEXT,
    access_count     INTEGER DEFAULT 0,
    last_accessed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_entries_type ON entries(type);
CREATE INDEX IF NOT EXISTS idx_entries_file ON entries(file_path);
"""

_COLUMNS = (
    "id", "type", "content", "source", "page_id", "file_path", "symbol_name",
    "tags", "relevance", "confidence", "extra", "embedding",
    "created_at", "updated_at", "expires_at", "access_count", "last_accessed_at",
)

# Columns holding lists/dicts, stored as JSON text
_JSON_COLUMNS = ("tags", "extra", "embedding")


class SQLiteStore:
    """Async SQLite snapshot of knowledge entries."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or DB_PATH
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("SQLiteStore not initialized, call initialize() first")
        return self._db

    async def save_entries(self, entries: Iterable[MemoryEntry]) -> int:
        """Upsert entries. Returns the number written."""
        placeholders = ",".join("?" for _ in _COLUMNS)
        sql = f"INSERT OR REPLACE INTO entries ({', '.join(_COLUMNS)}) VALUES ({placeholders})"

        rows = [_entry_to_row(entry) for entry in entries]
        await self.db.executemany(sql, rows)
        await self.db.commit()
        return len(rows)

    async def delete_entry(self, entry_id: str) -> bool:
        cur = await self.db.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
        await self.db.commit()
        return cur.rowcount > 0

    async def load_entries(self) -> list[MemoryEntry]:
        entries = []
        async with self.db.execute("SELECT * FROM entries ORDER BY created_at, rowid") as cur:
            async for row in cur:
                entries.append(_row_to_entry(dict(row)))
        return entries

    async def count_entries(self, entry_type: str | None = None) -> int:
        if entry_type:
            sql = "SELECT COUNT(*) as cnt FROM entries WHERE type = ?"
            params: tuple = (entry_type,)
        else:
            sql = "SELECT COUNT(*) as cnt FROM entries"
            params = ()
        async with self.db.execute(sql, params) as cur:
            row = await cur.fetchone()
            return row["cnt"] if row else 0

    async def clear(self) -> None:
        await self.db.execute("DELETE FROM entries")
        await self.db.commit()


def _entry_to_row(entry: MemoryEntry) -> tuple:
    record = entry_to_record(entry)
    for column in _JSON_COLUMNS:
        if record[column] is not None:
            record[column] = json.dumps(record[column])
    return tuple(record[column] for column in _COLUMNS)


def _row_to_entry(row: dict) -> MemoryEntry:
    for column in _JSON_COLUMNS:
        if row.get(column) is not None:
            row[column] = json.loads(row[column])
    return entry_from_record(row)
