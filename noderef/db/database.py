"""SQLite database layer via aiosqlite."""

from __future__ import annotations

import aiosqlite

from noderef.models.source import SourceTarget

SCHEMA = """
CREATE TABLE IF NOT EXISTS sources (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    address TEXT NOT NULL,
    display_name TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS source_selection (
    source_id INTEGER PRIMARY KEY REFERENCES sources(id) ON DELETE CASCADE,
    position INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS search_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    query TEXT NOT NULL,
    results_count INTEGER,
    executed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


class Database:
    """Async SQLite database for sources, selection and search history."""

    def __init__(self, path: str = "noderef.db") -> None:
        self.path = path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        self._db = await aiosqlite.connect(self.path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.executescript(SCHEMA)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not connected — call connect() first")
        return self._db

    # -- Sources --

    async def add_source(self, address: str, display_name: str) -> int:
        cursor = await self.db.execute(
            "INSERT INTO sources (address, display_name) VALUES (?, ?)",
            (address, display_name),
        )
        await self.db.commit()
        return cursor.lastrowid

    async def list_sources(self) -> list[SourceTarget]:
        cursor = await self.db.execute("SELECT * FROM sources ORDER BY id")
        rows = await cursor.fetchall()
        return [_to_source(r) for r in rows]

    async def get_sources(self, source_ids: list[int]) -> list[SourceTarget]:
        """Resolve ids to targets in the given order; unknown ids are skipped."""
        if not source_ids:
            return []
        placeholders = ", ".join("?" for _ in source_ids)
        cursor = await self.db.execute(
            f"SELECT * FROM sources WHERE id IN ({placeholders})", tuple(source_ids)
        )
        by_id = {r["id"]: _to_source(r) for r in await cursor.fetchall()}
        return [by_id[i] for i in dict.fromkeys(source_ids) if i in by_id]

    # -- Selection --

    async def get_selected_source_ids(self) -> list[int]:
        cursor = await self.db.execute(
            "SELECT source_id FROM source_selection ORDER BY position"
        )
        rows = await cursor.fetchall()
        return [r["source_id"] for r in rows]

    async def set_selected_source_ids(self, source_ids: list[int]) -> None:
        await self.db.execute("DELETE FROM source_selection")
        await self.db.executemany(
            "INSERT INTO source_selection (source_id, position) VALUES (?, ?)",
            [(source_id, i) for i, source_id in enumerate(dict.fromkeys(source_ids))],
        )
        await self.db.commit()

    # -- Search history --

    async def record_history(self, query_text: str, result_count: int | None = None) -> int:
        query_text = query_text.strip()
        if not query_text:
            raise ValueError("Search query is required")
        cursor = await self.db.execute(
            "INSERT INTO search_history (query, results_count) VALUES (?, ?)",
            (query_text, result_count),
        )
        await self.db.commit()
        return cursor.lastrowid

    async def list_history(self, limit: int = 10) -> list[dict]:
        cursor = await self.db.execute(
            "SELECT * FROM search_history ORDER BY executed_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]


def _to_source(row: aiosqlite.Row) -> SourceTarget:
    return SourceTarget(id=row["id"], address=row["address"], display_name=row["display_name"])
