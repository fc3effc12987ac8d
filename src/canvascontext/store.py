"""SQLite embedding store.

The only state that survives a restart. Holds one row per embedded chunk and
one row per indexed course (used for freshness checks by the indexing
pipeline). Similarity is computed in Python over the course's rows; there is
no vector index.

All operations catch ``aiosqlite.Error`` and degrade: reads return empty
results, writes are logged and report zero rows. A broken store must never
stop a search tool from answering from the live index.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

import aiosqlite
import structlog

from canvascontext.embeddings import cosine_similarity
from canvascontext.models.embeddings import ChunkMatch, EmbeddingChunk

log = structlog.get_logger()

_CREATE_EMBEDDINGS_TABLE = """
CREATE TABLE IF NOT EXISTS embeddings (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    course_id   TEXT NOT NULL,
    source_id   TEXT NOT NULL,
    source_kind TEXT NOT NULL,
    chunk_text  TEXT NOT NULL,
    embedding   TEXT NOT NULL,
    created_at  TEXT NOT NULL
)
"""

_CREATE_EMBEDDINGS_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_embeddings_course ON embeddings(course_id)"
)

_CREATE_COURSES_TABLE = """
CREATE TABLE IF NOT EXISTS indexed_courses (
    course_id       TEXT PRIMARY KEY,
    name            TEXT NOT NULL DEFAULT '',
    last_indexed_at TEXT NOT NULL
)
"""


class EmbeddingStore:
    """aiosqlite-backed chunk store implementing ChunkStoreProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_EMBEDDINGS_TABLE)
        await self._db.execute(_CREATE_EMBEDDINGS_INDEX)
        await self._db.execute(_CREATE_COURSES_TABLE)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def delete_course(self, course_id: str) -> int:
        try:
            cursor = await self._db.execute(
                "DELETE FROM embeddings WHERE course_id = ?", (course_id,)
            )
            await self._db.commit()
            return cursor.rowcount
        except aiosqlite.Error:
            log.warning("store_delete_error", course_id=course_id, exc_info=True)
            return 0

    async def add_chunks(self, chunks: list[EmbeddingChunk]) -> int:
        if not chunks:
            return 0
        now = datetime.now(UTC).isoformat()
        try:
            await self._db.executemany(
                "INSERT INTO embeddings "
                "(course_id, source_id, source_kind, chunk_text, embedding, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (
                        chunk.course_id,
                        chunk.source_id,
                        chunk.source_kind,
                        chunk.text,
                        json.dumps(chunk.vector),
                        now,
                    )
                    for chunk in chunks
                ],
            )
            await self._db.commit()
            return len(chunks)
        except aiosqlite.Error:
            log.warning("store_write_error", course_id=chunks[0].course_id, exc_info=True)
            return 0

    async def search(
        self, course_id: str, query_vector: list[float], limit: int = 5
    ) -> list[ChunkMatch]:
        """Return the *limit* chunks of a course most similar to *query_vector*."""
        try:
            cursor = await self._db.execute(
                "SELECT source_id, source_kind, chunk_text, embedding "
                "FROM embeddings WHERE course_id = ?",
                (course_id,),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error:
            log.warning("store_read_error", course_id=course_id, exc_info=True)
            return []

        matches: list[ChunkMatch] = []
        for source_id, source_kind, text, raw_vector in rows:
            try:
                vector = json.loads(raw_vector)
            except ValueError:
                log.warning("store_corrupt_vector", course_id=course_id, source_id=source_id)
                continue
            matches.append(
                ChunkMatch(
                    course_id=course_id,
                    source_id=source_id,
                    source_kind=source_kind,
                    text=text,
                    similarity=cosine_similarity(query_vector, vector),
                )
            )
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]

    async def count_chunks(self, course_id: str | None = None) -> int:
        try:
            if course_id is None:
                cursor = await self._db.execute("SELECT COUNT(*) FROM embeddings")
            else:
                cursor = await self._db.execute(
                    "SELECT COUNT(*) FROM embeddings WHERE course_id = ?", (course_id,)
                )
            row = await cursor.fetchone()
            return row[0] if row else 0
        except aiosqlite.Error:
            log.warning("store_read_error", course_id=course_id, exc_info=True)
            return 0

    # ------------------------------------------------------------------
    # Course freshness
    # ------------------------------------------------------------------

    async def mark_indexed(self, course_id: str, name: str = "") -> None:
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO indexed_courses (course_id, name, last_indexed_at) "
                "VALUES (?, ?, ?)",
                (course_id, name, datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_write_error", course_id=course_id, exc_info=True)

    async def last_indexed_at(self, course_id: str | None = None) -> datetime | None:
        """When *course_id* (or, without one, any course) was last indexed."""
        try:
            if course_id is None:
                cursor = await self._db.execute(
                    "SELECT MAX(last_indexed_at) FROM indexed_courses"
                )
            else:
                cursor = await self._db.execute(
                    "SELECT last_indexed_at FROM indexed_courses WHERE course_id = ?",
                    (course_id,),
                )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("store_read_error", course_id=course_id, exc_info=True)
            return None
        if row is None or row[0] is None:
            return None
        return datetime.fromisoformat(row[0])
