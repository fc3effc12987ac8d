"""Semantic indexing: chunk course text, embed it, persist it, search it."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from canvascontext.embeddings import chunk_text
from canvascontext.errors import EmbeddingError
from canvascontext.models.embeddings import EmbeddingChunk, ReindexReport

if TYPE_CHECKING:
    from canvascontext.models.embeddings import ChunkMatch, IndexSource
    from canvascontext.protocols import ChunkStoreProtocol, EmbedderProtocol

log = structlog.get_logger()


class SemanticIndexer:
    def __init__(
        self,
        store: ChunkStoreProtocol,
        embedder: EmbedderProtocol,
        *,
        chunk_size: int = 512,
        overlap: int = 128,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._chunk_size = chunk_size
        self._overlap = overlap

    @property
    def enabled(self) -> bool:
        return self._embedder.enabled

    async def reindex_course(self, course_id: str, sources: list[IndexSource]) -> ReindexReport:
        """Replace every stored chunk of *course_id* with chunks of *sources*.

        Prior chunks are deleted before the new ones are written, so a
        concurrent search may briefly see a partial set. A source whose
        embedding call fails is recorded in ``failed_sources`` and skipped.
        """
        report = ReindexReport(course_id=course_id)
        report.deleted = await self._store.delete_course(course_id)

        for source in sources:
            pieces = chunk_text(source.text, self._chunk_size, self._overlap)
            if not pieces:
                continue
            report.sources += 1
            try:
                vectors = await self._embedder.embed_many(pieces)
            except EmbeddingError as exc:
                log.warning(
                    "embedding_source_failed",
                    course_id=course_id,
                    source_id=source.source_id,
                    error=str(exc),
                )
                report.failed_sources.append(source.source_id)
                continue
            chunks = [
                EmbeddingChunk(
                    course_id=course_id,
                    source_id=source.source_id,
                    source_kind=source.kind,
                    text=piece,
                    vector=vector,
                )
                for piece, vector in zip(pieces, vectors, strict=False)
            ]
            report.chunks += await self._store.add_chunks(chunks)

        log.info(
            "course_reindexed",
            course_id=course_id,
            sources=report.sources,
            chunks=report.chunks,
            deleted=report.deleted,
            failed=len(report.failed_sources),
        )
        return report

    async def search(self, course_id: str, query: str, limit: int = 5) -> list[ChunkMatch]:
        """Rank the course's stored chunks by cosine similarity to *query*.

        Raises EmbeddingError if the query itself cannot be embedded.
        """
        if not query.strip():
            return []
        vector = await self._embedder.embed(query)
        return await self._store.search(course_id, vector, limit)
