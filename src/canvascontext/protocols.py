"""Protocol interfaces for swappable components.

Core modules reference these protocols, not the concrete implementations.
This allows:
- Tests to use lightweight in-memory fakes
- Other parsing or embedding providers to be swapped in without touching
  the reader or indexer
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from canvascontext.models.cache import ParsedDocument
    from canvascontext.models.embeddings import ChunkMatch, EmbeddingChunk


class DocumentParserProtocol(Protocol):
    """Interface for the document-parsing collaborator."""

    @property
    def enabled(self) -> bool: ...

    def validate(self, filename: str, size: int) -> None: ...

    async def parse(
        self, data: bytes, filename: str, result_format: str | None = None
    ) -> ParsedDocument: ...


class EmbedderProtocol(Protocol):
    """Interface for the text embedding provider."""

    @property
    def enabled(self) -> bool: ...

    async def embed(self, text: str) -> list[float]: ...

    async def embed_many(self, texts: list[str]) -> list[list[float]]: ...


class ChunkStoreProtocol(Protocol):
    """Interface for the persisted embedding store."""

    async def delete_course(self, course_id: str) -> int: ...

    async def add_chunks(self, chunks: list[EmbeddingChunk]) -> int: ...

    async def search(
        self, course_id: str, query_vector: list[float], limit: int = 5
    ) -> list[ChunkMatch]: ...

    async def count_chunks(self, course_id: str | None = None) -> int: ...
