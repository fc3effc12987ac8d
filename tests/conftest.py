"""Shared test fixtures for the canvascontext test suite."""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import aiosqlite
import httpx
import pytest
from pydantic import SecretStr

from canvascontext.canvas import CanvasClient
from canvascontext.config import CanvasSettings, FileCacheSettings
from canvascontext.errors import DocumentParseError, EmbeddingError, ParseErrorCode
from canvascontext.file_cache import FileContentCache
from canvascontext.models.cache import ParsedDocument
from canvascontext.store import EmbeddingStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

BASE_URL = "https://canvas.test"
HOST = "canvas.test"


class FakeClock:
    """Settable UTC clock for TTL tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeEmbedder:
    """Deterministic bag-of-words embedder over a fixed vocabulary."""

    VOCAB = ("quantum", "optics", "homework", "syllabus", "exam", "lecture")

    def __init__(self) -> None:
        self.active = True
        self.fail_on: str | None = None
        self.calls: list[list[str]] = []

    @property
    def enabled(self) -> bool:
        return self.active

    def vector(self, text: str) -> list[float]:
        lowered = text.lower()
        vec = [float(lowered.count(word)) for word in self.VOCAB]
        # Keep every vector non-zero so cosine similarity is defined
        digest = hashlib.sha256(lowered.encode()).digest()
        vec.append(0.01 + digest[0] / 25500)
        return vec

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_many([text]))[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if not self.active:
            raise EmbeddingError("Embeddings disabled (no API key)")
        if self.fail_on is not None and any(self.fail_on in t for t in texts):
            raise EmbeddingError("Embedding generation failed: HTTPStatusError")
        return [self.vector(t) for t in texts]


class FakeParser:
    """In-memory DocumentParserProtocol returning canned content."""

    def __init__(self) -> None:
        self.content = "# Parsed\n\nLecture notes on quantum optics."
        self.active = True
        self.max_bytes = 50 * 1024 * 1024
        self.parse_calls = 0

    @property
    def enabled(self) -> bool:
        return self.active

    def validate(self, filename: str, size: int) -> None:
        if not self.active:
            raise DocumentParseError(ParseErrorCode.DISABLED, "Document parsing disabled")
        if size > self.max_bytes:
            raise DocumentParseError(ParseErrorCode.SIZE_EXCEEDED, "File exceeds 50MB limit")

    async def parse(
        self, data: bytes, filename: str, result_format: str | None = None
    ) -> ParsedDocument:
        self.validate(filename, len(data))
        self.parse_calls += 1
        return ParsedDocument(
            content=self.content, format=result_format or "markdown", parse_time_ms=12.5
        )


@pytest.fixture()
def canvas_settings() -> CanvasSettings:
    return CanvasSettings(base_url=BASE_URL, access_token=SecretStr("test-token"))


@pytest.fixture()
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture()
def canvas(http_client: httpx.AsyncClient, canvas_settings: CanvasSettings) -> CanvasClient:
    return CanvasClient(http_client, canvas_settings)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def file_cache(clock: FakeClock) -> FileContentCache:
    return FileContentCache(FileCacheSettings(sweep_enabled=False), clock=clock)


@pytest.fixture()
async def store() -> AsyncGenerator[EmbeddingStore, None]:
    """EmbeddingStore backed by in-memory SQLite."""
    async with aiosqlite.connect(":memory:") as db:
        embedding_store = EmbeddingStore(db)
        await embedding_store.init_db()
        yield embedding_store


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def fake_parser() -> FakeParser:
    return FakeParser()
