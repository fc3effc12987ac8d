"""Text chunking, vector similarity and the embedding API client."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import httpx
import structlog

from canvascontext.errors import EmbeddingError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from canvascontext.config import EmbeddingSettings

log = structlog.get_logger()


def chunk_text(text: str, size: int = 512, overlap: int = 128) -> list[str]:
    """Split *text* into fixed windows of *size* characters.

    Each window starts ``size - overlap`` characters after the previous one,
    so consecutive chunks share *overlap* characters. The last chunk may be
    shorter than *size*.
    """
    if size <= 0:
        raise ValueError("size must be positive")
    if overlap < 0 or overlap >= size:
        raise ValueError("overlap must be in [0, size)")
    if not text:
        return []
    step = size - overlap
    return [text[start : start + size] for start in range(0, len(text), step)]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors.

    Mismatched lengths and zero-norm vectors give 0.0 instead of raising.
    """
    if len(a) != len(b) or not a:
        return 0.0
    dot = norm_a = norm_b = 0.0
    for x, y in zip(a, b, strict=True):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


class Embedder:
    """Client for an OpenAI-compatible ``/embeddings`` endpoint.

    Stateless apart from the shared HTTP client; batches inputs by
    ``batch_size`` and raises ``EmbeddingError`` on any transport failure or
    malformed response.
    """

    def __init__(self, client: httpx.AsyncClient, settings: EmbeddingSettings) -> None:
        self._client = client
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return self._settings.enabled and bool(self._settings.api_key.get_secret_value())

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_many([text])
        if not vectors:
            raise EmbeddingError("Embedding response contained no vectors")
        return vectors[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        if not self.enabled:
            raise EmbeddingError("Embeddings disabled (no API key)")

        url = f"{self._settings.base_url.rstrip('/')}/embeddings"
        headers = {"Authorization": f"Bearer {self._settings.api_key.get_secret_value()}"}
        batch_size = max(1, self._settings.batch_size)
        vectors: list[list[float]] = []

        for start in range(0, len(texts), batch_size):
            batch = texts[start : start + batch_size]
            try:
                response = await self._client.post(
                    url,
                    json={"model": self._settings.model, "input": batch},
                    headers=headers,
                    timeout=self._settings.timeout_seconds,
                )
                response.raise_for_status()
                payload = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                log.error(
                    "embedding_request_failed",
                    batch_size=len(batch),
                    error=type(exc).__name__,
                )
                raise EmbeddingError(f"Embedding generation failed: {type(exc).__name__}") from exc

            batch_vectors = _extract_embeddings(payload)
            if len(batch_vectors) != len(batch):
                raise EmbeddingError(
                    f"Expected {len(batch)} embeddings, got {len(batch_vectors)}"
                )
            vectors.extend(batch_vectors)

        return vectors


def _extract_embeddings(payload: object) -> list[list[float]]:
    """Validate ``{"data": [{"embedding": [...]}, ...]}`` and return the vectors."""
    if not isinstance(payload, dict) or "data" not in payload:
        raise EmbeddingError("Embedding response missing 'data' field")
    records = payload["data"]
    if not isinstance(records, list):
        raise EmbeddingError("'data' field must be a list")

    vectors: list[list[float]] = []
    for index, record in enumerate(records):
        if not isinstance(record, dict) or "embedding" not in record:
            raise EmbeddingError(f"Malformed embedding record at index {index}")
        vector = record["embedding"]
        if not isinstance(vector, list) or not all(isinstance(x, (int, float)) for x in vector):
            raise EmbeddingError(f"Invalid embedding vector at index {index}")
        vectors.append([float(x) for x in vector])
    return vectors
