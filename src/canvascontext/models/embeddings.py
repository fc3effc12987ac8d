from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

SourceKind = Literal["file", "assignment", "syllabus"]


class IndexSource(BaseModel):
    """One piece of raw course text fed to the semantic indexer."""

    source_id: str
    kind: SourceKind
    text: str


class EmbeddingChunk(BaseModel):
    course_id: str
    source_id: str
    source_kind: SourceKind
    text: str
    vector: list[float]


class ChunkMatch(BaseModel):
    course_id: str
    source_id: str
    source_kind: SourceKind
    text: str
    similarity: float


class ReindexReport(BaseModel):
    course_id: str
    sources: int = 0
    chunks: int = 0
    deleted: int = 0
    failed_sources: list[str] = []


class CourseCounts(BaseModel):
    course_id: str
    name: str = ""
    assignments: int = 0
    files: int = 0


class IndexRunReport(BaseModel):
    started_at: datetime
    skipped: bool = False
    skip_reason: str | None = None
    courses: list[CourseCounts] = []
    reindexed: list[ReindexReport] = []
    errors: list[str] = []
