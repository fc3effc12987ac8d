from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from canvascontext.models.assistant import IntentClassification
from canvascontext.models.canvas import CanvasUrlInfo
from canvascontext.models.cache import FileReadResult
from canvascontext.models.discovery import DiscoveredFile, DiscoveredLink, ScoredLink, ScoredPage
from canvascontext.models.embeddings import ChunkMatch

ReturnMode = Literal["refs", "full"]


def _strip_required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


# ---------------------------------------------------------------------------
# resolve_course
# ---------------------------------------------------------------------------


class ResolveCourseInput(BaseModel):
    query: str = Field(max_length=500)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        return _strip_required(v)


class CourseMatch(BaseModel):
    course_id: str
    name: str
    course_code: str
    relevance: float  # 0.0–1.0


class ResolveCourseOutput(BaseModel):
    matches: list[CourseMatch]


# ---------------------------------------------------------------------------
# smart_search
# ---------------------------------------------------------------------------


class SmartSearchInput(BaseModel):
    query: str = Field(max_length=500)
    course_id: str | None = None
    course_name: str | None = None
    max_results: int = Field(default=5, ge=1, le=50)
    return_mode: ReturnMode = "refs"
    force_refresh: bool = False
    use_small_model: bool = True
    include_semantic: bool = False

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        return _strip_required(v)


class SearchFileHit(BaseModel):
    file_id: str
    file_name: str
    url: str
    source: str
    relevance: float
    can_process: bool


class SearchHits(BaseModel):
    files: list[SearchFileHit] = []
    pages: list[ScoredPage] = []
    links: list[ScoredLink] = []


class Citation(BaseModel):
    id: str
    type: Literal["file", "page", "link"]
    title: str
    source: str
    relevance: float
    can_process: bool | None = None  # Files only


class SearchMetadata(BaseModel):
    total_results: int
    search_time_ms: float
    extraction_used: bool
    discovery_method: str
    api_restrictions: str | None = None
    truncated: bool = False
    mode: ReturnMode = "refs"
    intent: IntentClassification | None = None
    reranked: bool = False


class SmartSearchOutput(BaseModel):
    success: bool
    query: str
    course_id: str | None = None
    course_name: str | None = None
    citations: list[Citation] | None = None  # refs mode
    results: SearchHits | None = None  # full mode
    semantic_matches: list[ChunkMatch] = []
    metadata: SearchMetadata
    suggestions: list[str] = []
    error: str | None = None


# ---------------------------------------------------------------------------
# course_content_overview / clear_content_cache
# ---------------------------------------------------------------------------


class CourseOverviewInput(BaseModel):
    course_id: str = Field(min_length=1, max_length=64)
    force_refresh: bool = False


class ContentSummary(BaseModel):
    total_files: int = 0
    total_pages: int = 0
    total_links: int = 0
    last_scanned_at: datetime | None = None
    cache_age: str | None = None


class ApiStatus(BaseModel):
    status: str
    restrictions: str | None = None
    recommends_discovery: bool = False


class OverviewFile(BaseModel):
    file_id: str
    file_name: str
    source: str


class OverviewPage(BaseModel):
    name: str
    path: str
    accessible: bool


class CourseOverviewOutput(BaseModel):
    success: bool
    course_id: str
    content_summary: ContentSummary = ContentSummary()
    api_status: ApiStatus
    top_files: list[OverviewFile] = []
    available_pages: list[OverviewPage] = []
    error: str | None = None


class ClearCacheOutput(BaseModel):
    success: bool
    message: str
    index_entries_cleared: int = 0
    file_entries_cleared: int = 0


# ---------------------------------------------------------------------------
# read_course_file
# ---------------------------------------------------------------------------


class ReadCourseFileInput(BaseModel):
    file_id: str = Field(pattern=r"^\d+$")
    course_id: str | None = None
    mode: Literal["preview", "full"] = "preview"
    result_format: Literal["markdown", "text", "json"] | None = None


class ReadCourseFileOutput(FileReadResult):
    source: Literal["direct", "discovery"] | None = None


# ---------------------------------------------------------------------------
# process_canvas_url
# ---------------------------------------------------------------------------


class ProcessUrlInput(BaseModel):
    url: str = Field(max_length=2048)
    extract_embedded: bool = True
    process_files: bool = True

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v


class ProcessUrlOutput(BaseModel):
    url: str
    info: CanvasUrlInfo
    api_url: str | None = None
    processed: bool
    accessible: bool
    method: Literal["direct", "api", "web_interface"] = "direct"
    content: str | None = None
    file: FileReadResult | None = None
    embedded_files: list[DiscoveredFile] = []
    embedded_links: list[DiscoveredLink] = []
    processing_ms: float = 0.0
    error: str | None = None


# ---------------------------------------------------------------------------
# semantic_search / index_courses
# ---------------------------------------------------------------------------


class SemanticSearchInput(BaseModel):
    course_id: str = Field(min_length=1, max_length=64)
    query: str = Field(max_length=1000)
    limit: int = Field(default=5, ge=1, le=50)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        return _strip_required(v)


class SemanticSearchOutput(BaseModel):
    course_id: str
    query: str
    matches: list[ChunkMatch]


class IndexCoursesInput(BaseModel):
    force_refresh: bool = False
    max_age_hours: float = Field(default=6, gt=0)
