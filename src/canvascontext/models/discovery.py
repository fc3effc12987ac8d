from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

LinkKind = Literal["external", "internal", "video", "document"]
IndexMethod = Literal["api", "web", "hybrid"]
ExtractionMethod = Literal["api", "web", "hybrid", "cached"]


# ---------------------------------------------------------------------------
# API availability
# ---------------------------------------------------------------------------


class EndpointProbe(BaseModel):
    """Outcome of one availability probe. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    available: bool
    status_code: int  # 0 for transport failures
    error: str | None = None
    response_ms: float = 0.0


class CourseAPIAvailability(BaseModel):
    course_id: str
    tested_at: datetime
    endpoints: dict[str, EndpointProbe]


class ApiSummary(BaseModel):
    total_endpoints: int
    available_endpoints: int
    restricted_endpoints: int
    restricted_ratio: float
    has_working_apis: bool
    has_restricted_apis: bool
    recommend_web_discovery: bool


class ProbeTiming(BaseModel):
    total_ms: float
    average_ms: float


class ProbeResult(BaseModel):
    course_id: str
    availability: CourseAPIAvailability
    summary: ApiSummary
    timing: ProbeTiming


class FallbackSuggestion(BaseModel):
    api: str
    fallback: str
    reason: str


# ---------------------------------------------------------------------------
# Web discovery
# ---------------------------------------------------------------------------


class DiscoveredFile(BaseModel):
    file_id: str
    file_name: str
    url: str
    source_page_name: str = ""
    file_type: str | None = None
    size: int | None = None
    last_modified: str | None = None


class DiscoveredLink(BaseModel):
    title: str
    url: str
    kind: LinkKind
    source_page_name: str = ""


class DiscoveredPage(BaseModel):
    name: str
    url: str
    path: str
    accessible: bool
    content_type: Literal["page", "file", "assignment", "module", "unknown"] = "page"
    last_checked_at: datetime
    embedded_files: list[DiscoveredFile] | None = None
    embedded_links: list[DiscoveredLink] | None = None


class DiscoveryOptions(BaseModel):
    max_pages: int = 20
    timeout_ms: int = 30_000
    include_navigation: bool = True
    extract_embedded_content: bool = True
    respect_rate_limit: bool = True


class DiscoveryResult(BaseModel):
    success: bool
    pages: list[DiscoveredPage] = []
    files: list[DiscoveredFile] = []
    links: list[DiscoveredLink] = []
    searchable_text: str = ""
    errors: list[str] = []
    warnings: list[str] = []


# ---------------------------------------------------------------------------
# Course content index
# ---------------------------------------------------------------------------


class IndexMetadata(BaseModel):
    total_files: int = 0
    total_pages: int = 0
    has_restricted_apis: bool = False
    method: IndexMethod = "api"


class CourseContentIndex(BaseModel):
    """Merged discovery result for one course. Replaced wholesale on refresh."""

    course_id: str
    last_scanned_at: datetime
    api_availability: CourseAPIAvailability | None = None
    pages: list[DiscoveredPage] = []
    files: list[DiscoveredFile] = []
    links: list[DiscoveredLink] = []
    searchable_text: str = ""
    metadata: IndexMetadata = IndexMetadata()


class ExtractionOptions(BaseModel):
    force_refresh: bool = False
    # None lets the prober decide; True forces discovery; False disables it.
    use_web_discovery: bool | None = None
    max_retries: int | None = None
    timeout_ms: int | None = None


class ExtractionTiming(BaseModel):
    api_test_ms: float = 0.0
    web_discovery_ms: float = 0.0
    total_ms: float = 0.0


class ExtractionResult(BaseModel):
    success: bool
    method: ExtractionMethod
    index: CourseContentIndex
    api_summary: str | None = None
    api_fallbacks: list[FallbackSuggestion] = []
    timing: ExtractionTiming = ExtractionTiming()
    errors: list[str] = []
    warnings: list[str] = []


# ---------------------------------------------------------------------------
# Ranked retrieval
# ---------------------------------------------------------------------------


class ScoredFile(BaseModel):
    file_id: str
    file_name: str
    url: str
    source: str
    relevance: float


class ScoredPage(BaseModel):
    name: str
    url: str
    path: str
    relevance: float


class ScoredLink(BaseModel):
    title: str
    url: str
    kind: LinkKind
    source: str
    relevance: float


class SearchResults(BaseModel):
    success: bool = True
    files: list[ScoredFile] = []
    pages: list[ScoredPage] = []
    links: list[ScoredLink] = []
    total_results: int = 0
    search_time_ms: float = 0.0
    extraction_used: bool = False
    method: ExtractionMethod | None = None
    has_restricted_apis: bool = False
    errors: list[str] = []


class FileLookupResult(BaseModel):
    success: bool
    method: Literal["direct", "discovery"] | None = None
    file: DiscoveredFile | None = None
    error: str | None = None


class ContentCounts(BaseModel):
    files: int = 0
    pages: int = 0
    links: int = 0


class ExtractionStats(BaseModel):
    course_id: str
    has_cache: bool
    cache_age_seconds: float | None = None
    last_update: datetime | None = None
    api_status: Literal["available", "restricted", "unknown"] = "unknown"
    content_counts: ContentCounts = ContentCounts()
