from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class FileCacheEntry(BaseModel):
    """Parsed content for one (file, freshness tag, size, format) key."""

    full_content: str
    preview: str  # Compressed, at most preview_max_chars plus the truncation notice
    revalidation_tag: str | None = None  # updated_at / etag reported by Canvas
    size_hint: int | None = None
    cached_at: datetime
    last_accessed_at: datetime
    parse_time_ms: float = 0.0
    format: str = "markdown"


class FileCacheStats(BaseModel):
    entry_count: int
    max_entries: int
    total_chars: int
    oldest_cached_at: datetime | None = None


class ParsedDocument(BaseModel):
    content: str
    format: str
    job_id: str | None = None
    pages: int | None = None
    parse_time_ms: float = 0.0


class FileReadResult(BaseModel):
    """What a file read hands back to the caller, cached or not."""

    file_id: str
    file_name: str = ""
    url: str = ""
    mode: str = "preview"
    format: str = "markdown"
    content: str | None = None
    content_length: int = 0
    cached: bool = False  # Served from the cache
    stored_in_cache: bool = False  # Freshly parsed and accepted by the cache
    needs_revalidation: bool = False
    parse_time_ms: float = 0.0
    declined: bool = False
    decline_reason: str | None = None
