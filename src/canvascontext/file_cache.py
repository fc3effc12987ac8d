"""In-memory LRU + TTL cache of parsed file content.

Sits strictly in front of the document parser. Two clocks run per entry:
the TTL (default 24h) after which an entry must not be served, and the
shorter revalidation window (default 6h) after which it may still be served
but its freshness should be re-checked. Entries are replaced wholesale; the
only per-access update is a new ``last_accessed_at`` stamp for LRU.
"""

from __future__ import annotations

import asyncio
import re
from contextlib import suppress
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from canvascontext.models.cache import FileCacheEntry, FileCacheStats
from canvascontext.schedulers import run_file_cache_sweeper

if TYPE_CHECKING:
    from collections.abc import Callable

    from canvascontext.config import FileCacheSettings

log = structlog.get_logger()

TRUNCATION_NOTICE = '\n\n...[Content truncated for preview. Use mode="full" to see complete content]'
_NOTICE_RESERVE = 50

_BLANK_LINES_RE = re.compile(r"\n{3,}")
_HORIZONTAL_WS_RE = re.compile(r"[ \t]{2,}")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def make_cache_key(
    file_id: str,
    revalidation_tag: str | None = None,
    size_hint: int | None = None,
    result_format: str = "markdown",
) -> str:
    """Composite key: the same file in another format is a distinct entry."""
    return f"{file_id}-{revalidation_tag or 'none'}-{size_hint or 0}-{result_format}"


def compress_to_preview(content: str, max_chars: int = 1500) -> str:
    """Collapse whitespace, then truncate near a paragraph or sentence end.

    A paragraph break is used if it falls after 70% of the limit, else a
    sentence end after 80%, else the text is hard-cut. Truncated previews
    carry a notice pointing at full mode.
    """
    if len(content) <= max_chars:
        return content

    compressed = _BLANK_LINES_RE.sub("\n\n", content)
    compressed = _HORIZONTAL_WS_RE.sub(" ", compressed)
    if len(compressed) <= max_chars:
        return compressed

    truncated = compressed[: max_chars - _NOTICE_RESERVE]
    last_paragraph = truncated.rfind("\n\n")
    last_sentence = truncated.rfind(". ")

    cut = len(truncated)
    if last_paragraph > max_chars * 0.7:
        cut = last_paragraph
    elif last_sentence > max_chars * 0.8:
        cut = last_sentence + 1

    return truncated[:cut] + TRUNCATION_NOTICE


class FileContentCache:
    """Bounded cache keyed by :func:`make_cache_key`."""

    def __init__(
        self,
        settings: FileCacheSettings,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self._ttl = timedelta(hours=settings.ttl_hours)
        self._revalidate_after = timedelta(hours=settings.revalidate_after_hours)
        self._entries: dict[str, FileCacheEntry] = {}
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    @property
    def preview_max_chars(self) -> int:
        return self._settings.preview_max_chars

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    def get(self, key: str) -> FileCacheEntry | None:
        """Return a live entry and stamp its access time, or ``None``."""
        if not self.enabled:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None

        now = self._clock()
        if now - entry.cached_at > self._ttl:
            del self._entries[key]
            log.debug("file_cache_expired", key=key)
            return None

        touched = entry.model_copy(update={"last_accessed_at": now})
        self._entries[key] = touched
        log.debug("file_cache_hit", key=key)
        return touched

    def put(
        self,
        key: str,
        content: str,
        *,
        revalidation_tag: str | None = None,
        size_hint: int | None = None,
        parse_time_ms: float = 0.0,
        result_format: str = "markdown",
    ) -> bool:
        """Store content. Returns False when caching is declined."""
        if not self.enabled:
            return False
        if len(content) > self._settings.max_content_size:
            log.warning(
                "file_cache_content_too_large",
                key=key,
                size=len(content),
                max_size=self._settings.max_content_size,
            )
            return False

        if key not in self._entries:
            while len(self._entries) >= self._settings.max_entries:
                self.evict_oldest()

        now = self._clock()
        self._entries[key] = FileCacheEntry(
            full_content=content,
            preview=compress_to_preview(content, self._settings.preview_max_chars),
            revalidation_tag=revalidation_tag,
            size_hint=size_hint,
            cached_at=now,
            last_accessed_at=now,
            parse_time_ms=parse_time_ms,
            format=result_format,
        )
        log.debug("file_cache_stored", key=key, size=len(content))
        return True

    def should_revalidate(self, entry: FileCacheEntry) -> bool:
        """True once the entry is past the revalidation window (still servable)."""
        return self._clock() - entry.cached_at > self._revalidate_after

    def evict_oldest(self) -> str | None:
        """Remove the least-recently-accessed entry. Returns its key."""
        if not self._entries:
            return None
        oldest_key = min(self._entries, key=lambda k: self._entries[k].last_accessed_at)
        del self._entries[oldest_key]
        log.debug("file_cache_evicted", key=oldest_key)
        return oldest_key

    def clear(self, file_id: str | None = None) -> int:
        """Drop every entry for one file (all versions/formats), or everything."""
        if file_id is None:
            cleared = len(self._entries)
            self._entries.clear()
        else:
            prefix = f"{file_id}-"
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            cleared = len(keys)
        log.info("file_cache_cleared", file_id=file_id, cleared=cleared)
        return cleared

    def sweep_expired(self) -> int:
        """Remove entries older than the TTL. Returns the number removed."""
        now = self._clock()
        expired = [key for key, e in self._entries.items() if now - e.cached_at > self._ttl]
        for key in expired:
            del self._entries[key]
        if expired:
            log.info("file_cache_sweep_complete", removed=len(expired))
        return len(expired)

    def stats(self) -> FileCacheStats:
        entries = list(self._entries.values())
        return FileCacheStats(
            entry_count=len(entries),
            max_entries=self._settings.max_entries,
            total_chars=sum(len(e.full_content) + len(e.preview) for e in entries),
            oldest_cached_at=min((e.cached_at for e in entries), default=None),
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic TTL sweep, unless disabled in settings."""
        if not self._settings.sweep_enabled or self._sweep_task is not None:
            return
        self._sweep_task = asyncio.create_task(
            run_file_cache_sweeper(self, self._settings.sweep_interval_seconds)
        )

    async def shutdown(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._sweep_task
        self._sweep_task = None
