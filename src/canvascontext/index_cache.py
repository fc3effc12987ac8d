"""In-memory cache of merged course content indexes.

One live entry per course, replaced wholesale on refresh and never merged in
place. Freshness is measured from the index's own ``last_scanned_at`` so the
timestamp that drives TTL is the one callers see.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    from canvascontext.models.discovery import CourseContentIndex

log = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CourseIndexCache:
    def __init__(
        self,
        ttl_seconds: float = 3600,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._entries: dict[str, CourseContentIndex] = {}

    def now(self) -> datetime:
        return self._clock()

    def get(self, course_id: str) -> CourseContentIndex | None:
        """Return the index only while it is younger than the TTL."""
        index = self._entries.get(course_id)
        if index is None or not self.is_fresh(index):
            return None
        return index

    def peek(self, course_id: str) -> CourseContentIndex | None:
        """Return the index regardless of age."""
        return self._entries.get(course_id)

    def put(self, index: CourseContentIndex) -> None:
        self._entries[index.course_id] = index
        log.debug("course_index_cached", course_id=index.course_id)

    def age_seconds(self, index: CourseContentIndex) -> float:
        return (self._clock() - index.last_scanned_at).total_seconds()

    def is_fresh(self, index: CourseContentIndex) -> bool:
        return self._clock() - index.last_scanned_at < self._ttl

    def clear(self, course_id: str | None = None) -> int:
        """Drop one course (or every course). Returns the number removed."""
        if course_id is None:
            removed = len(self._entries)
            self._entries.clear()
        else:
            removed = 1 if self._entries.pop(course_id, None) is not None else 0
        log.info("course_index_cleared", course_id=course_id, removed=removed)
        return removed

    def __len__(self) -> int:
        return len(self._entries)
