"""Course indexing pipeline.

Pulls raw text (syllabus, assignment descriptions, parsed file content) for
the user's active courses and pushes it through the semantic indexer. Runs
on demand from the ``index_courses`` tool; skips work when the store is
fresher than ``max_age_hours``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from canvascontext.errors import CanvasRequestError
from canvascontext.models.embeddings import CourseCounts, IndexRunReport, IndexSource
from canvascontext.urls import html_to_text

if TYPE_CHECKING:
    from canvascontext.canvas import CanvasClient
    from canvascontext.files import FileReader
    from canvascontext.models.canvas import Assignment, CanvasFile, Course
    from canvascontext.semantic import SemanticIndexer
    from canvascontext.store import EmbeddingStore

log = structlog.get_logger()


@dataclass
class _CourseListing:
    course: Course
    assignments: list[Assignment] = field(default_factory=list)
    files: list[CanvasFile] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class CourseIndexer:
    def __init__(
        self,
        canvas: CanvasClient,
        semantic: SemanticIndexer,
        store: EmbeddingStore,
        file_reader: FileReader,
    ) -> None:
        self._canvas = canvas
        self._semantic = semantic
        self._store = store
        self._files = file_reader

    async def run(self, *, force_refresh: bool = False, max_age_hours: float = 6) -> IndexRunReport:
        """Reindex every active course whose stored chunks are older than ``max_age_hours``.

        Freshness is tracked per course. A course is only marked fresh when
        all of its sources embedded, so a failed run is retried next time.
        """
        started_at = datetime.now(UTC)
        report = IndexRunReport(started_at=started_at)

        try:
            courses = await self._canvas.list_courses(include_syllabus=True)
        except CanvasRequestError as exc:
            report.errors.append(f"Failed to list courses: {exc.message}")
            log.warning("index_run_failed", status_code=exc.status_code)
            return report

        stale = courses if force_refresh else await self._stale_courses(courses, max_age_hours)
        if not stale:
            report.skipped = True
            last = await self._store.last_indexed_at()
            if last is None:
                report.skip_reason = "No active courses to index"
            else:
                age_hours = (started_at - last).total_seconds() / 3600
                report.skip_reason = (
                    f"Index is fresh (last indexed {age_hours:.1f} hours ago). "
                    "Use force_refresh=true to override."
                )
            log.info("index_run_skipped", courses=len(courses))
            return report

        log.info("index_run_started", courses=len(courses), to_update=len(stale))
        listings = await asyncio.gather(*(self._list_course(course) for course in stale))

        for listing in listings:
            report.courses.append(
                CourseCounts(
                    course_id=str(listing.course.id),
                    name=listing.course.name,
                    assignments=len(listing.assignments),
                    files=len(listing.files),
                )
            )
            report.errors.extend(listing.errors)
            sources = await self._collect_sources(listing)
            course_id = str(listing.course.id)
            reindexed = await self._semantic.reindex_course(course_id, sources)
            report.reindexed.append(reindexed)
            if reindexed.failed_sources:
                report.errors.append(
                    f"{listing.course.name}: {len(reindexed.failed_sources)} source(s) "
                    "failed to embed; course left stale for the next run"
                )
                continue
            await self._store.mark_indexed(course_id, listing.course.name)

        log.info("index_run_complete", courses=len(report.reindexed), errors=len(report.errors))
        return report

    async def _stale_courses(self, courses: list[Course], max_age_hours: float) -> list[Course]:
        now = datetime.now(UTC)
        stale = []
        for course in courses:
            last = await self._store.last_indexed_at(str(course.id))
            if last is None or (now - last).total_seconds() >= max_age_hours * 3600:
                stale.append(course)
        return stale

    async def _list_course(self, course: Course) -> _CourseListing:
        """Fetch a course's assignments and files; either may fail on its own."""
        course_id = str(course.id)
        assignments, files = await asyncio.gather(
            self._canvas.list_assignments(course_id),
            self._canvas.list_files(course_id),
            return_exceptions=True,
        )
        listing = _CourseListing(course=course)
        for label, result in (("assignments", assignments), ("files", files)):
            if isinstance(result, CanvasRequestError):
                listing.errors.append(f"{course.name}: failed to list {label} ({result.message})")
            elif isinstance(result, BaseException):
                raise result
        if isinstance(assignments, list):
            listing.assignments = assignments
        if isinstance(files, list):
            listing.files = files
        return listing

    async def _collect_sources(self, listing: _CourseListing) -> list[IndexSource]:
        course = listing.course
        sources: list[IndexSource] = []
        if course.syllabus_body:
            sources.append(
                IndexSource(
                    source_id=str(course.id), kind="syllabus", text=html_to_text(course.syllabus_body)
                )
            )
        for assignment in listing.assignments:
            if assignment.description:
                sources.append(
                    IndexSource(
                        source_id=str(assignment.id),
                        kind="assignment",
                        text=html_to_text(assignment.description),
                    )
                )
        for file in listing.files:
            result = await self._files.read(str(file.id), mode="full")
            if result.declined or not result.content:
                log.debug("index_file_skipped", file_id=file.id, reason=result.decline_reason)
                continue
            sources.append(IndexSource(source_id=str(file.id), kind="file", text=result.content))
        return sources
