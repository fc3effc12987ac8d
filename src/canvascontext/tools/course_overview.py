"""Tool handlers for course_content_overview and clear_content_cache.

No MCP or FastMCP imports; server.py handles the MCP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from canvascontext.errors import CanvasContextError, ErrorCode
from canvascontext.models.discovery import ExtractionOptions
from canvascontext.models.tools import (
    ApiStatus,
    ClearCacheOutput,
    ContentSummary,
    CourseOverviewInput,
    CourseOverviewOutput,
    OverviewFile,
    OverviewPage,
)

if TYPE_CHECKING:
    from canvascontext.state import AppState

OVERVIEW_LIMIT = 10


def format_duration(seconds: float) -> str:
    """Render an age as "N days/hours/minutes/seconds ago"."""
    total = int(seconds)
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        count = total // size
        if count > 0:
            return f"{count} {unit}{'s' if count > 1 else ''} ago"
    return f"{total} second{'s' if total != 1 else ''} ago"


async def handle(course_id: str, force_refresh: bool, state: AppState) -> dict:
    """Handle a course_content_overview tool call."""
    log = structlog.get_logger().bind(tool="course_content_overview", course_id=course_id)
    log.info("handler_called")

    try:
        validated = CourseOverviewInput(course_id=course_id, force_refresh=force_refresh)
    except ValueError as exc:
        raise CanvasContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide a Canvas course id.",
            recoverable=False,
        ) from exc

    stats = await state.orchestrator.extraction_stats(validated.course_id)

    if stats.has_cache and not validated.force_refresh:
        log.info("overview_from_cache")
        output = CourseOverviewOutput(
            success=True,
            course_id=validated.course_id,
            content_summary=ContentSummary(
                total_files=stats.content_counts.files,
                total_pages=stats.content_counts.pages,
                total_links=stats.content_counts.links,
                last_scanned_at=stats.last_update,
                cache_age=format_duration(stats.cache_age_seconds or 0),
            ),
            api_status=ApiStatus(
                status=stats.api_status,
                recommends_discovery=stats.api_status == "restricted",
            ),
        )
        return output.model_dump(mode="json")

    extraction = await state.orchestrator.extract(
        validated.course_id,
        ExtractionOptions(force_refresh=validated.force_refresh, use_web_discovery=True),
    )
    if not extraction.success:
        log.warning("overview_extraction_failed", errors=extraction.errors)
        output = CourseOverviewOutput(
            success=False,
            course_id=validated.course_id,
            api_status=ApiStatus(status="unknown"),
            error=", ".join(extraction.errors) or "No content available",
        )
        return output.model_dump(mode="json")

    index = extraction.index
    output = CourseOverviewOutput(
        success=True,
        course_id=validated.course_id,
        content_summary=ContentSummary(
            total_files=index.metadata.total_files,
            total_pages=index.metadata.total_pages,
            total_links=len(index.links),
            last_scanned_at=index.last_scanned_at,
        ),
        api_status=ApiStatus(
            status="restricted" if index.metadata.has_restricted_apis else "available",
            restrictions=extraction.api_summary,
            recommends_discovery=extraction.method in ("web", "hybrid"),
        ),
        top_files=[
            OverviewFile(file_id=f.file_id, file_name=f.file_name, source=f.source_page_name)
            for f in index.files[:OVERVIEW_LIMIT]
        ],
        available_pages=[
            OverviewPage(name=p.name, path=p.path, accessible=p.accessible)
            for p in index.pages[:OVERVIEW_LIMIT]
        ],
    )
    return output.model_dump(mode="json")


async def handle_clear(course_id: str | None, state: AppState) -> dict:
    """Handle a clear_content_cache tool call.

    Drops the course content index and, for all courses, the parsed file
    cache and small-model caches too.
    """
    log = structlog.get_logger().bind(tool="clear_content_cache", course_id=course_id)
    log.info("handler_called")

    course_id = course_id.strip() if course_id else None
    index_cleared = state.orchestrator.clear(course_id)
    file_cleared = 0
    if course_id is None:
        file_cleared = state.file_cache.clear()
        state.assistant.clear_cache()

    message = (
        f"Cleared content cache for course {course_id}"
        if course_id
        else "Cleared content cache for all courses"
    )
    output = ClearCacheOutput(
        success=True,
        message=message,
        index_entries_cleared=index_cleared,
        file_entries_cleared=file_cleared,
    )
    return output.model_dump(mode="json")
