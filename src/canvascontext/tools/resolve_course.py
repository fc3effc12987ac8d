"""Tool handler for resolve_course.

Receives AppState, fuzzy-matches the query against the user's active
courses, and returns a structured dict. No MCP or FastMCP imports;
server.py handles the MCP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from canvascontext.errors import CanvasContextError, CanvasRequestError, ErrorCode
from canvascontext.matcher import rank_matches
from canvascontext.models.tools import CourseMatch, ResolveCourseInput, ResolveCourseOutput

if TYPE_CHECKING:
    from canvascontext.models.canvas import Course
    from canvascontext.state import AppState

COURSE_MATCH_KEYS = ("name", "course_code", "nickname")


async def list_active_courses(state: AppState) -> list[Course]:
    try:
        return await state.canvas.list_courses()
    except CanvasRequestError as exc:
        raise CanvasContextError(
            code=ErrorCode.CANVAS_UNAVAILABLE,
            message=f"Could not list courses: {exc.message}",
            suggestion="Check the Canvas base URL and access token, then retry.",
            recoverable=True,
        ) from exc


async def match_courses(
    query: str, state: AppState, *, limit: int = 5
) -> list[tuple[Course, float]]:
    courses = await list_active_courses(state)
    by_id = [c for c in courses if str(c.id) == query.strip()]
    if by_id:
        return [(by_id[0], 1.0)]
    return rank_matches(query, courses, COURSE_MATCH_KEYS, limit=limit)


async def resolve_course_id(course_name: str, state: AppState) -> tuple[str, str]:
    """Return ``(course_id, course_name)`` for the best match, or raise COURSE_NOT_FOUND."""
    ranked = await match_courses(course_name, state, limit=1)
    if not ranked:
        raise CanvasContextError(
            code=ErrorCode.COURSE_NOT_FOUND,
            message=f"No active course matches '{course_name}'",
            suggestion="Call resolve_course to list close matches, or pass course_id directly.",
            recoverable=False,
        )
    course, _ = ranked[0]
    return str(course.id), course.name


async def handle(query: str, state: AppState) -> dict:
    """Handle a resolve_course tool call."""
    log = structlog.get_logger().bind(tool="resolve_course", query=query)
    log.info("handler_called")

    try:
        validated = ResolveCourseInput(query=query)
    except ValueError as exc:
        raise CanvasContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide a non-empty course name, code or id (max 500 chars).",
            recoverable=False,
        ) from exc

    ranked = await match_courses(validated.query, state)
    log.info("resolve_complete", match_count=len(ranked))

    output = ResolveCourseOutput(
        matches=[
            CourseMatch(
                course_id=str(course.id),
                name=course.name,
                course_code=course.course_code,
                relevance=relevance,
            )
            for course, relevance in ranked
        ]
    )
    return output.model_dump(mode="json")
