"""Tool handlers for semantic_search and index_courses.

No MCP or FastMCP imports; server.py handles the MCP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from canvascontext.errors import CanvasContextError, EmbeddingError, ErrorCode
from canvascontext.models.tools import (
    IndexCoursesInput,
    SemanticSearchInput,
    SemanticSearchOutput,
)

if TYPE_CHECKING:
    from canvascontext.state import AppState


async def handle(course_id: str, query: str, limit: int, state: AppState) -> dict:
    """Handle a semantic_search tool call."""
    log = structlog.get_logger().bind(tool="semantic_search", course_id=course_id)
    log.info("handler_called")

    try:
        validated = SemanticSearchInput(course_id=course_id, query=query, limit=limit)
    except ValueError as exc:
        raise CanvasContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide a course id, a non-empty query and a limit between 1 and 50.",
            recoverable=False,
        ) from exc

    try:
        matches = await state.semantic.search(
            validated.course_id, validated.query, validated.limit
        )
    except EmbeddingError as exc:
        raise CanvasContextError(
            code=ErrorCode.EMBEDDINGS_UNAVAILABLE,
            message=str(exc),
            suggestion="Set CANVASCONTEXT__EMBEDDINGS__API_KEY, or use smart_search instead.",
            recoverable=True,
        ) from exc

    log.info("semantic_search_complete", match_count=len(matches))
    output = SemanticSearchOutput(
        course_id=validated.course_id, query=validated.query, matches=matches
    )
    return output.model_dump(mode="json")


async def handle_index(force_refresh: bool, max_age_hours: float, state: AppState) -> dict:
    """Handle an index_courses tool call."""
    log = structlog.get_logger().bind(tool="index_courses")
    log.info("handler_called", force_refresh=force_refresh)

    try:
        validated = IndexCoursesInput(force_refresh=force_refresh, max_age_hours=max_age_hours)
    except ValueError as exc:
        raise CanvasContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="max_age_hours must be greater than 0.",
            recoverable=False,
        ) from exc

    if not state.semantic.enabled:
        raise CanvasContextError(
            code=ErrorCode.EMBEDDINGS_UNAVAILABLE,
            message="Embeddings disabled (no API key)",
            suggestion="Set CANVASCONTEXT__EMBEDDINGS__API_KEY to enable semantic indexing.",
            recoverable=False,
        )

    report = await state.indexer.run(
        force_refresh=validated.force_refresh, max_age_hours=validated.max_age_hours
    )
    return report.model_dump(mode="json")
