"""Tool handler for read_course_file.

Reads a file through the file content cache and document parser. When the
files API can't see the file and a course is given, the course's discovered
content is searched for it so the caller at least gets its name and link.
No MCP or FastMCP imports; server.py handles the MCP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from canvascontext.errors import CanvasContextError, ErrorCode
from canvascontext.models.tools import ReadCourseFileInput, ReadCourseFileOutput

if TYPE_CHECKING:
    from canvascontext.state import AppState


async def handle(
    file_id: str,
    course_id: str | None,
    mode: str,
    result_format: str | None,
    state: AppState,
) -> dict:
    """Handle a read_course_file tool call."""
    log = structlog.get_logger().bind(tool="read_course_file", file_id=file_id)
    log.info("handler_called")

    try:
        validated = ReadCourseFileInput(
            file_id=file_id, course_id=course_id, mode=mode, result_format=result_format
        )
    except ValueError as exc:
        raise CanvasContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide a numeric file_id, mode 'preview' or 'full', "
            "and result_format 'markdown', 'text' or 'json'.",
            recoverable=False,
        ) from exc

    result = await state.file_reader.read(
        validated.file_id, mode=validated.mode, result_format=validated.result_format
    )
    # An empty file name means the metadata lookup itself failed.
    if result.file_name:
        output = ReadCourseFileOutput(**result.model_dump(), source="direct")
        return output.model_dump(mode="json")

    if validated.course_id is None:
        raise CanvasContextError(
            code=ErrorCode.FILE_NOT_FOUND,
            message=result.decline_reason or f"File {validated.file_id} not found",
            suggestion="Pass course_id so the file can be looked up in the course's pages.",
            recoverable=True,
        )

    lookup = await state.orchestrator.get_content_by_file_id(validated.course_id, validated.file_id)
    if not lookup.success or lookup.file is None:
        raise CanvasContextError(
            code=ErrorCode.FILE_NOT_FOUND,
            message=lookup.error or f"File {validated.file_id} not found",
            suggestion="Use smart_search to find the file by name.",
            recoverable=False,
        )

    log.info("file_found_via_discovery", source_page=lookup.file.source_page_name)
    output = ReadCourseFileOutput(
        **result.model_dump(exclude={"file_name", "url"}),
        file_name=lookup.file.file_name,
        url=lookup.file.url,
        source=lookup.method,
    )
    return output.model_dump(mode="json")
