"""Tool handler for process_canvas_url.

Takes a Canvas web URL pasted by the user and returns what it points at:
file content through the cached file reader, page content through the
pages API (falling back to the rendered page), or the rendered HTML of any
other course resource. No MCP or FastMCP imports; server.py handles the
MCP wiring.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Literal

import structlog
from pydantic import ValidationError

from canvascontext.errors import (
    CanvasContextError,
    CanvasRequestError,
    ErrorCode,
    LoginRedirectError,
)
from canvascontext.models.tools import ProcessUrlInput, ProcessUrlOutput
from canvascontext.urls import (
    extract_file_refs,
    extract_links,
    html_to_text,
    looks_like_login_page,
    parse_canvas_url,
    web_url_to_api_url,
)

if TYPE_CHECKING:
    from canvascontext.models.canvas import CanvasUrlInfo
    from canvascontext.state import AppState

Method = Literal["direct", "api", "web_interface"]


async def _fetch_web_html(url: str, state: AppState) -> str:
    html = await state.canvas.get_text(url)
    if looks_like_login_page(html):
        raise LoginRedirectError(url)
    return html


async def _process_page(
    info: CanvasUrlInfo, url: str, state: AppState
) -> tuple[str | None, str | None, Method]:
    """Return ``(content, html, method)`` for a wiki page URL."""
    log = structlog.get_logger().bind(tool="process_canvas_url", url=url)
    try:
        page = await state.canvas.get_page(info.course_id or "", info.resource_id or "")
        html = page.body or ""
        return html_to_text(html), html, "api"
    except (CanvasRequestError, ValidationError) as exc:
        log.info("page_api_failed", error=str(exc))

    try:
        html = await _fetch_web_html(url, state)
    except CanvasRequestError as exc:
        name = info.resource_name or info.resource_id
        return f"Page {name} - Error accessing content: {exc.message}", None, "direct"
    return html_to_text(html), html, "web_interface"


async def handle(url: str, extract_embedded: bool, process_files: bool, state: AppState) -> dict:
    """Handle a process_canvas_url tool call."""
    log = structlog.get_logger().bind(tool="process_canvas_url", url=url)
    log.info("handler_called")
    started = time.perf_counter()

    try:
        validated = ProcessUrlInput(
            url=url, extract_embedded=extract_embedded, process_files=process_files
        )
    except ValueError as exc:
        raise CanvasContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide an http(s) Canvas URL (max 2048 chars).",
            recoverable=False,
        ) from exc

    info = parse_canvas_url(validated.url)
    if not info.is_valid:
        raise CanvasContextError(
            code=ErrorCode.INVALID_URL,
            message=f"Invalid Canvas URL format: {validated.url}",
            suggestion="Pass a URL under /courses/<id>/, e.g. a page, file or assignment link.",
            recoverable=False,
        )
    output = ProcessUrlOutput(
        url=validated.url,
        info=info,
        api_url=web_url_to_api_url(info),
        processed=False,
        accessible=False,
    )

    if not await state.canvas.exists(validated.url):
        output.error = "URL not accessible with current permissions"
        output.processing_ms = (time.perf_counter() - started) * 1000
        log.info("url_not_accessible")
        return output.model_dump(mode="json")
    output.accessible = True

    html: str | None = None
    method: Method = "direct"
    content: str | None
    match info.kind:
        case "file":
            if info.resource_id and validated.process_files:
                result = await state.file_reader.read(info.resource_id)
                output.file = result
                if result.declined:
                    content = (
                        f"File {info.resource_id} - Direct download available at: {validated.url}"
                    )
                else:
                    content = result.content
                    method = "api"
            else:
                content = f"File {info.resource_id} - Available at: {validated.url}"
        case "page" if info.resource_id:
            content, html, method = await _process_page(info, validated.url, state)
        case _:
            try:
                html = await _fetch_web_html(validated.url, state)
            except CanvasRequestError as exc:
                content = f"Resource {info.kind} - Error accessing content: {exc.message}"
            else:
                content = html_to_text(html)
                method = "web_interface"

    if validated.extract_embedded and html:
        base_url = info.base_url or state.canvas.base_url
        output.embedded_files = extract_file_refs(html, base_url)
        output.embedded_links = extract_links(html, base_url)

    output.content = content
    output.method = method
    output.processed = True
    output.processing_ms = (time.perf_counter() - started) * 1000
    log.info(
        "url_processed",
        kind=info.kind,
        method=method,
        embedded_files=len(output.embedded_files),
        embedded_links=len(output.embedded_links),
    )
    return output.model_dump(mode="json")
