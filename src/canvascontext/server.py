"""MCP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the FastMCP lifespan context manager
- Register tools
- Run over stdio
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import AsyncExitStack, asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog
from mcp.server.fastmcp import Context, FastMCP
from mcp.types import CallToolResult, TextContent

import canvascontext.tools.course_overview as t_overview
import canvascontext.tools.process_url as t_process_url
import canvascontext.tools.read_course_file as t_read_file
import canvascontext.tools.resolve_course as t_resolve
import canvascontext.tools.semantic_search as t_semantic
import canvascontext.tools.smart_search as t_search
from canvascontext import __version__
from canvascontext.assistant import SmallModelAssistant
from canvascontext.canvas import CanvasClient, build_http_client
from canvascontext.config import Settings
from canvascontext.discovery import WebDiscovery
from canvascontext.embeddings import Embedder
from canvascontext.errors import CanvasContextError
from canvascontext.extraction import ExtractionOrchestrator
from canvascontext.file_cache import FileContentCache
from canvascontext.files import FileReader
from canvascontext.index_cache import CourseIndexCache
from canvascontext.indexer import CourseIndexer
from canvascontext.parser import DocumentParser
from canvascontext.prober import ApiProber
from canvascontext.semantic import SemanticIndexer
from canvascontext.state import AppState
from canvascontext.store import EmbeddingStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable

    import httpx

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # stdout carries the MCP JSON-RPC stream
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


async def build_state(settings: Settings, db: aiosqlite.Connection) -> AppState:
    """Wire every component around one HTTP client and one database connection.

    The HTTP client is closed again if wiring fails; the caller owns *db*.
    """
    http_client = build_http_client(settings.canvas)
    try:
        return await _wire_state(settings, db, http_client)
    except BaseException:
        await http_client.aclose()
        raise


async def _wire_state(
    settings: Settings, db: aiosqlite.Connection, http_client: httpx.AsyncClient
) -> AppState:
    canvas = CanvasClient(http_client, settings.canvas)

    index_cache = CourseIndexCache(settings.discovery.index_ttl_seconds)
    orchestrator = ExtractionOrchestrator(
        canvas,
        ApiProber(
            canvas, restricted_ratio_threshold=settings.discovery.restricted_ratio_threshold
        ),
        WebDiscovery(canvas, rate_limit_delay_seconds=settings.discovery.rate_limit_delay_seconds),
        index_cache,
        settings.discovery,
    )

    file_cache = FileContentCache(settings.file_cache)
    parser = DocumentParser(http_client, settings.parser)
    file_reader = FileReader(
        canvas, file_cache, parser, default_format=settings.parser.result_format
    )

    store = EmbeddingStore(db)
    await store.init_db()
    semantic = SemanticIndexer(
        store,
        Embedder(http_client, settings.embeddings),
        chunk_size=settings.embeddings.chunk_size,
        overlap=settings.embeddings.chunk_overlap,
    )

    return AppState(
        settings=settings,
        http_client=http_client,
        canvas=canvas,
        index_cache=index_cache,
        orchestrator=orchestrator,
        file_cache=file_cache,
        parser=parser,
        file_reader=file_reader,
        store=store,
        semantic=semantic,
        indexer=CourseIndexer(canvas, semantic, store, file_reader),
        assistant=SmallModelAssistant(http_client, settings.small_model),
    )


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    settings = Settings()
    _setup_logging(settings)

    log.info("server_starting", version=__version__, canvas_url=settings.canvas.base_url)
    if not settings.canvas.access_token.get_secret_value():
        log.warning("canvas_token_missing", hint="set CANVASCONTEXT__CANVAS__ACCESS_TOKEN")

    db_path = Path(settings.embeddings.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with AsyncExitStack() as stack:
        # Torn down in reverse order of registration.
        stack.callback(log.info, "server_stopping")
        db = await aiosqlite.connect(str(db_path))
        stack.push_async_callback(db.close)
        state = await build_state(settings, db)
        stack.push_async_callback(state.http_client.aclose)
        state.file_cache.start()
        stack.push_async_callback(state.file_cache.shutdown)

        log.info(
            "server_started",
            version=__version__,
            document_parsing=state.parser.enabled,
            embeddings=state.semantic.enabled,
            small_model=state.assistant.enabled,
        )
        yield state


# ---------------------------------------------------------------------------
# FastMCP instance and tool registration
# ---------------------------------------------------------------------------

mcp = FastMCP("canvascontext", lifespan=lifespan)
# FastMCP doesn't expose a version kwarg; set it on the underlying Server
# so the MCP initialize handshake reports our version, not the SDK's.
mcp._mcp_server.version = __version__  # pyright: ignore[reportPrivateUsage]


def _serialise_tool_error(error: CanvasContextError) -> CallToolResult:
    """Convert a CanvasContextError to the MCP tool error result envelope."""
    return CallToolResult(
        content=[TextContent(type="text", text=json.dumps(error.to_dict()))],
        isError=True,
    )


async def _run_tool(tool: str, call: Awaitable[dict]) -> Any:
    try:
        return await call
    except CanvasContextError as exc:
        log.warning(
            "tool_error",
            tool=tool,
            code=exc.code,
            message=exc.message,
            recoverable=exc.recoverable,
        )
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool=tool, exc_info=True)
        raise


@mcp.tool()
async def resolve_course(query: str, ctx: Context) -> object:
    """Resolve a course name, code or nickname to matching Canvas course ids."""
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool("resolve_course", t_resolve.handle(query, state))


@mcp.tool()
async def smart_search(
    query: str,
    ctx: Context,
    course_id: str | None = None,
    course_name: str | None = None,
    max_results: int = 5,
    return_mode: str = "refs",
    force_refresh: bool = False,
    use_small_model: bool = True,
    include_semantic: bool = False,
) -> object:
    """Search a course's files, pages and links, even when APIs are restricted.

    Discovered content is cached per course for an hour. ``return_mode="refs"``
    returns compact citations; ``"full"`` returns the ranked lists with URLs.
    """
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool(
        "smart_search",
        t_search.handle(
            query,
            state,
            course_id=course_id,
            course_name=course_name,
            max_results=max_results,
            return_mode=return_mode,
            force_refresh=force_refresh,
            use_small_model=use_small_model,
            include_semantic=include_semantic,
        ),
    )


@mcp.tool()
async def course_content_overview(
    course_id: str, ctx: Context, force_refresh: bool = False
) -> object:
    """Summarise what content is discoverable in a course and how the APIs behave."""
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool(
        "course_content_overview", t_overview.handle(course_id, force_refresh, state)
    )


@mcp.tool()
async def clear_content_cache(ctx: Context, course_id: str | None = None) -> object:
    """Drop cached discovery results for one course, or all caches when omitted."""
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool("clear_content_cache", t_overview.handle_clear(course_id, state))


@mcp.tool()
async def read_course_file(
    file_id: str,
    ctx: Context,
    course_id: str | None = None,
    mode: str = "preview",
    result_format: str | None = None,
) -> object:
    """Read a course file as text.

    ``mode="preview"`` returns a compressed excerpt; ``"full"`` returns the
    whole parsed document. Parsed content is cached, so switching modes is
    cheap.
    """
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool(
        "read_course_file", t_read_file.handle(file_id, course_id, mode, result_format, state)
    )


@mcp.tool()
async def process_canvas_url(
    url: str, ctx: Context, extract_embedded: bool = True, process_files: bool = True
) -> object:
    """Fetch whatever a Canvas course URL points at: a file, a page or another resource."""
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool(
        "process_canvas_url",
        t_process_url.handle(url, extract_embedded, process_files, state),
    )


@mcp.tool()
async def semantic_search(course_id: str, query: str, ctx: Context, limit: int = 5) -> object:
    """Find passages in indexed course text that are semantically close to a query."""
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool("semantic_search", t_semantic.handle(course_id, query, limit, state))


@mcp.tool()
async def index_courses(
    ctx: Context, force_refresh: bool = False, max_age_hours: float = 6
) -> object:
    """Embed syllabus, assignment and file text of active courses for semantic_search."""
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool(
        "index_courses", t_semantic.handle_index(force_refresh, max_age_hours, state)
    )


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
