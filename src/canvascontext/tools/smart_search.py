"""Tool handler for smart_search.

Resolves the course, classifies the query's intent, ranks the course's
discovered files, pages and links, optionally reranks them with the small
model, and returns either compact citations (``refs``) or the full ranked
lists (``full``). No MCP or FastMCP imports; server.py handles the MCP
wiring.
"""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any

import structlog

from canvascontext.errors import CanvasContextError, EmbeddingError, ErrorCode
from canvascontext.models.assistant import RerankCandidate
from canvascontext.models.discovery import ExtractionOptions
from canvascontext.models.tools import (
    Citation,
    SearchFileHit,
    SearchHits,
    SearchMetadata,
    SmartSearchInput,
    SmartSearchOutput,
)
from canvascontext.tools.resolve_course import resolve_course_id

if TYPE_CHECKING:
    from collections.abc import Callable

    from canvascontext.models.assistant import IntentClassification
    from canvascontext.models.discovery import SearchResults
    from canvascontext.models.embeddings import ChunkMatch
    from canvascontext.state import AppState

PROCESSABLE_EXTENSIONS = frozenset(
    {
        "pdf", "doc", "docx", "docm", "dot", "dotm", "rtf", "txt",
        "ppt", "pptx", "pptm", "pot", "potm", "potx",
        "xls", "xlsx", "xlsm", "xlsb", "csv",
        "jpg", "jpeg", "png", "gif", "bmp", "svg", "tiff", "webp",
        "mp3", "mp4", "mpeg", "mpga", "m4a", "wav", "webm",
    }
)  # fmt: skip

CITATION_TEXT_BUDGET = 200
TRUNCATED_MARKER = "...[truncated]"
# Below this confidence the intent is not trusted to hide whole categories.
INTENT_FILTER_MIN_CONFIDENCE = 0.5


def can_process(file_name: str) -> bool:
    return file_name.lower().rsplit(".", 1)[-1] in PROCESSABLE_EXTENSIONS


def enforce_text_budget(text: str, budget: int = CITATION_TEXT_BUDGET) -> str:
    """Cut *text* to *budget* chars, preferring a word boundary past 80%."""
    if len(text) <= budget:
        return text
    cut = text[:budget]
    last_space = cut.rfind(" ")
    if last_space > budget * 0.8:
        cut = cut[:last_space]
    return cut + TRUNCATED_MARKER


def link_citation_id(url: str) -> str:
    return "link_" + base64.b64encode(url.encode()).decode()[:8]


def search_suggestions(query: str, total_results: int, file_count: int) -> list[str]:
    suggestions: list[str] = []
    if total_results == 0:
        suggestions.append('Try broader search terms like "lecture", "notes", or "slides"')
        suggestions.append("Check if the course has restricted APIs by viewing course overview")
    if file_count > 10:
        suggestions.append("Many files found - try more specific terms to narrow results")
    if len(query) < 4:
        suggestions.append('Try specific topics like "uncertainty", "quantum", "optics"')
    return suggestions


def _apply_intent(hits: SearchHits, intent: IntentClassification) -> SearchHits:
    """Drop categories the intent rules out, when it is confident enough."""
    if intent.confidence < INTENT_FILTER_MIN_CONFIDENCE or not (intent.files or intent.pages):
        return hits
    return SearchHits(
        files=hits.files if intent.files else [],
        pages=hits.pages if intent.pages else [],
        links=hits.links,
    )


def _candidates(hits: SearchHits) -> list[RerankCandidate]:
    candidates = [
        RerankCandidate(id=f"file_{f.file_id}", title=f.file_name, source=f.source, type="file")
        for f in hits.files
    ]
    candidates += [
        RerankCandidate(id=f"page_{p.path}", title=p.name, source=p.path, type="page")
        for p in hits.pages
    ]
    candidates += [
        RerankCandidate(id=link_citation_id(lk.url), title=lk.title, source=lk.source, type="link")
        for lk in hits.links
    ]
    return candidates


def _reorder(hits: SearchHits, ranked_ids: list[str]) -> SearchHits:
    """Keep only reranked items, in rerank order within each category."""
    position = {cid: i for i, cid in enumerate(ranked_ids)}

    def pick(items: list, key: Callable[[Any], str]) -> list:
        kept = [item for item in items if key(item) in position]
        return sorted(kept, key=lambda item: position[key(item)])

    return SearchHits(
        files=pick(hits.files, lambda f: f"file_{f.file_id}"),
        pages=pick(hits.pages, lambda p: f"page_{p.path}"),
        links=pick(hits.links, lambda lk: link_citation_id(lk.url)),
    )


def _citations(hits: SearchHits) -> list[Citation]:
    citations = [
        Citation(
            id=f"file_{f.file_id}",
            type="file",
            title=enforce_text_budget(f.file_name),
            source=enforce_text_budget(f.source),
            relevance=f.relevance,
            can_process=f.can_process,
        )
        for f in hits.files
    ]
    citations += [
        Citation(
            id=f"page_{p.path}",
            type="page",
            title=enforce_text_budget(p.name),
            source=enforce_text_budget(p.path),
            relevance=p.relevance,
        )
        for p in hits.pages
    ]
    citations += [
        Citation(
            id=link_citation_id(lk.url),
            type="link",
            title=enforce_text_budget(lk.title),
            source=enforce_text_budget(lk.source),
            relevance=lk.relevance,
        )
        for lk in hits.links
    ]
    citations.sort(key=lambda c: c.relevance, reverse=True)
    return citations


def _hits(results: SearchResults) -> SearchHits:
    return SearchHits(
        files=[
            SearchFileHit(**f.model_dump(), can_process=can_process(f.file_name))
            for f in results.files
        ],
        pages=results.pages,
        links=results.links,
    )


async def handle(
    query: str,
    state: AppState,
    *,
    course_id: str | None = None,
    course_name: str | None = None,
    max_results: int = 5,
    return_mode: str = "refs",
    force_refresh: bool = False,
    use_small_model: bool = True,
    include_semantic: bool = False,
) -> dict:
    """Handle a smart_search tool call."""
    log = structlog.get_logger().bind(tool="smart_search", query=query, course_id=course_id)
    log.info("handler_called")

    try:
        validated = SmartSearchInput(
            query=query,
            course_id=course_id,
            course_name=course_name,
            max_results=max_results,
            return_mode=return_mode,
            force_refresh=force_refresh,
            use_small_model=use_small_model,
            include_semantic=include_semantic,
        )
    except ValueError as exc:
        raise CanvasContextError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide a non-empty query, max_results between 1 and 50, "
            "and return_mode 'refs' or 'full'.",
            recoverable=False,
        ) from exc

    resolved_id = validated.course_id
    resolved_name = validated.course_name
    if resolved_id is None:
        if not validated.course_name:
            raise CanvasContextError(
                code=ErrorCode.COURSE_REQUIRED,
                message="Course ID is required for smart search",
                suggestion="Pass course_id, or course_name to resolve it.",
                recoverable=False,
            )
        resolved_id, resolved_name = await resolve_course_id(validated.course_name, state)

    intent = None
    if validated.use_small_model:
        intent = await state.assistant.classify_intent(validated.query, resolved_id)

    results = await state.orchestrator.smart_search(
        resolved_id,
        validated.query,
        ExtractionOptions(force_refresh=validated.force_refresh, use_web_discovery=True),
    )

    hits = _hits(results)
    if intent is not None:
        hits = _apply_intent(hits, intent)
    original_total = len(hits.files) + len(hits.pages) + len(hits.links)

    reranked = False
    if validated.use_small_model and original_total > validated.max_results:
        ranking = await state.assistant.rerank(
            validated.query, _candidates(hits), top_k=validated.max_results
        )
        if ranking:
            hits = _reorder(hits, [r.candidate_id for r in ranking])
            reranked = True

    limit = validated.max_results
    hits = SearchHits(files=hits.files[:limit], pages=hits.pages[:limit], links=hits.links[:limit])
    limited_total = len(hits.files) + len(hits.pages) + len(hits.links)

    semantic_matches: list[ChunkMatch] = []
    suggestions = search_suggestions(validated.query, results.total_results, len(results.files))
    if validated.include_semantic:
        try:
            semantic_matches = await state.semantic.search(resolved_id, validated.query, limit)
        except EmbeddingError as exc:
            log.warning("semantic_search_unavailable", error=str(exc))
            suggestions.append(
                "Semantic search unavailable; run index_courses with embeddings configured"
            )

    metadata = SearchMetadata(
        total_results=results.total_results,
        search_time_ms=results.search_time_ms,
        extraction_used=results.extraction_used,
        discovery_method=results.method or "discovery",
        api_restrictions=(
            "Some APIs restricted, using smart discovery" if results.has_restricted_apis else None
        ),
        truncated=limited_total < original_total,
        mode=validated.return_mode,
        intent=intent,
        reranked=reranked,
    )
    log.info(
        "smart_search_complete",
        total=results.total_results,
        returned=limited_total,
        reranked=reranked,
    )

    output = SmartSearchOutput(
        success=results.success,
        query=validated.query,
        course_id=resolved_id,
        course_name=resolved_name,
        citations=_citations(hits) if validated.return_mode == "refs" else None,
        results=hits if validated.return_mode == "full" else None,
        semantic_matches=semantic_matches,
        metadata=metadata,
        suggestions=suggestions,
        error=None if results.success else "; ".join(results.errors) or "No content available",
    )
    return output.model_dump(mode="json")
