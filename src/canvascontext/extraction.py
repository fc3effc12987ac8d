"""Extraction orchestrator.

The entry point for every read of a course's discovered content. It serves
the cached CourseContentIndex while fresh; otherwise it probes the APIs,
picks a strategy, runs web discovery when needed, and replaces the cached
index wholesale. Upstream failures end up in ``errors``/``warnings`` of the
result, never as exceptions.
"""

from __future__ import annotations

import math
import re
import time
from typing import TYPE_CHECKING

import structlog

from canvascontext.models.canvas import Found
from canvascontext.models.discovery import (
    ContentCounts,
    CourseContentIndex,
    DiscoveredFile,
    DiscoveryOptions,
    ExtractionOptions,
    ExtractionResult,
    ExtractionStats,
    ExtractionTiming,
    FileLookupResult,
    IndexMetadata,
    ScoredFile,
    ScoredLink,
    ScoredPage,
    SearchResults,
)
from canvascontext.prober import restriction_summary, suggested_fallbacks

if TYPE_CHECKING:
    from canvascontext.canvas import CanvasClient
    from canvascontext.config import DiscoverySettings
    from canvascontext.discovery import WebDiscovery
    from canvascontext.index_cache import CourseIndexCache
    from canvascontext.models.discovery import (
        DiscoveredLink,
        DiscoveredPage,
        DiscoveryResult,
        IndexMethod,
    )
    from canvascontext.prober import ApiProber

log = structlog.get_logger()


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def query_terms(query: str) -> list[str]:
    return [term for term in query.lower().split() if term]


def calculate_relevance(query: str, text: str) -> float:
    """Term-overlap score normalised by text length.

    1.0 if the whole query occurs in *text*, plus 0.3 per occurrence of each
    query term, divided by ``ln(len(text) + 1)``.
    """
    query_lower = query.lower().strip()
    if not query_lower or not text:
        return 0.0
    score = 1.0 if query_lower in text.lower() else 0.0
    for term in query_terms(query_lower):
        score += len(re.findall(re.escape(term), text, flags=re.IGNORECASE)) * 0.3
    if score > 0:
        score /= math.log(len(text) + 1)
    return score


def _file_text(file: DiscoveredFile) -> str:
    return f"{file.file_name} {file.source_page_name}"


def _page_text(page: DiscoveredPage) -> str:
    return f"{page.name} {page.path}"


def _link_text(link: DiscoveredLink) -> str:
    return f"{link.title} {link.source_page_name}"


def _matches(terms: list[str], text: str) -> bool:
    lowered = text.lower()
    return any(term in lowered for term in terms)


def search_discovered_content(
    index: CourseContentIndex, query: str
) -> tuple[list[DiscoveredFile], list[DiscoveredPage], list[DiscoveredLink]]:
    """Files, pages and links containing at least one query term, in index order."""
    terms = query_terms(query)
    if not terms:
        return [], [], []
    return (
        [f for f in index.files if _matches(terms, _file_text(f))],
        [p for p in index.pages if _matches(terms, _page_text(p))],
        [link for link in index.links if _matches(terms, _link_text(link))],
    )


class ExtractionOrchestrator:
    def __init__(
        self,
        canvas: CanvasClient,
        prober: ApiProber,
        discovery: WebDiscovery,
        index_cache: CourseIndexCache,
        settings: DiscoverySettings,
    ) -> None:
        self._canvas = canvas
        self._prober = prober
        self._discovery = discovery
        self._cache = index_cache
        self._settings = settings

    async def extract(
        self, course_id: str, options: ExtractionOptions | None = None
    ) -> ExtractionResult:
        opts = options or ExtractionOptions()
        started = time.perf_counter()

        if not opts.force_refresh:
            cached = self._cache.get(course_id)
            if cached is not None:
                log.info("extraction_cache_hit", course_id=course_id)
                return ExtractionResult(
                    success=True,
                    method="cached",
                    index=cached,
                    timing=ExtractionTiming(total_ms=_elapsed_ms(started)),
                )

        log.info("extraction_started", course_id=course_id, force_refresh=opts.force_refresh)
        timing = ExtractionTiming()
        errors: list[str] = []
        warnings: list[str] = []

        probe_started = time.perf_counter()
        probe = await self._prober.probe(course_id)
        timing.api_test_ms = _elapsed_ms(probe_started)
        summary = probe.summary

        index = CourseContentIndex(
            course_id=course_id,
            last_scanned_at=self._cache.now(),
            api_availability=probe.availability,
            metadata=IndexMetadata(has_restricted_apis=summary.has_restricted_apis),
        )

        use_web = opts.use_web_discovery is not False and (
            summary.recommend_web_discovery or opts.use_web_discovery is True
        )
        method: IndexMethod
        if use_web:
            discovery_started = time.perf_counter()
            discovered = await self._discover_with_retries(course_id, opts)
            timing.web_discovery_ms = _elapsed_ms(discovery_started)
            errors.extend(discovered.errors)
            warnings.extend(discovered.warnings)

            if discovered.success:
                index.pages = discovered.pages
                index.files = discovered.files
                index.links = discovered.links
                index.searchable_text = discovered.searchable_text
                method = "hybrid" if summary.has_working_apis else "web"
                success = True
            elif summary.has_working_apis:
                warnings.append("Web discovery found no content; falling back to available APIs")
                method = "api"
                success = True
            else:
                errors.append("Web discovery failed")
                method = "web"
                success = False
        else:
            method = "api"
            success = summary.has_working_apis
            if not success:
                errors.append("All APIs restricted and web discovery disabled")

        index.metadata.method = method
        index.metadata.total_files = len(index.files)
        index.metadata.total_pages = len(index.pages)

        if success:
            index.last_scanned_at = self._cache.now()
            self._cache.put(index)

        timing.total_ms = _elapsed_ms(started)
        log.info(
            "extraction_complete",
            course_id=course_id,
            success=success,
            method=method,
            files=len(index.files),
            pages=len(index.pages),
            duration_ms=round(timing.total_ms, 1),
        )
        return ExtractionResult(
            success=success,
            method=method,
            index=index,
            api_summary=restriction_summary(probe),
            api_fallbacks=suggested_fallbacks(probe),
            timing=timing,
            errors=errors,
            warnings=warnings,
        )

    async def _discover_with_retries(
        self, course_id: str, opts: ExtractionOptions
    ) -> DiscoveryResult:
        """Run web discovery, retrying only runs that failed with errors.

        An unsuccessful run without errors means the course simply has
        nothing discoverable; retrying it would not help.
        """
        discovery_options = DiscoveryOptions(
            max_pages=self._settings.max_pages,
            timeout_ms=opts.timeout_ms or self._settings.timeout_ms,
            include_navigation=self._settings.include_navigation,
            extract_embedded_content=self._settings.extract_embedded_content,
            respect_rate_limit=self._settings.respect_rate_limit,
        )
        attempts = max(1, opts.max_retries or self._settings.max_retries)
        for attempt in range(1, attempts + 1):
            result = await self._discovery.discover(course_id, discovery_options)
            if result.success or not result.errors or attempt == attempts:
                return result
            log.info("web_discovery_retry", course_id=course_id, attempt=attempt)
        return result

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def smart_search(
        self, course_id: str, query: str, options: ExtractionOptions | None = None
    ) -> SearchResults:
        """Rank the course's discovered files, pages and links against *query*."""
        started = time.perf_counter()
        extraction = await self.extract(course_id, options)
        extraction_used = extraction.method != "cached"

        if not extraction.success:
            log.warning("smart_search_no_content", course_id=course_id)
            return SearchResults(
                success=False,
                search_time_ms=_elapsed_ms(started),
                extraction_used=extraction_used,
                method=extraction.method,
                has_restricted_apis=extraction.index.metadata.has_restricted_apis,
                errors=extraction.errors,
            )

        files, pages, links = search_discovered_content(extraction.index, query)
        scored_files = [
            ScoredFile(
                file_id=f.file_id,
                file_name=f.file_name,
                url=f.url,
                source=f.source_page_name,
                relevance=calculate_relevance(query, _file_text(f)),
            )
            for f in files
        ]
        scored_pages = [
            ScoredPage(
                name=p.name, url=p.url, path=p.path, relevance=calculate_relevance(query, _page_text(p))
            )
            for p in pages
        ]
        scored_links = [
            ScoredLink(
                title=link.title,
                url=link.url,
                kind=link.kind,
                source=link.source_page_name,
                relevance=calculate_relevance(query, _link_text(link)),
            )
            for link in links
        ]
        # sort() is stable, so equal scores keep index order
        for ranked in (scored_files, scored_pages, scored_links):
            ranked.sort(key=lambda item: item.relevance, reverse=True)

        total = len(scored_files) + len(scored_pages) + len(scored_links)
        log.info("smart_search_complete", course_id=course_id, query=query, total=total)
        return SearchResults(
            files=scored_files,
            pages=scored_pages,
            links=scored_links,
            total_results=total,
            search_time_ms=_elapsed_ms(started),
            extraction_used=extraction_used,
            method=extraction.method,
            has_restricted_apis=extraction.index.metadata.has_restricted_apis,
        )

    async def get_content_by_file_id(
        self, course_id: str, file_id: str, options: ExtractionOptions | None = None
    ) -> FileLookupResult:
        """Find a file via the files API, falling back to the discovered index."""
        lookup = await self._canvas.get_file(file_id)
        if isinstance(lookup, Found):
            meta = lookup.value
            return FileLookupResult(
                success=True,
                method="direct",
                file=DiscoveredFile(
                    file_id=str(meta.id),
                    file_name=meta.filename or meta.display_name or f"File {meta.id}",
                    url=meta.url or self._canvas.web_url(f"/courses/{course_id}/files/{meta.id}"),
                    file_type=meta.content_type,
                    size=meta.size,
                    last_modified=meta.updated_at,
                ),
            )
        log.debug("direct_file_lookup_failed", file_id=file_id, result=type(lookup).__name__)

        extraction = await self.extract(course_id, options)
        if extraction.success:
            for file in extraction.index.files:
                if file.file_id == file_id:
                    return FileLookupResult(success=True, method="discovery", file=file)

        log.warning("file_not_found", course_id=course_id, file_id=file_id)
        return FileLookupResult(
            success=False, method="discovery", error="File not found via API or discovery"
        )

    # ------------------------------------------------------------------
    # Cache inspection
    # ------------------------------------------------------------------

    async def extraction_stats(self, course_id: str) -> ExtractionStats:
        cached = self._cache.get(course_id)
        if cached is not None:
            return ExtractionStats(
                course_id=course_id,
                has_cache=True,
                cache_age_seconds=self._cache.age_seconds(cached),
                last_update=cached.last_scanned_at,
                api_status="restricted" if cached.metadata.has_restricted_apis else "available",
                content_counts=ContentCounts(
                    files=len(cached.files), pages=len(cached.pages), links=len(cached.links)
                ),
            )

        probe = await self._prober.probe(course_id)
        return ExtractionStats(
            course_id=course_id,
            has_cache=False,
            api_status="restricted" if probe.summary.has_restricted_apis else "available",
        )

    def clear(self, course_id: str | None = None) -> int:
        return self._cache.clear(course_id)
