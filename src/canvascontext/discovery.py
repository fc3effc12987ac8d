"""Web discovery for courses whose REST API is restricted.

Bounded on purpose: one hop of navigation tabs plus a fixed list of common
page slugs, never a general crawl. Page bodies are fetched one at a time so
a delay can be inserted between requests; existence checks for candidate
pages run concurrently.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from canvascontext.errors import CanvasRequestError, LoginRedirectError
from canvascontext.models.canvas import Found
from canvascontext.models.discovery import (
    DiscoveredFile,
    DiscoveredLink,
    DiscoveredPage,
    DiscoveryOptions,
    DiscoveryResult,
)
from canvascontext.urls import (
    extract_file_refs,
    extract_links,
    html_to_text,
    looks_like_login_page,
    parse_canvas_url,
)

if TYPE_CHECKING:
    from canvascontext.canvas import CanvasClient

log = structlog.get_logger()

# Probed in this order; ``max_pages`` takes a prefix.
COMMON_COURSE_PAGES: tuple[str, ...] = (
    "readings-class-notes-and-videos",
    "course-materials",
    "lecture-slides",
    "lecture-notes",
    "resources",
    "course-resources",
    "syllabus",
    "schedule",
    "course-schedule",
    "materials",
    "notes",
    "slides",
    "handouts",
    "documents",
)

DEFAULT_RATE_LIMIT_DELAY_SECONDS = 0.5


@dataclass
class PageContent:
    html: str
    files: list[DiscoveredFile] = field(default_factory=list)
    links: list[DiscoveredLink] = field(default_factory=list)
    text: str = ""


class WebDiscovery:
    """Discovers pages, embedded files and links through the Canvas web UI."""

    def __init__(
        self,
        canvas: CanvasClient,
        *,
        rate_limit_delay_seconds: float = DEFAULT_RATE_LIMIT_DELAY_SECONDS,
    ) -> None:
        self._canvas = canvas
        self._delay = rate_limit_delay_seconds

    async def discover(
        self, course_id: str, options: DiscoveryOptions | None = None
    ) -> DiscoveryResult:
        """Run navigation, common-page and content discovery for a course.

        Never raises. Expected absence yields ``success=False`` with empty
        collections; a single page failing only adds a warning.
        """
        opts = options or DiscoveryOptions()
        timeout = opts.timeout_ms / 1000
        started = time.perf_counter()
        log.info("web_discovery_started", course_id=course_id, max_pages=opts.max_pages)

        result = DiscoveryResult(success=False)
        try:
            pages: list[DiscoveredPage] = []
            if opts.include_navigation:
                pages.extend(await self.discover_navigation(course_id, timeout=timeout))

            seen_urls = {page.url for page in pages}
            for page in await self.discover_common_pages(course_id, opts.max_pages, timeout=timeout):
                if page.url not in seen_urls:
                    seen_urls.add(page.url)
                    pages.append(page)

            files_by_id: dict[str, DiscoveredFile] = {}
            links_by_url: dict[str, DiscoveredLink] = {}
            text_parts: list[str] = []
            final_pages: list[DiscoveredPage] = []

            extracted = 0
            for page in pages:
                if not (opts.extract_embedded_content and page.accessible):
                    final_pages.append(page)
                    continue

                if opts.respect_rate_limit and extracted > 0:
                    await asyncio.sleep(self._delay)
                extracted += 1

                try:
                    content = await self.extract_page_content(
                        course_id, page, known_files=files_by_id, timeout=timeout
                    )
                except (CanvasRequestError, ValidationError) as exc:
                    result.warnings.append(f"Failed to extract content from {page.name}: {exc}")
                    log.warning(
                        "page_extraction_failed",
                        course_id=course_id,
                        page=page.name,
                        error=str(exc),
                    )
                    final_pages.append(page)
                    continue

                for ref in content.files:
                    files_by_id.setdefault(ref.file_id, ref)
                for link in content.links:
                    links_by_url.setdefault(link.url, link)
                if content.text:
                    text_parts.append(f"\n\n{page.name}:\n{content.text}")

                # Attach embedded content once; the page is not touched again.
                final_pages.append(
                    page.model_copy(
                        update={
                            "embedded_files": content.files or None,
                            "embedded_links": content.links or None,
                        }
                    )
                )

            result.pages = final_pages
            result.files = list(files_by_id.values())
            result.links = list(links_by_url.values())
            result.searchable_text = "".join(text_parts)
            result.success = bool(result.pages or result.files)
        except Exception as exc:
            log.error("web_discovery_failed", course_id=course_id, exc_info=True)
            result.errors.append(f"Web discovery failed: {exc}")

        log.info(
            "web_discovery_complete",
            course_id=course_id,
            success=result.success,
            pages=len(result.pages),
            files=len(result.files),
            links=len(result.links),
            warnings=len(result.warnings),
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return result

    # ------------------------------------------------------------------
    # Page discovery
    # ------------------------------------------------------------------

    async def discover_navigation(
        self, course_id: str, *, timeout: float | None = None
    ) -> list[DiscoveredPage]:
        """Visible navigation tabs that point at wiki pages, accessibility-checked."""
        try:
            tabs = await self._canvas.list_tabs(course_id)
        except (CanvasRequestError, ValidationError) as exc:
            log.debug("navigation_unavailable", course_id=course_id, error=str(exc))
            return []

        candidates: list[tuple[str, str, str]] = []
        for tab in tabs:
            if not tab.html_url or tab.visibility == "none":
                continue
            url = tab.html_url
            if url.startswith("/"):
                url = self._canvas.web_url(url)
            info = parse_canvas_url(url)
            if info.kind != "page" and "/pages/" not in url:
                continue
            candidates.append((tab.label or tab.id, url, info.resource_id or tab.id))

        checks = await asyncio.gather(
            *(self._canvas.exists(url, timeout=timeout) for _, url, _ in candidates),
            return_exceptions=True,
        )
        now = datetime.now(UTC)
        pages = [
            DiscoveredPage(
                name=name,
                url=url,
                path=path,
                accessible=accessible is True,
                last_checked_at=now,
            )
            for (name, url, path), accessible in zip(candidates, checks, strict=True)
        ]
        log.debug("navigation_pages_found", course_id=course_id, count=len(pages))
        return pages

    async def discover_common_pages(
        self, course_id: str, max_pages: int, *, timeout: float | None = None
    ) -> list[DiscoveredPage]:
        """Existence-check well-known page slugs in parallel; keep the hits."""
        slugs = COMMON_COURSE_PAGES[:max_pages]
        urls = [self._canvas.web_url(f"/courses/{course_id}/pages/{slug}") for slug in slugs]
        checks = await asyncio.gather(
            *(self._canvas.exists(url, timeout=timeout) for url in urls),
            return_exceptions=True,
        )

        now = datetime.now(UTC)
        pages: list[DiscoveredPage] = []
        for slug, url, exists in zip(slugs, urls, checks, strict=True):
            if exists is not True:
                continue
            pages.append(
                DiscoveredPage(
                    name=slug.replace("-", " "),
                    url=url,
                    path=slug,
                    accessible=True,
                    last_checked_at=now,
                )
            )
        log.debug("common_pages_found", course_id=course_id, count=len(pages))
        return pages

    # ------------------------------------------------------------------
    # Content extraction
    # ------------------------------------------------------------------

    async def fetch_page_html(
        self, course_id: str, page: DiscoveredPage, *, timeout: float | None = None
    ) -> str:
        """Page body via the pages API, falling back to the rendered web page.

        Raises CanvasRequestError when both paths fail, and LoginRedirectError
        when the web page turns out to be a sign-in screen.
        """
        try:
            api_page = await self._canvas.get_page(course_id, page.path)
            return api_page.body or ""
        except (CanvasRequestError, ValidationError) as exc:
            log.debug("page_api_failed", page=page.name, error=str(exc))

        html = await self._canvas.get_text(page.url, timeout=timeout)
        if looks_like_login_page(html):
            raise LoginRedirectError(page.url)
        return html

    async def extract_page_content(
        self,
        course_id: str,
        page: DiscoveredPage,
        *,
        known_files: dict[str, DiscoveredFile] | None = None,
        timeout: float | None = None,
    ) -> PageContent:
        html = await self.fetch_page_html(course_id, page, timeout=timeout)
        known = known_files or {}

        refs = extract_file_refs(html, self._canvas.base_url, source_page_name=page.name)
        new_refs = [ref for ref in refs if ref.file_id not in known]
        enriched = await asyncio.gather(
            *(self._enrich_file_name(ref) for ref in new_refs), return_exceptions=True
        )
        enriched_by_id = {
            ref.file_id: (result if isinstance(result, DiscoveredFile) else ref)
            for ref, result in zip(new_refs, enriched, strict=True)
        }
        files = [known.get(ref.file_id) or enriched_by_id[ref.file_id] for ref in refs]

        links = extract_links(html, self._canvas.base_url, source_page_name=page.name)
        text = html_to_text(html)
        log.debug("page_content_extracted", page=page.name, files=len(files), links=len(links))
        return PageContent(html=html, files=files, links=links, text=text)

    async def _enrich_file_name(self, ref: DiscoveredFile) -> DiscoveredFile:
        """Replace the HTML-derived name with the real filename when visible."""
        lookup = await self._canvas.get_file(ref.file_id)
        if not isinstance(lookup, Found):
            return ref
        meta = lookup.value
        return ref.model_copy(
            update={
                "file_name": meta.filename or meta.display_name or ref.file_name,
                "file_type": meta.content_type,
                "size": meta.size,
                "last_modified": meta.updated_at,
            }
        )
