"""API availability probing.

Installations restrict different parts of the Canvas REST API per course.
The prober issues one cheap request per known endpoint and classifies each
as available or restricted. It never raises for upstream failures and never
persists anything; the orchestrator stores the result inside the course
content index.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from canvascontext.errors import CanvasRequestError
from canvascontext.models.discovery import (
    ApiSummary,
    CourseAPIAvailability,
    EndpointProbe,
    FallbackSuggestion,
    ProbeResult,
    ProbeTiming,
)

if TYPE_CHECKING:
    from canvascontext.canvas import CanvasClient

log = structlog.get_logger()

CANVAS_API_ENDPOINTS: tuple[tuple[str, str], ...] = (
    ("pages", "/pages"),
    ("files", "/files"),
    ("modules", "/modules"),
    ("assignments", "/assignments"),
    ("discussions", "/discussion_topics"),
    ("announcements", "/announcements"),
    ("tabs", "/tabs"),
)

DEFAULT_RESTRICTED_RATIO_THRESHOLD = 0.5


def build_summary(
    availability: CourseAPIAvailability,
    threshold: float = DEFAULT_RESTRICTED_RATIO_THRESHOLD,
) -> ApiSummary:
    """Aggregate per-endpoint probes into the strategy-driving summary.

    Web discovery is recommended once the restricted share is strictly
    greater than ``threshold``.
    """
    endpoints = list(availability.endpoints.values())
    total = len(endpoints)
    available = sum(1 for e in endpoints if e.available)
    restricted = total - available
    ratio = restricted / total if total else 0.0
    return ApiSummary(
        total_endpoints=total,
        available_endpoints=available,
        restricted_endpoints=restricted,
        restricted_ratio=ratio,
        has_working_apis=available > 0,
        has_restricted_apis=restricted > 0,
        recommend_web_discovery=ratio > threshold,
    )


def restriction_summary(result: ProbeResult) -> str:
    """Human-readable one-liner describing which APIs are usable."""
    summary = result.summary
    total = summary.total_endpoints
    if summary.available_endpoints == total:
        return f"All APIs available ({total}/{total})"
    if summary.available_endpoints == 0:
        return f"All APIs restricted (0/{total}) - Web discovery recommended"
    restricted = [e.name for e in result.availability.endpoints.values() if not e.available]
    return (
        f"Partial API access ({summary.available_endpoints}/{total} available). "
        f"Restricted: {', '.join(restricted)}"
    )


def is_api_available(result: ProbeResult, name: str) -> bool:
    endpoint = result.availability.endpoints.get(name)
    return endpoint is not None and endpoint.available


def suggested_fallbacks(result: ProbeResult) -> list[FallbackSuggestion]:
    """Suggest a discovery technique for every restricted endpoint."""
    suggestions: list[FallbackSuggestion] = []
    for endpoint in result.availability.endpoints.values():
        if endpoint.available:
            continue
        match endpoint.name:
            case "pages":
                state = "disabled" if endpoint.status_code == 404 else "restricted"
                suggestions.append(
                    FallbackSuggestion(
                        api="pages",
                        fallback="Web interface discovery",
                        reason=f"Pages API {state} - try direct page URLs",
                    )
                )
            case "files":
                state = "unauthorized" if endpoint.status_code == 403 else "restricted"
                suggestions.append(
                    FallbackSuggestion(
                        api="files",
                        fallback="Extract from page content",
                        reason=f"Files API {state} - search for embedded file links",
                    )
                )
            case "modules":
                suggestions.append(
                    FallbackSuggestion(
                        api="modules",
                        fallback="Course navigation parsing",
                        reason="Modules API restricted - check course tabs/navigation",
                    )
                )
            case _:
                suggestions.append(
                    FallbackSuggestion(
                        api=endpoint.name,
                        fallback="Web interface",
                        reason=f"{endpoint.name} API restricted - try web discovery",
                    )
                )
    return suggestions


class ApiProber:
    """Probes the fixed endpoint list for one course at a time."""

    def __init__(
        self,
        canvas: CanvasClient,
        *,
        restricted_ratio_threshold: float = DEFAULT_RESTRICTED_RATIO_THRESHOLD,
    ) -> None:
        self._canvas = canvas
        self._threshold = restricted_ratio_threshold

    async def probe(self, course_id: str) -> ProbeResult:
        log.info("api_probe_started", course_id=course_id)
        started = time.perf_counter()

        outcomes = await asyncio.gather(
            *(self._probe_endpoint(course_id, name, path) for name, path in CANVAS_API_ENDPOINTS),
            return_exceptions=True,
        )

        endpoints: dict[str, EndpointProbe] = {}
        for (name, path), outcome in zip(CANVAS_API_ENDPOINTS, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                log.warning("api_probe_unexpected_error", endpoint=name, exc_info=outcome)
                outcome = EndpointProbe(
                    name=name,
                    path=path,
                    available=False,
                    status_code=0,
                    error=str(outcome) or "Test failed",
                )
            endpoints[name] = outcome

        availability = CourseAPIAvailability(
            course_id=course_id,
            tested_at=datetime.now(UTC),
            endpoints=endpoints,
        )
        total_ms = (time.perf_counter() - started) * 1000
        summary = build_summary(availability, self._threshold)

        log.info(
            "api_probe_complete",
            course_id=course_id,
            available=summary.available_endpoints,
            total=summary.total_endpoints,
            recommend_web_discovery=summary.recommend_web_discovery,
            duration_ms=round(total_ms, 1),
        )
        return ProbeResult(
            course_id=course_id,
            availability=availability,
            summary=summary,
            timing=ProbeTiming(
                total_ms=total_ms,
                average_ms=total_ms / len(endpoints) if endpoints else 0.0,
            ),
        )

    async def _probe_endpoint(self, course_id: str, name: str, path: str) -> EndpointProbe:
        url = self._canvas.api_url(f"/courses/{course_id}{path}")
        started = time.perf_counter()
        try:
            response = await self._canvas.request("GET", url, params={"per_page": 1})
        except CanvasRequestError as exc:
            log.debug("api_endpoint_restricted", endpoint=name, status_code=exc.status_code)
            return EndpointProbe(
                name=name,
                path=path,
                available=False,
                status_code=exc.status_code,
                error=exc.message,
                response_ms=(time.perf_counter() - started) * 1000,
            )
        return EndpointProbe(
            name=name,
            path=path,
            available=True,
            status_code=response.status_code,
            response_ms=(time.perf_counter() - started) * 1000,
        )
