"""Canvas LMS HTTP client.

All network I/O against the Canvas installation goes through a single
CanvasClient shared across tool calls. The client receives an
httpx.AsyncClient via constructor injection; the lifespan owns its lifecycle.

Non-2xx responses and transport failures raise CanvasRequestError. Callers
at the prober, discovery and orchestrator boundaries convert that into result
shapes; it never reaches an MCP client.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from canvascontext import __version__
from canvascontext.errors import CanvasRequestError
from canvascontext.models.canvas import (
    Assignment,
    CanvasFile,
    CanvasPage,
    CanvasTab,
    Course,
    Found,
    NotFound,
    Restricted,
)

if TYPE_CHECKING:
    from canvascontext.config import CanvasSettings

log = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)

PER_PAGE = 100
MAX_PAGINATION_PAGES = 50


def build_http_client(settings: CanvasSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        # Canvas redirects file downloads to signed storage URLs
        follow_redirects=True,
        timeout=httpx.Timeout(settings.request_timeout_seconds),
        headers={"User-Agent": f"canvascontext/{__version__}"},
        limits=httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
        ),
    )


def _error_message(response: httpx.Response) -> str:
    """Pull the human-readable error out of a Canvas error body."""
    try:
        payload = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"

    if isinstance(payload, dict):
        for key in ("message", "error"):
            if isinstance(payload.get(key), str):
                return payload[key]
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            message = errors[0].get("message")
            if isinstance(message, str):
                return message
    return response.reason_phrase or f"HTTP {response.status_code}"


class CanvasClient:
    """Bearer-authenticated access to the Canvas REST API and web UI."""

    def __init__(self, client: httpx.AsyncClient, settings: CanvasSettings) -> None:
        self._client = client
        self._settings = settings

    @property
    def base_url(self) -> str:
        return self._settings.base_url.rstrip("/")

    def api_url(self, path: str) -> str:
        return f"{self.base_url}/api/v1{path}"

    def web_url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _auth_headers(self) -> dict[str, str]:
        token = self._settings.access_token.get_secret_value()
        return {"Authorization": f"Bearer {token}"} if token else {}

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Send one request. Raises CanvasRequestError on any failure."""
        extra: dict[str, Any] = {}
        if timeout is not None:
            extra["timeout"] = timeout
        try:
            response = await self._client.request(
                method, url, params=params, headers=self._auth_headers(), **extra
            )
        except httpx.HTTPError as exc:
            raise CanvasRequestError(url, 0, f"Network error: {exc}") from exc

        if not response.is_success:
            raise CanvasRequestError(url, response.status_code, _error_message(response))
        return response

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET an API path (relative to ``/api/v1``) and decode the JSON body."""
        url = self.api_url(path)
        response = await self.request("GET", url, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise CanvasRequestError(url, response.status_code, "Invalid JSON response") from exc

    async def get_all(self, path: str, params: dict[str, Any] | None = None) -> list[Any]:
        """GET a paginated collection, following ``Link: rel="next"`` headers."""
        url: str | None = self.api_url(path)
        query: dict[str, Any] | None = {"per_page": PER_PAGE, **(params or {})}
        items: list[Any] = []

        for _ in range(MAX_PAGINATION_PAGES):
            if url is None:
                break
            response = await self.request("GET", url, params=query)
            try:
                page = response.json()
            except ValueError as exc:
                raise CanvasRequestError(url, response.status_code, "Invalid JSON response") from exc
            if isinstance(page, list):
                items.extend(page)
            # The next link already carries the query string
            url = response.links.get("next", {}).get("url")
            query = None

        if url is not None:
            log.warning("canvas_pagination_truncated", path=path, max_pages=MAX_PAGINATION_PAGES)

        return items

    async def get_text(self, url: str, *, timeout: float | None = None) -> str:
        response = await self.request("GET", url, timeout=timeout)
        return response.text

    async def get_bytes(self, url: str) -> bytes:
        response = await self.request("GET", url)
        return response.content

    async def exists(self, url: str, *, timeout: float | None = None) -> bool:
        """Lightweight HEAD existence check. Never raises."""
        try:
            await self.request("HEAD", url, timeout=timeout)
        except CanvasRequestError as exc:
            log.debug("canvas_head_failed", url=url, status_code=exc.status_code)
            return False
        return True

    async def lookup(
        self, path: str, model: type[M]
    ) -> Found[M] | NotFound | Restricted:
        """Fetch a single resource as a result variant instead of raising."""
        url = self.api_url(path)
        try:
            payload = await self.get_json(path)
        except CanvasRequestError as exc:
            if exc.status_code == 404:
                return NotFound(url=url)
            return Restricted(url=url, status_code=exc.status_code, message=exc.message)
        try:
            return Found(model.model_validate(payload))
        except ValidationError:
            log.warning("canvas_unexpected_payload", url=url, model=model.__name__)
            return Restricted(url=url, status_code=200, message="Unexpected response shape")

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def list_courses(self, *, include_syllabus: bool = False) -> list[Course]:
        params: dict[str, Any] = {"enrollment_state": "active"}
        if include_syllabus:
            params["include[]"] = "syllabus_body"
        return [Course.model_validate(c) for c in await self.get_all("/courses", params)]

    async def get_course(self, course_id: str, *, include_syllabus: bool = False) -> Course:
        params = {"include[]": "syllabus_body"} if include_syllabus else None
        return Course.model_validate(await self.get_json(f"/courses/{course_id}", params))

    async def get_file(self, file_id: str) -> Found[CanvasFile] | NotFound | Restricted:
        return await self.lookup(f"/files/{file_id}", CanvasFile)

    async def get_page(self, course_id: str, slug: str) -> CanvasPage:
        return CanvasPage.model_validate(await self.get_json(f"/courses/{course_id}/pages/{slug}"))

    async def list_tabs(self, course_id: str) -> list[CanvasTab]:
        return [CanvasTab.model_validate(t) for t in await self.get_json(f"/courses/{course_id}/tabs")]

    async def list_assignments(self, course_id: str) -> list[Assignment]:
        return [
            Assignment.model_validate(a)
            for a in await self.get_all(f"/courses/{course_id}/assignments")
        ]

    async def list_files(self, course_id: str) -> list[CanvasFile]:
        return [
            CanvasFile.model_validate(f) for f in await self.get_all(f"/courses/{course_id}/files")
        ]
