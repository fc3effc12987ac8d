"""Document-parsing client (LlamaParse).

Turns an arbitrary file buffer into text: upload, poll the job until it
finishes, fetch the result. Every failure is a DocumentParseError with a
code; callers distinguish "declined" (disabled, unsupported, too large) from
service failures via ``DocumentParseError.declined``.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import httpx
import structlog

from canvascontext.errors import DocumentParseError, ParseErrorCode
from canvascontext.models.cache import ParsedDocument

if TYPE_CHECKING:
    from canvascontext.config import ParserSettings

log = structlog.get_logger()

SUPPORTED_EXTENSIONS: frozenset[str] = frozenset(
    {
        "pdf",
        # Documents and presentations
        "602", "abw", "cgm", "cwk", "doc", "docx", "docm", "dot", "dotm", "hwp", "key",
        "lwp", "mw", "mcw", "pages", "pbd", "ppt", "pptm", "pptx", "pot", "potm", "potx",
        "rtf", "sda", "sdd", "sdp", "sdw", "sgl", "sti", "sxi", "sxw", "stw", "sxg", "txt",
        "uof", "uop", "uot", "vor", "wpd", "wps", "xml", "zabw", "epub",
        # Images and web
        "jpg", "jpeg", "png", "gif", "bmp", "svg", "tiff", "webp", "web", "htm", "html",
        # Spreadsheets
        "xlsx", "xls", "xlsm", "xlsb", "xlw", "csv", "dif", "sylk", "slk", "prn", "numbers",
        "et", "ods", "fods", "uos1", "uos2", "dbf", "wk1", "wk2", "wk3", "wk4", "wks", "123",
        "wq1", "wq2", "wb1", "wb2", "wb3", "qpw", "xlr", "eth", "tsv",
        # Notebooks
        "ipynb",
        # Audio
        "mp3", "mp4", "mpeg", "mpga", "m4a", "wav", "webm",
    }
)  # fmt: skip

AUDIO_EXTENSIONS: frozenset[str] = frozenset({"mp3", "mp4", "mpeg", "mpga", "m4a", "wav", "webm"})
AUDIO_MAX_BYTES = 20 * 1024 * 1024

_DONE_STATUSES = frozenset({"SUCCESS", "COMPLETED"})
_FAILED_STATUSES = frozenset({"ERROR", "FAILED"})


def file_extension(filename: str) -> str:
    """Lowercased extension, ignoring any query string or fragment."""
    clean = filename.split("?")[0].split("#")[0]
    return clean.rsplit(".", 1)[-1].lower() if "." in clean else ""


def is_supported(filename: str) -> bool:
    return file_extension(filename) in SUPPORTED_EXTENSIONS


def _mb(size: int) -> str:
    return f"{size / 1024 / 1024:.1f}MB"


class DocumentParser:
    """Client for the LlamaParse upload / job / result API."""

    def __init__(self, client: httpx.AsyncClient, settings: ParserSettings) -> None:
        self._client = client
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return bool(self._settings.api_key.get_secret_value())

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._settings.api_key.get_secret_value()}"}

    def _url(self, path: str) -> str:
        return f"{self._settings.base_url.rstrip('/')}{path}"

    def validate(self, filename: str, size: int) -> None:
        """Raise a declining DocumentParseError if the file can't be sent."""
        if not self.enabled:
            raise DocumentParseError(ParseErrorCode.DISABLED, "Document parsing disabled (no API key)")
        if not self._settings.allow_upload:
            raise DocumentParseError(
                ParseErrorCode.UPLOAD_DISALLOWED,
                "File upload disabled (set CANVASCONTEXT__PARSER__ALLOW_UPLOAD=true)",
            )
        ext = file_extension(filename)
        if ext not in SUPPORTED_EXTENSIONS:
            raise DocumentParseError(ParseErrorCode.UNSUPPORTED, f"Unsupported file type: .{ext}")
        if ext in AUDIO_EXTENSIONS and size > AUDIO_MAX_BYTES:
            raise DocumentParseError(
                ParseErrorCode.SIZE_EXCEEDED, f"Audio file exceeds 20MB limit ({_mb(size)})"
            )
        if size > self._settings.max_bytes:
            limit = round(self._settings.max_bytes / 1024 / 1024)
            raise DocumentParseError(
                ParseErrorCode.SIZE_EXCEEDED, f"File exceeds {limit}MB limit ({_mb(size)})"
            )

    async def parse(
        self, data: bytes, filename: str, result_format: str | None = None
    ) -> ParsedDocument:
        result_format = result_format or self._settings.result_format
        self.validate(filename, len(data))

        started = time.perf_counter()
        log.debug("parse_started", filename=filename, size=len(data))
        try:
            job_id = await self._upload(data, filename, result_format)
            status = await self._wait_for_job(job_id)
            content = await self._fetch_result(job_id, result_format)
        except DocumentParseError as exc:
            log.warning("parse_failed", filename=filename, code=exc.code, message=exc.message)
            raise

        parse_time_ms = (time.perf_counter() - started) * 1000
        log.info("parse_complete", filename=filename, job_id=job_id, duration_ms=round(parse_time_ms))
        pages = status.get("pages")
        return ParsedDocument(
            content=content,
            format=result_format,
            job_id=job_id,
            pages=pages if isinstance(pages, int) else None,
            parse_time_ms=parse_time_ms,
        )

    async def _upload(self, data: bytes, filename: str, result_format: str) -> str:
        try:
            response = await self._client.post(
                self._url("/api/parsing/upload"),
                headers=self._headers(),
                files={"file": (filename, data)},
                data={"result_type": result_format},
            )
        except httpx.HTTPError as exc:
            raise DocumentParseError(ParseErrorCode.API_ERROR, f"Upload failed: {exc}") from exc

        if not response.is_success:
            raise DocumentParseError(
                ParseErrorCode.API_ERROR,
                f"Upload failed: {response.status_code} {response.reason_phrase}",
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise DocumentParseError(ParseErrorCode.API_ERROR, "Upload returned invalid JSON") from exc

        job_id = payload.get("id") or payload.get("job_id") if isinstance(payload, dict) else None
        if not job_id:
            raise DocumentParseError(ParseErrorCode.API_ERROR, "Upload response carried no job id")
        return str(job_id)

    async def _wait_for_job(self, job_id: str) -> dict:
        """Poll until the job finishes. Transient poll failures are retried."""
        deadline = time.monotonic() + self._settings.timeout_seconds
        url = self._url(f"/api/parsing/job/{job_id}")

        while time.monotonic() < deadline:
            try:
                response = await self._client.get(url, headers=self._headers())
                response.raise_for_status()
                status = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                log.debug("parse_poll_retry", job_id=job_id, error=str(exc))
                await asyncio.sleep(self._settings.poll_interval_seconds)
                continue

            if not isinstance(status, dict):
                status = {}
            state = str(status.get("status", "")).upper()
            if state in _DONE_STATUSES:
                return status
            if state in _FAILED_STATUSES:
                raise DocumentParseError(
                    ParseErrorCode.API_ERROR,
                    f"Parse job failed: {status.get('error') or 'Unknown error'}",
                )
            await asyncio.sleep(self._settings.poll_interval_seconds)

        raise DocumentParseError(
            ParseErrorCode.TIMEOUT,
            f"Parse job timed out after {self._settings.timeout_seconds:g}s",
        )

    async def _fetch_result(self, job_id: str, result_format: str) -> str:
        url = self._url(f"/api/parsing/job/{job_id}/result/{result_format}")
        try:
            response = await self._client.get(url, headers=self._headers())
        except httpx.HTTPError as exc:
            raise DocumentParseError(ParseErrorCode.API_ERROR, f"Result fetch failed: {exc}") from exc
        if not response.is_success:
            raise DocumentParseError(
                ParseErrorCode.API_ERROR,
                f"Result fetch failed: {response.status_code} {response.reason_phrase}",
            )
        return response.text
