"""Cached file reading.

Looks the file up, consults the file content cache, and only on a miss
downloads the file and hands it to the document parser. Oversized or
unparseable files are declined rather than raised; the result still carries
the file's Canvas URL so the caller can link to the original.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

import structlog

from canvascontext.errors import CanvasRequestError, DocumentParseError
from canvascontext.file_cache import compress_to_preview, make_cache_key
from canvascontext.models.cache import FileReadResult
from canvascontext.models.canvas import Found, NotFound

if TYPE_CHECKING:
    from canvascontext.canvas import CanvasClient
    from canvascontext.file_cache import FileContentCache
    from canvascontext.models.canvas import CanvasFile
    from canvascontext.protocols import DocumentParserProtocol

log = structlog.get_logger()

ReadMode = Literal["preview", "full"]

_TEXT_CONTENT_TYPES = ("text/plain", "text/markdown", "text/csv")


def _is_plain_text(meta: CanvasFile) -> bool:
    return (meta.content_type or "").split(";")[0].strip() in _TEXT_CONTENT_TYPES


class FileReader:
    def __init__(
        self,
        canvas: CanvasClient,
        cache: FileContentCache,
        parser: DocumentParserProtocol,
        *,
        default_format: str = "markdown",
    ) -> None:
        self._canvas = canvas
        self._cache = cache
        self._parser = parser
        self._default_format = default_format

    async def read(
        self,
        file_id: str,
        mode: ReadMode = "preview",
        result_format: str | None = None,
    ) -> FileReadResult:
        fmt = result_format or self._default_format
        web_url = self._canvas.web_url(f"/files/{file_id}")
        base = {"file_id": file_id, "url": web_url, "mode": mode, "format": fmt}
        log_ = log.bind(file_id=file_id, mode=mode, format=fmt)

        lookup = await self._canvas.get_file(file_id)
        if not isinstance(lookup, Found):
            reason = (
                "File not found"
                if isinstance(lookup, NotFound)
                else f"File metadata restricted ({lookup.status_code}: {lookup.message})"
            )
            log_.info("file_read_declined", reason=reason)
            return FileReadResult(**base, declined=True, decline_reason=reason)

        meta = lookup.value
        base["file_name"] = meta.name
        tag = meta.updated_at or meta.modified_at
        key = make_cache_key(file_id, tag, meta.size, fmt)

        # Cache check
        entry = self._cache.get(key)
        if entry is not None:
            needs_revalidation = self._cache.should_revalidate(entry)
            log_.info("file_cache_hit", needs_revalidation=needs_revalidation)
            content = entry.full_content if mode == "full" else entry.preview
            return FileReadResult(
                **base,
                content=content,
                content_length=len(entry.full_content),
                cached=True,
                needs_revalidation=needs_revalidation,
                parse_time_ms=entry.parse_time_ms,
            )

        # Cache miss: refuse early when the parser would decline anyway
        plain_text = _is_plain_text(meta)
        if not plain_text:
            try:
                self._parser.validate(meta.name, meta.size or 0)
            except DocumentParseError as exc:
                log_.info("file_read_declined", code=exc.code, reason=exc.message)
                return FileReadResult(
                    **base, declined=True, decline_reason=f"{exc.code}: {exc.message}"
                )

        if not meta.url:
            return FileReadResult(**base, declined=True, decline_reason="No download URL available")

        try:
            data = await self._canvas.get_bytes(meta.url)
        except CanvasRequestError as exc:
            log_.warning("file_download_failed", status_code=exc.status_code)
            return FileReadResult(
                **base, declined=True, decline_reason=f"Download failed: {exc.message}"
            )

        parse_time_ms = 0.0
        if plain_text:
            content = data.decode("utf-8", errors="replace")
        else:
            try:
                parsed = await self._parser.parse(data, meta.name, fmt)
            except DocumentParseError as exc:
                return FileReadResult(
                    **base, declined=True, decline_reason=f"{exc.code}: {exc.message}"
                )
            content = parsed.content
            parse_time_ms = parsed.parse_time_ms

        stored = self._cache.put(
            key,
            content,
            revalidation_tag=tag,
            size_hint=meta.size,
            parse_time_ms=parse_time_ms,
            result_format=fmt,
        )
        if not stored:
            log_.info("file_not_cached", size=len(content))

        if mode == "preview":
            content_out = compress_to_preview(content, self._cache.preview_max_chars)
        else:
            content_out = content
        return FileReadResult(
            **base,
            content=content_out,
            content_length=len(content),
            cached=False,
            stored_in_cache=stored,
            parse_time_ms=parse_time_ms,
        )
