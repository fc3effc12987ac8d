"""Background scheduler coroutines."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from canvascontext.file_cache import FileContentCache

log = structlog.get_logger()


async def run_file_cache_sweeper(cache: FileContentCache, interval_seconds: float) -> None:
    """Remove expired file cache entries every ``interval_seconds``.

    Owned by the cache's lifecycle: started by ``FileContentCache.start`` and
    cancelled by ``FileContentCache.shutdown``.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            cache.sweep_expired()
        except Exception:
            log.warning("file_cache_sweep_error", exc_info=True)
