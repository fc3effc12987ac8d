"""Unit tests for canvascontext.file_cache."""

from __future__ import annotations

from typing import TYPE_CHECKING

from canvascontext.config import FileCacheSettings
from canvascontext.file_cache import (
    TRUNCATION_NOTICE,
    FileContentCache,
    compress_to_preview,
    make_cache_key,
)

if TYPE_CHECKING:
    from conftest import FakeClock


def _cache(clock: FakeClock, **overrides: object) -> FileContentCache:
    settings = FileCacheSettings(sweep_enabled=False, **overrides)
    return FileContentCache(settings, clock=clock)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestMakeCacheKey:
    def test_all_parts(self) -> None:
        assert make_cache_key("555", "2026-01-01T00:00:00Z", 1024, "text") == (
            "555-2026-01-01T00:00:00Z-1024-text"
        )

    def test_missing_tag_and_size(self) -> None:
        assert make_cache_key("555") == "555-none-0-markdown"

    def test_format_distinguishes_entries(self) -> None:
        assert make_cache_key("1", "t", 1, "markdown") != make_cache_key("1", "t", 1, "json")


class TestCompressToPreview:
    def test_short_content_unchanged(self) -> None:
        assert compress_to_preview("short text", 100) == "short text"

    def test_whitespace_collapse_can_avoid_truncation(self) -> None:
        content = "a" + "\n" * 50 + "b" + " " * 50 + "c"
        preview = compress_to_preview(content, 60)
        assert preview == "a\n\nb c"

    def test_prefers_paragraph_boundary(self) -> None:
        first = "x" * 800
        content = first + "\n\n" + "y" * 2000
        preview = compress_to_preview(content, 1000)
        assert preview == first + TRUNCATION_NOTICE

    def test_falls_back_to_sentence_boundary(self) -> None:
        first = "word " * 180 + "end. "
        content = first + "z" * 2000
        preview = compress_to_preview(content, 1000)
        assert preview.endswith("end." + TRUNCATION_NOTICE)

    def test_hard_cut_when_no_boundary(self) -> None:
        preview = compress_to_preview("q" * 5000, 1000)
        assert preview == "q" * 950 + TRUNCATION_NOTICE

    def test_preview_is_bounded(self) -> None:
        preview = compress_to_preview("lorem ipsum. " * 1000, 1500)
        assert len(preview) <= 1500 + len(TRUNCATION_NOTICE)


# ---------------------------------------------------------------------------
# FileContentCache
# ---------------------------------------------------------------------------


class TestFileContentCache:
    def test_put_and_get(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        assert cache.put("k", "full content", revalidation_tag="t", size_hint=12)
        entry = cache.get("k")
        assert entry is not None
        assert entry.full_content == "full content"
        assert entry.preview == "full content"
        assert entry.revalidation_tag == "t"
        assert entry.cached_at == clock()

    def test_get_stamps_access_time(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        cache.put("k", "c")
        clock.advance(minutes=5)
        entry = cache.get("k")
        assert entry is not None
        assert entry.last_accessed_at == clock()
        assert entry.cached_at < entry.last_accessed_at

    def test_lru_holds_exactly_max_entries(self, clock: FakeClock) -> None:
        cache = _cache(clock, max_entries=3)
        for i in range(3):
            cache.put(f"k{i}", f"content {i}")
            clock.advance(seconds=1)
        # Touch k0 so k1 becomes least recently used
        cache.get("k0")
        clock.advance(seconds=1)

        cache.put("k3", "content 3")
        assert len(cache) == 3
        assert "k1" not in cache
        assert all(key in cache for key in ("k0", "k2", "k3"))

        for i in range(4, 20):
            clock.advance(seconds=1)
            cache.put(f"k{i}", "x")
            assert len(cache) == 3

    def test_overwrite_does_not_evict(self, clock: FakeClock) -> None:
        cache = _cache(clock, max_entries=2)
        cache.put("a", "1")
        cache.put("b", "2")
        cache.put("a", "updated")
        assert len(cache) == 2
        assert "b" in cache

    def test_ttl_expiry_on_read(self, clock: FakeClock) -> None:
        cache = _cache(clock, ttl_hours=24)
        cache.put("k", "c")
        clock.advance(hours=24, seconds=1)
        assert cache.get("k") is None
        assert "k" not in cache

    def test_revalidation_window(self, clock: FakeClock) -> None:
        cache = _cache(clock, revalidate_after_hours=6)
        cache.put("k", "c")
        clock.advance(hours=5)
        entry = cache.get("k")
        assert entry is not None
        assert cache.should_revalidate(entry) is False
        clock.advance(hours=2)
        entry = cache.get("k")
        assert entry is not None
        assert cache.should_revalidate(entry) is True

    def test_oversized_content_is_declined(self, clock: FakeClock) -> None:
        cache = _cache(clock, max_content_size=10)
        assert cache.put("k", "x" * 11) is False
        assert len(cache) == 0

    def test_disabled_cache(self, clock: FakeClock) -> None:
        cache = _cache(clock, enabled=False)
        assert cache.put("k", "c") is False
        assert cache.get("k") is None

    def test_preview_uses_configured_limit(self, clock: FakeClock) -> None:
        cache = _cache(clock, preview_max_chars=100)
        cache.put("k", "z" * 500)
        entry = cache.get("k")
        assert entry is not None
        assert entry.preview.endswith(TRUNCATION_NOTICE)
        assert len(entry.full_content) == 500

    def test_clear_by_file_id_drops_all_versions(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        cache.put(make_cache_key("5", "a", 1, "markdown"), "c")
        cache.put(make_cache_key("5", "b", 1, "text"), "c")
        cache.put(make_cache_key("55", "a", 1, "markdown"), "c")
        assert cache.clear("5") == 2
        assert len(cache) == 1

    def test_clear_all(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        cache.put("a", "1")
        cache.put("b", "2")
        assert cache.clear() == 2
        assert len(cache) == 0

    def test_sweep_expired(self, clock: FakeClock) -> None:
        cache = _cache(clock, ttl_hours=1)
        cache.put("old", "c")
        clock.advance(minutes=90)
        cache.put("new", "c")
        assert cache.sweep_expired() == 1
        assert "new" in cache
        assert "old" not in cache

    def test_evict_oldest_on_empty(self, clock: FakeClock) -> None:
        assert _cache(clock).evict_oldest() is None

    def test_stats(self, clock: FakeClock) -> None:
        cache = _cache(clock, max_entries=7)
        cache.put("a", "1234")
        stats = cache.stats()
        assert stats.entry_count == 1
        assert stats.max_entries == 7
        assert stats.total_chars == 8
        assert stats.oldest_cached_at == clock()


class TestLifecycle:
    async def test_start_and_shutdown(self, clock: FakeClock) -> None:
        cache = FileContentCache(FileCacheSettings(sweep_interval_seconds=3600), clock=clock)
        cache.start()
        assert cache._sweep_task is not None
        await cache.shutdown()
        assert cache._sweep_task is None

    async def test_start_respects_disabled_sweep(self, clock: FakeClock) -> None:
        cache = _cache(clock)
        cache.start()
        assert cache._sweep_task is None
        await cache.shutdown()
