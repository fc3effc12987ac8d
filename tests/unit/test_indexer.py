"""Unit tests for the course indexing pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import respx

from canvascontext.files import FileReader
from canvascontext.indexer import CourseIndexer
from canvascontext.semantic import SemanticIndexer

if TYPE_CHECKING:
    from conftest import FakeEmbedder, FakeParser

    from canvascontext.canvas import CanvasClient
    from canvascontext.file_cache import FileContentCache
    from canvascontext.store import EmbeddingStore

HOST = "canvas.test"
DOWNLOAD_URL = "https://files.test/555/download"

COURSE = {
    "id": 1,
    "name": "Physics 101",
    "course_code": "PHYS101",
    "syllabus_body": "<p>Syllabus: exam policy and grading</p>",
}
FILE = {
    "id": 555,
    "display_name": "notes.pdf",
    "content-type": "application/pdf",
    "size": 2048,
    "url": DOWNLOAD_URL,
    "updated_at": "2026-01-01T00:00:00Z",
}


def _mock_course(*, files_status: int = 200) -> None:
    respx.get(host=HOST, path="/api/v1/courses").respond(200, json=[COURSE])
    respx.get(host=HOST, path="/api/v1/courses/1/assignments").respond(
        200,
        json=[
            {"id": 20, "name": "HW 1", "description": "<p>Homework on optics</p>"},
            {"id": 21, "name": "Quiz"},
        ],
    )
    if files_status == 200:
        respx.get(host=HOST, path="/api/v1/courses/1/files").respond(200, json=[FILE])
        respx.get(host=HOST, path="/api/v1/files/555").respond(200, json=FILE)
        respx.get(DOWNLOAD_URL).respond(200, content=b"%PDF-1.4")
    else:
        respx.get(host=HOST, path="/api/v1/courses/1/files").respond(
            files_status, json={"message": "unauthorized"}
        )


@pytest.fixture()
def course_indexer(
    canvas: CanvasClient,
    store: EmbeddingStore,
    embedder: FakeEmbedder,
    file_cache: FileContentCache,
    fake_parser: FakeParser,
) -> CourseIndexer:
    semantic = SemanticIndexer(store, embedder, chunk_size=64, overlap=16)
    return CourseIndexer(canvas, semantic, store, FileReader(canvas, file_cache, fake_parser))


class TestRun:
    @respx.mock
    async def test_indexes_syllabus_assignments_and_files(
        self, course_indexer: CourseIndexer, store: EmbeddingStore
    ) -> None:
        _mock_course()

        report = await course_indexer.run()

        assert report.skipped is False
        assert report.errors == []
        assert report.courses[0].name == "Physics 101"
        assert report.courses[0].assignments == 2
        assert report.courses[0].files == 1
        # Syllabus, the described assignment, and the parsed file
        assert report.reindexed[0].sources == 3
        assert await store.count_chunks("1") == report.reindexed[0].chunks
        assert await store.last_indexed_at("1") is not None

    @respx.mock
    async def test_fresh_index_is_skipped(self, course_indexer: CourseIndexer) -> None:
        _mock_course()
        await course_indexer.run()

        report = await course_indexer.run(max_age_hours=6)

        assert report.skipped is True
        assert report.skip_reason is not None
        assert report.skip_reason.startswith("Index is fresh")
        assert report.reindexed == []

    @respx.mock
    async def test_force_refresh_reindexes(
        self, course_indexer: CourseIndexer, store: EmbeddingStore
    ) -> None:
        _mock_course()
        first = await course_indexer.run()

        second = await course_indexer.run(force_refresh=True)

        assert second.skipped is False
        assert second.reindexed[0].deleted == first.reindexed[0].chunks
        assert await store.count_chunks("1") == second.reindexed[0].chunks

    @respx.mock
    async def test_course_listing_failure(self, course_indexer: CourseIndexer) -> None:
        respx.get(host=HOST, path="/api/v1/courses").respond(
            401, json={"errors": [{"message": "Invalid access token."}]}
        )
        report = await course_indexer.run()
        assert report.errors == ["Failed to list courses: Invalid access token."]
        assert report.reindexed == []

    @respx.mock
    async def test_file_listing_failure_keeps_other_sources(
        self, course_indexer: CourseIndexer
    ) -> None:
        _mock_course(files_status=403)

        report = await course_indexer.run()

        assert report.errors == ["Physics 101: failed to list files (unauthorized)"]
        assert report.courses[0].files == 0
        assert report.reindexed[0].sources == 2

    @respx.mock
    async def test_declined_file_is_skipped(
        self, course_indexer: CourseIndexer, fake_parser: FakeParser
    ) -> None:
        fake_parser.active = False
        _mock_course()

        report = await course_indexer.run()

        assert report.courses[0].files == 1
        assert report.reindexed[0].sources == 2

    @respx.mock
    async def test_failed_embeddings_leave_course_stale(
        self, course_indexer: CourseIndexer, store: EmbeddingStore, embedder: FakeEmbedder
    ) -> None:
        _mock_course()
        embedder.active = False

        first = await course_indexer.run()

        assert first.reindexed[0].chunks == 0
        assert len(first.reindexed[0].failed_sources) == 3
        assert first.errors == [
            "Physics 101: 3 source(s) failed to embed; course left stale for the next run"
        ]
        assert await store.last_indexed_at("1") is None

        embedder.active = True
        second = await course_indexer.run(max_age_hours=6)

        assert second.skipped is False
        assert second.reindexed[0].failed_sources == []
        assert await store.last_indexed_at("1") is not None

    @respx.mock
    async def test_partial_embedding_failure_is_retried(
        self, course_indexer: CourseIndexer, store: EmbeddingStore, embedder: FakeEmbedder
    ) -> None:
        _mock_course()
        embedder.fail_on = "optics"

        first = await course_indexer.run()

        assert first.reindexed[0].chunks > 0
        assert first.reindexed[0].failed_sources != []
        assert await store.last_indexed_at("1") is None

        embedder.fail_on = None
        second = await course_indexer.run(max_age_hours=6)
        assert second.skipped is False
