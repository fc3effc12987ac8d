"""Integration test fixtures.

Provides a fully wired AppState (built the same way the server lifespan
builds it) over in-memory SQLite. Canvas and every other upstream are
mocked with respx inside each test.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import aiosqlite
import pytest

from canvascontext.config import Settings
from canvascontext.files import FileReader
from canvascontext.indexer import CourseIndexer
from canvascontext.semantic import SemanticIndexer
from canvascontext.server import build_state

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from conftest import FakeEmbedder, FakeParser

    from canvascontext.state import AppState


def _test_settings() -> Settings:
    return Settings(
        canvas={"base_url": "https://canvas.test", "access_token": "test-token"},
        discovery={"rate_limit_delay_seconds": 0},
        file_cache={"sweep_enabled": False},
        embeddings={"api_key": ""},
        small_model={"api_key": ""},
        parser={"api_key": ""},
    )


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Baseline env dict for subprocess-based MCP integration tests.

    Overrides any local canvascontext.yaml by pointing the embedding store at
    an isolated tmp directory and Canvas at an address that refuses
    connections.
    """
    env = os.environ.copy()
    env["CANVASCONTEXT__EMBEDDINGS__DB_PATH"] = str(tmp_path / "embeddings.db")
    env["CANVASCONTEXT__CANVAS__BASE_URL"] = "http://127.0.0.1:1"
    env["CANVASCONTEXT__CANVAS__ACCESS_TOKEN"] = "test-token"
    env["CANVASCONTEXT__FILE_CACHE__SWEEP_ENABLED"] = "false"
    return env


@pytest.fixture()
async def app_state() -> AsyncGenerator[AppState, None]:
    """AppState with every optional service (parser, embeddings, small model) disabled."""
    async with aiosqlite.connect(":memory:") as db:
        state = await build_state(_test_settings(), db)
        yield state
        await state.http_client.aclose()


@pytest.fixture()
def enriched_state(
    app_state: AppState, embedder: FakeEmbedder, fake_parser: FakeParser
) -> AppState:
    """app_state with the fake parser and embedder swapped in."""
    app_state.parser = fake_parser
    app_state.file_reader = FileReader(app_state.canvas, app_state.file_cache, fake_parser)
    app_state.semantic = SemanticIndexer(app_state.store, embedder, chunk_size=64, overlap=16)
    app_state.indexer = CourseIndexer(
        app_state.canvas, app_state.semantic, app_state.store, app_state.file_reader
    )
    return app_state
