"""Application state container.

AppState is created once at server startup (inside the FastMCP lifespan context
manager) and injected into every tool handler via the MCP Context object. All
caches live here as explicit objects; no module holds global state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from canvascontext.assistant import SmallModelAssistant
    from canvascontext.canvas import CanvasClient
    from canvascontext.config import Settings
    from canvascontext.extraction import ExtractionOrchestrator
    from canvascontext.file_cache import FileContentCache
    from canvascontext.files import FileReader
    from canvascontext.index_cache import CourseIndexCache
    from canvascontext.indexer import CourseIndexer
    from canvascontext.protocols import DocumentParserProtocol
    from canvascontext.semantic import SemanticIndexer
    from canvascontext.store import EmbeddingStore


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every tool handler."""

    settings: Settings
    http_client: httpx.AsyncClient
    canvas: CanvasClient

    # Discovery tier
    index_cache: CourseIndexCache
    orchestrator: ExtractionOrchestrator

    # File tier
    file_cache: FileContentCache
    parser: DocumentParserProtocol
    file_reader: FileReader

    # Semantic tier
    store: EmbeddingStore
    semantic: SemanticIndexer
    indexer: CourseIndexer

    assistant: SmallModelAssistant
