from __future__ import annotations

from canvascontext.models.assistant import IntentClassification, RerankCandidate, RerankResult
from canvascontext.models.cache import FileCacheEntry, FileCacheStats, FileReadResult
from canvascontext.models.canvas import (
    Assignment,
    CanvasFile,
    CanvasPage,
    CanvasTab,
    CanvasUrlInfo,
    Course,
    Found,
    NotFound,
    Restricted,
)
from canvascontext.models.discovery import (
    CourseAPIAvailability,
    CourseContentIndex,
    DiscoveredFile,
    DiscoveredLink,
    DiscoveredPage,
    DiscoveryOptions,
    DiscoveryResult,
    EndpointProbe,
    ExtractionOptions,
    ExtractionResult,
    ProbeResult,
    SearchResults,
)
from canvascontext.models.embeddings import ChunkMatch, EmbeddingChunk, IndexSource

__all__ = [
    # canvas
    "Course",
    "CanvasFile",
    "CanvasPage",
    "CanvasTab",
    "Assignment",
    "CanvasUrlInfo",
    "Found",
    "NotFound",
    "Restricted",
    # discovery
    "EndpointProbe",
    "CourseAPIAvailability",
    "ProbeResult",
    "DiscoveredPage",
    "DiscoveredFile",
    "DiscoveredLink",
    "DiscoveryOptions",
    "DiscoveryResult",
    "CourseContentIndex",
    "ExtractionOptions",
    "ExtractionResult",
    "SearchResults",
    # cache
    "FileCacheEntry",
    "FileCacheStats",
    "FileReadResult",
    # assistant
    "IntentClassification",
    "RerankCandidate",
    "RerankResult",
    # embeddings
    "IndexSource",
    "EmbeddingChunk",
    "ChunkMatch",
]
