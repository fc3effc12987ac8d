"""Small-model intent classification and candidate reranking.

Both operations call an OpenAI-compatible chat completions endpoint
(OpenRouter by default) and cache results in-process for
``cache_ttl_seconds``. Neither ever raises to its caller: missing
credentials, transport errors, non-2xx replies and unparseable JSON all
degrade to a deterministic keyword/insertion-order fallback, which is cached
like a real answer.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import TypeAdapter, ValidationError

from canvascontext.errors import SmallModelError
from canvascontext.models.assistant import IntentClassification, RerankResult

if TYPE_CHECKING:
    from canvascontext.config import SmallModelSettings
    from canvascontext.models.assistant import RerankCandidate

log = structlog.get_logger()

FALLBACK_REASONING = "fallback due to API error"
FALLBACK_CONFIDENCE = 0.3

_KEYWORD_FLAGS: dict[str, tuple[str, ...]] = {
    "assignments": ("assignment", "homework", "due"),
    "discussions": ("discussion", "forum"),
    "grades": ("grade", "score"),
    "calendar": ("due", "schedule"),
}

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")
_RERANK_ADAPTER = TypeAdapter(list[RerankResult])

_INTENT_PROMPT = """\
Analyze this Canvas LMS search query and determine what types of content the user is looking for.

Query: "{query}"

Respond with a JSON object indicating which content types are relevant (true/false) and your confidence:

{{
  "files": boolean,          // Looking for documents, slides, PDFs, images, etc.
  "pages": boolean,          // Looking for course pages, reading materials, etc.
  "assignments": boolean,    // Looking for homework, projects, submissions, etc.
  "discussions": boolean,    // Looking for forum posts, Q&A, conversations, etc.
  "grades": boolean,         // Looking for scores, feedback, gradebook, etc.
  "calendar": boolean,       // Looking for due dates, schedule, events, etc.
  "confidence": number,      // 0.0-1.0 how confident you are
  "reasoning": string        // Brief explanation of your classification
}}

Examples:
- "find homework 3 files" -> files=true, assignments=true
- "what's due this week" -> assignments=true, calendar=true
- "lecture slides uncertainty" -> files=true, pages=true
- "discussion about quantum" -> discussions=true, pages=true
- "my grade on midterm" -> grades=true, assignments=true

Respond only with valid JSON."""

_RERANK_PROMPT = """\
Rank these Canvas LMS search results by relevance to the user's query. \
Return the top {top_k} most relevant items.

Query: "{query}"

Candidates:
{candidates}

Analyze each candidate and respond with a JSON array of the top {top_k} most relevant results:

[
  {{
    "id": "candidate_id",
    "score": number,     // 0.0-1.0 relevance score
    "reasoning": string  // Brief explanation why this is relevant
  }}
]

Consider:
- Direct keyword matches in title/content
- Semantic similarity to query intent
- Source relevance (e.g., lecture slides for "lecture" queries)
- Content type appropriateness

Respond only with valid JSON array."""


def fallback_intent(query: str) -> IntentClassification:
    """Keyword heuristic used whenever the model can't answer."""
    lowered = query.lower()
    flags = {
        name: any(word in lowered for word in words) for name, words in _KEYWORD_FLAGS.items()
    }
    return IntentClassification(
        files=True,
        pages=True,
        **flags,
        confidence=FALLBACK_CONFIDENCE,
        reasoning=FALLBACK_REASONING,
    )


def default_ranking(
    candidates: list[RerankCandidate], reasoning: str, limit: int | None = None
) -> list[RerankResult]:
    """Insertion order with scores 1.0, 0.9, 0.8 and so on."""
    selected = candidates if limit is None else candidates[:limit]
    return [
        RerankResult(candidate_id=c.id, score=round(1.0 - i * 0.1, 10), reasoning=reasoning)
        for i, c in enumerate(selected)
    ]


def _strip_code_fence(text: str) -> str:
    return _CODE_FENCE_RE.sub("", text.strip())


def _format_candidates(candidates: list[RerankCandidate]) -> str:
    blocks = []
    for i, c in enumerate(candidates, start=1):
        lines = [f"{i}. ID: {c.id}", f"   Type: {c.type}", f"   Title: {c.title}", f"   Source: {c.source}"]
        if c.snippet:
            lines.append(f"   Snippet: {c.snippet[:200]}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


class SmallModelAssistant:
    """Cached intent classifier and reranker backed by a small chat model."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: SmallModelSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._settings = settings
        self._clock = clock
        self._intent_cache: dict[str, tuple[float, IntentClassification]] = {}
        self._rerank_cache: dict[str, tuple[float, list[RerankResult]]] = {}

    @property
    def enabled(self) -> bool:
        return self._settings.enabled and bool(self._settings.api_key.get_secret_value())

    # ------------------------------------------------------------------
    # Intent
    # ------------------------------------------------------------------

    async def classify_intent(
        self, query: str, course_id: str | None = None
    ) -> IntentClassification:
        key = f"intent_{course_id or 'global'}_{query.lower().strip()}"
        cached = self._cache_get(self._intent_cache, key)
        if cached is not None:
            log.debug("intent_cache_hit", query=query)
            return cached

        try:
            reply = await self._complete(_INTENT_PROMPT.format(query=query))
            intent = IntentClassification.model_validate_json(_strip_code_fence(reply))
        except (SmallModelError, ValidationError) as exc:
            log.warning("intent_classification_fallback", query=query, error=str(exc))
            intent = fallback_intent(query)
        else:
            log.info(
                "intent_classified",
                categories=intent.active_categories(),
                confidence=intent.confidence,
            )

        self._intent_cache[key] = (self._clock(), intent)
        return intent

    # ------------------------------------------------------------------
    # Rerank
    # ------------------------------------------------------------------

    async def rerank(
        self, query: str, candidates: list[RerankCandidate], top_k: int = 5
    ) -> list[RerankResult]:
        """Order *candidates* by relevance to *query*, keeping at most *top_k*.

        Sets no larger than ``max(min_rerank_candidates, top_k)`` are returned
        whole with default descending scores and no model call.
        """
        if not candidates:
            return []
        if len(candidates) <= max(self._settings.min_rerank_candidates, top_k):
            return default_ranking(candidates, "All candidates returned due to low count")

        pairs = "|".join(f"{c.id}:{c.title}" for c in candidates)
        key = f"rerank_{query.lower().strip()}_{pairs}"
        cached = self._cache_get(self._rerank_cache, key)
        if cached is not None:
            log.debug("rerank_cache_hit", query=query)
            return cached[:top_k]

        prompt = _RERANK_PROMPT.format(
            query=query, top_k=top_k, candidates=_format_candidates(candidates)
        )
        try:
            reply = await self._complete(prompt)
            ranked = _RERANK_ADAPTER.validate_json(_strip_code_fence(reply))
        except (SmallModelError, ValidationError) as exc:
            log.warning("rerank_fallback", query=query, error=str(exc))
            results = default_ranking(candidates, FALLBACK_REASONING, top_k)
        else:
            known = {c.id for c in candidates}
            results = [r for r in ranked if r.candidate_id in known][:top_k]
            log.info("candidates_reranked", candidates=len(candidates), kept=len(results))

        self._rerank_cache[key] = (self._clock(), results)
        return results

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> dict[str, int]:
        counts = {
            "intent_cleared": len(self._intent_cache),
            "rerank_cleared": len(self._rerank_cache),
        }
        self._intent_cache.clear()
        self._rerank_cache.clear()
        log.info("small_model_cache_cleared", **counts)
        return counts

    def stats(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "model": self._settings.model,
            "intent_cache_size": len(self._intent_cache),
            "rerank_cache_size": len(self._rerank_cache),
        }

    def _cache_get(self, cache: dict[str, tuple[float, Any]], key: str) -> Any:
        hit = cache.get(key)
        if hit is None:
            return None
        stored_at, value = hit
        if self._clock() - stored_at >= self._settings.cache_ttl_seconds:
            del cache[key]
            return None
        return value

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _complete(self, prompt: str) -> str:
        """Send one user message and return the reply text.

        Retries ``max_retries`` times with exponential backoff (1s, 2s, ...).
        """
        if not self.enabled:
            raise SmallModelError("Small model disabled or API key missing")

        url = f"{self._settings.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._settings.api_key.get_secret_value()}",
            "HTTP-Referer": "https://canvascontext.local",
            "X-Title": "canvascontext",
        }
        body = {
            "model": self._settings.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.1,
            "max_tokens": 1000,
            "top_p": 0.95,
        }

        last_error = ""
        for attempt in range(self._settings.max_retries + 1):
            try:
                response = await self._client.post(
                    url, json=body, headers=headers, timeout=self._settings.timeout_seconds
                )
                response.raise_for_status()
                return _reply_text(response.json())
            except (httpx.HTTPError, ValueError, SmallModelError) as exc:
                last_error = str(exc) or type(exc).__name__
                log.debug("small_model_attempt_failed", attempt=attempt + 1, error=last_error)
                if attempt < self._settings.max_retries:
                    await asyncio.sleep(2**attempt)

        raise SmallModelError(
            f"Small model failed after {self._settings.max_retries + 1} attempts: {last_error}"
        )


def _reply_text(payload: Any) -> str:
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise SmallModelError("Invalid response format from small model") from exc
    if not isinstance(content, str):
        raise SmallModelError("Small model reply carried no text")
    return content.strip()
