"""
Yellowbook Assistant Search

Answers a free-text question with the closest directory listings.

Modes:
    semantic — embed the query, rank stored listing embeddings by cosine
               similarity, keep scores above SEARCH_SIMILARITY_THRESHOLD,
               top SEARCH_TOP_K; responses are cached per literal query.
    demo     — no embedding provider configured: substring match over
               name/description/category with a fixed placeholder score and
               ``demoMode: true``. Never cached.

Rules:
    - Never log embedding vectors — only metadata
    - Empty results are a valid response
    - Cache failures fall through to recomputation
"""

import time
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from redis import Redis
from sqlalchemy.orm import Session

from yellowbook.cache.redis_cache import (
    SEARCH_CACHE_PREFIX,
    get_cached_json,
    make_cache_key,
    set_cached_json,
)
from yellowbook.config import settings
from yellowbook.db import dal
from yellowbook.search.embeddings import decode_embedding, embed_single
from yellowbook.search.similarity import cosine_similarity

logger = structlog.get_logger(__name__)


def compose_answer(query: str, results: list[dict[str, Any]]) -> str:
    """Short templated summary referencing the top result."""
    if not results:
        return (
            f'Sorry, I couldn\'t find any businesses matching "{query}". '
            "Try describing what you need in different words."
        )

    top = results[0]
    count = len(results)
    noun = "business" if count == 1 else "businesses"
    answer = (
        f'Based on your search for "{query}", I found {count} relevant {noun}. '
        f"The best match is {top['name']} ({top['category']}), located at {top['address']}"
    )
    if top.get("rating") is not None:
        answer += f" with a rating of {top['rating']:.1f}"
    return answer + "."


def rank_by_similarity(
    query_vector: list[float],
    candidates: list[tuple[dict[str, Any], str]],
    threshold: float,
    top_k: int,
) -> list[dict[str, Any]]:
    """
    Score each ``(listing, encoded_embedding)`` candidate against the query.

    Candidates with undecodable or differently sized embeddings are skipped.
    Only scores strictly above *threshold* are kept; the result is sorted by
    score descending and truncated to *top_k*.
    """
    scored: list[dict[str, Any]] = []
    skipped = 0

    for listing, raw in candidates:
        vector = decode_embedding(raw)
        if vector is None or len(vector) != len(query_vector):
            skipped += 1
            continue
        score = cosine_similarity(query_vector, vector)
        if score > threshold:
            scored.append({**listing, "score": round(score, 6)})

    if skipped:
        logger.warning("search_embeddings_skipped", skipped=skipped)

    scored.sort(key=lambda r: r["score"], reverse=True)
    return scored[:top_k]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def demo_search(query: str, db: Session) -> dict[str, Any]:
    """Substring fallback used when no embedding provider is configured."""
    listings = dal.search_listings_by_text(query, settings.SEARCH_TOP_K, db=db)
    results = [{**listing, "score": settings.SEARCH_DEMO_SCORE} for listing in listings]
    return {
        "query": query,
        "answer": compose_answer(query, results),
        "results": results,
        "cached": False,
        "timestamp": _timestamp(),
        "demoMode": True,
    }


def semantic_search(
    query: str,
    db: Session,
    embedding_client,
    cache_client: Optional[Redis] = None,
) -> dict[str, Any]:
    """
    Run the assistant search for *query*.

    Args:
        query: Stripped, non-empty question text.
        db: SQLAlchemy session.
        embedding_client: An openai.OpenAI client, or ``None`` for demo mode.
        cache_client: Optional Redis client for the answer cache.

    Returns:
        ``{query, answer, results, cached, timestamp}`` plus ``demoMode`` in
        demo mode. Each result is a listing payload with a ``score``.

    Raises:
        openai.APIError and subclasses on embedding failure.
        RuntimeError on database failure.
    """
    start_time = time.time()
    log = logger.bind(query=query[:100])

    if embedding_client is None:
        response = demo_search(query, db)
        log.info("search_demo_mode", result_count=len(response["results"]))
        return response

    cache_key = make_cache_key(SEARCH_CACHE_PREFIX, query)
    cached = get_cached_json(cache_key, cache_client)
    if cached is not None:
        log.info("search_cache_hit")
        return {**cached, "cached": True}

    query_vector = embed_single(query, embedding_client)
    candidates = dal.get_embedded_listings(db=db)
    results = rank_by_similarity(
        query_vector,
        candidates,
        threshold=settings.SEARCH_SIMILARITY_THRESHOLD,
        top_k=settings.SEARCH_TOP_K,
    )

    response = {
        "query": query,
        "answer": compose_answer(query, results),
        "results": results,
        "cached": False,
        "timestamp": _timestamp(),
    }
    set_cached_json(cache_key, response, cache_client, ttl_seconds=settings.SEARCH_CACHE_TTL_SECONDS)

    log.info(
        "search_complete",
        candidate_count=len(candidates),
        result_count=len(results),
        elapsed_seconds=round(time.time() - start_time, 3),
    )
    return response
