"""
Yellowbook Embedding Generation

Centralized module for all OpenAI embedding API calls and embedding text
construction. This is the only module that calls the embedding API.

Functions:
    get_embedding_client       — OpenAI client, or None when no key is configured
    build_listing_embedding_text — Build embeddable text from a listing
    embed_texts                — Batch-embed a list of texts via OpenAI API
    embed_single               — Convenience wrapper to embed one text
    encode_embedding / decode_embedding — TEXT column codec

Rules:
    - No DB access in this module — callers resolve DB data before calling
    - Never log embedding vectors — only metadata
    - Raise errors immediately — retry logic lives in the Celery task
"""

import json
import time
from typing import Any, Optional

import openai
import structlog

from yellowbook.config import settings

logger = structlog.get_logger(__name__)


class EmbeddingUnavailable(RuntimeError):
    """Raised when an embedding is requested but no provider is configured."""


def get_embedding_client() -> Optional[openai.OpenAI]:
    """
    Create an OpenAI client from settings.

    Returns ``None`` when OPENAI_API_KEY is unset; search then runs in demo
    mode and embedding jobs fail with ``EmbeddingUnavailable``.
    """
    if not settings.OPENAI_API_KEY:
        return None
    return openai.OpenAI(
        api_key=settings.OPENAI_API_KEY,
        timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
    )


def build_listing_embedding_text(listing: Any) -> str:
    """
    Build the text string to embed for a listing.

    Combines name, category, description and address with `` | ``;
    empty parts are dropped.

    Args:
        listing: A Listing ORM object (or anything with those attributes).
    """
    parts = [
        listing.name,
        listing.category,
        listing.description or "",
        listing.address,
    ]
    return " | ".join(p.strip() for p in parts if p and p.strip())


def embed_texts(texts: list[str], client) -> list[list[float]]:
    """
    Embed a list of texts using the OpenAI embedding API with batching.

    Splits texts into batches of settings.EMBEDDING_BATCH_SIZE and makes
    one API call per batch. Returns a flat list of embedding vectors in
    the same order as the input texts.

    Args:
        texts: List of strings to embed.
        client: An openai.OpenAI client instance, or ``None``.

    Returns:
        List of embedding vectors, same length and order as input texts.

    Raises:
        EmbeddingUnavailable: if *client* is ``None``.
        openai.APIError and subclasses on API failure — caller handles retries.
    """
    if not texts:
        return []
    if client is None:
        raise EmbeddingUnavailable("Embedding API key not configured")

    batch_size = settings.EMBEDDING_BATCH_SIZE
    all_embeddings: list[list[float]] = []
    total_tokens = 0
    start_time = time.time()

    for i in range(0, len(texts), batch_size):
        batch = texts[i : i + batch_size]

        response = client.embeddings.create(
            input=batch,
            model=settings.EMBEDDING_MODEL,
            dimensions=settings.EMBEDDING_DIMENSIONS,
        )

        # API returns items sorted by index
        batch_embeddings = [item.embedding for item in response.data]
        all_embeddings.extend(batch_embeddings)

        if response.usage:
            total_tokens += response.usage.total_tokens

    elapsed = time.time() - start_time

    logger.info(
        "embeddings_generated",
        text_count=len(texts),
        batch_count=(len(texts) + batch_size - 1) // batch_size,
        total_tokens=total_tokens,
        elapsed_seconds=round(elapsed, 3),
    )

    return all_embeddings


def embed_single(text: str, client) -> list[float]:
    """
    Embed a single text string. Convenience wrapper around embed_texts.

    Used at query time and by the per-listing worker.
    """
    return embed_texts([text], client)[0]


def encode_embedding(vector: list[float]) -> str:
    """Serialize a vector for the ``listings.embedding`` TEXT column."""
    return json.dumps([float(v) for v in vector])


def decode_embedding(raw: Optional[str]) -> Optional[list[float]]:
    """
    Parse a stored embedding. Returns ``None`` for empty or malformed values.
    """
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(value, list) or not value:
        return None
    try:
        return [float(v) for v in value]
    except (TypeError, ValueError):
        return None
