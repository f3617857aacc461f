"""
Yellowbook Assistant Search — API Router

Endpoints:
  POST /api/ai/yellow-books/search — Semantic (or demo) search over listings
"""

from typing import Optional

import openai
import structlog
from fastapi import APIRouter, Depends, HTTPException
from redis import Redis
from sqlalchemy.orm import Session

from yellowbook.api.deps import get_cache_client_dep, get_embedding_client_dep
from yellowbook.db.session import get_db
from yellowbook.schemas import AISearchRequest
from yellowbook.search.semantic import semantic_search

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/ai", tags=["Assistant"])


@router.post("/yellow-books/search")
def search_yellow_books(
    request: AISearchRequest,
    db: Session = Depends(get_db),
    embedding_client=Depends(get_embedding_client_dep),
    cache_client: Optional[Redis] = Depends(get_cache_client_dep),
):
    """
    Answer a free-text question with up to three matching listings.

    Falls back to substring matching (``demoMode: true``) when no embedding
    provider is configured.
    """
    try:
        return semantic_search(request.query, db, embedding_client, cache_client)
    except openai.OpenAIError as e:
        log.error("ai_search_embedding_error", error_type=type(e).__name__, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to process search query")
    except RuntimeError as e:
        log.error("ai_search_error", error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")
