"""
Yellowbook Directory — Public Listing Router

Endpoints:
  GET    /yellow-books              — List listings (optional ?search=)
  GET    /yellow-books/{listing_id} — Get one listing
  POST   /yellow-books              — Create a listing and enqueue its embedding
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from yellowbook.api.deps import get_job_queue
from yellowbook.db import dal
from yellowbook.db.session import get_db
from yellowbook.jobs.queue import EmbeddingJobQueue
from yellowbook.schemas import ListingCreate

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/yellow-books", tags=["Listings"])

NOT_FOUND = "Entry not found"
INTERNAL_ERROR = "Internal server error"


# ── GET /yellow-books ──────────────────────────────────────────────────────

@router.get("")
def list_yellow_books(
    search: Optional[str] = Query(None, max_length=200, description="Substring filter"),
    db: Session = Depends(get_db),
):
    """List every listing, newest first."""
    try:
        return dal.list_listings(search, db=db)
    except RuntimeError as e:
        log.error("list_listings_error", error=str(e))
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR)


# ── GET /yellow-books/{listing_id} ─────────────────────────────────────────

@router.get("/{listing_id}")
def get_yellow_book(
    listing_id: str,
    db: Session = Depends(get_db),
):
    """Get one listing by id."""
    try:
        listing = dal.get_listing(listing_id, db=db)
    except RuntimeError as e:
        log.error("get_listing_error", listing_id=listing_id, error=str(e))
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR)

    if listing is None:
        raise HTTPException(status_code=404, detail=NOT_FOUND)
    return listing


# ── POST /yellow-books ─────────────────────────────────────────────────────

@router.post("", status_code=201)
def create_yellow_book(
    request: ListingCreate,
    db: Session = Depends(get_db),
    queue: EmbeddingJobQueue = Depends(get_job_queue),
):
    """
    Create a listing, then enqueue a high-priority embedding job for it.

    The listing is committed before the job is enqueued; a queue failure is
    reported in ``_embeddingJob`` and never undoes the listing.
    """
    try:
        listing = dal.create_listing(request.model_dump(), db=db)
    except RuntimeError as e:
        log.error("create_listing_error", error=str(e))
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR)

    try:
        job = queue.enqueue(
            db,
            listing["id"],
            "create",
            triggered_by="api",
            source="api",
            original_name=listing["name"],
        )
    except Exception as e:
        db.rollback()
        log.error("embedding_enqueue_error", listing_id=listing["id"], error=str(e))
        job = {"jobId": None, "status": "failed"}

    return JSONResponse(status_code=201, content={**listing, "_embeddingJob": job})
