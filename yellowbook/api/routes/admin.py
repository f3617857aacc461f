"""
Yellowbook Directory — Admin Router

Every endpoint requires a bearer credential for a user whose role is admin.

Endpoints:
  GET    /admin/users                     — List user accounts
  PATCH  /admin/users/{user_id}/role      — Change a user's role
  PATCH  /admin/yellow-books/{listing_id} — Edit a listing (re-embeds on text change)
  DELETE /admin/yellow-books/{listing_id} — Delete a listing
  POST   /admin/embeddings/bulk           — Enqueue embedding jobs for many listings
  GET    /admin/jobs                      — List embedding jobs
  GET    /admin/jobs/{job_id}             — Embedding job status
  POST   /admin/jobs/{job_id}/retry       — Re-run a failed job
  GET    /admin/stats                     — Dashboard counters
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from redis import Redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from yellowbook.api.auth import require_admin
from yellowbook.api.deps import get_cache_client_dep, get_job_queue
from yellowbook.cache.redis_cache import SEARCH_CACHE_PREFIX, invalidate_prefix
from yellowbook.db import dal
from yellowbook.db.models import User
from yellowbook.db.session import get_db
from yellowbook.jobs import store
from yellowbook.jobs.queue import EmbeddingJobQueue
from yellowbook.schemas import EMBEDDED_FIELDS, BulkEmbeddingRequest, ListingUpdate, RoleUpdate

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

INTERNAL_ERROR = "Internal server error"


def _server_error(event: str, exc: Exception, **context) -> HTTPException:
    log.error(event, error=str(exc), **context)
    return HTTPException(status_code=500, detail=INTERNAL_ERROR)


# ── Users ──────────────────────────────────────────────────────────────────

@router.get("/users")
def list_users(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """List every user account, newest first."""
    try:
        return dal.list_users(db=db)
    except RuntimeError as e:
        raise _server_error("list_users_error", e)


@router.patch("/users/{user_id}/role")
def update_user_role(
    user_id: str,
    request: RoleUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Set a user's role to ``user`` or ``admin``."""
    try:
        user = dal.update_user_role(user_id, request.role, db=db)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise _server_error("update_user_role_error", e, user_id=user_id)

    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    log.info("admin_role_changed", admin_id=admin.id, user_id=user_id, role=request.role)
    return user


# ── Listings ───────────────────────────────────────────────────────────────

@router.patch("/yellow-books/{listing_id}")
def update_yellow_book(
    listing_id: str,
    request: ListingUpdate,
    db: Session = Depends(get_db),
    queue: EmbeddingJobQueue = Depends(get_job_queue),
    admin: User = Depends(require_admin),
):
    """
    Apply a partial edit. When a field that feeds the embedding text
    changes, an ``update`` embedding job is enqueued.
    """
    changes = request.model_dump(exclude_unset=True)
    try:
        before = dal.get_listing(listing_id, db=db)
        if before is None:
            raise HTTPException(status_code=404, detail="Entry not found")
        listing = dal.update_listing(listing_id, changes, db=db)
    except RuntimeError as e:
        raise _server_error("update_listing_error", e, listing_id=listing_id)

    if listing is None:
        raise HTTPException(status_code=404, detail="Entry not found")

    text_changed = any(
        field in EMBEDDED_FIELDS and before.get(field) != value
        for field, value in changes.items()
    )
    if text_changed:
        try:
            listing["_embeddingJob"] = queue.enqueue(
                db,
                listing_id,
                "update",
                triggered_by=admin.id,
                source="admin",
                original_name=listing["name"],
            )
        except SQLAlchemyError as e:
            raise _server_error("update_listing_enqueue_error", e, listing_id=listing_id)
    return listing


@router.delete("/yellow-books/{listing_id}")
def delete_yellow_book(
    listing_id: str,
    db: Session = Depends(get_db),
    cache_client: Optional[Redis] = Depends(get_cache_client_dep),
    admin: User = Depends(require_admin),
):
    """Delete a listing and drop cached assistant answers."""
    try:
        deleted = dal.delete_listing(listing_id, db=db)
    except RuntimeError as e:
        raise _server_error("delete_listing_error", e, listing_id=listing_id)

    if not deleted:
        raise HTTPException(status_code=404, detail="Entry not found")

    invalidate_prefix(SEARCH_CACHE_PREFIX, cache_client)
    log.info("admin_listing_deleted", admin_id=admin.id, listing_id=listing_id)
    return {"message": "Business deleted successfully", "id": listing_id}


# ── Embedding jobs ─────────────────────────────────────────────────────────

@router.post("/embeddings/bulk", status_code=202)
def bulk_embeddings(
    request: BulkEmbeddingRequest,
    db: Session = Depends(get_db),
    queue: EmbeddingJobQueue = Depends(get_job_queue),
    admin: User = Depends(require_admin),
):
    """
    Enqueue one ``bulk`` job per listing id.

    Returns per-id acceptance: ``accepted`` with the job reference, or
    ``not_found`` for ids with no listing.
    """
    results = []
    for business_id in dict.fromkeys(request.business_ids):
        try:
            listing = dal.get_listing(business_id, db=db)
        except RuntimeError as e:
            raise _server_error("bulk_embeddings_error", e, listing_id=business_id)

        if listing is None:
            results.append({"businessId": business_id, "accepted": False, "reason": "not_found"})
            continue

        try:
            job = queue.enqueue(
                db,
                business_id,
                "bulk",
                triggered_by=admin.id,
                source="admin",
                original_name=listing["name"],
            )
        except SQLAlchemyError as e:
            raise _server_error("bulk_embeddings_error", e, listing_id=business_id)
        results.append({
            "businessId": business_id,
            "accepted": job["status"] != "failed",
            "job": job,
        })

    accepted = sum(1 for r in results if r["accepted"])
    log.info("admin_bulk_embeddings", admin_id=admin.id, requested=len(results), accepted=accepted)
    return {"total": len(results), "accepted": accepted, "results": results}


@router.get("/jobs")
def list_jobs(
    state: Optional[str] = Query(None, description="queued | active | completed | failed"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """List embedding jobs, newest first."""
    try:
        jobs, total = store.list_jobs(db, state=state, limit=limit, offset=offset)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError as e:
        raise _server_error("list_jobs_error", e, state=state)
    return {
        "jobs": [store.job_to_dict(j) for j in jobs],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/jobs/{job_id}")
def get_job_status(
    job_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Current state, progress, attempts and failure reason of a job."""
    try:
        job = store.get_job(db, job_id)
    except SQLAlchemyError as e:
        raise _server_error("get_job_error", e, job_id=job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return store.job_to_dict(job)


@router.post("/jobs/{job_id}/retry", status_code=202)
def retry_job(
    job_id: str,
    db: Session = Depends(get_db),
    queue: EmbeddingJobQueue = Depends(get_job_queue),
    admin: User = Depends(require_admin),
):
    """Enqueue a fresh attempt for a terminally failed job."""
    try:
        job = store.get_job(db, job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        ref = queue.retry(db, job, triggered_by=admin.id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError as e:
        raise _server_error("retry_job_error", e, job_id=job_id)

    log.info("admin_job_retried", admin_id=admin.id, job_id=job_id, new_job_id=ref["jobId"])
    return ref


# ── Dashboard ──────────────────────────────────────────────────────────────

@router.get("/stats")
def get_stats(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    """Counts of users, listings, admins and embedded listings."""
    try:
        return dal.count_stats(db=db)
    except RuntimeError as e:
        raise _server_error("count_stats_error", e)
