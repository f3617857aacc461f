"""
Yellowbook Celery Task Definitions

Consumer side of the embedding pipeline.

Tasks:
    generate_listing_embedding: Embed one listing for one job
    embed_missing_listings: Periodic backfill of listings with no embedding
    fail_stale_jobs: Periodic sweep of jobs stuck in 'active'

Pipeline Steps (run_embedding_job):
    1. Mark job active, count the attempt (10%)
    2. Fetch the listing (30%)
    3. Build the embedding text (50%)
    4. Call the embedding provider (80%)
    5. Persist the vector if the embedded fields are unchanged since step 2 (100%)

Failure policy:
    EMBEDDING_JOB_MAX_RETRIES total attempts, exponential backoff starting at
    EMBEDDING_JOB_BACKOFF_SECONDS. Exhausted jobs stay in 'failed'.
"""

import functools
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from yellowbook.cache.redis_cache import SEARCH_CACHE_PREFIX, get_cache_client, invalidate_prefix
from yellowbook.celery_app import celery
from yellowbook.config import settings
from yellowbook.db.models import EmbeddingJob, Listing
from yellowbook.db.session import SessionLocal
from yellowbook.jobs import store
from yellowbook.jobs.queue import EmbeddingJobQueue
from yellowbook.search.embeddings import (
    build_listing_embedding_text,
    embed_single,
    encode_embedding,
    get_embedding_client,
)

logger = structlog.get_logger(__name__)

PROGRESS_STARTED = 10
PROGRESS_FETCHED = 30
PROGRESS_TEXT_READY = 50
PROGRESS_EMBEDDED = 80

STALE_ACTIVE_SECONDS = 1800


class JobNotFound(LookupError):
    """Raised when a task is handed a job id with no row."""


class ListingNotFound(LookupError):
    """Raised when a job's listing was deleted before it ran."""


def compute_backoff(attempts_made: int, base_seconds: Optional[float] = None) -> float:
    """Delay before the next attempt: base, 2x base, 4x base..."""
    base = settings.EMBEDDING_JOB_BACKOFF_SECONDS if base_seconds is None else base_seconds
    return base * (2 ** max(attempts_made - 1, 0))


def _embedded_field_conditions(listing: Listing) -> list:
    """WHERE clauses matching the fields the embedding text was built from."""
    conditions = [
        Listing.name == listing.name,
        Listing.category == listing.category,
        Listing.address == listing.address,
    ]
    if listing.description is None:
        conditions.append(Listing.description.is_(None))
    else:
        conditions.append(Listing.description == listing.description)
    return conditions


def run_embedding_job(
    job_id: str,
    db: Session,
    embedding_client,
    cache_client=None,
) -> dict[str, Any]:
    """
    Execute one attempt of an embedding job.

    Jobs already in a terminal state are returned unchanged, so a redelivered
    message is harmless.

    Returns:
        The job result: ``{outcome, businessId, dimensions}``; ``outcome`` is
        ``"stale"`` when the listing changed during the attempt and the
        vector was discarded.

    Raises:
        JobNotFound, ListingNotFound, EmbeddingUnavailable, openai errors,
        SQLAlchemy errors. The caller decides whether to retry.
    """
    log = logger.bind(job_id=job_id)

    job = store.get_job(db, job_id)
    if job is None:
        raise JobNotFound(f"Embedding job {job_id} not found")
    if job.state in ("completed", "failed"):
        log.info("embedding_job_already_finished", state=job.state)
        return job.result or {"outcome": job.state, "businessId": job.listing_id}

    store.mark_active(db, job, PROGRESS_STARTED)
    log = log.bind(listing_id=job.listing_id, attempt=job.attempts_made)

    listing = db.get(Listing, job.listing_id)
    if listing is None:
        raise ListingNotFound(f"Business {job.listing_id} not found")
    embedded_snapshot = _embedded_field_conditions(listing)
    store.set_progress(db, job, PROGRESS_FETCHED)

    text = build_listing_embedding_text(listing)
    store.set_progress(db, job, PROGRESS_TEXT_READY)

    vector = embed_single(text, embedding_client)
    store.set_progress(db, job, PROGRESS_EMBEDDED)

    # Edits to other columns (phone, rating, ...) do not invalidate the vector
    written = db.execute(
        update(Listing)
        .where(Listing.id == job.listing_id)
        .where(*embedded_snapshot)
        .values(embedding=encode_embedding(vector), updated_at=Listing.updated_at)
        .execution_options(synchronize_session=False)
    ).rowcount
    result = {
        "outcome": "success" if written else "stale",
        "businessId": job.listing_id,
        "dimensions": len(vector),
    }
    store.mark_completed(db, job, result)

    if written:
        invalidate_prefix(SEARCH_CACHE_PREFIX, cache_client)
        log.info("embedding_persisted", dimensions=len(vector), text_length=len(text))
    else:
        log.warning("embedding_discarded_listing_changed")

    store.prune_completed_jobs(db, settings.EMBEDDING_JOB_KEEP_COMPLETED)
    return result


def record_job_failure(db: Session, job_id: str, error: BaseException) -> Optional[float]:
    """
    Record a failed attempt.

    Returns:
        Seconds to wait before the next attempt, or ``None`` when the job is
        now terminally failed (or no longer exists).
    """
    job = store.get_job(db, job_id)
    if job is None:
        return None

    reason = str(error) or type(error).__name__
    if job.attempts_made < job.max_retries:
        delay = compute_backoff(job.attempts_made)
        store.mark_retrying(db, job, reason, delay)
        return delay

    store.mark_failed(db, job, reason)
    return None


@functools.lru_cache(maxsize=1)
def _worker_embedding_client():
    return get_embedding_client()


@functools.lru_cache(maxsize=1)
def _worker_cache_client():
    return get_cache_client()


def close_worker_clients() -> None:
    """Release the per-process clients created by the tasks."""
    if _worker_cache_client.cache_info().currsize:
        client = _worker_cache_client()
        if client is not None:
            client.close()
    if _worker_embedding_client.cache_info().currsize:
        client = _worker_embedding_client()
        if client is not None:
            client.close()
    _worker_cache_client.cache_clear()
    _worker_embedding_client.cache_clear()


@celery.task(
    name="yellowbook.jobs.tasks.generate_listing_embedding",
    bind=True,
    max_retries=settings.EMBEDDING_JOB_MAX_RETRIES,
    acks_late=True,
)
def generate_listing_embedding(self, job_id: str) -> dict:
    """
    Embed the listing referenced by an ``embedding_jobs`` row.

    Args:
        self: Celery task instance (bound)
        job_id: Primary key of the job row (also the Celery task id)

    Returns:
        Dict with the job result
    """
    log = logger.bind(job_id=job_id, retries=self.request.retries)
    log.info("embedding_job_started")
    start_time = time.time()

    db = SessionLocal()
    try:
        result = run_embedding_job(
            job_id, db, _worker_embedding_client(), _worker_cache_client()
        )
        log.info(
            "embedding_job_completed",
            outcome=result.get("outcome"),
            elapsed_seconds=round(time.time() - start_time, 3),
        )
        return result

    except Exception as exc:
        db.rollback()
        countdown = record_job_failure(db, job_id, exc)
        if countdown is None:
            log.error(
                "embedding_job_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        log.warning(
            "embedding_job_retry_scheduled",
            countdown=countdown,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise self.retry(exc=exc, countdown=countdown)

    finally:
        db.close()


@celery.task(name="yellowbook.jobs.tasks.embed_missing_listings")
def embed_missing_listings() -> dict:
    """Periodic task: enqueue low-priority jobs for listings with no embedding."""
    log = logger.bind(task="embed_missing_listings")
    log.info("embed_missing_listings_started")

    db = SessionLocal()
    try:
        summary = EmbeddingJobQueue().enqueue_missing(db)
        summary.pop("jobs", None)
        return summary
    finally:
        db.close()


def fail_stale_active_jobs(db: Session, max_age_seconds: float = STALE_ACTIVE_SECONDS) -> int:
    """
    Mark jobs stuck in ``active`` longer than *max_age_seconds* as failed so
    they can be retried from the admin API. Returns the number marked.
    """
    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=max_age_seconds)
    stale = db.execute(
        select(EmbeddingJob)
        .where(EmbeddingJob.state == "active")
        .where(EmbeddingJob.processed_at < cutoff)
    ).scalars().all()

    for job in stale:
        logger.warning("stale_active_job_found", job_id=job.id, listing_id=job.listing_id)
        job.state = "failed"
        job.failed_reason = "Job marked as failed: exceeded running time limit"
        job.finished_at = now
    db.commit()
    return len(stale)


@celery.task(name="yellowbook.jobs.tasks.fail_stale_jobs")
def fail_stale_jobs() -> dict:
    """Periodic task wrapper around ``fail_stale_active_jobs``."""
    db = SessionLocal()
    try:
        count = fail_stale_active_jobs(db)
        logger.info("fail_stale_jobs_complete", stale_count=count)
        return {"stale_count": count}
    except Exception as exc:
        db.rollback()
        logger.error("fail_stale_jobs_failed", error=str(exc))
        raise
    finally:
        db.close()
