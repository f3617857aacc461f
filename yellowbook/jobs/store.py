"""
Yellowbook Embedding Job Bookkeeping

Reads and writes ``embedding_jobs`` rows on behalf of the queue, the worker
and the admin API. Functions take the session as their first argument and
commit where they change state, so each state transition is visible to
pollers immediately.

Retention:
    - completed jobs: newest EMBEDDING_JOB_KEEP_COMPLETED kept
    - failed jobs: kept until an operator deletes them
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from yellowbook.db.dal import isoformat
from yellowbook.db.models import JOB_STATES, EmbeddingJob

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return f"emb-{uuid.uuid4().hex}"


def job_to_dict(job: EmbeddingJob) -> dict[str, Any]:
    """Status snapshot returned by the admin API."""
    return {
        "jobId": job.id,
        "businessId": job.listing_id,
        "operation": job.operation,
        "priority": job.priority,
        "state": job.state,
        "progress": job.progress,
        "attemptsMade": job.attempts_made,
        "maxRetries": job.max_retries,
        "failedReason": job.failed_reason,
        "result": job.result,
        "metadata": {
            "triggeredBy": job.triggered_by,
            "triggeredAt": isoformat(job.triggered_at),
            "source": job.source,
            "originalName": job.original_name,
        },
        "createdAt": isoformat(job.created_at),
        "processedAt": isoformat(job.processed_at),
        "finishedAt": isoformat(job.finished_at),
        "nextAttemptAt": isoformat(job.next_attempt_at),
    }


def create_job(
    db: Session,
    *,
    listing_id: str,
    operation: str,
    priority: str,
    max_retries: int,
    triggered_by: str,
    source: str,
    original_name: str,
) -> EmbeddingJob:
    """Insert a ``queued`` job row and commit."""
    job = EmbeddingJob(
        id=new_job_id(),
        listing_id=listing_id,
        operation=operation,
        priority=priority,
        state="queued",
        progress=0,
        attempts_made=0,
        max_retries=max_retries,
        triggered_by=triggered_by,
        triggered_at=_utcnow(),
        source=source,
        original_name=original_name,
    )
    db.add(job)
    db.commit()
    return job


def get_job(db: Session, job_id: str) -> Optional[EmbeddingJob]:
    return db.get(EmbeddingJob, job_id)


def find_queued_job(
    db: Session,
    listing_id: str,
    window_seconds: float,
) -> Optional[EmbeddingJob]:
    """
    Return the newest still-queued, never-attempted job for *listing_id*
    created within *window_seconds*, if any. Older queued rows are not
    trusted to still be on the broker; rows in retry backoff have a reduced
    attempt budget.
    """
    cutoff = _utcnow() - timedelta(seconds=window_seconds)
    stmt = (
        select(EmbeddingJob)
        .where(EmbeddingJob.listing_id == listing_id)
        .where(EmbeddingJob.state == "queued")
        .where(EmbeddingJob.attempts_made == 0)
        .where(EmbeddingJob.created_at >= cutoff)
        .order_by(EmbeddingJob.created_at.desc())
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none()


def list_jobs(
    db: Session,
    state: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[EmbeddingJob], int]:
    """Page through jobs newest first. Returns ``(jobs, total)``."""
    if state is not None and state not in JOB_STATES:
        raise ValueError(f"Invalid state filter. Must be one of: {', '.join(JOB_STATES)}")

    query = select(EmbeddingJob).order_by(EmbeddingJob.created_at.desc(), EmbeddingJob.id)
    count_query = select(func.count(EmbeddingJob.id))
    if state:
        query = query.where(EmbeddingJob.state == state)
        count_query = count_query.where(EmbeddingJob.state == state)

    total = db.execute(count_query).scalar() or 0
    jobs = db.execute(query.limit(limit).offset(offset)).scalars().all()
    return list(jobs), total


def mark_active(db: Session, job: EmbeddingJob, progress: int) -> None:
    """Start an attempt: bump the attempt counter and commit."""
    job.state = "active"
    job.attempts_made += 1
    job.progress = progress
    job.processed_at = _utcnow()
    job.next_attempt_at = None
    db.commit()


def set_progress(db: Session, job: EmbeddingJob, progress: int) -> None:
    job.progress = progress
    db.commit()


def mark_completed(db: Session, job: EmbeddingJob, result: dict[str, Any]) -> None:
    job.state = "completed"
    job.progress = 100
    job.result = result
    job.failed_reason = None
    job.finished_at = _utcnow()
    db.commit()


def mark_retrying(db: Session, job: EmbeddingJob, reason: str, delay_seconds: float) -> None:
    """Send a failed attempt back to ``queued`` until the backoff elapses."""
    job.state = "queued"
    job.failed_reason = reason
    job.next_attempt_at = _utcnow() + timedelta(seconds=delay_seconds)
    db.commit()


def mark_failed(db: Session, job: EmbeddingJob, reason: str) -> None:
    """Terminal failure; the row is retained for inspection."""
    job.state = "failed"
    job.failed_reason = reason
    job.next_attempt_at = None
    job.finished_at = _utcnow()
    db.commit()


def prune_completed_jobs(db: Session, keep: int) -> int:
    """
    Delete completed jobs beyond the newest *keep*. Failed jobs are never
    pruned. Returns the number of rows deleted.
    """
    newest = (
        select(EmbeddingJob.id)
        .where(EmbeddingJob.state == "completed")
        .order_by(EmbeddingJob.finished_at.desc(), EmbeddingJob.id.desc())
        .limit(keep)
    )
    keep_ids = set(db.execute(newest).scalars().all())

    stale = select(EmbeddingJob.id).where(EmbeddingJob.state == "completed")
    stale_ids = [job_id for job_id in db.execute(stale).scalars().all() if job_id not in keep_ids]
    if not stale_ids:
        return 0

    db.execute(delete(EmbeddingJob).where(EmbeddingJob.id.in_(stale_ids)))
    db.commit()
    logger.info("completed_jobs_pruned", deleted=len(stale_ids), keep=keep)
    return len(stale_ids)
