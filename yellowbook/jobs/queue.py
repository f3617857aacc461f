"""
Yellowbook Embedding Job Queue

Producer side of the embedding pipeline. A request handler calls
``EmbeddingJobQueue.enqueue`` after a listing write; the queue records an
``embedding_jobs`` row and dispatches the Celery task with a broker priority.

Priority policy:
    create  -> high
    update  -> normal
    retry   -> normal
    bulk    -> normal (admin) / low (scheduled backfill)

Dispatch failures never fail the caller: the job row is marked failed with
the broker error and can be retried from the admin API.
"""

from typing import Any, Optional

import structlog
from sqlalchemy.orm import Session

from yellowbook.celery_app import PRIORITY_LEVELS
from yellowbook.config import settings
from yellowbook.db import dal
from yellowbook.db.models import JOB_OPERATIONS, EmbeddingJob
from yellowbook.jobs import store

logger = structlog.get_logger(__name__)

OPERATION_PRIORITY = {"create": "high", "update": "normal", "bulk": "normal", "retry": "normal"}


def default_priority(operation: str) -> str:
    if operation not in JOB_OPERATIONS:
        raise ValueError(f"Unknown embedding operation: {operation}")
    return OPERATION_PRIORITY[operation]


def job_reference(job: EmbeddingJob, **extra: Any) -> dict[str, Any]:
    """The short job handle returned to API callers."""
    ref = {"jobId": job.id, "status": job.state, "priority": job.priority}
    ref.update(extra)
    return ref


class EmbeddingJobQueue:
    """
    Enqueue embedding jobs onto the Celery ``embeddings`` queue.

    Args:
        task: Celery task to dispatch. Defaults to
            ``yellowbook.jobs.tasks.generate_listing_embedding``; tests pass a
            MagicMock.
    """

    def __init__(self, task=None):
        self._task = task

    @property
    def task(self):
        if self._task is None:
            from yellowbook.jobs.tasks import generate_listing_embedding

            self._task = generate_listing_embedding
        return self._task

    def enqueue(
        self,
        db: Session,
        listing_id: str,
        operation: str,
        *,
        triggered_by: str = "system",
        source: str = "api",
        original_name: str = "unknown",
        priority: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Record and dispatch an embedding job for *listing_id*.

        A still-queued, unattempted job for the same listing at the same or a
        more urgent priority absorbs the request; its reference is returned
        with ``deduplicated: True``.

        Returns:
            ``{jobId, status, priority}``; ``status`` is ``"failed"`` when the
            broker rejected the dispatch.
        """
        priority = priority or default_priority(operation)
        log = logger.bind(listing_id=listing_id, operation=operation, priority=priority)

        existing = store.find_queued_job(
            db, listing_id, settings.EMBEDDING_JOB_DEDUP_WINDOW_SECONDS
        )
        if existing is not None and PRIORITY_LEVELS[existing.priority] <= PRIORITY_LEVELS[priority]:
            log.info("embedding_job_deduplicated", job_id=existing.id)
            return job_reference(existing, deduplicated=True)

        job = store.create_job(
            db,
            listing_id=listing_id,
            operation=operation,
            priority=priority,
            max_retries=settings.EMBEDDING_JOB_MAX_RETRIES,
            triggered_by=triggered_by,
            source=source,
            original_name=original_name,
        )
        self.dispatch(db, job)
        return job_reference(job)

    def dispatch(self, db: Session, job: EmbeddingJob) -> bool:
        """Send *job* to the broker. Returns ``False`` after marking it failed."""
        try:
            self.task.apply_async(
                args=[job.id],
                task_id=job.id,
                priority=PRIORITY_LEVELS[job.priority],
            )
        except Exception as exc:
            logger.error(
                "embedding_job_dispatch_failed",
                job_id=job.id,
                listing_id=job.listing_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            store.mark_failed(db, job, f"Dispatch failed: {exc}")
            return False

        logger.info(
            "embedding_job_enqueued",
            job_id=job.id,
            listing_id=job.listing_id,
            operation=job.operation,
            priority=job.priority,
        )
        return True

    def retry(self, db: Session, job: EmbeddingJob, *, triggered_by: str = "admin") -> dict[str, Any]:
        """
        Enqueue a fresh ``retry`` job for the listing of a failed job. The
        failed row is left as it is.

        Raises:
            ValueError: if the job is not in the ``failed`` state.
        """
        if job.state != "failed":
            raise ValueError(f"Only failed jobs can be retried (job is {job.state})")

        return self.enqueue(
            db,
            job.listing_id,
            "retry",
            triggered_by=triggered_by,
            source="admin",
            original_name=job.original_name,
        )

    def enqueue_missing(
        self,
        db: Session,
        *,
        triggered_by: str = "cron",
        source: str = "cron",
        priority: str = "low",
    ) -> dict[str, Any]:
        """
        Enqueue a ``bulk`` job for every listing with no stored embedding.

        Returns:
            ``{total, queued, deduplicated, failed, jobs}``
        """
        missing = dal.get_listings_missing_embeddings(db=db)
        jobs = []
        for listing in missing:
            jobs.append(
                self.enqueue(
                    db,
                    listing["id"],
                    "bulk",
                    triggered_by=triggered_by,
                    source=source,
                    original_name=listing["name"],
                    priority=priority,
                )
            )

        summary = {
            "total": len(missing),
            "queued": sum(1 for j in jobs if j["status"] == "queued" and not j.get("deduplicated")),
            "deduplicated": sum(1 for j in jobs if j.get("deduplicated")),
            "failed": sum(1 for j in jobs if j["status"] == "failed"),
            "jobs": jobs,
        }
        logger.info(
            "embedding_backfill_enqueued",
            total=summary["total"],
            queued=summary["queued"],
            deduplicated=summary["deduplicated"],
            failed=summary["failed"],
        )
        return summary
