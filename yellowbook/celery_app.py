"""
Yellowbook Celery Application Configuration

Configures Celery for embedding jobs with Redis as broker.

Usage:
    # Start worker
    celery -A yellowbook.celery_app.celery worker -Q embeddings --loglevel=info

    # Start beat (embedding backfill)
    celery -A yellowbook.celery_app.celery beat --loglevel=info
"""

from celery import Celery
from celery.signals import setup_logging, worker_process_shutdown

from yellowbook.config import settings

# Redis broker priorities: 0 is served first
PRIORITY_LEVELS = {"high": 0, "normal": 5, "low": 9}

celery = Celery(
    "yellowbook",
    broker=settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["yellowbook.jobs.tasks"],
)

celery.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_acks_late=True,  # Acknowledge after task completes
    task_reject_on_worker_lost=True,  # Requeue tasks if worker crashes
    task_track_started=True,

    # Result backend settings
    result_expires=86400,

    # Worker settings
    worker_prefetch_multiplier=1,  # Required for broker-side priority to take effect
    worker_concurrency=4,

    # Priority queue on Redis
    broker_transport_options={
        "queue_order_strategy": "priority",
        "priority_steps": list(range(10)),
        "sep": ":",
    },
    task_default_priority=PRIORITY_LEVELS["normal"],

    # Task routing
    task_routes={
        "yellowbook.jobs.tasks.generate_listing_embedding": {"queue": "embeddings"},
        "yellowbook.jobs.tasks.embed_missing_listings": {"queue": "embeddings"},
        "yellowbook.jobs.tasks.fail_stale_jobs": {"queue": "embeddings"},
    },
    task_default_queue="embeddings",

    # Task time limits (in seconds)
    task_soft_time_limit=120,
    task_time_limit=180,

    # Beat schedule (periodic tasks)
    beat_schedule={
        "embed-missing-listings": {
            "task": "yellowbook.jobs.tasks.embed_missing_listings",
            "schedule": settings.EMBEDDING_BACKFILL_INTERVAL_SECONDS,
        },
        "fail-stale-jobs": {
            "task": "yellowbook.jobs.tasks.fail_stale_jobs",
            "schedule": 600.0,  # Every 10 minutes
        },
    },
)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    """Use the shared structlog JSON setup instead of Celery's own handlers."""
    from yellowbook.observability import configure_logging, configure_sentry

    configure_logging()
    configure_sentry()


@worker_process_shutdown.connect
def _release_worker_resources(**kwargs) -> None:
    from yellowbook.db.session import dispose_engine
    from yellowbook.jobs.tasks import close_worker_clients

    close_worker_clients()
    dispose_engine()
