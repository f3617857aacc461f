"""
Yellowbook Logging and Error Tracking

Shared by the Directory API, the web front end and the Celery worker so all
three processes emit the same JSON log shape.
"""

import logging
import sys
from typing import Any

import structlog

from yellowbook.config import settings


def configure_logging() -> None:
    """
    Configure structlog for JSON logging with ISO timestamps.

    All logs are output as JSON with consistent fields:
    - timestamp: ISO 8601 format
    - level: log level (info, warning, error, etc.)
    - event: log message
    - Additional context fields (job_id, listing_id, etc.)
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(settings.LOG_LEVEL.upper())

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.WARNING)


def configure_sentry() -> None:
    """
    Initialize Sentry error tracking if SENTRY_DSN is configured.
    """
    if not settings.SENTRY_DSN:
        return

    logger = structlog.get_logger(__name__)
    try:
        import sentry_sdk
        from sentry_sdk.integrations.celery import CeleryIntegration
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                CeleryIntegration(),
            ],
            traces_sample_rate=0.1,
            environment="development" if settings.DEBUG else "production",
        )
        logger.info("sentry_initialized", dsn_prefix=settings.SENTRY_DSN[:20] + "...")
    except Exception as e:
        logger.warning("sentry_init_failed", error=str(e))
