"""
Shared FastAPI dependencies for process-wide service handles.

The handles are created once in the application lifespan and stored on
``app.state``; tests replace these dependencies via ``dependency_overrides``.
"""

from typing import Optional

from fastapi import Request
from redis import Redis

from yellowbook.jobs.queue import EmbeddingJobQueue


def get_cache_client_dep(request: Request) -> Optional[Redis]:
    return getattr(request.app.state, "cache_client", None)


def get_embedding_client_dep(request: Request):
    return getattr(request.app.state, "embedding_client", None)


def get_job_queue(request: Request) -> EmbeddingJobQueue:
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        queue = EmbeddingJobQueue()
        request.app.state.job_queue = queue
    return queue
