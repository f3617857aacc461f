"""
Embedding job pipeline.

Modules:
    store  — embedding_jobs row bookkeeping (state, progress, retention)
    queue  — producer: EmbeddingJobQueue.enqueue / retry / enqueue_missing
    tasks  — Celery consumer tasks and the per-attempt worker logic
"""
