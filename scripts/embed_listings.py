#!/usr/bin/env python3
"""
Embed every listing that has no stored embedding.

Usage:
    python scripts/embed_listings.py            # embed inline, batch API calls
    python scripts/embed_listings.py --enqueue  # hand the work to the Celery worker

Inline mode calls the embedding API directly (EMBEDDING_BATCH_SIZE texts per
request) and is meant for first-time setup. ``--enqueue`` creates one
low-priority ``bulk`` job per listing instead.

Requires:
    - DATABASE_URL and OPENAI_API_KEY environment variables (or .env)
"""

import argparse
import sys

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from yellowbook.db.models import Listing
from yellowbook.db.session import SessionLocal
from yellowbook.jobs.queue import EmbeddingJobQueue
from yellowbook.observability import configure_logging
from yellowbook.search.embeddings import (
    build_listing_embedding_text,
    embed_texts,
    encode_embedding,
    get_embedding_client,
)

logger = structlog.get_logger("embed_listings")


def embed_missing(db: Session, client) -> dict:
    """Embed and store vectors for listings with a NULL or empty embedding."""
    listings = db.execute(
        select(Listing).where((Listing.embedding.is_(None)) | (Listing.embedding == ""))
    ).scalars().all()
    if not listings:
        return {"total": 0, "embedded": 0}

    vectors = embed_texts([build_listing_embedding_text(l) for l in listings], client)
    for listing, vector in zip(listings, vectors):
        db.execute(
            update(Listing)
            .where(Listing.id == listing.id)
            .values(embedding=encode_embedding(vector), updated_at=listing.updated_at)
            .execution_options(synchronize_session=False)
        )
    db.commit()
    return {"total": len(listings), "embedded": len(vectors)}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Embed listings missing an embedding")
    parser.add_argument("--enqueue", action="store_true", help="Enqueue Celery jobs instead")
    args = parser.parse_args(argv)

    configure_logging()
    db = SessionLocal()
    try:
        if args.enqueue:
            summary = EmbeddingJobQueue().enqueue_missing(db, triggered_by="script", source="admin")
            summary.pop("jobs", None)
        else:
            client = get_embedding_client()
            if client is None:
                logger.error("embedding_key_missing")
                return 1
            summary = embed_missing(db, client)
        logger.info("embed_listings_complete", **summary)
    except Exception as e:
        db.rollback()
        logger.error("embed_listings_failed", error_type=type(e).__name__, error=str(e))
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
