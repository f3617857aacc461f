"""
Yellowbook Database Models

SQLAlchemy 2.x ORM models for the business directory.
Tables are defined in FK-dependency order for migration compatibility.

Tables:
    1. users - One row per signed-in account
    2. listings - One row per directory entry
    3. embedding_jobs - Embedding queue bookkeeping (history bounded by the worker)
"""

from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Double,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import JSON

# Fixed enumerations shared by the schema layer and CHECK constraints
LISTING_CATEGORIES = ("restaurant", "store", "service", "technology", "healthcare")
USER_ROLES = ("user", "admin")
JOB_OPERATIONS = ("create", "update", "bulk", "retry")
JOB_PRIORITIES = ("high", "normal", "low")
JOB_SOURCES = ("api", "admin", "cron")
JOB_STATES = ("queued", "active", "completed", "failed")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _in_clause(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{v}'" for v in values)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# Table 1: users
# =============================================================================
class User(Base):
    """
    One record per account, created on first GitHub sign-in.

    Role changes only happen through the admin API.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    image: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    github_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    role: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint(f"role IN ({_in_clause(USER_ROLES)})", name="ck_users_role"),
        default="user",
        server_default="user",
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )


# =============================================================================
# Table 2: listings
# =============================================================================
class Listing(Base):
    """
    A business directory entry.

    ``embedding`` holds a JSON-encoded list of floats written by the
    embedding worker; it is never part of the public listing payload.
    """
    __tablename__ = "listings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    phone: Mapped[str] = mapped_column(String(50), nullable=False)
    website: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    category: Mapped[str] = mapped_column(
        String(20),
        CheckConstraint(
            f"category IN ({_in_clause(LISTING_CATEGORIES)})", name="ck_listings_category"
        ),
        nullable=False,
    )
    latitude: Mapped[float] = mapped_column(Double, nullable=False)
    longitude: Mapped[float] = mapped_column(Double, nullable=False)
    rating: Mapped[Optional[float]] = mapped_column(
        Double,
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_listings_rating"),
        nullable=True,
    )
    employees: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    founded: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    embedding: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_listings_created_at", "created_at"),
    )


# =============================================================================
# Table 3: embedding_jobs
# =============================================================================
class EmbeddingJob(Base):
    """
    Tracks every embedding job handed to the Celery queue.

    State transitions: queued → active → completed/failed, with
    failed attempts returning to queued while attempts remain.
    The job id doubles as the Celery task id.
    """
    __tablename__ = "embedding_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    listing_id: Mapped[str] = mapped_column(String(36), nullable=False)
    operation: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint(
            f"operation IN ({_in_clause(JOB_OPERATIONS)})", name="ck_embedding_jobs_operation"
        ),
        nullable=False,
    )
    priority: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint(
            f"priority IN ({_in_clause(JOB_PRIORITIES)})", name="ck_embedding_jobs_priority"
        ),
        default="normal",
        nullable=False,
    )
    state: Mapped[str] = mapped_column(
        String(20),
        CheckConstraint(f"state IN ({_in_clause(JOB_STATES)})", name="ck_embedding_jobs_state"),
        default="queued",
        nullable=False,
    )
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attempts_made: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    failed_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )

    # Trigger metadata
    triggered_by: Mapped[str] = mapped_column(String(255), default="system", nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    source: Mapped[str] = mapped_column(
        String(10),
        CheckConstraint(f"source IN ({_in_clause(JOB_SOURCES)})", name="ck_embedding_jobs_source"),
        default="api",
        nullable=False,
    )
    original_name: Mapped[str] = mapped_column(String(255), default="unknown", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_attempt_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_embedding_jobs_listing_state", "listing_id", "state"),
        Index("ix_embedding_jobs_state_finished", "state", "finished_at"),
    )
