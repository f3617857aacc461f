"""
001 - Initial Schema

Create the 3 tables for the Yellowbook business directory.

Tables:
    1. users
    2. listings
    3. embedding_jobs (no FK to listings: job history outlives deleted listings)

This migration is hand-written - do NOT use Alembic autogenerate.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables and indexes."""

    # =========================================================================
    # Table 1: users
    # =========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("image", sa.String(1000), nullable=True),
        sa.Column("github_id", sa.String(64), nullable=True),
        sa.Column("role", sa.String(10), nullable=False, server_default="user"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("github_id", name="uq_users_github_id"),
        sa.CheckConstraint("role IN ('user', 'admin')", name="ck_users_role"),
    )

    # =========================================================================
    # Table 2: listings
    # =========================================================================
    op.create_table(
        "listings",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("address", sa.String(500), nullable=False),
        sa.Column("phone", sa.String(50), nullable=False),
        sa.Column("website", sa.String(1000), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("latitude", sa.Double(), nullable=False),
        sa.Column("longitude", sa.Double(), nullable=False),
        sa.Column("rating", sa.Double(), nullable=True),
        sa.Column("employees", sa.String(50), nullable=True),
        sa.Column("founded", sa.Integer(), nullable=True),
        sa.Column("embedding", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "category IN ('restaurant', 'store', 'service', 'technology', 'healthcare')",
            name="ck_listings_category",
        ),
        sa.CheckConstraint("rating >= 0 AND rating <= 5", name="ck_listings_rating"),
    )
    op.create_index("ix_listings_created_at", "listings", ["created_at"])

    # =========================================================================
    # Table 3: embedding_jobs
    # =========================================================================
    op.create_table(
        "embedding_jobs",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("listing_id", sa.String(36), nullable=False),
        sa.Column("operation", sa.String(10), nullable=False),
        sa.Column("priority", sa.String(10), nullable=False),
        sa.Column("state", sa.String(20), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attempts_made", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("failed_reason", sa.Text(), nullable=True),
        sa.Column("result", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("triggered_by", sa.String(255), nullable=False),
        sa.Column("triggered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(10), nullable=False),
        sa.Column("original_name", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "operation IN ('create', 'update', 'bulk', 'retry')", name="ck_embedding_jobs_operation"
        ),
        sa.CheckConstraint(
            "priority IN ('high', 'normal', 'low')", name="ck_embedding_jobs_priority"
        ),
        sa.CheckConstraint(
            "state IN ('queued', 'active', 'completed', 'failed')", name="ck_embedding_jobs_state"
        ),
        sa.CheckConstraint("source IN ('api', 'admin', 'cron')", name="ck_embedding_jobs_source"),
    )
    op.create_index("ix_embedding_jobs_listing_state", "embedding_jobs", ["listing_id", "state"])
    op.create_index("ix_embedding_jobs_state_finished", "embedding_jobs", ["state", "finished_at"])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_index("ix_embedding_jobs_state_finished", table_name="embedding_jobs")
    op.drop_index("ix_embedding_jobs_listing_state", table_name="embedding_jobs")
    op.drop_table("embedding_jobs")
    op.drop_index("ix_listings_created_at", table_name="listings")
    op.drop_table("listings")
    op.drop_table("users")
