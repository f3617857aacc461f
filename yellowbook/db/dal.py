"""
Yellowbook Data Access Layer (DAL)

The single module where listing and user queries live. Route handlers never
build queries themselves.

Every public function:
    - Accepts a SQLAlchemy ``Session`` as the keyword argument ``db``.
    - Logs the function name and wall-clock execution time (ms) via structlog.
    - Returns plain Python dicts (never SQLAlchemy model instances).
    - Raises ``ValueError`` for invalid inputs.
    - Raises ``RuntimeError`` for unexpected database errors.

Embedding job bookkeeping lives in ``yellowbook.jobs`` alongside the queue.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from yellowbook.db.models import USER_ROLES, Listing, User

logger = structlog.get_logger(__name__)

# Columns matched by the public ``?search=`` filter
_LISTING_SEARCH_COLUMNS = (Listing.name, Listing.description, Listing.category, Listing.address)

# Optional listing fields omitted from payloads when unset
_OPTIONAL_LISTING_FIELDS = ("description", "website", "email", "rating", "employees", "founded")


# ── Helpers ────────────────────────────────────────────────────────────────

def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Render a timestamp as ISO 8601, treating naive values as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def listing_to_dict(row: Listing) -> dict[str, Any]:
    """Convert a Listing ORM instance to its public payload (no embedding)."""
    payload: dict[str, Any] = {
        "id": row.id,
        "name": row.name,
        "address": row.address,
        "phone": row.phone,
        "category": row.category,
        "latitude": row.latitude,
        "longitude": row.longitude,
        "createdAt": isoformat(row.created_at),
        "updatedAt": isoformat(row.updated_at),
    }
    for field in _OPTIONAL_LISTING_FIELDS:
        value = getattr(row, field)
        if value is not None:
            payload[field] = value
    return payload


def user_to_dict(row: User) -> dict[str, Any]:
    """Convert a User ORM instance to the admin payload (no credentials)."""
    return {
        "id": row.id,
        "email": row.email,
        "name": row.name,
        "role": row.role,
        "createdAt": isoformat(row.created_at),
    }


def substring_filter(term: str, columns) -> Any:
    """Case-insensitive OR-of-contains over *columns*, LIKE wildcards escaped."""
    return or_(*(col.icontains(term, autoescape=True) for col in columns))


def _timed(fn_name: str, start: float) -> None:
    """Log elapsed time in milliseconds."""
    elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
    logger.debug("dal_query", function=fn_name, elapsed_ms=elapsed_ms)


# ── Listings ───────────────────────────────────────────────────────────────


def list_listings(search: Optional[str] = None, *, db: Session) -> list[dict[str, Any]]:
    """
    Return every listing, newest first.

    When *search* is non-blank only listings whose name, description,
    category or address contain it (case-insensitive) are returned.
    """
    start = time.perf_counter()
    try:
        stmt = select(Listing)
        if search and search.strip():
            stmt = stmt.where(substring_filter(search.strip(), _LISTING_SEARCH_COLUMNS))
        stmt = stmt.order_by(Listing.created_at.desc(), Listing.id.desc())
        rows = db.execute(stmt).scalars().all()
        return [listing_to_dict(r) for r in rows]
    except Exception as exc:
        raise RuntimeError(f"list_listings failed: {exc}") from exc
    finally:
        _timed("list_listings", start)


def get_listing(listing_id: str, *, db: Session) -> Optional[dict[str, Any]]:
    """Return one listing or ``None``."""
    start = time.perf_counter()
    try:
        row = db.get(Listing, listing_id)
        return listing_to_dict(row) if row is not None else None
    except Exception as exc:
        raise RuntimeError(f"get_listing failed: {exc}") from exc
    finally:
        _timed("get_listing", start)


def create_listing(data: dict[str, Any], *, db: Session) -> dict[str, Any]:
    """
    Insert a validated listing and commit.

    *data* holds the schema-validated fields (snake_case, no id/timestamps).
    """
    start = time.perf_counter()
    try:
        row = Listing(**data)
        db.add(row)
        db.commit()
        db.refresh(row)
        logger.info("listing_created", listing_id=row.id, category=row.category)
        return listing_to_dict(row)
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"create_listing failed: {exc}") from exc
    finally:
        _timed("create_listing", start)


def update_listing(
    listing_id: str,
    changes: dict[str, Any],
    *,
    db: Session,
) -> Optional[dict[str, Any]]:
    """
    Apply a partial update and commit. Returns ``None`` when the listing
    does not exist.
    """
    start = time.perf_counter()
    try:
        row = db.get(Listing, listing_id)
        if row is None:
            return None
        for field, value in changes.items():
            setattr(row, field, value)
        db.commit()
        db.refresh(row)
        logger.info("listing_updated", listing_id=listing_id, fields=sorted(changes))
        return listing_to_dict(row)
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"update_listing failed: {exc}") from exc
    finally:
        _timed("update_listing", start)


def delete_listing(listing_id: str, *, db: Session) -> bool:
    """Delete a listing and commit. Returns ``False`` when it did not exist."""
    start = time.perf_counter()
    try:
        row = db.get(Listing, listing_id)
        if row is None:
            return False
        db.delete(row)
        db.commit()
        logger.info("listing_deleted", listing_id=listing_id)
        return True
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"delete_listing failed: {exc}") from exc
    finally:
        _timed("delete_listing", start)


def get_embedded_listings(*, db: Session) -> list[tuple[dict[str, Any], str]]:
    """
    Return ``(listing_payload, encoded_embedding)`` pairs for every listing
    that has a stored embedding.
    """
    start = time.perf_counter()
    try:
        stmt = (
            select(Listing)
            .where(Listing.embedding.is_not(None))
            .where(Listing.embedding != "")
        )
        rows = db.execute(stmt).scalars().all()
        return [(listing_to_dict(r), r.embedding) for r in rows]
    except Exception as exc:
        raise RuntimeError(f"get_embedded_listings failed: {exc}") from exc
    finally:
        _timed("get_embedded_listings", start)


def get_listings_missing_embeddings(*, db: Session) -> list[dict[str, Any]]:
    """Return ``{id, name}`` for listings whose embedding is NULL or empty."""
    start = time.perf_counter()
    try:
        stmt = (
            select(Listing.id, Listing.name)
            .where(or_(Listing.embedding.is_(None), Listing.embedding == ""))
            .order_by(Listing.created_at.asc())
        )
        return [{"id": r.id, "name": r.name} for r in db.execute(stmt).all()]
    except Exception as exc:
        raise RuntimeError(f"get_listings_missing_embeddings failed: {exc}") from exc
    finally:
        _timed("get_listings_missing_embeddings", start)


def search_listings_by_text(
    query: str,
    limit: int,
    *,
    db: Session,
) -> list[dict[str, Any]]:
    """
    Substring match over name, description and category, newest first.
    Used by the assistant when no embedding provider is configured.
    """
    start = time.perf_counter()
    try:
        stmt = (
            select(Listing)
            .where(
                substring_filter(
                    query.strip(), (Listing.name, Listing.description, Listing.category)
                )
            )
            .order_by(Listing.created_at.desc(), Listing.id.desc())
            .limit(limit)
        )
        rows = db.execute(stmt).scalars().all()
        return [listing_to_dict(r) for r in rows]
    except Exception as exc:
        raise RuntimeError(f"search_listings_by_text failed: {exc}") from exc
    finally:
        _timed("search_listings_by_text", start)


# ── Users ──────────────────────────────────────────────────────────────────


def list_users(*, db: Session) -> list[dict[str, Any]]:
    """Return every user, newest first."""
    start = time.perf_counter()
    try:
        stmt = select(User).order_by(User.created_at.desc(), User.id.desc())
        return [user_to_dict(r) for r in db.execute(stmt).scalars().all()]
    except Exception as exc:
        raise RuntimeError(f"list_users failed: {exc}") from exc
    finally:
        _timed("list_users", start)


def update_user_role(user_id: str, role: str, *, db: Session) -> Optional[dict[str, Any]]:
    """
    Set a user's role and commit.

    Raises ``ValueError`` for a role outside the fixed enumeration; the
    stored row is untouched in that case. Returns ``None`` for an unknown user.
    """
    if role not in USER_ROLES:
        raise ValueError(f"Invalid role: {role!r}. Must be one of: {', '.join(USER_ROLES)}")

    start = time.perf_counter()
    try:
        row = db.get(User, user_id)
        if row is None:
            return None
        previous = row.role
        row.role = role
        db.commit()
        db.refresh(row)
        logger.info("user_role_updated", user_id=user_id, previous=previous, role=role)
        return user_to_dict(row)
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"update_user_role failed: {exc}") from exc
    finally:
        _timed("update_user_role", start)


def upsert_github_user(
    github_id: str,
    email: str,
    name: Optional[str],
    image: Optional[str],
    *,
    db: Session,
) -> dict[str, Any]:
    """
    Find or create the account for a GitHub identity and commit.

    Matches on ``github_id`` first, then on e-mail (linking the identity to a
    pre-seeded account). New accounts always start with role ``user``.
    """
    start = time.perf_counter()
    try:
        row = db.execute(select(User).where(User.github_id == github_id)).scalar_one_or_none()
        if row is None:
            row = db.execute(select(User).where(User.email == email)).scalar_one_or_none()

        if row is None:
            row = User(github_id=github_id, email=email, name=name, image=image, role="user")
            db.add(row)
            logger.info("user_created", github_id=github_id)
        else:
            row.github_id = github_id
            row.name = name or row.name
            row.image = image or row.image

        db.commit()
        db.refresh(row)
        return user_to_dict(row)
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"upsert_github_user failed: {exc}") from exc
    finally:
        _timed("upsert_github_user", start)


def count_stats(*, db: Session) -> dict[str, int]:
    """Dashboard counters: users, listings, admins, embedded listings."""
    start = time.perf_counter()
    try:
        users = db.execute(select(func.count(User.id))).scalar() or 0
        admins = db.execute(
            select(func.count(User.id)).where(User.role == "admin")
        ).scalar() or 0
        listings = db.execute(select(func.count(Listing.id))).scalar() or 0
        embedded = db.execute(
            select(func.count(Listing.id))
            .where(Listing.embedding.is_not(None))
            .where(Listing.embedding != "")
        ).scalar() or 0
        return {"users": users, "listings": listings, "admins": admins, "embedded": embedded}
    except Exception as exc:
        raise RuntimeError(f"count_stats failed: {exc}") from exc
    finally:
        _timed("count_stats", start)
