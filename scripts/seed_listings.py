#!/usr/bin/env python3
"""
Seed sample business listings into the listings table.

Usage:
    python scripts/seed_listings.py
    python scripts/seed_listings.py --admin-email you@example.com

Inserts every sample listing whose name is not already present, so re-runs
leave the table unchanged. ``--admin-email`` grants the admin role to that
account (creating it if needed); roles can otherwise only be changed by an
existing admin.

Requires:
    - DATABASE_URL environment variable (or .env)
    - Tables created by ``alembic upgrade head``
"""

import argparse
import sys

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from yellowbook.db.models import Listing, User
from yellowbook.db.session import SessionLocal
from yellowbook.observability import configure_logging

logger = structlog.get_logger("seed_listings")

# Ulaanbaatar businesses
SAMPLE_LISTINGS = [
    {
        "name": "Facebook",
        "description": "Meta Platforms, Inc. is an American multinational technology company.",
        "address": "Menlo Park, California, USA",
        "phone": "+1-650-543-4800",
        "website": "https://www.facebook.com",
        "email": "contact@facebook.com",
        "category": "technology",
        "latitude": 47.9184,
        "longitude": 106.9177,
        "rating": 4.5,
        "employees": "70,000+",
        "founded": 2004,
    },
    {
        "name": "Хаан Банк",
        "description": "Монгол улсын тэргүүлэгч арилжааны банк",
        "address": "Улаанбаатар хот, Сүхбаатар дүүрэг",
        "phone": "+976-7011-1111",
        "website": "https://www.khanbank.com",
        "email": "info@khanbank.com",
        "category": "service",
        "latitude": 47.9214,
        "longitude": 106.9185,
        "rating": 4.2,
        "employees": "3,000+",
        "founded": 1991,
    },
    {
        "name": "Монгол Шуудан",
        "description": "Монгол улсын үндэсний шуудангийн үйлчилгээ",
        "address": "Улаанбаатар хот, Чингэлтэй дүүрэг",
        "phone": "+976-7011-1888",
        "website": "https://www.mongolpost.mn",
        "email": "info@mongolpost.mn",
        "category": "service",
        "latitude": 47.9192,
        "longitude": 106.9166,
        "rating": 3.8,
        "employees": "2,500+",
        "founded": 1921,
    },
    {
        "name": "Номин Супермаркет",
        "description": "Монголын томоохон худалдааны сүлжээ",
        "address": "Улаанбаатар хот, Баянзүрх дүүрэг",
        "phone": "+976-7000-0000",
        "website": "https://www.nomin.mn",
        "email": "info@nomin.mn",
        "category": "store",
        "latitude": 47.9112,
        "longitude": 106.9420,
        "rating": 4.0,
        "employees": "1,500+",
        "founded": 1996,
    },
    {
        "name": "Модерн Номадс",
        "description": "Монголын шилдэг зочид буудал, амралт сувиллын үйлчилгээ",
        "address": "Улаанбаатар хот, Хан-Уул дүүрэг",
        "phone": "+976-7011-0101",
        "website": "https://www.modernnomads.mn",
        "email": "info@modernnomads.mn",
        "category": "service",
        "latitude": 47.8864,
        "longitude": 106.9057,
        "rating": 4.7,
        "employees": "500+",
        "founded": 2000,
    },
    {
        "name": "Монгол Эмнэлэг",
        "description": "Орчин үеийн эмнэлгийн тусламж үйлчилгээ",
        "address": "Улаанбаатар хот, Сүхбаатар дүүрэг",
        "phone": "+976-7011-9119",
        "website": "https://www.hospital.mn",
        "email": "contact@hospital.mn",
        "category": "healthcare",
        "latitude": 47.9183,
        "longitude": 106.9140,
        "rating": 4.3,
        "employees": "800+",
        "founded": 2005,
    },
    {
        "name": "Bull Рестораан",
        "description": "Монгол, олон улсын хоолны амттай газар",
        "address": "Улаанбаатар хот, Сүхбаатар дүүрэг",
        "phone": "+976-7011-2345",
        "website": "https://www.bull.mn",
        "email": "info@bull.mn",
        "category": "restaurant",
        "latitude": 47.9176,
        "longitude": 106.9188,
        "rating": 4.6,
        "employees": "100+",
        "founded": 2010,
    },
]


def seed_listings(db: Session, entries: list[dict] = SAMPLE_LISTINGS) -> int:
    """Insert entries whose name is not yet present. Returns the number inserted."""
    existing = set(db.execute(select(Listing.name)).scalars().all())
    inserted = 0
    for entry in entries:
        if entry["name"] in existing:
            logger.info("listing_exists", name=entry["name"])
            continue
        db.add(Listing(**entry))
        inserted += 1
    db.commit()
    return inserted


def grant_admin(db: Session, email: str) -> User:
    """Give *email* the admin role, creating the account if it does not exist."""
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user is None:
        user = User(email=email, role="admin")
        db.add(user)
    else:
        user.role = "admin"
    db.commit()
    return user


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed Yellowbook sample data")
    parser.add_argument("--admin-email", help="Grant the admin role to this account")
    args = parser.parse_args(argv)

    configure_logging()
    db = SessionLocal()
    try:
        inserted = seed_listings(db)
        logger.info("seed_complete", inserted=inserted, total=len(SAMPLE_LISTINGS))
        if args.admin_email:
            user = grant_admin(db, args.admin_email)
            logger.info("admin_granted", user_id=user.id)
    except Exception as e:
        db.rollback()
        logger.error("seed_failed", error=str(e))
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
