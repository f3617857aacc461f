"""
Public directory endpoint tests.

Covers listing, substring search, detail lookup, creation with its
embedding job hand-off, and the 400 validation envelope.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from conftest import make_listing
from yellowbook.db.models import EmbeddingJob, Listing

VALID_LISTING = {
    "name": "Test Co",
    "address": "X",
    "phone": "123",
    "category": "store",
    "latitude": 1,
    "longitude": 1,
}


# =========================================================================
# GET /yellow-books
# =========================================================================
class TestListListings:

    def test_empty_directory(self, client: TestClient):
        resp = client.get("/yellow-books")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_newest_first(self, client: TestClient, db_session: Session):
        now = datetime.now(timezone.utc)
        make_listing(db_session, name="Old", created_at=now - timedelta(days=2))
        make_listing(db_session, name="New", created_at=now)

        names = [item["name"] for item in client.get("/yellow-books").json()]
        assert names == ["New", "Old"]

    def test_payload_omits_embedding_and_unset_fields(self, client: TestClient, db_session: Session):
        make_listing(db_session, description=None, rating=None, embedding="[0.1, 0.2]")

        item = client.get("/yellow-books").json()[0]
        assert "embedding" not in item
        assert "description" not in item
        assert "rating" not in item
        assert {"id", "name", "address", "phone", "category", "latitude", "longitude",
                "createdAt", "updatedAt"} <= set(item)

    def test_search_matches_any_text_field(self, client: TestClient, db_session: Session):
        make_listing(db_session, name="Номин Супермаркет", category="store", description="Grocery chain")
        make_listing(db_session, name="Bull Restaurant", category="restaurant", description=None)

        by_description = client.get("/yellow-books", params={"search": "grocery"}).json()
        assert [i["name"] for i in by_description] == ["Номин Супермаркет"]

        by_category = client.get("/yellow-books", params={"search": "RESTAURANT"}).json()
        assert [i["name"] for i in by_category] == ["Bull Restaurant"]

    def test_search_escapes_wildcards(self, client: TestClient, db_session: Session):
        make_listing(db_session, name="Plain Name")
        resp = client.get("/yellow-books", params={"search": "%"})
        assert resp.json() == []

    def test_blank_search_returns_everything(self, client: TestClient, db_session: Session):
        make_listing(db_session, name="One")
        make_listing(db_session, name="Two")
        assert len(client.get("/yellow-books", params={"search": "   "}).json()) == 2


# =========================================================================
# GET /yellow-books/{id}
# =========================================================================
class TestGetListing:

    def test_found(self, client: TestClient, db_session: Session):
        listing = make_listing(db_session, website="https://www.khanbank.com")
        resp = client.get(f"/yellow-books/{listing.id}")
        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == listing.id
        assert body["website"] == "https://www.khanbank.com"

    def test_unknown_id_is_404(self, client: TestClient):
        resp = client.get("/yellow-books/does-not-exist")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Entry not found"}


# =========================================================================
# POST /yellow-books
# =========================================================================
class TestCreateListing:

    def test_create_returns_201_with_job(self, client: TestClient, mock_task: MagicMock):
        resp = client.post("/yellow-books", json=VALID_LISTING)
        assert resp.status_code == 201
        body = resp.json()
        assert body["name"] == "Test Co"
        assert body["id"]
        assert body["_embeddingJob"]["status"] == "queued"
        assert body["_embeddingJob"]["priority"] == "high"
        mock_task.apply_async.assert_called_once()
        kwargs = mock_task.apply_async.call_args.kwargs
        assert kwargs["priority"] == 0
        assert kwargs["task_id"] == body["_embeddingJob"]["jobId"]

    def test_created_fields_match_submission_and_detail(self, client: TestClient):
        payload = {
            **VALID_LISTING,
            "description": "Хүнсний дэлгүүр",
            "website": "https://test.example.mn",
            "email": "info@test.example.mn",
            "latitude": 47.9184,
            "longitude": 106.9177,
            "rating": 4.5,
            "employees": "50-100",
            "founded": 2012,
        }

        created = client.post("/yellow-books", json=payload).json()
        detail = client.get(f"/yellow-books/{created['id']}")

        assert detail.status_code == 200
        fetched = detail.json()
        for key, value in payload.items():
            assert created[key] == value, key
            assert fetched[key] == value, key
        assert fetched["id"] == created["id"]
        assert "_embeddingJob" not in fetched

    def test_create_records_job_metadata(self, client: TestClient, db_session: Session):
        body = client.post("/yellow-books", json=VALID_LISTING).json()
        job = db_session.get(EmbeddingJob, body["_embeddingJob"]["jobId"])
        assert job.listing_id == body["id"]
        assert job.operation == "create"
        assert job.source == "api"
        assert job.original_name == "Test Co"

    def test_stored_values_not_normalised(self, client: TestClient, db_session: Session):
        payload = {**VALID_LISTING, "website": "https://Example.com/Path", "email": "Info@Example.com"}
        body = client.post("/yellow-books", json=payload).json()
        row = db_session.get(Listing, body["id"])
        assert row.website == "https://Example.com/Path"
        assert row.email == "Info@Example.com"

    def test_dispatch_failure_keeps_listing(
        self, client: TestClient, db_session: Session, mock_task: MagicMock
    ):
        mock_task.apply_async.side_effect = ConnectionError("broker down")

        resp = client.post("/yellow-books", json=VALID_LISTING)
        assert resp.status_code == 201
        body = resp.json()
        assert body["_embeddingJob"]["status"] == "failed"
        assert db_session.get(Listing, body["id"]) is not None
        job = db_session.get(EmbeddingJob, body["_embeddingJob"]["jobId"])
        assert job.failed_reason.startswith("Dispatch failed")

    def test_missing_required_field_is_400(self, client: TestClient, db_session: Session):
        payload = {k: v for k, v in VALID_LISTING.items() if k != "phone"}
        resp = client.post("/yellow-books", json=payload)
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "Invalid input"
        assert any(d["path"] == ["phone"] for d in body["details"])
        assert db_session.query(Listing).count() == 0

    def test_invalid_category_is_400(self, client: TestClient):
        resp = client.post("/yellow-books", json={**VALID_LISTING, "category": "bakery"})
        assert resp.status_code == 400
        assert resp.json()["details"][0]["path"] == ["category"]

    def test_rating_out_of_range_is_400(self, client: TestClient):
        resp = client.post("/yellow-books", json={**VALID_LISTING, "rating": 5.5})
        assert resp.status_code == 400

    @pytest.mark.parametrize("field,value", [
        ("latitude", 91),
        ("longitude", -181),
        ("name", ""),
        ("website", "ftp://files.example.mn"),
    ])
    def test_out_of_bounds_field_is_400(self, client: TestClient, db_session: Session, field, value):
        resp = client.post("/yellow-books", json={**VALID_LISTING, field: value})
        assert resp.status_code == 400
        assert resp.json()["details"][0]["path"][0] == field
        assert db_session.query(Listing).count() == 0

    def test_malformed_website_is_400(self, client: TestClient):
        resp = client.post("/yellow-books", json={**VALID_LISTING, "website": "not a url"})
        assert resp.status_code == 400
        assert resp.json()["details"][0]["path"][0] == "website"


class TestHealth:

    def test_root(self, client: TestClient):
        assert client.get("/").json() == {"message": "Yellowbook API"}

    def test_health_and_security_headers(self, client: TestClient):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
