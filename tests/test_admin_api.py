"""
Admin endpoint tests.

Auth guards, role management, listing edits and deletes, bulk embedding
requests, job inspection and retry, and the dashboard counters.
"""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import auth_header, make_listing
from yellowbook.db.models import EmbeddingJob, Listing, User
from yellowbook.jobs import store
from yellowbook.jobs.tasks import record_job_failure, run_embedding_job


def _make_job(db: Session, listing_id: str, *, state: str = "queued", operation: str = "create") -> EmbeddingJob:
    job = store.create_job(
        db,
        listing_id=listing_id,
        operation=operation,
        priority="high",
        max_retries=3,
        triggered_by="api",
        source="api",
        original_name="Хаан Банк",
    )
    if state == "failed":
        store.mark_failed(db, job, "Rate limit exceeded")
    elif state != "queued":
        job.state = state
        db.commit()
    return job


# =========================================================================
# Auth guards
# =========================================================================
class TestAdminGuards:

    @pytest.mark.parametrize("method,path", [
        ("get", "/admin/users"),
        ("get", "/admin/stats"),
        ("get", "/admin/jobs"),
        ("delete", "/admin/yellow-books/x"),
    ])
    def test_no_token_is_401(self, client: TestClient, method: str, path: str):
        resp = getattr(client, method)(path)
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized: No token provided"}

    def test_bad_token_is_401(self, client: TestClient):
        resp = client.get("/admin/users", headers=auth_header("not-a-jwt"))
        assert resp.status_code == 401

    def test_token_for_unknown_user_is_401(self, client: TestClient):
        from yellowbook.api.auth import create_access_token
        token = create_access_token("ghost", role="admin")
        resp = client.get("/admin/users", headers=auth_header(token))
        assert resp.status_code == 401

    def test_non_admin_is_403(self, client: TestClient, user_token: str):
        resp = client.get("/admin/users", headers=auth_header(user_token))
        assert resp.status_code == 403
        assert resp.json() == {"error": "Forbidden: Insufficient permissions"}

    def test_role_read_from_database_not_token(
        self, client: TestClient, db_session: Session, regular_user: User
    ):
        from yellowbook.api.auth import create_access_token
        token = create_access_token(regular_user.id, role="admin")
        assert client.get("/admin/users", headers=auth_header(token)).status_code == 403


# =========================================================================
# Users
# =========================================================================
class TestUsers:

    def test_list_users(self, client: TestClient, admin_token: str, regular_user: User):
        resp = client.get("/admin/users", headers=auth_header(admin_token))
        assert resp.status_code == 200
        emails = {u["email"] for u in resp.json()}
        assert emails == {"admin@example.com", "user@example.com"}

    def test_promote_user(
        self, client: TestClient, admin_token: str, regular_user: User, db_session: Session
    ):
        resp = client.patch(
            f"/admin/users/{regular_user.id}/role",
            json={"role": "admin"},
            headers=auth_header(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "admin"
        db_session.expire_all()
        assert db_session.get(User, regular_user.id).role == "admin"

    def test_invalid_role_leaves_user_unchanged(
        self, client: TestClient, admin_token: str, regular_user: User, db_session: Session
    ):
        resp = client.patch(
            f"/admin/users/{regular_user.id}/role",
            json={"role": "owner"},
            headers=auth_header(admin_token),
        )
        assert resp.status_code == 400
        db_session.expire_all()
        assert db_session.get(User, regular_user.id).role == "user"

    def test_unknown_user_is_404(self, client: TestClient, admin_token: str):
        resp = client.patch(
            "/admin/users/nobody/role", json={"role": "admin"}, headers=auth_header(admin_token)
        )
        assert resp.status_code == 404
        assert resp.json() == {"error": "User not found"}


# =========================================================================
# Listings
# =========================================================================
class TestUpdateListing:

    def test_text_change_enqueues_update_job(
        self, client: TestClient, admin_token: str, admin_user: User,
        db_session: Session, mock_task: MagicMock,
    ):
        listing = make_listing(db_session)
        resp = client.patch(
            f"/admin/yellow-books/{listing.id}",
            json={"description": "Commercial bank"},
            headers=auth_header(admin_token),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["description"] == "Commercial bank"
        job = db_session.get(EmbeddingJob, body["_embeddingJob"]["jobId"])
        assert job.operation == "update"
        assert job.priority == "normal"
        assert job.source == "admin"
        assert job.triggered_by == admin_user.id
        assert mock_task.apply_async.call_args.kwargs["priority"] == 5

    def test_non_text_change_skips_embedding(
        self, client: TestClient, admin_token: str, db_session: Session, mock_task: MagicMock
    ):
        listing = make_listing(db_session)
        resp = client.patch(
            f"/admin/yellow-books/{listing.id}",
            json={"phone": "+976-9999-0000", "rating": 4.9},
            headers=auth_header(admin_token),
        )
        assert resp.status_code == 200
        assert "_embeddingJob" not in resp.json()
        mock_task.apply_async.assert_not_called()

    def test_clearing_required_field_is_400(
        self, client: TestClient, admin_token: str, db_session: Session
    ):
        listing = make_listing(db_session)
        resp = client.patch(
            f"/admin/yellow-books/{listing.id}",
            json={"name": None},
            headers=auth_header(admin_token),
        )
        assert resp.status_code == 400

    def test_unknown_listing_is_404(self, client: TestClient, admin_token: str):
        resp = client.patch(
            "/admin/yellow-books/missing", json={"name": "X"}, headers=auth_header(admin_token)
        )
        assert resp.status_code == 404


class TestDeleteListing:

    def test_delete(
        self, client: TestClient, admin_token: str, db_session: Session, fake_redis
    ):
        listing = make_listing(db_session)
        fake_redis.set("ai_search:abc", "{}")
        fake_redis.set("page_cache:/yellow-books", "[]")

        resp = client.delete(f"/admin/yellow-books/{listing.id}", headers=auth_header(admin_token))
        assert resp.status_code == 200
        assert resp.json() == {"message": "Business deleted successfully", "id": listing.id}
        db_session.expire_all()
        assert db_session.get(Listing, listing.id) is None
        assert "ai_search:abc" not in fake_redis.store
        assert "page_cache:/yellow-books" in fake_redis.store

    def test_delete_unknown_is_404(self, client: TestClient, admin_token: str):
        resp = client.delete("/admin/yellow-books/missing", headers=auth_header(admin_token))
        assert resp.status_code == 404
        assert resp.json() == {"error": "Entry not found"}


# =========================================================================
# Embedding jobs
# =========================================================================
class TestBulkEmbeddings:

    def test_bulk_enqueues_known_ids(
        self, client: TestClient, admin_token: str, db_session: Session, mock_task: MagicMock
    ):
        first = make_listing(db_session, name="First")
        second = make_listing(db_session, name="Second")

        resp = client.post(
            "/admin/embeddings/bulk",
            json={"businessIds": [first.id, second.id, first.id, "missing"]},
            headers=auth_header(admin_token),
        )
        assert resp.status_code == 202
        body = resp.json()
        assert body["total"] == 3
        assert body["accepted"] == 2
        missing = [r for r in body["results"] if r["businessId"] == "missing"][0]
        assert missing == {"businessId": "missing", "accepted": False, "reason": "not_found"}
        assert mock_task.apply_async.call_count == 2

    def test_bulk_deduplicates_against_queued_job(
        self, client: TestClient, admin_token: str, db_session: Session, mock_task: MagicMock
    ):
        listing = make_listing(db_session)
        existing = _make_job(db_session, listing.id)

        body = client.post(
            "/admin/embeddings/bulk",
            json={"businessIds": [listing.id]},
            headers=auth_header(admin_token),
        ).json()
        job = body["results"][0]["job"]
        assert job["jobId"] == existing.id
        assert job["deduplicated"] is True
        mock_task.apply_async.assert_not_called()

    def test_empty_id_list_is_400(self, client: TestClient, admin_token: str):
        resp = client.post(
            "/admin/embeddings/bulk", json={"businessIds": []}, headers=auth_header(admin_token)
        )
        assert resp.status_code == 400


class TestJobs:

    def test_get_job_status(self, client: TestClient, admin_token: str, db_session: Session):
        listing = make_listing(db_session)
        job = _make_job(db_session, listing.id)

        resp = client.get(f"/admin/jobs/{job.id}", headers=auth_header(admin_token))
        assert resp.status_code == 200
        body = resp.json()
        assert body["jobId"] == job.id
        assert body["businessId"] == listing.id
        assert body["state"] == "queued"
        assert body["progress"] == 0
        assert body["attemptsMade"] == 0
        assert body["metadata"]["originalName"] == "Хаан Банк"

    def test_exhausted_job_reports_failed(
        self, client: TestClient, admin_token: str, db_session: Session
    ):
        listing = make_listing(db_session)
        job = _make_job(db_session, listing.id)
        provider = MagicMock()
        provider.embeddings.create.side_effect = RuntimeError("provider down")

        for _ in range(3):
            try:
                run_embedding_job(job.id, db_session, provider)
            except RuntimeError as exc:
                db_session.rollback()
                record_job_failure(db_session, job.id, exc)

        resp = client.get(f"/admin/jobs/{job.id}", headers=auth_header(admin_token))
        assert resp.status_code == 200
        body = resp.json()
        assert body["state"] == "failed"
        assert body["attemptsMade"] == 3
        assert body["failedReason"] == "provider down"
        assert body["finishedAt"] is not None

    def test_job_lookup_database_error_is_500(self, client: TestClient, admin_token: str):
        with patch.object(store, "get_job", side_effect=OperationalError("SELECT", {}, Exception("db down"))):
            resp = client.get("/admin/jobs/emb-1", headers=auth_header(admin_token))
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}

    def test_enqueue_database_error_is_500(
        self, client: TestClient, admin_token: str, db_session: Session
    ):
        listing = make_listing(db_session)
        with patch.object(store, "create_job", side_effect=OperationalError("INSERT", {}, Exception("db down"))):
            resp = client.post(
                "/admin/embeddings/bulk",
                json={"businessIds": [listing.id]},
                headers=auth_header(admin_token),
            )
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}

    def test_unknown_job_is_404(self, client: TestClient, admin_token: str):
        resp = client.get("/admin/jobs/emb-missing", headers=auth_header(admin_token))
        assert resp.status_code == 404
        assert resp.json() == {"error": "Job not found"}

    def test_list_jobs_state_filter(self, client: TestClient, admin_token: str, db_session: Session):
        first = make_listing(db_session, name="First")
        second = make_listing(db_session, name="Second")
        _make_job(db_session, first.id)
        failed = _make_job(db_session, second.id, state="failed")

        body = client.get(
            "/admin/jobs", params={"state": "failed"}, headers=auth_header(admin_token)
        ).json()
        assert body["total"] == 1
        assert [j["jobId"] for j in body["jobs"]] == [failed.id]

    def test_list_jobs_invalid_state_is_400(self, client: TestClient, admin_token: str):
        resp = client.get("/admin/jobs", params={"state": "bogus"}, headers=auth_header(admin_token))
        assert resp.status_code == 400

    def test_retry_failed_job(
        self, client: TestClient, admin_token: str, db_session: Session, mock_task: MagicMock
    ):
        listing = make_listing(db_session)
        failed = _make_job(db_session, listing.id, state="failed")

        resp = client.post(f"/admin/jobs/{failed.id}/retry", headers=auth_header(admin_token))
        assert resp.status_code == 202
        body = resp.json()
        assert body["jobId"] != failed.id
        assert body["status"] == "queued"
        new_job = db_session.get(EmbeddingJob, body["jobId"])
        assert new_job.operation == "retry"
        assert new_job.listing_id == listing.id
        mock_task.apply_async.assert_called_once()

    def test_retry_non_failed_job_rejected(
        self, client: TestClient, admin_token: str, db_session: Session
    ):
        listing = make_listing(db_session)
        job = _make_job(db_session, listing.id, state="completed")

        resp = client.post(f"/admin/jobs/{job.id}/retry", headers=auth_header(admin_token))
        assert resp.status_code == 400


class TestStats:

    def test_counts(self, client: TestClient, admin_token: str, regular_user: User, db_session: Session):
        make_listing(db_session, name="Embedded", embedding="[0.1]")
        make_listing(db_session, name="Plain")

        resp = client.get("/admin/stats", headers=auth_header(admin_token))
        assert resp.status_code == 200
        assert resp.json() == {"users": 2, "listings": 2, "admins": 1, "embedded": 1}
