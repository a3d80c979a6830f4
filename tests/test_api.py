"""Integration tests for the public and admin HTTP routes."""
from __future__ import annotations

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import OTHER_TENANT, TENANT, auth_headers
from api.app import app
from api.deps import get_db, get_readonly_db
from core.models import BackgroundTask, ImportBatch, ScheduledConfirmation, SchedulerLock
from core.utils import utcnow
from domain.confirmations import ConfirmationStore
from services.locking import schedule_lock_name
from services.tokens import ConfirmationTokenService


@pytest.fixture
def client(db_session):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_readonly_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    return auth_headers()


@pytest.fixture
def sent_link(db_session, sample_property, sample_owner):
    """Raw token of a sent confirmation for the sample property."""
    issued = ConfirmationTokenService(db_session).issue(TENANT, sample_property.id, sample_owner.id)
    store = ConfirmationStore(db_session)
    record = store.create(
        TENANT, sample_property.id, sample_owner.id, utcnow().date(),
        token_id=issued.token_id, confirmation_url=issued.confirmation_url,
        broker_id=sample_property.broker_id,
    )
    store.transition(record, "sent", sent_at=utcnow())
    return issued.token, record


# ---------------------------------------------------------------------------
# Public owner routes
# ---------------------------------------------------------------------------

class TestPublicValidate:
    def test_valid_link(self, client, sent_link, sample_property):
        token, _ = sent_link
        resp = client.get(f"/confirmar/{token}", params={"tenant_id": TENANT})

        assert resp.status_code == 200
        data = resp.json()
        assert data["valid"] is True
        assert data["property_id"] == sample_property.id
        assert data["reference"] == "AP-1001"
        assert data["neighborhood"] == "Pinheiros"
        assert data["current_status"] == "available"
        assert "expires_at" in data
        assert "token_hash" not in data

    def test_unknown_link(self, client):
        resp = client.get("/confirmar/nope", params={"tenant_id": TENANT})

        assert resp.status_code == 404
        assert resp.json() == {
            "valid": False,
            "error": "TokenNotFound",
            "message": "link invalid or expired",
        }

    def test_other_tenant_link(self, client, sent_link):
        token, _ = sent_link
        resp = client.get(f"/confirmar/{token}", params={"tenant_id": OTHER_TENANT})
        assert resp.json()["error"] == "TenantMismatch"

    def test_validate_twice_does_not_consume(self, client, sent_link):
        token, _ = sent_link
        assert client.get(f"/confirmar/{token}", params={"tenant_id": TENANT}).json()["valid"]
        assert client.get(f"/confirmar/{token}", params={"tenant_id": TENANT}).json()["valid"]


class TestPublicSubmit:
    def test_submit_available(self, client, sent_link):
        token, record = sent_link
        resp = client.post(
            f"/owner-confirmations/{token}/submit",
            params={"tenant_id": TENANT},
            json={"action": "confirm_available"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["response"] == "available"
        assert "property_id" not in body["data"]
        assert record.status == "responded"

    def test_submit_twice(self, client, sent_link):
        token, _ = sent_link
        url = f"/owner-confirmations/{token}/submit"
        client.post(url, params={"tenant_id": TENANT}, json={"action": "confirm_available"})
        resp = client.post(url, params={"tenant_id": TENANT}, json={"action": "confirm_available"})

        assert resp.status_code == 400
        assert resp.json() == {
            "success": False,
            "error": "TokenConsumed",
            "message": "link invalid or expired",
        }

    def test_invalid_price(self, client, sent_link):
        token, record = sent_link
        resp = client.post(
            f"/owner-confirmations/{token}/submit",
            params={"tenant_id": TENANT},
            json={"action": "confirm_price", "price_amount": 0},
        )

        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidPrice"
        assert record.status == "sent"

    def test_missing_action(self, client, sent_link):
        token, _ = sent_link
        resp = client.post(f"/owner-confirmations/{token}/submit", params={"tenant_id": TENANT}, json={})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Staff authentication
# ---------------------------------------------------------------------------

class TestAdminAuth:
    def test_missing_token(self, client):
        resp = client.get(f"/admin/{TENANT}/scheduled-confirmations")
        assert resp.status_code == 401

    def test_garbage_token(self, client):
        resp = client.get(
            f"/admin/{TENANT}/scheduled-confirmations",
            headers={"Authorization": "Bearer not.a.jwt"},
        )
        assert resp.status_code == 401

    def test_wrong_tenant(self, client):
        resp = client.get(f"/admin/{TENANT}/scheduled-confirmations", headers=auth_headers(OTHER_TENANT))
        assert resp.status_code == 403

    def test_superadmin_any_tenant(self, client):
        resp = client.get(
            f"/admin/{TENANT}/scheduled-confirmations",
            headers=auth_headers(None, role="superadmin"),
        )
        assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Admin: scheduled confirmations
# ---------------------------------------------------------------------------

class TestScheduleRoute:
    def test_dry_run(self, client, headers, db_session, sample_property):
        resp = client.post(
            f"/admin/{TENANT}/scheduled-confirmations/schedule",
            headers=headers,
            json={"scheduled_for": "2025-03-01", "dry_run": True},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["scheduled_count"] == 1
        assert data["dry_run"] is True
        assert "task_id" not in data
        assert db_session.query(ScheduledConfirmation).count() == 0

    def test_schedule_records_task(self, client, headers, db_session, sample_property, property_without_contact):
        resp = client.post(
            f"/admin/{TENANT}/scheduled-confirmations/schedule",
            headers=headers,
            json={"scheduled_for": "2025-03-01"},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["total_properties"] == 2
        assert data["scheduled_count"] == 1
        assert data["skipped_reasons"] == ["Property CA-2002: no owner contact"]
        assert data["scheduled_for"] == "2025-03-01"

        run = client.get(f"/admin/{TENANT}/scheduled-confirmations/runs/{data['task_id']}", headers=headers)
        assert run.status_code == 200
        assert run.json()["status"] == "completed"
        assert run.json()["result"]["scheduled_count"] == 1

    def test_no_body_defaults(self, client, headers, sample_property):
        resp = client.post(f"/admin/{TENANT}/scheduled-confirmations/schedule", headers=headers)
        assert resp.status_code == 200
        assert date.fromisoformat(resp.json()["scheduled_for"]).day == 1

    def test_concurrent_pass_conflicts(self, client, headers, db_session, sample_property):
        db_session.add(
            SchedulerLock(
                lock_name=schedule_lock_name(TENANT),
                locked_by="other-worker",
                locked_at=utcnow(),
                expires_at=utcnow() + timedelta(minutes=10),
            )
        )
        db_session.flush()

        resp = client.post(f"/admin/{TENANT}/scheduled-confirmations/schedule", headers=headers, json={})

        assert resp.status_code == 409
        assert resp.json()["error"] == "run_in_progress"
        task = db_session.query(BackgroundTask).one()
        assert task.status == "failed"


class TestProcessRoute:
    def test_process(self, client, headers, db_session, sample_property, sample_owner):
        record = ConfirmationStore(db_session).create(
            TENANT, sample_property.id, sample_owner.id, date(2025, 3, 1), confirmation_url="https://x/confirmar/t"
        )

        resp = client.post(
            f"/admin/{TENANT}/scheduled-confirmations/process",
            headers=headers,
            json={"today": "2025-03-01"},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert (data["processed"], data["sent"], data["failed"], data["skipped"]) == (1, 1, 0, 0)
        assert data["task_id"]
        assert record.status == "sent"
        assert record.delivery_status == "manual_delivery_required"


class TestListAndDetail:
    def test_list_filtered(self, client, headers, sent_link):
        _, record = sent_link
        resp = client.get(f"/admin/{TENANT}/scheduled-confirmations", headers=headers, params={"status": "sent"})

        assert resp.status_code == 200
        assert resp.json()["count"] == 1
        assert resp.json()["data"][0]["id"] == record.id

        resp = client.get(f"/admin/{TENANT}/scheduled-confirmations", headers=headers, params={"status": "pending"})
        assert resp.json()["count"] == 0

    def test_unknown_status_filter(self, client, headers):
        resp = client.get(f"/admin/{TENANT}/scheduled-confirmations", headers=headers, params={"status": "bogus"})
        assert resp.status_code == 400

    def test_broker_listing(self, client, headers, sent_link, sample_broker):
        resp = client.get(f"/admin/{TENANT}/scheduled-confirmations/broker/{sample_broker.id}", headers=headers)
        assert resp.json()["count"] == 1
        resp = client.get(f"/admin/{TENANT}/scheduled-confirmations/broker/999", headers=headers)
        assert resp.json()["count"] == 0

    def test_detail_not_found(self, client, headers):
        resp = client.get(f"/admin/{TENANT}/scheduled-confirmations/12345", headers=headers)
        assert resp.status_code == 404

    def test_unknown_run(self, client, headers):
        resp = client.get(f"/admin/{TENANT}/scheduled-confirmations/runs/missing", headers=headers)
        assert resp.status_code == 404


class TestCancelRoute:
    def test_cancel(self, client, headers, sent_link):
        _, record = sent_link
        resp = client.post(
            f"/admin/{TENANT}/scheduled-confirmations/{record.id}/cancel",
            headers=headers,
            json={"reason": "listing withdrawn"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        assert resp.json()["cancel_reason"] == "listing withdrawn"

    def test_cancelled_link_rejected_on_open(self, client, headers, sent_link):
        token, record = sent_link
        client.post(f"/admin/{TENANT}/scheduled-confirmations/{record.id}/cancel", headers=headers)

        resp = client.get(f"/confirmar/{token}", params={"tenant_id": TENANT})
        assert resp.status_code == 404
        assert resp.json()["error"] == "TokenRevoked"

        resp = client.post(
            f"/owner-confirmations/{token}/submit",
            params={"tenant_id": TENANT},
            json={"action": "confirm_available"},
        )
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_cancel_after_owner_answered(self, client, headers, sent_link):
        token, record = sent_link
        client.post(
            f"/owner-confirmations/{token}/submit",
            params={"tenant_id": TENANT},
            json={"action": "confirm_available"},
        )

        resp = client.post(f"/admin/{TENANT}/scheduled-confirmations/{record.id}/cancel", headers=headers)

        assert resp.status_code == 409
        assert resp.json()["error"] == "conflict"
        assert record.status == "responded"


class TestMetricsRoute:
    def test_json(self, client, headers, sent_link):
        resp = client.get(f"/admin/{TENANT}/scheduled-confirmations/metrics", headers=headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["confirmations"]["sent"] == 1
        assert data["status_staleness"]["never_confirmed"] == 1

    def test_prometheus(self, client, headers, sent_link):
        resp = client.get(
            f"/admin/{TENANT}/scheduled-confirmations/metrics",
            headers=headers,
            params={"format": "prometheus"},
        )
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert "property_confirmations{" in resp.text

    def test_unknown_format(self, client, headers):
        resp = client.get(
            f"/admin/{TENANT}/scheduled-confirmations/metrics",
            headers=headers,
            params={"format": "xml"},
        )
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Admin: properties
# ---------------------------------------------------------------------------

class TestPropertyRoutes:
    def test_operator_confirmation(self, client, headers, sample_property):
        resp = client.patch(
            f"/admin/{TENANT}/properties/{sample_property.id}/confirmations",
            headers=headers,
            json={"confirm_status": "available", "reason": "visited the unit"},
        )

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["status"] == "available"
        assert data["status_confirmed_at"] is not None
        assert data["reason_tag"] == "operator_reported"

    def test_operator_confirmation_needs_a_field(self, client, headers, sample_property):
        resp = client.patch(
            f"/admin/{TENANT}/properties/{sample_property.id}/confirmations",
            headers=headers,
            json={"reason": "nothing"},
        )
        assert resp.status_code == 400

    def test_operator_confirmation_unknown_property(self, client, headers):
        resp = client.patch(
            f"/admin/{TENANT}/properties/999/confirmations",
            headers=headers,
            json={"confirm_status": "available"},
        )
        assert resp.status_code == 404

    def test_confirmation_link(self, client, headers, sample_property):
        resp = client.post(
            f"/admin/{TENANT}/properties/{sample_property.id}/owner-confirmation-link",
            headers=headers,
            json={"delivery_hint": "whatsapp"},
        )

        assert resp.status_code == 200
        url = resp.json()["confirmation_url"]
        assert url.startswith("https://imoveis.example.com/confirmar/")

        token = url.split("/confirmar/")[1].split("?")[0]
        check = client.get(f"/confirmar/{token}", params={"tenant_id": TENANT})
        assert check.json()["valid"] is True

    def test_activity(self, client, headers, sample_property):
        client.patch(
            f"/admin/{TENANT}/properties/{sample_property.id}/confirmations",
            headers=headers,
            json={"confirm_price_amount": 525000},
        )
        resp = client.get(f"/admin/{TENANT}/properties/{sample_property.id}/activity", headers=headers)

        assert resp.status_code == 200
        assert resp.json()["data"][0]["event_type"] == "operator_confirmed_price"
        assert resp.json()["data"][0]["actor_id"] == "staff-1"


# ---------------------------------------------------------------------------
# Admin: import batches
# ---------------------------------------------------------------------------

class TestImportBatchRoutes:
    @pytest.fixture
    def batch(self, db_session):
        batch = ImportBatch(
            tenant_id=TENANT,
            source_name="feed.xml",
            status="completed",
            total_xml_records=10,
            total_properties_created=7,
            total_properties_matched_existing=2,
            total_errors=1,
            errors=[{"record": 4, "message": "missing reference"}],
            completed_at=utcnow(),
        )
        db_session.add(batch)
        db_session.flush()
        return batch

    def test_batch_progress(self, client, headers, batch):
        resp = client.get(f"/admin/{TENANT}/import/batches/{batch.id}", headers=headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "completed"
        assert data["finished"] is True
        assert data["total_properties_created"] == 7

    def test_batch_errors(self, client, headers, batch):
        resp = client.get(f"/admin/{TENANT}/import/batches/{batch.id}/errors", headers=headers)
        assert resp.json() == {
            "success": True,
            "errors": [{"record": 4, "message": "missing reference"}],
            "count": 1,
        }

    def test_batch_of_other_tenant(self, client, batch):
        resp = client.get(
            f"/admin/{OTHER_TENANT}/import/batches/{batch.id}",
            headers=auth_headers(OTHER_TENANT),
        )
        assert resp.status_code == 404


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"

    detailed = client.get("/health/detailed")
    assert detailed.json()["checks"]["database"]["connected"] is True
