"""Tests for the batch runner."""
from __future__ import annotations

from datetime import date

import pytest

from conftest import TENANT, make_property
from core.models import ActivityLog, ScheduledConfirmation
from delivery.channels import DeliveryChannel, DeliveryResult, DeliveryStatus, ManualDelivery
from domain.confirmations import ConfirmationStore
from domain.dispatch import BatchRunner, build_delivery_request


class RecordingChannel(DeliveryChannel):
    """Succeeds for every request except the references listed in ``fail_for``."""

    method = "fake"

    def __init__(self, fail_for=(), raise_for=()):
        self.fail_for = set(fail_for)
        self.raise_for = set(raise_for)
        self.requests = []

    def deliver(self, request):
        self.requests.append(request)
        if request.property_reference in self.raise_for:
            raise RuntimeError("gateway exploded")
        if request.property_reference in self.fail_for:
            return DeliveryResult(success=False, delivery_status=DeliveryStatus.FAILED, error="rejected")
        return DeliveryResult(success=True, delivery_status=DeliveryStatus.SENT, external_id="SM123")


@pytest.fixture
def store(db_session) -> ConfirmationStore:
    return ConfirmationStore(db_session)


def _schedule(db_session, store, owner, reference, day=date(2025, 3, 1)) -> ScheduledConfirmation:
    prop = make_property(db_session, owner, reference)
    return store.create(
        TENANT, prop.id, owner.id, day, confirmation_url=f"https://imoveis.example.com/confirmar/{reference}"
    )


class TestProcessPending:
    def test_due_records_are_sent(self, db_session, store, sample_owner, now):
        record = _schedule(db_session, store, sample_owner, "R-1")
        channel = RecordingChannel()

        summary = BatchRunner(db_session, channel).process_pending(TENANT, today=date(2025, 3, 1), now=now)

        assert (summary.processed, summary.sent, summary.failed) == (1, 1, 0)
        assert record.status == "sent"
        assert record.delivery_status == "sent"
        assert record.sent_at is not None
        assert channel.requests[0].confirmation_url.endswith("/confirmar/R-1")
        assert db_session.query(ActivityLog).filter(
            ActivityLog.event_type == "owner_confirmation_sent"
        ).count() == 1

    def test_future_records_wait(self, db_session, store, sample_owner):
        record = _schedule(db_session, store, sample_owner, "R-1", day=date(2025, 3, 10))

        summary = BatchRunner(db_session, RecordingChannel()).process_pending(TENANT, today=date(2025, 3, 1))

        assert summary.processed == 0
        assert record.status == "pending"

    def test_failure_does_not_stop_batch(self, db_session, store, sample_owner):
        bad = _schedule(db_session, store, sample_owner, "R-1")
        good = _schedule(db_session, store, sample_owner, "R-2")

        summary = BatchRunner(db_session, RecordingChannel(fail_for={"R-1"})).process_pending(
            TENANT, today=date(2025, 3, 1)
        )

        assert (summary.processed, summary.sent, summary.failed) == (2, 1, 1)
        assert bad.status == "failed"
        assert bad.delivery_error == "rejected"
        assert good.status == "sent"

    def test_raising_channel_counts_as_failure(self, db_session, store, sample_owner):
        boom = _schedule(db_session, store, sample_owner, "R-1")
        fine = _schedule(db_session, store, sample_owner, "R-2")

        summary = BatchRunner(db_session, RecordingChannel(raise_for={"R-1"})).process_pending(
            TENANT, today=date(2025, 3, 1)
        )

        assert summary.failed == 1
        assert summary.sent == 1
        assert boom.status == "failed"
        assert "gateway exploded" in boom.delivery_error
        assert fine.status == "sent"

    def test_cancelled_concurrently_is_skipped(self, db_session, store, sample_owner):
        record = _schedule(db_session, store, sample_owner, "R-1")

        class CancellingChannel(DeliveryChannel):
            def deliver(self, request):
                store.cancel(TENANT, request.confirmation_id, reason="withdrawn")
                return DeliveryResult(success=True, delivery_status=DeliveryStatus.SENT)

        summary = BatchRunner(db_session, CancellingChannel()).process_pending(
            TENANT, today=date(2025, 3, 1)
        )

        assert summary.skipped == 1
        assert summary.sent == 0
        assert record.status == "cancelled"

    def test_nothing_due(self, db_session):
        summary = BatchRunner(db_session, RecordingChannel()).process_pending(TENANT, today=date(2025, 3, 1))
        assert summary.to_dict()["processed"] == 0


class TestManualDelivery:
    def test_manual_records_flagged(self, db_session, store, sample_owner):
        record = _schedule(db_session, store, sample_owner, "R-1")

        BatchRunner(db_session, ManualDelivery()).process_pending(TENANT, today=date(2025, 3, 1))

        assert record.status == "sent"
        assert record.delivery_status == DeliveryStatus.MANUAL_REQUIRED

    def test_default_channel_follows_record_method(self, db_session, store, sample_owner):
        record = _schedule(db_session, store, sample_owner, "R-1")

        BatchRunner(db_session).process_pending(TENANT, today=date(2025, 3, 1))

        assert record.delivery_status == DeliveryStatus.MANUAL_REQUIRED


def test_delivery_request_uses_owner_contact(db_session, store, sample_owner):
    record = _schedule(db_session, store, sample_owner, "R-1")
    request = build_delivery_request(record)

    assert request.owner_phone == "(11) 98765-4321"
    assert request.property_reference == "R-1"
    assert "João" in request.render_message()
    assert request.confirmation_url in request.render_message()
