"""Tests for owner submissions and operator confirmations, including the end-to-end scenarios."""
from __future__ import annotations

from datetime import date, timedelta

import pytest

from conftest import OTHER_TENANT, TENANT
from core.exceptions import (
    InvalidActionError,
    InvalidPriceError,
    PropertyNotFoundError,
    RecordNotInSentStateError,
    SubmissionTimeoutError,
    TokenConsumedError,
    TokenExpiredError,
    ValidationError,
)
from core.models import ActivityLog, ConfirmationToken, ScheduledConfirmation
from core.utils import ensure_aware
from delivery.channels import ManualDelivery
from domain import submission as submission_module
from domain.confirmations import ConfirmationStore
from domain.dispatch import BatchRunner
from domain.scheduling import MonthlyConfirmationScheduler
from domain.submission import SubmissionProcessor, parse_price
from services.tokens import ConfirmationTokenService

MARCH_1 = date(2025, 3, 1)


@pytest.fixture
def processor(db_session) -> SubmissionProcessor:
    return SubmissionProcessor(db_session)


@pytest.fixture
def sent_confirmation(db_session, sample_property, sample_owner, now):
    """A sent confirmation and the raw token the owner received."""
    tokens = ConfirmationTokenService(db_session)
    issued = tokens.issue(TENANT, sample_property.id, sample_owner.id, now=now)
    store = ConfirmationStore(db_session)
    record = store.create(
        TENANT, sample_property.id, sample_owner.id, MARCH_1,
        token_id=issued.token_id, confirmation_url=issued.confirmation_url,
    )
    store.transition(record, "sent", sent_at=now)
    return record, issued.token


def _raw_token(url: str) -> str:
    return url.split("/confirmar/")[1].split("?")[0]


class TestScenarios:
    def test_schedule_dispatch_and_confirm_available(self, db_session, processor, sample_property, now):
        summary = MonthlyConfirmationScheduler(db_session).schedule_monthly(
            TENANT, target_date=MARCH_1, now=now
        )
        record = db_session.get(ScheduledConfirmation, summary.scheduled_confirm_ids[0])
        assert record.status == "pending"
        assert record.scheduled_for == MARCH_1

        BatchRunner(db_session, ManualDelivery()).process_pending(TENANT, today=MARCH_1, now=now)
        assert record.status == "sent"

        submitted_at = now + timedelta(days=2)
        result = processor.submit(
            _raw_token(record.confirmation_url), TENANT, "confirm_available", now=submitted_at
        )

        assert result.response == "available"
        assert record.status == "responded"
        assert record.response == "available"
        assert sample_property.status_confirmed_at == submitted_at
        assert sample_property.status == "available"

    def test_confirm_price(self, processor, sent_confirmation, sample_property, now):
        record, token = sent_confirmation

        result = processor.submit(token, TENANT, "confirm_price", price_amount=550000, now=now)

        assert result.response == "price_updated"
        assert record.response == "price_updated"
        assert sample_property.price_amount == 550000
        assert sample_property.price_confirmed_at == now
        assert sample_property.status_confirmed_at is None

    def test_expired_token_changes_nothing(self, db_session, processor, sample_property, sample_owner, now):
        tokens = ConfirmationTokenService(db_session)
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id, ttl=timedelta(days=1), now=now)
        later = now + timedelta(days=2)

        with pytest.raises(TokenExpiredError):
            tokens.validate(issued.token, TENANT, now=later)
        with pytest.raises(TokenExpiredError):
            processor.submit(issued.token, TENANT, "confirm_unavailable", now=later)

        db_session.expire_all()
        assert sample_property.status == "available"
        assert sample_property.visibility == "public"
        assert sample_property.status_confirmed_at is None
        assert db_session.get(ConfirmationToken, issued.token_id).consumed is False


class TestSubmit:
    def test_confirm_unavailable_hides_listing(self, processor, sent_confirmation, sample_property, now):
        _, token = sent_confirmation
        sample_property.pending_reason = "stale_status"

        processor.submit(token, TENANT, "confirm_unavailable", now=now)

        assert sample_property.status == "unavailable"
        assert sample_property.visibility == "private"
        assert sample_property.status_confirmed_at == now
        assert sample_property.pending_reason is None

    def test_second_submit_rejected(self, processor, sent_confirmation, now):
        _, token = sent_confirmation
        processor.submit(token, TENANT, "confirm_available", now=now)

        with pytest.raises((TokenConsumedError, RecordNotInSentStateError)):
            processor.submit(token, TENANT, "confirm_available", now=now)

    def test_record_not_sent_rejected(self, db_session, processor, sample_property, sample_owner, now):
        issued = ConfirmationTokenService(db_session).issue(TENANT, sample_property.id, sample_owner.id, now=now)
        ConfirmationStore(db_session).create(
            TENANT, sample_property.id, sample_owner.id, MARCH_1, token_id=issued.token_id
        )

        with pytest.raises(RecordNotInSentStateError):
            processor.submit(issued.token, TENANT, "confirm_available", now=now)

        db_session.expire_all()
        assert db_session.get(ConfirmationToken, issued.token_id).consumed is False

    @pytest.mark.parametrize("price", [None, 0, -10, "abc", float("nan"), True])
    def test_invalid_price(self, db_session, processor, sent_confirmation, sample_property, price, now):
        record, token = sent_confirmation

        with pytest.raises(InvalidPriceError):
            processor.submit(token, TENANT, "confirm_price", price_amount=price, now=now)

        db_session.expire_all()
        assert record.status == "sent"
        assert sample_property.price_amount == 500000.0

    def test_unknown_action(self, processor, sent_confirmation):
        _, token = sent_confirmation
        with pytest.raises(InvalidActionError):
            processor.submit(token, TENANT, "confirm_everything")

    def test_timeout_rolls_back(self, db_session, processor, sent_confirmation, sample_property, monkeypatch, now):
        record, token = sent_confirmation

        class ExpiredDeadline:
            def __init__(self, seconds):
                self.expired = True

        monkeypatch.setattr(submission_module, "Deadline", ExpiredDeadline)

        with pytest.raises(SubmissionTimeoutError):
            processor.submit(token, TENANT, "confirm_unavailable", now=now)

        db_session.expire_all()
        assert record.status == "sent"
        assert sample_property.status == "available"
        assert db_session.get(ConfirmationToken, record.token_id).consumed is False

    def test_activity_logged_as_owner(self, db_session, processor, sent_confirmation, sample_owner, now):
        record, token = sent_confirmation
        processor.submit(token, TENANT, "confirm_price", price_amount="610000", now=now)

        entry = db_session.query(ActivityLog).filter(
            ActivityLog.event_type == "owner_confirmed_price"
        ).one()
        assert entry.actor_type == "owner"
        assert entry.actor_id == str(sample_owner.id)
        assert entry.event_metadata["confirmation_id"] == record.id
        assert entry.event_metadata["price_amount"] == 610000.0

    def test_ad_hoc_link_updates_property_only(self, db_session, processor, sample_property, now):
        issued = ConfirmationTokenService(db_session).issue_link_for_property(TENANT, sample_property.id)

        result = processor.submit(_raw_token(issued.confirmation_url), TENANT, "confirm_available", now=now)

        assert result.confirmation_id is None
        assert sample_property.status_confirmed_at == now
        assert db_session.query(ScheduledConfirmation).count() == 0


class TestOperatorConfirm:
    def test_status_and_price(self, db_session, processor, sample_property, now):
        result = processor.operator_confirm(
            TENANT, sample_property.id,
            confirm_status="unavailable", confirm_price_amount=480000,
            reason="owner called the office", actor_id="staff-9", now=now,
        )

        assert result.status == "unavailable"
        assert result.price_amount == 480000
        assert ensure_aware(result.status_confirmed_at) == now
        assert sample_property.visibility == "private"

        entries = db_session.query(ActivityLog).filter(ActivityLog.property_id == sample_property.id).all()
        assert {e.event_type for e in entries} == {"operator_confirmed_status", "operator_confirmed_price"}
        assert all(e.event_metadata["reason_tag"] == "operator_reported" for e in entries)
        assert all(e.event_metadata["reason"] == "owner called the office" for e in entries)

    def test_price_only_keeps_status_timestamp(self, processor, sample_property, now):
        processor.operator_confirm(TENANT, sample_property.id, confirm_price_amount=1, now=now)
        assert sample_property.status_confirmed_at is None
        assert sample_property.price_confirmed_at == now

    def test_leaves_scheduled_confirmation_open(self, processor, sent_confirmation, sample_property):
        record, _ = sent_confirmation
        processor.operator_confirm(TENANT, sample_property.id, confirm_status="available")
        assert record.status == "sent"

    def test_requires_something_to_confirm(self, processor, sample_property):
        with pytest.raises(ValidationError):
            processor.operator_confirm(TENANT, sample_property.id)

    def test_rejects_unknown_status(self, processor, sample_property):
        with pytest.raises(ValidationError):
            processor.operator_confirm(TENANT, sample_property.id, confirm_status="rented")

    def test_rejects_bad_price(self, processor, sample_property):
        with pytest.raises(InvalidPriceError):
            processor.operator_confirm(TENANT, sample_property.id, confirm_price_amount=0)

    def test_other_tenant(self, processor, sample_property):
        with pytest.raises(PropertyNotFoundError):
            processor.operator_confirm(OTHER_TENANT, sample_property.id, confirm_status="available")


def test_parse_price_accepts_numeric_strings():
    assert parse_price("550000.50") == 550000.5
