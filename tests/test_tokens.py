"""Tests for confirmation token issuance, validation and consumption."""
from __future__ import annotations

from datetime import timedelta
from urllib.parse import urlparse, parse_qs

import pytest

from conftest import OTHER_TENANT, TENANT
from core.exceptions import (
    OwnerNotFoundError,
    PropertyNotFoundError,
    TenantMismatchError,
    TokenConsumedError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenRevokedError,
)
from core.models import ActivityLog, ConfirmationToken
from core.utils import hash_token
from domain.confirmations import ConfirmationStore
from services.activity_log import ActivityEventType
from services.tokens import ConfirmationTokenService


@pytest.fixture
def tokens(db_session) -> ConfirmationTokenService:
    return ConfirmationTokenService(db_session)


class TestIssue:
    def test_only_hash_is_stored(self, db_session, tokens, sample_property, sample_owner, now):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id, now=now)

        stored = db_session.get(ConfirmationToken, issued.token_id)
        assert stored.token_hash == hash_token(issued.token)
        assert stored.token_hash != issued.token
        assert stored.consumed is False
        assert issued.expires_at == now + timedelta(days=30)

    def test_url_carries_token_and_tenant(self, tokens, sample_property, sample_owner):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id)

        url = urlparse(issued.confirmation_url)
        assert url.path == f"/confirmar/{issued.token}"
        assert parse_qs(url.query) == {"tenant_id": [TENANT]}

    def test_tokens_are_unique(self, tokens, sample_property, sample_owner):
        first = tokens.issue(TENANT, sample_property.id, sample_owner.id)
        second = tokens.issue(TENANT, sample_property.id, sample_owner.id)
        assert first.token != second.token

    def test_owner_snapshot_is_masked(self, db_session, tokens, sample_property, sample_owner):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id)

        snapshot = db_session.get(ConfirmationToken, issued.token_id).owner_snapshot
        assert snapshot["name"] == "João S."
        assert snapshot["email"] == "j***@example.com"
        assert "98765" not in snapshot["phone"]
        assert snapshot["phone"].endswith("4321")

    def test_to_dict_omits_raw_token(self, tokens, sample_property, sample_owner):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id)
        assert "token" not in issued.to_dict()


class TestValidate:
    def test_returns_property_snapshot(self, tokens, sample_property, sample_owner, now):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id, now=now)

        data = tokens.validate(issued.token, TENANT, now=now).to_dict()

        assert data["property_id"] == sample_property.id
        assert data["reference"] == "AP-1001"
        assert data["current_status"] == "available"
        assert data["current_price"] == 500000.0
        assert data["broker_name"] == "Carla Mendes"
        assert data["owner"]["name"] == "João S."
        assert data["expires_at"] == (now + timedelta(days=30)).isoformat()

    def test_validate_is_idempotent(self, db_session, tokens, sample_property, sample_owner, now):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id, now=now)

        tokens.validate(issued.token, TENANT, now=now)
        tokens.validate(issued.token, TENANT, now=now)

        db_session.expire_all()
        assert db_session.get(ConfirmationToken, issued.token_id).consumed is False

    def test_unknown_token(self, tokens, sample_property):
        with pytest.raises(TokenNotFoundError):
            tokens.validate("not-a-real-token", TENANT)

    def test_foreign_tenant(self, tokens, sample_property, sample_owner):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id)
        with pytest.raises(TenantMismatchError):
            tokens.validate(issued.token, OTHER_TENANT)

    def test_expired(self, tokens, sample_property, sample_owner, now):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id, ttl=timedelta(days=1), now=now)
        with pytest.raises(TokenExpiredError):
            tokens.validate(issued.token, TENANT, now=now + timedelta(days=1, seconds=1))

    def test_consumed(self, tokens, sample_property, sample_owner, now):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id, now=now)
        tokens.consume(issued.token_id, action="confirm_available", now=now)
        with pytest.raises(TokenConsumedError):
            tokens.validate(issued.token, TENANT, now=now)

    def test_expiry_checked_before_consumption(self, tokens, sample_property, sample_owner, now):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id, ttl=timedelta(hours=1), now=now)
        tokens.consume(issued.token_id, now=now)
        with pytest.raises(TokenExpiredError):
            tokens.validate(issued.token, TENANT, now=now + timedelta(hours=2))

    @pytest.mark.parametrize("outcome", ["cancelled", "failed"])
    def test_withdrawn_confirmation(self, db_session, tokens, sample_property, sample_owner, now, outcome):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id, now=now)
        store = ConfirmationStore(db_session)
        record = store.create(TENANT, sample_property.id, sample_owner.id, now.date(), token_id=issued.token_id)
        store.transition(record, "sent", sent_at=now)
        store.transition(record, outcome)

        with pytest.raises(TokenRevokedError):
            tokens.validate(issued.token, TENANT, now=now)

    def test_pending_confirmation_still_valid(self, db_session, tokens, sample_property, sample_owner, now):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id, now=now)
        ConfirmationStore(db_session).create(
            TENANT, sample_property.id, sample_owner.id, now.date(), token_id=issued.token_id
        )

        assert tokens.validate(issued.token, TENANT, now=now).token.id == issued.token_id


class TestConsume:
    def test_second_consume_fails(self, db_session, tokens, sample_property, sample_owner, now):
        issued = tokens.issue(TENANT, sample_property.id, sample_owner.id, now=now)

        tokens.consume(issued.token_id, action="confirm_price", now=now)
        with pytest.raises(TokenConsumedError):
            tokens.consume(issued.token_id, action="confirm_price", now=now)

        db_session.expire_all()
        stored = db_session.get(ConfirmationToken, issued.token_id)
        assert stored.consumed is True
        assert stored.last_action == "confirm_price"


class TestAdHocLink:
    def test_defaults_to_property_owner(self, db_session, tokens, sample_property, sample_owner):
        issued = tokens.issue_link_for_property(
            TENANT, sample_property.id, delivery_hint="whatsapp", actor_id="staff-1"
        )

        stored = db_session.get(ConfirmationToken, issued.token_id)
        assert stored.owner_id == sample_owner.id
        assert stored.created_by_type == "user"
        assert stored.created_by_id == "staff-1"

        entry = db_session.query(ActivityLog).filter(
            ActivityLog.event_type == ActivityEventType.CONFIRMATION_LINK_CREATED
        ).one()
        assert entry.event_metadata["token_id"] == issued.token_id

    def test_property_of_another_tenant(self, tokens, sample_property):
        with pytest.raises(PropertyNotFoundError):
            tokens.issue_link_for_property(OTHER_TENANT, sample_property.id)

    def test_property_without_owner(self, db_session, tokens):
        from core.models import Property

        orphan = Property(tenant_id=TENANT, reference="LT-9", status="available")
        db_session.add(orphan)
        db_session.flush()
        with pytest.raises(OwnerNotFoundError):
            tokens.issue_link_for_property(TENANT, orphan.id)
