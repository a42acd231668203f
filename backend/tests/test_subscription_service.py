"""購読ライフサイクルのテスト"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from rentbook.core.config import settings
from rentbook.core.exceptions import (
    InactiveSubscriptionError,
    InvalidPlanError,
    SubscriptionNotFoundError,
    WebhookProcessingError,
)
from rentbook.models.subscription import Subscription
from rentbook.schemas.billing import ProviderSubscriptionSnapshot
from rentbook.services import account_service, subscription_service
from rentbook.services.plan_registry import get_plan_limits
from rentbook.services.trial_policy import utcnow


def _snapshot(**overrides):
    data = {
        "provider_subscription_id": "sub_test_123",
        "provider_customer_id": "cus_test_123",
        "provider_status": "active",
        "plan": "PRO",
        "billing_period": "monthly",
        "current_period_start": datetime(2026, 10, 1),
        "current_period_end": datetime(2026, 11, 1),
        "cancel_at_period_end": False,
    }
    data.update(overrides)
    return ProviderSubscriptionSnapshot(**data)


def _fields(sub):
    return (
        sub.status, sub.plan, sub.resource_limits, sub.provider_subscription_id,
        sub.provider_customer_id, sub.current_period_start, sub.current_period_end,
        sub.cancel_at_period_end, sub.trial_ends_at,
    )


class TestCreateSubscription:
    def test_new_account_starts_trial(self, db, account):
        sub = subscription_service.get_subscription(db, account.id)

        assert sub.status == "TRIAL"
        assert sub.plan == "BUSINESS"
        assert sub.resource_limits == get_plan_limits("BUSINESS")
        assert sub.cancel_at_period_end is False
        assert abs(sub.trial_ends_at - (utcnow() + timedelta(days=14))) < timedelta(minutes=1)

    def test_trial_disabled_starts_unpaid(self, db, monkeypatch):
        monkeypatch.setattr(settings, "TRIAL_ENABLED", False)

        created = account_service.create_account(db, "notrial@example.com", "No Trial")
        sub = subscription_service.get_subscription(db, created.id)

        assert sub.status == "UNPAID"
        assert sub.trial_ends_at is None

    def test_second_subscription_is_rejected(self, db, account):
        with pytest.raises(IntegrityError):
            subscription_service.create_subscription(db, account.id)
        db.rollback()

        assert db.query(Subscription).filter(Subscription.account_id == account.id).count() == 1

    def test_duplicate_email_creates_nothing(self, db, account):
        with pytest.raises(IntegrityError):
            account_service.create_account(db, "owner@example.com", "Duplicate")

        assert db.query(Subscription).count() == 1


class TestLocalTransitions:
    def test_plan_change_rewrites_limits(self, db, account):
        sub = subscription_service.update_subscription_plan(db, account.id, "STARTER")

        assert sub.plan == "STARTER"
        assert sub.resource_limits["properties"] == 10

    def test_unknown_plan_is_rejected(self, db, account):
        with pytest.raises(InvalidPlanError):
            subscription_service.update_subscription_plan(db, account.id, "ENTERPRISE")

    def test_missing_subscription(self, db):
        with pytest.raises(SubscriptionNotFoundError) as exc_info:
            subscription_service.update_subscription_status(db, 9999, "ACTIVE")
        assert exc_info.value.metadata == {"account_id": 9999}

    def test_cancel_at_period_end_keeps_status(self, db, account):
        subscription_service.update_subscription_status(db, account.id, "ACTIVE")

        sub = subscription_service.cancel_subscription(db, account.id)

        assert sub.status == "ACTIVE"
        assert sub.cancel_at_period_end is True

    def test_cancel_at_period_end_does_not_promote_trial(self, db, account):
        sub = subscription_service.cancel_subscription(db, account.id, cancel_at_period_end=True)

        assert sub.status == "TRIAL"
        assert sub.cancel_at_period_end is True

    def test_immediate_cancel(self, db, account):
        sub = subscription_service.get_subscription(db, account.id)
        sub.provider_subscription_id = "sub_test_123"
        db.commit()

        sub = subscription_service.cancel_subscription(db, account.id, cancel_at_period_end=False)

        assert sub.status == "CANCELED"
        assert sub.cancel_at_period_end is False
        assert sub.provider_subscription_id is None

    def test_reactivate(self, db, account):
        subscription_service.cancel_subscription(db, account.id)

        sub = subscription_service.reactivate_subscription(db, account.id)

        assert sub.status == "ACTIVE"
        assert sub.cancel_at_period_end is False


class TestTrialExpiryOnRead:
    def test_expired_trial_is_persisted_as_unpaid(self, db, account):
        sub = subscription_service.get_subscription(db, account.id)
        now = sub.trial_ends_at + timedelta(hours=1)

        result = subscription_service.get_subscription_status(db, account.id, now=now)

        assert result.status == "UNPAID"
        db.expire_all()
        assert subscription_service.get_subscription(db, account.id).status == "UNPAID"

    def test_trial_within_period_is_untouched(self, db, account):
        result = subscription_service.get_subscription_status(db, account.id)
        assert result.status == "TRIAL"

    def test_repeated_reads_are_stable(self, db, account):
        sub = subscription_service.get_subscription(db, account.id)
        now = sub.trial_ends_at + timedelta(days=2)

        subscription_service.get_subscription_status(db, account.id, now=now)
        second = subscription_service.get_subscription_status(db, account.id, now=now)

        assert second.status == "UNPAID"

    def test_evaluate_trial_expiry_ignores_paid_status(self, db, account):
        sub = subscription_service.update_subscription_status(db, account.id, "ACTIVE")
        assert subscription_service.evaluate_trial_expiry(sub, sub.trial_ends_at + timedelta(days=1)) is None

    def test_missing_subscription_returns_none(self, db):
        assert subscription_service.get_subscription_status(db, 9999) is None

    def test_require_active_subscription(self, db, account):
        subscription_service.update_subscription_status(db, account.id, "PAST_DUE")
        with pytest.raises(InactiveSubscriptionError):
            subscription_service.require_active_subscription(db, account.id)


class TestProviderSync:
    def test_snapshot_is_applied(self, db, account):
        sub = subscription_service.update_subscription_from_provider(db, account.id, _snapshot())

        assert sub.status == "ACTIVE"
        assert sub.plan == "PRO"
        assert sub.resource_limits == get_plan_limits("PRO")
        assert sub.provider_subscription_id == "sub_test_123"
        assert sub.provider_customer_id == "cus_test_123"
        assert sub.billing_period == "monthly"
        assert sub.current_period_end == datetime(2026, 11, 1)
        assert sub.trial_ends_at is None

    def test_same_snapshot_twice_is_idempotent(self, db, account):
        created = datetime(2026, 10, 1, 12, 0)
        first = _fields(subscription_service.update_subscription_from_provider(
            db, account.id, _snapshot(), event_id="evt_1", event_created=created,
        ))
        second = _fields(subscription_service.update_subscription_from_provider(
            db, account.id, _snapshot(), event_id="evt_1", event_created=created,
        ))
        assert first == second

    @pytest.mark.parametrize("provider_status, expected", [
        ("active", "ACTIVE"),
        ("trialing", "ACTIVE"),
        ("past_due", "PAST_DUE"),
        ("unpaid", "CANCELED"),
        ("incomplete", "UNPAID"),
        ("incomplete_expired", "UNPAID"),
    ])
    def test_status_mapping(self, provider_status, expected):
        assert subscription_service.map_provider_status(provider_status) == expected

    def test_unmapped_status_fails_without_writing(self, db, account):
        with pytest.raises(WebhookProcessingError) as exc_info:
            subscription_service.update_subscription_from_provider(
                db, account.id, _snapshot(provider_status="paused"),
            )

        assert "paused" in exc_info.value.metadata["original_error"]
        assert subscription_service.get_subscription(db, account.id).status == "TRIAL"

    def test_canceled_snapshot_clears_provider_subscription(self, db, account):
        subscription_service.update_subscription_from_provider(db, account.id, _snapshot())

        sub = subscription_service.update_subscription_from_provider(
            db, account.id, _snapshot(provider_status="canceled"),
        )

        assert sub.status == "CANCELED"
        assert sub.provider_subscription_id is None

    def test_older_event_is_skipped(self, db, account):
        newer = datetime(2026, 10, 2, 0, 0)
        older = newer - timedelta(minutes=5)
        subscription_service.update_subscription_from_provider(
            db, account.id, _snapshot(provider_status="past_due"), event_id="evt_new", event_created=newer,
        )

        sub = subscription_service.update_subscription_from_provider(
            db, account.id, _snapshot(provider_status="active"), event_id="evt_old", event_created=older,
        )

        assert sub.status == "PAST_DUE"
        assert sub.provider_event_id == "evt_new"

    def test_past_due_does_not_revive_canceled(self, db, account):
        subscription_service.mark_canceled_from_provider(db, account.id)

        sub = subscription_service.mark_past_due_from_provider(db, account.id)

        assert sub.status == "CANCELED"

    def test_set_provider_customer_id(self, db, account):
        sub = subscription_service.set_provider_customer_id(db, account.id, "cus_test_999")
        assert sub.provider_customer_id == "cus_test_999"
