from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from stockai.errors import NoActiveSubscription, NothingToRestore, UnknownProduct, VerificationFailed
from stockai.db import SessionLocal
from stockai.models import Subscription, User
from stockai.services import subscriptions
from tests.utils.purchases import make_purchase


def test_free_without_subscription(db, user_id):
    state = subscriptions.resolve_status(db, user_id=user_id)
    assert state.active is False
    assert state.plan == "free"


def test_purchase_activates_plan(db, user_id):
    row = subscriptions.process_purchase(db, user_id=user_id, purchase=make_purchase())
    assert row.status == "active"
    assert row.plan_id == "pro"
    assert db.get(User, user_id).plan == "pro"
    state = subscriptions.resolve_status(db, user_id=user_id)
    assert state.active and state.plan == "pro"
    assert state.to_dict()["productId"] == "pro_monthly"


def test_unknown_product(db, user_id):
    with pytest.raises(UnknownProduct):
        subscriptions.process_purchase(db, user_id=user_id, purchase=make_purchase("gold_monthly"))


def test_duplicate_transaction_returns_existing(db, user_id):
    purchase = make_purchase()
    first = subscriptions.process_purchase(db, user_id=user_id, purchase=purchase)
    second = subscriptions.process_purchase(db, user_id=user_id, purchase=purchase)
    assert first.id == second.id
    count = db.query(Subscription).filter(Subscription.transaction_id == purchase.transaction_id).count()
    assert count == 1


def test_transaction_claimed_by_other_user(db, user_id):
    purchase = make_purchase()
    subscriptions.process_purchase(db, user_id=user_id, purchase=purchase)
    with pytest.raises(VerificationFailed):
        subscriptions.process_purchase(db, user_id=f"{user_id}-other", purchase=purchase)


def test_new_purchase_upgrades_previous(db, user_id):
    basic = subscriptions.process_purchase(db, user_id=user_id, purchase=make_purchase("basic_monthly"))
    pro = subscriptions.process_purchase(db, user_id=user_id, purchase=make_purchase("pro_yearly"))
    db.refresh(basic)
    assert basic.status == "upgraded"
    assert pro.status == "active"
    assert subscriptions.effective_plan(db, user_id=user_id) == "pro"


def test_expiry_within_grace(db, user_id):
    subscriptions.process_purchase(db, user_id=user_id, purchase=make_purchase(expires_in=-timedelta(days=1)))
    state = subscriptions.resolve_status(db, user_id=user_id)
    assert state.status == "grace_period"
    assert state.plan == "pro"
    assert state.grace_period_ends_at is not None
    assert "gracePeriodEndsAt" in state.to_dict()


def test_expiry_beyond_grace_reverts_to_free(db, user_id):
    row = subscriptions.process_purchase(db, user_id=user_id, purchase=make_purchase(expires_in=-timedelta(days=10)))
    state = subscriptions.resolve_status(db, user_id=user_id)
    assert state.active is False
    assert state.plan == "free"
    assert state.status == "expired"
    assert state.expired_at is not None

    db.refresh(row)
    assert row.status == "expired"
    assert db.get(User, user_id).plan == "free"

    # a second resolution reports the same state
    again = subscriptions.resolve_status(db, user_id=user_id)
    assert again.to_dict() == state.to_dict()
    assert again.subscription_id == row.id
    actions = [e.action for e in subscriptions.history_events(db, user_id=user_id)]
    assert actions.count("expire") == 1


def test_cancel_keeps_plan_until_expiry(db, user_id):
    subscriptions.process_purchase(db, user_id=user_id, purchase=make_purchase())
    row = subscriptions.cancel(db, user_id=user_id, reason="too expensive")
    assert row.status == "cancelled"
    assert row.cancel_reason == "too expensive"
    assert subscriptions.effective_plan(db, user_id=user_id) == "pro"

    with pytest.raises(NoActiveSubscription):
        subscriptions.cancel(db, user_id=user_id)


def test_cancelled_subscription_expires_without_grace(db, user_id):
    subscriptions.process_purchase(db, user_id=user_id, purchase=make_purchase(expires_in=timedelta(hours=1)))
    subscriptions.cancel(db, user_id=user_id)
    later = datetime.now(timezone.utc) + timedelta(hours=2)
    state = subscriptions.resolve_status(db, user_id=user_id, now=later)
    assert state.plan == "free"
    assert state.status == "expired"


def test_cancel_without_subscription(db, user_id):
    with pytest.raises(NoActiveSubscription):
        subscriptions.cancel(db, user_id=user_id)


def test_restore(db, user_id):
    with pytest.raises(NothingToRestore):
        subscriptions.restore(db, user_id=user_id, purchase=make_purchase(expires_in=-timedelta(days=1)))
    with pytest.raises(NothingToRestore):
        subscriptions.restore(db, user_id=user_id, purchase=None)

    row = subscriptions.restore(db, user_id=user_id, purchase=make_purchase("premium_monthly"))
    assert row.plan_id == "premium"
    assert subscriptions.effective_plan(db, user_id=user_id) == "premium"


def test_transition_table():
    assert subscriptions.can_transition("active", "cancelled")
    assert subscriptions.can_transition("grace_period", "active")
    assert not subscriptions.can_transition("expired", "active")
    assert not subscriptions.can_transition("upgraded", "active")


def test_store_event_renewal_and_expiry(db, user_id):
    purchase = make_purchase(platform="google")
    row = subscriptions.process_purchase(db, user_id=user_id, purchase=purchase)

    cancelled = subscriptions.apply_store_event(
        db, platform="google", transaction_id=purchase.transaction_id, target_status="cancelled"
    )
    assert cancelled.status == "cancelled"

    new_expiry = datetime.now(timezone.utc) + timedelta(days=60)
    renewed = subscriptions.apply_store_event(
        db,
        platform="google",
        transaction_id=purchase.transaction_id,
        target_status="active",
        expires_at=new_expiry,
        action="renew",
    )
    assert renewed.status == "active"

    expired = subscriptions.apply_store_event(
        db, platform="google", transaction_id=purchase.transaction_id, target_status="expired"
    )
    assert expired.id == row.id
    assert db.get(User, user_id).plan == "free"

    # terminal status; a late renewal is ignored
    assert (
        subscriptions.apply_store_event(
            db, platform="google", transaction_id=purchase.transaction_id, target_status="active"
        )
        is None
    )


def test_store_event_unknown_transaction(db):
    assert (
        subscriptions.apply_store_event(
            db, platform="apple", transaction_id="missing-tx", target_status="expired"
        )
        is None
    )


def test_resolve_rereads_after_concurrent_purchase(db, user_id, monkeypatch):
    subscriptions.process_purchase(db, user_id=user_id, purchase=make_purchase(expires_in=-timedelta(days=10)))
    real_transition = subscriptions._transition

    def _purchase_first(session, row, to_status, action, **values):
        if to_status == "expired":
            session.commit()
            with SessionLocal() as other:
                subscriptions.process_purchase(
                    other, user_id=user_id, purchase=make_purchase("premium_monthly")
                )
        return real_transition(session, row, to_status, action, **values)

    monkeypatch.setattr(subscriptions, "_transition", _purchase_first)
    state = subscriptions.resolve_status(db, user_id=user_id)
    assert state.active is True
    assert state.plan == "premium"
    assert state.status == "active"
