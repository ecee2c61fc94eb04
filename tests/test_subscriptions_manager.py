import json
from datetime import datetime, timedelta

import pytest

from chorebank.core.clock import NowUtc
from chorebank.core.errors import ConcurrencyConflictError, InvalidTransitionError, NotFoundError, ValidationError
from chorebank.modules.families.models import Family
from chorebank.modules.subscriptions import service as subscriptions_service
from chorebank.modules.subscriptions.service import (
    AddMonths,
    BulkSubscriptionOperation,
    BulkUpdateSubscriptions,
    Cancel,
    Downgrade,
    Extend,
    GetExpiringSubscriptions,
    GetSubscription,
    GetSubscriptionStats,
    ListSubscriptionEvents,
    MarkPastDue,
    ProcessRenewals,
    Upgrade,
)

JAN_31 = datetime(2024, 1, 31, 10, 0)


@pytest.mark.parametrize(
    "value, months, expected",
    [
        (JAN_31, 1, datetime(2024, 2, 29, 10, 0)),
        (JAN_31, 3, datetime(2024, 4, 30, 10, 0)),
        (JAN_31, 12, datetime(2025, 1, 31, 10, 0)),
        (datetime(2023, 12, 15), 1, datetime(2024, 1, 15)),
        (datetime(2023, 1, 31), 1, datetime(2023, 2, 28)),
    ],
)
def test_add_months_clamps_to_month_end(value, months, expected):
    assert AddMonths(value, months) == expected


def test_upgrade_sets_active_plan_and_renewal(db, ctx, notifier, family):
    state = Upgrade(db, ctx, family.Id, "premium", "monthly", order_id="order-1", now=JAN_31)
    assert state.Plan == "premium"
    assert state.Status == "active"
    assert state.Interval == "monthly"
    assert state.RenewalDate == datetime(2024, 2, 29, 10, 0)
    assert state.LastPaymentAt == JAN_31
    assert state.OrderId == "order-1"
    assert notifier.Types() == ["SubscriptionChanged"]

    yearly = Upgrade(db, ctx, family.Id, "starter", "yearly", now=JAN_31)
    assert yearly.RenewalDate == datetime(2025, 1, 31, 10, 0)
    custom = Upgrade(db, ctx, family.Id, "premium", "monthly", duration_months=3, now=JAN_31)
    assert custom.RenewalDate == datetime(2024, 4, 30, 10, 0)


def test_upgrade_restarts_term_while_extend_keeps_it(db, ctx, family):
    Upgrade(db, ctx, family.Id, "premium", "monthly", now=JAN_31)
    extended = Extend(db, ctx, family.Id, 12)
    assert extended.RenewalDate == datetime(2025, 2, 28, 10, 0)

    restarted = Upgrade(db, ctx, family.Id, "premium", "monthly", now=datetime(2024, 2, 10))
    assert restarted.RenewalDate == datetime(2024, 3, 10)


def test_upgrade_validates_input(db, ctx, family):
    with pytest.raises(ValidationError):
        Upgrade(db, ctx, family.Id, "none", "monthly")
    with pytest.raises(ValidationError):
        Upgrade(db, ctx, family.Id, "gold", "monthly")
    with pytest.raises(ValidationError):
        Upgrade(db, ctx, family.Id, "premium", "weekly")
    with pytest.raises(NotFoundError):
        Upgrade(db, ctx, 9999, "premium", "monthly")


def test_deferred_downgrade_applies_at_renewal(db, ctx, family):
    Upgrade(db, ctx, family.Id, "premium", "monthly", now=JAN_31)
    scheduled = Downgrade(db, ctx, family.Id, immediate=False, to_plan="starter")
    assert scheduled.Plan == "premium"
    assert scheduled.Status == "active"
    assert scheduled.PendingPlan == "starter"

    assert ProcessRenewals(db, ctx, now=datetime(2024, 2, 1)) == []
    assert ProcessRenewals(db, ctx, now=datetime(2024, 3, 1)) == [family.Id]

    state = GetSubscription(db, family.Id)
    assert state.Plan == "starter"
    assert state.Status == "inactive"
    assert state.PendingPlan is None
    actions = [event.Action for event in ListSubscriptionEvents(db, family.Id)]
    assert actions == ["downgrade", "schedule_downgrade", "upgrade"]


def test_immediate_downgrade_to_none_clears_billing(db, ctx, family):
    Upgrade(db, ctx, family.Id, "premium", "monthly")
    state = Downgrade(db, ctx, family.Id, immediate=True)
    assert state.Plan == "none"
    assert state.Status == "inactive"
    assert state.Interval is None
    assert state.RenewalDate is None


def test_downgrade_must_lower_the_plan(db, ctx, family):
    with pytest.raises(InvalidTransitionError):
        Downgrade(db, ctx, family.Id)
    Upgrade(db, ctx, family.Id, "starter", "monthly")
    with pytest.raises(InvalidTransitionError):
        Downgrade(db, ctx, family.Id, to_plan="premium")
    with pytest.raises(InvalidTransitionError):
        Downgrade(db, ctx, family.Id, to_plan="starter")


def test_extend_requires_active_subscription(db, ctx, family):
    with pytest.raises(InvalidTransitionError):
        Extend(db, ctx, family.Id, 1)
    Upgrade(db, ctx, family.Id, "premium", "monthly", now=JAN_31)
    state = Extend(db, ctx, family.Id, 2)
    assert state.RenewalDate == datetime(2024, 4, 29, 10, 0)
    with pytest.raises(ValidationError):
        Extend(db, ctx, family.Id, 0)


def test_canceled_subscription_keeps_access_until_renewal(db, ctx, family):
    Upgrade(db, ctx, family.Id, "premium", "monthly")
    state = Cancel(db, ctx, family.Id)
    assert state.Status == "canceled"
    assert state.HasPremiumAccess

    with pytest.raises(InvalidTransitionError):
        Cancel(db, ctx, family.Id)

    renewed = ProcessRenewals(db, ctx, now=state.RenewalDate + timedelta(days=1))
    assert renewed == [family.Id]
    lapsed = GetSubscription(db, family.Id)
    assert lapsed.Plan == "none"
    assert lapsed.Status == "inactive"
    assert not lapsed.HasPremiumAccess


def test_active_subscription_past_renewal_becomes_past_due(db, ctx, family):
    Upgrade(db, ctx, family.Id, "premium", "monthly", now=JAN_31)
    ProcessRenewals(db, ctx, now=datetime(2024, 3, 1))
    state = GetSubscription(db, family.Id)
    assert state.Status == "past_due"
    assert state.Plan == "premium"
    assert state.HasPremiumAccess

    Cancel(db, ctx, family.Id)
    assert GetSubscription(db, family.Id).Status == "canceled"


def test_mark_past_due_only_from_active(db, ctx, family):
    with pytest.raises(InvalidTransitionError):
        MarkPastDue(db, ctx, family.Id)
    Upgrade(db, ctx, family.Id, "starter", "monthly")
    assert MarkPastDue(db, ctx, family.Id).Status == "past_due"
    assert not GetSubscription(db, family.Id).HasPremiumAccess


def test_events_record_before_and_after(db, ctx, family):
    Upgrade(db, ctx, family.Id, "premium", "monthly", order_id="order-9", now=JAN_31)
    event = ListSubscriptionEvents(db, family.Id)[0]
    assert event.OrderId == "order-9"
    assert json.loads(event.BeforeJson)["Plan"] == "none"
    assert json.loads(event.AfterJson)["Plan"] == "premium"


def test_expiring_and_stats(db, ctx, family, other_family):
    now = NowUtc()
    Upgrade(db, ctx, family.Id, "premium", "monthly", now=now)
    Upgrade(db, ctx, other_family.Id, "starter", "yearly", now=now)

    expiring = GetExpiringSubscriptions(db, days_ahead=40, now=now)
    assert [row.Id for row in expiring] == [family.Id]

    stats = GetSubscriptionStats(db, now=now)
    assert stats.TotalFamilies == 2
    assert stats.ActiveSubscriptions == 2
    assert stats.PremiumSubscriptions == 1
    assert stats.StarterSubscriptions == 1
    assert stats.CanceledSubscriptions == 0


def test_bulk_update_reports_each_operation(db, ctx, family, other_family):
    results = BulkUpdateSubscriptions(
        db,
        ctx,
        [
            BulkSubscriptionOperation(FamilyId=family.Id, Action="upgrade", Options={"Plan": "premium"}),
            BulkSubscriptionOperation(FamilyId=other_family.Id, Action="extend", Options={"Months": 2}),
            BulkSubscriptionOperation(FamilyId=family.Id, Action="explode"),
            BulkSubscriptionOperation(FamilyId=family.Id, Action="cancel"),
        ],
    )
    assert [result.Success for result in results] == [True, False, False, True]
    assert results[0].State.Plan == "premium"
    assert results[1].Error == "Family does not have an active subscription"
    assert "explode" in results[2].Error
    assert db.query(Family).filter(Family.Id == family.Id).one().SubscriptionStatus == "canceled"


def test_failed_renewal_does_not_stop_the_others(db, ctx, family, other_family, monkeypatch):
    Upgrade(db, ctx, family.Id, "premium", "monthly", now=JAN_31)
    Upgrade(db, ctx, other_family.Id, "premium", "monthly", now=JAN_31)
    original = subscriptions_service._RenewOne

    def _renew(session, family_id, now):
        if family_id == family.Id:
            raise ConcurrencyConflictError("subscription renewal could not be completed after 3 attempts")
        return original(session, family_id, now)

    monkeypatch.setattr(subscriptions_service, "_RenewOne", _renew)

    assert ProcessRenewals(db, ctx, now=datetime(2024, 3, 1)) == [other_family.Id]
    assert GetSubscription(db, family.Id).Status == "active"
    assert GetSubscription(db, other_family.Id).Status == "past_due"
