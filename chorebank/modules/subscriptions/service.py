from __future__ import annotations

import calendar
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from chorebank.core.clock import NowUtc, ToNaiveUtc
from chorebank.core.context import ServiceContext
from chorebank.core.errors import EconomyError, InvalidTransitionError, NotFoundError, ValidationError
from chorebank.core.transactions import RunInTransaction
from chorebank.modules.families.models import Family
from chorebank.modules.notifications.dispatcher import EVENT_SUBSCRIPTION_CHANGED
from chorebank.modules.subscriptions.models import (
    PLAN_RANK,
    BillingInterval,
    SubscriptionEvent,
    SubscriptionPlan,
    SubscriptionStatus,
)

logger = logging.getLogger("subscriptions")

ACTION_UPGRADE = "upgrade"
ACTION_DOWNGRADE = "downgrade"
ACTION_SCHEDULE_DOWNGRADE = "schedule_downgrade"
ACTION_EXTEND = "extend"
ACTION_CANCEL = "cancel"
ACTION_PAST_DUE = "past_due"
ACTION_LAPSE = "lapse"

DEFAULT_EXPIRING_DAYS = 30


@dataclass(frozen=True)
class SubscriptionState:
    FamilyId: int
    Plan: str
    Status: str
    Interval: str | None
    RenewalDate: datetime | None
    LastPaymentAt: datetime | None
    OrderId: str | None
    PendingPlan: str | None

    @property
    def HasPremiumAccess(self) -> bool:
        if self.Plan != SubscriptionPlan.PREMIUM.value:
            return False
        if self.Status in {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAST_DUE.value}:
            return True
        if self.Status == SubscriptionStatus.CANCELED.value:
            return self.RenewalDate is not None and self.RenewalDate > NowUtc()
        return False


@dataclass(frozen=True)
class SubscriptionStats:
    TotalFamilies: int
    ActiveSubscriptions: int
    PremiumSubscriptions: int
    StarterSubscriptions: int
    PastDueSubscriptions: int
    CanceledSubscriptions: int
    ExpiringSoon: int


@dataclass(frozen=True)
class BulkSubscriptionOperation:
    FamilyId: int
    Action: str
    Options: dict[str, Any] | None = None


@dataclass(frozen=True)
class BulkOperationResult:
    FamilyId: int
    Success: bool
    State: SubscriptionState | None = None
    Error: str | None = None


def AddMonths(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def BuildSubscriptionState(family: Family) -> SubscriptionState:
    return SubscriptionState(
        FamilyId=family.Id,
        Plan=family.SubscriptionPlan or SubscriptionPlan.NONE.value,
        Status=family.SubscriptionStatus or SubscriptionStatus.INACTIVE.value,
        Interval=family.SubscriptionInterval,
        RenewalDate=family.SubscriptionRenewalDate,
        LastPaymentAt=family.SubscriptionLastPaymentAt,
        OrderId=family.SubscriptionOrderId,
        PendingPlan=family.SubscriptionPendingPlan,
    )


def _ParsePlan(plan: str | SubscriptionPlan) -> SubscriptionPlan:
    try:
        return SubscriptionPlan(plan)
    except ValueError as exc:
        raise ValidationError(f"Unknown plan: {plan}") from exc


def _ParseInterval(interval: str | BillingInterval) -> BillingInterval:
    try:
        return BillingInterval(interval)
    except ValueError as exc:
        raise ValidationError(f"Unknown billing interval: {interval}") from exc


def _LockFamily(db: Session, family_id: int) -> Family:
    family = (
        db.query(Family)
        .filter(Family.Id == family_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not family:
        raise NotFoundError("Family not found")
    return family


def _SerializeState(state: SubscriptionState) -> str:
    return json.dumps(asdict(state), default=str, separators=(",", ":"))


def _RecordEvent(db: Session, family: Family, action: str, order_id: str | None, before: SubscriptionState) -> SubscriptionState:
    if order_id:
        family.SubscriptionOrderId = order_id
    db.add(family)
    db.flush()
    after = BuildSubscriptionState(family)
    db.add(
        SubscriptionEvent(
            FamilyId=family.Id,
            Action=action,
            OrderId=order_id,
            BeforeJson=_SerializeState(before),
            AfterJson=_SerializeState(after),
        )
    )
    db.flush()
    logger.info(
        "subscription %s family_id=%s plan=%s->%s status=%s->%s",
        action,
        family.Id,
        before.Plan,
        after.Plan,
        before.Status,
        after.Status,
    )
    return after


def _Notify(ctx: ServiceContext, action: str, state: SubscriptionState) -> None:
    ctx.AfterCommit(
        state.FamilyId,
        EVENT_SUBSCRIPTION_CHANGED,
        {
            "Action": action,
            "Plan": state.Plan,
            "Status": state.Status,
            "Interval": state.Interval,
            "RenewalDate": state.RenewalDate,
            "PendingPlan": state.PendingPlan,
        },
    )


def ApplyUpgrade(
    db: Session,
    family_id: int,
    plan: str | SubscriptionPlan,
    interval: str | BillingInterval,
    duration_months: int | None = None,
    order_id: str | None = None,
    now: datetime | None = None,
) -> SubscriptionState:
    """Start a paid term at `now`.

    The renewal date restarts from `now` even when an active term still has time
    left. Adding months on top of the current renewal is what Extend does.
    """
    plan_value = _ParsePlan(plan)
    if plan_value == SubscriptionPlan.NONE:
        raise ValidationError("Upgrade needs a paid plan")
    interval_value = _ParseInterval(interval)
    if duration_months is not None and duration_months < 1:
        raise ValidationError("Duration must be at least one month")
    months = duration_months or (12 if interval_value == BillingInterval.YEARLY else 1)
    now = ToNaiveUtc(now) or NowUtc()

    family = _LockFamily(db, family_id)
    before = BuildSubscriptionState(family)
    family.SubscriptionPlan = plan_value.value
    family.SubscriptionStatus = SubscriptionStatus.ACTIVE.value
    family.SubscriptionInterval = interval_value.value
    family.SubscriptionRenewalDate = AddMonths(now, months)
    family.SubscriptionLastPaymentAt = now
    family.SubscriptionPendingPlan = None
    return _RecordEvent(db, family, ACTION_UPGRADE, order_id, before)


def Upgrade(
    db: Session,
    ctx: ServiceContext,
    family_id: int,
    plan: str | SubscriptionPlan,
    interval: str | BillingInterval,
    duration_months: int | None = None,
    order_id: str | None = None,
    now: datetime | None = None,
) -> SubscriptionState:
    state = RunInTransaction(
        db,
        lambda: ApplyUpgrade(db, family_id, plan, interval, duration_months, order_id, now),
        label="subscription upgrade",
    )
    _Notify(ctx, ACTION_UPGRADE, state)
    return state


def _ApplyImmediateDowngrade(family: Family, to_plan: SubscriptionPlan) -> None:
    family.SubscriptionPlan = to_plan.value
    family.SubscriptionStatus = SubscriptionStatus.INACTIVE.value
    family.SubscriptionPendingPlan = None
    if to_plan == SubscriptionPlan.NONE:
        family.SubscriptionInterval = None
        family.SubscriptionRenewalDate = None


def Downgrade(
    db: Session,
    ctx: ServiceContext,
    family_id: int,
    immediate: bool = False,
    to_plan: str | SubscriptionPlan = SubscriptionPlan.NONE,
    order_id: str | None = None,
) -> SubscriptionState:
    target = _ParsePlan(to_plan)

    def _work() -> SubscriptionState:
        family = _LockFamily(db, family_id)
        before = BuildSubscriptionState(family)
        if before.Plan == SubscriptionPlan.NONE.value:
            raise InvalidTransitionError("Family has no paid plan to downgrade")
        if PLAN_RANK[target.value] >= PLAN_RANK.get(before.Plan, 0):
            raise InvalidTransitionError(f"Cannot downgrade from {before.Plan} to {target.value}")
        if immediate:
            _ApplyImmediateDowngrade(family, target)
            return _RecordEvent(db, family, ACTION_DOWNGRADE, order_id, before)
        if before.Status != SubscriptionStatus.ACTIVE.value:
            raise InvalidTransitionError("Only active subscriptions can schedule a downgrade")
        family.SubscriptionPendingPlan = target.value
        return _RecordEvent(db, family, ACTION_SCHEDULE_DOWNGRADE, order_id, before)

    state = RunInTransaction(db, _work, label="subscription downgrade")
    _Notify(ctx, ACTION_DOWNGRADE if immediate else ACTION_SCHEDULE_DOWNGRADE, state)
    return state


def Extend(
    db: Session,
    ctx: ServiceContext,
    family_id: int,
    additional_months: int,
    order_id: str | None = None,
) -> SubscriptionState:
    if isinstance(additional_months, bool) or not isinstance(additional_months, int) or additional_months < 1:
        raise ValidationError("Extension must be at least one month")

    def _work() -> SubscriptionState:
        family = _LockFamily(db, family_id)
        before = BuildSubscriptionState(family)
        if before.Status != SubscriptionStatus.ACTIVE.value:
            raise InvalidTransitionError("Family does not have an active subscription")
        base = family.SubscriptionRenewalDate or NowUtc()
        family.SubscriptionRenewalDate = AddMonths(base, additional_months)
        return _RecordEvent(db, family, ACTION_EXTEND, order_id, before)

    state = RunInTransaction(db, _work, label="subscription extend")
    _Notify(ctx, ACTION_EXTEND, state)
    return state


def Cancel(db: Session, ctx: ServiceContext, family_id: int, order_id: str | None = None) -> SubscriptionState:
    def _work() -> SubscriptionState:
        family = _LockFamily(db, family_id)
        before = BuildSubscriptionState(family)
        if before.Status not in {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAST_DUE.value}:
            raise InvalidTransitionError(f"Cannot cancel a {before.Status} subscription")
        family.SubscriptionStatus = SubscriptionStatus.CANCELED.value
        family.SubscriptionPendingPlan = None
        return _RecordEvent(db, family, ACTION_CANCEL, order_id, before)

    state = RunInTransaction(db, _work, label="subscription cancel")
    _Notify(ctx, ACTION_CANCEL, state)
    return state


def MarkPastDue(db: Session, ctx: ServiceContext, family_id: int, order_id: str | None = None) -> SubscriptionState:
    def _work() -> SubscriptionState:
        family = _LockFamily(db, family_id)
        before = BuildSubscriptionState(family)
        if before.Status != SubscriptionStatus.ACTIVE.value:
            raise InvalidTransitionError(f"Cannot mark a {before.Status} subscription past due")
        family.SubscriptionStatus = SubscriptionStatus.PAST_DUE.value
        return _RecordEvent(db, family, ACTION_PAST_DUE, order_id, before)

    state = RunInTransaction(db, _work, label="subscription past due")
    _Notify(ctx, ACTION_PAST_DUE, state)
    return state


def _RenewOne(db: Session, family_id: int, now: datetime) -> tuple[str, SubscriptionState] | None:
    family = _LockFamily(db, family_id)
    renewal = family.SubscriptionRenewalDate
    if renewal is None or renewal > now:
        return None
    before = BuildSubscriptionState(family)
    if before.Status == SubscriptionStatus.ACTIVE.value and before.PendingPlan:
        _ApplyImmediateDowngrade(family, _ParsePlan(before.PendingPlan))
        return ACTION_DOWNGRADE, _RecordEvent(db, family, ACTION_DOWNGRADE, None, before)
    if before.Status == SubscriptionStatus.CANCELED.value:
        _ApplyImmediateDowngrade(family, SubscriptionPlan.NONE)
        return ACTION_LAPSE, _RecordEvent(db, family, ACTION_LAPSE, None, before)
    if before.Status == SubscriptionStatus.ACTIVE.value:
        family.SubscriptionStatus = SubscriptionStatus.PAST_DUE.value
        return ACTION_PAST_DUE, _RecordEvent(db, family, ACTION_PAST_DUE, None, before)
    return None


def ProcessRenewals(db: Session, ctx: ServiceContext, now: datetime | None = None) -> list[int]:
    now = ToNaiveUtc(now) or NowUtc()
    family_ids = [
        row.Id
        for row in db.query(Family.Id)
        .filter(
            Family.SubscriptionRenewalDate.isnot(None),
            Family.SubscriptionRenewalDate <= now,
            Family.SubscriptionStatus.in_([SubscriptionStatus.ACTIVE.value, SubscriptionStatus.CANCELED.value]),
        )
        .order_by(Family.Id.asc())
        .all()
    ]

    processed: list[int] = []
    for family_id in family_ids:
        try:
            outcome = RunInTransaction(
                db,
                lambda family_id=family_id: _RenewOne(db, family_id, now),
                label="subscription renewal",
            )
        except EconomyError as exc:
            logger.warning("subscription renewal failed family_id=%s error=%s", family_id, exc)
            continue
        if outcome is None:
            continue
        action, state = outcome
        processed.append(family_id)
        _Notify(ctx, action, state)

    if processed:
        logger.info("subscription renewals processed=%s", len(processed))
    return processed


def GetSubscription(db: Session, family_id: int) -> SubscriptionState:
    family = db.query(Family).filter(Family.Id == family_id).first()
    if not family:
        raise NotFoundError("Family not found")
    return BuildSubscriptionState(family)


def ListSubscriptionEvents(db: Session, family_id: int, limit: int = 50) -> list[SubscriptionEvent]:
    return (
        db.query(SubscriptionEvent)
        .filter(SubscriptionEvent.FamilyId == family_id)
        .order_by(SubscriptionEvent.Id.desc())
        .limit(max(1, min(limit, 500)))
        .all()
    )


def GetExpiringSubscriptions(db: Session, days_ahead: int = DEFAULT_EXPIRING_DAYS, now: datetime | None = None) -> list[Family]:
    now = ToNaiveUtc(now) or NowUtc()
    cutoff = now + timedelta(days=days_ahead)
    return (
        db.query(Family)
        .filter(
            Family.SubscriptionStatus == SubscriptionStatus.ACTIVE.value,
            Family.SubscriptionRenewalDate.isnot(None),
            Family.SubscriptionRenewalDate <= cutoff,
        )
        .order_by(Family.SubscriptionRenewalDate.asc())
        .all()
    )


def GetSubscriptionStats(db: Session, now: datetime | None = None) -> SubscriptionStats:
    now = ToNaiveUtc(now) or NowUtc()
    cutoff = now + timedelta(days=DEFAULT_EXPIRING_DAYS)
    active = Family.SubscriptionStatus == SubscriptionStatus.ACTIVE.value

    def _count(*criteria) -> int:
        return int(db.query(func.count(Family.Id)).filter(*criteria).scalar() or 0)

    return SubscriptionStats(
        TotalFamilies=_count(),
        ActiveSubscriptions=_count(active),
        PremiumSubscriptions=_count(active, Family.SubscriptionPlan == SubscriptionPlan.PREMIUM.value),
        StarterSubscriptions=_count(active, Family.SubscriptionPlan == SubscriptionPlan.STARTER.value),
        PastDueSubscriptions=_count(Family.SubscriptionStatus == SubscriptionStatus.PAST_DUE.value),
        CanceledSubscriptions=_count(Family.SubscriptionStatus == SubscriptionStatus.CANCELED.value),
        ExpiringSoon=_count(active, Family.SubscriptionRenewalDate.isnot(None), Family.SubscriptionRenewalDate <= cutoff),
    )


def _RunBulkOperation(db: Session, ctx: ServiceContext, operation: BulkSubscriptionOperation) -> SubscriptionState:
    options = operation.Options or {}
    order_id = options.get("OrderId")
    if operation.Action == ACTION_UPGRADE:
        return Upgrade(
            db,
            ctx,
            operation.FamilyId,
            options.get("Plan", SubscriptionPlan.PREMIUM.value),
            options.get("Interval", BillingInterval.MONTHLY.value),
            duration_months=options.get("DurationMonths"),
            order_id=order_id,
        )
    if operation.Action == ACTION_DOWNGRADE:
        return Downgrade(
            db,
            ctx,
            operation.FamilyId,
            immediate=bool(options.get("Immediate", False)),
            to_plan=options.get("ToPlan", SubscriptionPlan.NONE.value),
            order_id=order_id,
        )
    if operation.Action == ACTION_EXTEND:
        return Extend(db, ctx, operation.FamilyId, int(options.get("Months", 1)), order_id=order_id)
    if operation.Action == ACTION_CANCEL:
        return Cancel(db, ctx, operation.FamilyId, order_id=order_id)
    raise ValidationError(f"Unknown action: {operation.Action}")


def BulkUpdateSubscriptions(
    db: Session,
    ctx: ServiceContext,
    operations: list[BulkSubscriptionOperation],
) -> list[BulkOperationResult]:
    results: list[BulkOperationResult] = []
    for operation in operations:
        try:
            state = _RunBulkOperation(db, ctx, operation)
        except EconomyError as exc:
            logger.warning(
                "bulk subscription %s failed family_id=%s error=%s",
                operation.Action,
                operation.FamilyId,
                exc.Message,
            )
            results.append(BulkOperationResult(FamilyId=operation.FamilyId, Success=False, Error=exc.Message))
            continue
        results.append(BulkOperationResult(FamilyId=operation.FamilyId, Success=True, State=state))
    return results
