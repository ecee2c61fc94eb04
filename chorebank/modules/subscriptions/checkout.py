from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from chorebank.core.clock import NowUtc, ToNaiveUtc
from chorebank.core.context import ServiceContext
from chorebank.core.errors import ValidationError
from chorebank.core.transactions import RunInTransaction
from chorebank.modules.coupons.service import (
    CalculateDiscount,
    CouponApplication,
    RecordCouponUsage,
    ValidateCoupon,
)
from chorebank.modules.families.service import GetFamily
from chorebank.modules.notifications.dispatcher import EVENT_COUPON_APPLIED, EVENT_SUBSCRIPTION_CHANGED
from chorebank.modules.subscriptions.models import BillingInterval, SubscriptionPlan
from chorebank.modules.subscriptions.service import ACTION_UPGRADE, ApplyUpgrade, SubscriptionState

logger = logging.getLogger("subscriptions")


@dataclass(frozen=True)
class PlanDefinition:
    Plan: str
    Label: str
    MonthlyPriceCents: int
    YearlyPriceCents: int

    def PriceFor(self, interval: BillingInterval) -> int:
        if interval == BillingInterval.YEARLY:
            return self.YearlyPriceCents
        return self.MonthlyPriceCents


PLAN_DEFINITIONS: dict[str, PlanDefinition] = {
    SubscriptionPlan.STARTER.value: PlanDefinition(
        Plan=SubscriptionPlan.STARTER.value,
        Label="Starter",
        MonthlyPriceCents=299,
        YearlyPriceCents=2999,
    ),
    SubscriptionPlan.PREMIUM.value: PlanDefinition(
        Plan=SubscriptionPlan.PREMIUM.value,
        Label="Premium",
        MonthlyPriceCents=499,
        YearlyPriceCents=4999,
    ),
}


@dataclass(frozen=True)
class CheckoutQuote:
    Plan: str
    Interval: str
    ListPrice: int
    CouponId: int | None
    CouponCode: str | None
    DiscountAmount: int
    FinalAmount: int


@dataclass(frozen=True)
class CheckoutResult:
    Subscription: SubscriptionState
    Coupon: CouponApplication | None
    AmountCharged: int


def ResolvePlanPrice(plan: str, interval: str) -> tuple[PlanDefinition, BillingInterval, int]:
    definition = PLAN_DEFINITIONS.get(plan)
    if not definition:
        raise ValidationError(f"Unknown plan: {plan}")
    try:
        interval_value = BillingInterval(interval)
    except ValueError as exc:
        raise ValidationError(f"Unknown billing interval: {interval}") from exc
    return definition, interval_value, definition.PriceFor(interval_value)


def QuoteCheckout(
    db: Session,
    family_id: int,
    plan: str,
    interval: str,
    coupon_code: str | None = None,
    now: datetime | None = None,
) -> CheckoutQuote:
    GetFamily(db, family_id)
    definition, interval_value, price = ResolvePlanPrice(plan, interval)
    coupon = None
    discount = 0
    if coupon_code and coupon_code.strip():
        coupon = ValidateCoupon(db, coupon_code, family_id, now)
        discount = CalculateDiscount(coupon, price)
    return CheckoutQuote(
        Plan=definition.Plan,
        Interval=interval_value.value,
        ListPrice=price,
        CouponId=coupon.Id if coupon else None,
        CouponCode=coupon.Code if coupon else None,
        DiscountAmount=discount,
        FinalAmount=max(0, price - discount),
    )


def CompleteCheckout(
    db: Session,
    ctx: ServiceContext,
    family_id: int,
    plan: str,
    interval: str,
    order_id: str,
    coupon_id: int | None = None,
    now: datetime | None = None,
) -> CheckoutResult:
    """Record a paid order: coupon usage and plan upgrade commit together or not at all."""
    if not (order_id or "").strip():
        raise ValidationError("Order id is required")
    definition, interval_value, price = ResolvePlanPrice(plan, interval)
    now = ToNaiveUtc(now) or NowUtc()

    def _work() -> CheckoutResult:
        application = None
        if coupon_id is not None:
            application = RecordCouponUsage(db, coupon_id, family_id, order_id, price, now)
        state = ApplyUpgrade(db, family_id, definition.Plan, interval_value, order_id=order_id, now=now)
        charged = application.FinalAmount if application else price
        return CheckoutResult(Subscription=state, Coupon=application, AmountCharged=charged)

    result = RunInTransaction(db, _work, label="checkout")
    logger.info(
        "checkout complete family_id=%s plan=%s interval=%s charged=%s order_id=%s",
        family_id,
        definition.Plan,
        interval_value.value,
        result.AmountCharged,
        order_id,
    )
    if result.Coupon:
        ctx.AfterCommit(
            family_id,
            EVENT_COUPON_APPLIED,
            {
                "Code": result.Coupon.Coupon.Code,
                "OrderId": order_id,
                "DiscountAmount": result.Coupon.DiscountAmount,
                "FinalAmount": result.Coupon.FinalAmount,
            },
        )
    ctx.AfterCommit(
        family_id,
        EVENT_SUBSCRIPTION_CHANGED,
        {
            "Action": ACTION_UPGRADE,
            "Plan": result.Subscription.Plan,
            "Status": result.Subscription.Status,
            "Interval": result.Subscription.Interval,
            "RenewalDate": result.Subscription.RenewalDate,
            "OrderId": order_id,
        },
    )
    return result
