import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from chorebank.core.context import GetServiceContext, ServiceContext
from chorebank.core.errors import EconomyError
from chorebank.core.http import HandleDbError, HandleEconomyError
from chorebank.db import GetDb
from chorebank.modules.auth.deps import UserContext
from chorebank.modules.auth.rbac import RequireAdmin, RequireFamilyMember, RequireParent, RequireSharedSecret
from chorebank.modules.subscriptions import service as subscriptions_service
from chorebank.modules.subscriptions.checkout import CompleteCheckout, QuoteCheckout
from chorebank.modules.subscriptions.schemas import (
    BulkRequest,
    BulkResultOut,
    CancelRequest,
    CheckoutCompleteOut,
    CheckoutCompleteRequest,
    CheckoutQuoteOut,
    CheckoutQuoteRequest,
    DowngradeRequest,
    ExpiringSubscriptionOut,
    ExtendRequest,
    SubscriptionEventOut,
    SubscriptionOut,
    SubscriptionStatsOut,
    UpgradeRequest,
)
from chorebank.modules.subscriptions.service import BulkSubscriptionOperation, SubscriptionState

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])
logger = logging.getLogger("subscriptions")

BILLING_SECRET_HEADER = "X-Billing-Secret"
RequireBillingSecret = RequireSharedSecret("BILLING_WEBHOOK_SECRET", BILLING_SECRET_HEADER)


def _BuildSubscriptionOut(state: SubscriptionState) -> SubscriptionOut:
    return SubscriptionOut(
        FamilyId=state.FamilyId,
        Plan=state.Plan,
        Status=state.Status,
        Interval=state.Interval,
        RenewalDate=state.RenewalDate,
        LastPaymentAt=state.LastPaymentAt,
        PendingPlan=state.PendingPlan,
        HasPremiumAccess=state.HasPremiumAccess,
    )


@router.get("", response_model=SubscriptionOut)
def GetSubscription(
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireFamilyMember()),
) -> SubscriptionOut:
    try:
        return _BuildSubscriptionOut(subscriptions_service.GetSubscription(db, user.FamilyId))
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "subscriptions")


@router.get("/events", response_model=list[SubscriptionEventOut])
def ListSubscriptionEvents(
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireParent()),
) -> list[SubscriptionEventOut]:
    try:
        events = subscriptions_service.ListSubscriptionEvents(db, user.FamilyId, limit=limit)
        return [
            SubscriptionEventOut(Id=event.Id, Action=event.Action, OrderId=event.OrderId, CreatedAt=event.CreatedAt)
            for event in events
        ]
    except ProgrammingError as exc:
        HandleDbError(exc, "subscriptions")


@router.post("/upgrade", response_model=SubscriptionOut)
def Upgrade(
    payload: UpgradeRequest,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    _: UserContext = Depends(RequireAdmin()),
) -> SubscriptionOut:
    try:
        state = subscriptions_service.Upgrade(
            db,
            ctx,
            payload.FamilyId,
            payload.Plan,
            payload.Interval,
            duration_months=payload.DurationMonths,
            order_id=payload.OrderId,
        )
        return _BuildSubscriptionOut(state)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "subscriptions")


@router.post("/downgrade", response_model=SubscriptionOut)
def Downgrade(
    payload: DowngradeRequest,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> SubscriptionOut:
    try:
        state = subscriptions_service.Downgrade(
            db,
            ctx,
            user.FamilyId,
            immediate=payload.Immediate,
            to_plan=payload.ToPlan,
            order_id=payload.OrderId,
        )
        return _BuildSubscriptionOut(state)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "subscriptions")


@router.post("/extend", response_model=SubscriptionOut)
def Extend(
    payload: ExtendRequest,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    _: UserContext = Depends(RequireAdmin()),
) -> SubscriptionOut:
    try:
        state = subscriptions_service.Extend(db, ctx, payload.FamilyId, payload.Months, order_id=payload.OrderId)
        return _BuildSubscriptionOut(state)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "subscriptions")


@router.post("/cancel", response_model=SubscriptionOut)
def Cancel(
    payload: CancelRequest,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> SubscriptionOut:
    try:
        return _BuildSubscriptionOut(subscriptions_service.Cancel(db, ctx, user.FamilyId, order_id=payload.OrderId))
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "subscriptions")


@router.post("/checkout/quote", response_model=CheckoutQuoteOut)
def QuoteCheckoutRoute(
    payload: CheckoutQuoteRequest,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireParent()),
) -> CheckoutQuoteOut:
    try:
        quote = QuoteCheckout(db, user.FamilyId, payload.Plan.value, payload.Interval.value, payload.CouponCode)
        return CheckoutQuoteOut(**asdict(quote))
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "subscriptions")


@router.post("/checkout/complete", response_model=CheckoutCompleteOut)
def CompleteCheckoutRoute(
    payload: CheckoutCompleteRequest,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    _: None = Depends(RequireBillingSecret),
) -> CheckoutCompleteOut:
    try:
        result = CompleteCheckout(
            db,
            ctx,
            payload.FamilyId,
            payload.Plan.value,
            payload.Interval.value,
            payload.OrderId,
            coupon_id=payload.CouponId,
        )
        return CheckoutCompleteOut(
            Subscription=_BuildSubscriptionOut(result.Subscription),
            AmountCharged=result.AmountCharged,
            DiscountAmount=result.Coupon.DiscountAmount if result.Coupon else 0,
        )
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "subscriptions")


@router.get("/admin/stats", response_model=SubscriptionStatsOut)
def GetSubscriptionStats(
    db: Session = Depends(GetDb),
    _: UserContext = Depends(RequireAdmin()),
) -> SubscriptionStatsOut:
    try:
        return SubscriptionStatsOut(**asdict(subscriptions_service.GetSubscriptionStats(db)))
    except ProgrammingError as exc:
        HandleDbError(exc, "subscriptions")


@router.get("/admin/expiring", response_model=list[ExpiringSubscriptionOut])
def GetExpiringSubscriptions(
    days_ahead: int = Query(default=30, ge=1, le=365),
    db: Session = Depends(GetDb),
    _: UserContext = Depends(RequireAdmin()),
) -> list[ExpiringSubscriptionOut]:
    try:
        families = subscriptions_service.GetExpiringSubscriptions(db, days_ahead=days_ahead)
        return [
            ExpiringSubscriptionOut(
                FamilyId=family.Id,
                Name=family.Name,
                Email=family.Email,
                Plan=family.SubscriptionPlan,
                RenewalDate=family.SubscriptionRenewalDate,
            )
            for family in families
        ]
    except ProgrammingError as exc:
        HandleDbError(exc, "subscriptions")


@router.post("/admin/bulk", response_model=list[BulkResultOut])
def BulkUpdateSubscriptions(
    payload: BulkRequest,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    _: UserContext = Depends(RequireAdmin()),
) -> list[BulkResultOut]:
    operations = [
        BulkSubscriptionOperation(FamilyId=item.FamilyId, Action=item.Action, Options=item.Options)
        for item in payload.Operations
    ]
    try:
        results = subscriptions_service.BulkUpdateSubscriptions(db, ctx, operations)
    except ProgrammingError as exc:
        HandleDbError(exc, "subscriptions")
    return [
        BulkResultOut(
            FamilyId=result.FamilyId,
            Success=result.Success,
            Subscription=_BuildSubscriptionOut(result.State) if result.State else None,
            Error=result.Error,
        )
        for result in results
    ]
