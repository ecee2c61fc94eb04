from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chorebank.core.clock import NowUtc, ToNaiveUtc
from chorebank.core.context import ServiceContext
from chorebank.core.errors import (
    CouponAlreadyUsedError,
    CouponExhaustedError,
    CouponExpiredError,
    NotFoundError,
    ValidationError,
)
from chorebank.core.transactions import RunInTransaction
from chorebank.modules.coupons.models import Coupon, CouponUsage, DiscountType
from chorebank.modules.coupons.schemas import CouponCreate, CouponUpdate
from chorebank.modules.families.service import GetFamily
from chorebank.modules.notifications.dispatcher import EVENT_COUPON_APPLIED

logger = logging.getLogger("coupons")

COUPON_CODE_ALPHABET = string.ascii_uppercase + string.digits
COUPON_CODE_ATTEMPTS = 10


@dataclass(frozen=True)
class CouponApplication:
    Coupon: Coupon
    OriginalAmount: int
    DiscountAmount: int
    FinalAmount: int


@dataclass(frozen=True)
class CouponStats:
    TotalCoupons: int
    ActiveCoupons: int
    TotalUsages: int
    TotalDiscountGiven: int


def NormalizeCouponCode(code: str | None) -> str:
    return (code or "").strip().upper()


def CalculateDiscount(coupon: Coupon, amount: int) -> int:
    if amount <= 0:
        return 0
    if coupon.DiscountType == DiscountType.PERCENTAGE.value:
        raw = Decimal(amount) * Decimal(coupon.DiscountValue) / Decimal(100)
        discount = int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    else:
        discount = coupon.DiscountValue
    return max(0, min(discount, amount))


def _CheckCoupon(db: Session, coupon: Coupon, family_id: int, now: datetime) -> None:
    if coupon.ValidFrom and now < coupon.ValidFrom:
        raise CouponExpiredError("Coupon is not valid yet")
    if coupon.ValidUntil and now > coupon.ValidUntil:
        raise CouponExpiredError("Coupon has expired")
    if coupon.MaxUses is not None and (coupon.UsedCount or 0) >= coupon.MaxUses:
        raise CouponExhaustedError("Coupon has no uses left")
    used = (
        db.query(CouponUsage.Id)
        .filter(CouponUsage.CouponId == coupon.Id, CouponUsage.FamilyId == family_id)
        .first()
    )
    if used:
        raise CouponAlreadyUsedError("This coupon was already used by your family")


def ValidateCoupon(db: Session, code: str, family_id: int, now: datetime | None = None) -> Coupon:
    now = ToNaiveUtc(now) or NowUtc()
    normalized = NormalizeCouponCode(code)
    coupon = (
        db.query(Coupon)
        .filter(Coupon.Code == normalized, Coupon.IsActive.is_(True))
        .first()
    ) if normalized else None
    if not coupon:
        raise NotFoundError("Coupon not found or not active")
    _CheckCoupon(db, coupon, family_id, now)
    return coupon


def RecordCouponUsage(
    db: Session,
    coupon_id: int,
    family_id: int,
    order_id: str | None,
    original_amount: int,
    now: datetime | None = None,
) -> CouponApplication:
    """Apply a coupon inside the caller's transaction.

    The coupon row is locked and every check is repeated, so two concurrent
    applications cannot both pass validation.
    """
    if isinstance(original_amount, bool) or not isinstance(original_amount, int) or original_amount < 0:
        raise ValidationError("Order amount must be a non-negative whole number of cents")
    now = ToNaiveUtc(now) or NowUtc()
    GetFamily(db, family_id)
    coupon = (
        db.query(Coupon)
        .filter(Coupon.Id == coupon_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not coupon or not coupon.IsActive:
        raise NotFoundError("Coupon not found or not active")
    _CheckCoupon(db, coupon, family_id, now)

    discount = CalculateDiscount(coupon, original_amount)
    try:
        db.add(
            CouponUsage(
                CouponId=coupon.Id,
                FamilyId=family_id,
                OrderId=order_id,
                DiscountApplied=discount,
                UsedAt=now,
            )
        )
        db.flush()
    except IntegrityError as exc:
        raise CouponAlreadyUsedError("This coupon was already used by your family") from exc

    db.query(Coupon).filter(Coupon.Id == coupon.Id).update(
        {Coupon.UsedCount: Coupon.UsedCount + 1, Coupon.UpdatedAt: now},
        synchronize_session=False,
    )
    db.flush()
    db.refresh(coupon)
    return CouponApplication(
        Coupon=coupon,
        OriginalAmount=original_amount,
        DiscountAmount=discount,
        FinalAmount=max(0, original_amount - discount),
    )


def ApplyCoupon(
    db: Session,
    ctx: ServiceContext,
    coupon_id: int,
    family_id: int,
    order_id: str | None,
    original_amount: int,
) -> CouponApplication:
    application = RunInTransaction(
        db,
        lambda: RecordCouponUsage(db, coupon_id, family_id, order_id, original_amount),
        label="apply coupon",
    )
    logger.info(
        "coupon applied coupon_id=%s family_id=%s discount=%s final=%s",
        coupon_id,
        family_id,
        application.DiscountAmount,
        application.FinalAmount,
    )
    ctx.AfterCommit(
        family_id,
        EVENT_COUPON_APPLIED,
        {
            "Code": application.Coupon.Code,
            "OrderId": order_id,
            "DiscountAmount": application.DiscountAmount,
            "FinalAmount": application.FinalAmount,
        },
    )
    return application


def GenerateCouponCode(prefix: str = "KK", length: int = 8) -> str:
    return NormalizeCouponCode(prefix) + "".join(secrets.choice(COUPON_CODE_ALPHABET) for _ in range(length))


def _ValidateDiscount(discount_type: str, value: int) -> None:
    if value is None or value <= 0:
        raise ValidationError("Discount value must be positive")
    if discount_type == DiscountType.PERCENTAGE.value and value > 100:
        raise ValidationError("Percentage discounts must be between 1 and 100")


def _ValidateWindow(valid_from: datetime | None, valid_until: datetime | None) -> None:
    if valid_from and valid_until and valid_from > valid_until:
        raise ValidationError("ValidFrom must be before ValidUntil")


def CreateCoupon(db: Session, payload: CouponCreate) -> Coupon:
    discount_type = DiscountType(payload.DiscountType).value
    _ValidateDiscount(discount_type, payload.DiscountValue)
    valid_from = ToNaiveUtc(payload.ValidFrom)
    valid_until = ToNaiveUtc(payload.ValidUntil)
    _ValidateWindow(valid_from, valid_until)

    def _work() -> Coupon:
        code = NormalizeCouponCode(payload.Code)
        if code:
            if db.query(Coupon.Id).filter(Coupon.Code == code).first():
                raise ValidationError("Coupon code already exists")
        else:
            for _ in range(COUPON_CODE_ATTEMPTS):
                code = GenerateCouponCode()
                if not db.query(Coupon.Id).filter(Coupon.Code == code).first():
                    break
            else:
                raise RuntimeError("Unable to generate a unique coupon code")
        now = NowUtc()
        coupon = Coupon(
            Code=code,
            Description=(payload.Description or "").strip() or None,
            DiscountType=discount_type,
            DiscountValue=payload.DiscountValue,
            MaxUses=payload.MaxUses,
            UsedCount=0,
            IsActive=payload.IsActive,
            ValidFrom=valid_from,
            ValidUntil=valid_until,
            CreatedAt=now,
            UpdatedAt=now,
        )
        db.add(coupon)
        db.flush()
        return coupon

    coupon = RunInTransaction(db, _work, label="create coupon")
    logger.info("coupon created coupon_id=%s code=%s", coupon.Id, coupon.Code)
    return coupon


def GetCoupon(db: Session, coupon_id: int) -> Coupon:
    coupon = db.query(Coupon).filter(Coupon.Id == coupon_id).first()
    if not coupon:
        raise NotFoundError("Coupon not found")
    return coupon


def ListCoupons(db: Session) -> list[Coupon]:
    return db.query(Coupon).order_by(Coupon.CreatedAt.desc(), Coupon.Id.desc()).all()


def UpdateCoupon(db: Session, coupon_id: int, payload: CouponUpdate) -> Coupon:
    def _work() -> Coupon:
        coupon = GetCoupon(db, coupon_id)
        discount_type = DiscountType(payload.DiscountType).value if payload.DiscountType else coupon.DiscountType
        discount_value = payload.DiscountValue if payload.DiscountValue is not None else coupon.DiscountValue
        _ValidateDiscount(discount_type, discount_value)
        fields = payload.model_fields_set
        valid_from = ToNaiveUtc(payload.ValidFrom) if "ValidFrom" in fields else coupon.ValidFrom
        valid_until = ToNaiveUtc(payload.ValidUntil) if "ValidUntil" in fields else coupon.ValidUntil
        _ValidateWindow(valid_from, valid_until)

        coupon.DiscountType = discount_type
        coupon.DiscountValue = discount_value
        coupon.ValidFrom = valid_from
        coupon.ValidUntil = valid_until
        if "Description" in fields:
            coupon.Description = (payload.Description or "").strip() or None
        if "MaxUses" in fields:
            coupon.MaxUses = payload.MaxUses
        if payload.IsActive is not None:
            coupon.IsActive = payload.IsActive
        coupon.UpdatedAt = NowUtc()
        db.add(coupon)
        db.flush()
        return coupon

    return RunInTransaction(db, _work, label="update coupon")


def DeleteCoupon(db: Session, coupon_id: int) -> None:
    def _work() -> None:
        coupon = GetCoupon(db, coupon_id)
        db.query(CouponUsage).filter(CouponUsage.CouponId == coupon.Id).delete(synchronize_session=False)
        db.delete(coupon)
        db.flush()

    RunInTransaction(db, _work, label="delete coupon")
    logger.info("coupon deleted coupon_id=%s", coupon_id)


def GetCouponStats(db: Session) -> CouponStats:
    total = db.query(func.count(Coupon.Id)).scalar() or 0
    active = db.query(func.count(Coupon.Id)).filter(Coupon.IsActive.is_(True)).scalar() or 0
    usages = db.query(func.count(CouponUsage.Id)).scalar() or 0
    discount = db.query(func.coalesce(func.sum(CouponUsage.DiscountApplied), 0)).scalar() or 0
    return CouponStats(
        TotalCoupons=int(total),
        ActiveCoupons=int(active),
        TotalUsages=int(usages),
        TotalDiscountGiven=int(discount),
    )
