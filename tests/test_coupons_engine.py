from datetime import datetime, timedelta

import pytest

from chorebank.core.clock import NowUtc
from chorebank.core.errors import (
    CouponAlreadyUsedError,
    CouponExhaustedError,
    CouponExpiredError,
    NotFoundError,
    ValidationError,
)
from chorebank.modules.coupons.models import Coupon, CouponUsage
from chorebank.modules.coupons.schemas import CouponCreate, CouponUpdate
from chorebank.modules.coupons.service import (
    ApplyCoupon,
    CalculateDiscount,
    CreateCoupon,
    DeleteCoupon,
    GetCouponStats,
    UpdateCoupon,
    ValidateCoupon,
)


def _BuildCoupon(db, **overrides):
    payload = {"Code": "save20", "DiscountType": "percentage", "DiscountValue": 20, "MaxUses": 100}
    payload.update(overrides)
    return CreateCoupon(db, CouponCreate(**payload))


def _BuildUsage(db, coupon, family_id):
    db.add(CouponUsage(CouponId=coupon.Id, FamilyId=family_id, OrderId="old-order", DiscountApplied=100))
    db.query(Coupon).filter(Coupon.Id == coupon.Id).update({Coupon.UsedCount: 40})
    db.commit()


def test_save20_scenario(db, ctx, notifier, family, other_family):
    coupon = _BuildCoupon(db)
    assert coupon.Code == "SAVE20"
    _BuildUsage(db, coupon, family.Id)

    with pytest.raises(CouponAlreadyUsedError):
        ApplyCoupon(db, ctx, coupon.Id, family.Id, "order-1", 1000)
    db.expire_all()
    assert db.query(Coupon).filter(Coupon.Id == coupon.Id).one().UsedCount == 40

    application = ApplyCoupon(db, ctx, coupon.Id, other_family.Id, "order-2", 1000)
    assert application.DiscountAmount == 200
    assert application.FinalAmount == 800
    assert application.Coupon.UsedCount == 41
    assert notifier.Types() == ["CouponApplied"]


def test_validate_is_case_insensitive_and_checks_family(db, family, other_family):
    coupon = _BuildCoupon(db)
    _BuildUsage(db, coupon, family.Id)
    assert ValidateCoupon(db, "  Save20 ", other_family.Id).Id == coupon.Id
    with pytest.raises(CouponAlreadyUsedError):
        ValidateCoupon(db, "SAVE20", family.Id)


def test_unknown_and_inactive_codes_are_not_found(db, family):
    _BuildCoupon(db, Code="OFF", IsActive=False)
    with pytest.raises(NotFoundError):
        ValidateCoupon(db, "OFF", family.Id)
    with pytest.raises(NotFoundError):
        ValidateCoupon(db, "MISSING", family.Id)
    with pytest.raises(NotFoundError):
        ValidateCoupon(db, "   ", family.Id)


def test_validity_window_is_enforced(db, family):
    now = datetime(2024, 6, 1, 12, 0)
    _BuildCoupon(db, Code="SUMMER", ValidFrom=datetime(2024, 7, 1), ValidUntil=datetime(2024, 8, 31))
    with pytest.raises(CouponExpiredError):
        ValidateCoupon(db, "SUMMER", family.Id, now=now)
    with pytest.raises(CouponExpiredError):
        ValidateCoupon(db, "SUMMER", family.Id, now=datetime(2024, 9, 1))
    assert ValidateCoupon(db, "SUMMER", family.Id, now=datetime(2024, 7, 15)).Code == "SUMMER"


def test_expiry_is_reported_before_exhaustion(db, family):
    coupon = _BuildCoupon(db, Code="OLD", MaxUses=1, ValidUntil=NowUtc() - timedelta(days=1))
    db.query(Coupon).filter(Coupon.Id == coupon.Id).update({Coupon.UsedCount: 1})
    db.commit()
    with pytest.raises(CouponExpiredError):
        ValidateCoupon(db, "OLD", family.Id)


def test_exhausted_coupon_is_rejected(db, ctx, family, other_family):
    coupon = _BuildCoupon(db, Code="ONCE", MaxUses=1)
    ApplyCoupon(db, ctx, coupon.Id, family.Id, "order-1", 500)
    with pytest.raises(CouponExhaustedError):
        ApplyCoupon(db, ctx, coupon.Id, other_family.Id, "order-2", 500)
    assert db.query(CouponUsage).filter(CouponUsage.CouponId == coupon.Id).count() == 1


@pytest.mark.parametrize(
    "discount_type, value, amount, expected",
    [
        ("percentage", 15, 999, 150),
        ("percentage", 10, 5, 1),
        ("percentage", 100, 499, 499),
        ("fixed", 500, 300, 300),
        ("fixed", 100, 499, 100),
        ("percentage", 20, 0, 0),
    ],
)
def test_discount_calculation(discount_type, value, amount, expected):
    coupon = Coupon(DiscountType=discount_type, DiscountValue=value)
    assert CalculateDiscount(coupon, amount) == expected


def test_create_rejects_bad_definitions(db):
    with pytest.raises(ValidationError):
        _BuildCoupon(db, Code="BIG", DiscountValue=150)
    with pytest.raises(ValidationError):
        _BuildCoupon(db, Code="BACKWARDS", ValidFrom=datetime(2024, 2, 1), ValidUntil=datetime(2024, 1, 1))
    _BuildCoupon(db, Code="TWICE")
    with pytest.raises(ValidationError):
        _BuildCoupon(db, Code="twice")


def test_code_is_generated_when_missing(db):
    coupon = _BuildCoupon(db, Code=None)
    assert coupon.Code.startswith("KK")
    assert len(coupon.Code) == 10


def test_update_and_stats(db, ctx, family):
    coupon = _BuildCoupon(db, Code="WELCOME", DiscountType="fixed", DiscountValue=100)
    updated = UpdateCoupon(db, coupon.Id, CouponUpdate(DiscountValue=150, MaxUses=None))
    assert updated.DiscountValue == 150
    assert updated.MaxUses is None

    ApplyCoupon(db, ctx, coupon.Id, family.Id, "order-1", 499)
    UpdateCoupon(db, coupon.Id, CouponUpdate(IsActive=False))
    stats = GetCouponStats(db)
    assert stats.TotalCoupons == 1
    assert stats.ActiveCoupons == 0
    assert stats.TotalUsages == 1
    assert stats.TotalDiscountGiven == 150

    DeleteCoupon(db, coupon.Id)
    assert GetCouponStats(db).TotalUsages == 0


def test_same_family_can_apply_only_once(db, ctx, family):
    coupon = _BuildCoupon(db, Code="HELLO")
    first = ApplyCoupon(db, ctx, coupon.Id, family.Id, "order-1", 1000)
    assert first.Coupon.UsedCount == 1
    with pytest.raises(CouponAlreadyUsedError):
        ApplyCoupon(db, ctx, coupon.Id, family.Id, "order-2", 1000)
    db.expire_all()
    assert db.query(Coupon).filter(Coupon.Id == coupon.Id).one().UsedCount == 1
    assert db.query(CouponUsage).filter(CouponUsage.CouponId == coupon.Id).count() == 1
