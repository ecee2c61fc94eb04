import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from chorebank.core.errors import EconomyError
from chorebank.core.http import HandleDbError, HandleEconomyError
from chorebank.db import GetDb
from chorebank.modules.auth.deps import UserContext
from chorebank.modules.auth.rbac import RequireAdmin, RequireParent
from chorebank.modules.coupons import service as coupons_service
from chorebank.modules.coupons.models import Coupon
from chorebank.modules.coupons.schemas import (
    CouponCreate,
    CouponOut,
    CouponStatsOut,
    CouponUpdate,
    CouponValidateRequest,
    CouponValidateResponse,
)

router = APIRouter(prefix="/api/coupons", tags=["coupons"])
logger = logging.getLogger("coupons")


def _BuildCouponOut(coupon: Coupon) -> CouponOut:
    return CouponOut(
        Id=coupon.Id,
        Code=coupon.Code,
        Description=coupon.Description,
        DiscountType=coupon.DiscountType,
        DiscountValue=coupon.DiscountValue,
        MaxUses=coupon.MaxUses,
        UsedCount=coupon.UsedCount or 0,
        IsActive=bool(coupon.IsActive),
        ValidFrom=coupon.ValidFrom,
        ValidUntil=coupon.ValidUntil,
    )


@router.post("/validate", response_model=CouponValidateResponse)
def ValidateCoupon(
    payload: CouponValidateRequest,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireParent()),
) -> CouponValidateResponse:
    try:
        coupon = coupons_service.ValidateCoupon(db, payload.Code, user.FamilyId)
        discount = None
        final = None
        if payload.Amount is not None:
            discount = coupons_service.CalculateDiscount(coupon, payload.Amount)
            final = max(0, payload.Amount - discount)
        return CouponValidateResponse(
            CouponId=coupon.Id,
            Code=coupon.Code,
            DiscountType=coupon.DiscountType,
            DiscountValue=coupon.DiscountValue,
            DiscountAmount=discount,
            FinalAmount=final,
        )
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "coupons")


@router.get("", response_model=list[CouponOut])
def ListCoupons(
    db: Session = Depends(GetDb),
    _: UserContext = Depends(RequireAdmin()),
) -> list[CouponOut]:
    try:
        return [_BuildCouponOut(coupon) for coupon in coupons_service.ListCoupons(db)]
    except ProgrammingError as exc:
        HandleDbError(exc, "coupons")


@router.get("/stats", response_model=CouponStatsOut)
def GetCouponStats(
    db: Session = Depends(GetDb),
    _: UserContext = Depends(RequireAdmin()),
) -> CouponStatsOut:
    try:
        stats = coupons_service.GetCouponStats(db)
        return CouponStatsOut(
            TotalCoupons=stats.TotalCoupons,
            ActiveCoupons=stats.ActiveCoupons,
            TotalUsages=stats.TotalUsages,
            TotalDiscountGiven=stats.TotalDiscountGiven,
        )
    except ProgrammingError as exc:
        HandleDbError(exc, "coupons")


@router.post("", response_model=CouponOut, status_code=status.HTTP_201_CREATED)
def CreateCoupon(
    payload: CouponCreate,
    db: Session = Depends(GetDb),
    _: UserContext = Depends(RequireAdmin()),
) -> CouponOut:
    try:
        return _BuildCouponOut(coupons_service.CreateCoupon(db, payload))
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "coupons")


@router.patch("/{coupon_id}", response_model=CouponOut)
def UpdateCoupon(
    coupon_id: int,
    payload: CouponUpdate,
    db: Session = Depends(GetDb),
    _: UserContext = Depends(RequireAdmin()),
) -> CouponOut:
    try:
        return _BuildCouponOut(coupons_service.UpdateCoupon(db, coupon_id, payload))
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "coupons")


@router.delete("/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT)
def DeleteCoupon(
    coupon_id: int,
    db: Session = Depends(GetDb),
    _: UserContext = Depends(RequireAdmin()),
) -> Response:
    try:
        coupons_service.DeleteCoupon(db, coupon_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "coupons")
