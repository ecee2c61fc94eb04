from datetime import datetime

from pydantic import BaseModel, Field

from chorebank.modules.coupons.models import DiscountType as DiscountKind


class CouponOut(BaseModel):
    Id: int
    Code: str
    Description: str | None = None
    DiscountType: DiscountKind
    DiscountValue: int
    MaxUses: int | None = None
    UsedCount: int
    IsActive: bool
    ValidFrom: datetime | None = None
    ValidUntil: datetime | None = None


class CouponCreate(BaseModel):
    Code: str | None = Field(default=None, min_length=3, max_length=50)
    Description: str | None = Field(default=None, max_length=300)
    DiscountType: DiscountKind
    DiscountValue: int = Field(ge=1)
    MaxUses: int | None = Field(default=None, ge=1)
    IsActive: bool = True
    ValidFrom: datetime | None = None
    ValidUntil: datetime | None = None


class CouponUpdate(BaseModel):
    Description: str | None = Field(default=None, max_length=300)
    DiscountType: DiscountKind | None = None
    DiscountValue: int | None = Field(default=None, ge=1)
    MaxUses: int | None = Field(default=None, ge=1)
    IsActive: bool | None = None
    ValidFrom: datetime | None = None
    ValidUntil: datetime | None = None


class CouponValidateRequest(BaseModel):
    Code: str = Field(min_length=1, max_length=50)
    Amount: int | None = Field(default=None, ge=0)


class CouponValidateResponse(BaseModel):
    CouponId: int
    Code: str
    DiscountType: DiscountKind
    DiscountValue: int
    DiscountAmount: int | None = None
    FinalAmount: int | None = None


class CouponStatsOut(BaseModel):
    TotalCoupons: int
    ActiveCoupons: int
    TotalUsages: int
    TotalDiscountGiven: int
