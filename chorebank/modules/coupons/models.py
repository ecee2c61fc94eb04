from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from chorebank.core.clock import NowUtc
from chorebank.db import Base


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(Base):
    __tablename__ = "coupons"

    Id = Column(Integer, primary_key=True, index=True)
    Code = Column(String(50), nullable=False, unique=True)
    Description = Column(String(300))
    DiscountType = Column(String(20), nullable=False)
    DiscountValue = Column(Integer, nullable=False)
    MaxUses = Column(Integer)
    UsedCount = Column(Integer, nullable=False, default=0)
    IsActive = Column(Boolean, nullable=False, default=True)
    ValidFrom = Column(DateTime)
    ValidUntil = Column(DateTime)
    CreatedAt = Column(DateTime, default=NowUtc, nullable=False)
    UpdatedAt = Column(DateTime, default=NowUtc, nullable=False)


class CouponUsage(Base):
    __tablename__ = "coupon_usages"
    __table_args__ = (
        UniqueConstraint("CouponId", "FamilyId", name="uq_coupon_usages_family"),
    )

    Id = Column(Integer, primary_key=True, index=True)
    CouponId = Column(Integer, ForeignKey("coupons.Id", ondelete="CASCADE"), nullable=False, index=True)
    FamilyId = Column(Integer, ForeignKey("families.Id", ondelete="CASCADE"), nullable=False, index=True)
    OrderId = Column(String(120))
    DiscountApplied = Column(Integer, nullable=False)
    UsedAt = Column(DateTime, default=NowUtc, nullable=False)
