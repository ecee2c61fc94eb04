from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String

from chorebank.core.clock import NowUtc
from chorebank.db import Base


class Family(Base):
    __tablename__ = "families"

    Id = Column(Integer, primary_key=True, index=True)
    Name = Column(String(200), nullable=False)
    Email = Column(String(254))
    FamilyCode = Column(String(20), nullable=False, unique=True)
    SubscriptionPlan = Column(String(20), nullable=False, default="none")
    SubscriptionStatus = Column(String(20), nullable=False, default="inactive")
    SubscriptionInterval = Column(String(20))
    SubscriptionRenewalDate = Column(DateTime, index=True)
    SubscriptionLastPaymentAt = Column(DateTime)
    SubscriptionOrderId = Column(String(120))
    SubscriptionPendingPlan = Column(String(20))
    CreatedAt = Column(DateTime, default=NowUtc, nullable=False)


class Child(Base):
    __tablename__ = "children"
    __table_args__ = (
        CheckConstraint('"PointsBalance" >= 0', name="ck_children_balance_non_negative"),
    )

    Id = Column(Integer, primary_key=True, index=True)
    FamilyId = Column(Integer, ForeignKey("families.Id", ondelete="CASCADE"), nullable=False, index=True)
    DisplayName = Column(String(120), nullable=False)
    PointsBalance = Column(Integer, nullable=False, default=0)
    TotalPointsEarned = Column(Integer, nullable=False, default=0)
    Xp = Column(Integer, nullable=False, default=0)
    TotalXpEarned = Column(Integer, nullable=False, default=0)
    Version = Column(Integer, nullable=False)
    CreatedAt = Column(DateTime, default=NowUtc, nullable=False)

    __mapper_args__ = {"version_id_col": Version}
