from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from chorebank.core.clock import NowUtc
from chorebank.db import Base


class SubscriptionPlan(str, Enum):
    NONE = "none"
    STARTER = "starter"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class BillingInterval(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


PLAN_RANK = {
    SubscriptionPlan.NONE.value: 0,
    SubscriptionPlan.STARTER.value: 1,
    SubscriptionPlan.PREMIUM.value: 2,
}


class SubscriptionEvent(Base):
    __tablename__ = "subscription_events"

    Id = Column(Integer, primary_key=True, index=True)
    FamilyId = Column(Integer, ForeignKey("families.Id", ondelete="CASCADE"), nullable=False, index=True)
    Action = Column(String(40), nullable=False)
    OrderId = Column(String(120))
    BeforeJson = Column(Text)
    AfterJson = Column(Text)
    CreatedAt = Column(DateTime, default=NowUtc, nullable=False)
