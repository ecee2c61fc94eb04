from datetime import datetime

from pydantic import BaseModel, Field

from chorebank.modules.subscriptions.models import BillingInterval, SubscriptionPlan


class SubscriptionOut(BaseModel):
    FamilyId: int
    Plan: str
    Status: str
    Interval: str | None = None
    RenewalDate: datetime | None = None
    LastPaymentAt: datetime | None = None
    PendingPlan: str | None = None
    HasPremiumAccess: bool


class UpgradeRequest(BaseModel):
    FamilyId: int
    Plan: SubscriptionPlan
    Interval: BillingInterval = BillingInterval.MONTHLY
    DurationMonths: int | None = Field(default=None, ge=1, le=120)
    OrderId: str | None = Field(default=None, max_length=120)


class DowngradeRequest(BaseModel):
    Immediate: bool = False
    ToPlan: SubscriptionPlan = SubscriptionPlan.NONE
    OrderId: str | None = Field(default=None, max_length=120)


class ExtendRequest(BaseModel):
    FamilyId: int
    Months: int = Field(ge=1, le=120)
    OrderId: str | None = Field(default=None, max_length=120)


class CancelRequest(BaseModel):
    OrderId: str | None = Field(default=None, max_length=120)


class CheckoutQuoteRequest(BaseModel):
    Plan: SubscriptionPlan
    Interval: BillingInterval
    CouponCode: str | None = Field(default=None, max_length=50)


class CheckoutQuoteOut(BaseModel):
    Plan: str
    Interval: str
    ListPrice: int
    CouponId: int | None = None
    CouponCode: str | None = None
    DiscountAmount: int
    FinalAmount: int


class CheckoutCompleteRequest(BaseModel):
    FamilyId: int
    Plan: SubscriptionPlan
    Interval: BillingInterval
    OrderId: str = Field(min_length=1, max_length=120)
    CouponId: int | None = None


class CheckoutCompleteOut(BaseModel):
    Subscription: SubscriptionOut
    AmountCharged: int
    DiscountAmount: int


class SubscriptionEventOut(BaseModel):
    Id: int
    Action: str
    OrderId: str | None = None
    CreatedAt: datetime


class ExpiringSubscriptionOut(BaseModel):
    FamilyId: int
    Name: str
    Email: str | None = None
    Plan: str
    RenewalDate: datetime | None = None


class SubscriptionStatsOut(BaseModel):
    TotalFamilies: int
    ActiveSubscriptions: int
    PremiumSubscriptions: int
    StarterSubscriptions: int
    PastDueSubscriptions: int
    CanceledSubscriptions: int
    ExpiringSoon: int


class BulkOperationIn(BaseModel):
    FamilyId: int
    Action: str = Field(min_length=1, max_length=20)
    Options: dict | None = None


class BulkRequest(BaseModel):
    Operations: list[BulkOperationIn] = Field(min_length=1, max_length=500)


class BulkResultOut(BaseModel):
    FamilyId: int
    Success: bool
    Subscription: SubscriptionOut | None = None
    Error: str | None = None
