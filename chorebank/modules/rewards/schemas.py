from datetime import datetime

from pydantic import BaseModel, Field

from chorebank.modules.rewards.models import PendingRewardStatus


class RewardOut(BaseModel):
    Id: int
    Name: str
    Cost: int
    Category: str
    IsActive: bool
    AssignedChildIds: list[int]


class RewardCreate(BaseModel):
    Name: str = Field(min_length=1, max_length=200)
    Cost: int = Field(ge=1, le=1000000)
    Category: str = Field(default="privilege", min_length=1, max_length=40)
    IsActive: bool = True
    AssignedChildIds: list[int] = []


class RewardUpdate(BaseModel):
    Name: str | None = Field(default=None, min_length=1, max_length=200)
    Cost: int | None = Field(default=None, ge=1, le=1000000)
    Category: str | None = Field(default=None, min_length=1, max_length=40)
    IsActive: bool | None = None
    AssignedChildIds: list[int] | None = None


class RedeemRequest(BaseModel):
    ChildId: int | None = None


class PendingRewardOut(BaseModel):
    Id: int
    ChildId: int
    RewardId: int
    RewardName: str
    Points: int
    Status: PendingRewardStatus
    LedgerEntryId: int | None = None
    RedeemedAt: datetime
    ResolvedAt: datetime | None = None
