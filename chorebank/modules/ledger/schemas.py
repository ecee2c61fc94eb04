from datetime import datetime

from pydantic import BaseModel, Field

from chorebank.modules.ledger.models import LedgerEntryType


class LedgerEntryOut(BaseModel):
    Id: int
    ChildId: int
    EntryType: LedgerEntryType
    Amount: int
    Reason: str
    RelatedChoreId: int | None = None
    RelatedRewardId: int | None = None
    BalanceBefore: int
    BalanceAfter: int
    CreatedAt: datetime


class BalanceOut(BaseModel):
    ChildId: int
    Balance: int
    Xp: int
    Level: int
    LevelTitle: str
    ProgressPercent: int


class PointsAdjustRequest(BaseModel):
    ChildId: int
    Amount: int
    Reason: str = Field(min_length=1, max_length=300)


class PointsAdjustOut(BaseModel):
    Entry: LedgerEntryOut
    XpAwarded: int
    LeveledUp: bool
    Level: int
