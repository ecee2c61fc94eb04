from datetime import datetime

from pydantic import BaseModel, Field

from chorebank.modules.chores.models import ChoreStatus
from chorebank.modules.chores.models import RecurrenceType as RecurrenceKind


class ChoreOut(BaseModel):
    Id: int
    Name: str
    Points: int
    Status: ChoreStatus
    AssignedChildIds: list[int]
    SubmittedByChildId: int | None = None
    SubmittedAt: datetime | None = None
    Emotion: str | None = None
    PhotoUrl: str | None = None
    ApprovedAt: datetime | None = None
    RecurrenceType: RecurrenceKind
    RecurrenceDays: list[str] = []
    RecurrenceRule: str | None = None
    IsTemplate: bool
    TemplateId: int | None = None
    NextDueDate: datetime | None = None
    DueDate: datetime | None = None


class ChoreCreate(BaseModel):
    Name: str = Field(min_length=1, max_length=200)
    Points: int = Field(ge=1, le=100000)
    AssignedChildIds: list[int] = []
    RecurrenceType: RecurrenceKind = RecurrenceKind.NONE
    RecurrenceDays: list[str] | None = None
    RecurrenceRule: str | None = Field(default=None, max_length=100)


class ChoreUpdate(BaseModel):
    Name: str | None = Field(default=None, min_length=1, max_length=200)
    Points: int | None = Field(default=None, ge=1, le=100000)
    AssignedChildIds: list[int] | None = None
    RecurrenceType: RecurrenceKind | None = None
    RecurrenceDays: list[str] | None = None
    RecurrenceRule: str | None = Field(default=None, max_length=100)


class ChoreSubmitRequest(BaseModel):
    ChildId: int | None = None
    Emotion: str | None = Field(default=None, max_length=40)
    PhotoUrl: str | None = Field(default=None, max_length=500)


class ChoreApprovalOut(BaseModel):
    Chore: ChoreOut
    LedgerEntryId: int
    BalanceAfter: int
    XpAwarded: int
    LeveledUp: bool
    Level: int
