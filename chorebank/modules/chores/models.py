from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from chorebank.core.clock import NowUtc
from chorebank.db import Base


class ChoreStatus(str, Enum):
    AVAILABLE = "available"
    SUBMITTED = "submitted"
    APPROVED = "approved"


class RecurrenceType(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class Chore(Base):
    __tablename__ = "chores"
    __table_args__ = (
        UniqueConstraint("TemplateId", "DueDate", name="uq_chores_template_due"),
    )

    Id = Column(Integer, primary_key=True, index=True)
    FamilyId = Column(Integer, ForeignKey("families.Id", ondelete="CASCADE"), nullable=False, index=True)
    Name = Column(String(200), nullable=False)
    Points = Column(Integer, nullable=False)
    Status = Column(String(20), nullable=False, default=ChoreStatus.AVAILABLE.value)
    SubmittedByChildId = Column(Integer, index=True)
    SubmittedAt = Column(DateTime)
    Emotion = Column(String(40))
    PhotoUrl = Column(String(500))
    ApprovedAt = Column(DateTime)
    RecurrenceType = Column(String(20), nullable=False, default="none")
    RecurrenceDays = Column(String(100))
    RecurrenceRule = Column(String(100))
    IsTemplate = Column(Boolean, nullable=False, default=False)
    TemplateId = Column(Integer, index=True)
    NextDueDate = Column(DateTime, index=True)
    DueDate = Column(DateTime)
    CreatedAt = Column(DateTime, default=NowUtc, nullable=False)
    UpdatedAt = Column(DateTime, default=NowUtc, nullable=False)


class ChoreAssignment(Base):
    __tablename__ = "chore_assignments"
    __table_args__ = (
        UniqueConstraint("ChoreId", "ChildId", name="uq_chore_assignments"),
    )

    Id = Column(Integer, primary_key=True, index=True)
    ChoreId = Column(Integer, ForeignKey("chores.Id", ondelete="CASCADE"), nullable=False, index=True)
    ChildId = Column(Integer, ForeignKey("children.Id", ondelete="CASCADE"), nullable=False, index=True)
