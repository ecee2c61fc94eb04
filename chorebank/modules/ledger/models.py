from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String

from chorebank.core.clock import NowUtc
from chorebank.db import Base


class LedgerEntryType(str, Enum):
    EARNED = "earned"
    SPENT = "spent"
    REFUNDED = "refunded"
    BONUS = "bonus"
    PENALTY = "penalty"


CREDIT_ENTRY_TYPES = {LedgerEntryType.EARNED, LedgerEntryType.BONUS, LedgerEntryType.REFUNDED}
DEBIT_ENTRY_TYPES = {LedgerEntryType.SPENT, LedgerEntryType.PENALTY}
XP_ENTRY_TYPES = {LedgerEntryType.EARNED, LedgerEntryType.BONUS}


class PointsLedgerEntry(Base):
    __tablename__ = "points_ledger_entries"
    __table_args__ = (
        Index("ix_points_ledger_child_created", "ChildId", "Id"),
    )

    Id = Column(Integer, primary_key=True, index=True)
    FamilyId = Column(Integer, ForeignKey("families.Id", ondelete="CASCADE"), nullable=False, index=True)
    ChildId = Column(Integer, ForeignKey("children.Id", ondelete="CASCADE"), nullable=False)
    EntryType = Column(String(20), nullable=False)
    Amount = Column(Integer, nullable=False)
    Reason = Column(String(300), nullable=False)
    RelatedChoreId = Column(Integer)
    RelatedRewardId = Column(Integer)
    BalanceBefore = Column(Integer, nullable=False)
    BalanceAfter = Column(Integer, nullable=False)
    CreatedAt = Column(DateTime, default=NowUtc, nullable=False)
