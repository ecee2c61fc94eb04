from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from chorebank.core.clock import NowUtc
from chorebank.db import Base


class PendingRewardStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELED = "canceled"


class Reward(Base):
    __tablename__ = "rewards"

    Id = Column(Integer, primary_key=True, index=True)
    FamilyId = Column(Integer, ForeignKey("families.Id", ondelete="CASCADE"), nullable=False, index=True)
    Name = Column(String(200), nullable=False)
    Cost = Column(Integer, nullable=False)
    Category = Column(String(40), nullable=False, default="privilege")
    IsActive = Column(Boolean, nullable=False, default=True)
    CreatedAt = Column(DateTime, default=NowUtc, nullable=False)
    UpdatedAt = Column(DateTime, default=NowUtc, nullable=False)


class RewardAssignment(Base):
    __tablename__ = "reward_assignments"
    __table_args__ = (
        UniqueConstraint("RewardId", "ChildId", name="uq_reward_assignments"),
    )

    Id = Column(Integer, primary_key=True, index=True)
    RewardId = Column(Integer, ForeignKey("rewards.Id", ondelete="CASCADE"), nullable=False, index=True)
    ChildId = Column(Integer, ForeignKey("children.Id", ondelete="CASCADE"), nullable=False, index=True)


class PendingReward(Base):
    __tablename__ = "pending_rewards"

    Id = Column(Integer, primary_key=True, index=True)
    FamilyId = Column(Integer, ForeignKey("families.Id", ondelete="CASCADE"), nullable=False, index=True)
    ChildId = Column(Integer, ForeignKey("children.Id", ondelete="CASCADE"), nullable=False, index=True)
    RewardId = Column(Integer, ForeignKey("rewards.Id", ondelete="CASCADE"), nullable=False, index=True)
    RewardName = Column(String(200), nullable=False)
    Points = Column(Integer, nullable=False)
    Status = Column(String(20), nullable=False, default=PendingRewardStatus.PENDING.value)
    LedgerEntryId = Column(Integer, ForeignKey("points_ledger_entries.Id"))
    RedeemedAt = Column(DateTime, default=NowUtc, nullable=False)
    ResolvedAt = Column(DateTime)
