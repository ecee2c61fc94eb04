from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from chorebank.core.clock import NowUtc
from chorebank.core.context import ServiceContext
from chorebank.core.errors import InvalidTransitionError, NotFoundError
from chorebank.core.transactions import RunInTransaction
from chorebank.modules.families.service import EnsureChildrenInFamily, GetChild
from chorebank.modules.ledger.models import LedgerEntryType
from chorebank.modules.ledger.service import AppendEntry
from chorebank.modules.notifications.dispatcher import (
    EVENT_REWARD_GIVEN,
    EVENT_REWARD_REDEEMED,
    EVENT_REWARD_REFUNDED,
)
from chorebank.modules.rewards.models import PendingReward, PendingRewardStatus, Reward, RewardAssignment
from chorebank.modules.rewards.schemas import RewardCreate, RewardUpdate

logger = logging.getLogger("rewards")


def GetReward(db: Session, family_id: int, reward_id: int) -> Reward:
    reward = db.query(Reward).filter(Reward.Id == reward_id, Reward.FamilyId == family_id).first()
    if not reward:
        raise NotFoundError("Reward not found")
    return reward


def GetRewardChildIds(db: Session, reward_id: int) -> list[int]:
    return [
        row.ChildId
        for row in db.query(RewardAssignment.ChildId)
        .filter(RewardAssignment.RewardId == reward_id)
        .order_by(RewardAssignment.ChildId.asc())
        .all()
    ]


def _ReplaceRewardAssignments(db: Session, reward_id: int, child_ids: list[int]) -> None:
    db.query(RewardAssignment).filter(RewardAssignment.RewardId == reward_id).delete(synchronize_session=False)
    for child_id in child_ids:
        db.add(RewardAssignment(RewardId=reward_id, ChildId=child_id))


def ListRewards(db: Session, family_id: int, child_id: int | None = None) -> list[Reward]:
    query = db.query(Reward).filter(Reward.FamilyId == family_id)
    if child_id is not None:
        query = query.filter(Reward.IsActive.is_(True))
    rewards = query.order_by(Reward.Cost.asc(), Reward.Id.asc()).all()
    if child_id is None:
        return rewards
    return [reward for reward in rewards if _IsEligible(db, reward.Id, child_id)]


def _IsEligible(db: Session, reward_id: int, child_id: int) -> bool:
    assigned = GetRewardChildIds(db, reward_id)
    return not assigned or child_id in assigned


def CreateReward(db: Session, ctx: ServiceContext, family_id: int, payload: RewardCreate) -> Reward:
    def _work() -> Reward:
        child_ids = EnsureChildrenInFamily(db, family_id, payload.AssignedChildIds)
        reward = Reward(
            FamilyId=family_id,
            Name=payload.Name.strip(),
            Cost=payload.Cost,
            Category=payload.Category.strip(),
            IsActive=payload.IsActive,
        )
        db.add(reward)
        db.flush()
        _ReplaceRewardAssignments(db, reward.Id, child_ids)
        db.flush()
        return reward

    reward = RunInTransaction(db, _work, label="create reward")
    ctx.AfterCommit(family_id)
    return reward


def UpdateReward(db: Session, ctx: ServiceContext, family_id: int, reward_id: int, payload: RewardUpdate) -> Reward:
    def _work() -> Reward:
        reward = GetReward(db, family_id, reward_id)
        if payload.Name is not None:
            reward.Name = payload.Name.strip()
        if payload.Cost is not None:
            reward.Cost = payload.Cost
        if payload.Category is not None:
            reward.Category = payload.Category.strip()
        if payload.IsActive is not None:
            reward.IsActive = payload.IsActive
        if payload.AssignedChildIds is not None:
            _ReplaceRewardAssignments(db, reward.Id, EnsureChildrenInFamily(db, family_id, payload.AssignedChildIds))
        reward.UpdatedAt = NowUtc()
        db.add(reward)
        db.flush()
        return reward

    reward = RunInTransaction(db, _work, label="update reward")
    ctx.AfterCommit(family_id)
    return reward


def DeleteReward(db: Session, ctx: ServiceContext, family_id: int, reward_id: int) -> None:
    def _work() -> None:
        reward = GetReward(db, family_id, reward_id)
        open_pending = (
            db.query(PendingReward)
            .filter(PendingReward.RewardId == reward.Id, PendingReward.Status == PendingRewardStatus.PENDING.value)
            .all()
        )
        for pending in open_pending:
            AppendEntry(
                db,
                family_id=family_id,
                child_id=pending.ChildId,
                entry_type=LedgerEntryType.REFUNDED,
                amount=pending.Points,
                reason=f"Reward removed: {pending.RewardName}",
                related_reward_id=reward.Id,
            )
        db.query(RewardAssignment).filter(RewardAssignment.RewardId == reward.Id).delete(synchronize_session=False)
        db.query(PendingReward).filter(PendingReward.RewardId == reward.Id).delete(synchronize_session=False)
        db.delete(reward)
        db.flush()

    RunInTransaction(db, _work, label="delete reward")
    logger.info("reward deleted family_id=%s reward_id=%s", family_id, reward_id)
    ctx.AfterCommit(family_id)


def RedeemReward(db: Session, ctx: ServiceContext, family_id: int, child_id: int, reward_id: int) -> PendingReward:
    def _work() -> PendingReward:
        child = GetChild(db, family_id, child_id)
        reward = GetReward(db, family_id, reward_id)
        if not reward.IsActive:
            raise NotFoundError("Reward not found")
        if not _IsEligible(db, reward.Id, child.Id):
            raise NotFoundError("Reward not available for this child")

        # The locked balance check happens inside AppendEntry.
        ledger = AppendEntry(
            db,
            family_id=family_id,
            child_id=child.Id,
            entry_type=LedgerEntryType.SPENT,
            amount=-reward.Cost,
            reason=f"Reward redeemed: {reward.Name}",
            related_reward_id=reward.Id,
        )
        pending = PendingReward(
            FamilyId=family_id,
            ChildId=child.Id,
            RewardId=reward.Id,
            RewardName=reward.Name,
            Points=reward.Cost,
            Status=PendingRewardStatus.PENDING.value,
            LedgerEntryId=ledger.Entry.Id,
            RedeemedAt=NowUtc(),
        )
        db.add(pending)
        db.flush()
        return pending

    pending = RunInTransaction(db, _work, label="redeem reward")
    logger.info(
        "reward redeemed child_id=%s reward_id=%s points=%s",
        child_id,
        reward_id,
        pending.Points,
    )
    ctx.AfterCommit(
        family_id,
        EVENT_REWARD_REDEEMED,
        {
            "PendingRewardId": pending.Id,
            "ChildId": child_id,
            "RewardName": pending.RewardName,
            "Points": pending.Points,
        },
    )
    return pending


def _GetPendingForUpdate(db: Session, family_id: int, pending_id: int) -> PendingReward:
    pending = (
        db.query(PendingReward)
        .filter(PendingReward.Id == pending_id, PendingReward.FamilyId == family_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not pending:
        raise NotFoundError("Pending reward not found")
    if pending.Status != PendingRewardStatus.PENDING.value:
        raise InvalidTransitionError(f"Pending reward is already {pending.Status}")
    return pending


def _ResolvePending(db: Session, pending: PendingReward, status: PendingRewardStatus) -> None:
    updated = (
        db.query(PendingReward)
        .filter(PendingReward.Id == pending.Id, PendingReward.Status == PendingRewardStatus.PENDING.value)
        .update(
            {PendingReward.Status: status.value, PendingReward.ResolvedAt: NowUtc()},
            synchronize_session=False,
        )
    )
    if updated != 1:
        raise InvalidTransitionError("Pending reward was already resolved")
    db.flush()
    db.refresh(pending)


def ClearPendingReward(db: Session, ctx: ServiceContext, family_id: int, pending_id: int) -> PendingReward:
    def _work() -> PendingReward:
        pending = _GetPendingForUpdate(db, family_id, pending_id)
        _ResolvePending(db, pending, PendingRewardStatus.COMPLETED)
        return pending

    pending = RunInTransaction(db, _work, label="clear pending reward")
    ctx.AfterCommit(
        family_id,
        EVENT_REWARD_GIVEN,
        {"PendingRewardId": pending.Id, "ChildId": pending.ChildId, "RewardName": pending.RewardName},
    )
    return pending


def CancelPendingReward(db: Session, ctx: ServiceContext, family_id: int, pending_id: int) -> PendingReward:
    def _work() -> PendingReward:
        pending = _GetPendingForUpdate(db, family_id, pending_id)
        _ResolvePending(db, pending, PendingRewardStatus.CANCELED)
        AppendEntry(
            db,
            family_id=family_id,
            child_id=pending.ChildId,
            entry_type=LedgerEntryType.REFUNDED,
            amount=pending.Points,
            reason=f"Reward refunded: {pending.RewardName}",
            related_reward_id=pending.RewardId,
        )
        return pending

    pending = RunInTransaction(db, _work, label="cancel pending reward")
    logger.info("pending reward canceled pending_id=%s points=%s", pending.Id, pending.Points)
    ctx.AfterCommit(
        family_id,
        EVENT_REWARD_REFUNDED,
        {
            "PendingRewardId": pending.Id,
            "ChildId": pending.ChildId,
            "RewardName": pending.RewardName,
            "Points": pending.Points,
        },
    )
    return pending


def ListPendingRewards(
    db: Session,
    family_id: int,
    child_id: int | None = None,
    include_resolved: bool = False,
) -> list[PendingReward]:
    query = db.query(PendingReward).filter(PendingReward.FamilyId == family_id)
    if child_id is not None:
        query = query.filter(PendingReward.ChildId == child_id)
    if not include_resolved:
        query = query.filter(PendingReward.Status == PendingRewardStatus.PENDING.value)
    return query.order_by(PendingReward.RedeemedAt.desc(), PendingReward.Id.desc()).all()
