import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from chorebank.core.context import GetServiceContext, ServiceContext
from chorebank.core.errors import EconomyError
from chorebank.core.http import HandleDbError, HandleEconomyError
from chorebank.db import GetDb
from chorebank.modules.auth.deps import ROLE_CHILD, UserContext
from chorebank.modules.auth.rbac import RequireFamilyMember, RequireParent, ResolveChildId
from chorebank.modules.rewards import service as rewards_service
from chorebank.modules.rewards.models import PendingReward, Reward
from chorebank.modules.rewards.schemas import (
    PendingRewardOut,
    RedeemRequest,
    RewardCreate,
    RewardOut,
    RewardUpdate,
)

router = APIRouter(prefix="/api/rewards", tags=["rewards"])
logger = logging.getLogger("rewards")


def _BuildRewardOut(db: Session, reward: Reward) -> RewardOut:
    return RewardOut(
        Id=reward.Id,
        Name=reward.Name,
        Cost=reward.Cost,
        Category=reward.Category,
        IsActive=bool(reward.IsActive),
        AssignedChildIds=rewards_service.GetRewardChildIds(db, reward.Id),
    )


def _BuildPendingOut(pending: PendingReward) -> PendingRewardOut:
    return PendingRewardOut(
        Id=pending.Id,
        ChildId=pending.ChildId,
        RewardId=pending.RewardId,
        RewardName=pending.RewardName,
        Points=pending.Points,
        Status=pending.Status,
        LedgerEntryId=pending.LedgerEntryId,
        RedeemedAt=pending.RedeemedAt,
        ResolvedAt=pending.ResolvedAt,
    )


@router.get("", response_model=list[RewardOut])
def ListRewards(
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireFamilyMember()),
) -> list[RewardOut]:
    try:
        child_id = user.ChildId if user.Role == ROLE_CHILD else None
        rewards = rewards_service.ListRewards(db, user.FamilyId, child_id=child_id)
        return [_BuildRewardOut(db, reward) for reward in rewards]
    except ProgrammingError as exc:
        HandleDbError(exc, "rewards")


@router.post("", response_model=RewardOut, status_code=status.HTTP_201_CREATED)
def CreateReward(
    payload: RewardCreate,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> RewardOut:
    try:
        reward = rewards_service.CreateReward(db, ctx, user.FamilyId, payload)
        return _BuildRewardOut(db, reward)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "rewards")


@router.patch("/{reward_id}", response_model=RewardOut)
def UpdateReward(
    reward_id: int,
    payload: RewardUpdate,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> RewardOut:
    try:
        reward = rewards_service.UpdateReward(db, ctx, user.FamilyId, reward_id, payload)
        return _BuildRewardOut(db, reward)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "rewards")


@router.delete("/{reward_id}", status_code=status.HTTP_204_NO_CONTENT)
def DeleteReward(
    reward_id: int,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> Response:
    try:
        rewards_service.DeleteReward(db, ctx, user.FamilyId, reward_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "rewards")


@router.post("/{reward_id}/redeem", response_model=PendingRewardOut, status_code=status.HTTP_201_CREATED)
def RedeemReward(
    reward_id: int,
    payload: RedeemRequest,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireFamilyMember()),
) -> PendingRewardOut:
    child_id = ResolveChildId(user, payload.ChildId)
    try:
        pending = rewards_service.RedeemReward(db, ctx, user.FamilyId, child_id, reward_id)
        return _BuildPendingOut(pending)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "rewards")


@router.get("/pending", response_model=list[PendingRewardOut])
def ListPendingRewards(
    include_resolved: bool = False,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireFamilyMember()),
) -> list[PendingRewardOut]:
    try:
        child_id = user.ChildId if user.Role == ROLE_CHILD else None
        pending = rewards_service.ListPendingRewards(
            db,
            user.FamilyId,
            child_id=child_id,
            include_resolved=include_resolved,
        )
        return [_BuildPendingOut(item) for item in pending]
    except ProgrammingError as exc:
        HandleDbError(exc, "rewards")


@router.post("/pending/{pending_id}/clear", response_model=PendingRewardOut)
def ClearPendingReward(
    pending_id: int,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> PendingRewardOut:
    try:
        return _BuildPendingOut(rewards_service.ClearPendingReward(db, ctx, user.FamilyId, pending_id))
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "rewards")


@router.post("/pending/{pending_id}/cancel", response_model=PendingRewardOut)
def CancelPendingReward(
    pending_id: int,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> PendingRewardOut:
    try:
        return _BuildPendingOut(rewards_service.CancelPendingReward(db, ctx, user.FamilyId, pending_id))
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "rewards")
