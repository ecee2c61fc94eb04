import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from chorebank.core.context import GetServiceContext, ServiceContext
from chorebank.core.errors import EconomyError
from chorebank.core.http import HandleDbError, HandleEconomyError
from chorebank.db import GetDb
from chorebank.modules.auth.deps import UserContext
from chorebank.modules.auth.rbac import RequireFamilyMember, RequireParent
from chorebank.modules.families import service as families_service
from chorebank.modules.families.schemas import ChildCreate, ChildOut, FamilyOut
from chorebank.modules.families.service import ChildSnapshot, FamilySnapshot
from chorebank.modules.ledger.xp import CalculateLevel

router = APIRouter(prefix="/api/families", tags=["families"])
logger = logging.getLogger("families")


def _BuildChildOut(child: ChildSnapshot) -> ChildOut:
    return ChildOut(
        Id=child.Id,
        DisplayName=child.DisplayName,
        PointsBalance=child.PointsBalance,
        TotalPointsEarned=child.TotalPointsEarned,
        Xp=child.Xp,
        Level=child.Level,
        LevelTitle=child.LevelTitle,
    )


def _BuildFamilyOut(snapshot: FamilySnapshot) -> FamilyOut:
    return FamilyOut(
        Id=snapshot.Id,
        Name=snapshot.Name,
        FamilyCode=snapshot.FamilyCode,
        SubscriptionPlan=snapshot.SubscriptionPlan,
        SubscriptionStatus=snapshot.SubscriptionStatus,
        Children=[_BuildChildOut(child) for child in snapshot.Children],
        OpenChores=snapshot.OpenChores,
        PendingRewards=snapshot.PendingRewards,
    )


@router.get("/me", response_model=FamilyOut)
def GetMyFamily(
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireFamilyMember()),
) -> FamilyOut:
    try:
        return _BuildFamilyOut(families_service.GetFamilySnapshot(db, ctx, user.FamilyId))
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "families")


@router.post("/children", response_model=ChildOut, status_code=status.HTTP_201_CREATED)
def AddChild(
    payload: ChildCreate,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> ChildOut:
    try:
        child = families_service.AddChild(db, ctx, user.FamilyId, payload.DisplayName)
        level = CalculateLevel(child.Xp or 0)
        return ChildOut(
            Id=child.Id,
            DisplayName=child.DisplayName,
            PointsBalance=child.PointsBalance or 0,
            TotalPointsEarned=child.TotalPointsEarned or 0,
            Xp=child.Xp or 0,
            Level=level.Level,
            LevelTitle=level.Title,
        )
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "families")


@router.delete("/children/{child_id}", status_code=status.HTTP_204_NO_CONTENT)
def RemoveChild(
    child_id: int,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> Response:
    try:
        families_service.RemoveChild(db, ctx, user.FamilyId, child_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "families")
