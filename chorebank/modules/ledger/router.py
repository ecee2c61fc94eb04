import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from chorebank.core.context import GetServiceContext, ServiceContext
from chorebank.core.errors import EconomyError
from chorebank.core.http import HandleDbError, HandleEconomyError
from chorebank.db import GetDb
from chorebank.modules.auth.deps import ROLE_CHILD, UserContext
from chorebank.modules.auth.rbac import RequireFamilyMember, RequireParent, ResolveChildId
from chorebank.modules.families.service import GetChild
from chorebank.modules.ledger import service as ledger_service
from chorebank.modules.ledger.models import PointsLedgerEntry
from chorebank.modules.ledger.schemas import BalanceOut, LedgerEntryOut, PointsAdjustOut, PointsAdjustRequest
from chorebank.modules.ledger.xp import CalculateLevel

router = APIRouter(prefix="/api/ledger", tags=["ledger"])
logger = logging.getLogger("ledger")


def _BuildEntryOut(entry: PointsLedgerEntry) -> LedgerEntryOut:
    return LedgerEntryOut(
        Id=entry.Id,
        ChildId=entry.ChildId,
        EntryType=entry.EntryType,
        Amount=entry.Amount,
        Reason=entry.Reason,
        RelatedChoreId=entry.RelatedChoreId,
        RelatedRewardId=entry.RelatedRewardId,
        BalanceBefore=entry.BalanceBefore,
        BalanceAfter=entry.BalanceAfter,
        CreatedAt=entry.CreatedAt,
    )


@router.get("/balance", response_model=BalanceOut)
def GetBalance(
    child_id: int | None = None,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireFamilyMember()),
) -> BalanceOut:
    target_id = ResolveChildId(user, child_id)
    try:
        child = GetChild(db, user.FamilyId, target_id)
        level = CalculateLevel(child.Xp or 0)
        return BalanceOut(
            ChildId=child.Id,
            Balance=ledger_service.GetBalance(db, user.FamilyId, child.Id),
            Xp=child.Xp or 0,
            Level=level.Level,
            LevelTitle=level.Title,
            ProgressPercent=level.ProgressPercent,
        )
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "ledger")


@router.get("/entries", response_model=list[LedgerEntryOut])
def ListEntries(
    child_id: int | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireFamilyMember()),
) -> list[LedgerEntryOut]:
    if user.Role == ROLE_CHILD:
        child_id = ResolveChildId(user, child_id)
    try:
        if child_id is not None:
            GetChild(db, user.FamilyId, child_id)
        entries = ledger_service.ListEntries(db, user.FamilyId, child_id=child_id, limit=limit)
        return [_BuildEntryOut(entry) for entry in entries]
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "ledger")


@router.post("/adjust", response_model=PointsAdjustOut)
def AdjustPoints(
    payload: PointsAdjustRequest,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> PointsAdjustOut:
    try:
        result = ledger_service.AdjustPoints(db, ctx, user.FamilyId, payload.ChildId, payload.Amount, payload.Reason)
        return PointsAdjustOut(
            Entry=_BuildEntryOut(result.Entry),
            XpAwarded=result.XpAwarded,
            LeveledUp=result.Level.LeveledUp,
            Level=result.Level.NewLevel,
        )
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "ledger")
