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
from chorebank.modules.chores import service as chores_service
from chorebank.modules.chores.models import Chore
from chorebank.modules.chores.schemas import (
    ChoreApprovalOut,
    ChoreCreate,
    ChoreOut,
    ChoreSubmitRequest,
    ChoreUpdate,
)

router = APIRouter(prefix="/api/chores", tags=["chores"])
logger = logging.getLogger("chores")


def _BuildChoreOut(chore: Chore, assigned_child_ids: list[int]) -> ChoreOut:
    return ChoreOut(
        Id=chore.Id,
        Name=chore.Name,
        Points=chore.Points,
        Status=chore.Status,
        AssignedChildIds=assigned_child_ids,
        SubmittedByChildId=chore.SubmittedByChildId,
        SubmittedAt=chore.SubmittedAt,
        Emotion=chore.Emotion,
        PhotoUrl=chore.PhotoUrl,
        ApprovedAt=chore.ApprovedAt,
        RecurrenceType=chore.RecurrenceType,
        RecurrenceDays=chore.RecurrenceDays.split(",") if chore.RecurrenceDays else [],
        RecurrenceRule=chore.RecurrenceRule,
        IsTemplate=bool(chore.IsTemplate),
        TemplateId=chore.TemplateId,
        NextDueDate=chore.NextDueDate,
        DueDate=chore.DueDate,
    )


def _BuildOne(db: Session, chore: Chore) -> ChoreOut:
    return _BuildChoreOut(chore, chores_service.GetAssignedChildIds(db, chore.Id))


@router.get("", response_model=list[ChoreOut])
def ListChores(
    include_templates: bool = False,
    db: Session = Depends(GetDb),
    user: UserContext = Depends(RequireFamilyMember()),
) -> list[ChoreOut]:
    try:
        child_id = user.ChildId if user.Role == ROLE_CHILD else None
        chores = chores_service.ListChores(
            db,
            user.FamilyId,
            child_id=child_id,
            include_templates=include_templates and child_id is None,
        )
        assignments = chores_service.GetAssignmentMap(db, [chore.Id for chore in chores])
        return [_BuildChoreOut(chore, assignments.get(chore.Id, [])) for chore in chores]
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "chores")


@router.post("", response_model=ChoreOut, status_code=status.HTTP_201_CREATED)
def CreateChore(
    payload: ChoreCreate,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> ChoreOut:
    try:
        chore = chores_service.CreateChore(db, ctx, user.FamilyId, payload)
        return _BuildOne(db, chore)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "chores")


@router.patch("/{chore_id}", response_model=ChoreOut)
def UpdateChore(
    chore_id: int,
    payload: ChoreUpdate,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> ChoreOut:
    try:
        chore = chores_service.UpdateChore(db, ctx, user.FamilyId, chore_id, payload)
        return _BuildOne(db, chore)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "chores")


@router.delete("/{chore_id}", status_code=status.HTTP_204_NO_CONTENT)
def DeleteChore(
    chore_id: int,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> Response:
    try:
        chores_service.DeleteChore(db, ctx, user.FamilyId, chore_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "chores")


@router.post("/{chore_id}/submit", response_model=ChoreOut)
def SubmitChore(
    chore_id: int,
    payload: ChoreSubmitRequest,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireFamilyMember()),
) -> ChoreOut:
    child_id = ResolveChildId(user, payload.ChildId)
    try:
        chore = chores_service.SubmitChore(
            db,
            ctx,
            user.FamilyId,
            chore_id,
            child_id,
            emotion=payload.Emotion,
            photo_url=payload.PhotoUrl,
        )
        return _BuildOne(db, chore)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "chores")


@router.post("/{chore_id}/approve", response_model=ChoreApprovalOut)
def ApproveChore(
    chore_id: int,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> ChoreApprovalOut:
    try:
        approval = chores_service.ApproveChore(db, ctx, user.FamilyId, chore_id)
        return ChoreApprovalOut(
            Chore=_BuildOne(db, approval.Chore),
            LedgerEntryId=approval.Ledger.Entry.Id,
            BalanceAfter=approval.Ledger.Entry.BalanceAfter,
            XpAwarded=approval.Ledger.XpAwarded,
            LeveledUp=approval.Ledger.Level.LeveledUp,
            Level=approval.Ledger.Level.NewLevel,
        )
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "chores")


@router.post("/{chore_id}/reject", response_model=ChoreOut)
def RejectChore(
    chore_id: int,
    db: Session = Depends(GetDb),
    ctx: ServiceContext = Depends(GetServiceContext),
    user: UserContext = Depends(RequireParent()),
) -> ChoreOut:
    try:
        chore = chores_service.RejectChore(db, ctx, user.FamilyId, chore_id)
        return _BuildOne(db, chore)
    except EconomyError as exc:
        HandleEconomyError(exc)
    except ProgrammingError as exc:
        HandleDbError(exc, "chores")
