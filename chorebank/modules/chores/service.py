from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from chorebank.core.clock import NowUtc
from chorebank.core.context import ServiceContext
from chorebank.core.errors import InvalidTransitionError, NotFoundError, ValidationError
from chorebank.core.transactions import RunInTransaction
from chorebank.modules.chores.models import Chore, ChoreAssignment, ChoreStatus, RecurrenceType
from chorebank.modules.chores.schemas import ChoreCreate, ChoreUpdate
from chorebank.modules.families.service import EnsureChildrenInFamily, GetChild
from chorebank.modules.ledger.models import LedgerEntryType
from chorebank.modules.ledger.service import AppendEntry, LedgerAppendResult, NotifyLevelUp
from chorebank.modules.notifications.dispatcher import (
    EVENT_CHORE_APPROVED,
    EVENT_CHORE_REJECTED,
    EVENT_CHORE_SUBMITTED,
)
from chorebank.modules.scheduler.rules import ComputeNextDue, NormalizeCustomRule, NormalizeRecurrenceDays
from chorebank.modules.scheduler.service import OnInstanceApproved

logger = logging.getLogger("chores")


@dataclass(frozen=True)
class ChoreApproval:
    Chore: Chore
    Ledger: LedgerAppendResult


def GetChore(db: Session, family_id: int, chore_id: int) -> Chore:
    chore = db.query(Chore).filter(Chore.Id == chore_id, Chore.FamilyId == family_id).first()
    if not chore:
        raise NotFoundError("Chore not found")
    return chore


def GetAssignedChildIds(db: Session, chore_id: int) -> list[int]:
    return [
        row.ChildId
        for row in db.query(ChoreAssignment.ChildId)
        .filter(ChoreAssignment.ChoreId == chore_id)
        .order_by(ChoreAssignment.ChildId.asc())
        .all()
    ]


def GetAssignmentMap(db: Session, chore_ids: list[int]) -> dict[int, list[int]]:
    if not chore_ids:
        return {}
    mapping: dict[int, list[int]] = {chore_id: [] for chore_id in chore_ids}
    rows = (
        db.query(ChoreAssignment)
        .filter(ChoreAssignment.ChoreId.in_(chore_ids))
        .order_by(ChoreAssignment.ChildId.asc())
        .all()
    )
    for row in rows:
        mapping.setdefault(row.ChoreId, []).append(row.ChildId)
    return mapping


def _ReplaceAssignments(db: Session, chore_id: int, child_ids: list[int]) -> None:
    db.query(ChoreAssignment).filter(ChoreAssignment.ChoreId == chore_id).delete(synchronize_session=False)
    for child_id in child_ids:
        db.add(ChoreAssignment(ChoreId=chore_id, ChildId=child_id))


def _ApplyRecurrence(chore: Chore, recurrence: RecurrenceType, days: list[str] | None, rule: str | None, now) -> None:
    recurrence_days = None
    recurrence_rule = None
    if recurrence == RecurrenceType.WEEKLY:
        recurrence_days = NormalizeRecurrenceDays(days)
        if not recurrence_days:
            raise ValidationError("Weekly recurrence needs at least one weekday")
    elif recurrence == RecurrenceType.CUSTOM:
        recurrence_rule = NormalizeCustomRule(rule)

    chore.RecurrenceType = recurrence.value
    chore.RecurrenceDays = recurrence_days
    chore.RecurrenceRule = recurrence_rule
    chore.IsTemplate = recurrence != RecurrenceType.NONE
    chore.NextDueDate = ComputeNextDue(chore, now) if chore.IsTemplate else None


def _TransitionChore(db: Session, chore: Chore, from_status: ChoreStatus, values: dict) -> None:
    # Compare-and-set on Status so two concurrent transitions cannot both succeed.
    updated = (
        db.query(Chore)
        .filter(Chore.Id == chore.Id, Chore.Status == from_status.value)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        raise InvalidTransitionError(f"Chore is no longer {from_status.value}")
    db.flush()
    db.refresh(chore)


def CreateChore(db: Session, ctx: ServiceContext, family_id: int, payload: ChoreCreate) -> Chore:
    def _work() -> Chore:
        child_ids = EnsureChildrenInFamily(db, family_id, payload.AssignedChildIds)
        now = NowUtc()
        chore = Chore(
            FamilyId=family_id,
            Name=payload.Name.strip(),
            Points=payload.Points,
            Status=ChoreStatus.AVAILABLE.value,
            CreatedAt=now,
            UpdatedAt=now,
        )
        _ApplyRecurrence(chore, payload.RecurrenceType, payload.RecurrenceDays, payload.RecurrenceRule, now)
        db.add(chore)
        db.flush()
        _ReplaceAssignments(db, chore.Id, child_ids)
        db.flush()
        return chore

    chore = RunInTransaction(db, _work, label="create chore")
    logger.info("chore created family_id=%s chore_id=%s template=%s", family_id, chore.Id, chore.IsTemplate)
    ctx.AfterCommit(family_id)
    return chore


def UpdateChore(db: Session, ctx: ServiceContext, family_id: int, chore_id: int, payload: ChoreUpdate) -> Chore:
    def _work() -> Chore:
        chore = GetChore(db, family_id, chore_id)
        is_available = chore.Status == ChoreStatus.AVAILABLE.value

        if payload.Points is not None and payload.Points != chore.Points:
            if not is_available:
                raise InvalidTransitionError("Points can only change while the chore is available")
            chore.Points = payload.Points

        if payload.AssignedChildIds is not None:
            child_ids = EnsureChildrenInFamily(db, family_id, payload.AssignedChildIds)
            if child_ids != GetAssignedChildIds(db, chore.Id):
                if not is_available:
                    raise InvalidTransitionError("Assignment can only change while the chore is available")
                _ReplaceAssignments(db, chore.Id, child_ids)

        recurrence_changed = (
            payload.RecurrenceType is not None
            or payload.RecurrenceDays is not None
            or payload.RecurrenceRule is not None
        )
        if recurrence_changed:
            if chore.TemplateId is not None:
                raise InvalidTransitionError("Spawned chores cannot change their recurrence")
            if not chore.IsTemplate and not is_available:
                raise InvalidTransitionError("Recurrence can only change while the chore is available")
            recurrence = payload.RecurrenceType or RecurrenceType(chore.RecurrenceType)
            days = payload.RecurrenceDays
            if days is None and chore.RecurrenceDays:
                days = chore.RecurrenceDays.split(",")
            rule = payload.RecurrenceRule if payload.RecurrenceRule is not None else chore.RecurrenceRule
            _ApplyRecurrence(chore, recurrence, days, rule, NowUtc())

        if payload.Name is not None:
            chore.Name = payload.Name.strip()
        chore.UpdatedAt = NowUtc()
        db.add(chore)
        db.flush()
        return chore

    chore = RunInTransaction(db, _work, label="update chore")
    ctx.AfterCommit(family_id)
    return chore


def DeleteChore(db: Session, ctx: ServiceContext, family_id: int, chore_id: int) -> None:
    def _work() -> None:
        chore = GetChore(db, family_id, chore_id)
        db.query(ChoreAssignment).filter(ChoreAssignment.ChoreId == chore.Id).delete(synchronize_session=False)
        if chore.IsTemplate:
            db.query(Chore).filter(Chore.TemplateId == chore.Id).update(
                {Chore.TemplateId: None},
                synchronize_session=False,
            )
        db.delete(chore)
        db.flush()

    RunInTransaction(db, _work, label="delete chore")
    logger.info("chore deleted family_id=%s chore_id=%s", family_id, chore_id)
    ctx.AfterCommit(family_id)


def SubmitChore(
    db: Session,
    ctx: ServiceContext,
    family_id: int,
    chore_id: int,
    child_id: int,
    emotion: str | None = None,
    photo_url: str | None = None,
) -> Chore:
    def _work() -> Chore:
        child = GetChild(db, family_id, child_id)
        chore = GetChore(db, family_id, chore_id)
        if chore.IsTemplate:
            raise InvalidTransitionError("Recurring templates cannot be submitted")
        if chore.Status != ChoreStatus.AVAILABLE.value:
            raise InvalidTransitionError(f"Chore is {chore.Status}, only available chores can be submitted")
        assigned = GetAssignedChildIds(db, chore.Id)
        if assigned and child.Id not in assigned:
            raise InvalidTransitionError("Chore is not assigned to this child")
        now = NowUtc()
        _TransitionChore(
            db,
            chore,
            ChoreStatus.AVAILABLE,
            {
                Chore.Status: ChoreStatus.SUBMITTED.value,
                Chore.SubmittedByChildId: child.Id,
                Chore.SubmittedAt: now,
                Chore.Emotion: (emotion or "").strip() or None,
                Chore.PhotoUrl: (photo_url or "").strip() or None,
                Chore.UpdatedAt: now,
            },
        )
        return chore

    chore = RunInTransaction(db, _work, label="submit chore")
    logger.info("chore submitted chore_id=%s child_id=%s", chore.Id, child_id)
    ctx.AfterCommit(
        family_id,
        EVENT_CHORE_SUBMITTED,
        {"ChoreId": chore.Id, "ChoreName": chore.Name, "ChildId": child_id, "Points": chore.Points},
    )
    return chore


def ApproveChore(db: Session, ctx: ServiceContext, family_id: int, chore_id: int) -> ChoreApproval:
    def _work() -> ChoreApproval:
        chore = GetChore(db, family_id, chore_id)
        if chore.Status != ChoreStatus.SUBMITTED.value:
            raise InvalidTransitionError(f"Chore is {chore.Status}, only submitted chores can be approved")
        child_id = chore.SubmittedByChildId
        if child_id is None:
            raise InvalidTransitionError("Chore has no submitter")
        now = NowUtc()
        _TransitionChore(
            db,
            chore,
            ChoreStatus.SUBMITTED,
            {Chore.Status: ChoreStatus.APPROVED.value, Chore.ApprovedAt: now, Chore.UpdatedAt: now},
        )
        ledger = AppendEntry(
            db,
            family_id=family_id,
            child_id=child_id,
            entry_type=LedgerEntryType.EARNED,
            amount=chore.Points,
            reason=f"Chore approved: {chore.Name}",
            related_chore_id=chore.Id,
        )
        if chore.TemplateId is not None:
            OnInstanceApproved(db, chore.TemplateId, now)
        return ChoreApproval(Chore=chore, Ledger=ledger)

    approval = RunInTransaction(db, _work, label="approve chore")
    chore = approval.Chore
    logger.info(
        "chore approved chore_id=%s child_id=%s points=%s",
        chore.Id,
        chore.SubmittedByChildId,
        chore.Points,
    )
    ctx.AfterCommit(
        family_id,
        EVENT_CHORE_APPROVED,
        {
            "ChoreId": chore.Id,
            "ChoreName": chore.Name,
            "ChildId": chore.SubmittedByChildId,
            "Points": chore.Points,
            "Balance": approval.Ledger.Entry.BalanceAfter,
            "XpAwarded": approval.Ledger.XpAwarded,
        },
    )
    NotifyLevelUp(ctx, family_id, chore.SubmittedByChildId, approval.Ledger)
    return approval


def RejectChore(db: Session, ctx: ServiceContext, family_id: int, chore_id: int) -> Chore:
    rejected: dict[str, int | None] = {}

    def _work() -> Chore:
        chore = GetChore(db, family_id, chore_id)
        if chore.Status != ChoreStatus.SUBMITTED.value:
            raise InvalidTransitionError(f"Chore is {chore.Status}, only submitted chores can be rejected")
        rejected["ChildId"] = chore.SubmittedByChildId
        _TransitionChore(
            db,
            chore,
            ChoreStatus.SUBMITTED,
            {
                Chore.Status: ChoreStatus.AVAILABLE.value,
                Chore.SubmittedByChildId: None,
                Chore.SubmittedAt: None,
                Chore.Emotion: None,
                Chore.PhotoUrl: None,
                Chore.UpdatedAt: NowUtc(),
            },
        )
        return chore

    chore = RunInTransaction(db, _work, label="reject chore")
    logger.info("chore rejected chore_id=%s", chore.Id)
    ctx.AfterCommit(
        family_id,
        EVENT_CHORE_REJECTED,
        {"ChoreId": chore.Id, "ChoreName": chore.Name, "ChildId": rejected.get("ChildId")},
    )
    return chore


def ListChores(
    db: Session,
    family_id: int,
    child_id: int | None = None,
    include_templates: bool = False,
) -> list[Chore]:
    query = db.query(Chore).filter(Chore.FamilyId == family_id)
    if child_id is not None:
        GetChild(db, family_id, child_id)
        include_templates = False
    if not include_templates:
        query = query.filter(Chore.IsTemplate.is_(False))
    chores = query.order_by(Chore.Id.asc()).all()
    if child_id is None:
        return chores

    assignments = GetAssignmentMap(db, [chore.Id for chore in chores])
    return [
        chore
        for chore in chores
        if not assignments.get(chore.Id) or child_id in assignments[chore.Id]
    ]
