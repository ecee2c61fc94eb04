from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from chorebank.core.clock import NowUtc, ToNaiveUtc
from chorebank.core.context import ServiceContext
from chorebank.core.errors import EconomyError
from chorebank.core.transactions import RunInTransaction
from chorebank.modules.chores.models import Chore, ChoreAssignment, ChoreStatus, RecurrenceType
from chorebank.modules.notifications.dispatcher import EVENT_CHORES_SPAWNED
from chorebank.modules.scheduler.rules import AdvanceNextDue, ComputeNextDue
from chorebank.modules.subscriptions.service import ProcessRenewals

logger = logging.getLogger("scheduler")


class _SpawnRaceLost(Exception):
    pass


def _SpawnFromTemplate(db: Session, template_id: int, now: datetime) -> Chore | None:
    template = db.query(Chore).filter(Chore.Id == template_id).populate_existing().first()
    if not template or not template.IsTemplate:
        return None
    due = template.NextDueDate
    if due is None or due > now:
        return None

    instance = Chore(
        FamilyId=template.FamilyId,
        Name=template.Name,
        Points=template.Points,
        Status=ChoreStatus.AVAILABLE.value,
        RecurrenceType=RecurrenceType.NONE.value,
        IsTemplate=False,
        TemplateId=template.Id,
        DueDate=due,
        CreatedAt=now,
        UpdatedAt=now,
    )
    db.add(instance)
    db.flush()

    child_ids = [
        row.ChildId
        for row in db.query(ChoreAssignment.ChildId).filter(ChoreAssignment.ChoreId == template.Id).all()
    ]
    for child_id in child_ids:
        db.add(ChoreAssignment(ChoreId=instance.Id, ChildId=child_id))

    next_due = AdvanceNextDue(template, due, now)
    result = db.execute(
        update(Chore)
        .where(Chore.Id == template.Id, Chore.NextDueDate == due)
        .values(NextDueDate=next_due, UpdatedAt=now)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise _SpawnRaceLost()
    db.flush()
    if next_due is None:
        logger.info("template dormant after spawn template_id=%s", template.Id)
    return instance


def Tick(db: Session, ctx: ServiceContext, now: datetime | None = None) -> list[int]:
    now = ToNaiveUtc(now) or NowUtc()
    due_ids = [
        row.Id
        for row in db.query(Chore.Id)
        .filter(
            Chore.IsTemplate.is_(True),
            Chore.NextDueDate.isnot(None),
            Chore.NextDueDate <= now,
        )
        .order_by(Chore.Id.asc())
        .all()
    ]

    spawned: list[int] = []
    spawned_by_family: dict[int, list[int]] = {}
    for template_id in due_ids:
        try:
            instance = RunInTransaction(
                db,
                lambda template_id=template_id: _SpawnFromTemplate(db, template_id, now),
                label="scheduler spawn",
            )
        except _SpawnRaceLost:
            logger.info("scheduler spawn skipped, due date already advanced template_id=%s", template_id)
            continue
        except IntegrityError:
            logger.info("scheduler spawn skipped, occurrence already exists template_id=%s", template_id)
            continue
        except EconomyError as exc:
            logger.warning("scheduler spawn failed template_id=%s error=%s", template_id, exc)
            continue
        if instance is None:
            continue
        spawned.append(instance.Id)
        spawned_by_family.setdefault(instance.FamilyId, []).append(instance.Id)

    for family_id, chore_ids in spawned_by_family.items():
        ctx.AfterCommit(family_id, EVENT_CHORES_SPAWNED, {"ChoreIds": chore_ids})

    if due_ids:
        logger.info("scheduler tick due=%s spawned=%s", len(due_ids), len(spawned))
    return spawned


def OnInstanceApproved(db: Session, template_id: int, approved_at: datetime) -> datetime | None:
    template = db.query(Chore).filter(Chore.Id == template_id, Chore.IsTemplate.is_(True)).first()
    if not template:
        return None
    if template.NextDueDate is None:
        template.NextDueDate = ComputeNextDue(template, approved_at)
        template.UpdatedAt = approved_at
        db.add(template)
        db.flush()
        if template.NextDueDate is not None:
            logger.info("template re-armed template_id=%s next_due=%s", template.Id, template.NextDueDate)
    return template.NextDueDate


@dataclass(frozen=True)
class SchedulerRunResult:
    SpawnedChoreIds: list[int] = field(default_factory=list)
    RenewedFamilyIds: list[int] = field(default_factory=list)
    Skipped: bool = False


class SchedulerRunner:
    """Serializes scheduler ticks within one process.

    Overlapping calls return immediately with Skipped set; the compare-and-set on
    NextDueDate covers ticks running in other processes.
    """

    def __init__(self, session_factory: sessionmaker, ctx: ServiceContext) -> None:
        self._session_factory = session_factory
        self._ctx = ctx
        self._lock = Lock()

    def RunOnce(self, now: datetime | None = None) -> SchedulerRunResult:
        if not self._lock.acquire(blocking=False):
            logger.info("scheduler tick skipped, previous tick still running")
            return SchedulerRunResult(Skipped=True)
        try:
            now = ToNaiveUtc(now) or NowUtc()
            db = self._session_factory()
            try:
                spawned = Tick(db, self._ctx, now)
                renewed = ProcessRenewals(db, self._ctx, now)
            finally:
                db.close()
            return SchedulerRunResult(SpawnedChoreIds=spawned, RenewedFamilyIds=renewed)
        finally:
            self._lock.release()
