from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass

from sqlalchemy.orm import Session

from chorebank.core.clock import NowUtc
from chorebank.core.context import ServiceContext
from chorebank.core.errors import NotFoundError, ValidationError
from chorebank.core.transactions import RunInTransaction
from chorebank.modules.chores.models import Chore, ChoreAssignment, ChoreStatus
from chorebank.modules.families.models import Child, Family
from chorebank.modules.ledger.models import PointsLedgerEntry
from chorebank.modules.ledger.xp import CalculateLevel
from chorebank.modules.rewards.models import PendingReward, PendingRewardStatus, RewardAssignment

logger = logging.getLogger("families")

FAMILY_CODE_LENGTH = 6
FAMILY_CODE_ATTEMPTS = 10
FAMILY_CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class ChildSnapshot:
    Id: int
    DisplayName: str
    PointsBalance: int
    TotalPointsEarned: int
    Xp: int
    Level: int
    LevelTitle: str


@dataclass(frozen=True)
class FamilySnapshot:
    Id: int
    Name: str
    FamilyCode: str
    SubscriptionPlan: str
    SubscriptionStatus: str
    Children: tuple[ChildSnapshot, ...]
    OpenChores: int
    PendingRewards: int


def _GenerateFamilyCode() -> str:
    return "".join(secrets.choice(FAMILY_CODE_ALPHABET) for _ in range(FAMILY_CODE_LENGTH))


def GenerateUniqueFamilyCode(db: Session) -> str:
    for _ in range(FAMILY_CODE_ATTEMPTS):
        code = _GenerateFamilyCode()
        if not db.query(Family.Id).filter(Family.FamilyCode == code).first():
            return code
    raise RuntimeError("Unable to generate a unique family code")


def CreateFamily(db: Session, name: str, email: str | None = None) -> Family:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Family name is required")

    def _work() -> Family:
        family = Family(Name=name, Email=(email or "").strip().lower() or None, FamilyCode=GenerateUniqueFamilyCode(db))
        db.add(family)
        db.flush()
        return family

    family = RunInTransaction(db, _work, label="create family")
    logger.info("family created family_id=%s", family.Id)
    return family


def GetFamily(db: Session, family_id: int) -> Family:
    family = db.query(Family).filter(Family.Id == family_id).first()
    if not family:
        raise NotFoundError("Family not found")
    return family


def GetChild(db: Session, family_id: int, child_id: int) -> Child:
    child = db.query(Child).filter(Child.Id == child_id, Child.FamilyId == family_id).first()
    if not child:
        raise NotFoundError("Child not found")
    return child


def ListChildren(db: Session, family_id: int) -> list[Child]:
    return db.query(Child).filter(Child.FamilyId == family_id).order_by(Child.Id.asc()).all()


def EnsureChildrenInFamily(db: Session, family_id: int, child_ids: list[int]) -> list[int]:
    unique_ids = sorted(set(child_ids or []))
    if not unique_ids:
        return []
    found = {
        row.Id
        for row in db.query(Child.Id).filter(Child.FamilyId == family_id, Child.Id.in_(unique_ids)).all()
    }
    missing = [child_id for child_id in unique_ids if child_id not in found]
    if missing:
        raise NotFoundError(f"Child not found: {missing[0]}")
    return unique_ids


def AddChild(db: Session, ctx: ServiceContext, family_id: int, display_name: str) -> Child:
    display_name = (display_name or "").strip()
    if not display_name:
        raise ValidationError("Display name is required")

    def _work() -> Child:
        GetFamily(db, family_id)
        child = Child(FamilyId=family_id, DisplayName=display_name)
        db.add(child)
        db.flush()
        return child

    child = RunInTransaction(db, _work, label="add child")
    logger.info("child added family_id=%s child_id=%s", family_id, child.Id)
    ctx.AfterCommit(family_id)
    return child


def RemoveChild(db: Session, ctx: ServiceContext, family_id: int, child_id: int) -> None:
    def _work() -> None:
        child = GetChild(db, family_id, child_id)
        db.query(ChoreAssignment).filter(ChoreAssignment.ChildId == child.Id).delete(synchronize_session=False)
        db.query(RewardAssignment).filter(RewardAssignment.ChildId == child.Id).delete(synchronize_session=False)
        db.query(PendingReward).filter(PendingReward.ChildId == child.Id).delete(synchronize_session=False)
        db.query(Chore).filter(
            Chore.FamilyId == family_id,
            Chore.SubmittedByChildId == child.Id,
            Chore.Status == ChoreStatus.SUBMITTED.value,
        ).update(
            {
                Chore.Status: ChoreStatus.AVAILABLE.value,
                Chore.SubmittedByChildId: None,
                Chore.SubmittedAt: None,
                Chore.Emotion: None,
                Chore.PhotoUrl: None,
                Chore.UpdatedAt: NowUtc(),
            },
            synchronize_session=False,
        )
        db.query(PointsLedgerEntry).filter(PointsLedgerEntry.ChildId == child.Id).delete(synchronize_session=False)
        db.delete(child)
        db.flush()

    RunInTransaction(db, _work, label="remove child")
    logger.info("child removed family_id=%s child_id=%s", family_id, child_id)
    ctx.AfterCommit(family_id)


def _BuildChildSnapshot(child: Child) -> ChildSnapshot:
    level = CalculateLevel(child.Xp or 0)
    return ChildSnapshot(
        Id=child.Id,
        DisplayName=child.DisplayName,
        PointsBalance=child.PointsBalance or 0,
        TotalPointsEarned=child.TotalPointsEarned or 0,
        Xp=child.Xp or 0,
        Level=level.Level,
        LevelTitle=level.Title,
    )


def GetFamilySnapshot(db: Session, ctx: ServiceContext, family_id: int) -> FamilySnapshot:
    cached = ctx.Cache.Get(family_id)
    if cached is not None:
        return cached

    family = GetFamily(db, family_id)
    children = ListChildren(db, family_id)
    open_chores = (
        db.query(Chore.Id)
        .filter(
            Chore.FamilyId == family_id,
            Chore.IsTemplate.is_(False),
            Chore.Status != ChoreStatus.APPROVED.value,
        )
        .count()
    )
    pending_rewards = (
        db.query(PendingReward.Id)
        .filter(PendingReward.FamilyId == family_id, PendingReward.Status == PendingRewardStatus.PENDING.value)
        .count()
    )
    snapshot = FamilySnapshot(
        Id=family.Id,
        Name=family.Name,
        FamilyCode=family.FamilyCode,
        SubscriptionPlan=family.SubscriptionPlan,
        SubscriptionStatus=family.SubscriptionStatus,
        Children=tuple(_BuildChildSnapshot(child) for child in children),
        OpenChores=open_chores,
        PendingRewards=pending_rewards,
    )
    ctx.Cache.Set(family_id, snapshot)
    return snapshot
