from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.orm import Session

from chorebank.core.context import ServiceContext
from chorebank.core.errors import InsufficientBalanceError, NotFoundError, ValidationError
from chorebank.core.transactions import RunInTransaction
from chorebank.modules.families.models import Child
from chorebank.modules.ledger.models import (
    CREDIT_ENTRY_TYPES,
    DEBIT_ENTRY_TYPES,
    XP_ENTRY_TYPES,
    LedgerEntryType,
    PointsLedgerEntry,
)
from chorebank.modules.ledger.xp import CalculateXpReward, CheckLevelUp, LevelChange
from chorebank.modules.notifications.dispatcher import EVENT_LEVEL_UP, EVENT_POINTS_ADJUSTED

logger = logging.getLogger("ledger")

MAX_HISTORY_LIMIT = 500


@dataclass(frozen=True)
class LedgerAppendResult:
    Entry: PointsLedgerEntry
    XpAwarded: int
    Level: LevelChange


def _ParseEntryType(entry_type: str | LedgerEntryType) -> LedgerEntryType:
    try:
        return LedgerEntryType(entry_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown ledger entry type: {entry_type}") from exc


def _ValidateAmount(entry_type: LedgerEntryType, amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Ledger amount must be a whole number of points")
    if amount == 0:
        raise ValidationError("Ledger amount cannot be zero")
    if entry_type in CREDIT_ENTRY_TYPES and amount < 0:
        raise ValidationError(f"{entry_type.value} entries must be positive")
    if entry_type in DEBIT_ENTRY_TYPES and amount > 0:
        raise ValidationError(f"{entry_type.value} entries must be negative")


def LockChild(db: Session, family_id: int, child_id: int) -> Child:
    child = (
        db.query(Child)
        .filter(Child.Id == child_id, Child.FamilyId == family_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not child:
        raise NotFoundError("Child not found")
    return child


def AppendEntry(
    db: Session,
    *,
    family_id: int,
    child_id: int,
    entry_type: str | LedgerEntryType,
    amount: int,
    reason: str,
    related_chore_id: int | None = None,
    related_reward_id: int | None = None,
) -> LedgerAppendResult:
    """Append one signed point movement and move the child's balance with it.

    Runs inside the caller's transaction: the child row is locked, the entry and
    the balance change are flushed together, and nothing is committed here.
    """
    kind = _ParseEntryType(entry_type)
    _ValidateAmount(kind, amount)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Ledger reason is required")

    child = LockChild(db, family_id, child_id)
    balance_before = child.PointsBalance or 0
    balance_after = balance_before + amount
    if balance_after < 0:
        raise InsufficientBalanceError(
            f"Insufficient balance: {balance_before} available, {-amount} required",
            balance=balance_before,
            required=-amount,
        )

    entry = PointsLedgerEntry(
        FamilyId=family_id,
        ChildId=child.Id,
        EntryType=kind.value,
        Amount=amount,
        Reason=reason[:300],
        RelatedChoreId=related_chore_id,
        RelatedRewardId=related_reward_id,
        BalanceBefore=balance_before,
        BalanceAfter=balance_after,
    )
    db.add(entry)

    old_xp = child.Xp or 0
    xp_awarded = 0
    child.PointsBalance = balance_after
    if kind in XP_ENTRY_TYPES:
        xp_awarded = CalculateXpReward(amount)
        child.TotalPointsEarned = (child.TotalPointsEarned or 0) + amount
        child.Xp = old_xp + xp_awarded
        child.TotalXpEarned = (child.TotalXpEarned or 0) + xp_awarded
    db.add(child)
    db.flush()

    logger.info(
        "ledger append child_id=%s type=%s amount=%s balance=%s->%s",
        child.Id,
        kind.value,
        amount,
        balance_before,
        balance_after,
    )
    return LedgerAppendResult(Entry=entry, XpAwarded=xp_awarded, Level=CheckLevelUp(old_xp, child.Xp or 0))


def GetBalance(db: Session, family_id: int, child_id: int) -> int:
    child = db.query(Child).filter(Child.Id == child_id, Child.FamilyId == family_id).first()
    if not child:
        raise NotFoundError("Child not found")
    return child.PointsBalance or 0


def ComputeLedgerBalance(db: Session, child_id: int) -> int:
    total = (
        db.query(func.coalesce(func.sum(PointsLedgerEntry.Amount), 0))
        .filter(PointsLedgerEntry.ChildId == child_id)
        .scalar()
    )
    return int(total or 0)


def ListEntries(db: Session, family_id: int, child_id: int | None = None, limit: int = 50) -> list[PointsLedgerEntry]:
    limit = max(1, min(limit, MAX_HISTORY_LIMIT))
    query = db.query(PointsLedgerEntry).filter(PointsLedgerEntry.FamilyId == family_id)
    if child_id is not None:
        query = query.filter(PointsLedgerEntry.ChildId == child_id)
    return query.order_by(PointsLedgerEntry.Id.desc()).limit(limit).all()


def VerifyLedger(db: Session, child_id: int) -> bool:
    child = db.query(Child).filter(Child.Id == child_id).first()
    if not child:
        raise NotFoundError("Child not found")
    entries = (
        db.query(PointsLedgerEntry)
        .filter(PointsLedgerEntry.ChildId == child_id)
        .order_by(PointsLedgerEntry.Id.asc())
        .all()
    )
    running = 0
    for entry in entries:
        if entry.BalanceBefore != running or entry.BalanceAfter != entry.BalanceBefore + entry.Amount:
            logger.warning("ledger chain broken child_id=%s entry_id=%s", child_id, entry.Id)
            return False
        running = entry.BalanceAfter
    if running != (child.PointsBalance or 0):
        logger.warning(
            "ledger drift child_id=%s ledger=%s balance=%s",
            child_id,
            running,
            child.PointsBalance,
        )
        return False
    return True


def AdjustPoints(
    db: Session,
    ctx: ServiceContext,
    family_id: int,
    child_id: int,
    amount: int,
    reason: str,
) -> LedgerAppendResult:
    if not isinstance(amount, int) or amount == 0:
        raise ValidationError("Adjustment amount must be a non-zero whole number")
    entry_type = LedgerEntryType.BONUS if amount > 0 else LedgerEntryType.PENALTY

    def _work() -> LedgerAppendResult:
        return AppendEntry(
            db,
            family_id=family_id,
            child_id=child_id,
            entry_type=entry_type,
            amount=amount,
            reason=reason,
        )

    result = RunInTransaction(db, _work, label="adjust points")
    ctx.AfterCommit(
        family_id,
        EVENT_POINTS_ADJUSTED,
        {
            "ChildId": child_id,
            "Amount": amount,
            "Reason": result.Entry.Reason,
            "Balance": result.Entry.BalanceAfter,
        },
    )
    NotifyLevelUp(ctx, family_id, child_id, result)
    return result


def NotifyLevelUp(ctx: ServiceContext, family_id: int, child_id: int, result: LedgerAppendResult) -> None:
    if not result.Level.LeveledUp:
        return
    ctx.AfterCommit(
        family_id,
        EVENT_LEVEL_UP,
        {
            "ChildId": child_id,
            "Level": result.Level.NewLevel,
            "Title": result.Level.Title,
        },
    )
