import pytest

from chorebank.core.errors import InsufficientBalanceError, InvalidTransitionError, NotFoundError
from chorebank.modules.chores.schemas import ChoreCreate
from chorebank.modules.chores.service import ApproveChore, CreateChore, SubmitChore
from chorebank.modules.ledger.models import PointsLedgerEntry
from chorebank.modules.ledger.service import GetBalance, VerifyLedger
from chorebank.modules.rewards.models import PendingReward
from chorebank.modules.rewards.schemas import RewardCreate, RewardUpdate
from chorebank.modules.rewards.service import (
    CancelPendingReward,
    ClearPendingReward,
    CreateReward,
    DeleteReward,
    ListPendingRewards,
    ListRewards,
    RedeemReward,
    UpdateReward,
)


def _BuildReward(db, ctx, family_id, **overrides):
    payload = {"Name": "Movie night", "Cost": 50}
    payload.update(overrides)
    return CreateReward(db, ctx, family_id, RewardCreate(**payload))


def _EarnFromChore(db, ctx, family_id, child_id, points):
    chore = CreateChore(db, ctx, family_id, ChoreCreate(Name="Vacuum", Points=points))
    SubmitChore(db, ctx, family_id, chore.Id, child_id)
    return ApproveChore(db, ctx, family_id, chore.Id)


def test_redeem_after_earning_enough(db, ctx, family, make_child):
    child = make_child(balance=40)
    reward = _BuildReward(db, ctx, family.Id)

    with pytest.raises(InsufficientBalanceError):
        RedeemReward(db, ctx, family.Id, child.Id, reward.Id)
    assert GetBalance(db, family.Id, child.Id) == 40
    assert db.query(PendingReward).count() == 0

    _EarnFromChore(db, ctx, family.Id, child.Id, 20)
    pending = RedeemReward(db, ctx, family.Id, child.Id, reward.Id)

    entry = db.query(PointsLedgerEntry).filter(PointsLedgerEntry.Id == pending.LedgerEntryId).one()
    assert entry.Amount == -50
    assert entry.BalanceBefore == 60
    assert entry.BalanceAfter == 10
    assert entry.EntryType == "spent"
    assert pending.Status == "pending"
    assert pending.Points == 50
    assert GetBalance(db, family.Id, child.Id) == 10
    assert VerifyLedger(db, child.Id)


def test_clear_marks_given_without_moving_points(db, ctx, notifier, family, make_child):
    child = make_child(balance=60)
    reward = _BuildReward(db, ctx, family.Id)
    pending = RedeemReward(db, ctx, family.Id, child.Id, reward.Id)

    cleared = ClearPendingReward(db, ctx, family.Id, pending.Id)
    assert cleared.Status == "completed"
    assert cleared.ResolvedAt is not None
    assert GetBalance(db, family.Id, child.Id) == 10
    assert "RewardGiven" in notifier.Types()

    with pytest.raises(InvalidTransitionError):
        ClearPendingReward(db, ctx, family.Id, pending.Id)
    with pytest.raises(InvalidTransitionError):
        CancelPendingReward(db, ctx, family.Id, pending.Id)


def test_cancel_refunds_points(db, ctx, family, make_child):
    child = make_child(balance=60)
    reward = _BuildReward(db, ctx, family.Id)
    pending = RedeemReward(db, ctx, family.Id, child.Id, reward.Id)

    canceled = CancelPendingReward(db, ctx, family.Id, pending.Id)
    assert canceled.Status == "canceled"
    assert GetBalance(db, family.Id, child.Id) == 60
    refund = (
        db.query(PointsLedgerEntry)
        .filter(PointsLedgerEntry.ChildId == child.Id)
        .order_by(PointsLedgerEntry.Id.desc())
        .first()
    )
    assert refund.EntryType == "refunded"
    assert refund.Amount == 50
    assert VerifyLedger(db, child.Id)
    assert ListPendingRewards(db, family.Id) == []
    assert len(ListPendingRewards(db, family.Id, include_resolved=True)) == 1


def test_inactive_or_unassigned_rewards_cannot_be_redeemed(db, ctx, family, make_child):
    sam = make_child("Sam", balance=100)
    lotte = make_child("Lotte", balance=100)
    for_lotte = _BuildReward(db, ctx, family.Id, Name="Sleepover", AssignedChildIds=[lotte.Id])
    retired = _BuildReward(db, ctx, family.Id, Name="Old toy", IsActive=False)

    with pytest.raises(NotFoundError):
        RedeemReward(db, ctx, family.Id, sam.Id, for_lotte.Id)
    with pytest.raises(NotFoundError):
        RedeemReward(db, ctx, family.Id, sam.Id, retired.Id)
    assert [reward.Id for reward in ListRewards(db, family.Id, child_id=sam.Id)] == []
    assert [reward.Id for reward in ListRewards(db, family.Id, child_id=lotte.Id)] == [for_lotte.Id]
    assert len(ListRewards(db, family.Id)) == 2


def test_reward_from_another_family_is_not_found(db, ctx, family, other_family, make_child):
    child = make_child(balance=100)
    reward = _BuildReward(db, ctx, other_family.Id)
    with pytest.raises(NotFoundError):
        RedeemReward(db, ctx, family.Id, child.Id, reward.Id)


def test_update_reward_changes_cost_for_future_redemptions(db, ctx, family, make_child):
    child = make_child(balance=100)
    reward = _BuildReward(db, ctx, family.Id)
    first = RedeemReward(db, ctx, family.Id, child.Id, reward.Id)
    UpdateReward(db, ctx, family.Id, reward.Id, RewardUpdate(Cost=30))
    second = RedeemReward(db, ctx, family.Id, child.Id, reward.Id)

    assert first.Points == 50
    assert second.Points == 30
    assert GetBalance(db, family.Id, child.Id) == 20


def test_delete_reward_refunds_open_redemptions(db, ctx, family, make_child):
    child = make_child(balance=60)
    reward = _BuildReward(db, ctx, family.Id)
    RedeemReward(db, ctx, family.Id, child.Id, reward.Id)

    DeleteReward(db, ctx, family.Id, reward.Id)
    assert GetBalance(db, family.Id, child.Id) == 60
    assert db.query(PendingReward).count() == 0
    assert VerifyLedger(db, child.Id)
