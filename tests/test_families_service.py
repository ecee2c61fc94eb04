import pytest

from chorebank.core.cache import FamilySnapshotCache
from chorebank.core.errors import NotFoundError, ValidationError
from chorebank.modules.chores.models import Chore
from chorebank.modules.chores.schemas import ChoreCreate
from chorebank.modules.chores.service import CreateChore, SubmitChore
from chorebank.modules.families.models import Child
from chorebank.modules.families.service import (
    AddChild,
    CreateFamily,
    EnsureChildrenInFamily,
    GetFamilySnapshot,
    RemoveChild,
)
from chorebank.modules.ledger.models import PointsLedgerEntry
from chorebank.modules.ledger.service import AdjustPoints
from chorebank.modules.rewards.models import PendingReward
from chorebank.modules.rewards.schemas import RewardCreate
from chorebank.modules.rewards.service import CreateReward, RedeemReward


def test_create_family_assigns_code(db):
    family = CreateFamily(db, "  Bakker family ", "Parents@Example.com")
    assert family.Name == "Bakker family"
    assert family.Email == "parents@example.com"
    assert len(family.FamilyCode) == 6
    assert family.SubscriptionPlan == "none"
    assert family.SubscriptionStatus == "inactive"
    with pytest.raises(ValidationError):
        CreateFamily(db, " ")


def test_new_child_starts_empty(db, ctx, family):
    child = AddChild(db, ctx, family.Id, "Noor")
    assert child.PointsBalance == 0
    assert child.Xp == 0
    with pytest.raises(ValidationError):
        AddChild(db, ctx, family.Id, "")
    with pytest.raises(NotFoundError):
        AddChild(db, ctx, 9999, "Ghost")


def test_ensure_children_in_family(db, family, other_family, make_child):
    sam = make_child("Sam")
    outsider = make_child("Tim", family_id=other_family.Id)
    assert EnsureChildrenInFamily(db, family.Id, [sam.Id, sam.Id]) == [sam.Id]
    assert EnsureChildrenInFamily(db, family.Id, []) == []
    with pytest.raises(NotFoundError):
        EnsureChildrenInFamily(db, family.Id, [sam.Id, outsider.Id])


def test_snapshot_is_cached_until_a_change_commits(db, ctx, family, make_child):
    make_child("Sam")
    first = GetFamilySnapshot(db, ctx, family.Id)
    assert [child.DisplayName for child in first.Children] == ["Sam"]
    assert GetFamilySnapshot(db, ctx, family.Id) is first

    AddChild(db, ctx, family.Id, "Lotte")
    second = GetFamilySnapshot(db, ctx, family.Id)
    assert second is not first
    assert [child.DisplayName for child in second.Children] == ["Sam", "Lotte"]


def test_snapshot_reflects_points_and_level(db, ctx, family, make_child):
    child = make_child()
    AdjustPoints(db, ctx, family.Id, child.Id, 700, "Summer job")
    snapshot = GetFamilySnapshot(db, ctx, family.Id)
    entry = snapshot.Children[0]
    assert entry.PointsBalance == 700
    assert entry.Xp == 105
    assert entry.Level == 2
    assert entry.LevelTitle == "Helper"


def test_remove_child_cleans_up_activity(db, ctx, family, make_child):
    child = make_child(balance=100)
    chore = CreateChore(db, ctx, family.Id, ChoreCreate(Name="Rake leaves", Points=10))
    SubmitChore(db, ctx, family.Id, chore.Id, child.Id)
    reward = CreateReward(db, ctx, family.Id, RewardCreate(Name="Ice cream", Cost=30))
    RedeemReward(db, ctx, family.Id, child.Id, reward.Id)

    RemoveChild(db, ctx, family.Id, child.Id)

    db.expire_all()
    assert db.query(Child).filter(Child.Id == child.Id).first() is None
    assert db.query(PointsLedgerEntry).filter(PointsLedgerEntry.ChildId == child.Id).count() == 0
    assert db.query(PendingReward).count() == 0
    reset = db.query(Chore).filter(Chore.Id == chore.Id).one()
    assert reset.Status == "available"
    assert reset.SubmittedByChildId is None
    with pytest.raises(NotFoundError):
        RemoveChild(db, ctx, family.Id, child.Id)


def test_snapshot_cache_expires_entries():
    now = [100.0]
    cache = FamilySnapshotCache(ttl_seconds=30, clock=lambda: now[0])
    cache.Set(1, "snapshot")
    assert cache.Get(1) == "snapshot"
    now[0] += 31
    assert cache.Get(1) is None

    disabled = FamilySnapshotCache(ttl_seconds=0)
    disabled.Set(1, "snapshot")
    assert disabled.Get(1) is None
