import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from chorebank.core.errors import (
    ConcurrencyConflictError,
    CouponAlreadyUsedError,
    InsufficientBalanceError,
    ValidationError,
)
from chorebank.core.transactions import RunInTransaction
from chorebank.db import Base, BuildEngine, BuildSessionFactory
from chorebank.modules.coupons.models import Coupon, CouponUsage
from chorebank.modules.coupons.schemas import CouponCreate
from chorebank.modules.coupons.service import ApplyCoupon, CreateCoupon
from chorebank.modules.families.service import AddChild, CreateFamily
from chorebank.modules.ledger.models import LedgerEntryType
from chorebank.modules.ledger.service import AppendEntry, ComputeLedgerBalance, GetBalance
from chorebank.modules.rewards.models import PendingReward
from chorebank.modules.rewards.schemas import RewardCreate
from chorebank.modules.rewards.service import CreateReward, RedeemReward

WORKERS = 8


@pytest.fixture
def file_session_factory(tmp_path):
    engine = BuildEngine(f"sqlite:///{tmp_path / 'chorebank.db'}")
    Base.metadata.create_all(engine)
    yield BuildSessionFactory(engine)
    engine.dispose()


def _RunTogether(session_factory, call):
    barrier = threading.Barrier(WORKERS)

    def _worker(_index):
        db = session_factory()
        try:
            barrier.wait()
            call(db)
            return "ok"
        except (InsufficientBalanceError, CouponAlreadyUsedError, ConcurrencyConflictError) as exc:
            return exc.__class__.__name__
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        return list(pool.map(_worker, range(WORKERS)))


def test_concurrent_redemptions_never_overspend(file_session_factory, ctx):
    db = file_session_factory()
    family = CreateFamily(db, "Race family")
    child = AddChild(db, ctx, family.Id, "Sam")
    AppendEntry(
        db,
        family_id=family.Id,
        child_id=child.Id,
        entry_type=LedgerEntryType.BONUS,
        amount=100,
        reason="Starting balance",
    )
    db.commit()
    reward = CreateReward(db, ctx, family.Id, RewardCreate(Name="Movie night", Cost=50))
    db.close()

    outcomes = _RunTogether(
        file_session_factory,
        lambda session: RedeemReward(session, ctx, family.Id, child.Id, reward.Id),
    )

    successes = outcomes.count("ok")
    assert 1 <= successes <= 100 // 50
    assert set(outcomes) <= {"ok", "InsufficientBalanceError", "ConcurrencyConflictError"}

    check = file_session_factory()
    try:
        balance = GetBalance(check, family.Id, child.Id)
        assert balance == ComputeLedgerBalance(check, child.Id)
        assert balance == 100 - 50 * successes
        assert balance >= 0
        assert check.query(PendingReward).filter(PendingReward.ChildId == child.Id).count() == successes
    finally:
        check.close()


def test_concurrent_coupon_applications_use_it_once(file_session_factory, ctx):
    db = file_session_factory()
    family = CreateFamily(db, "Race family")
    coupon = CreateCoupon(db, CouponCreate(Code="ONCE", DiscountType="fixed", DiscountValue=100, MaxUses=50))
    db.close()

    outcomes = _RunTogether(
        file_session_factory,
        lambda session: ApplyCoupon(session, ctx, coupon.Id, family.Id, None, 499),
    )

    successes = outcomes.count("ok")
    assert successes == 1
    assert set(outcomes) <= {"ok", "CouponAlreadyUsedError", "ConcurrencyConflictError"}

    check = file_session_factory()
    try:
        assert check.query(CouponUsage).filter(CouponUsage.CouponId == coupon.Id).count() == 1
        assert check.query(Coupon).filter(Coupon.Id == coupon.Id).one().UsedCount == 1
    finally:
        check.close()


def test_run_in_transaction_gives_up_after_repeated_conflicts(db):
    calls = []

    def _work():
        calls.append(1)
        raise StaleDataError("row version changed")

    with pytest.raises(ConcurrencyConflictError) as excinfo:
        RunInTransaction(db, _work, attempts=3, label="redeem reward")
    assert len(calls) == 3
    assert isinstance(excinfo.value.__cause__, StaleDataError)


def test_run_in_transaction_retries_locked_database(db):
    calls = []

    def _work():
        calls.append(1)
        if len(calls) == 1:
            raise OperationalError("UPDATE children", {}, Exception("database is locked"))
        return "done"

    assert RunInTransaction(db, _work, attempts=3) == "done"
    assert len(calls) == 2


def test_run_in_transaction_does_not_retry_domain_errors(db):
    calls = []

    def _work():
        calls.append(1)
        raise ValidationError("Ledger reason is required")

    with pytest.raises(ValidationError):
        RunInTransaction(db, _work, attempts=3)
    assert len(calls) == 1
