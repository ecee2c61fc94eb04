import pytest

from chorebank.core.cache import FamilySnapshotCache
from chorebank.core.context import ServiceContext
from chorebank.db import Base, BuildEngine, BuildSessionFactory
from chorebank.modules.chores import models as chores_models  # noqa: F401
from chorebank.modules.coupons import models as coupons_models  # noqa: F401
from chorebank.modules.families.models import Child, Family
from chorebank.modules.families.service import AddChild, CreateFamily
from chorebank.modules.ledger.models import LedgerEntryType
from chorebank.modules.ledger.service import AppendEntry
from chorebank.modules.rewards import models as rewards_models  # noqa: F401
from chorebank.modules.subscriptions import models as subscriptions_models  # noqa: F401


class RecordingNotifier:
    def __init__(self) -> None:
        self.Events = []

    def Dispatch(self, event_type, family_id, payload=None):
        self.Events.append((event_type, family_id, payload or {}))
        return True

    def Types(self) -> list[str]:
        return [event[0] for event in self.Events]


@pytest.fixture
def engine():
    engine = BuildEngine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return BuildSessionFactory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ctx(notifier):
    return ServiceContext(Cache=FamilySnapshotCache(ttl_seconds=300), Notifier=notifier)


@pytest.fixture
def family(db) -> Family:
    return CreateFamily(db, "Jansen family", "parents@example.com")


@pytest.fixture
def other_family(db) -> Family:
    return CreateFamily(db, "De Vries family")


@pytest.fixture
def make_child(db, ctx, family):
    def _make(display_name: str = "Sam", balance: int = 0, family_id: int | None = None) -> Child:
        owner_id = family_id or family.Id
        child = AddChild(db, ctx, owner_id, display_name)
        if balance:
            AppendEntry(
                db,
                family_id=owner_id,
                child_id=child.Id,
                entry_type=LedgerEntryType.BONUS,
                amount=balance,
                reason="Starting balance",
            )
            db.commit()
        return child

    return _make
