from datetime import datetime
from types import SimpleNamespace

import pytest

from chorebank.core.errors import ConcurrencyConflictError, ValidationError
from chorebank.modules.chores.models import Chore, ChoreAssignment, ChoreStatus
from chorebank.modules.chores.schemas import ChoreCreate
from chorebank.modules.chores.service import ApproveChore, CreateChore, SubmitChore
from chorebank.modules.scheduler.rules import (
    AdvanceNextDue,
    ComputeNextDue,
    NormalizeCustomRule,
    NormalizeRecurrenceDays,
    ParseCustomRule,
)
from chorebank.modules.scheduler import service as scheduler_service
from chorebank.modules.scheduler.service import SchedulerRunner, Tick

# 2024-01-01 is a Monday.
MONDAY = datetime(2024, 1, 1, 9, 0)


def _BuildRule(**overrides):
    data = {
        "Id": 1,
        "RecurrenceType": "daily",
        "RecurrenceDays": None,
        "RecurrenceRule": None,
    }
    data.update(overrides)
    return SimpleNamespace(**data)


def _BuildTemplate(db, ctx, family_id, next_due, **overrides):
    payload = {"Name": "Empty dishwasher", "Points": 10, "RecurrenceType": "daily"}
    payload.update(overrides)
    template = CreateChore(db, ctx, family_id, ChoreCreate(**payload))
    template.NextDueDate = next_due
    db.add(template)
    db.commit()
    return template


def test_daily_rule_is_next_day():
    assert ComputeNextDue(_BuildRule(), MONDAY) == datetime(2024, 1, 2, 9, 0)


def test_weekly_rule_picks_first_matching_day_from_start():
    rule = _BuildRule(RecurrenceType="weekly", RecurrenceDays="monday,wednesday")
    assert ComputeNextDue(rule, MONDAY) == MONDAY
    assert ComputeNextDue(rule, datetime(2024, 1, 2, 9, 0)) == datetime(2024, 1, 3, 9, 0)
    assert ComputeNextDue(rule, datetime(2024, 1, 4, 9, 0)) == datetime(2024, 1, 8, 9, 0)


def test_weekly_rule_without_days_is_dormant():
    assert ComputeNextDue(_BuildRule(RecurrenceType="weekly", RecurrenceDays=""), MONDAY) is None


def test_custom_every_rule_adds_days():
    rule = _BuildRule(RecurrenceType="custom", RecurrenceRule="every:3")
    assert ComputeNextDue(rule, MONDAY) == datetime(2024, 1, 4, 9, 0)


def test_custom_monthday_rule_clamps_short_months():
    rule = _BuildRule(RecurrenceType="custom", RecurrenceRule="monthday:31")
    assert ComputeNextDue(rule, datetime(2024, 2, 10, 8, 0)) == datetime(2024, 2, 29, 8, 0)
    assert ComputeNextDue(rule, datetime(2024, 1, 31, 8, 0)) == datetime(2024, 1, 31, 8, 0)
    assert AdvanceNextDue(rule, datetime(2024, 1, 31, 8, 0), datetime(2024, 1, 31, 9, 0)) == datetime(2024, 2, 29, 8, 0)


def test_unknown_custom_rule_is_dormant():
    assert ComputeNextDue(_BuildRule(RecurrenceType="custom", RecurrenceRule="fortnightly"), MONDAY) is None
    assert ComputeNextDue(_BuildRule(RecurrenceType="none"), MONDAY) is None


def test_advance_steps_past_spawned_weekly_occurrence():
    rule = _BuildRule(RecurrenceType="weekly", RecurrenceDays="friday")
    friday = datetime(2024, 1, 5, 8, 0)
    assert AdvanceNextDue(rule, friday, friday) == datetime(2024, 1, 12, 8, 0)


def test_missed_occurrences_collapse_into_one():
    due = datetime(2024, 1, 1, 8, 0)
    now = datetime(2024, 1, 5, 12, 0)
    assert AdvanceNextDue(_BuildRule(), due, now) == datetime(2024, 1, 6, 8, 0)


def test_rule_parsing():
    assert ParseCustomRule("every:0") is None
    assert ParseCustomRule("monthday:32") is None
    assert ParseCustomRule("every:x") is None
    assert ParseCustomRule("MonthDay: 15") == ("monthday", 15)
    assert NormalizeCustomRule("EVERY:7") == "every:7"
    with pytest.raises(ValidationError):
        NormalizeCustomRule(None)
    assert NormalizeRecurrenceDays("fri,Mon") == "monday,friday"
    assert NormalizeRecurrenceDays([]) is None


def test_tick_spawns_instance_and_advances_template(db, ctx, notifier, family, make_child):
    child = make_child()
    template = _BuildTemplate(db, ctx, family.Id, datetime(2024, 1, 1, 8, 0), AssignedChildIds=[child.Id])

    spawned = Tick(db, ctx, now=MONDAY)
    assert len(spawned) == 1
    instance = db.query(Chore).filter(Chore.Id == spawned[0]).one()
    assert instance.TemplateId == template.Id
    assert instance.DueDate == datetime(2024, 1, 1, 8, 0)
    assert instance.Status == ChoreStatus.AVAILABLE.value
    assert not instance.IsTemplate
    assert [row.ChildId for row in db.query(ChoreAssignment).filter(ChoreAssignment.ChoreId == instance.Id)] == [child.Id]

    db.expire_all()
    stored = db.query(Chore).filter(Chore.Id == template.Id).one()
    assert stored.NextDueDate == datetime(2024, 1, 2, 8, 0)
    assert ("ChoresSpawned", family.Id, {"ChoreIds": spawned}) in notifier.Events


def test_tick_is_idempotent_for_same_instant(db, ctx, family):
    template = _BuildTemplate(db, ctx, family.Id, datetime(2024, 1, 1, 8, 0))
    first = Tick(db, ctx, now=MONDAY)
    second = Tick(db, ctx, now=MONDAY)
    assert len(first) == 1
    assert second == []
    assert db.query(Chore).filter(Chore.TemplateId == template.Id).count() == 1


def test_tick_after_long_gap_spawns_one_occurrence(db, ctx, family):
    template = _BuildTemplate(db, ctx, family.Id, datetime(2024, 1, 1, 8, 0))
    spawned = Tick(db, ctx, now=datetime(2024, 1, 5, 12, 0))
    assert len(spawned) == 1
    db.expire_all()
    assert db.query(Chore).filter(Chore.Id == template.Id).one().NextDueDate == datetime(2024, 1, 6, 8, 0)


def test_duplicate_occurrence_is_skipped(db, ctx, family):
    template = _BuildTemplate(db, ctx, family.Id, datetime(2024, 1, 1, 8, 0))
    Tick(db, ctx, now=MONDAY)

    db.query(Chore).filter(Chore.Id == template.Id).update({Chore.NextDueDate: datetime(2024, 1, 1, 8, 0)})
    db.commit()

    assert Tick(db, ctx, now=MONDAY) == []
    assert db.query(Chore).filter(Chore.TemplateId == template.Id).count() == 1


def test_future_templates_are_left_alone(db, ctx, family):
    _BuildTemplate(db, ctx, family.Id, datetime(2024, 1, 3, 8, 0))
    assert Tick(db, ctx, now=MONDAY) == []


def test_approving_instance_rearms_dormant_template(db, ctx, family, make_child):
    child = make_child()
    template = _BuildTemplate(db, ctx, family.Id, datetime(2024, 1, 1, 8, 0))
    instance_id = Tick(db, ctx, now=MONDAY)[0]

    db.query(Chore).filter(Chore.Id == template.Id).update({Chore.NextDueDate: None})
    db.commit()

    SubmitChore(db, ctx, family.Id, instance_id, child.Id)
    approval = ApproveChore(db, ctx, family.Id, instance_id)

    db.expire_all()
    stored = db.query(Chore).filter(Chore.Id == template.Id).one()
    assert stored.NextDueDate is not None
    assert stored.NextDueDate > approval.Chore.ApprovedAt


def test_runner_runs_tick_and_renewals(db, ctx, session_factory, family):
    template = _BuildTemplate(db, ctx, family.Id, datetime(2024, 1, 1, 8, 0))
    runner = SchedulerRunner(session_factory, ctx)

    result = runner.RunOnce(now=MONDAY)
    assert not result.Skipped
    assert len(result.SpawnedChoreIds) == 1
    assert result.RenewedFamilyIds == []
    assert db.query(Chore).filter(Chore.TemplateId == template.Id).count() == 1


def test_runner_skips_overlapping_tick(ctx, session_factory):
    runner = SchedulerRunner(session_factory, ctx)
    runner._lock.acquire()
    try:
        result = runner.RunOnce(now=MONDAY)
    finally:
        runner._lock.release()
    assert result.Skipped
    assert result.SpawnedChoreIds == []


def test_failed_spawn_does_not_stop_the_tick(db, ctx, family, monkeypatch):
    stuck = _BuildTemplate(db, ctx, family.Id, datetime(2024, 1, 1, 7, 0), Name="Stuck")
    healthy = _BuildTemplate(db, ctx, family.Id, datetime(2024, 1, 1, 8, 0), Name="Healthy")
    original = scheduler_service._SpawnFromTemplate

    def _spawn(session, template_id, now):
        if template_id == stuck.Id:
            raise ConcurrencyConflictError("scheduler spawn could not be completed after 3 attempts")
        return original(session, template_id, now)

    monkeypatch.setattr(scheduler_service, "_SpawnFromTemplate", _spawn)

    spawned = Tick(db, ctx, now=MONDAY)
    assert len(spawned) == 1
    assert db.query(Chore).filter(Chore.TemplateId == healthy.Id).count() == 1
    assert db.query(Chore).filter(Chore.TemplateId == stuck.Id).count() == 0
