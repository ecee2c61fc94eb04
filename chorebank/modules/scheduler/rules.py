import calendar
import logging
from datetime import datetime, timedelta

from chorebank.core.errors import ValidationError
from chorebank.modules.chores.models import RecurrenceType

logger = logging.getLogger("scheduler")

WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
WEEKDAY_ALIASES = {name[:3]: name for name in WEEKDAY_NAMES}

RULE_EVERY = "every"
RULE_MONTHDAY = "monthday"
MAX_EVERY_DAYS = 366


def NormalizeRecurrenceDays(days: list[str] | str | None) -> str | None:
    if days is None:
        return None
    if isinstance(days, str):
        days = days.split(",")
    normalized = set()
    for raw in days:
        value = (raw or "").strip().lower()
        if not value:
            continue
        value = WEEKDAY_ALIASES.get(value, value)
        if value not in WEEKDAY_NAMES:
            raise ValidationError(f"Unknown weekday: {raw}")
        normalized.add(value)
    if not normalized:
        return None
    return ",".join(name for name in WEEKDAY_NAMES if name in normalized)


def ParseRecurrenceDays(value: str | None) -> set[int]:
    if not value:
        return set()
    indexes = set()
    for raw in value.split(","):
        name = WEEKDAY_ALIASES.get(raw.strip().lower(), raw.strip().lower())
        if name in WEEKDAY_NAMES:
            indexes.add(WEEKDAY_NAMES.index(name))
    return indexes


def ParseCustomRule(rule: str | None) -> tuple[str, int] | None:
    if not rule or ":" not in rule:
        return None
    kind, _, raw_value = rule.strip().lower().partition(":")
    try:
        value = int(raw_value.strip())
    except ValueError:
        return None
    kind = kind.strip()
    if kind == RULE_EVERY and 1 <= value <= MAX_EVERY_DAYS:
        return kind, value
    if kind == RULE_MONTHDAY and 1 <= value <= 31:
        return kind, value
    return None


def NormalizeCustomRule(rule: str | None) -> str:
    parsed = ParseCustomRule(rule)
    if not parsed:
        raise ValidationError("Custom recurrence needs a rule like 'every:3' or 'monthday:15'")
    kind, value = parsed
    return f"{kind}:{value}"


def _ClampDay(year: int, month: int, day: int) -> int:
    return min(day, calendar.monthrange(year, month)[1])


def _NextMonthDay(from_: datetime, day: int) -> datetime:
    this_month = from_.replace(day=_ClampDay(from_.year, from_.month, day))
    if this_month >= from_:
        return this_month
    year = from_.year + (1 if from_.month == 12 else 0)
    month = 1 if from_.month == 12 else from_.month + 1
    return from_.replace(year=year, month=month, day=_ClampDay(year, month, day))


def _NextWeekly(from_: datetime, weekdays: set[int]) -> datetime | None:
    if not weekdays:
        return None
    for offset in range(7):
        candidate = from_ + timedelta(days=offset)
        if candidate.weekday() in weekdays:
            return candidate
    return None


def ComputeNextDue(template, from_: datetime) -> datetime | None:
    recurrence = template.RecurrenceType or RecurrenceType.NONE.value
    if recurrence == RecurrenceType.DAILY.value:
        return from_ + timedelta(days=1)
    if recurrence == RecurrenceType.WEEKLY.value:
        return _NextWeekly(from_, ParseRecurrenceDays(template.RecurrenceDays))
    if recurrence == RecurrenceType.CUSTOM.value:
        parsed = ParseCustomRule(template.RecurrenceRule)
        if not parsed:
            logger.warning(
                "custom recurrence rule not understood, template dormant template_id=%s rule=%s",
                getattr(template, "Id", None),
                template.RecurrenceRule,
            )
            return None
        kind, value = parsed
        if kind == RULE_EVERY:
            return from_ + timedelta(days=value)
        return _NextMonthDay(from_, value)
    return None


def _AdvanceBase(template, due: datetime) -> datetime:
    # Rules that may return their own start date step past the occurrence just spawned.
    if template.RecurrenceType == RecurrenceType.WEEKLY.value:
        return due + timedelta(days=1)
    parsed = ParseCustomRule(template.RecurrenceRule) if template.RecurrenceType == RecurrenceType.CUSTOM.value else None
    if parsed and parsed[0] == RULE_MONTHDAY:
        return due + timedelta(days=1)
    return due


def AdvanceNextDue(template, due: datetime, now: datetime) -> datetime | None:
    candidate = ComputeNextDue(template, _AdvanceBase(template, due))
    while candidate is not None and candidate <= now:
        candidate = ComputeNextDue(template, _AdvanceBase(template, candidate))
    return candidate
