from datetime import datetime, timezone


def NowUtc() -> datetime:
    return datetime.now(tz=timezone.utc).replace(tzinfo=None)


def ToNaiveUtc(value: datetime | None) -> datetime | None:
    # Stored timestamps are naive UTC; aware inputs are converted first.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
