from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, the form datetimes are stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_storage(value: datetime) -> datetime:
    # Aware values are converted to UTC; naive values are taken as UTC already
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value
