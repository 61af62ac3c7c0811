import os
from datetime import datetime, timedelta, timezone

MESSAGE_RETENTION = timedelta(hours=int(os.getenv("MESSAGE_RETENTION_HOURS", "24")))

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_epoch_ms(value: datetime) -> int:
    """Epoch milliseconds, rounded down so a watermark never skips a row."""
    return (_as_utc(value) - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(ms: float) -> datetime:
    return _EPOCH + timedelta(milliseconds=ms)


def retention_cutoff(now: datetime | None = None) -> datetime:
    return (now or utc_now()) - MESSAGE_RETENTION
