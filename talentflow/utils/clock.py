"""Time source for the orchestration core."""
from datetime import datetime


def truncate_ms(value: datetime) -> datetime:
    """Drop sub-millisecond precision, which BSON dates cannot hold."""
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


class Clock:
    """Wall clock returning naive UTC datetimes, as stored in MongoDB."""

    def now(self) -> datetime:
        return truncate_ms(datetime.utcnow())
