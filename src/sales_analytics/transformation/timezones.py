"""
Store-local date bucketing.

Every financial event is attributed to a calendar day in the store's
configured timezone. Naive timestamps are taken to be UTC, which is what the
upstream APIs emit when they omit an offset.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone as dt_timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

TimezoneLike = Union[str, ZoneInfo]


class DateConversionError(ValueError):
    """A timestamp could not be turned into a store-local calendar date"""


def resolve_timezone(tz: TimezoneLike) -> ZoneInfo:
    """Accept an IANA name or a ZoneInfo"""
    if isinstance(tz, ZoneInfo):
        return tz
    return ZoneInfo(tz)


def to_local_date(ts: Optional[datetime], tz: TimezoneLike) -> str:
    """
    Convert an instant to a store-local ``YYYY-MM-DD`` string.

    Raises:
        DateConversionError: if the timestamp is missing or out of range
    """
    if ts is None:
        raise DateConversionError("timestamp is missing")
    if not isinstance(ts, datetime):
        raise DateConversionError(f"not a timestamp: {ts!r}")

    zone = resolve_timezone(tz)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt_timezone.utc)
    try:
        return ts.astimezone(zone).date().isoformat()
    except (OverflowError, ValueError) as e:
        raise DateConversionError(f"cannot convert {ts!r} to {zone.key}: {e}") from e


def parse_event_date(value: Optional[str]) -> Optional[date]:
    """Parse an event date string, None when missing or malformed"""
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class ReportingPeriod:
    """
    Inclusive store-local date range.

    Used both as the aggregation window and as the period against which
    Shopify-mode customer classification is evaluated.
    """
    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Reporting period ends before it starts: {self.start} > {self.end}")

    @classmethod
    def from_strings(cls, start: str, end: str) -> "ReportingPeriod":
        return cls(date.fromisoformat(start), date.fromisoformat(end))

    @classmethod
    def single_day(cls, day: Union[str, date]) -> "ReportingPeriod":
        if isinstance(day, str):
            day = date.fromisoformat(day)
        return cls(day, day)

    def contains(self, day: Union[str, date, None]) -> bool:
        if isinstance(day, str):
            day = parse_event_date(day)
        if day is None:
            return False
        return self.start <= day <= self.end

    def contains_instant(self, ts: Optional[datetime], tz: TimezoneLike) -> bool:
        """Whether the instant's store-local date falls in the period"""
        try:
            return self.contains(to_local_date(ts, tz))
        except DateConversionError:
            return False

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"
