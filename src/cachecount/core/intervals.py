"""
Interval resolution and time bucketing for queries.

Intervals are named (``today``, ``yesterday``) or parametric (``<N>d``).
Boundaries follow the caller's timezone; everything handed to the store is
UTC.
"""
import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

MAX_DAYS = 3650

_DAYS_RE = re.compile(r"^(\d+)d$")


class InvalidQueryError(ValueError):
    """Raised for unparseable query parameters (interval, timezone, column)."""
    pass


class IntervalType(str, Enum):
    """Time bucket granularity."""
    HOUR = "HOUR"
    DAY = "DAY"

    @property
    def step(self) -> timedelta:
        return timedelta(hours=1) if self is IntervalType.HOUR else timedelta(days=1)


@dataclass(frozen=True)
class DateTimeRange:
    """Half-open range [start, end) in UTC."""
    start: datetime
    end: datetime


def parse_timezone(name: str | None) -> tzinfo:
    """Resolve an IANA timezone name. Empty means UTC."""
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidQueryError(f"Unknown timezone: {name!r}") from None


def zone_name(tz: tzinfo) -> str:
    """IANA name of ``tz``, as the store expects it in bucketing functions.

    Fixed-offset tzinfo objects have no name the store can use, so they are
    rejected rather than silently bucketed in UTC.
    """
    if tz is timezone.utc:
        return "Etc/UTC"
    if isinstance(tz, ZoneInfo):
        return tz.key
    raise InvalidQueryError(f"Timezone must be an IANA zone, got {tz!r}")


def parse_days(interval: str) -> int:
    """Number of days covered by an ``<N>d`` interval."""
    match = _DAYS_RE.match(interval or "")
    if not match:
        raise InvalidQueryError(
            f"Invalid interval: {interval!r}. Use 'today', 'yesterday' or '<N>d' (e.g. '7d')"
        )
    days = int(match.group(1))
    if not 1 <= days <= MAX_DAYS:
        raise InvalidQueryError(f"Interval must be between 1d and {MAX_DAYS}d")
    return days


def get_interval_type(interval: str) -> IntervalType:
    """HOUR buckets for single-day windows, DAY buckets otherwise."""
    if interval in ("today", "yesterday"):
        return IntervalType.HOUR
    return IntervalType.HOUR if parse_days(interval) == 1 else IntervalType.DAY


def start_of_day(moment: datetime, tz: tzinfo) -> datetime:
    """Local midnight (in ``tz``) of the day containing ``moment``."""
    local_date = moment.astimezone(tz).date()
    return datetime.combine(local_date, time(), tzinfo=tz)


def start_of_hour(moment: datetime, tz: tzinfo) -> datetime:
    return moment.astimezone(tz).replace(minute=0, second=0, microsecond=0)


def get_date_time_range(
    interval: str,
    tz: tzinfo,
    now: datetime | None = None,
) -> DateTimeRange:
    """Resolve a named interval into a UTC range.

    - today: local midnight until now
    - yesterday: previous local midnight until local midnight
    - Nd with DAY granularity: local start of the day N days ago until now
    - 1d: start of the hour 24 hours ago until now
    """
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)

    if interval == "today":
        start = start_of_day(now, tz)
        end = now
    elif interval == "yesterday":
        end = start_of_day(now, tz)
        start = start_of_day(end - timedelta(hours=12), tz)
    else:
        days = parse_days(interval)
        if get_interval_type(interval) is IntervalType.DAY:
            start = start_of_day(now - timedelta(days=days), tz)
        else:
            start = start_of_hour(now - timedelta(days=days), tz)
        end = now

    return DateTimeRange(
        start=start.astimezone(timezone.utc),
        end=end.astimezone(timezone.utc),
    )


def bucket_starts(
    interval_type: IntervalType,
    start: datetime,
    end: datetime,
    tz: tzinfo,
) -> list[datetime]:
    """Every bucket start covering [start, end), in ascending order (UTC).

    Bucket boundaries are local hours / local midnights in ``tz``.
    """
    buckets = []

    if interval_type is IntervalType.HOUR:
        current = start_of_hour(start, tz).astimezone(timezone.utc)
        while current < end:
            buckets.append(current)
            current += interval_type.step
        return buckets

    # Step through local dates so DST transitions keep midnight boundaries
    local_date = start.astimezone(tz).date()
    while True:
        current = datetime.combine(local_date, time(), tzinfo=tz).astimezone(timezone.utc)
        if current >= end:
            break
        buckets.append(current)
        local_date += timedelta(days=1)
    return buckets
