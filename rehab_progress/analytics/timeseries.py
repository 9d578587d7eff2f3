"""Dense time-series bucketing for dashboard charts.

Windows of up to 31 calendar days are bucketed by day, longer windows by
calendar month. Every bucket in the window is present, empty ones with a
count of 0.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from rehab_progress.plans.calendar import local_date, resolve_timezone, round_half_up
from rehab_progress.plans.errors import ValidationError

DAILY_MAX_DAYS = 31


class Granularity(str, Enum):
    DAY = "day"
    MONTH = "month"


class Bucket(BaseModel):
    key: str = Field(description="yyyy-mm-dd for days, yyyy-mm for months")
    label: str
    full_label: str
    start: date
    count: int = 0
    trend: float = 0.0


class SeriesResult(BaseModel):
    start: date
    end: date
    granularity: Granularity
    buckets: list[Bucket]
    total: int
    average: float
    slope: float


def window_days(start: date, end: date) -> int:
    """Inclusive number of calendar days in the window."""
    return (end - start).days + 1


def granularity_for(start: date, end: date) -> Granularity:
    return Granularity.DAY if window_days(start, end) <= DAILY_MAX_DAYS else Granularity.MONTH


def bucket(
    records: Iterable[Any],
    start: date,
    end: date,
    tz=None,
) -> SeriesResult:
    """Count records per day or month between ``start`` and ``end`` inclusive.

    Records may be datetimes, dates, or objects with a ``timestamp``
    attribute. Aware datetimes are converted to ``tz`` before taking the
    calendar day; naive ones are taken as already local.
    """
    if isinstance(start, datetime):
        start = start.date()
    if isinstance(end, datetime):
        end = end.date()
    if end < start:
        raise ValidationError(f"Window end {end} is before start {start}", field="end")

    zone = resolve_timezone(tz)
    granularity = granularity_for(start, end)
    buckets = _empty_buckets(start, end, granularity)
    index = {b.key: b for b in buckets}

    for record in records:
        day = local_date(_moment(record), zone)
        if day < start or day > end:
            continue
        index[_key(day, granularity)].count += 1

    total = sum(b.count for b in buckets)
    slope, intercept = _least_squares([b.count for b in buckets])
    for position, b in enumerate(buckets):
        b.trend = round_half_up(intercept + slope * position, 2)

    return SeriesResult(
        start=start,
        end=end,
        granularity=granularity,
        buckets=buckets,
        total=total,
        average=round_half_up(total / len(buckets), 2) if buckets else 0.0,
        slope=round_half_up(slope, 4),
    )


def _moment(record: Any):
    if isinstance(record, (datetime, date)):
        return record
    timestamp: Optional[Any] = getattr(record, "timestamp", None)
    if isinstance(timestamp, (datetime, date)):
        return timestamp
    raise ValidationError(f"Cannot read a timestamp from {type(record).__name__}", field="records")


def _key(day: date, granularity: Granularity) -> str:
    if granularity == Granularity.DAY:
        return day.isoformat()
    return f"{day.year:04d}-{day.month:02d}"


def _empty_buckets(start: date, end: date, granularity: Granularity) -> list[Bucket]:
    if granularity == Granularity.DAY:
        buckets = []
        for offset in range(window_days(start, end)):
            day = date.fromordinal(start.toordinal() + offset)
            buckets.append(
                Bucket(
                    key=_key(day, granularity),
                    label=day.strftime("%b %d"),
                    full_label=day.strftime("%A, %B %d, %Y"),
                    start=day,
                )
            )
        return buckets

    buckets = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        first = date(year, month, 1)
        buckets.append(
            Bucket(
                key=_key(first, granularity),
                label=first.strftime("%b"),
                full_label=first.strftime("%B %Y"),
                start=first,
            )
        )
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return buckets


def _least_squares(values: list[int]) -> tuple[float, float]:
    """Slope and intercept of the best-fit line through (index, value)."""
    n = len(values)
    if n == 0:
        return 0.0, 0.0
    if n == 1:
        return 0.0, float(values[0])
    mean_x = (n - 1) / 2
    mean_y = sum(values) / n
    numerator = sum((x - mean_x) * (y - mean_y) for x, y in enumerate(values))
    denominator = sum((x - mean_x) ** 2 for x in range(n))
    slope = numerator / denominator
    return slope, mean_y - slope * mean_x
