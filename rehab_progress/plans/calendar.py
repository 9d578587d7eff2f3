"""Calendar-day and rounding helpers shared by the plan components."""

from datetime import date, datetime, timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rehab_progress.plans.errors import ValidationError


def resolve_timezone(tz: Union[str, tzinfo, None]) -> tzinfo:
    """Turn an IANA name (or an existing tzinfo) into a tzinfo; ``None`` means UTC."""
    if tz is None:
        return ZoneInfo("UTC")
    if isinstance(tz, tzinfo):
        return tz
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone: {tz!r}") from exc


def local_date(moment: Union[datetime, date], tz: tzinfo) -> date:
    """Calendar day a moment falls on in ``tz``. Naive datetimes are already local."""
    if isinstance(moment, datetime):
        if moment.tzinfo is None:
            return moment.date()
        return moment.astimezone(tz).date()
    return moment


def round_half_up(value: Union[int, float, Decimal], places: int = 0) -> Union[int, float]:
    """Round half away from zero; ``round()`` would round half to even."""
    quantum = Decimal(1).scaleb(-places)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if places == 0 else float(rounded)


def percentage(part: int, whole: int) -> int:
    """Integer percentage of ``part`` in ``whole``, clamped to [0, 100]. Zero whole gives 0."""
    if whole <= 0:
        return 0
    value = (Decimal(part) * 100 / Decimal(whole)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(value)))


def as_utc(moment: datetime, tz: tzinfo) -> datetime:
    """Timestamp normalised to UTC for storage.

    Naive values are wall-clock time in ``tz``, the same reading ``local_date``
    gives them, so a stamp and the calendar day it was checked against agree.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=tz)
    return moment.astimezone(timezone.utc)
