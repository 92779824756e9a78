"""
Period resolution.

Turns a requested logical period into inclusive UTC calendar-day bounds.
"Now" is always passed in by the caller; nothing here reads the clock.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Union

from .errors import InvalidRangeError

LAST_30_DAYS_SPAN = 30


class PeriodKind(Enum):
    """Supported period selectors, valued by their wire names."""
    LAST_30_DAYS = "30days"
    ALL_TIME = "all"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class PeriodSelector:
    """A requested period. start/end are only used by EXPLICIT."""
    kind: PeriodKind
    start: Optional[date] = None
    end: Optional[date] = None

    @classmethod
    def last_30_days(cls) -> "PeriodSelector":
        return cls(PeriodKind.LAST_30_DAYS)

    @classmethod
    def all_time(cls) -> "PeriodSelector":
        return cls(PeriodKind.ALL_TIME)

    @classmethod
    def explicit(cls, start: date, end: date) -> "PeriodSelector":
        return cls(PeriodKind.EXPLICIT, start, end)

    @property
    def name(self) -> str:
        """Wire name of the period."""
        return self.kind.value


@dataclass(frozen=True)
class PeriodBounds:
    """Inclusive day bounds. Both None means no date filtering at all."""
    start: Optional[date] = None
    end: Optional[date] = None

    @property
    def is_unbounded(self) -> bool:
        return self.start is None and self.end is None

    def contains(self, day: date) -> bool:
        if self.start is not None and day < self.start:
            return False
        if self.end is not None and day > self.end:
            return False
        return True


UNBOUNDED = PeriodBounds()


def utc_today(now: Union[datetime, date]) -> date:
    """UTC calendar day of an injected "now".

    Aware datetimes are converted to UTC; naive ones are taken as UTC.
    """
    if isinstance(now, datetime):
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.date()
    return now


def resolve_period(selector: PeriodSelector, now: Union[datetime, date]) -> PeriodBounds:
    """Resolve a period selector into inclusive UTC day bounds.

    Args:
        selector: Requested period
        now: Current instant, supplied by the caller

    Returns:
        PeriodBounds for the selector (unbounded for ALL_TIME)

    Raises:
        InvalidRangeError: If an explicit period starts after it ends
        ValueError: If an explicit period is missing a boundary
    """
    if selector.kind == PeriodKind.ALL_TIME:
        return UNBOUNDED

    if selector.kind == PeriodKind.EXPLICIT:
        if selector.start is None or selector.end is None:
            raise ValueError("explicit period requires both start and end")
        if selector.start > selector.end:
            raise InvalidRangeError(selector.start, selector.end)
        return PeriodBounds(selector.start, selector.end)

    end = utc_today(now)
    return PeriodBounds(end - timedelta(days=LAST_30_DAYS_SPAN - 1), end)


def current_month_bounds(now: Union[datetime, date]) -> PeriodBounds:
    """Bounds from the first day of the current UTC month through today."""
    today = utc_today(now)
    return PeriodBounds(today.replace(day=1), today)


def last_month_bounds(now: Union[datetime, date]) -> PeriodBounds:
    """Bounds covering the whole UTC calendar month before the current one."""
    last_day = utc_today(now).replace(day=1) - timedelta(days=1)
    return PeriodBounds(last_day.replace(day=1), last_day)


def parse_period(name: Optional[str]) -> PeriodSelector:
    """Map a wire period name to a selector; None means the 30-day default.

    Raises:
        ValueError: If the name is not a supported period
    """
    if name is None or name == PeriodKind.LAST_30_DAYS.value:
        return PeriodSelector.last_30_days()
    if name == PeriodKind.ALL_TIME.value:
        return PeriodSelector.all_time()
    valid = [PeriodKind.LAST_30_DAYS.value, PeriodKind.ALL_TIME.value]
    raise ValueError(f"period must be one of: {valid}")
