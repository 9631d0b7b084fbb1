"""Monthly diary calendar: per-day counts mapped to intensity tiers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from logging import getLogger
from typing import Any, Iterable, Mapping

from heyso.client.errors import ValidationError
from heyso.services.diary import DiaryService
from heyso.services.validators import parse_iso_date, parse_month_key
from heyso.util import coerce_int

logger = getLogger(__name__)

MAX_TIER = 4


@dataclass(slots=True)
class CalendarDay:
    date: str
    count: int
    tier: int | None
    in_month: bool


@dataclass(slots=True)
class CalendarWeek:
    days: tuple[CalendarDay, ...]


@dataclass(slots=True)
class CalendarMonth:
    month: str
    label: str
    total: int
    weeks: tuple[CalendarWeek, ...]
    is_loading: bool = False
    is_error: bool = False


def tier(count: Any) -> int | None:
    """Map a day's diary count to a tier: none, then 0..4 saturating at five."""

    value = coerce_int(count)
    if value is None or value <= 0:
        return None
    return min(value - 1, MAX_TIER)


def _month_start(target: date) -> date:
    return date(target.year, target.month, 1)


def _month_end(target: date) -> date:
    next_month = (target.replace(day=28) + timedelta(days=4)).replace(day=1)
    return next_month - timedelta(days=1)


def _month_date(month: str | date) -> date:
    try:
        return date.fromisoformat(f"{parse_month_key(month)}-01")
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def shift_month(month: str | date, offset: int) -> str:
    """Return the ``YYYY-MM`` key ``offset`` months away from ``month``."""

    target = _month_date(month)
    year = target.year + (target.month - 1 + offset) // 12
    month_number = (target.month - 1 + offset) % 12 + 1
    return f"{year:04d}-{month_number:02d}"


def counts_by_day(buckets: Iterable[Any] | None) -> dict[str, int]:
    counts: dict[str, int] = {}
    for bucket in buckets or ():
        if not isinstance(bucket, Mapping):
            continue
        try:
            day = parse_iso_date(bucket.get("diaryDate"))
        except ValueError:
            logger.debug("Skipping calendar bucket with bad date: %r", bucket)
            continue
        count = coerce_int(bucket.get("diaryCount")) or 0
        counts[day] = counts.get(day, 0) + max(count, 0)
    return counts


def build_month(
    month: str | date,
    buckets: Iterable[Any] | None,
    *,
    is_loading: bool = False,
    is_error: bool = False,
) -> CalendarMonth:
    """Lay out ``month`` as Monday-first weeks with a tier per day."""

    month_start = _month_start(_month_date(month))
    month_end = _month_end(month_start)
    counts = counts_by_day(buckets)

    grid_start = month_start - timedelta(days=month_start.weekday())
    grid_end = month_end + timedelta(days=6 - month_end.weekday())
    weeks: list[CalendarWeek] = []
    total = 0
    cursor = grid_start
    while cursor <= grid_end:
        days: list[CalendarDay] = []
        for offset_day in range(7):
            current = cursor + timedelta(days=offset_day)
            iso_date = current.isoformat()
            in_month = month_start <= current <= month_end
            count = counts.get(iso_date, 0) if in_month else 0
            total += count
            days.append(
                CalendarDay(
                    date=iso_date,
                    count=count,
                    tier=tier(count) if in_month else None,
                    in_month=in_month,
                )
            )
        weeks.append(CalendarWeek(days=tuple(days)))
        cursor += timedelta(days=7)

    return CalendarMonth(
        month=month_start.strftime("%Y-%m"),
        label=month_start.strftime("%B %Y"),
        total=total,
        weeks=tuple(weeks),
        is_loading=is_loading,
        is_error=is_error,
    )


class CalendarService:
    def __init__(self, diary: DiaryService) -> None:
        self.diary = diary

    async def month(self, month: str | date) -> CalendarMonth:
        month_key = _month_date(month).strftime("%Y-%m")
        state = await self.diary.monthly_counts(month_key)
        return build_month(
            month_key,
            state.data,
            is_loading=state.is_loading,
            is_error=state.is_error,
        )


__all__ = [
    "CalendarDay",
    "CalendarMonth",
    "CalendarService",
    "CalendarWeek",
    "build_month",
    "counts_by_day",
    "shift_month",
    "tier",
]
