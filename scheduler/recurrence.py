# scheduler/recurrence.py
"""
Occurrence expansion for recurring tasks and appointments.

expand() turns a RecurringEntity plus an inclusive date window into the
concrete dates (and times) on which the entity shows up. Everything here is
pure: no I/O, no state kept between calls. Results are never persisted.

Dates are civil (wall-clock) dates; no time zone conversion happens here.
"""

from __future__ import annotations

import logging
from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, TypeVar, Union

from pydantic import ValidationError

from schemas import Frequency, RecurrenceRule, RecurringEntity

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 5000

T = TypeVar("T")


class RecurrenceError(ValueError):
    """Raised when an expansion request cannot be served."""


@dataclass(frozen=True)
class Occurrence:
    date: date
    time: Optional[time] = None

    def at(self) -> datetime:
        """Wall-clock start; all-day occurrences start at midnight."""
        return datetime.combine(self.date, self.time or time(0, 0))

    def to_dict(self) -> Dict[str, str]:
        out = {"date": self.date.isoformat()}
        if self.time is not None:
            out["time"] = self.time.strftime("%H:%M")
        return out


# ---------- calendar primitives ----------

def days_in_month(year: int, month: int) -> int:
    return monthrange(year, month)[1]


def add_months(d: date, months: int, day: Optional[int] = None) -> date:
    """
    Move d by `months` calendar months, landing on `day` (default: d.day).
    The day is clamped to the length of the target month, so day 31 in
    February becomes Feb 28/29.
    """
    idx = d.month - 1 + months
    year, month = d.year + idx // 12, idx % 12 + 1
    wanted = d.day if day is None else day
    return date(year, month, min(wanted, days_in_month(year, month)))


def python_weekday(day_of_week: int) -> int:
    """Sunday=0..Saturday=6 (client convention) -> Monday=0..Sunday=6 (date.weekday())."""
    return (day_of_week - 1) % 7


def _clamp_to_weekday(d: date, weekday: int) -> date:
    """Return the next date on/after d that is the given weekday."""
    offset = (weekday - d.weekday()) % 7
    return d + timedelta(days=offset)


def _next_weekday_after(d: date, weekday: int) -> date:
    """Next date strictly after d on the given weekday (1..7 days ahead)."""
    offset = (weekday - d.weekday()) % 7
    return d + timedelta(days=offset or 7)


# ---------- stepping ----------

def first_occurrence(entity: RecurringEntity) -> date:
    """
    First emitted date. Only weekly-by-weekday rules move it off the anchor;
    monthly rules emit the anchor and step onto day_of_month afterwards.
    """
    rule = entity.recurrence
    anchor = entity.anchor_date
    if rule is None:
        return anchor
    if rule.frequency is Frequency.WEEKLY and rule.day_of_week is not None:
        return _clamp_to_weekday(anchor, python_weekday(rule.day_of_week))
    return anchor


def advance(cursor: date, rule: RecurrenceRule, anchor: date) -> date:
    """One recurrence step forward from cursor. Always moves at least one day."""
    freq = rule.frequency
    if freq is Frequency.DAILY:
        return cursor + timedelta(days=1)
    if freq is Frequency.WEEKLY:
        if rule.day_of_week is not None:
            return _next_weekday_after(cursor, python_weekday(rule.day_of_week))
        return cursor + timedelta(days=7)
    if freq is Frequency.MONTHLY:
        target_day = rule.day_of_month if rule.day_of_month is not None else anchor.day
        return add_months(cursor, 1, target_day)
    if freq is Frequency.YEARLY:
        year = cursor.year + 1
        return date(year, anchor.month, min(anchor.day, days_in_month(year, anchor.month)))
    raise RecurrenceError(f"unsupported frequency: {freq!r}")


def _fast_forward(cursor: date, rule: RecurrenceRule, window_start: date) -> date:
    """
    Skip whole periods that end before window_start. Only fixed-length steps
    (daily, weekly) can be skipped arithmetically; the result is a date the
    plain loop would also have visited.
    """
    if cursor >= window_start:
        return cursor
    if rule.frequency is Frequency.DAILY:
        return window_start
    if rule.frequency is Frequency.WEEKLY:
        weeks = (window_start - cursor).days // 7
        return cursor + timedelta(weeks=weeks)
    return cursor


# ---------- expansion ----------

def expand(
    entity: RecurringEntity,
    window_start: date,
    window_end: date,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> List[Occurrence]:
    """
    Concrete occurrences of `entity` within [window_start, window_end].

    A non-recurring entity yields its single anchor occurrence regardless of
    the window; callers filter it themselves.
    """
    if window_end < window_start:
        raise RecurrenceError(f"window end {window_end} is before window start {window_start}")
    if max_iterations < 1:
        raise RecurrenceError("max_iterations must be positive")

    rule = entity.recurrence
    if rule is None:
        return [Occurrence(entity.anchor_date, entity.anchor_time)]

    recurrence_end = rule.end_date or window_end
    cursor = _fast_forward(first_occurrence(entity), rule, window_start)

    out: List[Occurrence] = []
    steps = 0
    while cursor <= recurrence_end and cursor <= window_end:
        if steps >= max_iterations:
            logger.warning(
                "Expansion stopped after %d steps (anchor=%s frequency=%s window=%s..%s)",
                steps, entity.anchor_date, rule.frequency.value, window_start, window_end,
            )
            break
        steps += 1
        if cursor >= window_start:
            out.append(Occurrence(cursor, entity.anchor_time))
        cursor = advance(cursor, rule, entity.anchor_date)
    return out


def safe_expand(
    entity: Union[RecurringEntity, Mapping[str, Any]],
    window_start: date,
    window_end: date,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> List[Occurrence]:
    """
    expand() for calendar views: accepts a raw payload too, and turns any
    validation or expansion error into an empty result plus an error log.
    """
    try:
        if not isinstance(entity, RecurringEntity):
            entity = RecurringEntity.model_validate(entity)
        return expand(entity, window_start, window_end, max_iterations)
    except (ValidationError, RecurrenceError) as e:
        logger.error("Could not expand recurring entity %r: %s", entity, e)
        return []


def next_occurrence(
    entity: RecurringEntity,
    after: datetime,
    horizon_days: int = 400,
) -> Optional[Occurrence]:
    """First occurrence starting strictly after `after`, looking at most horizon_days ahead."""
    if entity.recurrence is None:
        only = Occurrence(entity.anchor_date, entity.anchor_time)
        return only if only.at() > after else None
    start = after.date()
    for occ in expand(entity, start, start + timedelta(days=horizon_days)):
        if occ.at() > after:
            return occ
    return None


def is_occurrence_on(entity: RecurringEntity, day: date) -> bool:
    if entity.recurrence is None:
        return entity.anchor_date == day
    return any(o.date == day for o in expand(entity, day, day))


def occurrences_in_window(
    items: Iterable[Tuple[T, RecurringEntity]],
    window_start: date,
    window_end: date,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> List[Tuple[T, Occurrence]]:
    """
    Expand several entities at once, keeping only occurrences inside the
    window, ordered by date then time (untimed first).
    """
    out: List[Tuple[T, Occurrence]] = []
    for item, entity in items:
        for occ in safe_expand(entity, window_start, window_end, max_iterations):
            if window_start <= occ.date <= window_end:
                out.append((item, occ))
    out.sort(key=lambda pair: (pair[1].date, pair[1].time or time.min))
    return out


def month_marks(
    entities: Iterable[RecurringEntity],
    year: int,
    month: int,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> Set[date]:
    """Days of the given month that carry at least one occurrence (calendar dots)."""
    first = date(year, month, 1)
    last = date(year, month, days_in_month(year, month))
    pairs = occurrences_in_window(((None, e) for e in entities), first, last, max_iterations)
    return {occ.date for _, occ in pairs}
