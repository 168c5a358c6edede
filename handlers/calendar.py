# handlers/calendar.py
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from crud import get_appointments_in_range, get_tasks_in_range, is_task_done_on
from scheduler.recurrence import (
    DEFAULT_MAX_ITERATIONS,
    days_in_month,
    month_marks,
    occurrences_in_window,
)


def appointment_occurrences(
    db: Session,
    start: date,
    end: date,
    family_id: Optional[str] = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> List[Dict[str, Any]]:
    appts = get_appointments_in_range(db, start, end, family_id)
    pairs = occurrences_in_window(((a, a.to_recurring_entity()) for a in appts), start, end, max_iterations)
    return [
        {"id": a.id, "title": a.title, "recurring": a.is_recurring, "location": a.location, **occ.to_dict()}
        for a, occ in pairs
    ]


def task_occurrences(
    db: Session,
    start: date,
    end: date,
    family_id: Optional[str] = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> List[Dict[str, Any]]:
    tasks = get_tasks_in_range(db, start, end, family_id)
    pairs = occurrences_in_window(((t, t.to_recurring_entity()) for t in tasks), start, end, max_iterations)
    return [
        {
            "id": t.id,
            "title": t.title,
            "recurring": t.is_recurring,
            "completed": is_task_done_on(t, occ.date),
            **occ.to_dict(),
        }
        for t, occ in pairs
    ]


def calendar_window(
    db: Session,
    start: date,
    end: date,
    family_id: Optional[str] = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> Dict[str, List[Dict[str, Any]]]:
    return {
        "appointments": appointment_occurrences(db, start, end, family_id, max_iterations),
        "tasks": task_occurrences(db, start, end, family_id, max_iterations),
    }


def week_window(day: date) -> tuple:
    """Monday..Sunday around `day`."""
    start = day - timedelta(days=day.weekday())
    return start, start + timedelta(days=6)


def marked_days(
    db: Session,
    year: int,
    month: int,
    family_id: Optional[str] = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> List[str]:
    """ISO dates of the month that have at least one appointment or task occurrence."""
    first = date(year, month, 1)
    last = date(year, month, days_in_month(year, month))
    entities = [a.to_recurring_entity() for a in get_appointments_in_range(db, first, last, family_id)]
    entities += [t.to_recurring_entity() for t in get_tasks_in_range(db, first, last, family_id)]
    return sorted(d.isoformat() for d in month_marks(entities, year, month, max_iterations))
