# scheduler/reminders.py
"""
Turns an appointment (or a timed task) plus the user's lead times into
ScheduledReminder rows.

Rescheduling after an edit is wholesale: every reminder of the owner is
deleted and the full set recomputed. Re-arming a recurring owner for its
following occurrence only adds rows, so fired ones stay until purged.
Reminders whose trigger time is not in the future are dropped, never created.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Mapping, Optional, Union

from schemas import LeadTime
from scheduler.ports import ReminderWriter

logger = logging.getLogger(__name__)

APPOINTMENT_REMINDER_TITLE = "Appointment reminder"
APPOINTMENT_NOW_TITLE = "Appointment"
TASK_REMINDER_TITLE = "Task reminder"

OWNER_APPOINTMENT = "appointment"
OWNER_TASK = "task"


@dataclass(frozen=True)
class ReminderDraft:
    title: str
    body: str
    trigger_at: datetime


def format_lead_time(minutes: int) -> str:
    """1440 -> '1 day(s)', 90 -> '1h30min', 120 -> '2h', 15 -> '15 min'."""
    if minutes >= 1440:
        return f"{minutes // 1440} day(s)"
    if minutes >= 60:
        rest = minutes % 60
        return f"{minutes // 60}h{rest}min" if rest else f"{minutes // 60}h"
    return f"{minutes} min"


def _lead_times(timings: Iterable[Union[LeadTime, Mapping[str, Any]]]) -> List[LeadTime]:
    out: List[LeadTime] = []
    seen = set()
    for t in timings or []:
        lead = t if isinstance(t, LeadTime) else LeadTime.model_validate(t)
        # lead 0 coincides with the exact-time reminder
        if not lead.enabled or lead.minutes == 0 or lead.minutes in seen:
            continue
        seen.add(lead.minutes)
        out.append(lead)
    return out


def build_appointment_reminders(
    title: str,
    at: datetime,
    timings: Iterable[Union[LeadTime, Mapping[str, Any]]],
    now: datetime,
) -> List[ReminderDraft]:
    """
    One draft per enabled lead time whose trigger is still ahead of `now`,
    plus one at the appointment time itself. Ordered by trigger time.
    """
    hhmm = at.strftime("%H:%M")
    drafts: List[ReminderDraft] = []
    for lead in _lead_times(timings):
        trigger_at = at - timedelta(minutes=lead.minutes)
        if trigger_at <= now:
            logger.debug("Skipping past reminder %s for %r (lead %d min)", trigger_at, title, lead.minutes)
            continue
        drafts.append(ReminderDraft(
            title=APPOINTMENT_REMINDER_TITLE,
            body=f"{title} at {hhmm} (in {format_lead_time(lead.minutes)})",
            trigger_at=trigger_at,
        ))

    if at > now:
        drafts.append(ReminderDraft(
            title=APPOINTMENT_NOW_TITLE,
            body=f"{title} now ({hhmm})",
            trigger_at=at,
        ))
    drafts.sort(key=lambda d: d.trigger_at)
    return drafts


def build_task_reminder(
    title: str,
    due_at: datetime,
    lead_minutes: int,
    now: datetime,
) -> Optional[ReminderDraft]:
    trigger_at = due_at - timedelta(minutes=max(0, int(lead_minutes)))
    if trigger_at <= now:
        return None
    if lead_minutes > 0:
        body = f"{title} in {format_lead_time(lead_minutes)}"
    else:
        body = f"{title} is due now"
    return ReminderDraft(title=TASK_REMINDER_TITLE, body=body, trigger_at=trigger_at)


def arm_reminders(
    writer: ReminderWriter,
    *,
    owner_type: str,
    owner_id: int,
    family_id: str,
    drafts: Iterable[ReminderDraft],
) -> int:
    """Create `drafts` for the owner next to whatever it already has."""
    created = 0
    for d in drafts:
        writer.create_reminder(
            owner_type=owner_type,
            owner_id=owner_id,
            family_id=family_id,
            title=d.title,
            body=d.body,
            trigger_at=d.trigger_at,
        )
        created += 1
    return created


def schedule_reminders(
    writer: ReminderWriter,
    *,
    owner_type: str,
    owner_id: int,
    family_id: str,
    drafts: Iterable[ReminderDraft],
    replace: bool = True,
) -> int:
    """
    Replace every reminder of the owner with `drafts` (or, with replace=False,
    only add them). Returns how many were created.
    """
    removed = writer.delete_reminders_for_owner(owner_type, owner_id) if replace else 0
    created = arm_reminders(
        writer, owner_type=owner_type, owner_id=owner_id, family_id=family_id, drafts=drafts,
    )
    logger.info(
        "%s reminders for %s %s: removed %d, created %d",
        "Rescheduled" if replace else "Armed", owner_type, owner_id, removed, created,
    )
    return created


def schedule_appointment_reminders(
    writer: ReminderWriter,
    *,
    appointment_id: int,
    family_id: str,
    title: str,
    at: datetime,
    timings: Iterable[Union[LeadTime, Mapping[str, Any]]],
    now: Optional[datetime] = None,
    replace: bool = True,
) -> int:
    drafts = build_appointment_reminders(title, at, timings, now or datetime.now())
    return schedule_reminders(
        writer,
        owner_type=OWNER_APPOINTMENT,
        owner_id=appointment_id,
        family_id=family_id,
        drafts=drafts,
        replace=replace,
    )


def schedule_task_reminder(
    writer: ReminderWriter,
    *,
    task_id: int,
    family_id: str,
    title: str,
    due_at: datetime,
    lead_minutes: int,
    now: Optional[datetime] = None,
    replace: bool = True,
) -> int:
    draft = build_task_reminder(title, due_at, lead_minutes, now or datetime.now())
    return schedule_reminders(
        writer,
        owner_type=OWNER_TASK,
        owner_id=task_id,
        family_id=family_id,
        drafts=[draft] if draft else [],
        replace=replace,
    )
