# crud.py

from datetime import date as _date, datetime as _dt
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, sessionmaker

from database import db_session
from models import Appointment, PushSubscription, ScheduledReminder, Task
from schemas import AppointmentCreate, AppointmentUpdate, LeadTime, TaskCreate
from scheduler.ports import DueReminder
from scheduler.recurrence import is_occurrence_on


def _in_window(model, date_col, start: _date, end: _date):
    """
    Rows that can have an occurrence in [start, end]: one-offs dated inside
    the window, recurring rows anchored before its end and not ended before its start.
    """
    return or_(
        and_(model.recurrence_frequency.is_(None), date_col.between(start, end)),
        and_(
            model.recurrence_frequency.isnot(None),
            date_col <= end,
            or_(model.recurrence_end_date.is_(None), model.recurrence_end_date >= start),
        ),
    )


# ------------------------
# Appointments
# ------------------------

def enabled_lead_minutes(timings: List[LeadTime]) -> List[int]:
    """Distinct enabled lead times, smallest first, as stored on the appointment."""
    return sorted({t.minutes for t in timings or [] if t.enabled})


def get_appointment_by_id(db: Session, appt_id: int) -> Optional[Appointment]:
    return db.get(Appointment, appt_id)


def get_appointments_in_range(
    db: Session,
    start_date: _date,
    end_date: _date,
    family_id: Optional[str] = None,
) -> List[Appointment]:
    """Appointments that may occur between start_date and end_date (inclusive), recurring ones included."""
    q = db.query(Appointment).filter(_in_window(Appointment, Appointment.date, start_date, end_date))
    if family_id:
        q = q.filter(Appointment.family_id == family_id)
    return q.order_by(Appointment.date, Appointment.time).all()


def create_appointment(db: Session, data: AppointmentCreate) -> Appointment:
    appt = Appointment(
        family_id=data.family_id,
        title=data.title.strip(),
        date=data.date,
        time=data.time,
        location=data.location,
        notes=data.notes,
        reminder_minutes=enabled_lead_minutes(data.timings),
    )
    appt.set_recurrence(data.recurrence)
    db.add(appt)
    db.commit()
    db.refresh(appt)
    return appt


def update_appointment(db: Session, appt_id: int, data: AppointmentUpdate) -> Optional[Appointment]:
    """Partial update; recurrence is only touched when the payload names it (null clears it)."""
    appt = db.get(Appointment, appt_id)
    if not appt:
        return None
    if data.title is not None:
        appt.title = data.title.strip()
    if data.date is not None:
        appt.date = data.date
    if data.time is not None:
        appt.time = data.time
    if data.location is not None:
        appt.location = data.location
    if data.notes is not None:
        appt.notes = data.notes
    if "recurrence" in data.model_fields_set:
        appt.set_recurrence(data.recurrence)
    if data.timings is not None:
        appt.reminder_minutes = enabled_lead_minutes(data.timings)
    if appt.recurrence_end_date is not None and appt.recurrence_end_date < appt.date:
        db.rollback()
        raise ValueError("recurrence endDate must not be before the appointment date")
    db.commit()
    db.refresh(appt)
    return appt


def delete_appointment(db: Session, appt_id: int) -> bool:
    """Delete the appointment together with its scheduled reminders."""
    appt = db.get(Appointment, appt_id)
    if not appt:
        return False
    _delete_owner_reminders(db, "appointment", appt_id)
    db.delete(appt)
    db.commit()
    return True


# ------------------------
# Tasks
# ------------------------

def get_task_by_id(db: Session, task_id: int) -> Optional[Task]:
    return db.get(Task, task_id)


def get_tasks_in_range(
    db: Session,
    start_date: _date,
    end_date: _date,
    family_id: Optional[str] = None,
) -> List[Task]:
    q = db.query(Task).filter(
        Task.due_date.isnot(None),
        _in_window(Task, Task.due_date, start_date, end_date),
    )
    if family_id:
        q = q.filter(Task.family_id == family_id)
    return q.order_by(Task.due_date, Task.due_time).all()


def create_task(db: Session, data: TaskCreate) -> Task:
    task = Task(
        family_id=data.family_id,
        title=data.title.strip(),
        due_date=data.due_date,
        due_time=data.due_time,
        completed=False,
        completed_dates=[],
        reminder_minutes=data.reminder_minutes,
    )
    task.set_recurrence(data.recurrence)
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def delete_task(db: Session, task_id: int) -> bool:
    task = db.get(Task, task_id)
    if not task:
        return False
    _delete_owner_reminders(db, "task", task_id)
    db.delete(task)
    db.commit()
    return True


def is_task_done_on(task: Task, day: Optional[_date] = None) -> bool:
    """Recurring tasks are done per occurrence; one-off tasks use the completed flag."""
    if task.is_recurring:
        return day is not None and day.isoformat() in (task.completed_dates or [])
    return bool(task.completed)


def toggle_task_completion(db: Session, task_id: int, day: Optional[_date] = None) -> Optional[Task]:
    """
    Flip completion. For a recurring task `day` picks the occurrence and must
    be one of its dates; for a one-off task it is ignored.
    """
    task = db.get(Task, task_id)
    if not task:
        return None
    if task.is_recurring:
        if day is None:
            raise ValueError("a date is required to complete an occurrence of a recurring task")
        entity = task.to_recurring_entity()
        if entity is None or not is_occurrence_on(entity, day):
            raise ValueError(f"{day.isoformat()} is not an occurrence of task {task_id}")
        done = set(task.completed_dates or [])
        key = day.isoformat()
        if key in done:
            done.remove(key)
        else:
            done.add(key)
        # reassign: in-place changes to a JSON column are not tracked
        task.completed_dates = sorted(done)
    else:
        task.completed = not task.completed
    db.commit()
    db.refresh(task)
    return task


# ------------------------
# REMINDERS
# ------------------------

def _delete_owner_reminders(db: Session, owner_type: str, owner_id: int) -> int:
    return (
        db.query(ScheduledReminder)
        .filter(ScheduledReminder.owner_type == owner_type, ScheduledReminder.owner_id == owner_id)
        .delete(synchronize_session=False)
    )


def create_reminder(
    db: Session,
    *,
    owner_type: str,
    owner_id: int,
    family_id: str,
    title: str,
    body: str,
    trigger_at: _dt,
) -> ScheduledReminder:
    r = ScheduledReminder(
        owner_type=owner_type,
        owner_id=owner_id,
        family_id=family_id,
        title=title,
        body=body,
        trigger_at=trigger_at,
        sent=False,
    )
    db.add(r)
    db.commit()
    db.refresh(r)
    return r


def delete_reminders_for_owner(db: Session, owner_type: str, owner_id: int) -> int:
    n = _delete_owner_reminders(db, owner_type, owner_id)
    db.commit()
    return n


def list_reminders(
    db: Session,
    *,
    family_id: Optional[str] = None,
    sent: Optional[bool] = None,
) -> List[ScheduledReminder]:
    q = db.query(ScheduledReminder)
    if family_id:
        q = q.filter(ScheduledReminder.family_id == family_id)
    if sent is not None:
        q = q.filter(ScheduledReminder.sent == bool(sent))
    return q.order_by(ScheduledReminder.trigger_at, ScheduledReminder.id).all()


def count_pending_reminders(db: Session, owner_type: str, owner_id: int) -> int:
    return (
        db.query(ScheduledReminder)
        .filter(
            ScheduledReminder.owner_type == owner_type,
            ScheduledReminder.owner_id == owner_id,
            ScheduledReminder.sent == False,  # noqa: E712
        )
        .count()
    )


def get_due_reminders(db: Session, now: _dt) -> List[ScheduledReminder]:
    # due if trigger_at <= now and not sent yet
    return (
        db.query(ScheduledReminder)
        .filter(ScheduledReminder.sent == False, ScheduledReminder.trigger_at <= now)  # noqa: E712
        .order_by(ScheduledReminder.trigger_at, ScheduledReminder.id)
        .all()
    )


def mark_reminder_sent(db: Session, reminder_id: int, sent_at: _dt) -> Optional[ScheduledReminder]:
    r = db.get(ScheduledReminder, reminder_id)
    if not r:
        return None
    r.sent = True
    r.sent_at = sent_at
    db.commit()
    db.refresh(r)
    return r


def purge_sent_reminders(db: Session, sent_before: _dt) -> int:
    n = (
        db.query(ScheduledReminder)
        .filter(ScheduledReminder.sent == True, ScheduledReminder.sent_at < sent_before)  # noqa: E712
        .delete(synchronize_session=False)
    )
    db.commit()
    return n


class SqlReminderStore:
    """ReminderStore + ReminderWriter over SQLAlchemy; every call runs in its own session."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory

    def find_due_reminders(self, now: _dt) -> List[DueReminder]:
        with db_session(self._session_factory) as db:
            return [
                DueReminder(
                    id=r.id,
                    family_id=r.family_id,
                    title=r.title,
                    body=r.body,
                    owner_type=r.owner_type,
                    owner_id=r.owner_id,
                    trigger_at=r.trigger_at,
                )
                for r in get_due_reminders(db, now)
            ]

    def mark_sent(self, reminder_id: int, sent_at: _dt) -> None:
        with db_session(self._session_factory) as db:
            mark_reminder_sent(db, reminder_id, sent_at)

    def purge_older_than(self, sent_before: _dt) -> int:
        with db_session(self._session_factory) as db:
            return purge_sent_reminders(db, sent_before)

    def delete_reminders_for_owner(self, owner_type: str, owner_id: int) -> int:
        with db_session(self._session_factory) as db:
            return delete_reminders_for_owner(db, owner_type, owner_id)

    def create_reminder(
        self,
        *,
        owner_type: str,
        owner_id: int,
        family_id: str,
        title: str,
        body: str,
        trigger_at: _dt,
    ) -> int:
        with db_session(self._session_factory) as db:
            return create_reminder(
                db,
                owner_type=owner_type,
                owner_id=owner_id,
                family_id=family_id,
                title=title,
                body=body,
                trigger_at=trigger_at,
            ).id


# ------------------------
# Push subscriptions (read / prune only)
# ------------------------

def list_push_subscriptions(db: Session, family_id: str) -> List[PushSubscription]:
    return (
        db.query(PushSubscription)
        .filter(PushSubscription.family_id == family_id)
        .order_by(PushSubscription.id)
        .all()
    )


def delete_push_subscription(db: Session, subscription_id: int) -> bool:
    sub = db.get(PushSubscription, subscription_id)
    if not sub:
        return False
    db.delete(sub)
    db.commit()
    return True
