# app.py - Household scheduler API

import logging
from datetime import date as _date, datetime as _dt, timedelta
from typing import Callable, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

import crud
from config import Settings, configure_logging, get_settings
from database import db_session
from handlers.calendar import calendar_window, marked_days, week_window
from models import Appointment, SessionLocal, Task, init_db
from notifier import build_channel
from schemas import (
    AppointmentCreate,
    AppointmentUpdate,
    LeadTime,
    ScheduleAppointmentRequest,
    TaskCreate,
)
from scheduler.ports import DueReminder
from scheduler.recurrence import next_occurrence
from scheduler.reminders import (
    OWNER_APPOINTMENT,
    OWNER_TASK,
    schedule_appointment_reminders,
    schedule_reminders,
    schedule_task_reminder,
)
from scheduler.runner import ReminderScheduler

logger = logging.getLogger(__name__)


# ---------- helpers ----------
def _to_date(obj) -> Optional[_date]:
    if isinstance(obj, _date):
        return obj
    if isinstance(obj, str):
        try:
            return _date.fromisoformat(obj.strip())
        except ValueError:
            return None
    return None


def _bad_request(message: str, details=None):
    body = {"error": message}
    if details is not None:
        body["details"] = details
    return jsonify(body), 400


def _not_found(what: str, ident):
    return jsonify({"error": f"{what} {ident} not found"}), 404


def _reschedule_appointment(store, appt: Appointment, now: _dt, replace: bool = True) -> int:
    """Reminders of an appointment for its next upcoming occurrence."""
    occ = next_occurrence(appt.to_recurring_entity(), now)
    if occ is None:
        return schedule_reminders(
            store, owner_type=OWNER_APPOINTMENT, owner_id=appt.id, family_id=appt.family_id,
            drafts=[], replace=replace,
        )
    return schedule_appointment_reminders(
        store,
        appointment_id=appt.id,
        family_id=appt.family_id,
        title=appt.title,
        at=occ.at(),
        timings=[LeadTime(minutes=m) for m in (appt.reminder_minutes or [])],
        now=now,
        replace=replace,
    )


def _task_due_at(task: Task, now: _dt) -> Optional[_dt]:
    """Due datetime of the first occurrence whose reminder is still ahead of now."""
    entity = task.to_recurring_entity()
    if entity is None or task.due_time is None or task.reminder_minutes is None:
        return None
    lead = timedelta(minutes=task.reminder_minutes)
    after = now
    while True:
        occ = next_occurrence(entity, after)
        if occ is None:
            return None
        if occ.at() - lead > now:
            return occ.at()
        after = occ.at()


def _reschedule_task(store, task: Task, now: _dt, replace: bool = True) -> int:
    due_at = _task_due_at(task, now)
    if due_at is None:
        return schedule_reminders(
            store, owner_type=OWNER_TASK, owner_id=task.id, family_id=task.family_id,
            drafts=[], replace=replace,
        )
    return schedule_task_reminder(
        store,
        task_id=task.id,
        family_id=task.family_id,
        title=task.title,
        due_at=due_at,
        lead_minutes=task.reminder_minutes,
        now=now,
        replace=replace,
    )


def _rearm_recurring(session_factory, store):
    """
    Scheduler follow-up: once the last pending reminder of a recurring
    appointment or task has fired, arm the reminders of its following occurrence.
    """
    def after_sent(reminder: DueReminder, now: _dt) -> int:
        if reminder.owner_id is None:
            return 0
        with db_session(session_factory) as db:
            if crud.count_pending_reminders(db, reminder.owner_type, reminder.owner_id):
                return 0
            if reminder.owner_type == OWNER_TASK:
                owner = crud.get_task_by_id(db, reminder.owner_id)
            else:
                owner = crud.get_appointment_by_id(db, reminder.owner_id)
        if owner is None or not owner.is_recurring:
            return 0
        if reminder.owner_type == OWNER_TASK:
            return _reschedule_task(store, owner, now, replace=False)
        return _reschedule_appointment(store, owner, now, replace=False)

    return after_sent


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    channel=None,
    clock: Callable[[], _dt] = _dt.now,
) -> Flask:
    """
    Build the API. The reminder scheduler is created here but not started;
    main() (or the embedding process) owns its lifecycle.
    """
    settings = settings or get_settings()
    session_factory = session_factory or SessionLocal
    init_db(session_factory.kw.get("bind"))

    store = crud.SqlReminderStore(session_factory)
    scheduler = ReminderScheduler(
        store,
        channel or build_channel(settings, session_factory),
        interval_seconds=settings.reminder_tick_seconds,
        retention=timedelta(days=settings.reminder_retention_days),
        clock=clock,
        after_sent=_rearm_recurring(session_factory, store),
    )

    app = Flask(__name__)
    CORS(app)
    app.config["SETTINGS"] = settings
    app.extensions["reminder_scheduler"] = scheduler
    max_iter = settings.max_expansion_iterations

    @app.errorhandler(ValidationError)
    def _validation_error(e: ValidationError):
        return _bad_request("Invalid payload", str(e))

    # ---------- calendar ----------
    @app.get("/api/calendar/occurrences")
    def calendar_occurrences():
        start = _to_date(request.args.get("start"))
        end = _to_date(request.args.get("end"))
        if not start or not end:
            return _bad_request("start and end must be YYYY-MM-DD dates")
        if end < start:
            return _bad_request("end must not be before start")
        with db_session(session_factory) as db:
            payload = calendar_window(db, start, end, request.args.get("family_id"), max_iter)
        return jsonify({"start": start.isoformat(), "end": end.isoformat(), **payload})

    @app.get("/api/calendar/week")
    def calendar_week():
        raw = request.args.get("date")
        day = clock().date() if raw is None else _to_date(raw)
        if day is None:
            return _bad_request("date must be YYYY-MM-DD")
        start, end = week_window(day)
        with db_session(session_factory) as db:
            payload = calendar_window(db, start, end, request.args.get("family_id"), max_iter)
        return jsonify({"start": start.isoformat(), "end": end.isoformat(), **payload})

    @app.get("/api/calendar/month")
    def calendar_month():
        today = clock().date()
        try:
            year = int(request.args.get("year", today.year))
            month = int(request.args.get("month", today.month))
            _date(year, month, 1)
        except ValueError:
            return _bad_request("year and month must form a valid month")
        with db_session(session_factory) as db:
            days = marked_days(db, year, month, request.args.get("family_id"), max_iter)
        return jsonify({"year": year, "month": month, "days": days})

    # ---------- appointments ----------
    @app.post("/api/appointments")
    def create_appointment():
        data = AppointmentCreate.model_validate(request.get_json(silent=True) or {})
        with db_session(session_factory) as db:
            appt = crud.create_appointment(db, data)
        count = _reschedule_appointment(store, appt, clock())
        return jsonify({"appointment": appt.to_dict(), "reminders": count}), 201

    @app.put("/api/appointments/<int:appt_id>")
    def update_appointment(appt_id: int):
        data = AppointmentUpdate.model_validate(request.get_json(silent=True) or {})
        with db_session(session_factory) as db:
            try:
                appt = crud.update_appointment(db, appt_id, data)
            except ValueError as e:
                return _bad_request(str(e))
        if appt is None:
            return _not_found("Appointment", appt_id)
        count = _reschedule_appointment(store, appt, clock())
        return jsonify({"appointment": appt.to_dict(), "reminders": count})

    @app.delete("/api/appointments/<int:appt_id>")
    def delete_appointment(appt_id: int):
        with db_session(session_factory) as db:
            ok = crud.delete_appointment(db, appt_id)
        if not ok:
            return _not_found("Appointment", appt_id)
        return jsonify({"deleted": appt_id})

    # ---------- tasks ----------
    @app.post("/api/tasks")
    def create_task():
        data = TaskCreate.model_validate(request.get_json(silent=True) or {})
        with db_session(session_factory) as db:
            task = crud.create_task(db, data)
        count = _reschedule_task(store, task, clock())
        return jsonify({"task": task.to_dict(), "reminders": count}), 201

    @app.delete("/api/tasks/<int:task_id>")
    def delete_task(task_id: int):
        with db_session(session_factory) as db:
            ok = crud.delete_task(db, task_id)
        if not ok:
            return _not_found("Task", task_id)
        return jsonify({"deleted": task_id})

    @app.post("/api/tasks/<int:task_id>/toggle")
    def toggle_task(task_id: int):
        body = request.get_json(silent=True) or {}
        day = None
        if body.get("date") is not None:
            day = _to_date(body.get("date"))
            if day is None:
                return _bad_request("date must be YYYY-MM-DD")
        with db_session(session_factory) as db:
            try:
                task = crud.toggle_task_completion(db, task_id, day)
            except ValueError as e:
                return _bad_request(str(e))
        if task is None:
            return _not_found("Task", task_id)
        return jsonify({"task": task.to_dict(), "done": crud.is_task_done_on(task, day)})

    # ---------- push reminders ----------
    @app.post("/api/push/schedule-appointment")
    def schedule_appointment():
        data = ScheduleAppointmentRequest.model_validate(request.get_json(silent=True) or {})
        at = _dt.combine(data.appointment_date, data.appointment_time)
        count = schedule_appointment_reminders(
            store,
            appointment_id=data.appointment_id,
            family_id=data.family_id,
            title=data.title,
            at=at,
            timings=data.timings,
            now=clock(),
        )
        return jsonify({"success": True, "message": "Notifications scheduled", "count": count})

    @app.get("/api/push/scheduled")
    def scheduled_reminders():
        sent = request.args.get("sent")
        sent_filter = None if sent is None else sent.lower() in ("1", "true", "yes")
        with db_session(session_factory) as db:
            rows = crud.list_reminders(db, family_id=request.args.get("family_id"), sent=sent_filter)
            payload = [r.to_dict() for r in rows]
        return jsonify({"notifications": payload})

    @app.post("/api/scheduler/tick")
    def run_tick():
        return jsonify(scheduler.tick().to_dict())

    return app


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    app = create_app(settings)
    scheduler: ReminderScheduler = app.extensions["reminder_scheduler"]
    if settings.start_scheduler:
        scheduler.start()
    try:
        app.run(host=settings.host, port=settings.port)
    finally:
        scheduler.stop()


if __name__ == '__main__':
    main()
