# models.py
from __future__ import annotations

from typing import Optional

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    Date,
    Time,
    String,
    Text,
    Boolean,
    DateTime,
    JSON,
    func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings
from schemas import RecurrenceRule, RecurringEntity

Base = declarative_base()


def make_engine(url: str) -> Engine:
    """Build an engine; SQLite URLs get the thread/pool options the scheduler thread needs."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # a single shared connection, otherwise every session sees its own empty DB
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


engine = make_engine(get_settings().database_url)
SessionLocal = make_session_factory(engine)


class _RecurrenceColumns:
    """Flat recurrence columns shared by tasks and appointments."""
    recurrence_frequency = Column(String(10), nullable=True)        # daily|weekly|monthly|yearly
    recurrence_end_date = Column(Date, nullable=True)
    recurrence_day_of_week = Column(Integer, nullable=True)         # Sunday=0 .. Saturday=6
    recurrence_day_of_month = Column(Integer, nullable=True)        # 1..31

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurrence_frequency)

    def recurrence_rule(self) -> Optional[RecurrenceRule]:
        if not self.recurrence_frequency:
            return None
        return RecurrenceRule(
            frequency=self.recurrence_frequency,
            end_date=self.recurrence_end_date,
            day_of_week=self.recurrence_day_of_week,
            day_of_month=self.recurrence_day_of_month,
        )

    def set_recurrence(self, rule: Optional[RecurrenceRule]) -> None:
        self.recurrence_frequency = rule.frequency.value if rule else None
        self.recurrence_end_date = rule.end_date if rule else None
        self.recurrence_day_of_week = rule.day_of_week if rule else None
        self.recurrence_day_of_month = rule.day_of_month if rule else None

    def _recurrence_dict(self) -> Optional[dict]:
        if not self.recurrence_frequency:
            return None
        out = {"frequency": self.recurrence_frequency}
        if self.recurrence_end_date is not None:
            out["endDate"] = self.recurrence_end_date.isoformat()
        if self.recurrence_day_of_week is not None:
            out["dayOfWeek"] = self.recurrence_day_of_week
        if self.recurrence_day_of_month is not None:
            out["dayOfMonth"] = self.recurrence_day_of_month
        return out


class Appointment(_RecurrenceColumns, Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    family_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    date = Column(Date, nullable=False, index=True)
    time = Column(Time, nullable=False)
    location = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    reminder_minutes = Column(JSON, nullable=False, default=list)   # enabled lead times, e.g. [30, 60]

    created_at = Column(DateTime, nullable=True, server_default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Appointment(id={self.id!r}, date={self.date!r}, time={self.time!r}, "
            f"title={self.title!r}, recurrence={self.recurrence_frequency!r})>"
        )

    def to_recurring_entity(self) -> RecurringEntity:
        return RecurringEntity(
            anchor_date=self.date,
            anchor_time=self.time,
            recurrence=self.recurrence_rule(),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "familyId": self.family_id,
            "title": self.title,
            "date": self.date.isoformat(),
            "time": self.time.strftime("%H:%M"),
            "location": self.location,
            "notes": self.notes,
            "reminderMinutes": list(self.reminder_minutes or []),
            "recurring": self._recurrence_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Task(_RecurrenceColumns, Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    family_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    due_date = Column(Date, nullable=True, index=True)
    due_time = Column(Time, nullable=True)

    # non-recurring tasks only; recurring ones use completed_dates
    completed = Column(Boolean, nullable=False, default=False)
    completed_dates = Column(JSON, nullable=False, default=list)   # ["YYYY-MM-DD", ...]
    reminder_minutes = Column(Integer, nullable=True)               # lead time; None = no reminder

    created_at = Column(DateTime, nullable=True, server_default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Task(id={self.id!r}, due_date={self.due_date!r}, title={self.title!r}, "
            f"recurrence={self.recurrence_frequency!r})>"
        )

    def to_recurring_entity(self) -> Optional[RecurringEntity]:
        """Tasks without a due date never show up on a calendar."""
        if self.due_date is None:
            return None
        return RecurringEntity(
            anchor_date=self.due_date,
            anchor_time=self.due_time,
            recurrence=self.recurrence_rule(),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "familyId": self.family_id,
            "title": self.title,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "dueTime": self.due_time.strftime("%H:%M") if self.due_time else None,
            "completed": bool(self.completed),
            "completedDates": sorted(self.completed_dates or []),
            "reminderMinutes": self.reminder_minutes,
            "recurring": self._recurrence_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ScheduledReminder(Base):
    __tablename__ = "scheduled_reminders"

    id = Column(Integer, primary_key=True, index=True)
    owner_type = Column(String(20), nullable=False, default="appointment")  # appointment|task
    owner_id = Column(Integer, nullable=False, index=True)
    family_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False)

    trigger_at = Column(DateTime, nullable=False, index=True)       # local wall-clock
    sent = Column(Boolean, nullable=False, default=False, index=True)
    sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=True, server_default=func.now())

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<ScheduledReminder(id={self.id!r}, owner={self.owner_type}:{self.owner_id}, "
            f"trigger_at={self.trigger_at!r}, sent={self.sent!r})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_type": self.owner_type,
            "owner_id": self.owner_id,
            "family_id": self.family_id,
            "title": self.title,
            "body": self.body,
            "trigger_at": self.trigger_at.isoformat(),
            "sent": bool(self.sent),
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }


class PushSubscription(Base):
    """Registered push endpoints; rows are written by the registration flow, not here."""
    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    family_id = Column(String(64), nullable=True, index=True)
    endpoint = Column(Text, nullable=False)
    p256dh = Column(Text, nullable=True)
    auth = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=True, server_default=func.now())


# ----------------------------
# Utilities
# ----------------------------
def init_db(bind: Optional[Engine] = None) -> None:
    """Creates tables if they don't exist."""
    Base.metadata.create_all(bind=bind or engine)
