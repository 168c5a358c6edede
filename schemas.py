# schemas.py

from __future__ import annotations

from datetime import date as _date, time as _time
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


# -----------------------------
# Recurrence
# -----------------------------
class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class RecurrenceRule(BaseModel):
    """
    How an entity repeats.

    day_of_week uses the client convention Sunday=0 .. Saturday=6 and is only
    meaningful for weekly rules; day_of_month (1..31) only for monthly rules.
    """
    frequency: Frequency
    end_date: Optional[_date] = Field(default=None, alias="endDate")
    day_of_week: Optional[int] = Field(default=None, alias="dayOfWeek", ge=0, le=6)
    day_of_month: Optional[int] = Field(default=None, alias="dayOfMonth", ge=1, le=31)

    model_config = {"populate_by_name": True, "frozen": True}

    @model_validator(mode="after")
    def _validate_frequency_fields(self):
        if self.day_of_week is not None and self.frequency is not Frequency.WEEKLY:
            raise ValueError("dayOfWeek is only allowed on weekly recurrences")
        if self.day_of_month is not None and self.frequency is not Frequency.MONTHLY:
            raise ValueError("dayOfMonth is only allowed on monthly recurrences")
        return self


class RecurringEntity(BaseModel):
    """Minimal shape shared by tasks and appointments for occurrence expansion."""
    anchor_date: _date = Field(alias="anchorDate")
    anchor_time: Optional[_time] = Field(default=None, alias="anchorTime")
    recurrence: Optional[RecurrenceRule] = None

    model_config = {"populate_by_name": True, "frozen": True}

    @model_validator(mode="after")
    def _validate_end_date(self):
        if self.recurrence and self.recurrence.end_date and self.recurrence.end_date < self.anchor_date:
            raise ValueError("recurrence endDate must not be before anchorDate")
        return self


# -----------------------------
# Reminders
# -----------------------------
class LeadTime(BaseModel):
    """A user-configured 'remind me N minutes before' setting."""
    minutes: int = Field(ge=0)
    label: str = ""
    enabled: bool = True
    id: Optional[str] = None


class ScheduleAppointmentRequest(BaseModel):
    """Payload of POST /api/push/schedule-appointment."""
    appointment_id: int = Field(alias="appointmentId")
    appointment_date: _date = Field(alias="appointmentDate")
    appointment_time: _time = Field(alias="appointmentTime")
    title: str = Field(min_length=1)
    timings: List[LeadTime]
    family_id: str = Field(alias="familyId", min_length=1)

    model_config = {"populate_by_name": True}


# -----------------------------
# Appointments
# -----------------------------
class AppointmentCreate(BaseModel):
    family_id: str = Field(alias="familyId", min_length=1)
    title: str = Field(min_length=1)
    date: _date
    time: _time
    location: Optional[str] = None
    notes: Optional[str] = None
    recurrence: Optional[RecurrenceRule] = None
    timings: List[LeadTime] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _validate_recurrence_window(self):
        if self.recurrence and self.recurrence.end_date and self.recurrence.end_date < self.date:
            raise ValueError("recurrence endDate must not be before the appointment date")
        return self


# For partial updates (all fields optional)
class AppointmentUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    date: Optional[_date] = None
    time: Optional[_time] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    recurrence: Optional[RecurrenceRule] = None
    timings: Optional[List[LeadTime]] = None

    model_config = {"populate_by_name": True}


# -----------------------------
# Tasks
# -----------------------------
class TaskCreate(BaseModel):
    family_id: str = Field(alias="familyId", min_length=1)
    title: str = Field(min_length=1)
    due_date: Optional[_date] = Field(default=None, alias="dueDate")
    due_time: Optional[_time] = Field(default=None, alias="dueTime")
    recurrence: Optional[RecurrenceRule] = None
    reminder_minutes: Optional[int] = Field(default=None, alias="reminderMinutes", ge=0)

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _validate_due(self):
        if self.recurrence is not None and self.due_date is None:
            raise ValueError("a recurring task needs a dueDate")
        if self.due_time is not None and self.due_date is None:
            raise ValueError("dueTime given without dueDate")
        if self.recurrence and self.recurrence.end_date and self.recurrence.end_date < self.due_date:
            raise ValueError("recurrence endDate must not be before dueDate")
        return self
