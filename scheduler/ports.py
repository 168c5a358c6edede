# scheduler/ports.py
"""
Collaborator boundaries used by the reminder producer and the scheduler.

The SQL implementation lives in crud.SqlReminderStore; delivery channels live
in notifier.py. Tests substitute in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol


@dataclass(frozen=True)
class DueReminder:
    id: int
    family_id: str
    title: str
    body: str
    owner_type: str = "appointment"
    owner_id: Optional[int] = None
    trigger_at: Optional[datetime] = None

    def metadata(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"reminderId": self.id, "ownerType": self.owner_type}
        if self.owner_id is not None:
            data[f"{self.owner_type}Id"] = self.owner_id
        if self.trigger_at is not None:
            data["scheduledTime"] = self.trigger_at.isoformat()
        return data


class ReminderStore(Protocol):
    def find_due_reminders(self, now: datetime) -> List[DueReminder]:
        """Pending reminders with trigger_at <= now, oldest first."""

    def mark_sent(self, reminder_id: int, sent_at: datetime) -> None:
        ...

    def purge_older_than(self, sent_before: datetime) -> int:
        """Delete fired reminders sent before the cutoff; returns the row count."""


class ReminderWriter(Protocol):
    def delete_reminders_for_owner(self, owner_type: str, owner_id: int) -> int:
        ...

    def create_reminder(
        self,
        *,
        owner_type: str,
        owner_id: int,
        family_id: str,
        title: str,
        body: str,
        trigger_at: datetime,
    ) -> int:
        """Persist one pending reminder and return its id."""


class NotificationChannel(Protocol):
    def deliver(
        self,
        family_id: str,
        title: str,
        body: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """True when the notification went out; False or an exception otherwise."""


# called with (reminder, now) once a reminder is marked sent
AfterSent = Callable[[DueReminder, datetime], Any]
