"""Shared fixtures: in-memory databases and fake reminder collaborators."""

import os

os.environ.setdefault("HOUSEHOLD_DATABASE_URL", "sqlite://")

from datetime import datetime  # noqa: E402
from typing import Any, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402

from models import init_db, make_engine, make_session_factory  # noqa: E402
from scheduler.ports import DueReminder  # noqa: E402


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    factory = make_session_factory(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


class FakeReminderStore:
    """In-memory ReminderStore + ReminderWriter that records every call."""

    def __init__(self):
        self.rows: Dict[int, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self._next_id = 1
        self.fail_on_find = False
        self.fail_on_mark: set = set()

    def add(self, *, family_id="fam", title="t", body="b", trigger_at, sent=False, sent_at=None,
            owner_type="appointment", owner_id=1) -> int:
        rid = self._next_id
        self._next_id += 1
        self.rows[rid] = {
            "id": rid, "owner_type": owner_type, "owner_id": owner_id, "family_id": family_id,
            "title": title, "body": body, "trigger_at": trigger_at, "sent": sent, "sent_at": sent_at,
        }
        return rid

    # ReminderStore
    def find_due_reminders(self, now: datetime) -> List[DueReminder]:
        self.calls.append(("find_due_reminders", now))
        if self.fail_on_find:
            raise RuntimeError("database unavailable")
        due = [r for r in self.rows.values() if not r["sent"] and r["trigger_at"] <= now]
        due.sort(key=lambda r: (r["trigger_at"], r["id"]))
        return [
            DueReminder(
                id=r["id"], family_id=r["family_id"], title=r["title"], body=r["body"],
                owner_type=r["owner_type"], owner_id=r["owner_id"], trigger_at=r["trigger_at"],
            )
            for r in due
        ]

    def mark_sent(self, reminder_id: int, sent_at: datetime) -> None:
        self.calls.append(("mark_sent", reminder_id))
        if reminder_id in self.fail_on_mark:
            raise RuntimeError("write failed")
        self.rows[reminder_id]["sent"] = True
        self.rows[reminder_id]["sent_at"] = sent_at

    def purge_older_than(self, sent_before: datetime) -> int:
        self.calls.append(("purge_older_than", sent_before))
        old = [rid for rid, r in self.rows.items() if r["sent"] and r["sent_at"] < sent_before]
        for rid in old:
            del self.rows[rid]
        return len(old)

    # ReminderWriter
    def delete_reminders_for_owner(self, owner_type: str, owner_id: int) -> int:
        self.calls.append(("delete_reminders_for_owner", owner_type, owner_id))
        gone = [rid for rid, r in self.rows.items()
                if r["owner_type"] == owner_type and r["owner_id"] == owner_id]
        for rid in gone:
            del self.rows[rid]
        return len(gone)

    def create_reminder(self, *, owner_type, owner_id, family_id, title, body, trigger_at) -> int:
        self.calls.append(("create_reminder", trigger_at))
        return self.add(owner_type=owner_type, owner_id=owner_id, family_id=family_id,
                        title=title, body=body, trigger_at=trigger_at)


class RecordingChannel:
    """NotificationChannel that records deliveries; `fail_titles` raise, `reject_titles` return False."""

    def __init__(self, fail_titles=(), reject_titles=()):
        self.sent: List[Dict[str, Any]] = []
        self.fail_titles = set(fail_titles)
        self.reject_titles = set(reject_titles)

    def deliver(self, family_id: str, title: str, body: str, metadata: Optional[Dict[str, Any]] = None) -> bool:
        if title in self.fail_titles:
            raise ConnectionError(f"push service down for {title}")
        if title in self.reject_titles:
            return False
        self.sent.append({"family_id": family_id, "title": title, "body": body, "metadata": metadata})
        return True


@pytest.fixture
def fake_store():
    return FakeReminderStore()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def make_channel():
    return RecordingChannel
