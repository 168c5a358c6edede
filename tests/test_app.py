"""API tests through the Flask test client."""

from datetime import datetime

import pytest

from app import create_app
from config import Settings

pytestmark = pytest.mark.integration


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2025, 3, 10, 13, 0))


@pytest.fixture
def app(session_factory, channel, clock):
    app = create_app(Settings(database_url="sqlite://"), session_factory, channel, clock=clock)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def _create_appointment(client, **overrides):
    payload = {
        "familyId": "fam",
        "title": "Dentist",
        "date": "2025-03-10",
        "time": "14:00",
        "timings": [{"minutes": 30}, {"minutes": 60}],
    }
    payload.update(overrides)
    return client.post("/api/appointments", json=payload)


class TestAppointmentsApi:
    def test_create_schedules_future_reminders(self, client):
        resp = _create_appointment(client)

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["reminders"] == 2
        assert body["appointment"]["reminderMinutes"] == [30, 60]

        listed = client.get("/api/push/scheduled?family_id=fam").get_json()["notifications"]
        assert [n["trigger_at"] for n in listed] == ["2025-03-10T13:30:00", "2025-03-10T14:00:00"]

    def test_invalid_payload_is_a_400(self, client):
        resp = client.post("/api/appointments", json={"title": "no date"})

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid payload"

    def test_update_without_timings_reuses_stored_leads(self, client):
        appt_id = _create_appointment(client, timings=[{"minutes": 30}]).get_json()["appointment"]["id"]

        resp = client.put(f"/api/appointments/{appt_id}", json={"date": "2025-03-12"})

        assert resp.status_code == 200
        assert resp.get_json()["reminders"] == 2
        listed = client.get("/api/push/scheduled").get_json()["notifications"]
        assert [n["trigger_at"] for n in listed] == ["2025-03-12T13:30:00", "2025-03-12T14:00:00"]

    def test_recurring_appointment_targets_next_occurrence(self, client):
        resp = _create_appointment(
            client, date="2025-03-03", recurrence={"frequency": "weekly", "dayOfWeek": 1},
        )

        assert resp.get_json()["reminders"] == 2
        listed = client.get("/api/push/scheduled").get_json()["notifications"]
        assert [n["trigger_at"] for n in listed] == ["2025-03-10T13:30:00", "2025-03-10T14:00:00"]

    def test_delete_removes_reminders(self, client):
        appt_id = _create_appointment(client).get_json()["appointment"]["id"]

        assert client.delete(f"/api/appointments/{appt_id}").get_json() == {"deleted": appt_id}
        assert client.get("/api/push/scheduled").get_json()["notifications"] == []
        assert client.delete(f"/api/appointments/{appt_id}").status_code == 404

    def test_update_unknown_is_a_404(self, client):
        assert client.put("/api/appointments/999", json={"title": "x"}).status_code == 404


class TestCalendarApi:
    def test_occurrences_expand_recurring_appointments(self, client):
        _create_appointment(
            client, date="2025-03-04", time="18:30",
            recurrence={"frequency": "weekly", "dayOfWeek": 2, "endDate": "2025-03-18"},
        )

        body = client.get("/api/calendar/occurrences?start=2025-03-01&end=2025-03-31").get_json()

        assert [(a["date"], a["time"]) for a in body["appointments"]] == [
            ("2025-03-04", "18:30"), ("2025-03-11", "18:30"), ("2025-03-18", "18:30"),
        ]
        assert body["tasks"] == []

    def test_occurrences_require_valid_window(self, client):
        assert client.get("/api/calendar/occurrences?start=2025-03-10").status_code == 400
        assert client.get("/api/calendar/occurrences?start=2025-03-10&end=2025-03-01").status_code == 400

    def test_week_runs_monday_to_sunday(self, client):
        body = client.get("/api/calendar/week?date=2025-03-12").get_json()

        assert (body["start"], body["end"]) == ("2025-03-10", "2025-03-16")

    def test_week_rejects_malformed_date(self, client):
        assert client.get("/api/calendar/week?date=12/03/2025").status_code == 400

    def test_week_defaults_to_today(self, client):
        body = client.get("/api/calendar/week").get_json()

        assert (body["start"], body["end"]) == ("2025-03-10", "2025-03-16")

    def test_month_marks_days(self, client):
        _create_appointment(client, date="2025-01-31", recurrence={"frequency": "monthly"}, timings=[])
        client.post("/api/tasks", json={"familyId": "fam", "title": "Bins", "dueDate": "2025-02-14"})

        body = client.get("/api/calendar/month?year=2025&month=2").get_json()

        assert body == {"year": 2025, "month": 2, "days": ["2025-02-14", "2025-02-28"]}

    def test_month_rejects_invalid_month(self, client):
        assert client.get("/api/calendar/month?year=2025&month=13").status_code == 400


class TestTasksApi:
    def test_toggle_recurring_task_occurrence(self, client):
        task = client.post("/api/tasks", json={
            "familyId": "fam", "title": "Bins", "dueDate": "2025-03-01",
            "recurrence": {"frequency": "daily"},
        }).get_json()["task"]

        resp = client.post(f"/api/tasks/{task['id']}/toggle", json={"date": "2025-03-03"})

        assert resp.status_code == 200
        assert resp.get_json()["done"] is True
        assert resp.get_json()["task"]["completedDates"] == ["2025-03-03"]

        occurrences = client.get("/api/calendar/occurrences?start=2025-03-02&end=2025-03-03").get_json()["tasks"]
        assert [(t["date"], t["completed"]) for t in occurrences] == [
            ("2025-03-02", False), ("2025-03-03", True),
        ]

    def test_toggle_outside_recurrence_is_a_400(self, client):
        task = client.post("/api/tasks", json={
            "familyId": "fam", "title": "Bins", "dueDate": "2025-03-01",
            "recurrence": {"frequency": "daily"},
        }).get_json()["task"]

        resp = client.post(f"/api/tasks/{task['id']}/toggle", json={"date": "2025-02-28"})

        assert resp.status_code == 400

    def test_task_reminder_is_scheduled(self, client):
        resp = client.post("/api/tasks", json={
            "familyId": "fam", "title": "Pay rent", "dueDate": "2025-03-10",
            "dueTime": "18:00", "reminderMinutes": 15,
        })

        assert resp.status_code == 201
        assert resp.get_json()["reminders"] == 1
        (row,) = client.get("/api/push/scheduled").get_json()["notifications"]
        assert (row["owner_type"], row["trigger_at"]) == ("task", "2025-03-10T17:45:00")

    def test_delete_unknown_task_is_a_404(self, client):
        assert client.delete("/api/tasks/42").status_code == 404


class TestPushApi:
    def test_schedule_appointment_route(self, client):
        resp = client.post("/api/push/schedule-appointment", json={
            "appointmentId": 7,
            "appointmentDate": "2025-03-10",
            "appointmentTime": "14:00",
            "title": "Dentist",
            "familyId": "fam",
            "timings": [{"minutes": 30, "enabled": True}, {"minutes": 60, "enabled": True}],
        })

        assert resp.get_json() == {"success": True, "message": "Notifications scheduled", "count": 2}

    def test_tick_delivers_due_reminders(self, client, channel, clock):
        _create_appointment(client)
        clock.now = datetime(2025, 3, 10, 13, 30)

        result = client.post("/api/scheduler/tick").get_json()

        assert (result["due"], result["delivered"]) == (1, 1)
        assert channel.sent[0]["body"] == "Dentist at 14:00 (in 30 min)"
        pending = client.get("/api/push/scheduled?sent=false").get_json()["notifications"]
        assert [n["trigger_at"] for n in pending] == ["2025-03-10T14:00:00"]

    def test_scheduler_is_not_started_by_the_factory(self, app):
        assert app.extensions["reminder_scheduler"].running is False


class TestRecurringReminders:
    def _pending(self, client):
        rows = client.get("/api/push/scheduled?sent=false").get_json()["notifications"]
        return [n["trigger_at"] for n in rows]

    def test_weekly_appointment_is_rearmed_for_the_following_week(self, client, channel, clock):
        clock.now = datetime(2025, 3, 3, 9, 0)
        _create_appointment(
            client, date="2025-03-04", time="18:00", timings=[{"minutes": 30}],
            recurrence={"frequency": "weekly", "dayOfWeek": 2},
        )

        for now in (datetime(2025, 3, 4, 17, 30), datetime(2025, 3, 4, 18, 0), datetime(2025, 3, 5, 9, 0)):
            clock.now = now
            client.post("/api/scheduler/tick")

        assert [s["body"] for s in channel.sent] == ["Dentist at 18:00 (in 30 min)", "Dentist now (18:00)"]
        assert self._pending(client) == ["2025-03-11T17:30:00", "2025-03-11T18:00:00"]
        fired = client.get("/api/push/scheduled?sent=true").get_json()["notifications"]
        assert len(fired) == 2

    def test_lead_reminder_alone_does_not_rearm(self, client, clock):
        clock.now = datetime(2025, 3, 3, 9, 0)
        _create_appointment(
            client, date="2025-03-04", time="18:00", timings=[{"minutes": 30}],
            recurrence={"frequency": "weekly", "dayOfWeek": 2},
        )

        clock.now = datetime(2025, 3, 4, 17, 30)
        client.post("/api/scheduler/tick")

        assert self._pending(client) == ["2025-03-04T18:00:00"]

    def test_daily_task_is_rearmed_for_the_next_day(self, client, clock):
        clock.now = datetime(2025, 3, 1, 9, 0)
        client.post("/api/tasks", json={
            "familyId": "fam", "title": "Meds", "dueDate": "2025-03-01", "dueTime": "18:00",
            "reminderMinutes": 15, "recurrence": {"frequency": "daily"},
        })

        clock.now = datetime(2025, 3, 1, 17, 45)
        result = client.post("/api/scheduler/tick").get_json()

        assert result["delivered"] == 1
        assert self._pending(client) == ["2025-03-02T17:45:00"]

    def test_one_off_appointment_is_not_rearmed(self, client, clock):
        _create_appointment(client, timings=[])

        clock.now = datetime(2025, 3, 10, 14, 0)
        client.post("/api/scheduler/tick")

        assert self._pending(client) == []
