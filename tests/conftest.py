"""Shared fixtures for the calendar server tests."""

from __future__ import annotations

from typing import Any

import pytest

from google_calendar_mcp.client import CalendarApi
from google_calendar_mcp.errors import RemoteFailureError
from google_calendar_mcp.recurrence import EventRef


class FakeCalendarApi(CalendarApi):
    """In-memory ``CalendarApi`` that records every call.

    ``events`` maps event ids to resources returned by ``get_event``.
    ``failures`` maps a method name to the error that method raises.
    """

    def __init__(self) -> None:
        self.events: dict[str, dict[str, Any]] = {}
        self.failures: dict[str, RemoteFailureError] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.list_payload: dict[str, Any] = {"items": []}
        self.calendar_list: dict[str, Any] = {"items": []}
        self.calendar: dict[str, Any] = {}
        self.freebusy_payload: dict[str, Any] = {"calendars": {}}
        self.colors: dict[str, Any] = {"calendar": {}, "event": {}}
        self.inserted_id = "new-series"

    def _record(self, method: str, **kwargs: Any) -> None:
        self.calls.append((method, kwargs))
        failure = self.failures.get(method)
        if failure is not None:
            raise failure

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    async def list_calendars(self) -> dict[str, Any]:
        self._record("list_calendars")
        return self.calendar_list

    async def get_calendar(self, calendar_id: str) -> dict[str, Any]:
        self._record("get_calendar", calendar_id=calendar_id)
        return self.calendar

    async def list_events(self, calendar_id: str, params: dict[str, Any]) -> dict[str, Any]:
        self._record("list_events", calendar_id=calendar_id, params=params)
        return self.list_payload

    async def get_event(self, calendar_id: str, event_id: EventRef | str) -> dict[str, Any]:
        self._record("get_event", calendar_id=calendar_id, event_id=str(event_id))
        event = self.events.get(str(event_id))
        if event is None:
            raise RemoteFailureError(operation="events.get", status_code=404, message="Not Found")
        return event

    async def insert_event(
        self,
        calendar_id: str,
        body: dict[str, Any],
        *,
        send_updates: str | None = None,
    ) -> dict[str, Any]:
        self._record(
            "insert_event", calendar_id=calendar_id, body=body, send_updates=send_updates
        )
        return {"id": self.inserted_id, **body}

    async def patch_event(
        self,
        calendar_id: str,
        event_id: EventRef | str,
        body: dict[str, Any],
        *,
        send_updates: str | None = None,
    ) -> dict[str, Any]:
        self._record(
            "patch_event",
            calendar_id=calendar_id,
            event_id=str(event_id),
            body=body,
            send_updates=send_updates,
        )
        return {**self.events.get(str(event_id), {"id": str(event_id)}), **body}

    async def delete_event(
        self,
        calendar_id: str,
        event_id: EventRef | str,
        *,
        send_updates: str | None = None,
    ) -> None:
        self._record(
            "delete_event",
            calendar_id=calendar_id,
            event_id=str(event_id),
            send_updates=send_updates,
        )

    async def query_freebusy(self, body: dict[str, Any]) -> dict[str, Any]:
        self._record("query_freebusy", body=body)
        return self.freebusy_payload

    async def get_colors(self) -> dict[str, Any]:
        self._record("get_colors")
        return self.colors


@pytest.fixture
def fake_api() -> FakeCalendarApi:
    return FakeCalendarApi()


@pytest.fixture
def weekly_series() -> dict[str, Any]:
    """A timed weekly standup in New York, created for ten occurrences."""
    return {
        "id": "standup",
        "summary": "Standup",
        "description": "Daily sync",
        "location": "Room 1",
        "colorId": "5",
        "start": {"dateTime": "2024-01-01T09:00:00-05:00", "timeZone": "America/New_York"},
        "end": {"dateTime": "2024-01-01T09:30:00-05:00", "timeZone": "America/New_York"},
        "recurrence": ["RRULE:FREQ=WEEKLY;COUNT=10;BYDAY=MO"],
        "attendees": [{"email": "a@example.com", "responseStatus": "accepted"}],
        "reminders": {"useDefault": False, "overrides": [{"method": "popup", "minutes": 10}]},
    }


@pytest.fixture
def all_day_series() -> dict[str, Any]:
    return {
        "id": "holiday",
        "summary": "Office closed",
        "start": {"date": "2024-01-01"},
        "end": {"date": "2024-01-02"},
        "recurrence": ["RRULE:FREQ=MONTHLY;UNTIL=20241231", "EXDATE;VALUE=DATE:20240301"],
    }
