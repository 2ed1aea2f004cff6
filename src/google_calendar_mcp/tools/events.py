"""One-off event operations and the event projections returned to callers."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from google_calendar_mcp.client import CalendarApi
from google_calendar_mcp.errors import InvalidArgumentError
from google_calendar_mcp.models import EventUpdate, Reminders, normalize_recurrence_lines
from google_calendar_mcp.recurrence import EventRef

MAX_RESULTS_LIMIT = 2500

_SUMMARY_FIELDS = (
    "id",
    "summary",
    "description",
    "location",
    "start",
    "end",
    "status",
    "htmlLink",
    "colorId",
    "recurringEventId",
)
_DETAIL_FIELDS = (
    *_SUMMARY_FIELDS,
    "recurrence",
    "originalStartTime",
    "reminders",
    "visibility",
    "transparency",
    "organizer",
    "creator",
    "created",
    "updated",
)
_ATTENDEE_FIELDS = ("email", "displayName", "responseStatus", "optional", "organizer", "self")


def as_utc(value: datetime) -> datetime:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC)


def google_rfc3339(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


def project_event(event: dict[str, Any], *, detailed: bool = False) -> dict[str, Any]:
    fields = _DETAIL_FIELDS if detailed else _SUMMARY_FIELDS
    projected = {name: event[name] for name in fields if event.get(name) is not None}
    attendees = event.get("attendees")
    if attendees:
        projected["attendees"] = [
            {key: attendee[key] for key in _ATTENDEE_FIELDS if key in attendee}
            for attendee in attendees
        ]
    return projected


def _validate_max_results(max_results: int) -> int:
    if max_results < 1 or max_results > MAX_RESULTS_LIMIT:
        raise InvalidArgumentError(f"max_results must be between 1 and {MAX_RESULTS_LIMIT}")
    return max_results


def _validate_window(time_min: datetime | None, time_max: datetime | None) -> None:
    if time_min is not None and time_max is not None and as_utc(time_max) <= as_utc(time_min):
        raise InvalidArgumentError("time_max must be after time_min")


async def list_events(
    api: CalendarApi,
    calendar_id: str,
    *,
    time_min: datetime | None = None,
    time_max: datetime | None = None,
    max_results: int = 100,
    query: str | None = None,
    single_events: bool = True,
    order_by: str = "startTime",
    page_token: str | None = None,
) -> dict[str, Any]:
    _validate_window(time_min, time_max)
    params: dict[str, Any] = {
        "maxResults": _validate_max_results(max_results),
        "singleEvents": "true" if single_events else "false",
        "timeMin": google_rfc3339(time_min) if time_min is not None else None,
        "timeMax": google_rfc3339(time_max) if time_max is not None else None,
        "q": query.strip() if query and query.strip() else None,
        "pageToken": page_token or None,
    }
    if order_by not in ("startTime", "updated"):
        raise InvalidArgumentError("order_by must be 'startTime' or 'updated'")
    # Google rejects orderBy=startTime unless recurring events are expanded.
    if order_by == "updated" or single_events:
        params["orderBy"] = order_by

    payload = await api.list_events(calendar_id, params)
    return {
        "calendar_id": calendar_id,
        "events": [project_event(item) for item in payload.get("items") or []],
        "next_page_token": payload.get("nextPageToken"),
    }


async def search_events(
    api: CalendarApi,
    calendar_id: str,
    *,
    query: str,
    time_min: datetime | None = None,
    time_max: datetime | None = None,
    max_results: int = 50,
) -> dict[str, Any]:
    if not query.strip():
        raise InvalidArgumentError("query must be a non-empty string")
    result = await list_events(
        api,
        calendar_id,
        time_min=time_min,
        time_max=time_max,
        max_results=max_results,
        query=query,
    )
    return {"calendar_id": calendar_id, "query": query.strip(), "events": result["events"]}


async def get_event(api: CalendarApi, calendar_id: str, event_id: str) -> dict[str, Any]:
    event = await api.get_event(calendar_id, EventRef.series(event_id))
    return {"calendar_id": calendar_id, "event": project_event(event, detailed=True)}


def _check_boundaries(update: EventUpdate) -> None:
    if update.start is not None and update.end is not None:
        if update.start.all_day != update.end.all_day:
            raise InvalidArgumentError("start and end must both be dates or both be date-times")


async def create_event(
    api: CalendarApi,
    calendar_id: str,
    *,
    event: EventUpdate,
    recurrence: list[str] | None = None,
    reminders: Reminders | None = None,
    send_updates: str | None = None,
) -> dict[str, Any]:
    if not event.summary or not event.summary.strip():
        raise InvalidArgumentError("summary must be a non-empty string")
    if event.start is None or event.end is None:
        raise InvalidArgumentError("start and end are required to create an event")
    _check_boundaries(event)

    body = event.to_patch_body()
    try:
        rules = normalize_recurrence_lines(recurrence)
    except ValueError as exc:
        raise InvalidArgumentError(str(exc)) from exc
    if rules:
        body["recurrence"] = rules
    if reminders is not None:
        body["reminders"] = reminders.model_dump(by_alias=True, exclude_none=True)

    created = await api.insert_event(calendar_id, body, send_updates=send_updates)
    return {
        "status": "created",
        "calendar_id": calendar_id,
        "event": project_event(created, detailed=True),
    }


async def update_event(
    api: CalendarApi,
    calendar_id: str,
    event_id: str,
    *,
    update: EventUpdate,
    send_updates: str | None = None,
) -> dict[str, Any]:
    if update.is_empty():
        raise InvalidArgumentError("At least one field to update must be provided")
    _check_boundaries(update)

    updated = await api.patch_event(
        calendar_id,
        EventRef.series(event_id),
        update.to_patch_body(),
        send_updates=send_updates,
    )
    return {
        "status": "updated",
        "calendar_id": calendar_id,
        "event": project_event(updated, detailed=True),
    }


async def delete_event(
    api: CalendarApi,
    calendar_id: str,
    event_id: str,
    *,
    send_updates: str | None = "all",
) -> dict[str, Any]:
    ref = EventRef.series(event_id)
    await api.delete_event(calendar_id, ref, send_updates=send_updates)
    return {"status": "deleted", "calendar_id": calendar_id, "event_id": ref.event_id}
