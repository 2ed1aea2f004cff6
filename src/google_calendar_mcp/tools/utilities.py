"""Free/busy lookups and the color palette."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from google_calendar_mcp.client import CalendarApi
from google_calendar_mcp.errors import InvalidArgumentError
from google_calendar_mcp.tools.events import as_utc, google_rfc3339


async def get_freebusy(
    api: CalendarApi,
    *,
    time_min: datetime,
    time_max: datetime,
    calendar_ids: list[str],
    time_zone: str | None = None,
) -> dict[str, Any]:
    if not calendar_ids:
        raise InvalidArgumentError("calendar_ids must contain at least one calendar id")
    if as_utc(time_max) <= as_utc(time_min):
        raise InvalidArgumentError("time_max must be after time_min")

    body: dict[str, Any] = {
        "timeMin": google_rfc3339(time_min),
        "timeMax": google_rfc3339(time_max),
        "items": [{"id": calendar_id} for calendar_id in calendar_ids],
    }
    if time_zone:
        body["timeZone"] = time_zone

    payload = await api.query_freebusy(body)
    calendars: dict[str, Any] = {}
    for calendar_id, entry in (payload.get("calendars") or {}).items():
        calendars[calendar_id] = {
            "busy": list(entry.get("busy") or []),
            "errors": list(entry.get("errors") or []),
        }
    return {
        "time_min": payload.get("timeMin", body["timeMin"]),
        "time_max": payload.get("timeMax", body["timeMax"]),
        "calendars": calendars,
    }


async def list_colors(api: CalendarApi) -> dict[str, Any]:
    payload = await api.get_colors()
    return {"calendar": payload.get("calendar") or {}, "event": payload.get("event") or {}}
