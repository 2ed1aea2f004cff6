"""Calendar listing and metadata."""

from __future__ import annotations

from typing import Any

from google_calendar_mcp.client import CalendarApi

_CALENDAR_LIST_FIELDS = (
    "id",
    "summary",
    "description",
    "primary",
    "accessRole",
    "backgroundColor",
    "foregroundColor",
    "timeZone",
)
_CALENDAR_FIELDS = ("id", "summary", "description", "timeZone", "location")


def _pick(resource: dict[str, Any], fields: tuple[str, ...]) -> dict[str, Any]:
    return {name: resource.get(name) for name in fields if resource.get(name) is not None}


async def list_calendars(api: CalendarApi) -> dict[str, Any]:
    payload = await api.list_calendars()
    items = payload.get("items") or []
    return {"calendars": [_pick(item, _CALENDAR_LIST_FIELDS) for item in items]}


async def get_calendar(api: CalendarApi, calendar_id: str) -> dict[str, Any]:
    return _pick(await api.get_calendar(calendar_id), _CALENDAR_FIELDS)
