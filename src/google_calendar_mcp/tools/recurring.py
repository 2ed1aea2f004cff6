"""Scoped updates and instance deletion for recurring series."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import ValidationError

from google_calendar_mcp.client import CalendarApi
from google_calendar_mcp.errors import InvalidArgumentError
from google_calendar_mcp.models import EventUpdate
from google_calendar_mcp.recurrence import InstanceLocator
from google_calendar_mcp.scopes import (
    EditScope,
    ScopedEditResult,
    delete_recurring_instance,
    update_recurring_event,
)
from google_calendar_mcp.tools.events import project_event


def build_locator(
    instance_date: date | None, instance_datetime: datetime | None
) -> InstanceLocator | None:
    if instance_date is None and instance_datetime is None:
        return None
    try:
        return InstanceLocator(
            occurrence_date=instance_date, occurrence_datetime=instance_datetime
        )
    except ValidationError as exc:
        message = "; ".join(error["msg"] for error in exc.errors())
        raise InvalidArgumentError(message) from exc


def scoped_result_payload(result: ScopedEditResult, calendar_id: str) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "status": "updated",
        "scope": result.scope.value,
        "calendar_id": calendar_id,
        "original_event_id": result.original_event_id,
    }
    if result.scope is EditScope.single_instance:
        payload["instance_id"] = result.instance_id
    if result.scope is EditScope.this_and_following:
        assert result.steps is not None and result.split_date is not None
        payload["new_event_id"] = result.new_event_id
        payload["split_date"] = result.split_date.isoformat()
        payload["steps"] = result.steps.as_dict()
        payload["truncated_recurrence"] = (result.truncated_event or {}).get("recurrence")
    payload["event"] = project_event(result.event, detailed=True)
    return payload


async def update_recurring(
    api: CalendarApi,
    calendar_id: str,
    event_id: str,
    *,
    scope: str,
    instance_date: date | None,
    instance_datetime: datetime | None,
    update: EventUpdate,
    send_updates: str | None = None,
) -> dict[str, Any]:
    result = await update_recurring_event(
        api,
        calendar_id=calendar_id,
        event_id=event_id,
        scope=scope,
        locator=build_locator(instance_date, instance_datetime),
        update=update,
        send_updates=send_updates,
    )
    return scoped_result_payload(result, calendar_id)


async def delete_instance(
    api: CalendarApi,
    calendar_id: str,
    event_id: str,
    *,
    instance_date: date | None,
    instance_datetime: datetime | None,
    send_updates: str | None = "all",
) -> dict[str, Any]:
    instance = await delete_recurring_instance(
        api,
        calendar_id=calendar_id,
        event_id=event_id,
        locator=build_locator(instance_date, instance_datetime),
        send_updates=send_updates,
    )
    return {
        "status": "deleted",
        "calendar_id": calendar_id,
        "event_id": instance.series_id,
        "deleted_instance_id": instance.event_id,
    }
