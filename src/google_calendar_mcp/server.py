"""FastMCP server exposing Google Calendar tools.

``create_server`` builds the FastMCP instance; ``register_tools`` attaches the
tool closures to any object with a FastMCP-style ``tool()`` decorator. Every
tool returns a dict: the operation result, or a structured error payload for
``CalendarError`` and argument ``ValidationError`` failures.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from typing import Any

from fastmcp import FastMCP
from pydantic import ValidationError

from google_calendar_mcp.client import CalendarApi
from google_calendar_mcp.context import ServerContext
from google_calendar_mcp.core.logging import tool_context
from google_calendar_mcp.errors import (
    CalendarError,
    build_error_payload,
    redact_credential_values,
)
from google_calendar_mcp.models import (
    Attendee,
    EventDateTime,
    EventTransparency,
    EventUpdate,
    EventVisibility,
    Reminders,
    SendUpdatesPolicy,
)
from google_calendar_mcp.tools import calendars, events, recurring, utilities

logger = logging.getLogger(__name__)

SERVER_NAME = "google-calendar"

Operation = Callable[[CalendarApi], Awaitable[dict[str, Any]]]


def _policy(value: SendUpdatesPolicy | None) -> str | None:
    return None if value is None else SendUpdatesPolicy(value).value


def register_tools(mcp: Any, context: ServerContext) -> None:
    """Register the calendar tools on *mcp*."""

    def _calendar(calendar_id: str | None) -> str:
        if calendar_id is None or not calendar_id.strip():
            return context.default_calendar_id
        return calendar_id.strip()

    async def _invoke(tool_name: str, calendar_id: str | None, operation: Operation) -> dict:
        with tool_context(tool_name):
            try:
                api = await context.get_api()
                return await operation(api)
            except (CalendarError, ValidationError) as exc:
                logger.warning(
                    "%s failed (calendar_id=%s): %s",
                    tool_name,
                    calendar_id,
                    redact_credential_values(str(exc)),
                    exc_info=True,
                )
                return build_error_payload(exc, calendar_id=calendar_id)

    @mcp.tool()
    async def list_calendars() -> dict[str, Any]:
        """List all calendars the authorized account can see."""
        return await _invoke("list_calendars", None, calendars.list_calendars)

    @mcp.tool()
    async def get_calendar(calendar_id: str | None = None) -> dict[str, Any]:
        """Get metadata for one calendar (defaults to the primary calendar)."""
        resolved = _calendar(calendar_id)
        return await _invoke(
            "get_calendar", resolved, lambda api: calendars.get_calendar(api, resolved)
        )

    @mcp.tool()
    async def list_events(
        calendar_id: str | None = None,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        max_results: int = 100,
        query: str | None = None,
        single_events: bool = True,
        order_by: str = "startTime",
        page_token: str | None = None,
    ) -> dict[str, Any]:
        """List events in a calendar, optionally bounded by time_min/time_max.

        With single_events=true recurring series are expanded into instances and
        ordered by start time. Pass next_page_token back as page_token to page.
        """
        resolved = _calendar(calendar_id)
        return await _invoke(
            "list_events",
            resolved,
            lambda api: events.list_events(
                api,
                resolved,
                time_min=time_min,
                time_max=time_max,
                max_results=max_results,
                query=query,
                single_events=single_events,
                order_by=order_by,
                page_token=page_token,
            ),
        )

    @mcp.tool()
    async def get_event(event_id: str, calendar_id: str | None = None) -> dict[str, Any]:
        """Get one event, including recurrence rules and reminders."""
        resolved = _calendar(calendar_id)
        return await _invoke(
            "get_event", resolved, lambda api: events.get_event(api, resolved, event_id)
        )

    @mcp.tool()
    async def search_events(
        query: str,
        calendar_id: str | None = None,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        max_results: int = 50,
    ) -> dict[str, Any]:
        """Free-text search over event summaries, descriptions, locations and attendees."""
        resolved = _calendar(calendar_id)
        return await _invoke(
            "search_events",
            resolved,
            lambda api: events.search_events(
                api,
                resolved,
                query=query,
                time_min=time_min,
                time_max=time_max,
                max_results=max_results,
            ),
        )

    @mcp.tool()
    async def create_event(
        summary: str,
        start: EventDateTime,
        end: EventDateTime,
        calendar_id: str | None = None,
        description: str | None = None,
        location: str | None = None,
        attendees: list[Attendee] | None = None,
        recurrence: list[str] | None = None,
        reminders: Reminders | None = None,
        color_id: str | None = None,
        visibility: EventVisibility | None = None,
        transparency: EventTransparency | None = None,
        send_updates: SendUpdatesPolicy | None = None,
    ) -> dict[str, Any]:
        """Create an event.

        start/end take either {"date": "YYYY-MM-DD"} for all-day events or
        {"dateTime": RFC3339, "timeZone": IANA name}. recurrence lines must
        start with RRULE:, EXRULE:, RDATE or EXDATE.
        """
        resolved = _calendar(calendar_id)

        async def _create(api: CalendarApi) -> dict[str, Any]:
            draft = EventUpdate(
                summary=summary,
                description=description,
                location=location,
                start=start,
                end=end,
                color_id=color_id,
                attendees=attendees,
                visibility=visibility,
                transparency=transparency,
            )
            return await events.create_event(
                api,
                resolved,
                event=draft,
                recurrence=recurrence,
                reminders=reminders,
                send_updates=_policy(send_updates),
            )

        return await _invoke("create_event", resolved, _create)

    @mcp.tool()
    async def update_event(
        event_id: str,
        calendar_id: str | None = None,
        summary: str | None = None,
        description: str | None = None,
        location: str | None = None,
        start: EventDateTime | None = None,
        end: EventDateTime | None = None,
        color_id: str | None = None,
        attendees: list[Attendee] | None = None,
        visibility: EventVisibility | None = None,
        transparency: EventTransparency | None = None,
        send_updates: SendUpdatesPolicy | None = None,
    ) -> dict[str, Any]:
        """Update an event. Only the fields provided are changed."""
        resolved = _calendar(calendar_id)

        async def _update(api: CalendarApi) -> dict[str, Any]:
            update = EventUpdate(
                summary=summary,
                description=description,
                location=location,
                start=start,
                end=end,
                color_id=color_id,
                attendees=attendees,
                visibility=visibility,
                transparency=transparency,
            )
            return await events.update_event(
                api, resolved, event_id, update=update, send_updates=_policy(send_updates)
            )

        return await _invoke("update_event", resolved, _update)

    @mcp.tool()
    async def delete_event(
        event_id: str,
        calendar_id: str | None = None,
        send_updates: SendUpdatesPolicy = SendUpdatesPolicy.all,
    ) -> dict[str, Any]:
        """Delete an event (or a whole recurring series when given its id)."""
        resolved = _calendar(calendar_id)
        return await _invoke(
            "delete_event",
            resolved,
            lambda api: events.delete_event(
                api, resolved, event_id, send_updates=_policy(send_updates)
            ),
        )

    @mcp.tool()
    async def update_recurring_event(
        event_id: str,
        scope: str,
        calendar_id: str | None = None,
        instance_date: date | None = None,
        instance_datetime: datetime | None = None,
        summary: str | None = None,
        description: str | None = None,
        location: str | None = None,
        start: EventDateTime | None = None,
        end: EventDateTime | None = None,
        color_id: str | None = None,
        send_updates: SendUpdatesPolicy | None = None,
    ) -> dict[str, Any]:
        """Update a recurring event with an explicit edit scope.

        scope is one of:
        - "single-instance" (or "thisEventOnly"): only the occurrence at
          instance_date / instance_datetime.
        - "entire-series" (or "all"): every occurrence; the instance is ignored.
        - "this-and-following" (or "thisAndFollowing"): the series is ended the
          day before the instance and a new series with the changes starts
          there. The result carries both ids and the outcome of each step.

        instance_datetime is the occurrence's original start (a value without an
        offset is read as UTC); instance_date addresses all-day occurrences.
        """
        resolved = _calendar(calendar_id)

        async def _update(api: CalendarApi) -> dict[str, Any]:
            update = EventUpdate(
                summary=summary,
                description=description,
                location=location,
                start=start,
                end=end,
                color_id=color_id,
            )
            return await recurring.update_recurring(
                api,
                resolved,
                event_id,
                scope=scope,
                instance_date=instance_date,
                instance_datetime=instance_datetime,
                update=update,
                send_updates=_policy(send_updates),
            )

        return await _invoke("update_recurring_event", resolved, _update)

    @mcp.tool()
    async def delete_recurring_instance(
        event_id: str,
        calendar_id: str | None = None,
        instance_date: date | None = None,
        instance_datetime: datetime | None = None,
        send_updates: SendUpdatesPolicy = SendUpdatesPolicy.all,
    ) -> dict[str, Any]:
        """Delete a single occurrence of a recurring event, leaving the series intact."""
        resolved = _calendar(calendar_id)
        return await _invoke(
            "delete_recurring_instance",
            resolved,
            lambda api: recurring.delete_instance(
                api,
                resolved,
                event_id,
                instance_date=instance_date,
                instance_datetime=instance_datetime,
                send_updates=_policy(send_updates),
            ),
        )

    @mcp.tool()
    async def get_freebusy(
        time_min: datetime,
        time_max: datetime,
        calendar_ids: list[str] | None = None,
        time_zone: str | None = None,
    ) -> dict[str, Any]:
        """Report busy intervals for one or more calendars between two instants."""
        ids = calendar_ids or [context.default_calendar_id]
        return await _invoke(
            "get_freebusy",
            None,
            lambda api: utilities.get_freebusy(
                api,
                time_min=time_min,
                time_max=time_max,
                calendar_ids=ids,
                time_zone=time_zone,
            ),
        )

    @mcp.tool()
    async def list_colors() -> dict[str, Any]:
        """List the calendar and event color palettes (colorId -> background/foreground)."""
        return await _invoke("list_colors", None, utilities.list_colors)


def create_server(context: ServerContext) -> FastMCP:
    mcp = FastMCP(SERVER_NAME)
    register_tools(mcp, context)
    return mcp


async def run_server(context: ServerContext) -> None:
    """Serve the tools over stdio until the client disconnects."""
    mcp = create_server(context)
    logger.info("Starting %s MCP server on stdio", SERVER_NAME)
    try:
        await mcp.run_async(transport="stdio")
    finally:
        await context.aclose()
