"""Recurring-event edit scopes.

One logical edit against a recurring series is translated into calendar API
calls according to its ``EditScope``:

- ``single-instance``: patch the synthesized instance id.
- ``entire-series``: patch the series master.
- ``this-and-following``: split the series. The master's RRULEs are truncated
  to end the day before the split date, then a new series carrying the update
  is inserted from the split date onward.

The split is two independent writes with no rollback. ``SplitSteps`` records
what happened to each, and a failed insert after a successful truncation is
raised with that record attached so the caller can see the series was cut
short but not continued.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from enum import StrEnum
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from google_calendar_mcp.client import CalendarApi
from google_calendar_mcp.errors import (
    InvalidArgumentError,
    NotRecurringError,
    RemoteFailureError,
)
from google_calendar_mcp.models import EventUpdate
from google_calendar_mcp.recurrence import (
    EventRef,
    InstanceLocator,
    synthesize_instance_id,
    truncate_recurrence,
    unbounded_recurrence,
)

logger = logging.getLogger(__name__)

StepOutcome = Literal["applied", "failed", "skipped"]

# Master properties carried onto the new series when the update leaves them unset.
_INHERITED_FIELDS = (
    "summary",
    "description",
    "location",
    "colorId",
    "attendees",
    "reminders",
    "visibility",
    "transparency",
)


class EditScope(StrEnum):
    single_instance = "single-instance"
    entire_series = "entire-series"
    this_and_following = "this-and-following"

    @classmethod
    def _missing_(cls, value: object) -> EditScope | None:
        if isinstance(value, str):
            return _SCOPE_ALIASES.get(value.strip())
        return None

    @classmethod
    def parse(cls, value: str | EditScope) -> EditScope:
        try:
            return cls(value)
        except ValueError:
            accepted = ", ".join([*(scope.value for scope in cls), *_SCOPE_ALIASES])
            raise InvalidArgumentError(
                f"Unknown edit scope {value!r}; expected one of: {accepted}"
            ) from None


_SCOPE_ALIASES: dict[str, EditScope] = {
    "thisEventOnly": EditScope.single_instance,
    "all": EditScope.entire_series,
    "thisAndFollowing": EditScope.this_and_following,
}


@dataclass
class SplitSteps:
    truncate: StepOutcome = "skipped"
    insert: StepOutcome = "skipped"

    def as_dict(self) -> dict[str, str]:
        return {"truncate": self.truncate, "insert": self.insert}


@dataclass
class ScopedEditResult:
    """Outcome of a scoped edit.

    ``event`` is the resource that now represents the edited occurrences: the
    patched instance, the patched master, or the newly inserted series.
    """

    scope: EditScope
    original_event_id: str
    event: dict[str, Any]
    instance_id: str | None = None
    new_event_id: str | None = None
    truncated_event: dict[str, Any] | None = None
    steps: SplitSteps | None = None
    split_date: date | None = None


def _parse_google_datetime(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError, AttributeError) as exc:
        raise InvalidArgumentError(f"Unparseable event dateTime: {value!r}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _parse_google_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"Unparseable event date: {value!r}") from exc


def _boundary_kind(boundary: dict[str, Any]) -> Literal["date", "dateTime"] | None:
    if boundary.get("dateTime"):
        return "dateTime"
    if boundary.get("date"):
        return "date"
    return None


def _master_duration(master: dict[str, Any]) -> tuple[Literal["date", "dateTime"], timedelta]:
    start = master.get("start") or {}
    end = master.get("end") or {}
    kind = _boundary_kind(start)
    if kind is None or _boundary_kind(end) != kind:
        raise InvalidArgumentError(
            f"Event '{master.get('id')}' has no usable start/end to derive the new series from"
        )
    if kind == "date":
        return kind, _parse_google_date(end["date"]) - _parse_google_date(start["date"])
    return kind, _parse_google_datetime(end["dateTime"]) - _parse_google_datetime(
        start["dateTime"]
    )


def _wall_clock_on(day: date, master_start: dict[str, Any]) -> datetime:
    """The master's local start time placed on *day*, in the master's zone when known."""
    original = _parse_google_datetime(master_start["dateTime"])
    zone_name = master_start.get("timeZone")
    if zone_name:
        try:
            zone = ZoneInfo(zone_name)
        except (ZoneInfoNotFoundError, ValueError):
            zone = None
        if zone is not None:
            local = original.astimezone(zone)
            return datetime.combine(day, local.time(), tzinfo=zone)
    return datetime.combine(day, original.timetz())


def _new_series_start(
    master: dict[str, Any], update: EventUpdate, locator: InstanceLocator, split_date: date
) -> dict[str, Any]:
    if update.start is not None:
        return update.start.to_google()

    master_start = master.get("start") or {}
    master_tz = master_start.get("timeZone")

    if locator.occurrence_datetime is not None:
        occurrence = locator.occurrence_datetime
        if occurrence.tzinfo is None:
            occurrence = occurrence.replace(tzinfo=UTC)
        boundary: dict[str, Any] = {"dateTime": occurrence.isoformat()}
        if master_tz:
            boundary["timeZone"] = master_tz
        return boundary

    if _boundary_kind(master_start) == "dateTime":
        boundary = {"dateTime": _wall_clock_on(split_date, master_start).isoformat()}
        if master_tz:
            boundary["timeZone"] = master_tz
        return boundary

    return {"date": split_date.isoformat()}


def _new_series_end(
    master: dict[str, Any], update: EventUpdate, start: dict[str, Any]
) -> dict[str, Any]:
    if update.end is not None:
        return update.end.to_google()

    master_kind, duration = _master_duration(master)
    start_kind = _boundary_kind(start)
    if start_kind != master_kind:
        raise InvalidArgumentError(
            "end must be provided when the new series start is "
            f"{'all-day' if start_kind == 'date' else 'timed'} but the original series is not"
        )

    if start_kind == "date":
        return {"date": (_parse_google_date(start["date"]) + duration).isoformat()}

    end: dict[str, Any] = {
        "dateTime": (_parse_google_datetime(start["dateTime"]) + duration).isoformat()
    }
    if start.get("timeZone"):
        end["timeZone"] = start["timeZone"]
    return end


def build_following_series(
    master: dict[str, Any],
    update: EventUpdate,
    locator: InstanceLocator,
    split_date: date,
) -> dict[str, Any]:
    """Build the insert body for the series that continues from *split_date*."""
    body: dict[str, Any] = {
        name: master[name] for name in _INHERITED_FIELDS if master.get(name) is not None
    }
    body.update(update.to_patch_body())

    start = _new_series_start(master, update, locator, split_date)
    body["start"] = start
    body["end"] = _new_series_end(master, update, start)
    body["recurrence"] = unbounded_recurrence(list(master.get("recurrence") or []))
    return body


async def update_recurring_event(
    api: CalendarApi,
    *,
    calendar_id: str,
    event_id: str,
    scope: EditScope | str,
    locator: InstanceLocator | None,
    update: EventUpdate,
    send_updates: str | None = None,
) -> ScopedEditResult:
    resolved = EditScope.parse(scope)
    series = EventRef.series(event_id)

    if resolved is EditScope.single_instance:
        instance = synthesize_instance_id(series.series_id, locator)
        logger.info("Patching single instance %s on calendar %s", instance, calendar_id)
        event = await api.patch_event(
            calendar_id, instance, update.to_patch_body(), send_updates=send_updates
        )
        return ScopedEditResult(
            scope=resolved,
            original_event_id=series.series_id,
            instance_id=instance.event_id,
            event=event,
        )

    if resolved is EditScope.entire_series:
        logger.info("Patching series %s on calendar %s", series, calendar_id)
        event = await api.patch_event(
            calendar_id, series, update.to_patch_body(), send_updates=send_updates
        )
        return ScopedEditResult(scope=resolved, original_event_id=series.series_id, event=event)

    return await _split_series(
        api,
        calendar_id=calendar_id,
        series=series,
        locator=locator or InstanceLocator(),
        update=update,
        send_updates=send_updates,
    )


async def _split_series(
    api: CalendarApi,
    *,
    calendar_id: str,
    series: EventRef,
    locator: InstanceLocator,
    update: EventUpdate,
    send_updates: str | None,
) -> ScopedEditResult:
    try:
        master = await api.get_event(calendar_id, series)
    except RemoteFailureError as exc:
        raise exc.retagged("fetch") from exc

    rules = list(master.get("recurrence") or [])
    if not rules:
        raise NotRecurringError(series.series_id)

    split_date = locator.split_date()
    steps = SplitSteps()
    # Computed before any write so an unusable start/end never leaves a truncated series.
    continuation = build_following_series(master, update, locator, split_date)
    truncated_rules = truncate_recurrence(rules, split_date)

    logger.info(
        "Splitting series %s on calendar %s at %s",
        series,
        calendar_id,
        split_date.isoformat(),
    )
    try:
        truncated = await api.patch_event(
            calendar_id, series, {"recurrence": truncated_rules}, send_updates=send_updates
        )
    except RemoteFailureError as exc:
        steps.truncate = "failed"
        raise exc.retagged(
            "truncate-patch",
            split={"original_event_id": series.series_id, **steps.as_dict()},
        ) from exc
    steps.truncate = "applied"

    try:
        created = await api.insert_event(calendar_id, continuation, send_updates=send_updates)
    except RemoteFailureError as exc:
        steps.insert = "failed"
        logger.warning(
            "Series %s was truncated before %s but the continuation insert failed",
            series,
            split_date.isoformat(),
        )
        raise exc.retagged(
            "insert",
            split={
                "original_event_id": series.series_id,
                "truncated_recurrence": truncated_rules,
                **steps.as_dict(),
            },
        ) from exc
    steps.insert = "applied"

    return ScopedEditResult(
        scope=EditScope.this_and_following,
        original_event_id=series.series_id,
        new_event_id=created.get("id"),
        event=created,
        truncated_event=truncated,
        steps=steps,
        split_date=split_date,
    )


async def delete_recurring_instance(
    api: CalendarApi,
    *,
    calendar_id: str,
    event_id: str,
    locator: InstanceLocator | None,
    send_updates: str | None = "all",
) -> EventRef:
    """Delete one occurrence of a series and return its instance reference."""
    instance = synthesize_instance_id(event_id, locator)
    logger.info("Deleting instance %s on calendar %s", instance, calendar_id)
    try:
        await api.delete_event(calendar_id, instance, send_updates=send_updates)
    except RemoteFailureError as exc:
        raise exc.retagged("delete", instance_id=instance.event_id) from exc
    return instance
