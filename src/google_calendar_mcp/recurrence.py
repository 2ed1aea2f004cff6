"""Instance addressing and RRULE text helpers for recurring events.

Google Calendar exposes one occurrence of a recurring series as a sub-resource
of the master event, addressed as ``<seriesId>_<stamp>`` where the stamp is the
occurrence start in compact UTC form (``20240115T010000Z``) or, for all-day
series, the compact date (``20240115``). ``synthesize_instance_id`` is the only
place that convention is encoded; callers pass ``EventRef`` values around.

RRULE handling is deliberately textual: bounds are stripped and re-appended,
nothing is expanded or evaluated locally.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, model_validator

from google_calendar_mcp.errors import InvalidArgumentError

RRULE_PREFIX = "RRULE:"
_BOUND_KEYS = frozenset({"UNTIL", "COUNT"})


@dataclass(frozen=True)
class EventRef:
    """Tagged identifier for either a series master or one of its instances."""

    series_id: str
    occurrence: str | None = None

    @classmethod
    def series(cls, series_id: str) -> EventRef:
        normalized = series_id.strip()
        if not normalized:
            raise InvalidArgumentError("event_id must be a non-empty string")
        return cls(series_id=normalized)

    @property
    def kind(self) -> Literal["series", "instance"]:
        return "series" if self.occurrence is None else "instance"

    @property
    def event_id(self) -> str:
        if self.occurrence is None:
            return self.series_id
        return f"{self.series_id}_{self.occurrence}"

    def __str__(self) -> str:
        return self.event_id


class InstanceLocator(BaseModel):
    """Identifies one occurrence by calendar date and/or start instant.

    A naive ``occurrence_datetime`` is read as UTC. When both fields are set the
    datetime's own (local) date must equal ``occurrence_date``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    occurrence_date: date | None = None
    occurrence_datetime: datetime | None = None

    @model_validator(mode="after")
    def _validate_consistent(self) -> InstanceLocator:
        if (
            self.occurrence_date is not None
            and self.occurrence_datetime is not None
            and self.occurrence_datetime.date() != self.occurrence_date
        ):
            raise ValueError(
                "occurrence_date and occurrence_datetime refer to different days: "
                f"{self.occurrence_date.isoformat()} vs {self.occurrence_datetime.isoformat()}"
            )
        return self

    @property
    def is_empty(self) -> bool:
        return self.occurrence_date is None and self.occurrence_datetime is None

    def split_date(self) -> date:
        """Return the calendar date a series split happens on.

        Prefers the explicit date, then the date portion of the datetime as
        written (in its own offset, not converted to UTC).
        """
        if self.occurrence_date is not None:
            return self.occurrence_date
        if self.occurrence_datetime is not None:
            return self.occurrence_datetime.date()
        raise InvalidArgumentError("instance_date or instance_datetime must be provided")

    def describe(self) -> str:
        if self.occurrence_datetime is not None:
            return self.occurrence_datetime.isoformat()
        if self.occurrence_date is not None:
            return self.occurrence_date.isoformat()
        return "(none)"


def compact_utc_stamp(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def synthesize_instance_id(series_id: str, locator: InstanceLocator | None) -> EventRef:
    """Build the identifier Google uses for a single occurrence of *series_id*.

    The datetime locator wins when both are present, e.g. ``abc123`` at
    ``2024-01-15T10:00:00+09:00`` becomes ``abc123_20240115T010000Z``.
    """
    series = EventRef.series(series_id)
    if locator is None or locator.is_empty:
        raise InvalidArgumentError("instance_date or instance_datetime must be provided")

    if locator.occurrence_datetime is not None:
        occurrence = compact_utc_stamp(locator.occurrence_datetime)
    else:
        assert locator.occurrence_date is not None
        occurrence = locator.occurrence_date.strftime("%Y%m%d")
    return EventRef(series_id=series.series_id, occurrence=occurrence)


def strip_recurrence_bounds(rule: str) -> str:
    """Remove every ``UNTIL=`` and ``COUNT=`` clause from an ``RRULE:`` line.

    Other lines are returned unchanged.
    """
    if not rule.startswith(RRULE_PREFIX):
        return rule
    parts = rule[len(RRULE_PREFIX) :].split(";")
    kept = [
        part
        for part in parts
        if part and part.split("=", 1)[0].strip().upper() not in _BOUND_KEYS
    ]
    return RRULE_PREFIX + ";".join(kept)


def truncation_boundary(split_date: date) -> str:
    """End-of-day UTC stamp for the day before *split_date*."""
    last_day = split_date - timedelta(days=1)
    return f"{last_day.strftime('%Y%m%d')}T235959Z"


def truncate_recurrence(rules: list[str], split_date: date) -> list[str]:
    """Terminate every RRULE strictly before *split_date*.

    Existing bounds are stripped before the new ``UNTIL`` is appended, so the
    result never carries both ``UNTIL`` and ``COUNT`` and re-applying with the
    same date is a no-op.
    """
    until = truncation_boundary(split_date)
    truncated: list[str] = []
    for rule in rules:
        if rule.startswith(RRULE_PREFIX):
            base = strip_recurrence_bounds(rule)
            separator = "" if base == RRULE_PREFIX else ";"
            truncated.append(f"{base}{separator}UNTIL={until}")
        else:
            truncated.append(rule)
    return truncated


def unbounded_recurrence(rules: list[str]) -> list[str]:
    return [strip_recurrence_bounds(rule) for rule in rules]
