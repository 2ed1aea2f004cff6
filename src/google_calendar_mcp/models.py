"""Tool input models shared by the event and recurring-event tools.

Field aliases follow the Google Calendar v3 resource names (``dateTime``,
``timeZone``, ``colorId``); snake_case names are accepted on input as well.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

RECURRENCE_LINE_PREFIXES = ("RRULE:", "EXRULE:", "RDATE", "EXDATE")


class SendUpdatesPolicy(StrEnum):
    """Controls whether attendees receive notifications for event changes."""

    all = "all"
    external_only = "externalOnly"
    none = "none"


EventVisibility = Literal["default", "public", "private", "confidential"]
EventTransparency = Literal["opaque", "transparent"]


class EventDateTime(BaseModel):
    """Start or end boundary of an event: either a date or a date-time."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    date_time: datetime | None = Field(default=None, alias="dateTime")
    date_value: date | None = Field(default=None, alias="date")
    time_zone: str | None = Field(default=None, alias="timeZone")

    @field_validator("time_zone")
    @classmethod
    def _normalize_time_zone(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @model_validator(mode="after")
    def _validate_shape(self) -> EventDateTime:
        if (self.date_value is None) == (self.date_time is None):
            raise ValueError("exactly one of date or dateTime must be provided")
        return self

    @property
    def all_day(self) -> bool:
        return self.date_value is not None

    def to_google(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.date_time is not None:
            body["dateTime"] = self.date_time.isoformat()
        if self.date_value is not None:
            body["date"] = self.date_value.isoformat()
        if self.time_zone is not None:
            body["timeZone"] = self.time_zone
        return body


class Attendee(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(min_length=1)
    optional: bool | None = None

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("email must be a non-empty string")
        return normalized


class ReminderOverride(BaseModel):
    model_config = ConfigDict(extra="forbid")

    method: Literal["email", "popup"]
    minutes: int = Field(ge=0)


class Reminders(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    use_default: bool | None = Field(default=None, alias="useDefault")
    overrides: list[ReminderOverride] | None = None


class EventUpdate(BaseModel):
    """Property changes applied by update and recurring-update tools.

    Only fields that were explicitly supplied end up in the PATCH body, so
    unchanged fields are never overwritten on the server.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    summary: str | None = None
    description: str | None = None
    location: str | None = None
    start: EventDateTime | None = None
    end: EventDateTime | None = None
    color_id: str | None = Field(default=None, alias="colorId")
    attendees: list[Attendee] | None = None
    visibility: EventVisibility | None = None
    transparency: EventTransparency | None = None

    def is_empty(self) -> bool:
        return not self.to_patch_body()

    def to_patch_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.summary is not None:
            body["summary"] = self.summary
        if self.description is not None:
            body["description"] = self.description
        if self.location is not None:
            body["location"] = self.location
        if self.start is not None:
            body["start"] = self.start.to_google()
        if self.end is not None:
            body["end"] = self.end.to_google()
        if self.color_id is not None:
            body["colorId"] = self.color_id
        if self.attendees is not None:
            body["attendees"] = [
                attendee.model_dump(exclude_none=True) for attendee in self.attendees
            ]
        if self.visibility is not None:
            body["visibility"] = self.visibility
        if self.transparency is not None:
            body["transparency"] = self.transparency
        return body


def normalize_recurrence_lines(recurrence: list[str] | None) -> list[str] | None:
    """Validate recurrence lines supplied by a caller creating an event."""
    if recurrence is None:
        return None
    normalized: list[str] = []
    for raw_line in recurrence:
        line = raw_line.strip()
        if not line:
            raise ValueError("recurrence rules must be non-empty strings")
        if "\n" in line or "\r" in line:
            raise ValueError("recurrence rules must not contain newline characters")
        if not line.upper().startswith(RECURRENCE_LINE_PREFIXES):
            raise ValueError(
                "recurrence rules must start with one of: " + ", ".join(RECURRENCE_LINE_PREFIXES)
            )
        if line.upper().startswith("RRULE:") and "FREQ=" not in line.upper():
            raise ValueError("RRULE lines must include a FREQ component")
        normalized.append(line)
    return normalized
