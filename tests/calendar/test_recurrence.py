"""Tests for instance id synthesis and RRULE truncation."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from google_calendar_mcp.errors import InvalidArgumentError
from google_calendar_mcp.recurrence import (
    EventRef,
    InstanceLocator,
    compact_utc_stamp,
    strip_recurrence_bounds,
    synthesize_instance_id,
    truncate_recurrence,
    truncation_boundary,
    unbounded_recurrence,
)

pytestmark = pytest.mark.unit

TOKYO = timezone(timedelta(hours=9))


# ---------------------------------------------------------------------------
# EventRef / InstanceLocator
# ---------------------------------------------------------------------------


class TestEventRef:
    def test_series_ref(self):
        ref = EventRef.series("  abc123 ")
        assert ref.kind == "series"
        assert ref.event_id == "abc123"
        assert str(ref) == "abc123"

    def test_instance_ref(self):
        ref = EventRef(series_id="abc123", occurrence="20240115")
        assert ref.kind == "instance"
        assert ref.event_id == "abc123_20240115"

    def test_empty_series_id_rejected(self):
        with pytest.raises(InvalidArgumentError):
            EventRef.series("   ")


class TestInstanceLocator:
    def test_date_and_matching_datetime_accepted(self):
        locator = InstanceLocator(
            occurrence_date=date(2024, 1, 15),
            occurrence_datetime=datetime(2024, 1, 15, 10, 0, tzinfo=TOKYO),
        )
        assert locator.split_date() == date(2024, 1, 15)

    def test_contradictory_date_and_datetime_rejected(self):
        with pytest.raises(ValidationError, match="different days"):
            InstanceLocator(
                occurrence_date=date(2024, 1, 16),
                occurrence_datetime=datetime(2024, 1, 15, 10, 0, tzinfo=TOKYO),
            )

    def test_split_date_uses_local_date_of_datetime(self):
        # 01:00 UTC on the 15th is still the 14th in New York; the written date wins.
        locator = InstanceLocator(
            occurrence_datetime=datetime(2024, 1, 14, 20, 0, tzinfo=timezone(timedelta(hours=-5)))
        )
        assert locator.split_date() == date(2024, 1, 14)

    def test_split_date_without_locator_fails(self):
        with pytest.raises(InvalidArgumentError):
            InstanceLocator().split_date()

    def test_is_empty(self):
        assert InstanceLocator().is_empty
        assert not InstanceLocator(occurrence_date=date(2024, 1, 1)).is_empty


# ---------------------------------------------------------------------------
# Instance id synthesis
# ---------------------------------------------------------------------------


class TestSynthesizeInstanceId:
    def test_datetime_is_normalized_to_utc(self):
        locator = InstanceLocator(occurrence_datetime=datetime(2024, 1, 15, 10, 0, tzinfo=TOKYO))
        ref = synthesize_instance_id("abc123", locator)
        assert ref.event_id == "abc123_20240115T010000Z"
        assert ref.series_id == "abc123"
        assert ref.kind == "instance"

    def test_equal_instants_in_different_offsets_give_same_id(self):
        tokyo = InstanceLocator(occurrence_datetime=datetime(2024, 1, 15, 10, 0, tzinfo=TOKYO))
        utc = InstanceLocator(occurrence_datetime=datetime(2024, 1, 15, 1, 0, tzinfo=UTC))
        assert synthesize_instance_id("s", tokyo) == synthesize_instance_id("s", utc)

    def test_naive_datetime_is_read_as_utc(self):
        locator = InstanceLocator(occurrence_datetime=datetime(2024, 6, 1, 14, 30))
        assert str(synthesize_instance_id("s", locator)) == "s_20240601T143000Z"

    def test_date_only(self):
        locator = InstanceLocator(occurrence_date=date(2024, 1, 15))
        assert str(synthesize_instance_id("abc123", locator)) == "abc123_20240115"

    def test_datetime_wins_over_date(self):
        locator = InstanceLocator(
            occurrence_date=date(2024, 1, 15),
            occurrence_datetime=datetime(2024, 1, 15, 23, 0, tzinfo=UTC),
        )
        assert str(synthesize_instance_id("s", locator)) == "s_20240115T230000Z"

    def test_utc_conversion_can_cross_the_date_line(self):
        locator = InstanceLocator(occurrence_datetime=datetime(2024, 3, 1, 8, 0, tzinfo=TOKYO))
        assert str(synthesize_instance_id("s", locator)) == "s_20240229T230000Z"

    @pytest.mark.parametrize("locator", [None, InstanceLocator()])
    def test_missing_locator_fails(self, locator):
        with pytest.raises(InvalidArgumentError):
            synthesize_instance_id("abc123", locator)

    def test_empty_series_id_fails(self):
        locator = InstanceLocator(occurrence_date=date(2024, 1, 15))
        with pytest.raises(InvalidArgumentError):
            synthesize_instance_id("", locator)

    def test_compact_utc_stamp(self):
        assert compact_utc_stamp(datetime(2024, 12, 31, 23, 59, 59, tzinfo=UTC)) == (
            "20241231T235959Z"
        )


# ---------------------------------------------------------------------------
# RRULE truncation
# ---------------------------------------------------------------------------


class TestTruncateRecurrence:
    def test_boundary_is_end_of_previous_day(self):
        assert truncation_boundary(date(2024, 3, 15)) == "20240314T235959Z"

    def test_boundary_handles_leap_day_and_year_start(self):
        assert truncation_boundary(date(2024, 3, 1)) == "20240229T235959Z"
        assert truncation_boundary(date(2025, 1, 1)) == "20241231T235959Z"

    def test_count_is_replaced_with_until(self):
        result = truncate_recurrence(["RRULE:FREQ=WEEKLY;COUNT=10"], date(2024, 3, 15))
        assert result == ["RRULE:FREQ=WEEKLY;UNTIL=20240314T235959Z"]

    def test_existing_until_in_middle_is_replaced(self):
        result = truncate_recurrence(
            ["RRULE:FREQ=DAILY;UNTIL=20250101T000000Z;INTERVAL=2"], date(2024, 3, 15)
        )
        assert result == ["RRULE:FREQ=DAILY;INTERVAL=2;UNTIL=20240314T235959Z"]

    def test_unbounded_rule_gets_until(self):
        result = truncate_recurrence(["RRULE:FREQ=WEEKLY;BYDAY=MO,WE"], date(2024, 3, 15))
        assert result == ["RRULE:FREQ=WEEKLY;BYDAY=MO,WE;UNTIL=20240314T235959Z"]

    def test_non_rrule_lines_pass_through(self):
        rules = ["RRULE:FREQ=WEEKLY;COUNT=4", "EXDATE;VALUE=DATE:20240301", "RDATE:20240310"]
        result = truncate_recurrence(rules, date(2024, 3, 15))
        assert result[1:] == ["EXDATE;VALUE=DATE:20240301", "RDATE:20240310"]

    def test_truncation_is_idempotent(self):
        rules = ["RRULE:FREQ=MONTHLY;COUNT=12;BYMONTHDAY=1", "EXDATE:20240201T090000Z"]
        once = truncate_recurrence(rules, date(2024, 6, 1))
        assert truncate_recurrence(once, date(2024, 6, 1)) == once

    @pytest.mark.parametrize(
        "rule",
        [
            "RRULE:FREQ=DAILY;COUNT=3",
            "RRULE:COUNT=3;FREQ=DAILY",
            "RRULE:FREQ=DAILY;UNTIL=20300101T000000Z",
            "RRULE:FREQ=DAILY;count=3",
            "RRULE:FREQ=DAILY;COUNT=3;UNTIL=20300101",
        ],
    )
    def test_result_never_carries_count(self, rule):
        [result] = truncate_recurrence([rule], date(2024, 1, 10))
        upper = result.upper()
        assert "COUNT=" not in upper
        assert upper.count("UNTIL=") == 1
        assert result.endswith("UNTIL=20240109T235959Z")

    def test_rule_with_only_bounds(self):
        assert truncate_recurrence(["RRULE:COUNT=5"], date(2024, 1, 10)) == [
            "RRULE:UNTIL=20240109T235959Z"
        ]


class TestUnboundedRecurrence:
    def test_strips_bounds_from_rrules_only(self):
        rules = ["RRULE:FREQ=WEEKLY;COUNT=10;BYDAY=MO", "EXDATE:20240108T140000Z"]
        assert unbounded_recurrence(rules) == [
            "RRULE:FREQ=WEEKLY;BYDAY=MO",
            "EXDATE:20240108T140000Z",
        ]

    def test_strip_leaves_other_lines(self):
        assert strip_recurrence_bounds("EXRULE:FREQ=YEARLY;COUNT=2") == "EXRULE:FREQ=YEARLY;COUNT=2"
