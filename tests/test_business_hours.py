"""
Tests for the business-hours calendar.
"""
import logging
from datetime import datetime, time, timedelta, timezone

import pytest

from serviflow.sla.domain import (
    BusinessHoursProfile,
    add_business_minutes,
    business_minutes_remaining,
    elapsed_business_minutes,
    is_within_business_hours,
    next_business_start,
    parse_days_of_week,
    parse_time,
)
from serviflow.sla.domain.business_hours import ALL_DAYS, MAX_SEARCH_DAYS

UTC = timezone.utc

OFFICE = BusinessHoursProfile(
    id=1,
    timezone="UTC",
    days_of_week=(1, 2, 3, 4, 5),
    start_time=time(9, 0),
    end_time=time(17, 0),
)
NEW_YORK_OFFICE = BusinessHoursProfile(
    id=2,
    timezone="America/New_York",
    days_of_week=(1, 2, 3, 4, 5),
    start_time=time(9, 0),
    end_time=time(17, 0),
)
ALWAYS = BusinessHoursProfile(id=3, is_24x7=True)

MONDAY = datetime(2026, 3, 2, tzinfo=UTC)
FRIDAY = datetime(2026, 3, 6, tzinfo=UTC)
SATURDAY = datetime(2026, 3, 7, tzinfo=UTC)


def at(day: datetime, hour: int, minute: int = 0) -> datetime:
    return day.replace(hour=hour, minute=minute)


class TestElapsedBusinessMinutes:

    @pytest.mark.parametrize("profile", [None, ALWAYS])
    def test_wall_clock_without_calendar(self, profile):
        start = at(MONDAY, 8)
        end = start + timedelta(hours=30, minutes=7)
        assert elapsed_business_minutes(start, end, profile) == 30 * 60 + 7

    def test_wall_clock_is_signed(self):
        start = at(MONDAY, 12)
        assert elapsed_business_minutes(start, start - timedelta(minutes=90), ALWAYS) == -90

    def test_counts_only_the_daily_window(self):
        assert elapsed_business_minutes(at(MONDAY, 8), at(MONDAY, 18), OFFICE) == 480

    def test_skips_weekend(self):
        monday_next = MONDAY + timedelta(days=7)
        assert elapsed_business_minutes(at(FRIDAY, 16), at(monday_next, 10), OFFICE) == 120

    def test_weekend_only_span_is_zero(self):
        sunday = SATURDAY + timedelta(days=1)
        assert elapsed_business_minutes(at(SATURDAY, 10), at(sunday, 12), OFFICE) == 0

    def test_never_negative_with_calendar(self):
        assert elapsed_business_minutes(at(MONDAY, 12), at(MONDAY, 10), OFFICE) == 0

    def test_degenerate_profile_falls_back_to_wall_clock(self):
        inverted = BusinessHoursProfile(id=4, start_time=time(17, 0), end_time=time(9, 0))
        assert elapsed_business_minutes(at(MONDAY, 8), at(MONDAY, 9), inverted) == 60
        assert elapsed_business_minutes(at(MONDAY, 9), at(MONDAY, 8), inverted) == 0

    def test_naive_datetimes_are_read_as_utc(self):
        start = at(MONDAY, 10).replace(tzinfo=None)
        end = at(MONDAY, 11).replace(tzinfo=None)
        assert elapsed_business_minutes(start, end, OFFICE) == 60

    def test_spans_dst_change_in_profile_timezone(self):
        # 16:00 EST Friday to 10:00 EDT Monday, clocks sprang forward on Sunday 8 March
        start = datetime(2026, 3, 6, 21, 0, tzinfo=UTC)
        end = datetime(2026, 3, 9, 14, 0, tzinfo=UTC)
        assert elapsed_business_minutes(start, end, NEW_YORK_OFFICE) == 120

    def test_window_on_dst_day_has_its_real_length(self):
        mornings = BusinessHoursProfile(
            id=5,
            timezone="America/New_York",
            days_of_week=ALL_DAYS,
            start_time=time(0, 0),
            end_time=time(12, 0),
        )
        # Local midnight 8 March (EST) to local midnight 9 March (EDT)
        start = datetime(2026, 3, 8, 5, 0, tzinfo=UTC)
        end = datetime(2026, 3, 9, 4, 0, tzinfo=UTC)
        assert elapsed_business_minutes(start, end, mornings) == 11 * 60


class TestAddBusinessMinutes:

    def test_wall_clock_without_calendar(self):
        assert add_business_minutes(at(MONDAY, 9), 240, None) == at(MONDAY, 13)
        assert add_business_minutes(at(SATURDAY, 9), 60, ALWAYS) == at(SATURDAY, 10)

    def test_rolls_over_the_weekend(self):
        monday_next = MONDAY + timedelta(days=7)
        assert add_business_minutes(at(FRIDAY, 16), 120, OFFICE) == at(monday_next, 10)

    def test_starting_outside_hours_waits_for_opening(self):
        monday_next = MONDAY + timedelta(days=7)
        assert add_business_minutes(at(SATURDAY, 12), 30, OFFICE) == at(monday_next, 9, 30)

    def test_is_inverse_of_elapsed(self):
        start = at(MONDAY, 15, 45)
        due = add_business_minutes(start, 1000, OFFICE)
        assert elapsed_business_minutes(start, due, OFFICE) == pytest.approx(1000)

    def test_dst_transition(self):
        # Friday 16:00 EST plus two working hours lands at Monday 10:00 EDT
        due = add_business_minutes(datetime(2026, 3, 6, 21, 0, tzinfo=UTC), 120, NEW_YORK_OFFICE)
        assert due == datetime(2026, 3, 9, 14, 0, tzinfo=UTC)


class TestCalendarQueries:

    def test_is_within_business_hours(self):
        assert is_within_business_hours(at(MONDAY, 10), OFFICE)
        assert not is_within_business_hours(at(MONDAY, 17), OFFICE)
        assert not is_within_business_hours(at(SATURDAY, 10), OFFICE)
        assert is_within_business_hours(at(SATURDAY, 3), ALWAYS)

    def test_next_business_start(self):
        monday_next = MONDAY + timedelta(days=7)
        assert next_business_start(at(SATURDAY, 12), OFFICE) == at(monday_next, 9)
        assert next_business_start(at(MONDAY, 10), OFFICE) == at(MONDAY, 10)
        assert next_business_start(at(MONDAY, 18), OFFICE) == at(MONDAY + timedelta(days=1), 9)

    def test_business_minutes_remaining(self):
        assert business_minutes_remaining(at(MONDAY, 10), at(MONDAY, 12), OFFICE) == 120
        assert business_minutes_remaining(at(MONDAY, 12), at(MONDAY, 10), OFFICE) == -120
        assert business_minutes_remaining(at(MONDAY, 10), None, OFFICE) is None


class TestSearchLimit:

    def test_add_beyond_the_limit_is_logged(self, caplog):
        minutes = 480 * MAX_SEARCH_DAYS

        with caplog.at_level(logging.WARNING, logger="serviflow.sla.domain.business_hours"):
            due = add_business_minutes(at(MONDAY, 9), minutes, OFFICE)

        assert due == at(MONDAY, 9) + timedelta(minutes=minutes)
        assert "Business-hours search limit reached, result is approximate" in caplog.messages

    def test_elapsed_beyond_the_limit_is_logged(self, caplog):
        end = MONDAY + timedelta(days=MAX_SEARCH_DAYS + 30)

        with caplog.at_level(logging.WARNING, logger="serviflow.sla.domain.business_hours"):
            elapsed_business_minutes(at(MONDAY, 9), end, OFFICE)

        assert len(caplog.records) == 1

    def test_ordinary_spans_log_nothing(self, caplog):
        with caplog.at_level(logging.WARNING, logger="serviflow.sla.domain.business_hours"):
            add_business_minutes(at(FRIDAY, 16), 120, OFFICE)
            elapsed_business_minutes(at(FRIDAY, 16), at(MONDAY + timedelta(days=7), 10), OFFICE)

        assert caplog.records == []


class TestParsing:

    @pytest.mark.parametrize("value, expected", [
        ([1, 2, 3], (1, 2, 3)),
        ("[5, 1, 5]", (1, 5)),
        ([0, 8, 3], (3,)),
        ([], ALL_DAYS),
        (None, ALL_DAYS),
        ("weekdays", ALL_DAYS),
        ({"mon": True}, ALL_DAYS),
    ])
    def test_parse_days_of_week(self, value, expected):
        assert parse_days_of_week(value) == expected

    @pytest.mark.parametrize("value, expected", [
        ("08:30", time(8, 30)),
        ("08:30:15", time(8, 30)),
        ("17", time(17, 0)),
        (time(6, 15), time(6, 15)),
        ("", time(0, 0)),
        ("noon", time(0, 0)),
    ])
    def test_parse_time(self, value, expected):
        assert parse_time(value) == expected

    def test_unknown_timezone_reads_as_utc(self):
        profile = BusinessHoursProfile(id=9, timezone="Mars/Olympus_Mons")
        assert profile.tzinfo == timezone.utc
