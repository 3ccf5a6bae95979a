"""UTC day and week boundary helpers."""

from datetime import date, datetime, timedelta, timezone

from loopeco.clock import as_utc, day_of, get_week_iso, next_midnight, next_week_start


class TestDayBoundaries:
    def test_day_of_uses_utc(self):
        # 23:30 at UTC-5 is already the next day in UTC
        local = datetime(2026, 3, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert day_of(local) == date(2026, 3, 2)

    def test_next_midnight(self):
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert next_midnight(now) == datetime(2026, 3, 2, tzinfo=timezone.utc)

    def test_next_midnight_at_exact_midnight(self):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert next_midnight(now) == datetime(2026, 3, 2, tzinfo=timezone.utc)

    def test_as_utc_attaches_tz_to_naive(self):
        assert as_utc(datetime(2026, 1, 1, 8, 0)).tzinfo == timezone.utc


class TestWeekBoundaries:
    def test_iso_week_format(self):
        assert get_week_iso(datetime(2026, 2, 25, tzinfo=timezone.utc)) == "2026-W09"

    def test_iso_year_differs_from_calendar_year(self):
        # 2027-01-01 is a Friday, still in ISO week 53 of 2026
        assert get_week_iso(datetime(2027, 1, 1, tzinfo=timezone.utc)) == "2026-W53"

    def test_next_week_start_is_monday(self):
        wednesday = datetime(2026, 2, 25, 15, 0, tzinfo=timezone.utc)
        start = next_week_start(wednesday)
        assert start == datetime(2026, 3, 2, tzinfo=timezone.utc)
        assert start.weekday() == 0

    def test_next_week_start_on_sunday_night(self):
        sunday = datetime(2026, 3, 1, 23, 59, tzinfo=timezone.utc)
        assert next_week_start(sunday) == datetime(2026, 3, 2, tzinfo=timezone.utc)
