import unittest
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from gigsync.dates import add_years, get_zone, parse_date_text, parse_local_noon, to_day_key, today_in

PACIFIC = ZoneInfo("America/Los_Angeles")


class ParseDateTextTests(unittest.TestCase):
    def test_recognized_forms(self) -> None:
        self.assertEqual(parse_date_text("2025-03-01"), date(2025, 3, 1))
        self.assertEqual(parse_date_text("2025-03-01 20:00:00"), date(2025, 3, 1))
        self.assertEqual(parse_date_text("1-Mar-2025"), date(2025, 3, 1))
        self.assertEqual(parse_date_text("3/1/2025"), date(2025, 3, 1))
        self.assertEqual(parse_date_text("March 1, 2025"), date(2025, 3, 1))

    def test_unparseable_returns_none(self) -> None:
        self.assertIsNone(parse_date_text(""))
        self.assertIsNone(parse_date_text("someday soon"))
        self.assertIsNone(parse_date_text("2025-02-30"))
        self.assertIsNone(parse_date_text("1-Foo-2025"))


class DayKeyTests(unittest.TestCase):
    def test_display_string_wins_over_utc_midnight_raw(self) -> None:
        raw = datetime(2025, 3, 1, 0, 0, tzinfo=timezone.utc)
        self.assertEqual(to_day_key(raw, "2025-03-01", PACIFIC), "2025-03-01")
        # Without the display string the same instant is still Feb 28 in Seattle.
        self.assertEqual(to_day_key(raw, "", PACIFIC), "2025-02-28")

    def test_raw_fallbacks(self) -> None:
        self.assertEqual(to_day_key(date(2025, 3, 1), "", PACIFIC), "2025-03-01")
        self.assertEqual(to_day_key(45717, "", PACIFIC), "2025-03-01")
        self.assertEqual(to_day_key("3/1/2025", "", PACIFIC), "2025-03-01")
        self.assertEqual(to_day_key(date(2025, 3, 1), "not a date", PACIFIC), "2025-03-01")
        self.assertIsNone(to_day_key(None, "", PACIFIC))
        self.assertIsNone(to_day_key(True, "", PACIFIC))

    def test_parsed_dates_anchor_at_local_noon(self) -> None:
        anchored = parse_local_noon(None, "2025-11-02", PACIFIC)
        self.assertEqual(anchored.hour, 12)
        self.assertEqual(anchored.tzinfo, PACIFIC)
        self.assertEqual(anchored.date(), date(2025, 11, 2))


class HelperTests(unittest.TestCase):
    def test_add_years_clamps_leap_day(self) -> None:
        self.assertEqual(add_years(date(2024, 2, 29), 1), date(2025, 2, 28))
        self.assertEqual(add_years(date(2025, 3, 1), 2), date(2027, 3, 1))

    def test_today_in_zone(self) -> None:
        now = datetime(2025, 3, 1, 3, 0, tzinfo=timezone.utc)
        self.assertEqual(today_in(PACIFIC, now), date(2025, 2, 28))

    def test_unknown_zone_falls_back_to_utc(self) -> None:
        self.assertEqual(get_zone("Nowhere/Special"), timezone.utc)


if __name__ == "__main__":
    unittest.main()
