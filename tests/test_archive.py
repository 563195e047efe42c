import unittest
from datetime import date
from zoneinfo import ZoneInfo

from fakes import HEADER, FakeWorksheet, SyncEngineTestCase

from gigsync.archive import move_past_rows
from gigsync.errors import ConfigurationError
from gigsync.models import DEFAULT_COLUMN_KEYWORDS
from gigsync.source_rows import resolve_columns

PACIFIC = ZoneInfo("America/Los_Angeles")
TODAY = date(2025, 3, 1)


def _row(day: str, artist: str, venue: str = "Neumos") -> list[str]:
    return [day, artist, venue, "", "", "", ""]


class MovePastRowsTests(unittest.TestCase):
    def _move(self, source: FakeWorksheet, archive: FakeWorksheet):
        columns = resolve_columns(source.get_grid().display, DEFAULT_COLUMN_KEYWORDS)
        return move_past_rows(
            source=source,
            archive=archive,
            columns=columns,
            keywords=DEFAULT_COLUMN_KEYWORDS,
            today=TODAY,
            zone=PACIFIC,
        )

    def test_past_rows_move_and_today_stays(self) -> None:
        source = FakeWorksheet(
            "Upcoming",
            [HEADER, _row("2025-03-05", "Next Week"), _row("2025-02-20", "Old Band"), _row("2025-03-01", "Tonight")],
        )
        archive = FakeWorksheet("Archive", [])
        outcome = self._move(source, archive)

        self.assertEqual(outcome.count, 1)
        self.assertEqual(outcome.moved[0]["artist"], "Old Band")
        self.assertEqual(archive.rows, [HEADER, _row("2025-02-20", "Old Band")])
        self.assertEqual([row[1] for row in source.rows[1:]], ["Tonight", "Next Week"])

    def test_existing_archive_is_sorted_after_append(self) -> None:
        source = FakeWorksheet("Upcoming", [HEADER, _row("2025-02-20", "Moved")])
        archive = FakeWorksheet("Archive", [HEADER, _row("2025-02-25", "Already There")])
        self._move(source, archive)

        self.assertEqual([row[1] for row in archive.rows[1:]], ["Moved", "Already There"])
        self.assertEqual(archive.rows[0], HEADER)
        self.assertEqual(source.rows, [HEADER])

    def test_nothing_to_move_leaves_archive_untouched(self) -> None:
        source = FakeWorksheet("Upcoming", [HEADER, _row("2025-03-02", "Soon")])
        archive = FakeWorksheet("Archive", [])
        outcome = self._move(source, archive)

        self.assertEqual(outcome.count, 0)
        self.assertEqual(archive.rows, [])
        self.assertEqual(archive.calls, [])

    def test_unparseable_dates_are_not_archived(self) -> None:
        source = FakeWorksheet("Upcoming", [HEADER, _row("TBD", "Unknown"), _row("2025-01-01", "Old")])
        archive = FakeWorksheet("Archive", [])
        outcome = self._move(source, archive)

        self.assertEqual([item["artist"] for item in outcome.moved], ["Old"])
        self.assertEqual([row[1] for row in source.rows[1:]], ["Unknown"])

    def test_rows_are_copied_with_their_raw_values(self) -> None:
        original = ["2025-02-20", "Old Band", "Neumos", 4.5, "=SUM(1,2)", "", "012345678901234567890123"]
        source = FakeWorksheet("Upcoming", [HEADER, list(original)])
        archive = FakeWorksheet("Archive", [HEADER, _row("2025-01-10", "Earlier")])
        self._move(source, archive)

        self.assertEqual(archive.rows[2], original)
        self.assertIn("copy_rows", source.calls)

    def test_archive_without_header_fails_before_any_change(self) -> None:
        source = FakeWorksheet("Upcoming", [HEADER, _row("2025-02-20", "Old Band")])
        archive_rows = [["When", "Who", "Where"], ["2025-01-01", "x", "y"]]
        archive = FakeWorksheet("Archive", archive_rows)
        with self.assertRaises(ConfigurationError):
            self._move(source, archive)

        self.assertEqual(source.rows, [HEADER, _row("2025-02-20", "Old Band")])
        self.assertEqual(source.calls, [])
        self.assertEqual(archive.rows, archive_rows)
        self.assertEqual(archive.calls, [])


class RunArchiveTests(SyncEngineTestCase):
    def test_run_archive_records_audit_and_summary(self) -> None:
        self.tab.rows = [HEADER, _row("2025-02-27", "Last Week"), _row("2025-03-04", "Coming Up")]
        result = self.engine.run_archive(today=TODAY)

        self.assertEqual(result.status, "success", result.message)
        self.assertEqual(result.changes_applied, 1)
        self.assertTrue(result.message.startswith("Moved 1 rows from Upcoming to Archive"))
        self.assertEqual(self.archive.rows[1][1], "Last Week")
        audit = self.state_store.recent_audit_events(action="archive_row")
        self.assertEqual(audit[0]["details"]["artist"], "Last Week")
        self.assertEqual(self.calendar.calls, [])

    def test_daily_run_archives_then_reconciles(self) -> None:
        self.tab.rows = [HEADER, _row("2000-01-01", "Long Ago")]
        results = self.engine.run_daily(trigger="scheduled")

        self.assertEqual([result.status for result in results], ["success", "success"])
        self.assertEqual(len(self.archive.rows), 2)
        kinds = [run["kind"] for run in self.state_store.recent_sync_runs()]
        self.assertEqual(kinds, ["reconcile", "archive"])

    def test_archive_header_mismatch_is_an_error_run_with_tabs_untouched(self) -> None:
        self.tab.rows = [HEADER, _row("2025-02-27", "Last Week")]
        self.archive.rows = [["When", "Who", "Where"], ["2025-01-01", "x", "y"]]
        result = self.engine.run_archive(today=TODAY)

        self.assertEqual(result.status, "error")
        self.assertEqual(self.tab.rows, [HEADER, _row("2025-02-27", "Last Week")])
        self.assertEqual(self.tab.calls, [])
        self.assertEqual(self.archive.rows, [["When", "Who", "Where"], ["2025-01-01", "x", "y"]])
        self.assertEqual(self.archive.calls, [])
        run = self.state_store.recent_sync_runs()[0]
        self.assertEqual((run["kind"], run["status"]), ("archive", "error"))
        audit = self.state_store.recent_audit_events(run_id=run["id"])
        self.assertEqual([event["action"] for event in audit], ["run_error"])

    def test_archive_audit_events_are_linked_to_the_run(self) -> None:
        self.tab.rows = [HEADER, _row("2025-02-27", "Last Week")]
        self.engine.run_archive(today=TODAY)

        run = self.state_store.recent_sync_runs()[0]
        self.assertEqual(run["status"], "success")
        audit = self.state_store.recent_audit_events(run_id=run["id"])
        self.assertEqual([event["action"] for event in audit], ["archive_row"])


if __name__ == "__main__":
    unittest.main()
