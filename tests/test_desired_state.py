import unittest
from datetime import date
from zoneinfo import ZoneInfo

from fakes import HEADER

from gigsync.desired_state import build_description, build_desired_state
from gigsync.identity import fingerprint
from gigsync.models import DEFAULT_COLUMN_KEYWORDS, SourceRow, VenuesConfig
from gigsync.source_rows import SheetGrid, read_source_rows, resolve_columns
from gigsync.venues import VenueAliasTable

PACIFIC = ZoneInfo("America/Los_Angeles")
TODAY = date(2025, 3, 1)


def _build(rows, today=TODAY, horizon_years=2):
    grid = SheetGrid(values=[HEADER] + rows)
    columns = resolve_columns(grid.values, DEFAULT_COLUMN_KEYWORDS)
    return build_desired_state(
        read_source_rows(grid, columns),
        columns,
        VenueAliasTable.from_config(VenuesConfig()),
        today,
        horizon_years,
        PACIFIC,
    )


class DesiredStateTests(unittest.TestCase):
    def test_canonical_event_from_row(self) -> None:
        state = _build([["2025-03-01", "Test Band", "Nectar", "5", "Front row", "https://tix", ""]])
        identity = fingerprint("2025-03-01", "Test Band", "Nectar Lounge")
        self.assertEqual(list(state.events), [identity])
        event = state.events[identity]
        self.assertEqual(event.title, "Test Band")
        self.assertEqual(event.day_key, "2025-03-01")
        self.assertEqual(event.location, "Nectar Lounge\n412 N 36th St, Seattle, WA 98103")
        self.assertEqual(event.description, "Front row\nRating: 5\nTicket: https://tix")

    def test_identity_and_venue_writes_queued(self) -> None:
        state = _build([["2025-03-01", "Test Band", "Nectar", "", "", "", ""]])
        identity = fingerprint("2025-03-01", "Test Band", "Nectar Lounge")
        self.assertEqual([(w.row_index, w.column_index, w.value) for w in state.venue_writes], [(1, 2, "Nectar Lounge")])
        self.assertEqual([(w.row_index, w.column_index, w.value) for w in state.identity_writes], [(1, 6, identity)])

    def test_no_writes_when_row_already_canonical(self) -> None:
        identity = fingerprint("2025-03-01", "Test Band", "Nectar Lounge")
        state = _build([["2025-03-01", "Test Band", "Nectar Lounge", "", "", "", identity]])
        self.assertEqual(state.writes, [])

    def test_window_boundaries(self) -> None:
        state = _build(
            [
                ["2025-02-28", "Yesterday", "Neumos", "", "", "", ""],
                ["2025-03-01", "Today", "Neumos", "", "", "", ""],
                ["2027-02-28", "Last Day", "Neumos", "", "", "", ""],
                ["2027-03-01", "Horizon", "Neumos", "", "", "", ""],
            ]
        )
        titles = sorted(event.title for event in state.events.values())
        self.assertEqual(titles, ["Last Day", "Today"])
        self.assertEqual(state.out_of_window, 2)

    def test_unparseable_and_incomplete_rows_are_skipped(self) -> None:
        state = _build(
            [
                ["sometime", "No Date", "Neumos", "", "", "", ""],
                ["2025-03-05", "", "Neumos", "", "", "", ""],
                ["2025-03-06", "Kept", "Neumos", "", "", "", ""],
            ]
        )
        self.assertEqual([event.title for event in state.events.values()], ["Kept"])
        self.assertEqual(state.skipped, 2)
        self.assertEqual(state.scanned, 3)

    def test_rating_notes_ticket_do_not_change_identity(self) -> None:
        before = _build([["2025-03-01", "Test Band", "Nectar", "3", "old", "", ""]])
        after = _build([["2025-03-01", "Test Band", "Nectar", "5", "new notes", "https://tix", ""]])
        self.assertEqual(list(before.events), list(after.events))

    def test_duplicate_identity_last_row_wins(self) -> None:
        state = _build(
            [
                ["2025-03-01", "Test Band", "Nectar", "", "first", "", ""],
                ["2025-03-01", "test band", "Nectar Lounge", "", "second", "", ""],
            ]
        )
        self.assertEqual(len(state.events), 1)
        event = next(iter(state.events.values()))
        self.assertEqual(event.description, "second")
        self.assertEqual(event.row_index, 2)
        # Both rows still get their identity cell filled in.
        self.assertEqual(len(state.identity_writes), 2)


class BuildDescriptionTests(unittest.TestCase):
    def test_empty_fields_are_omitted(self) -> None:
        self.assertEqual(build_description(SourceRow(row_index=1)), "")
        self.assertEqual(build_description(SourceRow(row_index=1, rating="4")), "Rating: 4")


if __name__ == "__main__":
    unittest.main()
