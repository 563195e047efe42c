import unittest

from gigsync.models import VenuesConfig
from gigsync.venues import DEFAULT_VENUES, VenueAliasTable, VenueMatch, format_location


class VenueAliasTableTests(unittest.TestCase):
    def setUp(self) -> None:
        self.table = VenueAliasTable.from_config(VenuesConfig())

    def test_alias_resolves_to_canonical(self) -> None:
        match = self.table.resolve("Nectar")
        self.assertEqual(match.name, "Nectar Lounge")
        self.assertEqual(match.source, "alias")
        self.assertTrue(match.changed)
        self.assertEqual(match.address, DEFAULT_VENUES["Nectar Lounge"])

    def test_alias_lookup_ignores_case(self) -> None:
        self.assertEqual(self.table.resolve("  nectar ").name, "Nectar Lounge")

    def test_fuzzy_rule_resolves(self) -> None:
        match = self.table.resolve("Sodo Showbox")
        self.assertEqual(match.name, "Showbox SoDo")
        self.assertEqual(match.source, "rule")

    def test_canonical_name_is_never_rewritten_by_rules(self) -> None:
        match = self.table.resolve("Showbox SoDo")
        self.assertEqual(match.name, "Showbox SoDo")
        self.assertEqual(match.source, "canonical")
        self.assertFalse(match.changed)

    def test_normalized_match_after_rules(self) -> None:
        match = self.table.resolve("neptune   THEATRE")
        self.assertEqual(match.name, "Neptune Theatre")
        self.assertEqual(match.source, "normalized")

    def test_unknown_venue_falls_back_to_trimmed_input(self) -> None:
        match = self.table.resolve("  Backyard Barn ")
        self.assertEqual(match.name, "Backyard Barn")
        self.assertEqual(match.source, "unknown")
        self.assertFalse(match.changed)
        self.assertEqual(format_location(match), "Backyard Barn")

    def test_rules_are_evaluated_in_list_order(self) -> None:
        table = VenueAliasTable({}, {}, [(r"hall", "First Hall"), (r"music hall", "Second Hall")])
        self.assertEqual(table.resolve("Music Hall").name, "First Hall")

    def test_configured_entries_extend_defaults(self) -> None:
        table = VenueAliasTable.from_config(
            VenuesConfig.from_dict(
                {
                    "canonical": {"Chop Suey": "1325 E Madison St, Seattle, WA 98122"},
                    "aliases": {"Chop": "Chop Suey"},
                    "rules": [{"pattern": "show\\s*box", "canonical": "Showbox SoDo"}],
                }
            )
        )
        self.assertEqual(table.resolve("Chop").name, "Chop Suey")
        # Configured rules run ahead of the built-in ones.
        self.assertEqual(table.resolve("showbox downtown").name, "Showbox SoDo")
        self.assertEqual(table.resolve("Nectar").name, "Nectar Lounge")

    def test_resolution_is_deterministic(self) -> None:
        results = {self.table.resolve("croc").name for _ in range(5)}
        self.assertEqual(results, {"The Crocodile"})


class FormatLocationTests(unittest.TestCase):
    def test_name_and_address_are_newline_joined(self) -> None:
        match = VenueMatch("Nectar Lounge", "412 N 36th St", "alias", "Nectar")
        self.assertEqual(format_location(match), "Nectar Lounge\n412 N 36th St")


if __name__ == "__main__":
    unittest.main()
