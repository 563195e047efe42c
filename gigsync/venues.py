from __future__ import annotations

import re
from dataclasses import dataclass

from gigsync.models import VenuesConfig

DEFAULT_VENUES = {
    "Nectar Lounge": "412 N 36th St, Seattle, WA 98103",
    "Showbox SoDo": "1700 1st Ave S, Seattle, WA 98134",
    "The Showbox": "1426 1st Ave, Seattle, WA 98101",
    "Neumos": "925 E Pike St, Seattle, WA 98122",
    "Barboza": "925 E Pike St, Seattle, WA 98122",
    "The Crocodile": "2505 1st Ave, Seattle, WA 98121",
    "Tractor Tavern": "5213 Ballard Ave NW, Seattle, WA 98107",
    "Sunset Tavern": "5433 Ballard Ave NW, Seattle, WA 98107",
    "Paramount Theatre": "911 Pine St, Seattle, WA 98101",
    "Moore Theatre": "1932 2nd Ave, Seattle, WA 98101",
    "Neptune Theatre": "1303 NE 45th St, Seattle, WA 98105",
    "WAMU Theater": "800 Occidental Ave S, Seattle, WA 98134",
    "Climate Pledge Arena": "334 1st Ave N, Seattle, WA 98109",
    "Gorge Amphitheatre": "754 Silica Rd NW, George, WA 98848",
}
DEFAULT_ALIASES = {
    "Nectar": "Nectar Lounge",
    "Showbox": "The Showbox",
    "Showbox at the Market": "The Showbox",
    "Crocodile": "The Crocodile",
    "Tractor": "Tractor Tavern",
    "Sunset": "Sunset Tavern",
    "Paramount": "Paramount Theatre",
    "Moore": "Moore Theatre",
    "Neptune": "Neptune Theatre",
    "The Gorge": "Gorge Amphitheatre",
    "Key Arena": "Climate Pledge Arena",
    "KeyArena": "Climate Pledge Arena",
}
# Evaluated in order; SoDo must be tested before the plain Showbox rule.
DEFAULT_RULES = [
    (r"show\s*box.*so\s*do|so\s*do.*show\s*box", "Showbox SoDo"),
    (r"show\s*box", "The Showbox"),
    (r"neumo", "Neumos"),
    (r"croc", "The Crocodile"),
    (r"nectar", "Nectar Lounge"),
    (r"wamu", "WAMU Theater"),
    (r"climate\s*pledge", "Climate Pledge Arena"),
    (r"gorge", "Gorge Amphitheatre"),
]


def _squash(value: str) -> str:
    return re.sub(r"\s+", " ", str(value or "").strip()).casefold()


@dataclass
class VenueMatch:
    name: str
    address: str
    source: str
    original: str

    @property
    def changed(self) -> bool:
        return self.name != self.original


class VenueAliasTable:
    def __init__(
        self,
        canonical: dict[str, str],
        aliases: dict[str, str],
        rules: list[tuple[str, str]],
    ) -> None:
        self.canonical = dict(canonical)
        self._aliases = {key.strip().casefold(): value for key, value in aliases.items()}
        self.rules = [(re.compile(pattern, re.IGNORECASE), target) for pattern, target in rules]
        self._squashed = {_squash(name): name for name in self.canonical}

    @classmethod
    def from_config(cls, config: VenuesConfig) -> "VenueAliasTable":
        canonical = dict(DEFAULT_VENUES)
        canonical.update(config.canonical)
        aliases = dict(DEFAULT_ALIASES)
        aliases.update(config.aliases)
        # Configured rules take precedence over the built-in ones.
        rules = [(item["pattern"], item["canonical"]) for item in config.rules] + list(DEFAULT_RULES)
        return cls(canonical, aliases, rules)

    def address_for(self, name: str) -> str:
        return self.canonical.get(name, "")

    def resolve(self, text: str) -> VenueMatch:
        original = str(text or "").strip()
        if original in self.canonical:
            return VenueMatch(original, self.address_for(original), "canonical", original)
        alias_target = self._aliases.get(original.casefold())
        if alias_target:
            return VenueMatch(alias_target, self.address_for(alias_target), "alias", original)
        for pattern, target in self.rules:
            if pattern.search(original):
                return VenueMatch(target, self.address_for(target), "rule", original)
        squashed = self._squashed.get(_squash(original))
        if squashed:
            return VenueMatch(squashed, self.address_for(squashed), "normalized", original)
        return VenueMatch(original, "", "unknown", original)


def format_location(match: VenueMatch) -> str:
    if match.address:
        return f"{match.name}\n{match.address}"
    return match.name
