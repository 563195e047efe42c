from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, tzinfo
from typing import Iterable

from gigsync.dates import add_years, to_day_key
from gigsync.errors import RowParseError
from gigsync.identity import fingerprint
from gigsync.models import CanonicalEvent, CellWrite, SourceRow
from gigsync.source_rows import ColumnMap, require_actionable
from gigsync.venues import VenueAliasTable, format_location

logger = logging.getLogger(__name__)


@dataclass
class DesiredState:
    events: dict[str, CanonicalEvent] = field(default_factory=dict)
    writes: list[CellWrite] = field(default_factory=list)
    scanned: int = 0
    skipped: int = 0
    out_of_window: int = 0

    @property
    def identity_writes(self) -> list[CellWrite]:
        return [write for write in self.writes if write.kind == "identity"]

    @property
    def venue_writes(self) -> list[CellWrite]:
        return [write for write in self.writes if write.kind == "venue"]


def build_description(row: SourceRow) -> str:
    parts: list[str] = []
    if row.notes.strip():
        parts.append(row.notes.strip())
    if row.rating.strip():
        parts.append(f"Rating: {row.rating.strip()}")
    if row.ticket.strip():
        parts.append(f"Ticket: {row.ticket.strip()}")
    return "\n".join(parts)


def build_desired_state(
    rows: Iterable[SourceRow],
    columns: ColumnMap,
    venues: VenueAliasTable,
    today: date,
    horizon_years: int,
    zone: tzinfo,
) -> DesiredState:
    state = DesiredState()
    horizon = add_years(today, horizon_years)
    today_key = today.isoformat()
    horizon_key = horizon.isoformat()
    venue_column = columns.get("venue")
    identity_column = columns.get("identity")

    for row in rows:
        state.scanned += 1
        try:
            require_actionable(row)
            day_key = to_day_key(row.date_raw, row.date_display, zone)
            if day_key is None:
                raise RowParseError(row.row_index, f"unparseable date {row.date_display!r}")
        except RowParseError as exc:
            logger.debug("Skipping %s", exc)
            state.skipped += 1
            continue
        if day_key < today_key or day_key >= horizon_key:
            state.out_of_window += 1
            continue

        match = venues.resolve(row.venue)
        if match.changed and venue_column is not None:
            state.writes.append(CellWrite(row.row_index, venue_column, match.name, kind="venue"))

        identity = fingerprint(day_key, row.artist, match.name)
        if identity_column is not None and row.identity != identity:
            state.writes.append(CellWrite(row.row_index, identity_column, identity, kind="identity"))

        if identity in state.events:
            logger.debug(
                "Row %d shares identity %s with row %d; later row wins",
                row.row_index + 1,
                identity,
                state.events[identity].row_index + 1,
            )
        state.events[identity] = CanonicalEvent(
            identity=identity,
            day_key=day_key,
            title=row.artist.strip(),
            location=format_location(match),
            description=build_description(row),
            row_index=row.row_index,
        )
    return state
