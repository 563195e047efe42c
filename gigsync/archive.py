from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, tzinfo
from typing import Any

from gigsync.dates import to_day_key
from gigsync.source_rows import ColumnMap, compact_and_sort, read_source_rows, resolve_columns

logger = logging.getLogger(__name__)


@dataclass
class ArchiveOutcome:
    moved: list[dict[str, Any]] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.moved)


def _archive_columns(archive: Any, columns: ColumnMap, keywords: dict[str, str], scan_rows: int) -> tuple[int, ColumnMap]:
    archive_grid = archive.get_grid()
    if len(archive_grid) == 0:
        # The source header is copied to the top of an empty archive.
        return 0, ColumnMap(header_row=0, indexes=dict(columns.indexes))
    return len(archive_grid), resolve_columns(archive_grid.display, keywords, scan_rows=scan_rows)


def move_past_rows(
    *,
    source: Any,
    archive: Any,
    columns: ColumnMap,
    keywords: dict[str, str],
    today: date,
    zone: tzinfo,
    scan_rows: int = 10,
) -> ArchiveOutcome:
    """Move rows dated strictly before ``today`` from ``source`` to ``archive``.

    Rows are copied cell for cell (values, formulas and formats) below the
    archive's last row in their sheet order, then deleted from the source
    bottom-up. Both tabs end up compacted and sorted ascending by date. An
    archive without a recognisable header fails before either tab changes.
    """
    outcome = ArchiveOutcome()
    archive_end, archive_columns = _archive_columns(archive, columns, keywords, scan_rows)
    grid = compact_and_sort(source, columns)
    today_key = today.isoformat()

    qualifying: list[int] = []
    for row in read_source_rows(grid, columns):
        day_key = to_day_key(row.date_raw, row.date_display, zone)
        if day_key is None or day_key >= today_key:
            continue
        qualifying.append(row.row_index)
        outcome.moved.append({"row": row.row_index + 1, "day": day_key, "artist": row.artist, "venue": row.venue})

    if not qualifying:
        logger.info("No rows before %s in %s", today_key, source.title)
        return outcome

    copied = ([columns.header_row] if archive_end == 0 else []) + qualifying
    source.copy_rows_to(archive, copied, start_row=archive_end)

    for row_index in sorted(qualifying, reverse=True):
        source.delete_row(row_index)

    compact_and_sort(source, columns)
    compact_and_sort(archive, archive_columns)
    logger.info("Archived %d rows from %s to %s", len(qualifying), source.title, archive.title)
    return outcome
