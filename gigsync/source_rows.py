from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator

from gigsync.errors import ConfigurationError, RowParseError
from gigsync.models import REQUIRED_COLUMNS, SourceRow

logger = logging.getLogger(__name__)


@dataclass
class SheetGrid:
    """Parallel raw-value and display-string views of one tab."""

    values: list[list[Any]] = field(default_factory=list)
    display: list[list[str]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.values)

    def raw(self, row_index: int, column_index: int) -> Any:
        if row_index >= len(self.values):
            return None
        row = self.values[row_index]
        if column_index >= len(row):
            return None
        return row[column_index]

    def text(self, row_index: int, column_index: int) -> str:
        if row_index < len(self.display):
            row = self.display[row_index]
            if column_index < len(row) and row[column_index] is not None:
                return str(row[column_index]).strip()
        value = self.raw(row_index, column_index)
        return "" if value is None else str(value).strip()

    def width(self) -> int:
        widths = [len(row) for row in self.values] + [len(row) for row in self.display]
        return max(widths, default=0)

    def is_blank_row(self, row_index: int) -> bool:
        return not any(self.text(row_index, column) for column in range(self.width()))


@dataclass
class ColumnMap:
    header_row: int
    indexes: dict[str, int]

    def get(self, name: str) -> int | None:
        return self.indexes.get(name)

    def require(self, name: str) -> int:
        index = self.indexes.get(name)
        if index is None:
            raise ConfigurationError(f"column:{name}", "header not found")
        return index

    @property
    def date(self) -> int:
        return self.require("date")

    @property
    def first_data_row(self) -> int:
        return self.header_row + 1


def _match_header(cells: list[str], keywords: dict[str, str]) -> dict[str, int]:
    indexes: dict[str, int] = {}
    lowered = [str(cell or "").strip().lower() for cell in cells]
    for name, keyword in keywords.items():
        for column, cell in enumerate(lowered):
            if keyword and keyword in cell:
                indexes[name] = column
                break
    return indexes


def resolve_columns(
    header_rows: list[list[Any]],
    keywords: dict[str, str],
    scan_rows: int = 10,
    fallback_row: int = 0,
) -> ColumnMap:
    required = {name: keywords[name] for name in REQUIRED_COLUMNS}
    for row_index, cells in enumerate(header_rows[:scan_rows]):
        text_cells = [str(cell or "") for cell in cells]
        if len(_match_header(text_cells, required)) == len(required):
            return ColumnMap(header_row=row_index, indexes=_match_header(text_cells, keywords))

    fallback_cells = header_rows[fallback_row] if fallback_row < len(header_rows) else []
    indexes = _match_header([str(cell or "") for cell in fallback_cells], keywords)
    missing = [name for name in REQUIRED_COLUMNS if name not in indexes]
    if missing:
        raise ConfigurationError(
            "columns:" + ",".join(missing),
            f"no header row with {', '.join(required.values())} in the first {scan_rows} rows",
        )
    return ColumnMap(header_row=fallback_row, indexes=indexes)


def _cell_text(grid: SheetGrid, row_index: int, column_index: int | None) -> str:
    if column_index is None:
        return ""
    return grid.text(row_index, column_index)


def read_source_rows(grid: SheetGrid, columns: ColumnMap) -> Iterator[SourceRow]:
    date_column = columns.date
    for row_index in range(columns.first_data_row, len(grid)):
        if grid.is_blank_row(row_index):
            break
        yield SourceRow(
            row_index=row_index,
            date_raw=grid.raw(row_index, date_column),
            date_display=_cell_text(grid, row_index, date_column),
            artist=_cell_text(grid, row_index, columns.get("artist")),
            venue=_cell_text(grid, row_index, columns.get("venue")),
            rating=_cell_text(grid, row_index, columns.get("rating")),
            notes=_cell_text(grid, row_index, columns.get("notes")),
            ticket=_cell_text(grid, row_index, columns.get("ticket")),
            identity=_cell_text(grid, row_index, columns.get("identity")),
        )


def is_actionable(row: SourceRow) -> bool:
    has_date = bool(row.date_display or (row.date_raw not in (None, "")))
    return has_date and bool(row.artist.strip()) and bool(row.venue.strip())


def require_actionable(row: SourceRow) -> None:
    if not is_actionable(row):
        missing = [
            name
            for name, value in (("date", row.date_display), ("artist", row.artist), ("venue", row.venue))
            if not str(value or "").strip()
        ]
        raise RowParseError(row.row_index, f"missing {', '.join(missing)}")


def compact_and_sort(tab: Any, columns: ColumnMap) -> SheetGrid:
    """Drop blank data rows and sort the remainder ascending by date.

    Blank rows are deleted bottom-up so earlier indexes stay valid. Returns
    a fresh grid read after the tab settled.
    """
    grid = tab.get_grid()
    blank_rows = [
        row_index
        for row_index in range(columns.first_data_row, len(grid))
        if grid.is_blank_row(row_index)
    ]
    for row_index in sorted(blank_rows, reverse=True):
        tab.delete_row(row_index)
    if blank_rows:
        logger.info("Removed %d blank rows from %s", len(blank_rows), tab.title)
    tab.sort_rows(columns.first_data_row, columns.date)
    return tab.get_grid()
