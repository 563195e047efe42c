from __future__ import annotations

import logging
from typing import Any

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from gigsync.errors import ConfigurationError, RateLimitError
from gigsync.models import SheetsConfig
from gigsync.source_rows import SheetGrid

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
RATE_LIMIT_STATUSES = {429, 503}


def column_label(column_index: int) -> str:
    label = ""
    value = column_index + 1
    while value > 0:
        value, remainder = divmod(value - 1, 26)
        label = chr(65 + remainder) + label
    return label


def _quote_title(title: str) -> str:
    return "'" + title.replace("'", "''") + "'"


def _execute(request: Any) -> Any:
    try:
        return request.execute()
    except HttpError as exc:
        status = getattr(exc, "status_code", None) or getattr(getattr(exc, "resp", None), "status", None)
        if int(status or 0) in RATE_LIMIT_STATUSES:
            raise RateLimitError(str(exc)) from exc
        raise


class Worksheet:
    """One tab of a spreadsheet, addressed with zero-based row/column indexes."""

    def __init__(self, service: Any, spreadsheet_id: str, title: str, sheet_id: int) -> None:
        self.service = service
        self.spreadsheet_id = spreadsheet_id
        self.title = title
        self.sheet_id = sheet_id

    def _values(self) -> Any:
        return self.service.spreadsheets().values()

    def get_grid(self) -> SheetGrid:
        raw = _execute(
            self._values().get(
                spreadsheetId=self.spreadsheet_id,
                range=_quote_title(self.title),
                valueRenderOption="UNFORMATTED_VALUE",
                dateTimeRenderOption="SERIAL_NUMBER",
            )
        )
        shown = _execute(
            self._values().get(
                spreadsheetId=self.spreadsheet_id,
                range=_quote_title(self.title),
                valueRenderOption="FORMATTED_VALUE",
            )
        )
        return SheetGrid(values=raw.get("values", []), display=shown.get("values", []))

    def update_cells(self, updates: list[tuple[int, int, Any]]) -> None:
        if not updates:
            return
        data = [
            {
                "range": f"{_quote_title(self.title)}!{column_label(column)}{row + 1}",
                "values": [[value]],
            }
            for row, column, value in updates
        ]
        _execute(
            self._values().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={"valueInputOption": "RAW", "data": data},
            )
        )

    def _batch(self, requests: list[dict[str, Any]]) -> None:
        _execute(
            self.service.spreadsheets().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={"requests": requests},
            )
        )

    def delete_row(self, row_index: int) -> None:
        self._batch(
            [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": self.sheet_id,
                            "dimension": "ROWS",
                            "startIndex": row_index,
                            "endIndex": row_index + 1,
                        }
                    }
                }
            ]
        )

    def copy_rows_to(self, target: Worksheet, row_indexes: list[int], start_row: int) -> None:
        """Insert copies of ``row_indexes`` into ``target`` starting at ``start_row``.

        Values, formulas and formats arrive exactly as they are in this tab.
        """
        if not row_indexes:
            return
        requests: list[dict[str, Any]] = [
            {
                "insertDimension": {
                    "range": {
                        "sheetId": target.sheet_id,
                        "dimension": "ROWS",
                        "startIndex": start_row,
                        "endIndex": start_row + len(row_indexes),
                    },
                    "inheritFromBefore": start_row > 0,
                }
            }
        ]
        for offset, row_index in enumerate(row_indexes):
            requests.append(
                {
                    "copyPaste": {
                        "source": {"sheetId": self.sheet_id, "startRowIndex": row_index, "endRowIndex": row_index + 1},
                        "destination": {
                            "sheetId": target.sheet_id,
                            "startRowIndex": start_row + offset,
                            "endRowIndex": start_row + offset + 1,
                        },
                        "pasteType": "PASTE_NORMAL",
                    }
                }
            )
        self._batch(requests)

    def sort_rows(self, start_row: int, column_index: int) -> None:
        self._batch(
            [
                {
                    "sortRange": {
                        "range": {"sheetId": self.sheet_id, "startRowIndex": start_row},
                        "sortSpecs": [{"dimensionIndex": column_index, "sortOrder": "ASCENDING"}],
                    }
                }
            ]
        )


class GoogleSheetsService:
    def __init__(self, config: SheetsConfig) -> None:
        self.config = config
        self._service: Any = None
        self._sheet_ids: dict[str, int] | None = None

    def _connect(self) -> Any:
        if self._service is not None:
            return self._service
        if not self.config.spreadsheet_id:
            raise ConfigurationError("sheets.spreadsheet_id")
        if not self.config.credentials_file:
            raise ConfigurationError("sheets.credentials_file")
        credentials = Credentials.from_service_account_file(self.config.credentials_file, scopes=SHEETS_SCOPES)
        self._service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
        return self._service

    def _load_sheet_ids(self) -> dict[str, int]:
        if self._sheet_ids is not None:
            return self._sheet_ids
        service = self._connect()
        spreadsheet = _execute(
            service.spreadsheets().get(
                spreadsheetId=self.config.spreadsheet_id,
                fields="sheets.properties",
            )
        )
        self._sheet_ids = {
            sheet["properties"]["title"]: int(sheet["properties"]["sheetId"])
            for sheet in spreadsheet.get("sheets", [])
        }
        return self._sheet_ids

    def worksheet(self, title: str) -> Worksheet:
        sheet_ids = self._load_sheet_ids()
        if title not in sheet_ids:
            raise ConfigurationError(f"sheet:{title}", "tab not found in spreadsheet")
        return Worksheet(self._service, self.config.spreadsheet_id, title, sheet_ids[title])
