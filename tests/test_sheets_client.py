import unittest
from unittest import mock

from googleapiclient.errors import HttpError

from gigsync.errors import ConfigurationError, RateLimitError
from gigsync.models import SheetsConfig
from gigsync.sheets_client import GoogleSheetsService, Worksheet, _execute, column_label


def _http_error(status: int) -> HttpError:
    return HttpError(mock.Mock(status=status, reason="error"), b"")


class HelperTests(unittest.TestCase):
    def test_column_label(self) -> None:
        self.assertEqual(column_label(0), "A")
        self.assertEqual(column_label(6), "G")
        self.assertEqual(column_label(25), "Z")
        self.assertEqual(column_label(26), "AA")
        self.assertEqual(column_label(701), "ZZ")

    def test_quota_errors_become_rate_limit(self) -> None:
        request = mock.Mock()
        request.execute.side_effect = _http_error(429)
        with self.assertRaises(RateLimitError):
            _execute(request)

    def test_other_http_errors_propagate(self) -> None:
        request = mock.Mock()
        request.execute.side_effect = _http_error(404)
        with self.assertRaises(HttpError):
            _execute(request)


class WorksheetTests(unittest.TestCase):
    def setUp(self) -> None:
        self.service = mock.Mock()
        self.values = self.service.spreadsheets.return_value.values.return_value
        self.tab = Worksheet(self.service, "sheet-1", "Bob's Gigs", 7)

    def test_get_grid_reads_raw_and_display_values(self) -> None:
        self.values.get.return_value.execute.side_effect = [
            {"values": [["Date"], [45717]]},
            {"values": [["Date"], ["3/1/2025"]]},
        ]
        grid = self.tab.get_grid()
        self.assertEqual(grid.raw(1, 0), 45717)
        self.assertEqual(grid.text(1, 0), "3/1/2025")
        first_call = self.values.get.call_args_list[0].kwargs
        self.assertEqual(first_call["range"], "'Bob''s Gigs'")
        self.assertEqual(first_call["valueRenderOption"], "UNFORMATTED_VALUE")

    def test_update_cells_uses_a1_ranges(self) -> None:
        self.tab.update_cells([(1, 6, "abc"), (3, 2, "Neumos")])
        body = self.values.batchUpdate.call_args.kwargs["body"]
        self.assertEqual(body["valueInputOption"], "RAW")
        self.assertEqual([item["range"] for item in body["data"]], ["'Bob''s Gigs'!G2", "'Bob''s Gigs'!C4"])

    def test_update_cells_without_updates_is_a_no_op(self) -> None:
        self.tab.update_cells([])
        self.values.batchUpdate.assert_not_called()

    def test_delete_and_sort_use_sheet_id(self) -> None:
        self.tab.delete_row(4)
        self.tab.sort_rows(1, 0)
        batch = self.service.spreadsheets.return_value.batchUpdate
        delete_request = batch.call_args_list[0].kwargs["body"]["requests"][0]["deleteDimension"]["range"]
        self.assertEqual((delete_request["sheetId"], delete_request["startIndex"], delete_request["endIndex"]), (7, 4, 5))
        sort_request = batch.call_args_list[1].kwargs["body"]["requests"][0]["sortRange"]
        self.assertEqual(sort_request["range"], {"sheetId": 7, "startRowIndex": 1})
        self.assertEqual(sort_request["sortSpecs"][0]["dimensionIndex"], 0)

    def test_copy_rows_inserts_then_pastes_each_row(self) -> None:
        archive = Worksheet(self.service, "sheet-1", "Archive", 9)
        self.tab.copy_rows_to(archive, [0, 3], start_row=5)

        requests = self.service.spreadsheets.return_value.batchUpdate.call_args.kwargs["body"]["requests"]
        insert = requests[0]["insertDimension"]
        self.assertEqual(insert["range"], {"sheetId": 9, "dimension": "ROWS", "startIndex": 5, "endIndex": 7})
        self.assertTrue(insert["inheritFromBefore"])
        pastes = [request["copyPaste"] for request in requests[1:]]
        self.assertEqual([paste["source"]["startRowIndex"] for paste in pastes], [0, 3])
        self.assertEqual([paste["source"]["sheetId"] for paste in pastes], [7, 7])
        self.assertEqual([paste["destination"]["startRowIndex"] for paste in pastes], [5, 6])
        self.assertEqual({paste["pasteType"] for paste in pastes}, {"PASTE_NORMAL"})
        self.values.append.assert_not_called()

    def test_copy_rows_without_rows_is_a_no_op(self) -> None:
        self.tab.copy_rows_to(Worksheet(self.service, "sheet-1", "Archive", 9), [], start_row=0)
        self.service.spreadsheets.return_value.batchUpdate.assert_not_called()


class GoogleSheetsServiceTests(unittest.TestCase):
    def test_missing_spreadsheet_id_is_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            GoogleSheetsService(SheetsConfig()).worksheet("Upcoming")

    def test_unknown_tab_is_configuration_error(self) -> None:
        service = GoogleSheetsService(SheetsConfig(spreadsheet_id="sheet-1", credentials_file="creds.json"))
        api = mock.Mock()
        api.spreadsheets.return_value.get.return_value.execute.return_value = {
            "sheets": [{"properties": {"title": "Upcoming", "sheetId": 0}}]
        }
        service._service = api
        self.assertEqual(service.worksheet("Upcoming").sheet_id, 0)
        with self.assertRaises(ConfigurationError):
            service.worksheet("Archive")


if __name__ == "__main__":
    unittest.main()
