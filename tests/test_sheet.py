"""
Unit tests for the Google Sheets buffer.

Tests the SheetBuffer class with a mocked Sheets API service.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from gcontact_relay.storage.sheet import (
    BUFFER_LAST_COLUMN,
    LOG_LAST_COLUMN,
    STATUS_COLUMN,
    SheetBuffer,
    SheetBufferError,
    _column_letter,
    row_number_from_range,
)
from gcontact_relay.sync.record import BufferRow, RowStatus
from gcontact_relay.sync.stats import Direction, RunLogEntry


@pytest.fixture
def sheet():
    """Create a SheetBuffer with a mocked service."""
    buffer = SheetBuffer(MagicMock(), "sheet-id", log_retention_rows=2)
    buffer._service = MagicMock()
    return buffer


@pytest.fixture
def values(sheet):
    """The mocked spreadsheets().values() resource."""
    return sheet._service.spreadsheets.return_value.values.return_value


def entry():
    return RunLogEntry(
        timestamp=datetime(2024, 6, 15, tzinfo=timezone.utc),
        account="alice",
        direction=Direction.PUSH,
        pushed=1,
    )


class TestHelpers:
    def test_column_letters(self):
        assert _column_letter(0) == "A"
        assert _column_letter(25) == "Z"
        assert _column_letter(26) == "AA"
        assert BUFFER_LAST_COLUMN == "E"
        assert LOG_LAST_COLUMN == "H"
        assert STATUS_COLUMN == "D"

    def test_row_number_from_range(self):
        assert row_number_from_range("Buffer!A7:E7") == 7
        assert row_number_from_range("") is None


class TestEnsureStructure:
    """Tests for tab and header creation."""

    def test_adds_missing_tabs_and_headers(self, sheet, values):
        spreadsheets = sheet._service.spreadsheets.return_value
        spreadsheets.get.return_value.execute.side_effect = [
            {"sheets": []},
            {
                "sheets": [
                    {"properties": {"title": "Buffer", "sheetId": 1}},
                    {"properties": {"title": "Log", "sheetId": 2}},
                    {"properties": {"title": "Lock", "sheetId": 3}},
                ]
            },
        ]
        values.get.return_value.execute.return_value = {}

        sheet.ensure_structure()

        requests = spreadsheets.batchUpdate.call_args.kwargs["body"]["requests"]
        assert [r["addSheet"]["properties"]["title"] for r in requests] == [
            "Buffer",
            "Log",
            "Lock",
        ]
        header_ranges = [c.kwargs["range"] for c in values.update.call_args_list]
        assert header_ranges == ["Buffer!A1:E1", "Log!A1:H1", "Lock!A1:C1"]

    def test_existing_structure_is_left_alone(self, sheet, values):
        spreadsheets = sheet._service.spreadsheets.return_value
        spreadsheets.get.return_value.execute.return_value = {
            "sheets": [
                {"properties": {"title": "Buffer", "sheetId": 1}},
                {"properties": {"title": "Log", "sheetId": 2}},
                {"properties": {"title": "Lock", "sheetId": 3}},
            ]
        }
        values.get.return_value.execute.return_value = {"values": [["header"]]}

        sheet.ensure_structure()

        spreadsheets.batchUpdate.assert_not_called()
        values.update.assert_not_called()


class TestBufferOperations:
    """Tests for reading and writing buffer rows."""

    def test_read_all_pads_and_skips_blank_rows(self, sheet, values):
        values.get.return_value.execute.return_value = {
            "values": [
                ["a", "alice", "{}"],
                [],
                ["b", "bob", "{}", "imported", "h"],
            ]
        }

        rows = sheet.read_all()

        assert [r.fingerprint for r in rows] == ["a", "b"]
        assert rows[0].is_pending
        assert rows[1].status is RowStatus.CONSUMED
        assert sheet._row_numbers == {"a": 2, "b": 4}

    def test_upsert_updates_existing_row(self, sheet, values):
        values.get.return_value.execute.return_value = {
            "values": [["a", "alice", "{}", "imported", "h1"]]
        }
        sheet.read_all()

        sheet.upsert("a", BufferRow("a", "alice", "{}", RowStatus.PENDING, "h2"))

        kwargs = values.update.call_args.kwargs
        assert kwargs["range"] == "Buffer!A2:E2"
        assert kwargs["body"] == {"values": [["a", "alice", "{}", "", "h2"]]}
        values.append.assert_not_called()

    def test_upsert_appends_new_row(self, sheet, values):
        values.get.return_value.execute.return_value = {"values": []}
        values.append.return_value.execute.return_value = {
            "updates": {"updatedRange": "Buffer!A5:E5"}
        }

        sheet.upsert("new", BufferRow("new", "alice", "{}"))

        assert values.append.call_args.kwargs["insertDataOption"] == "INSERT_ROWS"
        assert sheet._row_numbers["new"] == 5

    def test_mark_consumed_writes_status_cell(self, sheet, values):
        values.get.return_value.execute.return_value = {
            "values": [["x", "bob", "{}"], ["a", "alice", "{}"]]
        }

        sheet.mark_consumed("a")

        kwargs = values.update.call_args.kwargs
        assert kwargs["range"] == "Buffer!D3"
        assert kwargs["body"] == {"values": [["imported"]]}

    def test_mark_consumed_unknown_row(self, sheet, values):
        values.get.return_value.execute.return_value = {"values": []}

        with pytest.raises(KeyError):
            sheet.mark_consumed("missing")

    def test_status_counts(self, sheet, values):
        values.get.return_value.execute.return_value = {
            "values": [
                ["a1", "alice", "{}"],
                ["a2", "alice", "{}", "imported"],
                ["b1", "bob", "{}"],
            ]
        }

        assert sheet.get_status_counts() == {
            "alice": {"pending": 1, "consumed": 1},
            "bob": {"pending": 1, "consumed": 0},
        }


class TestLease:
    """Tests for the lease row in the Lock tab."""

    def test_read_lease(self, sheet, values):
        values.get.return_value.execute.return_value = {
            "values": [["alice", "tok", "2024-06-15T00:00:00+00:00"]]
        }

        assert sheet.read_lease() == ["alice", "tok", "2024-06-15T00:00:00+00:00"]
        assert values.get.call_args.kwargs["range"] == "Lock!A2:C2"

    def test_read_empty_lease(self, sheet, values):
        values.get.return_value.execute.return_value = {}

        assert sheet.read_lease() == []

    def test_write_lease(self, sheet, values):
        sheet.write_lease(["bob", "tok", "2024-06-15T00:00:00+00:00"])

        kwargs = values.update.call_args.kwargs
        assert kwargs["range"] == "Lock!A2:C2"
        assert kwargs["body"] == {
            "values": [["bob", "tok", "2024-06-15T00:00:00+00:00"]]
        }


class TestRunLog:
    """Tests for the Log tab."""

    def test_append_trims_oldest_rows(self, sheet, values):
        """Rows beyond the retention limit should be deleted below the header."""
        sheet._sheet_ids = {"Log": 42}
        values.get.return_value.execute.return_value = {
            "values": [["t1"], ["t2"], ["t3"], ["t4"]]
        }

        sheet.append(entry())

        appended = values.append.call_args.kwargs
        assert appended["range"] == "Log!A:H"
        assert appended["body"]["values"][0][2] == "push"
        batch = sheet._service.spreadsheets.return_value.batchUpdate
        delete = batch.call_args.kwargs["body"]["requests"][0]["deleteDimension"]
        assert delete["range"] == {
            "sheetId": 42,
            "dimension": "ROWS",
            "startIndex": 1,
            "endIndex": 3,
        }

    def test_append_within_retention_does_not_trim(self, sheet, values):
        values.get.return_value.execute.return_value = {"values": [["t1"]]}

        sheet.append(entry())

        sheet._service.spreadsheets.return_value.batchUpdate.assert_not_called()

    def test_get_run_log_newest_first(self, sheet, values):
        values.get.return_value.execute.return_value = {
            "values": [
                ["t1", "alice", "push", "1", "0", "0", "0"],
                ["t2", "bob", "pull", "0", "1", "0", "0", ""],
            ]
        }

        log = sheet.get_run_log(limit=5)

        assert [r["account"] for r in log] == ["bob", "alice"]
        assert log[1]["errors"] == ""


class TestRetries:
    """Tests for retry behaviour."""

    @patch("time.sleep")
    def test_retryable_error_is_retried(self, mock_sleep, sheet, values):
        mock_resp = MagicMock()
        mock_resp.status = 503
        values.get.return_value.execute.side_effect = [
            HttpError(mock_resp, b"unavailable"),
            {"values": []},
        ]

        assert sheet.read_all() == []
        mock_sleep.assert_called_once()

    def test_permanent_error_raises(self, sheet, values):
        mock_resp = MagicMock()
        mock_resp.status = 404
        values.get.return_value.execute.side_effect = HttpError(mock_resp, b"missing")

        with pytest.raises(SheetBufferError, match="values.get"):
            sheet.read_all()
