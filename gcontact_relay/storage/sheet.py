"""
Google Sheets storage for the shared buffer and the run log.

The spreadsheet holds three tabs, each with a header row:

    Buffer: fingerprint | source | data | status | hash
    Log:    timestamp | account | direction | pushed | new | merged | failed | errors
    Lock:   owner | token | expires_at   (one lease row, see storage.lock)

Both parties' accounts need edit access to the spreadsheet. Rows are
addressed by their position, which read_all() caches per fingerprint.
"""

import logging
import re
import time
from collections.abc import Callable
from typing import Any, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from gcontact_relay.sync.record import BUFFER_COLUMNS, BufferRow, RowStatus
from gcontact_relay.sync.stats import RUN_LOG_COLUMNS, RunLogEntry

logger = logging.getLogger(__name__)

BUFFER_SHEET_TITLE = "Buffer"
LOG_SHEET_TITLE = "Log"
LOCK_SHEET_TITLE = "Lock"

LOCK_COLUMNS = ("owner", "token", "expires_at")

# Status codes worth retrying
RETRYABLE_STATUS = (429, 500, 502, 503, 504)

DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 30.0  # seconds

_ROW_NUMBER_RE = re.compile(r"![A-Z]+(\d+)")


class SheetBufferError(Exception):
    """Raised when a Sheets API operation fails."""

    pass


def _column_letter(index: int) -> str:
    """Convert a 0-based column index into its A1 letter(s)."""
    index += 1
    label = ""
    while index:
        index, remainder = divmod(index - 1, 26)
        label = chr(65 + remainder) + label
    return label


BUFFER_LAST_COLUMN = _column_letter(len(BUFFER_COLUMNS) - 1)
LOG_LAST_COLUMN = _column_letter(len(RUN_LOG_COLUMNS) - 1)
STATUS_COLUMN = _column_letter(BUFFER_COLUMNS.index("status"))
LOCK_LAST_COLUMN = _column_letter(len(LOCK_COLUMNS) - 1)


def row_number_from_range(updated_range: str) -> Optional[int]:
    """Extract the first row number from an A1 range such as 'Buffer!A7:E7'."""
    match = _ROW_NUMBER_RE.search(updated_range or "")
    return int(match.group(1)) if match else None


class SheetBuffer:
    """
    Google Sheets implementation of the buffer and run log collaborators.

    Usage:
        sheet = SheetBuffer(credentials, spreadsheet_id, log_retention_rows=500)
        sheet.ensure_structure()

        rows = sheet.read_all()
        sheet.upsert(fingerprint, row)
        sheet.mark_consumed(fingerprint)
        sheet.append(entry)
    """

    def __init__(
        self,
        credentials: Credentials,
        spreadsheet_id: str,
        log_retention_rows: int = 500,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
    ):
        """
        Initialize the sheet buffer.

        Args:
            credentials: OAuth2 credentials with the spreadsheets scope
            spreadsheet_id: Id of the shared spreadsheet
            log_retention_rows: Run log rows kept after each append
                (0 keeps every row)
            max_retries: Maximum attempts for a retryable failure
            initial_retry_delay: Initial backoff delay in seconds
            max_retry_delay: Maximum backoff delay in seconds
        """
        self.credentials = credentials
        self.spreadsheet_id = spreadsheet_id
        self.log_retention_rows = log_retention_rows
        self.max_retries = max_retries
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self._service = None
        # Fingerprint -> 1-based sheet row number, refreshed by read_all()
        self._row_numbers: dict[str, int] = {}
        # Tab title -> numeric sheetId
        self._sheet_ids: dict[str, int] = {}

    @property
    def service(self) -> Any:
        """Get or create the Google Sheets API service object."""
        if self._service is None:
            try:
                self._service = build(
                    "sheets", "v4", credentials=self.credentials, cache_discovery=False
                )
                logger.debug("Created Sheets API service")
            except Exception as e:
                logger.error(f"Failed to create Sheets API service: {e}")
                raise SheetBufferError(f"Failed to create API service: {e}") from e
        return self._service

    def _call_with_retry(self, operation: Callable[[], Any], operation_name: str) -> Any:
        """
        Execute an operation with exponential backoff on retryable errors.

        Raises:
            SheetBufferError: If the operation fails or retries are exhausted
        """
        delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            try:
                return operation()
            except HttpError as e:
                status_code = int(getattr(e.resp, "status", 0) or 0)
                if status_code in RETRYABLE_STATUS and attempt < self.max_retries - 1:
                    logger.warning(
                        f"Sheets {operation_name} error ({status_code}), retrying in "
                        f"{delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue
                logger.error(f"Sheets {operation_name} failed ({status_code}): {e}")
                raise SheetBufferError(f"Sheets {operation_name} failed: {e}") from e

        raise SheetBufferError(f"Sheets {operation_name} failed after all retries")

    def _values(self) -> Any:
        return self.service.spreadsheets().values()

    def _get_values(self, range_spec: str) -> list[list[Any]]:
        def execute_get() -> Any:
            return (
                self._values()
                .get(spreadsheetId=self.spreadsheet_id, range=range_spec)
                .execute()
            )

        response = self._call_with_retry(execute_get, "values.get")
        return list(response.get("values", []))

    def _update_values(self, range_spec: str, values: list[list[Any]]) -> None:
        def execute_update() -> Any:
            return (
                self._values()
                .update(
                    spreadsheetId=self.spreadsheet_id,
                    range=range_spec,
                    valueInputOption="RAW",
                    body={"values": values},
                )
                .execute()
            )

        self._call_with_retry(execute_update, "values.update")

    def _append_values(self, range_spec: str, values: list[list[Any]]) -> dict[str, Any]:
        def execute_append() -> Any:
            return (
                self._values()
                .append(
                    spreadsheetId=self.spreadsheet_id,
                    range=range_spec,
                    valueInputOption="RAW",
                    insertDataOption="INSERT_ROWS",
                    body={"values": values},
                )
                .execute()
            )

        return dict(self._call_with_retry(execute_append, "values.append"))

    def _batch_update(self, requests: list[dict[str, Any]]) -> None:
        def execute_batch() -> Any:
            return (
                self.service.spreadsheets()
                .batchUpdate(
                    spreadsheetId=self.spreadsheet_id, body={"requests": requests}
                )
                .execute()
            )

        self._call_with_retry(execute_batch, "batchUpdate")

    def _load_sheet_ids(self) -> dict[str, int]:
        def execute_get() -> Any:
            return (
                self.service.spreadsheets()
                .get(spreadsheetId=self.spreadsheet_id, includeGridData=False)
                .execute()
            )

        metadata = self._call_with_retry(execute_get, "spreadsheets.get")
        self._sheet_ids = {
            sheet["properties"]["title"]: sheet["properties"]["sheetId"]
            for sheet in metadata.get("sheets", [])
            if "properties" in sheet
        }
        return self._sheet_ids

    # =========================================================================
    # Structure
    # =========================================================================

    def ensure_structure(self) -> None:
        """Create the Buffer, Log and Lock tabs and their header rows if missing."""
        sheet_ids = self._load_sheet_ids()

        tabs = (
            (BUFFER_SHEET_TITLE, BUFFER_COLUMNS, BUFFER_LAST_COLUMN),
            (LOG_SHEET_TITLE, RUN_LOG_COLUMNS, LOG_LAST_COLUMN),
            (LOCK_SHEET_TITLE, LOCK_COLUMNS, LOCK_LAST_COLUMN),
        )

        requests = [
            {
                "addSheet": {
                    "properties": {
                        "title": title,
                        "gridProperties": {"rowCount": 2, "columnCount": len(columns)},
                    }
                }
            }
            for title, columns, _ in tabs
            if title not in sheet_ids
        ]
        if requests:
            self._batch_update(requests)
            self._load_sheet_ids()
            logger.info(f"Added {len(requests)} tab(s) to spreadsheet")

        for title, columns, last_column in tabs:
            header_range = f"{title}!A1:{last_column}1"
            if not self._get_values(header_range):
                self._update_values(header_range, [list(columns)])
                logger.debug(f"Wrote header row of {title}")

    # =========================================================================
    # Buffer Operations
    # =========================================================================

    def read_all(self) -> list[BufferRow]:
        """
        Read every buffer row below the header.

        Returns:
            List of BufferRow, in sheet order
        """
        values = self._get_values(f"{BUFFER_SHEET_TITLE}!A2:{BUFFER_LAST_COLUMN}")
        rows: list[BufferRow] = []
        self._row_numbers = {}
        for offset, cells in enumerate(values):
            if not cells or not cells[0]:
                continue
            row = BufferRow.from_list(cells)
            rows.append(row)
            self._row_numbers.setdefault(row.fingerprint, offset + 2)
        return rows

    def _row_number(self, fingerprint: str) -> Optional[int]:
        if fingerprint not in self._row_numbers:
            self.read_all()
        return self._row_numbers.get(fingerprint)

    def upsert(self, fingerprint: str, row: BufferRow) -> None:
        """
        Overwrite the row with this fingerprint in place, or append a new row.

        Args:
            fingerprint: Key of the row to write
            row: New row contents
        """
        number = self._row_number(fingerprint)
        if number is not None:
            self._update_values(
                f"{BUFFER_SHEET_TITLE}!A{number}:{BUFFER_LAST_COLUMN}{number}",
                [row.as_list()],
            )
            return

        response = self._append_values(
            f"{BUFFER_SHEET_TITLE}!A:{BUFFER_LAST_COLUMN}", [row.as_list()]
        )
        updated_range = response.get("updates", {}).get("updatedRange", "")
        number = row_number_from_range(updated_range)
        if number is not None:
            self._row_numbers[fingerprint] = number

    def mark_consumed(self, fingerprint: str) -> None:
        """
        Set a row's status to Consumed.

        Raises:
            KeyError: If no row has this fingerprint
        """
        number = self._row_number(fingerprint)
        if number is None:
            raise KeyError(f"No buffer row with fingerprint {fingerprint!r}")
        self._update_values(
            f"{BUFFER_SHEET_TITLE}!{STATUS_COLUMN}{number}",
            [[RowStatus.CONSUMED.value]],
        )

    def get_status_counts(self) -> dict[str, dict[str, int]]:
        """Count Pending and Consumed rows per source party."""
        counts: dict[str, dict[str, int]] = {}
        for row in self.read_all():
            entry = counts.setdefault(row.source, {"pending": 0, "consumed": 0})
            entry["pending" if row.is_pending else "consumed"] += 1
        return counts

    # =========================================================================
    # Run Log Operations
    # =========================================================================

    def append(self, entry: RunLogEntry) -> None:
        """Append a run log row and trim the log to the retention limit."""
        self._append_values(f"{LOG_SHEET_TITLE}!A:{LOG_LAST_COLUMN}", [entry.as_list()])
        if self.log_retention_rows > 0:
            self._trim_log()

    def _trim_log(self) -> None:
        data_rows = len(self._get_values(f"{LOG_SHEET_TITLE}!A2:A"))
        excess = data_rows - self.log_retention_rows
        if excess <= 0:
            return

        sheet_id = self._sheet_ids.get(LOG_SHEET_TITLE)
        if sheet_id is None:
            sheet_id = self._load_sheet_ids().get(LOG_SHEET_TITLE)
        if sheet_id is None:
            raise SheetBufferError(f"Spreadsheet has no '{LOG_SHEET_TITLE}' tab")

        # Oldest rows sit right below the header
        self._batch_update(
            [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": sheet_id,
                            "dimension": "ROWS",
                            "startIndex": 1,
                            "endIndex": 1 + excess,
                        }
                    }
                }
            ]
        )
        logger.debug(f"Trimmed {excess} old run log rows")

    def get_run_log(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        """Run log rows as dictionaries, newest first."""
        values = self._get_values(f"{LOG_SHEET_TITLE}!A2:{LOG_LAST_COLUMN}")
        entries = [
            dict(zip(RUN_LOG_COLUMNS, cells + [""] * (len(RUN_LOG_COLUMNS) - len(cells))))
            for cells in reversed(values)
            if cells
        ]
        return entries[:limit] if limit is not None else entries

    # =========================================================================
    # Lease Operations
    # =========================================================================

    def read_lease(self) -> list[str]:
        """Cells of the lease row ([owner, token, expires_at]), possibly empty."""
        values = self._get_values(f"{LOCK_SHEET_TITLE}!A2:{LOCK_LAST_COLUMN}2")
        return [str(cell) for cell in values[0]] if values else []

    def write_lease(self, cells: list[str]) -> None:
        """Overwrite the lease row."""
        self._update_values(f"{LOCK_SHEET_TITLE}!A2:{LOCK_LAST_COLUMN}2", [cells])
