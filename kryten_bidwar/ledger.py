"""Google Sheets donation ledger.

Follows the same pattern as a blocking database wrapper: every public
method is async and wraps a synchronous gspread call via
``loop.run_in_executor(None, _sync)``, bounded by the configured timeout.

The ledger holds two things:

- The donation table (columns A:E): contributor, description, points,
  choice short code, choice reason. Row 1 is the header.
- An aggregate view of per-option totals, addressed by two named ranges
  (one column of option short codes, one parallel column of totals).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, TypeVar

import gspread
import requests
from google.auth.exceptions import TransportError
from gspread.exceptions import GSpreadException

from .donation import points_to_cents

if TYPE_CHECKING:
    from .config import LedgerConfig

T = TypeVar("T")

# Donation table columns.
COL_CONTRIBUTOR = 0
COL_DESCRIPTION = 1
COL_POINTS = 2
COL_CHOICE = 3
COL_REASON = 4


class LedgerError(Exception):
    """A ledger read or write failed."""


class LedgerDataError(LedgerError):
    """The ledger returned data we could not interpret."""


# ═══════════════════════════════════════════════════════════════
#  Cell decoding
# ═══════════════════════════════════════════════════════════════

class CellKind(Enum):
    NUMBER = "number"
    TEXT = "text"
    EMPTY = "empty"


@dataclass(frozen=True)
class Cell:
    """A decoded spreadsheet cell. Sheets returns numbers or strings."""

    kind: CellKind
    number: float = 0.0
    text: str = ""

    def as_text(self) -> str:
        return self.text if self.kind is CellKind.TEXT else ""


EMPTY_CELL = Cell(CellKind.EMPTY)


def decode_cell(raw: Any) -> Cell:
    if raw is None or raw == "":
        return EMPTY_CELL
    if isinstance(raw, bool):
        raise LedgerDataError(f"unexpected boolean cell value: {raw!r}")
    if isinstance(raw, (int, float)):
        return Cell(CellKind.NUMBER, number=float(raw))
    if isinstance(raw, str):
        return Cell(CellKind.TEXT, text=raw)
    raise LedgerDataError(f"unexpected cell type {type(raw).__name__} for value {raw!r}")


def cell_at(row: list[Any], col: int) -> Cell:
    if col >= len(row):
        return EMPTY_CELL
    return decode_cell(row[col])


def decimal_to_cents(value: str | float) -> int:
    try:
        return points_to_cents(value)
    except ValueError as e:
        raise LedgerDataError(str(e)) from e


@dataclass
class LedgerRow:
    """View over one raw row of the donation table."""

    values: list[Any] = field(default_factory=list)

    @property
    def contributor(self) -> str:
        return cell_at(self.values, COL_CONTRIBUTOR).as_text()

    @property
    def choice(self) -> str:
        return cell_at(self.values, COL_CHOICE).as_text()

    @property
    def cents(self) -> int:
        """Points column in cents; unreadable amounts count as zero."""
        try:
            cell = cell_at(self.values, COL_POINTS)
        except LedgerDataError:
            return 0
        if cell.kind is CellKind.NUMBER:
            return decimal_to_cents(cell.number)
        if cell.kind is CellKind.TEXT:
            try:
                return decimal_to_cents(cell.text)
            except LedgerDataError:
                return 0
        return 0


@dataclass
class ValueRange:
    """A block of rows as read from (or written to) the sheet."""

    range: str
    major_dimension: str = "ROWS"
    values: list[list[Any]] = field(default_factory=list)

    def to_body(self) -> dict[str, Any]:
        return {
            "range": self.range,
            "majorDimension": self.major_dimension,
            "values": self.values,
        }


# ═══════════════════════════════════════════════════════════════
#  Google Sheets client
# ═══════════════════════════════════════════════════════════════

class GoogleSheetsLedger:
    """Async wrapper over a gspread spreadsheet."""

    def __init__(
        self,
        config: LedgerConfig,
        logger: logging.Logger | None = None,
        spreadsheet: gspread.Spreadsheet | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or logging.getLogger("bidwar.ledger")
        self._spreadsheet = spreadsheet
        # Held for any modification to the sheet.
        self._write_lock = threading.Lock()
        sheet = config.sheet_name.replace("'", "''")
        self._table_range = f"'{sheet}'!A:E"

    @property
    def table_range(self) -> str:
        return self._table_range

    async def open(self) -> None:
        """Authorize with the service account and open the spreadsheet."""
        if self._spreadsheet is not None:
            return

        def _sync() -> gspread.Spreadsheet:
            client = gspread.service_account(filename=self._config.credentials_path)
            return client.open_by_key(self._config.spreadsheet_id)

        self._spreadsheet = await self._run(_sync, "open spreadsheet")
        self._logger.info("Opened ledger spreadsheet %s", self._config.spreadsheet_id)

    async def _run(self, fn: Callable[[], T], what: str) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, fn),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise LedgerError(f"timed out trying to {what}") from e
        except GSpreadException as e:
            raise LedgerError(f"failed to {what}: {e}") from e
        except (requests.RequestException, TransportError) as e:
            raise LedgerError(f"connection error trying to {what}: {e}") from e

    def _sheet(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            raise LedgerError("ledger is not open")
        return self._spreadsheet

    # ── Donation table ───────────────────────────────────────

    async def get_table(self) -> ValueRange:
        """Return the entire donation table, including the header row."""
        def _sync() -> dict[str, Any]:
            return self._sheet().values_get(
                self._table_range,
                params={
                    "majorDimension": "ROWS",
                    "valueRenderOption": "UNFORMATTED_VALUE",
                },
            )

        resp = await self._run(_sync, "read donation table")
        return ValueRange(
            range=resp.get("range", self._table_range),
            major_dimension=resp.get("majorDimension", "ROWS"),
            values=resp.get("values", []),
        )

    async def write_table(self, vr: ValueRange) -> int:
        """Apply a sparse patch to the table. Returns the rows updated.

        ``vr`` must have the same shape as :meth:`get_table` returned.
        ``None`` cells and empty rows leave the sheet untouched.
        """
        def _sync() -> dict[str, Any]:
            with self._write_lock:
                return self._sheet().values_update(
                    vr.range,
                    params={"valueInputOption": "RAW"},
                    body=vr.to_body(),
                )

        resp = await self._run(_sync, "update donation table")
        return int(resp.get("updatedRows", 0))

    async def append_row(self, values: list[Any]) -> None:
        """Add a donation to the end of the table."""
        def _sync() -> None:
            with self._write_lock:
                # OVERWRITE keeps formula cells next to the table intact.
                self._sheet().values_append(
                    self._table_range,
                    params={
                        "valueInputOption": "USER_ENTERED",
                        "insertDataOption": "OVERWRITE",
                    },
                    body={"values": [values]},
                )

        await self._run(_sync, "append donation")

    # ── Aggregate view ───────────────────────────────────────

    async def get_aggregate(self) -> tuple[list[Any], list[Any]]:
        """Return the parallel (option keys, totals) columns."""
        names_key = self._config.names_range
        totals_key = self._config.totals_range

        def _sync() -> dict[str, Any]:
            return self._sheet().values_batch_get(
                [names_key, totals_key],
                params={"majorDimension": "COLUMNS"},
            )

        resp = await self._run(_sync, "read bid war totals")
        value_ranges = resp.get("valueRanges", [])
        if len(value_ranges) != 2:
            raise LedgerDataError(
                f"expected 2 value ranges for totals, got {len(value_ranges)}"
            )
        return _first_column(value_ranges[0]), _first_column(value_ranges[1])


def _first_column(value_range: dict[str, Any]) -> list[Any]:
    values = value_range.get("values") or []
    return list(values[0]) if values else []
