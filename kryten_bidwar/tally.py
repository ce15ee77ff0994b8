"""Tallier — assigns donations to bid war options and reports totals.

The ledger is the single source of truth: totals are read fresh on every
call and never cached here.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator

from .catalog import Catalog, Choice, ChoiceReason, Contest, Option
from .donation import DonationEvent, format_cents
from .ledger import (
    CellKind,
    LedgerDataError,
    LedgerRow,
    ValueRange,
    decimal_to_cents,
    decode_cell,
)
from .totals import Total, Totals

if TYPE_CHECKING:
    from .ledger import GoogleSheetsLedger


@dataclass(frozen=True)
class UpdateStats:
    """What an assignment changed."""

    choice: Choice = field(default_factory=Choice)
    count: int = 0
    total_cents: int = 0


def row_for_choice(choice: Choice) -> list[Any]:
    return [None, None, None, choice.option.short_code, choice.reason]


def make_choice(vr: ValueRange, donor: str, choice: Choice) -> tuple[ValueRange, list[LedgerRow]]:
    """Decide which table rows to edit to apply ``choice`` for ``donor``.

    Every row after the header whose contributor matches the donor
    (case-insensitively) and whose choice is still blank gets the choice.
    Every other row is written back empty so the update leaves it alone.
    Returns the patch and the original values of the rows being updated.
    """
    donor_lower = donor.lower()
    new_values: list[list[Any]] = []
    matched: list[LedgerRow] = []
    for i, raw in enumerate(vr.values):
        row = LedgerRow(list(raw))
        if i > 0 and row.contributor.lower() == donor_lower and row.choice == "":
            new_values.append(row_for_choice(choice))
            matched.append(row)
        else:
            new_values.append([])
    patch = ValueRange(range=vr.range, major_dimension=vr.major_dimension, values=new_values)
    return patch, matched


def donation_row(event: DonationEvent, choice: Choice) -> list[Any]:
    return [
        event.owner,
        event.description(),
        format_cents(event.value_cents),
        choice.option.short_code,
        choice.reason,
    ]


class Tallier:
    """Reads and writes bid war attribution in the ledger."""

    def __init__(
        self,
        ledger: GoogleSheetsLedger,
        catalog: Catalog,
        logger: logging.Logger | None = None,
    ) -> None:
        self._ledger = ledger
        self._catalog = catalog
        self._logger = logger or logging.getLogger("bidwar.tally")
        # Serializes read-modify-write assignments for the same donor.
        # Entries live only while some task holds or waits on the lock.
        self._donor_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _donor_lock(self, donor: str) -> AsyncIterator[None]:
        key = donor.lower()
        lock = self._donor_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._donor_locks[key]

    async def get_totals(self) -> list[Total]:
        """Current total for each option, in ledger order.

        Blank keys and keys that aren't in the catalog are skipped. A
        mistyped or malformed cell fails the whole call.
        """
        raw_names, raw_totals = await self._ledger.get_aggregate()

        totals: list[Total] = []
        for raw_name, raw_total in zip(raw_names, raw_totals):
            total_cell = decode_cell(raw_total)
            if total_cell.kind is CellKind.EMPTY:
                continue
            name_cell = decode_cell(raw_name)
            if name_cell.kind is CellKind.EMPTY:
                continue
            if name_cell.kind is not CellKind.TEXT:
                raise LedgerDataError(f"expected string option key, got {raw_name!r}")
            if total_cell.kind is not CellKind.TEXT:
                raise LedgerDataError(f"expected string total, got {raw_total!r}")

            option = self._catalog.find_option(name_cell.text)
            if option is None:
                continue
            try:
                cents = decimal_to_cents(total_cell.text)
            except LedgerDataError as e:
                raise LedgerDataError(
                    f"invalid total for {name_cell.text}: {total_cell.text}"
                ) from e
            totals.append(Total(option=option, value_cents=cents))
        return totals

    async def assign(self, donor: str, message: str) -> UpdateStats:
        """Assign the donor's unassigned donations to the option in ``message``.

        Returns a zero UpdateStats (not an error) if the message names no
        option.
        """
        if not donor:
            raise ValueError("donor must not be empty")
        choice = self._catalog.resolve(message, ChoiceReason.BID_COMMAND)
        if not choice.is_resolved():
            return UpdateStats()

        async with self._donor_lock(donor):
            table = await self._ledger.get_table()
            patch, matched = make_choice(table, donor, choice)
            if matched:
                updated = await self._ledger.write_table(patch)
                self._logger.info(
                    "updated %d rows for %s for %s",
                    updated, donor, choice.option.short_code,
                )

        return UpdateStats(
            choice=choice,
            count=len(matched),
            total_cents=sum(row.cents for row in matched),
        )

    async def record_donation(self, event: DonationEvent, choice: Choice) -> None:
        """Append a new donation row with its (possibly empty) attribution."""
        await self._ledger.append_row(donation_row(event, choice))

    async def totals_for_contest(self, contest: Contest) -> Totals:
        """Totals for one contest, highest first (ledger order among ties)."""
        codes = {opt.short_code for opt in contest.options}
        totals = [t for t in await self.get_totals() if t.option.short_code in codes]
        totals.sort(key=lambda t: t.value_cents, reverse=True)
        return Totals(
            totals,
            summary_style=contest.summary_style,
            number_of_winners=contest.number_of_winners,
        )

    async def totals_for_option(self, option: Option) -> Totals | None:
        """Totals for the open contest containing ``option``."""
        contest = self._catalog.find_contest(option)
        if contest is None:
            return None
        return await self.totals_for_contest(contest)
