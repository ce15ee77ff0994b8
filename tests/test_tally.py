"""Tests for kryten_bidwar.tally module."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from kryten_bidwar.catalog import Catalog, Choice, Option
from kryten_bidwar.donation import DonationEvent, EventKind
from kryten_bidwar.ledger import LedgerDataError, LedgerError, ValueRange
from kryten_bidwar.tally import Tallier, donation_row, make_choice
from tests.conftest import FakeLedger

TABLE = ValueRange(
    range="Tracker!A:E",
    values=[
        ["Contributor", "What", "Points", "Choice", "Message"],
        ["aerionblue", "resub", "5.00"],
        ["AEWC20XX", "resub", "5.00"],
        ["aerionblue", "200 bits", "2.00", "", ""],
        ["aerionblue", "donation", "5.01", "Leon", "put this towards Leon"],
    ],
)
MOO = Choice(option=Option(display_name="Moo Moo Meadows", short_code="Moo"), reason="usedMoo")
MOO_ROW = [None, None, None, "Moo", "usedMoo"]


class TestMakeChoice:

    def test_updates_one_row(self):
        patch, rows = make_choice(TABLE, "AEWC20XX", MOO)
        assert patch.values == [[], [], MOO_ROW, [], []]
        assert [r.values for r in rows] == [TABLE.values[2]]

    def test_updates_all_empty_rows_for_donor(self):
        patch, rows = make_choice(TABLE, "aerionblue", MOO)
        assert patch.values == [[], MOO_ROW, [], MOO_ROW, []]
        assert [r.values for r in rows] == [TABLE.values[1], TABLE.values[3]]

    def test_donor_match_is_case_insensitive(self):
        _, rows = make_choice(TABLE, "aewc20xx", MOO)
        assert len(rows) == 1

    def test_does_not_update_header_row(self):
        patch, rows = make_choice(TABLE, "Contributor", MOO)
        assert patch.values == [[], [], [], [], []]
        assert rows == []

    def test_patch_keeps_shape_and_range(self):
        patch, _ = make_choice(TABLE, "nobody", MOO)
        assert patch.range == TABLE.range
        assert patch.major_dimension == TABLE.major_dimension
        assert len(patch.values) == len(TABLE.values)


class TestTallierAssign:

    async def test_assign_updates_ledger(self, catalog: Catalog):
        ledger = FakeLedger(catalog, [
            ["alice", "resub", "6.00"],
            ["bob", "300 bits", "3.00"],
            ["alice", "100 bits", "1.00"],
        ])
        tallier = Tallier(ledger, catalog, logging.getLogger("test"))

        stats = await tallier.assign("Alice", "!bid nbc")
        assert stats.choice.option.short_code == "NBC"
        assert stats.count == 2
        assert stats.total_cents == 700
        assert ledger.rows[1][3] == "NBC"
        assert ledger.rows[1][4] == "[bid] !bid nbc"
        assert ledger.rows[2][3:] == []
        assert ledger.rows[3][3] == "NBC"

    async def test_second_assign_is_noop(self, catalog: Catalog):
        ledger = FakeLedger(catalog, [["alice", "resub", "6.00"]])
        tallier = Tallier(ledger, catalog)

        await tallier.assign("alice", "moo")
        stats = await tallier.assign("alice", "nbc")
        assert stats.count == 0
        assert stats.total_cents == 0
        assert ledger.rows[1][3] == "Moo"
        assert ledger.write_calls == 1

    async def test_unresolved_message(self, tallier: Tallier, ledger: FakeLedger):
        stats = await tallier.assign("alice", "!bid nothing")
        assert not stats.choice.is_resolved()
        assert stats.count == 0
        assert ledger.write_calls == 0

    async def test_empty_donor_rejected(self, tallier: Tallier):
        with pytest.raises(ValueError):
            await tallier.assign("", "moo")

    async def test_unparseable_points_count_as_zero(self, catalog: Catalog):
        ledger = FakeLedger(catalog, [["alice", "resub", "lots"], ["alice", "bits", 2.5]])
        stats = await Tallier(ledger, catalog).assign("alice", "moo")
        assert stats.count == 2
        assert stats.total_cents == 250

    async def test_concurrent_assigns_attribute_once(self, catalog: Catalog):
        ledger = FakeLedger(catalog, [["alice", "resub", "6.00"]])
        tallier = Tallier(ledger, catalog)

        first, second = await asyncio.gather(
            tallier.assign("alice", "moo"),
            tallier.assign("ALICE", "nbc"),
        )
        assert first.count + second.count == 1

    async def test_donor_locks_released_after_assign(self, catalog: Catalog):
        ledger = FakeLedger(catalog, [["alice", "resub", "6.00"], ["bob", "resub", "6.00"]])
        read_table = ledger.get_table

        async def slow_read():
            await asyncio.sleep(0)
            return await read_table()

        ledger.get_table = slow_read
        tallier = Tallier(ledger, catalog)

        results = await asyncio.gather(
            tallier.assign("alice", "moo"),
            tallier.assign("ALICE", "nbc"),
            tallier.assign("bob", "nbc"),
        )
        assert [r.count for r in results] == [1, 0, 1]
        assert tallier._donor_locks == {}
        assert tallier._lock_users == {}

    async def test_donor_lock_released_on_ledger_error(self, catalog: Catalog):
        ledger = FakeLedger(catalog)
        ledger.get_table = AsyncMock(side_effect=LedgerError("sheet unavailable"))
        tallier = Tallier(ledger, catalog)

        with pytest.raises(LedgerError):
            await tallier.assign("alice", "moo")
        assert tallier._donor_locks == {}


class TestTallierTotals:

    async def test_get_totals(self, catalog: Catalog):
        ledger = FakeLedger(catalog, [
            ["alice", "resub", "6.00", "Moo", ""],
            ["bob", "bits", "2.50", "NBC", ""],
            ["carol", "bits", "1.00", "", ""],
        ])
        totals = await Tallier(ledger, catalog).get_totals()
        by_code = {t.option.short_code: t.value_cents for t in totals}
        assert by_code == {"Moo": 600, "NBC": 250, "DMC1": 0, "DMC2": 0, "DMC3": 0}

    async def test_unknown_keys_and_empty_totals_skipped(self, catalog: Catalog):
        ledger = FakeLedger(catalog)

        async def aggregate():
            return ["Leon", "Moo", "NBC"], ["9.00", "1.00", ""]

        ledger.get_aggregate = aggregate
        totals = await Tallier(ledger, catalog).get_totals()
        assert [(t.option.short_code, t.value_cents) for t in totals] == [("Moo", 100)]

    async def test_blank_keys_skipped(self, catalog: Catalog):
        """A blank key row with a rendered total is skipped, not fatal."""
        ledger = FakeLedger(catalog)

        async def aggregate():
            return ["Moo", "", None, "NBC"], ["1.00", "0.00", "3.00", "2.00"]

        ledger.get_aggregate = aggregate
        totals = await Tallier(ledger, catalog).get_totals()
        assert [(t.option.short_code, t.value_cents) for t in totals] == [("Moo", 100), ("NBC", 200)]

    async def test_blank_key_row_does_not_silence_contest_totals(self, catalog: Catalog):
        ledger = FakeLedger(catalog)

        async def aggregate():
            return ["Moo", "", "NBC"], ["1.00", "0.00", "2.00"]

        ledger.get_aggregate = aggregate
        totals = await Tallier(ledger, catalog).totals_for_option(catalog.find_option("Moo"))
        assert totals.describe() == "Last place: Moo Moo Meadows (down by 1.00)"

    @pytest.mark.parametrize("names, values", [
        (["Moo"], [1.0]),
        ([3], ["1.00"]),
        (["Moo"], ["one dollar"]),
    ])
    async def test_malformed_aggregate(self, catalog: Catalog, names, values):
        ledger = FakeLedger(catalog)

        async def aggregate():
            return names, values

        ledger.get_aggregate = aggregate
        with pytest.raises(LedgerDataError):
            await Tallier(ledger, catalog).get_totals()

    async def test_totals_for_option(self, catalog: Catalog):
        ledger = FakeLedger(catalog, [
            ["alice", "resub", "6.00", "DMC2", ""],
            ["bob", "bits", "2.50", "Moo", ""],
        ])
        totals = await Tallier(ledger, catalog).totals_for_option(catalog.find_option("DMC3"))
        assert [t.option.short_code for t in totals] == ["DMC2", "DMC1", "DMC3"]
        assert [t.value_cents for t in totals] == [600, 0, 0]

    async def test_totals_for_option_without_contest(self, tallier: Tallier):
        assert await tallier.totals_for_option(Option(short_code="zzz")) is None


class TestRecordDonation:

    def test_donation_row(self):
        ev = DonationEvent(owner="bob", channel="c", kind=EventKind.BITS, bits=250)
        choice = Choice(option=Option(display_name="N", short_code="NBC"), reason="[chat] nbc")
        assert donation_row(ev, choice) == ["bob", "250 bits", "2.50", "NBC", "[chat] nbc"]

    async def test_record_appends(self, tallier: Tallier, ledger: FakeLedger):
        ev = DonationEvent(owner="bob", channel="c", kind=EventKind.TIP, cash_cents=500)
        await tallier.record_donation(ev, Choice())
        assert ledger.rows[-1] == ["bob", "$5.00 donation", "5.00", "", ""]
