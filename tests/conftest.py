"""Shared test fixtures for kryten-bidwar."""

from __future__ import annotations

import logging
import random
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from kryten_bidwar.catalog import Catalog
from kryten_bidwar.config import BidwarConfig
from kryten_bidwar.dispatcher import BidDispatcher
from kryten_bidwar.donation import format_cents
from kryten_bidwar.gift_dedup import GiftBurstTracker
from kryten_bidwar.ledger import LedgerRow, ValueRange
from kryten_bidwar.preference_cache import PreferenceCache
from kryten_bidwar.rate_limiter import ReplyRateLimiter
from kryten_bidwar.tally import Tallier


# ── Minimal config dict matching BidwarConfig schema ─────────

def make_bidwars_dict() -> dict:
    return {
        "contests": [
            {
                "name": "Mario Kart track",
                "summary_style": "LAST_PLACE",
                "options": [
                    {"display_name": "Moo Moo Meadows", "short_code": "Moo", "aliases": ["moo", "moomoo"]},
                    {"display_name": "Neo Bowser City", "short_code": "NBC", "aliases": ["neo", "nbc"]},
                ],
            },
            {
                "name": "Featuring Dante From The Devil May Cry Series",
                "options": [
                    {"display_name": "Devil May Cry", "short_code": "DMC1", "aliases": ["dmc", "dmc1"]},
                    {"display_name": "Devil May Cry 2", "short_code": "DMC2", "aliases": ["dmc2"]},
                    {"display_name": "Devil May Cry 3", "short_code": "DMC3", "aliases": ["dmc3"]},
                ],
            },
        ],
    }


def make_config_dict(**overrides) -> dict:
    """Build a valid config dict with sensible test defaults."""
    base = {
        "nats": {"servers": ["nats://localhost:4222"]},
        "channels": [{"domain": "cytu.be", "channel": "testchannel"}],
        "service": {"name": "bidwar"},
        "bot": {"username": "TestBot"},
        "ignored_users": ["IgnoredBot"],
        "ledger": {"spreadsheet_id": "sheet-123", "sheet_name": "Tracker"},
        "bidwars": make_bidwars_dict(),
    }
    base.update(overrides)
    return base


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLedger:
    """In-memory stand-in for GoogleSheetsLedger.

    The aggregate view is computed from the table the way the sheet's
    formulas would: one total per catalog option, summed by choice.
    """

    HEADER = ["Contributor", "What", "Points", "Choice", "Message"]

    def __init__(self, catalog: Catalog, rows: list[list[Any]] | None = None) -> None:
        self.catalog = catalog
        self.rows: list[list[Any]] = [list(self.HEADER)] + [list(r) for r in rows or []]
        self.range = "'Tracker'!A1:E100"
        self.write_calls = 0

    async def get_table(self) -> ValueRange:
        return ValueRange(range=self.range, values=[list(r) for r in self.rows])

    async def write_table(self, vr: ValueRange) -> int:
        self.write_calls += 1
        updated = 0
        for i, patch in enumerate(vr.values):
            if not patch:
                continue
            row = self.rows[i]
            row.extend([""] * (len(patch) - len(row)))
            for col, value in enumerate(patch):
                if value is not None:
                    row[col] = value
            updated += 1
        return updated

    async def append_row(self, values: list[Any]) -> None:
        self.rows.append(list(values))

    async def get_aggregate(self) -> tuple[list[Any], list[Any]]:
        sums: dict[str, int] = {}
        for raw in self.rows[1:]:
            row = LedgerRow(raw)
            sums[row.choice] = sums.get(row.choice, 0) + row.cents
        names: list[Any] = ["Option"]
        totals: list[Any] = ["Total"]
        for contest in self.catalog.contests:
            for opt in contest.options:
                names.append(opt.short_code)
                totals.append(format_cents(sums.get(opt.short_code, 0)))
        return names, totals


@pytest.fixture
def sample_config_dict() -> dict:
    """Return a config dict suitable for tests."""
    return make_config_dict()


@pytest.fixture
def sample_config(sample_config_dict: dict) -> BidwarConfig:
    """Return a parsed BidwarConfig."""
    return BidwarConfig(**sample_config_dict)


@pytest.fixture
def catalog() -> Catalog:
    """Catalog with two contests and a seeded random source."""
    return Catalog.from_dict(make_bidwars_dict(), rng=random.Random(42))


@pytest.fixture
def ledger(catalog: Catalog) -> FakeLedger:
    return FakeLedger(catalog)


@pytest.fixture
def tallier(ledger: FakeLedger, catalog: Catalog) -> Tallier:
    return Tallier(ledger, catalog, logging.getLogger("test.tally"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mock_client() -> MagicMock:
    """Return a mock KrytenClient with async methods."""
    client = MagicMock()
    client.send_chat = AsyncMock(return_value="corr-id-456")
    client.connect = AsyncMock()
    client.run = AsyncMock()
    client.stop = AsyncMock()
    client.subscribe = AsyncMock()
    client.subscribe_request_reply = AsyncMock()
    return client


@pytest.fixture
def dispatcher(
    sample_config: BidwarConfig,
    catalog: Catalog,
    tallier: Tallier,
    clock: FakeClock,
    mock_client: MagicMock,
) -> BidDispatcher:
    """BidDispatcher with an in-memory ledger and an unlimited reply budget."""
    return BidDispatcher(
        config=sample_config,
        catalog=catalog,
        tallier=tallier,
        preferences=PreferenceCache(180.0, clock=clock),
        gift_tracker=GiftBurstTracker(5.0, clock=clock),
        rate_limiter=ReplyRateLimiter(2.0, burst=100, clock=clock),
        client=mock_client,
        logger=logging.getLogger("test.dispatch"),
    )
