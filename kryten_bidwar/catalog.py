"""Bid war catalog — contests, options, and the alias matcher.

The catalog is built once from the ``bidwars:`` config section and is
read-only afterwards, so it is shared between handlers without locking.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Special directive donors can use instead of naming an option.
RANDOM_DIRECTIVE = re.compile(r"random", re.IGNORECASE)


class SummaryStyle(str, Enum):
    """How a contest's totals are reported back to chat."""

    ALL = "ALL"
    FIRST_PLACE = "FIRST_PLACE"
    LAST_PLACE = "LAST_PLACE"
    WINNERS = "WINNERS"


class ChoiceReason(Enum):
    """Where a bid war choice was read from."""

    CHAT_MESSAGE = "chat"
    DONATION_MESSAGE = "donation msg"
    SUB_MESSAGE = "sub msg"
    BID_COMMAND = "bid"


def compile_alias(alias: str) -> re.Pattern[str]:
    """Compile an alias as a case-insensitive, whole-word pattern."""
    try:
        return re.compile(rf"\b{alias}\b", re.IGNORECASE | re.ASCII)
    except re.error as e:
        raise ValueError(f"alias {alias!r} not suitable for regexp: {e}") from e


@dataclass(frozen=True)
class Option:
    """A contestant in a bid war."""

    display_name: str = ""
    short_code: str = ""
    aliases: tuple[re.Pattern[str], ...] = field(default=(), compare=False, repr=False)
    closed: bool = False

    def is_zero(self) -> bool:
        return self.short_code == ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Option:
        return cls(
            display_name=data.get("display_name", ""),
            short_code=data.get("short_code", ""),
            aliases=tuple(compile_alias(a) for a in data.get("aliases") or []),
            closed=bool(data.get("closed", False)),
        )


@dataclass(frozen=True)
class Contest:
    """A single bid war between several options."""

    name: str
    options: tuple[Option, ...] = ()
    closed: bool = False
    summary_style: SummaryStyle = SummaryStyle.ALL
    number_of_winners: int = 1

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Contest:
        return cls(
            name=data.get("name", ""),
            options=tuple(Option.from_dict(o) for o in data.get("options") or []),
            closed=bool(data.get("closed", False)),
            summary_style=SummaryStyle(data.get("summary_style") or "ALL"),
            number_of_winners=int(data.get("number_of_winners") or 1),
        )


@dataclass(frozen=True)
class Choice:
    """An option a donor picked, plus why we picked it for them."""

    option: Option = field(default_factory=Option)
    reason: str = ""

    def is_resolved(self) -> bool:
        return not self.option.is_zero()


def reason_string(reason: ChoiceReason, message: str) -> str:
    if not message:
        return ""
    return f"[{reason.value}] {message}"


class Catalog:
    """Ordered, read-only collection of bid war contests."""

    def __init__(
        self,
        contests: list[Contest] | tuple[Contest, ...] = (),
        require_explicit_bid: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        self.contests: tuple[Contest, ...] = tuple(contests)
        # Only accept bids via the explicit chat command when set.
        self.require_explicit_bid = require_explicit_bid
        self._rng = rng or random.Random()

        self._by_code: dict[str, Option] = {}
        for contest in self.contests:
            for opt in contest.options:
                if opt.short_code in self._by_code:
                    raise ValueError(f"duplicate option short code: {opt.short_code}")
                self._by_code[opt.short_code] = opt

    @classmethod
    def from_dict(cls, data: dict[str, Any], rng: random.Random | None = None) -> Catalog:
        """Build a catalog from the ``bidwars:`` config section."""
        return cls(
            contests=[Contest.from_dict(c) for c in data.get("contests") or []],
            require_explicit_bid=bool(data.get("require_explicit_bid", False)),
            rng=rng,
        )

    def all_open_options(self) -> list[Option]:
        """All open options in all open contests, in catalog order."""
        return [
            opt
            for contest in self.contests
            if not contest.closed
            for opt in contest.options
            if not opt.closed
        ]

    def find_option(self, short_code: str) -> Option | None:
        return self._by_code.get(short_code)

    def find_contest(self, option: Option) -> Contest | None:
        """Return the open contest containing ``option``, or ``None``."""
        for contest in self.contests:
            if contest.closed:
                continue
            for opt in contest.options:
                if opt.short_code == option.short_code:
                    return contest
        return None

    def resolve(self, message: str, reason: ChoiceReason) -> Choice:
        """Find the bid war option mentioned in ``message``.

        Returns the option whose alias match starts earliest in the message.
        If nothing matched, the ``random`` directive picks an open option at
        random. The returned Choice carries a provenance reason whenever a
        message was supplied, even if no option matched.
        """
        if self.require_explicit_bid and reason is not ChoiceReason.BID_COMMAND:
            return Choice()

        open_options = self.all_open_options()
        min_index = -1
        min_opt = Option()
        for opt in open_options:
            for alias in opt.aliases:
                m = alias.search(message)
                if m is None:
                    continue
                if min_index < 0 or m.start() < min_index:
                    min_index = m.start()
                    min_opt = opt

        if min_index < 0 and open_options and RANDOM_DIRECTIVE.search(message):
            min_opt = self._rng.choice(open_options)

        return Choice(option=min_opt, reason=reason_string(reason, message))
