"""Bid war totals — ranking and chat summaries.

Pure formatting over a snapshot of totals; nothing here touches the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .catalog import Option, SummaryStyle
from .donation import format_cents

SHAME_EMOTE = "usedShame"
LEADER_EMOTE = "usedU"


@dataclass(frozen=True)
class Total:
    """Money contributed towards one option."""

    option: Option
    value_cents: int


@dataclass
class OptionRank:
    """One or more options tied at the same value."""

    # 1 is the most valuable.
    rank: int
    value_cents: int
    options: list[Option] = field(default_factory=list)

    @property
    def names(self) -> str:
        return ", ".join(o.display_name for o in self.options)


class Totals:
    """Totals for one contest, bound to the contest's summary style."""

    def __init__(
        self,
        totals: list[Total],
        summary_style: SummaryStyle = SummaryStyle.ALL,
        number_of_winners: int = 1,
    ) -> None:
        self.totals = list(totals)
        self.summary_style = summary_style
        self.number_of_winners = number_of_winners

    def __iter__(self):
        return iter(self.totals)

    def __len__(self) -> int:
        return len(self.totals)

    def open_totals(self) -> list[Total]:
        return [t for t in self.totals if not t.option.closed]

    def compute_ranks(self) -> list[OptionRank]:
        """Group open options by value, highest first.

        An option's rank is 1 + the number of options strictly ahead of it.
        """
        ordered = sorted(self.open_totals(), key=lambda t: t.value_cents, reverse=True)
        ranks: list[OptionRank] = []
        for idx, t in enumerate(ordered):
            if not ranks or ranks[-1].value_cents != t.value_cents:
                ranks.append(OptionRank(rank=idx + 1, value_cents=t.value_cents))
            ranks[-1].options.append(t.option)
        return ranks

    # ══════════════════════════════════════════════════════════
    #  Summaries
    # ══════════════════════════════════════════════════════════

    def describe(self, subject: Option | None = None) -> str:
        """Human-readable summary of the bid war.

        ``subject`` is the option the triggering event just bid on. The
        summary always mentions it, but may omit others for brevity.
        """
        subject = subject or Option()
        style = self.summary_style
        if style is SummaryStyle.LAST_PLACE:
            return self._describe_last_place(subject)
        if style is SummaryStyle.FIRST_PLACE:
            return self._describe_first_place(subject)
        if style is SummaryStyle.WINNERS:
            if self.number_of_winners == 1:
                return self._describe_first_place(subject)
            return self._describe_winners(subject)
        return self._describe_all()

    def __str__(self) -> str:
        return self.describe()

    def _describe_all(self) -> str:
        open_totals = self.open_totals()
        max_value = max((t.value_cents for t in open_totals), default=0)
        parts = []
        for t in open_totals:
            s = f"{t.option.display_name}: {format_cents(t.value_cents)}"
            if t.value_cents < max_value:
                s += f" (down by {format_cents(max_value - t.value_cents)})"
            parts.append(s)
        return ", ".join(parts)

    @staticmethod
    def _single_option(ranks: list[OptionRank]) -> str | None:
        """Short-circuit text for zero or one open option."""
        if not ranks:
            return ""
        if len(ranks) == 1 and len(ranks[0].options) == 1:
            return f"{ranks[0].options[0].display_name}: {format_cents(ranks[0].value_cents)}"
        return None

    def _describe_last_place(self, subject: Option) -> str:
        ranks = self.compute_ranks()
        short = self._single_option(ranks)
        if short is not None:
            return short

        last = ranks[-1]
        diff = ranks[-2].value_cents - last.value_cents if len(ranks) > 1 else 0

        label = "Tie for last place" if len(last.options) > 1 else "Last place"
        desc = f"{label}: {last.names} (down by {format_cents(diff)})"
        if subject.is_zero():
            return desc

        subject_rank = _find_rank(ranks, subject)
        if subject_rank is None:
            return desc
        if subject_rank.rank == last.rank:
            # Alone in last place despite the donor's efforts.
            if len(last.options) == 1:
                return (
                    f"{subject.display_name} is still in last place "
                    f"(down by {format_cents(diff)}) {SHAME_EMOTE}"
                )
            return desc
        return f"{subject.display_name} is currently #{subject_rank.rank}. {desc}"

    def _describe_first_place(self, subject: Option) -> str:
        ranks = self.compute_ranks()
        short = self._single_option(ranks)
        if short is not None:
            return short

        first = ranks[0]
        diff = first.value_cents - ranks[1].value_cents if len(ranks) > 1 else 0

        label = "Tie for first place" if len(first.options) > 1 else "First place"
        desc = f"{label}: {first.names} (up by {format_cents(diff)})"
        if subject.is_zero():
            return desc

        subject_rank = _find_rank(ranks, subject)
        if subject_rank is None:
            return desc
        if subject_rank.rank == first.rank:
            if len(first.options) == 1:
                return (
                    f"{subject.display_name} is in first place "
                    f"(up by {format_cents(diff)}) {LEADER_EMOTE}"
                )
            return desc
        return f"{subject.display_name} is currently #{subject_rank.rank}. {desc}"

    def _describe_winners(self, subject: Option) -> str:
        ranks = self.compute_ranks()
        short = self._single_option(ranks)
        if short is not None:
            return short

        # Whole tied buckets are included, even past the winner count.
        leading: list[str] = []
        for r in ranks:
            leading.extend(o.display_name for o in r.options)
            if len(leading) >= self.number_of_winners:
                break

        desc = f"Current top {self.number_of_winners}: {', '.join(leading)}"
        if subject.is_zero():
            return desc
        subject_rank = _find_rank(ranks, subject)
        if subject_rank is None:
            return desc
        return f"{subject.display_name} is currently #{subject_rank.rank}. {desc}"


def _find_rank(ranks: list[OptionRank], option: Option) -> OptionRank | None:
    for r in ranks:
        for opt in r.options:
            if opt.short_code == option.short_code:
                return r
    return None
