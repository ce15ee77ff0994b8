"""Bid dispatcher — routes donations and bid commands through attribution.

Pipeline for a donation:
gift dedup → alias match (or pending preference) → ledger append →
contest totals → summary → rate-limited chat reply.

Replies are best-effort: failures and rate-limited replies are logged and
dropped, never retried or replaced with an error message.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .catalog import Choice, ChoiceReason, Option
from .donation import DonationEvent, EventKind, format_cents
from .ledger import LedgerError
from .tally import UpdateStats

if TYPE_CHECKING:
    from kryten import KrytenClient

    from .catalog import Catalog
    from .config import BidwarConfig
    from .gift_dedup import GiftBurstTracker
    from .preference_cache import PreferenceCache
    from .rate_limiter import ReplyRateLimiter
    from .tally import Tallier


_REASON_BY_KIND: dict[EventKind, ChoiceReason] = {
    EventKind.SUBSCRIPTION: ChoiceReason.SUB_MESSAGE,
    EventKind.GIFT_SUBSCRIPTION: ChoiceReason.SUB_MESSAGE,
    EventKind.COMMUNITY_GIFT: ChoiceReason.SUB_MESSAGE,
    EventKind.BITS: ChoiceReason.CHAT_MESSAGE,
    EventKind.TIP: ChoiceReason.DONATION_MESSAGE,
}


class BidDispatcher:
    """Attributes donations and bid commands, and replies with totals."""

    def __init__(
        self,
        config: BidwarConfig,
        catalog: Catalog,
        tallier: Tallier,
        preferences: PreferenceCache,
        gift_tracker: GiftBurstTracker,
        rate_limiter: ReplyRateLimiter,
        client: KrytenClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._catalog = catalog
        self._tallier = tallier
        self._preferences = preferences
        self._gifts = gift_tracker
        self._rate_limiter = rate_limiter
        self._client = client
        self._logger = logger or logging.getLogger("bidwar.dispatch")

        self._ignored_users: set[str] = {u.lower() for u in config.ignored_users}
        self._bot_username_lower = config.bot.username.lower()
        self._bid_command = config.chat.bid_command.lower()

        # Counters (for metrics)
        self.donations_recorded: int = 0
        self.donations_attributed: int = 0
        self.gift_subs_suppressed: int = 0
        self.bids_assigned: int = 0
        self.replies_sent: int = 0
        self.replies_dropped: int = 0
        self.ledger_errors: int = 0

    @property
    def pending_preferences(self) -> int:
        return len(self._preferences)

    # ══════════════════════════════════════════════════════════
    #  Donations
    # ══════════════════════════════════════════════════════════

    async def handle_donation(self, event: DonationEvent) -> Choice:
        """Record a donation, attribute it, and announce the new totals.

        Returns the choice the donation was attributed to (possibly empty).
        """
        if event.kind is EventKind.COMMUNITY_GIFT:
            self._gifts.mark_burst(event.owner)
        if event.kind is EventKind.GIFT_SUBSCRIPTION and self._gifts.should_suppress(event.owner):
            self.gift_subs_suppressed += 1
            self._logger.debug("Ignoring gift sub from %s after mass gift", event.owner)
            return Choice()

        self._logger.info(
            "new %s by %s worth %s (%s)",
            event.kind.value, event.owner, format_cents(event.value_cents), event.description(),
        )
        choice = self.get_choice(event)

        try:
            await self._tallier.record_donation(event, choice)
        except LedgerError as e:
            self.ledger_errors += 1
            self._logger.error("Failed writing donation from %s to ledger: %s", event.owner, e)
            return choice
        self.donations_recorded += 1

        if choice.is_resolved():
            self.donations_attributed += 1
            await self.say_with_totals(
                event.channel, choice.option, self._donation_prefix(event, choice.option),
            )
        return choice

    def get_choice(self, event: DonationEvent) -> Choice:
        """Pick the option a donation goes to.

        The donation's own message wins; otherwise fall back to a pending
        preference from an earlier bid command.
        """
        if event.value_cents < self._config.attribution.minimum_donation_cents:
            return Choice()
        choice = self._catalog.resolve(event.message, _REASON_BY_KIND[event.kind])
        if choice.is_resolved():
            return choice
        pending = self._preferences.consume(event.owner)
        if pending is None:
            return Choice()
        return pending

    @staticmethod
    def _donation_prefix(event: DonationEvent, option: Option) -> str:
        if event.kind is EventKind.TIP:
            return (
                f"${format_cents(event.value_cents)} donation from {event.owner} "
                f"put towards {option.display_name}."
            )
        what = "bits" if event.kind is EventKind.BITS else "sub"
        return f"@{event.owner}: I put your {what} towards {option.display_name}."

    # ══════════════════════════════════════════════════════════
    #  Chat
    # ══════════════════════════════════════════════════════════

    def is_bid_command(self, message: str) -> bool:
        return message.lower().startswith(self._bid_command)

    async def handle_chat_message(self, username: str, channel: str, message: str) -> UpdateStats | None:
        """Handle a chat message. Only bid commands do anything."""
        lowered = username.lower()
        if lowered in self._ignored_users or lowered == self._bot_username_lower:
            return None
        if not self.is_bid_command(message):
            return None
        return await self.handle_bid_command(username, channel, message)

    async def handle_bid_command(self, donor: str, channel: str, message: str) -> UpdateStats | None:
        """Assign the donor's unassigned donations to the option they named.

        With nothing to assign yet, the choice is remembered for a few
        minutes so a late-arriving donation still gets attributed.
        """
        try:
            stats = await self._tallier.assign(donor, message)
        except ValueError as e:
            self._logger.warning("Rejected bid command from %r: %s", donor, e)
            return None
        except LedgerError as e:
            self.ledger_errors += 1
            self._logger.error("Failed assigning bid command for %s: %s", donor, e)
            return None

        option = stats.choice.option
        if option.is_zero():
            codes = [o.short_code for o in self._catalog.all_open_options()]
            if codes:
                await self.say(channel, f"@{donor}: These are the options: {', '.join(codes)}")
            return stats

        self.bids_assigned += 1
        if stats.total_cents > 0:
            msg = f"@{donor}: +{format_cents(stats.total_cents)} for {option.display_name}"
        else:
            self._preferences.remember(donor, stats.choice)
            msg = f"@{donor}: You had no points yet, but I'll remember your choice for a few minutes."
        await self.say_with_totals(channel, option, msg)
        return stats

    # ══════════════════════════════════════════════════════════
    #  Replies
    # ══════════════════════════════════════════════════════════

    async def say(self, channel: str, msg: str) -> bool:
        """Send a chat reply unless we're on cooldown. Returns True if sent."""
        if not self._rate_limiter.allow():
            self.replies_dropped += 1
            self._logger.info("[on cooldown for #%s] %s", channel, msg)
            return False
        self._logger.info("[-> #%s] %s", channel, msg)
        if not self._config.chat.replies_enabled or self._client is None:
            return False
        try:
            await self._client.send_chat(channel, msg)
        except Exception as e:
            self._logger.warning("Chat reply to #%s failed: %s", channel, e)
            return False
        self.replies_sent += 1
        return True

    async def say_with_totals(self, channel: str, option: Option, prefix: str = "") -> bool:
        """Reply with ``prefix`` followed by the option's contest summary."""
        if option.is_zero():
            return False
        try:
            totals = await self._tallier.totals_for_option(option)
        except LedgerError as e:
            self.ledger_errors += 1
            self._logger.error("Failed reading new bid war totals: %s", e)
            return False
        if totals is None:
            self._logger.warning("Could not find bid war for option %r", option.short_code)
            return False

        msg = totals.describe(option)
        if prefix:
            msg = f"{prefix} {msg}"
        return await self.say(channel, msg)
