"""Normalized donation events.

Every donation source (chat subs and bits, Streamlabs tips, upstream bridge
services) is reduced to a :class:`DonationEvent` carrying a value in cents.
One cent is one hundredth of a bid war point.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum, IntEnum
from typing import Any


class EventKind(str, Enum):
    SUBSCRIPTION = "sub"
    GIFT_SUBSCRIPTION = "subgift"
    COMMUNITY_GIFT = "submysterygift"
    BITS = "bits"
    TIP = "tip"

    @property
    def is_sub(self) -> bool:
        return self in (
            EventKind.SUBSCRIPTION,
            EventKind.GIFT_SUBSCRIPTION,
            EventKind.COMMUNITY_GIFT,
        )


class SubTier(IntEnum):
    UNKNOWN = 0
    TIER_1 = 1
    TIER_2 = 2
    TIER_3 = 3
    PRIME = 101

    @property
    def description(self) -> str:
        return {
            SubTier.TIER_1: "Tier 1",
            SubTier.TIER_2: "Tier 2",
            SubTier.TIER_3: "Tier 3",
            SubTier.PRIME: "Prime",
        }.get(self, "unknown")


# Base value of a single one-month sub, in cents.
SUB_TIER_CENTS: dict[SubTier, int] = {
    SubTier.PRIME: 500,
    SubTier.TIER_1: 600,
    SubTier.TIER_2: 1200,
    SubTier.TIER_3: 2500,
}

# Sub plan strings as sent by the chat platform.
_SUB_PLANS: dict[str, SubTier] = {
    "prime": SubTier.PRIME,
    "1000": SubTier.TIER_1,
    "2000": SubTier.TIER_2,
    "3000": SubTier.TIER_3,
}


def format_cents(cents: int) -> str:
    """Render a cents value as points with two decimals (``994`` → ``"9.94"``)."""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"


def points_to_cents(value: str | float) -> int:
    """Scale a decimal point value to cents, rounding half up."""
    try:
        d = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"invalid decimal value: {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"invalid decimal value: {value!r}")
    return int((d * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_sub_tier(value: Any) -> SubTier:
    """Accept a tier number (1/2/3/101) or a sub plan string ("1000", "Prime")."""
    if isinstance(value, SubTier):
        return value
    if isinstance(value, int):
        try:
            return SubTier(value)
        except ValueError:
            return SubTier.UNKNOWN
    if isinstance(value, str):
        plan = _SUB_PLANS.get(value.strip().lower())
        if plan is not None:
            return plan
        if value.strip().isdigit():
            return parse_sub_tier(int(value))
    return SubTier.UNKNOWN


@dataclass(frozen=True)
class DonationEvent:
    """A single donation, subscription, or cheer credited to one donor."""

    owner: str
    channel: str
    kind: EventKind
    message: str = ""
    sub_tier: SubTier = SubTier.UNKNOWN
    sub_count: int = 0
    sub_months: int = 0
    bits: int = 0
    cash_cents: int = 0

    @property
    def sub_cents(self) -> int:
        return SUB_TIER_CENTS.get(self.sub_tier, 0) * self.sub_months * self.sub_count

    @property
    def value_cents(self) -> int:
        """Value this event contributes to a bid war."""
        return self.sub_cents + self.bits + self.cash_cents

    def description(self) -> str:
        """Human-readable description, e.g. ``"3x Tier 2 gift sub"``."""
        parts: list[str] = []
        if self.cash_cents > 0:
            parts.append(f"${format_cents(self.cash_cents)} donation")
        if self.bits > 0:
            parts.append(f"{self.bits} bits")
        if self.sub_count > 0:
            sub_parts: list[str] = []
            if self.sub_count > 1:
                sub_parts.append(f"{self.sub_count}x")
            if self.sub_tier != SubTier.TIER_1:
                sub_parts.append(self.sub_tier.description)
            if self.kind is EventKind.SUBSCRIPTION:
                sub_parts.append("sub")
            elif self.kind in (EventKind.GIFT_SUBSCRIPTION, EventKind.COMMUNITY_GIFT):
                sub_parts.append("gift sub")
            parts.append(" ".join(sub_parts))
        return " + ".join(parts)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> DonationEvent:
        """Build an event from a normalized request payload.

        Required: ``owner``, ``channel``, ``kind``. Sub events default to one
        one-month sub; a gifted resub (``was_gifted``) always counts as one
        month no matter how many months the original gift covered.
        """
        owner = str(payload.get("owner") or "").strip()
        if not owner:
            raise ValueError("donation payload is missing 'owner'")
        try:
            kind = EventKind(payload.get("kind"))
        except ValueError as e:
            raise ValueError(f"unknown donation kind: {payload.get('kind')!r}") from e

        sub_tier = SubTier.UNKNOWN
        sub_count = sub_months = 0
        if kind.is_sub:
            sub_tier = parse_sub_tier(payload.get("sub_tier", SubTier.TIER_1))
            sub_count = int(payload.get("sub_count") or 1)
            sub_months = int(payload.get("sub_months") or 1)
            if payload.get("was_gifted"):
                sub_months = 1

        return cls(
            owner=owner,
            channel=str(payload.get("channel") or ""),
            kind=kind,
            message=str(payload.get("message") or ""),
            sub_tier=sub_tier,
            sub_count=sub_count,
            sub_months=sub_months,
            bits=int(payload.get("bits") or 0),
            cash_cents=int(payload.get("cash_cents") or 0),
        )
