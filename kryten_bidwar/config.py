"""Configuration system for kryten-bidwar.

All Pydantic models are defined here with sensible defaults. The top-level
model extends KrytenConfig so the kryten-py client can consume it directly.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from kryten import KrytenConfig
from pydantic import BaseModel, Field, model_validator

from .catalog import SummaryStyle, compile_alias


# ═══════════════════════════════════════════════════════════════
#  Service
# ═══════════════════════════════════════════════════════════════

class BotConfig(BaseModel):
    username: str = "BidwarBot"


class ChatConfig(BaseModel):
    replies_enabled: bool = Field(default=True, description="False = only log replies")
    bid_command: str = "!bid"
    reply_interval_seconds: float = Field(
        default=2.0, gt=0, description="Minimum seconds between outgoing replies",
    )
    reply_burst: int = Field(default=1, ge=1)


class AttributionConfig(BaseModel):
    # Smaller donations are still recorded, but never attributed or announced.
    minimum_donation_cents: int = 100
    preference_ttl_seconds: float = 180.0
    mass_gift_window_seconds: float = 5.0


class LedgerConfig(BaseModel):
    spreadsheet_id: str = ""
    sheet_name: str = "Bid war tracker"
    credentials_path: str = "service_account.json"
    names_range: str = Field(default="bidWarNames", description="Named range of option short codes")
    totals_range: str = Field(default="bidWarTotals", description="Named range of option totals")
    timeout_seconds: float = 30.0


class StreamlabsConfig(BaseModel):
    enabled: bool = False
    access_token: str = ""
    base_url: str = "https://streamlabs.com/api/v1.0/donations"
    currency: str = "USD"
    poll_interval_seconds: float = 30.0
    channel: str = Field(default="", description="Channel that tip replies go to")

    @model_validator(mode="after")
    def _check_enabled(self) -> StreamlabsConfig:
        if self.enabled:
            if not self.access_token:
                raise ValueError("streamlabs.access_token is required when streamlabs is enabled")
            if not self.channel:
                raise ValueError("streamlabs.channel is required when streamlabs is enabled")
        return self


# ═══════════════════════════════════════════════════════════════
#  Bid wars
# ═══════════════════════════════════════════════════════════════

class OptionConfig(BaseModel):
    display_name: str
    short_code: str
    aliases: list[str] = Field(default_factory=list)
    closed: bool = False

    @model_validator(mode="after")
    def _check_aliases(self) -> OptionConfig:
        for alias in self.aliases:
            compile_alias(alias)
        return self


class ContestConfig(BaseModel):
    name: str
    summary_style: SummaryStyle = SummaryStyle.ALL
    number_of_winners: int = Field(default=1, ge=1)
    options: list[OptionConfig] = Field(default_factory=list)
    closed: bool = False


class BidwarsConfig(BaseModel):
    require_explicit_bid: bool = Field(
        default=False,
        description="Only accept bids via the bid command, never inferred from messages",
    )
    contests: list[ContestConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_short_codes(self) -> BidwarsConfig:
        seen: set[str] = set()
        for contest in self.contests:
            for opt in contest.options:
                if opt.short_code in seen:
                    raise ValueError(f"duplicate option short code: {opt.short_code}")
                seen.add(opt.short_code)
        return self


# NOTE: metrics is inherited from KrytenConfig (kryten.config.MetricsConfig).


# ═══════════════════════════════════════════════════════════════
#  Top-Level Config
# ═══════════════════════════════════════════════════════════════

class BidwarConfig(KrytenConfig):
    """Full bid war config — extends KrytenConfig with the bid war sections."""

    bot: BotConfig = Field(default_factory=BotConfig)
    ignored_users: list[str] = Field(default_factory=list)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    attribution: AttributionConfig = Field(default_factory=AttributionConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    streamlabs: StreamlabsConfig = Field(default_factory=StreamlabsConfig)
    bidwars: BidwarsConfig = Field(default_factory=BidwarsConfig)


# ═══════════════════════════════════════════════════════════════
#  Config Loading
# ═══════════════════════════════════════════════════════════════

def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{([^}:]+)(?::-(.*?))?\}",
            lambda m: os.environ.get(m.group(1), m.group(2) or ""),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def load_config(config_path: str) -> BidwarConfig:
    """Load and validate YAML config file into BidwarConfig."""
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a YAML mapping at the top level.")

    raw = _expand_env_vars(raw)
    return BidwarConfig(**raw)
