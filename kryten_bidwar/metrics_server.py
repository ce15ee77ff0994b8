"""Prometheus metrics server for kryten-bidwar.

Subclasses BaseMetricsServer from kryten-py to expose bid war metrics and
health details.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from kryten import BaseMetricsServer

if TYPE_CHECKING:
    from .main import BidwarApp


class BidwarMetricsServer(BaseMetricsServer):
    """Bid-war-specific Prometheus metrics endpoint."""

    def __init__(self, app: BidwarApp, port: int = 28287) -> None:
        super().__init__(
            service_name="bidwar",
            port=port,
            client=app.client,
            logger=app.logger,
        )
        self._app = app

    async def _collect_custom_metrics(self) -> list[str]:
        """Collect bid war Prometheus metrics."""
        d = self._app.dispatcher
        lines: list[str] = [
            f"bidwar_events_processed_total {self._app.events_processed}",
            f"bidwar_commands_processed_total {self._app.commands_processed}",
            f"bidwar_donations_recorded_total {d.donations_recorded}",
            f"bidwar_donations_attributed_total {d.donations_attributed}",
            f"bidwar_gift_subs_suppressed_total {d.gift_subs_suppressed}",
            f"bidwar_bids_assigned_total {d.bids_assigned}",
            f"bidwar_replies_sent_total {d.replies_sent}",
            f"bidwar_replies_dropped_total {d.replies_dropped}",
            f"bidwar_ledger_errors_total {d.ledger_errors}",
            f"bidwar_pending_preferences {d.pending_preferences}",
        ]
        return lines

    async def _get_health_details(self) -> dict:
        """Return health details for the /health endpoint."""
        return {
            "ledger": "open" if self._app.ledger else "closed",
            "contests_open": sum(1 for c in self._app.catalog.contests if not c.closed),
            "streamlabs": "polling" if self._app.streamlabs else "disabled",
        }
