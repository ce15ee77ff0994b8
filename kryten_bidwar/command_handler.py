"""Request-reply command handler on kryten.bidwar.command.

Provides a NATS request-reply API for upstream donation bridges and admin
tooling: normalized donation events come in here, and current totals can be
queried without going through chat.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from . import __version__
from .donation import DonationEvent

if TYPE_CHECKING:
    from kryten import KrytenClient

    from .main import BidwarApp

COMMAND_SUBJECT = "kryten.bidwar.command"


class CommandHandler:
    """Handles request-reply commands on kryten.bidwar.command."""

    def __init__(
        self,
        app: BidwarApp,
        client: KrytenClient,
        logger: logging.Logger | None = None,
    ) -> None:
        self._app = app
        self._client = client
        self._logger = logger or logging.getLogger("bidwar.command")

    async def connect(self) -> None:
        """Subscribe to request-reply on kryten.bidwar.command."""
        await self._client.subscribe_request_reply(
            COMMAND_SUBJECT,
            self._handle_command,
        )

    async def _handle_command(self, request: dict[str, Any]) -> dict[str, Any]:
        """Route a command request to the appropriate handler."""
        command = request.get("command", "")
        handler = self._HANDLER_MAP.get(command)

        if not handler:
            return {
                "service": "bidwar",
                "command": command,
                "success": False,
                "error": f"Unknown command: {command}",
            }

        try:
            result = await handler(self, request)
            self._app.commands_processed += 1
            return {
                "service": "bidwar",
                "command": command,
                "success": True,
                "data": result,
            }
        except Exception as e:
            self._logger.exception("Command handler error for %s", command)
            return {
                "service": "bidwar",
                "command": command,
                "success": False,
                "error": str(e),
            }

    # ══════════════════════════════════════════════════════════
    #  Commands
    # ══════════════════════════════════════════════════════════

    async def _handle_ping(self, request: dict[str, Any]) -> dict[str, Any]:
        return {"pong": True, "version": __version__}

    async def _handle_donation(self, request: dict[str, Any]) -> dict[str, Any]:
        """Ingest one normalized donation event from an upstream source."""
        event = DonationEvent.from_payload(request.get("event") or {})
        choice = await self._app.dispatcher.handle_donation(event)
        return {
            "owner": event.owner,
            "value_cents": event.value_cents,
            "choice": choice.option.short_code,
            "reason": choice.reason,
        }

    async def _handle_bid(self, request: dict[str, Any]) -> dict[str, Any]:
        donor = request.get("donor")
        message = request.get("message")
        if not donor or not message:
            raise ValueError("donor and message are required")
        stats = await self._app.tallier.assign(donor, message)
        return {
            "choice": stats.choice.option.short_code,
            "count": stats.count,
            "total_cents": stats.total_cents,
        }

    async def _handle_totals(self, request: dict[str, Any]) -> dict[str, Any]:
        """Current totals and summary for every open contest."""
        contests = []
        for contest in self._app.catalog.contests:
            if contest.closed:
                continue
            totals = await self._app.tallier.totals_for_contest(contest)
            contests.append({
                "name": contest.name,
                "summary": totals.describe(),
                "totals": {t.option.short_code: t.value_cents for t in totals},
            })
        return {"contests": contests}

    async def _handle_options(self, request: dict[str, Any]) -> dict[str, Any]:
        return {
            "options": [
                {"short_code": o.short_code, "display_name": o.display_name}
                for o in self._app.catalog.all_open_options()
            ],
        }

    _HANDLER_MAP: dict[str, Any] = {
        "system.ping": _handle_ping,
        "donation.submit": _handle_donation,
        "bid.assign": _handle_bid,
        "totals.get": _handle_totals,
        "options.list": _handle_options,
    }
