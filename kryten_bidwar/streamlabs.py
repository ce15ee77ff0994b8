"""Streamlabs donation poller — async HTTP wrapper around /donations.

Polls on a fixed interval and hands each new tip to a callback as a
DonationEvent, oldest first. All tests mock the HTTP layer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import aiohttp

from .donation import DonationEvent, EventKind, points_to_cents

if TYPE_CHECKING:
    from .config import StreamlabsConfig

DonationCallback = Callable[[DonationEvent], Awaitable[None]]


class StreamlabsPoller:
    """Periodically fetches new Streamlabs donations."""

    def __init__(
        self,
        config: StreamlabsConfig,
        on_donation: DonationCallback,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._on_donation = on_donation
        self._logger = logger or logging.getLogger("bidwar.streamlabs")
        self._session: aiohttp.ClientSession | None = None
        self._task: asyncio.Task | None = None
        self.last_donation_id: int = 0

    async def start(self) -> None:
        """Open the session, skip donations made before startup, start polling."""
        if not self._config.access_token:
            raise ValueError("Streamlabs access token is not configured")
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=10.0),
        )
        _, self.last_donation_id = await self.fetch(limit=1, after=0)
        self._logger.info(
            "Streamlabs polling started (last donation id: %d)", self.last_donation_id,
        )
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._session:
            await self._session.close()
            self._session = None

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.poll_interval_seconds)
            await self.poll_once()

    async def poll_once(self) -> int:
        """Fetch and dispatch new donations. Returns how many were dispatched."""
        try:
            events, last_id = await self.fetch(limit=10, after=self.last_donation_id)
        except Exception as e:
            self._logger.warning("Streamlabs donation poll failed: %s", e)
            return 0
        self.last_donation_id = last_id
        for ev in events:
            try:
                await self._on_donation(ev)
            except Exception:
                self._logger.exception("Streamlabs donation handler error for %s", ev.owner)
        return len(events)

    async def fetch(self, limit: int, after: int) -> tuple[list[DonationEvent], int]:
        """Return donations newer than ``after`` (oldest first) and the newest id."""
        if not self._session:
            raise RuntimeError("Streamlabs poller is not started")
        params: dict[str, str] = {
            "access_token": self._config.access_token,
            "limit": str(limit),
            "currency": self._config.currency,
        }
        if after:
            params["after"] = str(after)

        async with self._session.get(self._config.base_url, params=params) as resp:
            resp.raise_for_status()
            data = await resp.json()

        events, ids = self.parse_response(data)
        if not events:
            return [], after
        return events, ids[-1]

    def parse_response(self, data: dict[str, Any]) -> tuple[list[DonationEvent], list[int]]:
        """Parse a /donations response into events and ids, oldest first.

        The API returns donations newest first.
        """
        donations = data.get("data") or []
        events: list[DonationEvent] = []
        ids: list[int] = []
        for d in reversed(donations):
            events.append(DonationEvent(
                owner=d.get("name", ""),
                channel=self._config.channel,
                kind=EventKind.TIP,
                message=d.get("message") or "",
                cash_cents=points_to_cents(d.get("amount", "0")),
            ))
            ids.append(int(d["donation_id"]))
        return events, ids
