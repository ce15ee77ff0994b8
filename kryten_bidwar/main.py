"""Service orchestrator — BidwarApp.

Follows the canonical kryten-py microservice pattern:
config → ledger open → register handlers → connect → subscribe → metrics → run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

from kryten import KrytenClient

from . import __version__
from .catalog import Catalog
from .command_handler import CommandHandler
from .config import BidwarConfig, load_config
from .dispatcher import BidDispatcher
from .donation import format_cents
from .gift_dedup import GiftBurstTracker
from .ledger import GoogleSheetsLedger
from .metrics_server import BidwarMetricsServer
from .preference_cache import PreferenceCache
from .rate_limiter import ReplyRateLimiter
from .streamlabs import StreamlabsPoller
from .tally import Tallier


class BidwarApp:
    """Top-level application orchestrator."""

    _PRUNE_INTERVAL = 60  # seconds

    def __init__(self, config_path: str) -> None:
        self.config_path = Path(config_path)
        self.logger = logging.getLogger("bidwar")

        # Components (initialized in start())
        self.config: BidwarConfig | None = None
        self.client: KrytenClient | None = None
        self.catalog: Catalog | None = None
        self.ledger: GoogleSheetsLedger | None = None
        self.tallier: Tallier | None = None
        self.gift_tracker: GiftBurstTracker | None = None
        self.dispatcher: BidDispatcher | None = None
        self.command_handler: CommandHandler | None = None
        self.metrics_server: BidwarMetricsServer | None = None
        self.streamlabs: StreamlabsPoller | None = None

        # State
        self._running = False
        self._start_time: float | None = None
        self._prune_task: asyncio.Task | None = None

        # Counters (for metrics)
        self.events_processed: int = 0
        self.commands_processed: int = 0

    @property
    def uptime_seconds(self) -> float:
        if self._start_time is None:
            return 0.0
        return time.time() - self._start_time

    async def _prune_loop(self) -> None:
        """Periodically drop stale mass-gift markers."""
        try:
            while True:
                await asyncio.sleep(self._PRUNE_INTERVAL)
                dropped = self.gift_tracker.prune()
                if dropped:
                    self.logger.debug("Pruned %d mass-gift markers", dropped)
        except asyncio.CancelledError:
            pass

    async def start(self) -> None:
        """Start the bid war service — canonical kryten-py sequence."""
        self.logger.info("Starting kryten-bidwar...")
        self._start_time = time.time()

        # 1. Load and validate config
        self.config = load_config(str(self.config_path))
        self.catalog = Catalog.from_dict(self.config.bidwars.model_dump(mode="json"))
        self.logger.info(
            "Config loaded: %d channel(s), %d contest(s), %d open option(s)",
            len(self.config.channels),
            len(self.catalog.contests),
            len(self.catalog.all_open_options()),
        )

        # 2. Open the ledger and report current totals
        self.ledger = GoogleSheetsLedger(self.config.ledger, self.logger)
        await self.ledger.open()
        self.tallier = Tallier(self.ledger, self.catalog, self.logger)
        totals = await self.tallier.get_totals()
        self.logger.info("Found %d bid war options in the ledger", len(totals))
        for t in totals:
            self.logger.info("Current total for %r is %s", t.option.display_name, format_cents(t.value_cents))

        # 3. Initialize attribution components
        attribution = self.config.attribution
        self.gift_tracker = GiftBurstTracker(attribution.mass_gift_window_seconds)
        self.dispatcher = BidDispatcher(
            config=self.config,
            catalog=self.catalog,
            tallier=self.tallier,
            preferences=PreferenceCache(attribution.preference_ttl_seconds),
            gift_tracker=self.gift_tracker,
            rate_limiter=ReplyRateLimiter(
                self.config.chat.reply_interval_seconds,
                self.config.chat.reply_burst,
            ),
            client=None,  # Set after client creation
            logger=self.logger,
        )

        # 4. Create KrytenClient
        self.client = KrytenClient(self.config)
        self.dispatcher._client = self.client

        # 5. Register event handlers BEFORE connect
        @self.client.on("chatmsg")
        async def handle_chatmsg(event):
            try:
                self.events_processed += 1
                await self.dispatcher.handle_chat_message(
                    event.username, event.channel, event.message,
                )
            except Exception:
                self.logger.exception("chatmsg handler error for %s", getattr(event, "username", "?"))

        # 6. Connect to NATS
        await self.client.connect()
        self.logger.info("Connected to NATS")

        # 7. Start command handler
        self.command_handler = CommandHandler(self, self.client, self.logger)
        await self.command_handler.connect()
        self.logger.info("Command handler ready on kryten.bidwar.command")

        # 8. Start metrics server
        metrics_port = self.config.metrics.port if self.config.metrics else 28287
        self.metrics_server = BidwarMetricsServer(self, port=metrics_port)
        await self.metrics_server.start()
        self.logger.info("Metrics server started on port %d", metrics_port)

        # 9. Start Streamlabs polling (non-fatal if it fails)
        if self.config.streamlabs.enabled:
            poller = StreamlabsPoller(
                self.config.streamlabs,
                self._handle_streamlabs_donation,
                self.logger,
            )
            try:
                await poller.start()
                self.streamlabs = poller
            except Exception as e:
                self.logger.error("(non-fatal) Streamlabs polling not started: %s", e)
                await poller.stop()
        else:
            self.logger.info("Streamlabs polling disabled")

        self._prune_task = asyncio.create_task(self._prune_loop())

        # 10. Mark running
        self._running = True
        self.logger.info("kryten-bidwar started successfully (v%s)", __version__)

        # 11. Block on client event loop
        await self.client.run()

    async def _handle_streamlabs_donation(self, event) -> None:
        self.events_processed += 1
        await self.dispatcher.handle_donation(event)

    async def stop(self) -> None:
        """Gracefully shut down all components in reverse order."""
        if not self._running:
            return
        self.logger.info("Shutting down kryten-bidwar...")
        self._running = False

        if self._prune_task:
            self._prune_task.cancel()
            try:
                await self._prune_task
            except asyncio.CancelledError:
                pass
        if self.streamlabs:
            await self.streamlabs.stop()
        if self.metrics_server:
            await self.metrics_server.stop()
        if self.client:
            await self.client.stop()

        self.logger.info("kryten-bidwar stopped.")
