"""
TransferWatch - Main Entry Point
Multi-chain monitoring of incoming native and token transfers to one wallet.
"""
import asyncio
import logging
import sys
import time
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from aiogram import Bot

from config import Settings, ensure_data_directory, get_settings
from core.chains import parse_chain_entries
from core.context import build_context
from core.database import ActivityStore
from core.errors import PreconditionError
from core.models import ChainConfig, SessionState, StartReport, TransferNotification, format_units
from core.provider_pool import ClientFactory
from core.rpc import JsonRpcClient
from core.session import MonitoringSession
from core.wallet import WatchOnlyWallet, is_address
from notify.notifier import NotificationSink
from notify.telegram import TelegramSink
from notify.webhook import WebhookSink
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

ChainParams = Tuple[Optional[Tuple[str, ...]], Optional[str]]


class TransferWatchApp:
    """Main application orchestrating registry, session and sinks."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client_factory: Optional[ClientFactory] = None,
        sinks: Optional[List[NotificationSink]] = None
    ):
        """Initialize application components."""
        self.settings = settings or get_settings()
        self.wallet = WatchOnlyWallet(self.settings.watched_address)

        self.context = build_context(
            sinks=sinks,
            client_factory=client_factory or self._make_client,
            seen_capacity=self.settings.seen_capacity_or_none,
            poll_interval=self.settings.poll_interval_seconds,
            backfill_blocks=self.settings.backfill_blocks,
        )
        self.session = MonitoringSession(self.context, self.wallet)

        # Sinks created in setup()
        self.store: Optional[ActivityStore] = None
        self.telegram: Optional[TelegramSink] = None
        self.webhooks: Optional[WebhookSink] = None

        # Start parameters per active chain, reused when configuration changes
        self._chain_params: Dict[int, ChainParams] = {}

        self.start_time = time.time()

    def _make_client(self, chain: ChainConfig) -> JsonRpcClient:
        return JsonRpcClient(
            chain,
            timeout=self.settings.rpc_timeout_seconds,
            log_poll_interval=self.settings.log_poll_interval_seconds,
            reconnect_delay=self.settings.ws_reconnect_delay,
            max_reconnect_delay=self.settings.ws_max_reconnect_delay,
            ping_interval=self.settings.ws_ping_interval,
            ping_timeout=self.settings.ws_ping_timeout,
        )

    async def setup(self):
        """Connect the activity store, create sinks and apply configured overrides."""
        logger.info("Setting up TransferWatch...")

        ensure_data_directory(self.settings)
        self.store = ActivityStore(self.settings.database_path)
        await self.store.connect()
        self.context.notifier.add_sink(self.store)

        if self.settings.bot_token and self.settings.notify_chat_id:
            self.telegram = TelegramSink(Bot(token=self.settings.bot_token), self.settings.notify_chat_id)
            self.context.notifier.add_sink(self.telegram)
            logger.info(f"Telegram delivery enabled for chat {self.settings.notify_chat_id}")

        if self.settings.webhook_url_list:
            self.webhooks = WebhookSink(self.settings.webhook_url_list)
            self.context.notifier.add_sink(self.webhooks)
            logger.info(f"Webhook delivery enabled: {len(self.webhooks.urls)} endpoints")

        if self.settings.chain_overrides:
            self.context.registry.apply_overrides(parse_chain_entries(self.settings.chain_overrides))

        logger.info("Setup complete!")

    async def autostart(self) -> Optional[StartReport]:
        """Start monitoring the chains listed in settings, if an address is set."""
        chain_ids = self.settings.monitor_chain_ids
        if not chain_ids or not self.wallet.current_address():
            logger.info("No chains or watched address configured, waiting for start request")
            return None
        return await self.start_monitoring(
            chain_ids,
            token_allowlist=self.settings.token_allowlist_addresses or None,
            counterparty_address=self.settings.counterparty_address,
        )

    # ===== Control operations =====

    def get_configured_chains(self) -> List[ChainConfig]:
        return list(self.context.registry.all())

    async def apply_chain_configuration(self, entries: Union[str, Iterable[dict]]) -> List[int]:
        """
        Merge chain overrides. An active session is restarted on the same
        chains so that it picks up the new endpoints.
        """
        if isinstance(entries, str):
            entries = parse_chain_entries(entries)

        restart = {cid: self._chain_params[cid] for cid in self.session.active_chains if cid in self._chain_params}
        await self.session.stop()

        applied = self.context.registry.apply_overrides(entries)

        grouped: Dict[ChainParams, List[int]] = {}
        for chain_id, params in restart.items():
            grouped.setdefault(params, []).append(chain_id)
        self._chain_params.clear()
        for (tokens, counterparty), chain_ids in grouped.items():
            logger.info(f"Restarting monitoring on {chain_ids} after configuration change")
            await self.start_monitoring(chain_ids, tokens, counterparty)

        return applied

    async def start_monitoring(
        self,
        chain_ids: Sequence[int],
        token_allowlist: Optional[Iterable[str]] = None,
        counterparty_address: Optional[str] = None
    ) -> StartReport:
        """Start monitoring; raises PreconditionError when nothing can start."""
        tokens = tuple(t.strip().lower() for t in token_allowlist if t.strip()) if token_allowlist else None
        for token in tokens or ():
            if not is_address(token):
                raise PreconditionError(f"Invalid token address: {token}")
        if counterparty_address and not is_address(counterparty_address):
            raise PreconditionError(f"Invalid counterparty address: {counterparty_address}")
        counterparty = counterparty_address.lower() if counterparty_address else None

        report = await self.session.start(chain_ids, tokens, counterparty)
        for chain_id in report.started:
            self._chain_params[chain_id] = (tokens or None, counterparty)
        return report

    async def stop_monitoring(self):
        await self.session.stop()
        self._chain_params.clear()

    def get_address(self) -> Optional[str]:
        return self.wallet.current_address()

    async def set_watched_address(self, address: Optional[str]):
        """Change the watched address; any running session is stopped first."""
        if address and not is_address(address):
            raise PreconditionError(f"Invalid address: {address}")
        if (address or "").lower() == (self.wallet.current_address() or ""):
            return
        await self.stop_monitoring()
        self.wallet.set_address(address)
        logger.info(f"Watched address set to {self.wallet.current_address()}")

    async def get_native_balance(self, chain_id: int) -> dict:
        """Native balance of the watched address on one chain."""
        address = self.wallet.current_address()
        if not address:
            raise PreconditionError("Set a watched address first")
        client = self.context.pool.get(chain_id)
        chain = self.context.registry.get(chain_id)
        wei = await client.get_balance(address)
        return {
            "chainId": chain_id,
            "address": address,
            "balance": format_units(wei, 18),
            "symbol": chain.native_symbol if chain else "",
        }

    async def recent_activity(self, limit: int = 50, chain_id: Optional[int] = None) -> List[TransferNotification]:
        if not self.store:
            return []
        return await self.store.recent(limit=limit, chain_id=chain_id)

    def status(self) -> dict:
        return {
            "state": self.session.state.value,
            "watchedAddress": self.wallet.current_address(),
            "activeChains": self.session.active_chains,
            "connectedChains": self.context.pool.get_connected_chains(),
            "seenTransfers": len(self.context.deduplicator),
            "uptimeSeconds": round(time.time() - self.start_time, 1),
        }

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down TransferWatch...")

        if self.session.state == SessionState.ACTIVE:
            await self.stop_monitoring()
        await self.context.pool.aclose()

        if self.webhooks:
            await self.webhooks.close()
        if self.telegram:
            await self.telegram.close()
        if self.store:
            await self.store.close()

        logger.info("Shutdown complete")


async def main():
    """Main entry point: serve the control API with monitoring running inside it."""
    import uvicorn
    from control_server import create_app

    settings = get_settings()
    setup_logging(log_level=settings.log_level)

    config = uvicorn.Config(
        app=create_app(TransferWatchApp(settings)),
        host=settings.control_host,
        port=settings.control_port,
        log_level=settings.log_level.lower(),
        access_log=True
    )
    server = uvicorn.Server(config)

    try:
        await server.serve()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("TransferWatch stopped by user")


if __name__ == "__main__":
    run()
