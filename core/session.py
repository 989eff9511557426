"""
Monitoring session: starts and stops per-chain subscription managers and
block pollers for the watched address.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from core.context import MonitorContext
from core.errors import ConfigurationError, PreconditionError
from core.models import SessionState, StartReport
from core.poller import BlockPoller
from core.subscriptions import EventSubscriptionManager
from core.wallet import AddressProvider

logger = logging.getLogger(__name__)


@dataclass
class ChainMonitor:
    """What is running for one active chain."""
    subscriptions: EventSubscriptionManager
    poller: BlockPoller

    async def cancel(self):
        await self.subscriptions.cancel()
        await self.poller.cancel()


class MonitoringSession:
    """IDLE -> ACTIVE -> IDLE lifecycle over a subset of configured chains."""

    def __init__(self, context: MonitorContext, wallet: AddressProvider):
        self.context = context
        self.wallet = wallet
        self.state = SessionState.IDLE
        self.watched_address: Optional[str] = None
        self.monitors: Dict[int, ChainMonitor] = {}

    @property
    def active_chains(self) -> List[int]:
        return list(self.monitors)

    async def start(
        self,
        chain_ids: Iterable[int],
        token_allowlist: Optional[Iterable[str]] = None,
        counterparty_address: Optional[str] = None
    ) -> StartReport:
        """
        Start monitoring the requested chains.

        Chains that are already active are left alone. A chain without a
        usable endpoint is reported in StartReport.failed and does not stop
        the others.

        Raises:
            PreconditionError: No watched address or no chains requested
        """
        address = self.wallet.current_address()
        if not address:
            raise PreconditionError("Set a watched address before starting monitoring")
        chain_ids = list(dict.fromkeys(chain_ids or []))
        if not chain_ids:
            raise PreconditionError("Select at least one chain to monitor")
        if self.state == SessionState.ACTIVE and address != self.watched_address:
            await self.stop()

        tokens = list(token_allowlist) if token_allowlist else None
        report = StartReport()

        for chain_id in chain_ids:
            if chain_id in self.monitors:
                report.already_active.append(chain_id)
                continue

            try:
                client = self.context.pool.get(chain_id)
            except ConfigurationError as e:
                logger.warning(f"Cannot monitor chain {chain_id}: {e}")
                report.failed[chain_id] = str(e)
                continue

            chain = self.context.registry.get(chain_id)
            chain_name = chain.display_name if chain else None
            monitor = ChainMonitor(
                subscriptions=EventSubscriptionManager(
                    chain_id, client, address, self.context.notifier,
                    token_allowlist=tokens,
                    backfill_blocks=self.context.backfill_blocks,
                    chain_name=chain_name,
                ),
                poller=BlockPoller(
                    chain_id, client, address, self.context.notifier,
                    counterparty_address=counterparty_address,
                    interval=self.context.poll_interval,
                    chain_name=chain_name,
                ),
            )
            monitor.subscriptions.start()
            monitor.poller.start()
            self.monitors[chain_id] = monitor
            report.started.append(chain_id)

        if self.monitors:
            self.state = SessionState.ACTIVE
            self.watched_address = address

        logger.info(
            f"Monitoring {address} on {self.active_chains} "
            f"(started={report.started}, failed={list(report.failed)})"
        )
        return report

    async def stop(self):
        """Cancel everything on every chain. Safe to call when idle."""
        if not self.monitors and self.state == SessionState.IDLE:
            return

        monitors = list(self.monitors.items())
        self.monitors.clear()
        for chain_id, monitor in monitors:
            await monitor.cancel()
            logger.info(f"Stopped monitoring chain {chain_id}")

        self.state = SessionState.IDLE
        self.watched_address = None
