"""
Activity notifier: the single choke point between detection and delivery.
Applies the seen-set, attaches chain metadata and fans out to every sink.
"""
import logging
from typing import List, Optional, Protocol

from core.chains import ChainRegistry
from core.dedup import Deduplicator
from core.models import ChainConfig, TransferEvent, TransferNotification
from utils.logging_config import log_transfer

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def deliver(self, notification: TransferNotification) -> None: ...


class ActivityNotifier:
    """
    Delivers each transfer to the sinks at most once per (kind, tx hash).
    Events without a tx hash are always delivered.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        deduplicator: Deduplicator,
        sinks: Optional[List[NotificationSink]] = None
    ):
        """Initialize notifier."""
        self.registry = registry
        self.deduplicator = deduplicator
        self.sinks: List[NotificationSink] = list(sinks or [])

    def add_sink(self, sink: NotificationSink):
        self.sinks.append(sink)

    async def notify(self, event: TransferEvent) -> bool:
        """
        Deliver event unless an identical one was already delivered.

        Returns:
            True if the event reached the sinks, False if it was a duplicate
        """
        key = event.dedup_key
        if key is not None and not self.deduplicator.observe(key):
            logger.debug(f"Duplicate transfer ignored: {key}")
            return False

        chain = self.registry.get(event.chain_id) or ChainConfig.fallback(event.chain_id)
        notification = TransferNotification.for_chain(event, chain)

        log_transfer(
            chain.display_name, event.kind.value, event.amount,
            notification.asset_label, event.from_address, event.tx_hash
        )

        for sink in self.sinks:
            try:
                await sink.deliver(notification)
            except Exception as e:
                logger.error(f"Sink {type(sink).__name__} failed for {event.tx_hash}: {e}", exc_info=True)

        return True
