"""
Shared state of one monitoring process, passed explicitly to the components
that need it.
"""
from dataclasses import dataclass
from typing import List, Optional

from core.chains import DEFAULT_CHAINS, ChainRegistry
from core.dedup import Deduplicator
from core.poller import DEFAULT_POLL_INTERVAL
from core.provider_pool import ClientFactory, ProviderPool
from core.subscriptions import DEFAULT_BACKFILL_BLOCKS
from notify.notifier import ActivityNotifier, NotificationSink


@dataclass
class MonitorContext:
    """Registry, pool, seen-set and notifier plus the polling policy."""
    registry: ChainRegistry
    pool: ProviderPool
    deduplicator: Deduplicator
    notifier: ActivityNotifier
    poll_interval: float = DEFAULT_POLL_INTERVAL
    backfill_blocks: int = DEFAULT_BACKFILL_BLOCKS


def build_context(
    sinks: Optional[List[NotificationSink]] = None,
    client_factory: Optional[ClientFactory] = None,
    seen_capacity: Optional[int] = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    backfill_blocks: int = DEFAULT_BACKFILL_BLOCKS,
    registry: Optional[ChainRegistry] = None
) -> MonitorContext:
    """Wire up a context seeded with the default chains."""
    registry = registry or ChainRegistry(DEFAULT_CHAINS)
    deduplicator = Deduplicator(capacity=seen_capacity)
    return MonitorContext(
        registry=registry,
        pool=ProviderPool(registry, client_factory),
        deduplicator=deduplicator,
        notifier=ActivityNotifier(registry, deduplicator, sinks),
        poll_interval=poll_interval,
        backfill_blocks=backfill_blocks,
    )
