"""
RPC connection pool: one client per chain id.
Clients are created lazily and dropped whenever the chain registry changes.
"""
import asyncio
import logging
import threading
from typing import Callable, Dict, List, Optional

from core.chains import ChainRegistry
from core.errors import ConfigurationError
from core.models import ChainConfig
from core.rpc import JsonRpcClient, RpcClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ChainConfig], RpcClient]


class ProviderPool:
    """
    Manages RPC clients - one per configured chain.

    The pool subscribes to registry changes: after any apply_overrides() every
    cached client is retired and closed, since endpoints may have changed.
    """

    def __init__(self, registry: ChainRegistry, client_factory: Optional[ClientFactory] = None):
        """Initialize the pool over a chain registry."""
        self.registry = registry
        self.client_factory: ClientFactory = client_factory or JsonRpcClient

        # Pool of clients: chain id -> client
        self.clients: Dict[int, RpcClient] = {}

        self._retired: List[RpcClient] = []
        self._closing: set = set()
        self._lock = threading.Lock()

        registry.add_listener(self.invalidate)

    def get(self, chain_id: int) -> RpcClient:
        """Return the cached client for chain_id, creating it if needed."""
        with self._lock:
            client = self.clients.get(chain_id)
            if client is not None:
                return client

            chain = self.registry.get(chain_id)
            if chain is None or not chain.rpc_endpoint:
                raise ConfigurationError(f"no endpoint for chain {chain_id}", chain_id)

            logger.info(f"Opening RPC client for {chain.display_name} ({chain_id}): {chain.rpc_endpoint}")
            client = self.client_factory(chain)
            self.clients[chain_id] = client
            return client

    def invalidate(self):
        """Drop every cached client; they are closed in the background."""
        with self._lock:
            retired = list(self.clients.values())
            self.clients.clear()

        if not retired:
            return

        logger.info(f"Invalidating {len(retired)} RPC clients")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._retired.extend(retired)
            return

        for client in retired:
            task = loop.create_task(self._close_client(client))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)

    async def _close_client(self, client: RpcClient):
        try:
            await client.close()
        except Exception as e:
            logger.error(f"Error closing RPC client: {e}")

    async def aclose(self):
        """Close every client, including ones retired by invalidate()."""
        with self._lock:
            clients = list(self.clients.values()) + self._retired
            self.clients.clear()
            self._retired = []

        logger.info(f"Closing {len(clients)} RPC clients...")
        await asyncio.gather(*(self._close_client(c) for c in clients))
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)
        logger.info("All RPC clients closed")

    def get_connection_count(self) -> int:
        """Get the number of open clients."""
        return len(self.clients)

    def get_connected_chains(self) -> List[int]:
        """Get list of chain ids with an open client."""
        return list(self.clients.keys())
