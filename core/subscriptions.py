"""
ERC-20 transfer discovery for one chain: historical backfill plus live
Transfer event listeners for every token of interest.
"""
import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional

from core.errors import TransientRpcError
from core.models import TransferEvent, TransferKind, format_units
from core.rpc import MAX_TOKEN_DECIMALS, LogCallback, RpcClient, decode_transfer_log, transfer_filter

logger = logging.getLogger(__name__)

# Public RPC endpoints reject unbounded eth_getLogs ranges
DEFAULT_BACKFILL_BLOCKS = 5000

# Used when a token has no working decimals() accessor
DEFAULT_DECIMALS = 18


class EventSubscriptionManager:
    """
    Watches one chain for ERC-20 transfers to the watched address.

    Tokens of interest are the explicit allowlist when one is given, otherwise
    every token contract seen in the backfill window. Backfill failures are
    logged and never prevent live subscriptions to allowlisted tokens.
    """

    def __init__(
        self,
        chain_id: int,
        client: RpcClient,
        watched_address: str,
        notifier,
        token_allowlist: Optional[Iterable[str]] = None,
        backfill_blocks: int = DEFAULT_BACKFILL_BLOCKS,
        chain_name: Optional[str] = None
    ):
        self.chain_id = chain_id
        self.chain_name = chain_name or f"Chain {chain_id}"
        self.client = client
        self.watched_address = watched_address.lower()
        self.notifier = notifier
        self.token_allowlist: Optional[List[str]] = (
            _unique_lower(token_allowlist) if token_allowlist else None
        )
        self.backfill_blocks = backfill_blocks

        self.active = True
        self._task: Optional[asyncio.Task] = None
        self._subscribed: Dict[str, LogCallback] = {}
        self._cancels: List[Callable[[], None]] = []
        self._decimals: Dict[str, int] = {}
        # Head block covered by the most recent successful backfill
        self.backfill_head: Optional[int] = None

    @property
    def subscribed_tokens(self) -> List[str]:
        return list(self._subscribed)

    def start(self):
        """Run backfill and live subscription in the background."""
        if self._task is not None:
            return
        self.active = True
        self._task = asyncio.create_task(self.run(), name=f"subscriptions-{self.chain_id}")

    async def run(self):
        """Backfill, then subscribe to every token of interest."""
        if self.token_allowlist:
            for token in self.token_allowlist:
                if not self.active:
                    return
                await self.backfill(token)
                self.subscribe_token(token, from_block=self.backfill_head)
            return

        tokens = await self.backfill()
        if not tokens:
            logger.info(f"[{self.chain_name}] No token transfers found in backfill window, nothing to subscribe")
        for token in tokens:
            self.subscribe_token(token, from_block=self.backfill_head)

    async def backfill(self, token: Optional[str] = None) -> List[str]:
        """
        Report Transfer events to the watched address in the recent window.

        Args:
            token: Restrict the query to one token contract (None = any token)

        Returns:
            Distinct token contracts found, in first-seen order
        """
        log_filter = transfer_filter(self.watched_address, token)
        self.backfill_head = None
        try:
            latest = await self.client.get_block_number()
            from_block = max(0, latest - self.backfill_blocks)
            logs = await self.client.get_logs(from_block, latest, log_filter.address, log_filter.topics)
        except TransientRpcError as e:
            logger.warning(f"[{self.chain_name}] Backfill failed for {token or 'all tokens'}: {e}")
            return []

        self.backfill_head = latest
        logger.info(f"[{self.chain_name}] Backfill found {len(logs)} transfer logs ({from_block}..{latest})")

        tokens: List[str] = []
        for log in logs:
            if not self.active:
                break
            transfer = decode_transfer_log(log)
            if not transfer or transfer["recipient"] != self.watched_address:
                continue
            if transfer["contract"] and transfer["contract"] not in tokens:
                tokens.append(transfer["contract"])
            await self._emit(transfer)
        return tokens

    def subscribe_token(self, token: str, from_block: Optional[int] = None) -> bool:
        """
        Attach a live Transfer listener for token. Idempotent per token.

        Args:
            token: Token contract to listen on
            from_block: Last block already covered by backfill; the listener
                delivers logs from the block after it

        Returns:
            True if a new listener was registered
        """
        token = token.lower()
        if not self.active or token in self._subscribed:
            return False

        log_filter = transfer_filter(self.watched_address, token)

        async def on_transfer_log(log: dict):
            if not self.active:
                return
            transfer = decode_transfer_log(log)
            if transfer and transfer["recipient"] == self.watched_address:
                await self._emit(transfer)

        self.client.on(log_filter, on_transfer_log, from_block)
        self._subscribed[token] = on_transfer_log
        self._cancels.append(lambda: self.client.off(log_filter, on_transfer_log))
        logger.info(f"[{self.chain_name}] Listening for {token} transfers to {self.watched_address}")
        return True

    async def resolve_decimals(self, token: str) -> int:
        """Token decimals, falling back to 18 when decimals() fails or is not a uint8."""
        if token in self._decimals:
            return self._decimals[token]
        try:
            decimals = await self.client.token_decimals(token)
        except TransientRpcError as e:
            logger.debug(f"[{self.chain_name}] decimals() failed for {token}, using {DEFAULT_DECIMALS}: {e}")
            return DEFAULT_DECIMALS
        if not 0 <= decimals <= MAX_TOKEN_DECIMALS:
            logger.warning(f"[{self.chain_name}] Ignoring decimals()={decimals} from {token}, using {DEFAULT_DECIMALS}")
            decimals = DEFAULT_DECIMALS
        self._decimals[token] = decimals
        return decimals

    async def _emit(self, transfer: dict):
        decimals = await self.resolve_decimals(transfer["contract"])
        if not self.active:
            return

        event = TransferEvent(
            chain_id=self.chain_id,
            kind=TransferKind.TOKEN,
            from_address=transfer["sender"],
            to_address=transfer["recipient"],
            token_address=transfer["contract"],
            amount=format_units(transfer["amount_raw"], decimals),
            tx_hash=transfer["tx_hash"],
            block_number=transfer["block_number"],
        )
        await self.notifier.notify(event)

    async def cancel(self):
        """Detach every listener on this chain and stop the backfill."""
        self.active = False

        for off in self._cancels:
            try:
                off()
            except Exception as e:
                logger.warning(f"[{self.chain_name}] Error detaching listener: {e}")
        self._cancels.clear()
        self._subscribed.clear()

        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None


def _unique_lower(values: Iterable[str]) -> List[str]:
    result = []
    for value in values:
        value = value.strip().lower()
        if value and value not in result:
            result.append(value)
    return result
