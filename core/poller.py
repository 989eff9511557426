"""
Block poller: scans new blocks on one chain for native-coin transfers to the
watched address, tagging transfers from the counterparty address.
"""
import asyncio
import logging
from typing import Optional

from core.errors import TransientRpcError
from core.models import Block, BlockTransaction, TransferEvent, TransferKind, format_units
from core.rpc import RpcClient

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 7.0


class BlockPoller:
    """
    Polls the latest block number and scans every block past the watermark.

    The first tick sets the watermark to latest - 1, so history before the
    current block is left to the log backfill. A block that cannot be fetched
    is skipped; the watermark still advances to the polled head.
    """

    def __init__(
        self,
        chain_id: int,
        client: RpcClient,
        watched_address: str,
        notifier,
        counterparty_address: Optional[str] = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        chain_name: Optional[str] = None
    ):
        self.chain_id = chain_id
        self.chain_name = chain_name or f"Chain {chain_id}"
        self.client = client
        self.watched_address = watched_address.lower()
        self.counterparty_address = counterparty_address.lower() if counterparty_address else None
        self.notifier = notifier
        self.interval = interval

        self.active = True
        self.watermark: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    def start(self):
        """Start polling in the background."""
        if self._task is not None:
            return
        self.active = True
        self.watermark = None
        self._task = asyncio.create_task(self._run(), name=f"poller-{self.chain_id}")
        logger.info(f"[{self.chain_name}] Block polling started (interval: {self.interval}s)")

    async def _run(self):
        while self.active:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[{self.chain_name}] Poll tick failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    async def tick(self) -> int:
        """
        Scan blocks between the watermark and the current head.

        Returns:
            Number of blocks scanned
        """
        try:
            latest = await self.client.get_block_number()
        except TransientRpcError as e:
            logger.warning(f"[{self.chain_name}] Could not fetch latest block: {e}")
            return 0

        if self.watermark is None:
            self.watermark = latest - 1
            logger.info(f"[{self.chain_name}] Poll started at block {latest}")

        if latest <= self.watermark:
            return 0

        scanned = 0
        for number in range(self.watermark + 1, latest + 1):
            if not self.active:
                return scanned
            try:
                block = await self.client.get_block_with_transactions(number)
            except TransientRpcError as e:
                logger.warning(f"[{self.chain_name}] Skipping block {number}: {e}")
                continue
            await self.scan_block(block)
            scanned += 1

        self.watermark = latest
        return scanned

    async def scan_block(self, block: Block):
        """Report every transaction in block sent to the watched address."""
        for tx in block.transactions:
            if tx.to_address != self.watched_address:
                continue
            if self.counterparty_address and tx.from_address == self.counterparty_address:
                kind = TransferKind.COUNTERPARTY
            else:
                kind = TransferKind.NATIVE
            await self._emit(tx, kind, block.number)

    async def _emit(self, tx: BlockTransaction, kind: TransferKind, block_number: int):
        if not self.active:
            return
        event = TransferEvent(
            chain_id=self.chain_id,
            kind=kind,
            from_address=tx.from_address or "",
            to_address=tx.to_address,
            amount=format_units(tx.value, 18),
            tx_hash=tx.hash,
            block_number=block_number,
        )
        await self.notifier.notify(event)

    async def cancel(self):
        """Stop polling and discard the watermark."""
        self.active = False
        self.watermark = None
        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
