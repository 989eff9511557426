"""
Shared fixtures: an in-memory RPC client and a recording notification sink.
"""
import asyncio
from typing import Dict, List, Optional, Set

import pytest

from core.context import build_context
from core.errors import TransientRpcError
from core.models import Block, BlockTransaction
from core.rpc import TRANSFER_TOPIC, pad_address_topic

WATCHED = "0x" + "ab" * 20
SENDER = "0x" + "11" * 20
COUNTERPARTY = "0x" + "cc" * 20
TOKEN_A = "0x" + "a0" * 20
TOKEN_B = "0x" + "b0" * 20


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def make_transfer_log(token, sender, recipient, amount, tx, block_number) -> dict:
    """An ERC-20 Transfer log as returned by eth_getLogs."""
    return {
        "address": token,
        "topics": [TRANSFER_TOPIC, pad_address_topic(sender), pad_address_topic(recipient)],
        "data": "0x" + f"{amount:064x}",
        "transactionHash": tx,
        "blockNumber": hex(block_number),
        "removed": False,
    }


def make_block(number: int, *txs: BlockTransaction) -> Block:
    return Block(number=number, transactions=list(txs))


async def settle(rounds: int = 20):
    """Let background tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeRpcClient:
    """RpcClient backed by in-memory blocks and logs."""

    def __init__(self, chain=None, latest: int = 100):
        self.chain = chain
        self.latest = latest
        self.blocks: Dict[int, Block] = {}
        self.logs: List[dict] = []
        self.decimals: Dict[str, int] = {}
        self.balances: Dict[str, int] = {}

        self.fail_block_number = False
        self.fail_logs = False
        self.fail_balance = False
        self.failing_blocks: Set[int] = set()
        self.block_gate: Optional[asyncio.Event] = None

        self.listeners: List[tuple] = []
        self.listen_from: Dict[Optional[str], Optional[int]] = {}
        self.fetched_blocks: List[int] = []
        self.log_queries: List[tuple] = []
        self.closed = False

    async def get_block_number(self) -> int:
        if self.fail_block_number:
            raise TransientRpcError("head unavailable", "eth_blockNumber")
        return self.latest

    async def get_logs(self, from_block, to_block, address=None, topics=()):
        self.log_queries.append((from_block, to_block, address))
        if self.fail_logs:
            raise TransientRpcError("query returned more than 10000 results", "eth_getLogs")
        result = []
        for log in self.logs:
            number = int(log["blockNumber"], 16)
            if not from_block <= number <= to_block:
                continue
            if address and log["address"].lower() != address:
                continue
            if len(topics) > 2 and topics[2] and log["topics"][2] != topics[2]:
                continue
            result.append(log)
        return result

    async def get_block_with_transactions(self, number) -> Block:
        if number == "latest":
            number = self.latest
        self.fetched_blocks.append(number)
        if self.block_gate is not None:
            await self.block_gate.wait()
        if number in self.failing_blocks:
            raise TransientRpcError(f"block {number} unavailable", "eth_getBlockByNumber")
        return self.blocks.get(number) or Block(number=number)

    async def get_balance(self, address: str) -> int:
        if self.fail_balance:
            raise TransientRpcError("connection reset", "eth_getBalance")
        return self.balances.get(address, 0)

    async def token_decimals(self, token: str) -> int:
        if token not in self.decimals:
            raise TransientRpcError("execution reverted", "eth_call")
        return self.decimals[token]

    async def token_name(self, token: str) -> str:
        raise TransientRpcError("execution reverted", "eth_call")

    async def token_symbol(self, token: str) -> str:
        raise TransientRpcError("execution reverted", "eth_call")

    def on(self, log_filter, callback, from_block=None):
        self.listeners.append((log_filter, callback))
        self.listen_from[log_filter.address] = from_block

    def off(self, log_filter, callback):
        if (log_filter, callback) in self.listeners:
            self.listeners.remove((log_filter, callback))

    async def emit(self, log: dict):
        """Push a live log to every matching listener."""
        for log_filter, callback in list(self.listeners):
            if log_filter.address and log_filter.address != log["address"].lower():
                continue
            await callback(log)

    async def close(self):
        self.closed = True


class RecordingSink:
    def __init__(self):
        self.notifications = []

    async def deliver(self, notification):
        self.notifications.append(notification)

    @property
    def kinds(self):
        return [n.event.kind for n in self.notifications]

    @property
    def tx_hashes(self):
        return [n.event.tx_hash for n in self.notifications]


@pytest.fixture
def fake_client():
    return FakeRpcClient(latest=100)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def context(fake_client, sink):
    return build_context(sinks=[sink], client_factory=lambda chain: fake_client)
