"""
Chain RPC capability and its JSON-RPC implementation.

RpcClient is the narrow interface the monitoring engine depends on. The
JsonRpcClient speaks Ethereum JSON-RPC over HTTP (aiohttp) and, when a chain
has a websocket endpoint, receives live logs via eth_subscribe (websockets);
otherwise live logs are polled with eth_getLogs.
"""
import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Union

import aiohttp
import websockets
from websockets.exceptions import ConnectionClosed

from core.errors import TransientRpcError
from core.models import Block, BlockTransaction, ChainConfig

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

# ERC-20 view function selectors
DECIMALS_SELECTOR = "0x313ce567"
NAME_SELECTOR = "0x06fdde03"
SYMBOL_SELECTOR = "0x95d89b41"

# decimals() is a uint8
MAX_TOKEN_DECIMALS = 255

LogCallback = Callable[[dict], Awaitable[None]]
BlockTag = Union[int, str]


@dataclass(frozen=True)
class LogFilter:
    """eth_getLogs / eth_subscribe filter. None in topics matches anything."""
    address: Optional[str] = None
    topics: Tuple[Optional[str], ...] = ()

    def to_params(self) -> dict:
        params = {"topics": list(self.topics)}
        if self.address:
            params["address"] = self.address
        return params


def pad_address_topic(address: str) -> str:
    """Left-pad a 20-byte address to a 32-byte log topic."""
    return "0x" + address.lower().replace("0x", "").rjust(64, "0")


def transfer_filter(recipient: str, token: Optional[str] = None) -> LogFilter:
    """Filter for ERC-20 Transfer events to recipient (from any sender)."""
    return LogFilter(
        address=token.lower() if token else None,
        topics=(TRANSFER_TOPIC, None, pad_address_topic(recipient)),
    )


def _to_int(value, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value)
    if text in ("", "0x"):
        return default
    return int(text, 16) if text.startswith("0x") else int(text)


def decode_transfer_log(log: dict) -> Optional[dict]:
    """Decode an ERC-20 Transfer event log. Returns None for anything else."""
    try:
        topics = log.get("topics") or []
        if len(topics) < 3 or str(topics[0]).lower() != TRANSFER_TOPIC:
            return None

        sender = "0x" + topics[1][-40:]
        recipient = "0x" + topics[2][-40:]

        return {
            "sender": sender.lower(),
            "recipient": recipient.lower(),
            "contract": (log.get("address") or "").lower(),
            "amount_raw": _to_int(log.get("data")),
            "tx_hash": log.get("transactionHash"),
            "block_number": _to_int(log.get("blockNumber"), default=None),
        }
    except (TypeError, ValueError) as e:
        logger.debug(f"Could not decode log: {e}")
        return None


def decode_abi_string(result: Optional[str]) -> str:
    """Decode an ABI-encoded string return value (bytes32 fallback)."""
    if not result or result == "0x":
        raise ValueError("empty return data")
    data = bytes.fromhex(result[2:] if result.startswith("0x") else result)
    if len(data) == 32:
        # Some older tokens return bytes32 instead of string
        return data.rstrip(b"\x00").decode("utf-8", errors="replace")
    offset = int.from_bytes(data[0:32], "big")
    length = int.from_bytes(data[offset:offset + 32], "big")
    return data[offset + 32:offset + 32 + length].decode("utf-8", errors="replace")


class RpcClient(Protocol):
    """Capabilities the monitoring engine needs from a chain connection."""

    async def get_block_number(self) -> int: ...

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        address: Optional[str] = None,
        topics: Tuple[Optional[str], ...] = (),
    ) -> List[dict]: ...

    async def get_block_with_transactions(self, number: BlockTag) -> Block: ...

    async def get_balance(self, address: str) -> int: ...

    async def token_decimals(self, token: str) -> int: ...

    async def token_name(self, token: str) -> str: ...

    async def token_symbol(self, token: str) -> str: ...

    def on(self, log_filter: LogFilter, callback: LogCallback, from_block: Optional[int] = None) -> None: ...

    def off(self, log_filter: LogFilter, callback: LogCallback) -> None: ...

    async def close(self) -> None: ...


class JsonRpcClient:
    """
    Ethereum JSON-RPC client bound to one chain.

    Every failed request (HTTP error, timeout, JSON-RPC error object) raises
    TransientRpcError; nothing is retried here.
    """

    def __init__(
        self,
        chain: ChainConfig,
        timeout: float = 15.0,
        log_poll_interval: float = 4.0,
        reconnect_delay: int = 1,
        max_reconnect_delay: int = 60,
        ping_interval: int = 30,
        ping_timeout: int = 20
    ):
        """Initialize client for a chain with an RPC endpoint."""
        self.chain_id = chain.id
        self.chain_name = chain.display_name
        self.endpoint = chain.rpc_endpoint
        self.ws_endpoint = chain.ws_endpoint
        self.timeout = timeout
        self.log_poll_interval = log_poll_interval
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout

        self.closed = False
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)
        self._listeners: Dict[Tuple[LogFilter, LogCallback], asyncio.Task] = {}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def request(self, method: str, params: Optional[list] = None):
        """Send one JSON-RPC request and return its result."""
        if self.closed:
            raise TransientRpcError(f"{method}: client for chain {self.chain_id} is closed", method)

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            async with self._get_session().post(
                self.endpoint, json=payload, timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as resp:
                if resp.status != 200:
                    raise TransientRpcError(f"{method}: HTTP {resp.status} from chain {self.chain_id}", method)
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransientRpcError(f"{method} failed on chain {self.chain_id}: {e!r}", method) from e

        if not isinstance(data, dict):
            raise TransientRpcError(f"{method}: malformed response from chain {self.chain_id}", method)
        if data.get("error"):
            raise TransientRpcError(f"{method}: {data['error']}", method)
        return data.get("result")

    async def get_block_number(self) -> int:
        return _to_int(await self.request("eth_blockNumber"))

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        address: Optional[str] = None,
        topics: Tuple[Optional[str], ...] = (),
    ) -> List[dict]:
        params = LogFilter(address=address, topics=tuple(topics)).to_params()
        params["fromBlock"] = hex(from_block)
        params["toBlock"] = hex(to_block)
        result = await self.request("eth_getLogs", [params])
        if not isinstance(result, list):
            raise TransientRpcError(f"eth_getLogs: unexpected result {type(result).__name__}", "eth_getLogs")
        return result

    async def get_block_with_transactions(self, number: BlockTag) -> Block:
        tag = number if isinstance(number, str) else hex(number)
        result = await self.request("eth_getBlockByNumber", [tag, True])
        if not result:
            raise TransientRpcError(f"Block {number} not found on chain {self.chain_id}", "eth_getBlockByNumber")

        transactions = [
            BlockTransaction(
                hash=tx.get("hash"),
                from_address=tx.get("from"),
                to_address=tx.get("to"),
                value=_to_int(tx.get("value")),
            )
            for tx in result.get("transactions", [])
            if isinstance(tx, dict)
        ]
        return Block(number=_to_int(result.get("number")), transactions=transactions)

    async def get_balance(self, address: str) -> int:
        return _to_int(await self.request("eth_getBalance", [address, "latest"]))

    async def eth_call(self, to: str, data: str) -> str:
        return await self.request("eth_call", [{"to": to, "data": data}, "latest"])

    async def token_decimals(self, token: str) -> int:
        result = await self.eth_call(token, DECIMALS_SELECTOR)
        if not result or result == "0x":
            raise TransientRpcError(f"decimals() returned no data for {token}", "eth_call")
        try:
            decimals = _to_int(result)
        except ValueError as e:
            raise TransientRpcError(f"decimals() undecodable for {token}: {result!r}", "eth_call") from e
        if not 0 <= decimals <= MAX_TOKEN_DECIMALS:
            raise TransientRpcError(f"decimals() out of range for {token}: {decimals}", "eth_call")
        return decimals

    async def token_name(self, token: str) -> str:
        return self._decode_string(await self.eth_call(token, NAME_SELECTOR), token, "name")

    async def token_symbol(self, token: str) -> str:
        return self._decode_string(await self.eth_call(token, SYMBOL_SELECTOR), token, "symbol")

    @staticmethod
    def _decode_string(result: str, token: str, accessor: str) -> str:
        try:
            return decode_abi_string(result)
        except ValueError as e:
            raise TransientRpcError(f"{accessor}() undecodable for {token}: {e}", "eth_call") from e

    # ===== Live log listeners =====

    def on(self, log_filter: LogFilter, callback: LogCallback, from_block: Optional[int] = None):
        """
        Start delivering logs matching log_filter to callback.

        With from_block, delivery starts at the block after it so nothing is
        missed between a backfill and the live listener. Without it, delivery
        starts at the current head.
        """
        key = (log_filter, callback)
        if key in self._listeners or self.closed:
            return
        self._listeners[key] = asyncio.create_task(
            self._watch(log_filter, callback, from_block),
            name=f"logs-{self.chain_id}-{log_filter.address}",
        )

    def off(self, log_filter: LogFilter, callback: LogCallback):
        """Stop a listener registered with on()."""
        task = self._listeners.pop((log_filter, callback), None)
        if task:
            task.cancel()

    async def _watch(self, log_filter: LogFilter, callback: LogCallback, from_block: Optional[int]):
        if self.ws_endpoint:
            await self._watch_ws(log_filter, callback, from_block)
        else:
            await self._watch_http(log_filter, callback, from_block)

    async def _dispatch(self, callback: LogCallback, log: dict):
        if log.get("removed"):
            return
        try:
            await callback(log)
        except Exception as e:
            logger.error(f"[{self.chain_name}] Log callback failed: {e}", exc_info=True)

    async def _watch_http(self, log_filter: LogFilter, callback: LogCallback, from_block: Optional[int] = None):
        """Poll eth_getLogs for new blocks (for chains without a websocket endpoint)."""
        last_block = from_block

        while True:
            try:
                current_block = await self.get_block_number()
                if last_block is None:
                    last_block = current_block - 1
                if current_block > last_block:
                    logs = await self.get_logs(
                        last_block + 1, current_block, log_filter.address, log_filter.topics
                    )
                    last_block = current_block
                    for log in logs:
                        await self._dispatch(callback, log)
            except TransientRpcError as e:
                logger.warning(f"[{self.chain_name}] Log poll error: {e}")

            await asyncio.sleep(self.log_poll_interval)

    async def _watch_ws(self, log_filter: LogFilter, callback: LogCallback, from_block: Optional[int] = None):
        """
        Subscribe to logs over websocket with auto-reconnect.

        After every (re)subscribe, blocks since the last one seen are fetched
        with eth_getLogs so a gap before the subscription is not lost.
        """
        last_block = from_block
        delay = self.reconnect_delay

        while True:
            try:
                async with websockets.connect(
                    self.ws_endpoint,
                    ping_interval=self.ping_interval,
                    ping_timeout=self.ping_timeout
                ) as ws:
                    subscribe_request = {
                        "jsonrpc": "2.0",
                        "id": next(self._ids),
                        "method": "eth_subscribe",
                        "params": ["logs", log_filter.to_params()],
                    }
                    await ws.send(json.dumps(subscribe_request))
                    reply = json.loads(await ws.recv())
                    if "result" not in reply:
                        raise TransientRpcError(f"eth_subscribe rejected: {reply.get('error')}", "eth_subscribe")

                    logger.info(f"[{self.chain_name}] Subscribed to logs for {log_filter.address or 'any token'}")
                    delay = self.reconnect_delay

                    last_block = await self._catch_up(log_filter, callback, last_block)

                    async for message in ws:
                        try:
                            data = json.loads(message)
                        except json.JSONDecodeError:
                            continue
                        log = (data.get("params") or {}).get("result")
                        if isinstance(log, dict):
                            await self._dispatch(callback, log)
                            last_block = max(last_block or 0, _to_int(log.get("blockNumber")))

            except ConnectionClosed as e:
                logger.warning(f"[{self.chain_name}] Log subscription closed: {e}. Reconnecting in {delay}s...")
            except Exception as e:
                logger.error(f"[{self.chain_name}] Log subscription error: {e}. Reconnecting in {delay}s...")

            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_reconnect_delay)

    async def _catch_up(self, log_filter: LogFilter, callback: LogCallback, last_block: Optional[int]) -> Optional[int]:
        """Deliver logs after last_block up to the head; returns the new last block."""
        if last_block is None:
            return None
        try:
            head = await self.get_block_number()
            if head > last_block:
                logs = await self.get_logs(last_block + 1, head, log_filter.address, log_filter.topics)
                for log in logs:
                    await self._dispatch(callback, log)
                return head
        except TransientRpcError as e:
            logger.warning(f"[{self.chain_name}] Log catch-up after block {last_block} failed: {e}")
        return last_block

    async def close(self):
        """Cancel listeners and close the HTTP session."""
        self.closed = True
        tasks = list(self._listeners.values())
        self._listeners.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._session and not self._session.closed:
            await self._session.close()
        logger.debug(f"RPC client for chain {self.chain_id} closed")
