"""
Chain registry: the set of chains the monitor knows about.

Chains are seeded from DEFAULT_CHAINS at startup and changed only through
apply_overrides(), which notifies change listeners (the provider pool) so
that cached RPC clients are rebuilt against the new endpoints.
"""
import logging
import re
import threading
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from core.models import ChainConfig

logger = logging.getLogger(__name__)


DEFAULT_CHAINS: Dict[int, ChainConfig] = {
    1: ChainConfig(
        id=1,
        display_name="Ethereum Mainnet",
        rpc_endpoint="https://cloudflare-eth.com",
        explorer_url_template="https://etherscan.io/tx/",
        native_symbol="ETH",
    ),
    5: ChainConfig(
        id=5,
        display_name="Goerli (test)",
        rpc_endpoint="https://rpc.ankr.com/eth_goerli",
        explorer_url_template="https://goerli.etherscan.io/tx/",
        native_symbol="ETH",
    ),
    56: ChainConfig(
        id=56,
        display_name="BSC Mainnet",
        rpc_endpoint="https://bsc-dataseed.binance.org/",
        explorer_url_template="https://bscscan.com/tx/",
        native_symbol="BNB",
    ),
    137: ChainConfig(
        id=137,
        display_name="Polygon",
        rpc_endpoint="https://polygon-rpc.com",
        explorer_url_template="https://polygonscan.com/tx/",
        native_symbol="MATIC",
    ),
}

# Override entry key -> ChainConfig field
_ENTRY_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("rpc", "rpc_endpoint"),
    ("rpc_endpoint", "rpc_endpoint"),
    ("ws", "ws_endpoint"),
    ("ws_endpoint", "ws_endpoint"),
    ("name", "display_name"),
    ("display_name", "display_name"),
    ("explorer", "explorer_url_template"),
    ("explorer_url_template", "explorer_url_template"),
    ("native", "native_symbol"),
    ("native_symbol", "native_symbol"),
)

_DIGITS = re.compile(r"^\d+$")


def parse_chain_id(value) -> Optional[int]:
    """Return value as a non-negative chain id, or None if it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and _DIGITS.match(value.strip()):
        return int(value.strip())
    return None


def parse_chain_entries(raw: str) -> List[Dict]:
    """
    Parse the text configuration format into override entries.

    Items are separated by commas or newlines; each item is either
    ``chainId`` or ``chainId:rpcUrl`` (the URL keeps its own colons).
    Items whose id is not numeric are dropped.

    Example:
        >>> parse_chain_entries("137:https://x, 10")
        [{'id': 137, 'rpc': 'https://x'}, {'id': 10}]
    """
    entries = []
    for item in re.split(r"[\n,]+", raw or ""):
        item = item.strip()
        if not item:
            continue
        left, _, rest = item.partition(":")
        chain_id = parse_chain_id(left.strip())
        if chain_id is None:
            logger.warning(f"Ignoring chain entry with non-numeric id: {item!r}")
            continue
        entry = {"id": chain_id}
        if rest.strip():
            entry["rpc"] = rest.strip()
        entries.append(entry)
    return entries


class ChainRegistry:
    """In-memory mapping of chain id -> ChainConfig."""

    def __init__(self, defaults: Optional[Mapping[int, ChainConfig]] = None):
        self._chains: Dict[int, ChainConfig] = {}
        self._defaults: Dict[int, ChainConfig] = dict(DEFAULT_CHAINS)
        self._listeners: List[Callable[[], None]] = []
        self._lock = threading.Lock()
        self._configured = False
        if defaults is not None:
            self.configure(defaults)

    def configure(self, defaults: Mapping[int, ChainConfig]):
        """Seed the registry. Later calls are ignored."""
        with self._lock:
            if self._configured:
                return
            self._defaults = {**DEFAULT_CHAINS, **defaults}
            self._chains = dict(defaults)
            self._configured = True
        logger.info(f"Chain registry seeded with {len(self._chains)} chains")

    def add_listener(self, listener: Callable[[], None]):
        """Register a callback invoked after every apply_overrides()."""
        self._listeners.append(listener)

    def apply_overrides(self, entries: Iterable[Mapping]) -> List[int]:
        """
        Merge override entries into the registry.

        Existing chains only get the fields an entry specifies; unknown ids are
        inserted from built-in metadata when available, otherwise with fallback
        display fields. Malformed entries are skipped.

        Returns:
            Ids of the chains that were inserted or updated
        """
        applied = []
        with self._lock:
            for entry in entries:
                if not isinstance(entry, Mapping):
                    logger.warning(f"Skipping malformed chain entry: {entry!r}")
                    continue
                chain_id = parse_chain_id(entry.get("id"))
                if chain_id is None:
                    logger.warning(f"Skipping chain entry with invalid id: {entry!r}")
                    continue

                base = (
                    self._chains.get(chain_id)
                    or self._defaults.get(chain_id)
                    or ChainConfig.fallback(chain_id)
                )
                update = {
                    field: entry[key]
                    for key, field in _ENTRY_FIELDS
                    if entry.get(key) is not None
                }
                try:
                    chain = ChainConfig(**{**base.model_dump(), **update})
                except ValidationError as e:
                    logger.warning(f"Skipping chain entry {chain_id}: {e}")
                    continue

                self._chains[chain_id] = chain
                applied.append(chain_id)

        logger.info(f"Applied chain configuration for {applied}")
        for listener in list(self._listeners):
            listener()
        return applied

    def get(self, chain_id: int) -> Optional[ChainConfig]:
        return self._chains.get(chain_id)

    def all(self) -> Tuple[ChainConfig, ...]:
        """Snapshot of every configured chain, in insertion order."""
        with self._lock:
            return tuple(self._chains.values())

    def __contains__(self, chain_id: int) -> bool:
        return chain_id in self._chains

    def __len__(self) -> int:
        return len(self._chains)
