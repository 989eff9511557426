"""
Pydantic models for TransferWatch data structures.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TransferKind(str, Enum):
    """Kind of detected transfer. Values are the outbound wire names."""
    NATIVE = "Native"
    TOKEN = "ERC20"
    COUNTERPARTY = "SitePayment"


class SessionState(str, Enum):
    """Monitoring session state."""
    IDLE = "idle"
    ACTIVE = "active"


class ChainConfig(BaseModel):
    """A configured chain and its display metadata."""
    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=0)
    display_name: str
    rpc_endpoint: Optional[str] = None
    ws_endpoint: Optional[str] = None  # eth_subscribe endpoint, optional
    explorer_url_template: str = ""  # tx URL prefix, hash is appended
    native_symbol: str = ""

    @classmethod
    def fallback(cls, chain_id: int) -> "ChainConfig":
        """Metadata for a chain nobody described."""
        return cls(id=chain_id, display_name=f"Chain {chain_id}")

    @property
    def can_monitor(self) -> bool:
        return bool(self.rpc_endpoint)


def _lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if isinstance(value, str) else value


class TransferEvent(BaseModel):
    """A transfer to the watched address, detected on one chain."""
    chain_id: int
    kind: TransferKind
    from_address: str
    to_address: str
    token_address: Optional[str] = None
    amount: str  # decimal string, never a float
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    observed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("from_address", "to_address", "token_address", "tx_hash")
    @classmethod
    def _normalize_hex(cls, value):
        return _lower(value)

    @property
    def dedup_key(self) -> Optional[str]:
        """Seen-set key: the tx hash qualified by kind, or None without a hash."""
        if not self.tx_hash:
            return None
        return f"{self.kind.value}:{self.tx_hash}"


class TransferNotification(BaseModel):
    """A deduplicated transfer with the owning chain's display metadata attached."""
    event: TransferEvent
    chain_name: str
    native_symbol: str = ""
    explorer_url_template: str = ""

    @classmethod
    def for_chain(cls, event: TransferEvent, chain: ChainConfig) -> "TransferNotification":
        return cls(
            event=event,
            chain_name=chain.display_name,
            native_symbol=chain.native_symbol,
            explorer_url_template=chain.explorer_url_template,
        )

    @property
    def explorer_url(self) -> Optional[str]:
        if not self.event.tx_hash or not self.explorer_url_template:
            return None
        return f"{self.explorer_url_template}{self.event.tx_hash}"

    @property
    def asset_label(self) -> str:
        """Token contract for ERC20 transfers, native symbol otherwise."""
        if self.event.token_address:
            return self.event.token_address
        return self.native_symbol or "NATIVE"

    def to_message(self) -> Dict:
        """Outbound record delivered to external message channels."""
        event = self.event
        return {
            "type": "incoming_tx",
            "chainId": event.chain_id,
            "chain": {
                "name": self.chain_name,
                "native": self.native_symbol,
                "explorer": self.explorer_url_template,
            },
            "tx": {
                "type": event.kind.value,
                "from": event.from_address,
                "to": event.to_address,
                "token": event.token_address,
                "amount": event.amount,
                "txHash": event.tx_hash,
                "blockNumber": event.block_number,
                "explorerUrl": self.explorer_url,
            },
        }


class BlockTransaction(BaseModel):
    """The parts of a transaction the block poller looks at."""
    hash: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None  # None for contract creation
    value: int = 0  # wei

    @field_validator("hash", "from_address", "to_address")
    @classmethod
    def _normalize_hex(cls, value):
        return _lower(value)


class Block(BaseModel):
    """A block with its full transactions."""
    number: int
    transactions: List[BlockTransaction] = Field(default_factory=list)


class StartReport(BaseModel):
    """Per-chain outcome of a start_monitoring call."""
    started: List[int] = Field(default_factory=list)
    already_active: List[int] = Field(default_factory=list)
    failed: Dict[int, str] = Field(default_factory=dict)


def format_units(value: int, decimals: int = 18) -> str:
    """
    Format an integer amount of base units as a decimal string.

    Matches the usual EVM wallet rendering: at least one fractional digit,
    trailing zeros removed ("1.0", "0.000123", "12.5").
    """
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(int(value)), 10 ** decimals)
    frac_text = str(frac).rjust(decimals, "0").rstrip("0") if decimals > 0 else ""
    return f"{sign}{whole}.{frac_text or '0'}"
