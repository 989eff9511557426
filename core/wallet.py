"""
Wallet capability consumed by the monitor: the current address, nothing else.
"""
import re
from typing import Optional, Protocol

_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_address(value: Optional[str]) -> bool:
    """Check if value looks like a 20-byte hex address."""
    return bool(value) and bool(_ADDRESS.match(value))


class AddressProvider(Protocol):
    def current_address(self) -> Optional[str]: ...


class WatchOnlyWallet:
    """Address provider for a wallet the monitor does not hold keys for."""

    def __init__(self, address: Optional[str] = None):
        self._address = None
        self.set_address(address)

    def set_address(self, address: Optional[str]):
        if address and not is_address(address):
            raise ValueError(f"Invalid address: {address}")
        self._address = address.lower() if address else None

    def current_address(self) -> Optional[str]:
        return self._address
