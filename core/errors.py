"""
Error taxonomy for the transfer monitoring engine.

Only PreconditionError reaches the caller of start_monitoring; the other two
are contained per chain, per block or per token.
"""


class TransferWatchError(Exception):
    """Base class for all monitoring errors."""


class ConfigurationError(TransferWatchError):
    """A chain is unknown or has no usable RPC endpoint."""

    def __init__(self, message: str, chain_id: int = None):
        super().__init__(message)
        self.chain_id = chain_id


class TransientRpcError(TransferWatchError):
    """A single RPC query failed (network error, timeout, JSON-RPC error)."""

    def __init__(self, message: str, method: str = None):
        super().__init__(message)
        self.method = method


class PreconditionError(TransferWatchError):
    """Monitoring was requested without a watched address or without chains."""
