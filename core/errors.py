"""
Treasury error taxonomy.

Fatal errors (config, identity, token) abort a heartbeat cycle.
Read errors are caught by the chain reader and never reach the top level.
Transaction failures surface as null tx hashes, not exceptions, except a
swap that was broadcast but never confirmed (TransactionFailed).
"""


class TreasuryError(Exception):
    """Base class for all treasury errors."""
    pass


class ConfigError(TreasuryError):
    """Invalid environment configuration. Fatal at process start."""
    pass


class IdentityMissing(TreasuryError):
    """No identity row in the store. Nothing downstream is meaningful."""
    pass


class TokenNotDeployed(TreasuryError):
    """Identity exists but has no token address yet."""
    pass


class ChainReadError(TreasuryError):
    """A view call against the RPC failed (timeout, revert, bad response)."""
    pass


class TransactionFailed(TreasuryError):
    """Receipt reported status != 1, or the receipt never arrived."""

    def __init__(self, message: str, tx_hash: str = ""):
        super().__init__(message)
        self.tx_hash = tx_hash


class SwapError(TreasuryError):
    """Quote or swap execution failed. Triggers the unwrap fallback once."""
    pass


class UnwrapFailed(TreasuryError):
    """WETH withdraw reverted. Aborts the buyback step."""
    pass


class LockBusy(TreasuryError):
    """Another process holds the advisory lock."""
    pass
