"""
Error taxonomy for chain interaction and swap coordination.

Chain client failures are translated into these types at the adapter
boundary so that callers never see raw web3 or transport exceptions.
"""


class RelayerError(Exception):
    """Base class for relayer errors."""


class RpcError(RelayerError):
    """Network or node failure. Transient: retry with backoff."""


class ConfirmationTimeout(RpcError):
    """Transaction receipt not observed within the bounded wait."""

    def __init__(self, tx_hash: str, timeout: float):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(f"No receipt for {tx_hash} after {timeout:.0f}s")


class DecodeError(RelayerError):
    """Log or return data does not match the expected ABI shape."""


class ConfigurationError(RelayerError):
    """Misconfiguration that retrying will not fix."""


class ContractRevertError(RelayerError):
    """Transaction reverted, was rejected, or failed on-chain."""

    def __init__(self, message: str, tx_hash: str | None = None):
        self.tx_hash = tx_hash
        super().__init__(message)


TransactionRejected = ContractRevertError


class InsufficientFundsError(ContractRevertError):
    """Relayer account cannot pay for gas."""


class NotFoundError(RelayerError):
    """No swap record for a hashlock."""

    def __init__(self, hashlock: str):
        self.hashlock = hashlock
        super().__init__(f"Swap not found for hashlock {hashlock}")


class ClaimRejected(RelayerError):
    """A user-submitted claim failed validation."""

    def __init__(self, message: str, status_code: int = 400):
        self.status_code = status_code
        super().__init__(message)
