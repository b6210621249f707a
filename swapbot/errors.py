# swapbot/errors.py
"""
Error kinds raised by the swap engine
"""

from typing import Dict, Optional


class SwapBotError(Exception):
    """Base exception for swap engine errors."""
    pass


class TransportFailure(SwapBotError):
    """RPC or HTTP endpoint unreachable after bounded retries."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


class NoHealthyEndpoint(TransportFailure):
    """The RPC pool has nothing to hand out."""
    pass


class QuoteRejected(SwapBotError):
    """A single source's quote failed validation."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class NoQuotesAvailable(SwapBotError):
    """Every quote source failed for this cycle."""

    def __init__(self, failures: Optional[Dict[str, str]] = None):
        self.failures = dict(failures or {})
        detail = ", ".join(f"{name}: {why}" for name, why in self.failures.items())
        super().__init__(f"No quotes available from any source ({detail or 'no sources'})")


class InsufficientBalance(SwapBotError):
    pass


class ApprovalFailed(SwapBotError):
    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class ExecutionError(SwapBotError):
    """Base exception for swap execution errors."""
    pass


class SimulationFailed(ExecutionError):
    """eth_call of the swap reverted; nothing was submitted."""
    pass


class TransactionReverted(ExecutionError):
    """Transaction mined with a failed status."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, gas_used: int = 0):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.gas_used = gas_used


class TransactionTimeout(ExecutionError):
    """No receipt within the confirmation timeout."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class CycleInProgress(SwapBotError):
    """A swap cycle is already running for this signing identity."""
    pass


class GasPriceTooHigh(SwapBotError):
    """Network gas price is above the configured maximum; the cycle is skipped."""
    pass
