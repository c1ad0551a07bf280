"""Error taxonomy for the exchange execution engine.

Every operational failure is an ``ExchangeError``. The engines keep the last
one in a single ``error`` field; only errors whose class is ``fatal`` move the
state machine to ERROR. Pre-flight rejections (insufficient balance, rate
limiting, user rejection) leave the state where it was.
"""

import asyncio
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Category of an engine error."""
    USER_REJECTED = "user_rejected"
    ROUTE_INVALID = "route_invalid"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    TRANSACTION_FAILED = "transaction_failed"
    NETWORK_UNAVAILABLE = "network_unavailable"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    SIGNER_UNAVAILABLE = "signer_unavailable"
    ILLEGAL_TRANSITION = "illegal_transition"


class ExchangeError(Exception):
    """Base class for engine errors."""

    kind: ErrorKind = ErrorKind.TRANSACTION_FAILED
    fatal: bool = True

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class UserRejectedError(ExchangeError):
    """The signer declined the request."""
    kind = ErrorKind.USER_REJECTED
    fatal = False


class RouteInvalidError(ExchangeError):
    """Route cannot execute (expired, not found, or failed validation)."""
    kind = ErrorKind.ROUTE_INVALID

    def __init__(self, message: str = "", errors: Optional[list[str]] = None):
        super().__init__(message or "; ".join(errors or []) or "Route is no longer valid")
        self.errors = errors or []


class RouterNotDeployedError(RouteInvalidError):
    """The swap router has no code on the current network."""


class InsufficientBalanceError(ExchangeError):
    """Balance below the requested amount, detected before signing."""
    kind = ErrorKind.INSUFFICIENT_BALANCE
    fatal = False

    def __init__(self, balance: int, required: int):
        super().__init__(f"Insufficient balance: have {balance}, need {required}")
        self.balance = balance
        self.required = required


class TransactionFailedError(ExchangeError):
    """The receipt (or bridge) reports failure, or the wallet refused the request."""
    kind = ErrorKind.TRANSACTION_FAILED

    def __init__(self, message: str = "", tx_hash: Optional[str] = None):
        super().__init__(message or "Transaction failed")
        self.tx_hash = tx_hash


class NetworkUnavailableError(ExchangeError):
    """RPC node or aggregator could not be reached."""
    kind = ErrorKind.NETWORK_UNAVAILABLE


class RateLimitedError(ExchangeError):
    """Status poll attempted inside the cooldown window."""
    kind = ErrorKind.RATE_LIMITED
    fatal = False

    def __init__(self, retry_after: int):
        super().__init__(f"Please wait {retry_after}s before refreshing again")
        self.retry_after = retry_after


class StatusTimeoutError(ExchangeError):
    """Status polling ran out of attempts before the bridge settled."""
    kind = ErrorKind.TIMEOUT

    def __init__(self, tx_hash: str, attempts: int):
        super().__init__(f"Bridge {tx_hash} not settled after {attempts} status checks")
        self.tx_hash = tx_hash
        self.attempts = attempts


class ReceiptTimeoutError(ExchangeError):
    """No receipt before the deadline; the transaction may still confirm."""
    kind = ErrorKind.TIMEOUT

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"Transaction {tx_hash} not confirmed after {timeout}s")
        self.tx_hash = tx_hash
        self.timeout = timeout


class SignerUnavailableError(ExchangeError):
    """No usable signer (locked custody, wrong chain, disconnected wallet)."""
    kind = ErrorKind.SIGNER_UNAVAILABLE
    fatal = False


class IllegalTransitionError(ExchangeError):
    """Operation requested from a state that does not allow it.

    Raised to the caller, never stored as the engine's last error.
    """
    kind = ErrorKind.ILLEGAL_TRANSITION
    fatal = False


# ======================
# Bridge error mapping
# ======================

class BridgeErrorType(str, Enum):
    """User-facing classification of bridge aggregator failures."""
    NO_ROUTE_FOUND = "NO_ROUTE_FOUND"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    SLIPPAGE_TOO_HIGH = "SLIPPAGE_TOO_HIGH"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    BRIDGE_FAILED = "BRIDGE_FAILED"
    BRIDGE_TIMEOUT = "BRIDGE_TIMEOUT"
    TX_REJECTED = "TX_REJECTED"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    LIFI_API_ERROR = "LIFI_API_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_BRIDGE_ERROR_RULES: list[tuple[tuple[str, ...], BridgeErrorType, str]] = [
    (("insufficient", "balance"), BridgeErrorType.INSUFFICIENT_BALANCE,
     "Insufficient balance for this swap"),
    (("no route", "no path", "no routes"), BridgeErrorType.NO_ROUTE_FOUND,
     "No route found for this swap pair"),
    (("slippage", "price impact"), BridgeErrorType.SLIPPAGE_TOO_HIGH,
     "Price impact too high. Reduce amount or increase slippage tolerance"),
    (("rejected", "denied"), BridgeErrorType.TX_REJECTED,
     "Transaction was rejected. Please try again"),
    (("invalid address", "bad address", "checksum"), BridgeErrorType.INVALID_ADDRESS,
     "Invalid destination address format"),
    (("amount too small", "dust"), BridgeErrorType.INVALID_AMOUNT,
     "Amount is too small for this chain"),
    (("bridge timeout",), BridgeErrorType.BRIDGE_TIMEOUT,
     "Bridge is taking longer than expected"),
    (("bridge",), BridgeErrorType.BRIDGE_FAILED,
     "Bridge operation failed. Please retry or check bridge provider status"),
    (("network", "timeout", "timed out", "connect", "enotfound"), BridgeErrorType.NETWORK_ERROR,
     "Network error. Please check your connection and retry"),
    (("lifi", "li.fi", "api"), BridgeErrorType.LIFI_API_ERROR,
     "Bridge service temporarily unavailable. Please retry later"),
]

_RETRYABLE = {
    BridgeErrorType.BRIDGE_TIMEOUT,
    BridgeErrorType.NETWORK_ERROR,
    BridgeErrorType.LIFI_API_ERROR,
}


def map_bridge_error(error: object) -> tuple[BridgeErrorType, str]:
    """Classify an aggregator/network failure into a type and a user message."""
    if isinstance(error, UserRejectedError):
        return BridgeErrorType.TX_REJECTED, "Transaction was rejected. Please try again"
    if isinstance(error, NetworkUnavailableError):
        return BridgeErrorType.NETWORK_ERROR, "Network error. Please check your connection and retry"

    if isinstance(error, BaseException):
        text = str(error)
    elif isinstance(error, str):
        text = error
    else:
        return BridgeErrorType.UNKNOWN_ERROR, "An unexpected error occurred"

    lowered = text.lower()
    for needles, error_type, message in _BRIDGE_ERROR_RULES:
        if any(needle in lowered for needle in needles):
            return error_type, message

    return BridgeErrorType.UNKNOWN_ERROR, text or "An unexpected error occurred"


def is_retryable(error_type: BridgeErrorType) -> bool:
    """Check if a bridge error type is worth retrying."""
    return error_type in _RETRYABLE


def retry_delay(attempt: int) -> float:
    """Exponential backoff in seconds: 1, 2, 4, 8, capped at 10."""
    return min(2 ** max(attempt - 1, 0), 10)


def as_exchange_error(error: Exception) -> ExchangeError:
    """Wrap an arbitrary exception in the taxonomy."""
    if isinstance(error, ExchangeError):
        return error
    if isinstance(error, (OSError, TimeoutError, asyncio.TimeoutError)):
        return NetworkUnavailableError(str(error) or type(error).__name__)
    return ExchangeError(str(error) or type(error).__name__)
