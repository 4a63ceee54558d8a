"""Unified exception hierarchy for Wura.

All Wura-specific exceptions inherit from WuraException, enabling:
- Consistent error handling across the quote and settlement packages
- Proper HTTP status code mapping for an API layer
- Structured error responses with error codes
- Chain error classification (transient vs permanent) from raw RPC errors

Usage:
    from wura_core.exceptions import (
        BoundsError,
        ChainError,
        exception_from_chain_error,
        is_transient,
    )

    try:
        tx_hash = await rpc.send_raw_transaction(raw)
    except RPCError as e:
        raise exception_from_chain_error(e, chain="polygon")

All exceptions have:
- error_code: Machine-readable error code (e.g., "BOUNDS_ERROR")
- http_status: Appropriate HTTP status code for API responses
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to API response format
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional, Type

logger = logging.getLogger(__name__)


class WuraException(Exception):
    """Base exception for all Wura errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context
    """

    error_code: str = "WURA_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Validation & Quote Errors (4xx)
# =============================================================================

class WuraValidationError(WuraException):
    """Invalid input data or parameters."""

    error_code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class BoundsError(WuraValidationError):
    """Quote amount outside the configured policy limits."""

    error_code = "AMOUNT_OUT_OF_BOUNDS"

    def __init__(
        self,
        requested: Any,
        min_amount: int,
        max_amount: int,
        currency: str = "XOF",
    ) -> None:
        self.requested = requested
        self.min_amount = min_amount
        self.max_amount = max_amount
        self.currency = currency
        super().__init__(
            f"Amount {requested} {currency} is outside the allowed range: "
            f"send between {min_amount} and {max_amount} {currency}",
            field="amount",
            details={
                "requested": requested,
                "min_amount": min_amount,
                "max_amount": max_amount,
                "currency": currency,
            },
        )


class PrecisionError(WuraValidationError):
    """Amount has more fraction digits than the token supports."""

    error_code = "PRECISION_ERROR"

    def __init__(self, amount: Decimal, decimals: int) -> None:
        self.amount = amount
        self.decimals = decimals
        super().__init__(
            f"Amount {amount} exceeds the token precision of {decimals} fraction digits",
            field="amount",
            details={"amount": str(amount), "decimals": decimals},
        )


class QuoteExpiredError(WuraException):
    """Quote is older than its time-to-live and must be re-issued."""

    error_code = "QUOTE_EXPIRED"
    http_status = 409

    def __init__(
        self,
        reference_id: str,
        age_seconds: float,
        ttl_seconds: float,
    ) -> None:
        self.reference_id = reference_id
        self.age_seconds = age_seconds
        self.ttl_seconds = ttl_seconds
        super().__init__(
            f"Quote {reference_id} expired {age_seconds - ttl_seconds:.0f}s ago; "
            f"request a new quote",
            details={
                "reference_id": reference_id,
                "age_seconds": round(age_seconds, 3),
                "ttl_seconds": ttl_seconds,
            },
        )


# =============================================================================
# Payment Confirmation Errors
# =============================================================================

class PaymentError(WuraException):
    """Base class for fiat deposit confirmation errors."""

    error_code = "PAYMENT_ERROR"
    http_status = 400


class PaymentNotConfirmedError(PaymentError):
    """Payment gateway reported the deposit as unsuccessful."""

    error_code = "PAYMENT_NOT_CONFIRMED"


class PaymentMismatchError(PaymentError):
    """Confirmed deposit does not match the quoted total debited."""

    error_code = "PAYMENT_MISMATCH"
    http_status = 422

    def __init__(
        self,
        expected: Decimal,
        received: Decimal,
        tolerance: Decimal,
    ) -> None:
        self.expected = expected
        self.received = received
        self.tolerance = tolerance
        super().__init__(
            f"Confirmed deposit {received} does not match quoted total {expected} "
            f"(tolerance {tolerance})",
            details={
                "expected": str(expected),
                "received": str(received),
                "tolerance": str(tolerance),
            },
        )


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigError(WuraException):
    """Service configuration error (operator-fatal, never retried)."""

    error_code = "CONFIGURATION_ERROR"
    http_status = 500


class InvalidStateTransitionError(WuraException):
    """Settlement state machine received an illegal transition."""

    error_code = "INVALID_STATE_TRANSITION"
    http_status = 409

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move settlement from {current} to {target}",
            details={"current": current, "target": target},
        )


# =============================================================================
# Chain Errors (5xx)
# =============================================================================

class ChainError(WuraException):
    """Base class for blockchain-related errors.

    ``transient`` tells the settlement executor whether retrying the same
    operation may succeed.
    """

    error_code = "CHAIN_ERROR"
    http_status = 502
    transient: bool = False
    # Handle of a transfer that may have reached the node before the failure
    pending: Any = None

    def __init__(
        self,
        message: str,
        chain: Optional[str] = None,
        tx_hash: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if chain:
            details["chain"] = chain
        if tx_hash:
            details["tx_hash"] = tx_hash
        self.chain = chain
        self.tx_hash = tx_hash
        super().__init__(message, details=details)


class ChainSubmissionError(ChainError):
    """Broadcast of a transfer failed. Permanent unless a subclass says otherwise."""

    error_code = "SUBMISSION_ERROR"


class RPCUnavailableError(ChainSubmissionError):
    """RPC node unreachable, timed out, or rate limiting."""

    error_code = "RPC_UNAVAILABLE"
    http_status = 503
    transient = True


class NonceTooLowError(ChainSubmissionError):
    """Nonce already consumed; a resync and resubmission may succeed."""

    error_code = "NONCE_TOO_LOW"
    transient = True


class UnderpricedError(ChainSubmissionError):
    """Fee too low to replace or enter the mempool."""

    error_code = "TRANSACTION_UNDERPRICED"
    transient = True


class InvalidDestinationError(ChainSubmissionError):
    """Destination is not a valid account address."""

    error_code = "INVALID_DESTINATION"
    http_status = 400


class InsufficientTreasuryBalanceError(ChainSubmissionError):
    """Treasury token balance does not cover the transfer."""

    error_code = "INSUFFICIENT_TREASURY_BALANCE"

    def __init__(
        self,
        message: str,
        available: Optional[str] = None,
        required: Optional[str] = None,
        chain: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if available is not None:
            details["available"] = available
        if required is not None:
            details["required"] = required
        super().__init__(message, chain=chain, details=details)


class InsufficientGasError(ChainSubmissionError):
    """Treasury native balance does not cover the gas cost."""

    error_code = "INSUFFICIENT_GAS"


class TransactionRevertedError(ChainError):
    """Transaction was mined but reverted on-chain."""

    error_code = "TRANSACTION_REVERTED"

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        chain: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if reason:
            details["reason"] = reason
        self.reason = reason
        super().__init__(message, chain=chain, tx_hash=tx_hash, details=details)


class ConfirmationTimeoutError(ChainError):
    """Confirmation wait elapsed; the transaction's fate is unknown."""

    error_code = "CONFIRMATION_TIMEOUT"
    http_status = 504
    transient = True

    def __init__(
        self,
        tx_hash: str,
        timeout_seconds: float,
        pending: Any = None,
        chain: Optional[str] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.pending = pending
        super().__init__(
            f"Transaction {tx_hash} not confirmed after {timeout_seconds}s",
            chain=chain,
            tx_hash=tx_hash,
            details={"timeout_seconds": timeout_seconds},
        )


# =============================================================================
# Error Mapping Utilities
# =============================================================================

# Substrings of node error messages and the exception they map to
CHAIN_ERROR_PATTERNS: dict[str, tuple[Type[ChainError], str]] = {
    "execution reverted": (TransactionRevertedError, "Transaction execution reverted"),
    "insufficient funds": (InsufficientGasError, "Insufficient native funds for gas"),
    "nonce too low": (NonceTooLowError, "Transaction nonce too low"),
    "replacement transaction underpriced": (
        UnderpricedError,
        "Replacement transaction underpriced",
    ),
    "transaction underpriced": (UnderpricedError, "Transaction underpriced"),
    "max fee per gas less than block base fee": (
        UnderpricedError,
        "Max fee per gas less than block base fee",
    ),
    "timeout": (RPCUnavailableError, "RPC request timed out"),
    "timed out": (RPCUnavailableError, "RPC request timed out"),
    "connection refused": (RPCUnavailableError, "RPC node connection refused"),
    "rate limited": (RPCUnavailableError, "RPC rate limit exceeded"),
    "too many requests": (RPCUnavailableError, "RPC rate limit exceeded"),
    "internal error": (RPCUnavailableError, "RPC internal error"),
}


def exception_from_chain_error(
    error: BaseException,
    chain: Optional[str] = None,
    tx_hash: Optional[str] = None,
) -> ChainError:
    """Convert a raw chain/RPC error to the appropriate Wura exception.

    Args:
        error: The original exception from the chain call
        chain: Optional chain identifier (e.g., "polygon")
        tx_hash: Optional transaction hash if applicable

    Returns:
        ChainError subclass; unknown errors map to a permanent
        ChainSubmissionError
    """
    if isinstance(error, ChainError):
        return error

    error_str = str(error).lower()

    for pattern, (exc_class, message) in CHAIN_ERROR_PATTERNS.items():
        if pattern in error_str:
            details: dict[str, Any] = {"original_error": str(error)}
            if exc_class is TransactionRevertedError:
                return exc_class(
                    message,
                    tx_hash=tx_hash,
                    chain=chain,
                    reason=str(error),
                    details=details,
                )
            return exc_class(message, chain=chain, tx_hash=tx_hash, details=details)

    return ChainSubmissionError(
        f"Chain call failed: {error}",
        chain=chain,
        tx_hash=tx_hash,
        details={"original_error": str(error)},
    )


def is_transient(error: BaseException) -> bool:
    """Whether retrying the failed chain operation may succeed."""
    return isinstance(error, ChainError) and error.transient


__all__ = [
    "WuraException",
    "WuraValidationError",
    "BoundsError",
    "PrecisionError",
    "QuoteExpiredError",
    "PaymentError",
    "PaymentNotConfirmedError",
    "PaymentMismatchError",
    "ConfigError",
    "InvalidStateTransitionError",
    "ChainError",
    "ChainSubmissionError",
    "RPCUnavailableError",
    "NonceTooLowError",
    "UnderpricedError",
    "InvalidDestinationError",
    "InsufficientTreasuryBalanceError",
    "InsufficientGasError",
    "TransactionRevertedError",
    "ConfirmationTimeoutError",
    "CHAIN_ERROR_PATTERNS",
    "exception_from_chain_error",
    "is_transient",
]
