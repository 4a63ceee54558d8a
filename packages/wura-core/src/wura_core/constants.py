"""
Centralized constants and configuration defaults for Wura Core.

This module provides a single source of truth for the monetary limits,
rate table, timeouts and retry budgets used by the quote and settlement
engine.

Usage:
    from wura_core.constants import QuoteDefaults, RetryDefaults, TokenConfig

All values are organized into logical namespaces using classes.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Final


# =============================================================================
# Quote Policy Defaults
# =============================================================================

class QuoteDefaults:
    """Default pricing policy for XOF -> EUR transfers.

    Rates are expressed in source-currency units per destination-currency
    unit (FCFA per 1 EUR). The FAST rate is deliberately higher: the sender
    pays a priority premium.
    """

    MIN_AMOUNT: Final[int] = 35_000
    MAX_AMOUNT: Final[int] = 300_000

    FAST_RATE: Final[Decimal] = Decimal("720")
    STANDARD_RATE: Final[Decimal] = Decimal("680")

    # Mobile-money gateway fee, added on top of the sent amount
    FEE_RATE: Final[Decimal] = Decimal("0.02")

    FIAT_CURRENCY_IN: Final[str] = "XOF"
    FIAT_CURRENCY_OUT: Final[str] = "EUR"

    FIAT_OUT_DECIMALS: Final[int] = 2

    # Quotes older than this must be re-issued before settlement
    QUOTE_TTL_SECONDS: Final[int] = 15 * 60

    # Accepted difference between confirmed deposit and total debited
    AMOUNT_TOLERANCE: Final[Decimal] = Decimal("1")

    # Mock USDT acquisition cost (FCFA per USDT) used for margin reports
    TOKEN_COST_RATE: Final[Decimal] = Decimal("615")


# =============================================================================
# Token Configuration
# =============================================================================

class TokenConfig:
    """Settlement token protocol constants."""

    SYMBOL: Final[str] = "USDT"
    DECIMALS: Final[int] = 6

    # USDT on Polygon PoS
    POLYGON_USDT_ADDRESS: Final[str] = "0xc2132D05D31c914a87C6611C10748AEb04B58e8F"


# =============================================================================
# Retry Configuration
# =============================================================================

class RetryDefaults:
    """Retry configuration for settlement operations."""

    DEFAULT_MAX_RETRIES: Final[int] = 3
    DEFAULT_BASE_DELAY: Final[float] = 1.0
    DEFAULT_MAX_DELAY: Final[float] = 60.0
    DEFAULT_EXPONENTIAL_BASE: Final[float] = 2.0
    DEFAULT_JITTER: Final[float] = 0.1

    # Broadcast of a signed transfer
    SUBMIT_MAX_RETRIES: Final[int] = 3
    SUBMIT_BASE_DELAY: Final[float] = 1.0
    SUBMIT_MAX_DELAY: Final[float] = 15.0

    # Confirmation polling rounds
    CONFIRM_MAX_RETRIES: Final[int] = 2
    CONFIRM_BASE_DELAY: Final[float] = 2.0
    CONFIRM_MAX_DELAY: Final[float] = 30.0

    # Settlement store round trips
    STORE_MAX_RETRIES: Final[int] = 2
    STORE_BASE_DELAY: Final[float] = 0.1
    STORE_MAX_DELAY: Final[float] = 1.0


# =============================================================================
# Timeouts (in seconds)
# =============================================================================

class Timeouts:
    """Network and operation timeout configuration."""

    RPC_CALL: Final[float] = 30.0
    RPC_CONNECT: Final[float] = 10.0

    CONFIRMATION_WAIT: Final[float] = 120.0
    CONFIRMATION_POLL_INTERVAL: Final[float] = 2.0

    REDIS_SOCKET: Final[float] = 5.0


# =============================================================================
# Logging Configuration
# =============================================================================

class LoggingConfig:
    """Logging and masking configuration."""

    SENSITIVE_FIELDS: Final[frozenset[str]] = frozenset({
        "private_key",
        "privatekey",
        "secret",
        "secret_key",
        "password",
        "api_key",
        "x_private_key",
        "authorization",
        "signed_tx",
        "raw_transaction",
        "signed_transaction",
    })

    MASK_PATTERN: Final[str] = "***REDACTED***"

    MAX_LOG_MESSAGE_LENGTH: Final[int] = 10000


__all__ = [
    "QuoteDefaults",
    "TokenConfig",
    "RetryDefaults",
    "Timeouts",
    "LoggingConfig",
]
