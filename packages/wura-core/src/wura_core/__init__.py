"""Quote and settlement domain primitives shared across Wura services."""

from .config import WuraSettings, load_settings
from .exceptions import (
    WuraException,
    WuraValidationError,
    BoundsError,
    PrecisionError,
    QuoteExpiredError,
    PaymentNotConfirmedError,
    PaymentMismatchError,
    ConfigError,
    InvalidStateTransitionError,
    ChainError,
    ChainSubmissionError,
    RPCUnavailableError,
    NonceTooLowError,
    InvalidDestinationError,
    InsufficientTreasuryBalanceError,
    InsufficientGasError,
    TransactionRevertedError,
    ConfirmationTimeoutError,
    is_transient,
)
from .quotes import TransferStrategy, QuotePolicy, Quotation, QuoteCalculator, compute_quote
from .margin import MarginReport, compute_margin
from .settlements import (
    SettlementStatus,
    SettlementState,
    SettlementStateMachine,
    SettlementRequest,
    SettlementResult,
    SettlementStore,
    InMemorySettlementStore,
)
from .settlement_store_redis import RedisSettlementStore
from .payments import PaymentConfirmation
from .orchestrator import (
    IssuedQuote,
    OutcomeState,
    SettlementOutcome,
    SettlementOrchestrator,
    NotifierPort,
)

__all__ = [
    "WuraSettings",
    "load_settings",
    "WuraException",
    "WuraValidationError",
    "BoundsError",
    "PrecisionError",
    "QuoteExpiredError",
    "PaymentNotConfirmedError",
    "PaymentMismatchError",
    "ConfigError",
    "InvalidStateTransitionError",
    "ChainError",
    "ChainSubmissionError",
    "RPCUnavailableError",
    "NonceTooLowError",
    "InvalidDestinationError",
    "InsufficientTreasuryBalanceError",
    "InsufficientGasError",
    "TransactionRevertedError",
    "ConfirmationTimeoutError",
    "is_transient",
    "TransferStrategy",
    "QuotePolicy",
    "Quotation",
    "QuoteCalculator",
    "compute_quote",
    "MarginReport",
    "compute_margin",
    "SettlementStatus",
    "SettlementState",
    "SettlementStateMachine",
    "SettlementRequest",
    "SettlementResult",
    "SettlementStore",
    "InMemorySettlementStore",
    "RedisSettlementStore",
    "PaymentConfirmation",
    "IssuedQuote",
    "OutcomeState",
    "SettlementOutcome",
    "SettlementOrchestrator",
    "NotifierPort",
]
