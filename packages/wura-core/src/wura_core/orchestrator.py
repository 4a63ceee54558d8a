"""Settlement orchestration: quote, verify the fiat deposit, settle, record, notify."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from .constants import QuoteDefaults
from .exceptions import (
    ConfigError,
    PaymentMismatchError,
    PaymentNotConfirmedError,
    QuoteExpiredError,
    WuraException,
    WuraValidationError,
)
from .payments import PaymentConfirmation
from .quotes import QuoteCalculator, Quotation, TransferStrategy
from .settlements import (
    SettlementRequest,
    SettlementResult,
    SettlementStatus,
    SettlementStore,
)

logger = logging.getLogger(__name__)


def new_reference_id() -> str:
    """Short, human-readable quote reference such as ``TX-1A2B3C4D``."""
    return f"TX-{uuid.uuid4().hex[:8].upper()}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IssuedQuote:
    quotation: Quotation
    reference_id: str = field(default_factory=new_reference_id)
    issued_at: datetime = field(default_factory=_utcnow)

    def age_seconds(self, now: datetime) -> float:
        return (now - self.issued_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        data = self.quotation.to_dict()
        data["reference_id"] = self.reference_id
        data["issued_at"] = self.issued_at.isoformat()
        return data


class OutcomeState(str, Enum):
    REJECTED = "rejected"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(slots=True)
class SettlementOutcome:
    """What the sender is told about their transfer."""
    state: OutcomeState
    reference_id: str
    message: str
    transaction_hash: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "reference_id": self.reference_id,
            "message": self.message,
            "transaction_hash": self.transaction_hash,
            "error_code": self.error_code,
        }


class SettlementExecutorPort(Protocol):
    async def settle(self, request: SettlementRequest) -> SettlementResult: ...


class NotifierPort(Protocol):
    async def notify(self, outcome: SettlementOutcome) -> None: ...


_RESULT_MESSAGES = {
    SettlementStatus.CONFIRMED: (OutcomeState.CONFIRMED, "Transfer delivered"),
    SettlementStatus.SUBMITTED: (
        OutcomeState.PENDING,
        "Transfer sent, waiting for network confirmation",
    ),
    SettlementStatus.FAILED: (
        OutcomeState.FAILED,
        "Transfer could not be delivered; our team has been alerted",
    ),
}


class SettlementOrchestrator:
    """Sequences quote -> confirmed fiat deposit -> on-chain settlement -> record."""

    def __init__(
        self,
        *,
        calculator: QuoteCalculator,
        executor: SettlementExecutorPort,
        store: SettlementStore,
        notifier: Optional[NotifierPort] = None,
        quote_ttl_seconds: float = QuoteDefaults.QUOTE_TTL_SECONDS,
        amount_tolerance: Decimal = QuoteDefaults.AMOUNT_TOLERANCE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._calculator = calculator
        self._executor = executor
        self._store = store
        self._notifier = notifier
        self._quote_ttl = quote_ttl_seconds
        self._tolerance = Decimal(str(amount_tolerance))
        self._clock = clock

    def request_quote(
        self,
        amount: int,
        strategy: TransferStrategy | str,
    ) -> IssuedQuote:
        quotation = self._calculator.compute_quote(amount, strategy)
        issued = IssuedQuote(quotation=quotation, issued_at=self._clock())
        logger.info(
            "Issued quote %s: %s %s -> %s %s (%s)",
            issued.reference_id,
            quotation.fiat_amount_in,
            quotation.fiat_currency_in,
            quotation.fiat_amount_out,
            quotation.fiat_currency_out,
            quotation.strategy.value,
        )
        return issued

    def _verify_deposit(
        self,
        quote: IssuedQuote,
        confirmation: PaymentConfirmation,
    ) -> None:
        if not confirmation.succeeded:
            raise PaymentNotConfirmedError(
                f"Payment {confirmation.idempotency_key} was not confirmed by the gateway",
                details={"reference_id": quote.reference_id},
            )

        if confirmation.reference_id and confirmation.reference_id != quote.reference_id:
            raise WuraValidationError(
                f"Confirmation references {confirmation.reference_id}, "
                f"not quote {quote.reference_id}",
                field="reference_id",
            )

        age = quote.age_seconds(self._clock())
        if age > self._quote_ttl:
            raise QuoteExpiredError(quote.reference_id, age, self._quote_ttl)

        expected = quote.quotation.total_debited
        received = confirmation.confirmed_fiat_amount
        if abs(received - expected) > self._tolerance:
            raise PaymentMismatchError(expected, received, self._tolerance)

    async def settle_deposit(
        self,
        quote: IssuedQuote,
        confirmation: PaymentConfirmation,
    ) -> SettlementResult:
        """Settle a confirmed deposit against the quote the sender accepted.

        A replayed confirmation for a deposit that already has a live
        settlement returns that settlement without re-checking the quote.

        Raises:
            PaymentNotConfirmedError: gateway reported the deposit as failed
            QuoteExpiredError: quote older than its time-to-live
            PaymentMismatchError: deposit differs from the quoted total debited
            ConfigError: treasury not configured
        """
        key = confirmation.idempotency_key

        existing = await self._store.get(key)
        if existing is not None and not existing.is_retryable:
            logger.info(
                "Deposit %s already settled (%s), confirmation ignored",
                key,
                existing.status.value,
            )
            return existing

        self._verify_deposit(quote, confirmation)

        request = SettlementRequest(
            destination_address=confirmation.destination_address,
            crypto_amount=quote.quotation.crypto_amount,
            idempotency_key=key,
        )
        result = await self._executor.settle(request)

        logger.info(
            "Settlement for %s (%s): %s %s",
            quote.reference_id,
            key,
            result.status.value,
            result.transaction_hash or "-",
        )
        return result

    async def process_confirmation(
        self,
        quote: IssuedQuote,
        confirmation: PaymentConfirmation,
    ) -> SettlementOutcome:
        """User-facing entry point. Never raises for expected failures."""
        try:
            result = await self.settle_deposit(quote, confirmation)
        except WuraValidationError as e:
            outcome = self._rejected(quote, e)
        except (PaymentNotConfirmedError, QuoteExpiredError, PaymentMismatchError) as e:
            outcome = self._rejected(quote, e)
        except ConfigError as e:
            # Deposit is safe; settlement waits for the operator
            logger.error("Settlement disabled for %s: %s", quote.reference_id, e.message)
            outcome = SettlementOutcome(
                state=OutcomeState.PENDING,
                reference_id=quote.reference_id,
                message="Deposit received, transfer will be processed shortly",
            )
        else:
            state, message = _RESULT_MESSAGES[result.status]
            if result.status == SettlementStatus.FAILED:
                logger.error(
                    "Settlement failed for %s: %s",
                    quote.reference_id,
                    result.failure_reason,
                )
            outcome = SettlementOutcome(
                state=state,
                reference_id=quote.reference_id,
                message=message,
                transaction_hash=result.transaction_hash,
            )

        await self._notify(outcome)
        return outcome

    def _rejected(self, quote: IssuedQuote, error: WuraException) -> SettlementOutcome:
        logger.warning(
            "Confirmation rejected for %s: %s",
            quote.reference_id,
            error.message,
            extra={"error_code": error.error_code, "details": error.details},
        )
        return SettlementOutcome(
            state=OutcomeState.REJECTED,
            reference_id=quote.reference_id,
            message=error.message,
            error_code=error.error_code,
        )

    async def _notify(self, outcome: SettlementOutcome) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.notify(outcome)
        except Exception as e:
            logger.warning(
                "Notification failed for %s: %s",
                outcome.reference_id,
                e,
                exc_info=True,
            )


__all__ = [
    "IssuedQuote",
    "OutcomeState",
    "SettlementOutcome",
    "SettlementExecutorPort",
    "NotifierPort",
    "SettlementOrchestrator",
    "new_reference_id",
]
