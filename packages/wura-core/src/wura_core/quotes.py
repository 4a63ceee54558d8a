"""
Deterministic quote calculation for XOF -> EUR stablecoin transfers.

A quote turns a fiat amount (whole FCFA) and a pricing strategy into a
fee-inclusive, bounded quotation. The calculation is pure: no clock, no I/O,
no shared mutable state, so one ``QuoteCalculator`` can serve any number of
concurrent requests.

Usage:
    from wura_core.quotes import TransferStrategy, compute_quote

    quote = compute_quote(100_000, TransferStrategy.STANDARD)
    quote.total_debited    # Decimal("102000.00")
    quote.fiat_amount_out  # Decimal("147.06")
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from .constants import QuoteDefaults, TokenConfig
from .exceptions import BoundsError, WuraValidationError

logger = logging.getLogger(__name__)


class TransferStrategy(str, Enum):
    """Named pricing strategy. FAST pays a priority premium (higher rate)."""

    FAST = "FAST"
    STANDARD = "STANDARD"

    @classmethod
    def parse(cls, value: "TransferStrategy | str") -> "TransferStrategy":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise WuraValidationError(
            f"Unknown transfer strategy {value!r}; expected one of "
            f"{', '.join(s.value for s in cls)}",
            field="strategy",
        )


def _default_rates() -> dict[TransferStrategy, Decimal]:
    return {
        TransferStrategy.FAST: QuoteDefaults.FAST_RATE,
        TransferStrategy.STANDARD: QuoteDefaults.STANDARD_RATE,
    }


def round_half_up(value: Decimal, places: int) -> Decimal:
    """Round to ``places`` fraction digits, ties away from zero."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class QuotePolicy:
    """Pricing policy applied by the quote calculator.

    Rates are source-currency units per destination-currency unit. The
    settlement token is treated as pegged 1:1 to the destination currency, so
    ``crypto_amount`` is the same division as ``fiat_amount_out`` kept at the
    token's precision.
    """

    min_amount: int = QuoteDefaults.MIN_AMOUNT
    max_amount: int = QuoteDefaults.MAX_AMOUNT
    fee_rate: Decimal = QuoteDefaults.FEE_RATE
    rates: Mapping[TransferStrategy, Decimal] = field(default_factory=_default_rates)
    fiat_currency_in: str = QuoteDefaults.FIAT_CURRENCY_IN
    fiat_currency_out: str = QuoteDefaults.FIAT_CURRENCY_OUT
    fiat_out_decimals: int = QuoteDefaults.FIAT_OUT_DECIMALS
    token_decimals: int = TokenConfig.DECIMALS

    def __post_init__(self) -> None:
        rates = {TransferStrategy.parse(k): Decimal(str(v)) for k, v in self.rates.items()}
        object.__setattr__(self, "rates", rates)
        object.__setattr__(self, "fee_rate", Decimal(str(self.fee_rate)))

        if self.min_amount <= 0 or self.min_amount > self.max_amount:
            raise ValueError(
                f"invalid amount bounds: min={self.min_amount} max={self.max_amount}"
            )
        missing = set(TransferStrategy) - set(rates)
        if missing:
            raise ValueError(f"missing rates for {sorted(s.value for s in missing)}")
        if any(rate <= 0 for rate in rates.values()):
            raise ValueError("rates must be positive")
        if rates[TransferStrategy.FAST] <= rates[TransferStrategy.STANDARD]:
            raise ValueError("FAST rate must be strictly greater than STANDARD rate")
        if not Decimal("0") <= self.fee_rate < Decimal("1"):
            raise ValueError("fee_rate must be in [0, 1)")

    def rate_for(self, strategy: TransferStrategy) -> Decimal:
        return self.rates[strategy]


@dataclass(frozen=True)
class Quotation:
    """Fee-inclusive quote. Every derived field is a pure function of the
    requested amount, the strategy and the policy that produced it."""

    fiat_amount_in: int
    fiat_currency_in: str
    fee_amount: Decimal
    total_debited: Decimal
    fiat_amount_out: Decimal
    fiat_currency_out: str
    crypto_amount: Decimal
    rate: Decimal
    strategy: TransferStrategy

    def to_dict(self) -> dict[str, Any]:
        return {
            "fiat_amount_in": self.fiat_amount_in,
            "fiat_currency_in": self.fiat_currency_in,
            "fee_amount": str(self.fee_amount),
            "total_debited": str(self.total_debited),
            "fiat_amount_out": str(self.fiat_amount_out),
            "fiat_currency_out": self.fiat_currency_out,
            "crypto_amount": str(self.crypto_amount),
            "rate": str(self.rate),
            "strategy": self.strategy.value,
        }


class QuoteCalculator:
    """Computes quotations under a fixed ``QuotePolicy``."""

    def __init__(self, policy: Optional[QuotePolicy] = None) -> None:
        self._policy = policy or QuotePolicy()

    @property
    def policy(self) -> QuotePolicy:
        return self._policy

    def compute_quote(
        self,
        fiat_amount_in: int,
        strategy: TransferStrategy | str,
    ) -> Quotation:
        """Quote ``fiat_amount_in`` (whole source-currency units).

        Raises:
            WuraValidationError: amount is not an integer or strategy is unknown
            BoundsError: amount outside [min_amount, max_amount]
        """
        policy = self._policy

        if isinstance(fiat_amount_in, bool) or not isinstance(fiat_amount_in, int):
            raise WuraValidationError(
                f"Amount must be a whole number of {policy.fiat_currency_in}, "
                f"got {fiat_amount_in!r}",
                field="amount",
            )
        strategy = TransferStrategy.parse(strategy)

        if not policy.min_amount <= fiat_amount_in <= policy.max_amount:
            raise BoundsError(
                requested=fiat_amount_in,
                min_amount=policy.min_amount,
                max_amount=policy.max_amount,
                currency=policy.fiat_currency_in,
            )

        rate = policy.rate_for(strategy)
        amount = Decimal(fiat_amount_in)

        fee_amount = amount * policy.fee_rate
        converted = amount / rate

        quotation = Quotation(
            fiat_amount_in=fiat_amount_in,
            fiat_currency_in=policy.fiat_currency_in,
            fee_amount=fee_amount,
            total_debited=amount + fee_amount,
            fiat_amount_out=round_half_up(converted, policy.fiat_out_decimals),
            fiat_currency_out=policy.fiat_currency_out,
            crypto_amount=round_half_up(converted, policy.token_decimals),
            rate=rate,
            strategy=strategy,
        )
        logger.debug(
            "Quoted %s %s via %s at %s -> %s %s",
            fiat_amount_in,
            policy.fiat_currency_in,
            strategy.value,
            rate,
            quotation.fiat_amount_out,
            policy.fiat_currency_out,
        )
        return quotation


_default_calculator = QuoteCalculator()


def compute_quote(
    fiat_amount_in: int,
    strategy: TransferStrategy | str,
    policy: Optional[QuotePolicy] = None,
) -> Quotation:
    """Quote with ``policy``, or the default policy when omitted."""
    calculator = QuoteCalculator(policy) if policy is not None else _default_calculator
    return calculator.compute_quote(fiat_amount_in, strategy)


__all__ = [
    "TransferStrategy",
    "QuotePolicy",
    "Quotation",
    "QuoteCalculator",
    "compute_quote",
    "round_half_up",
]
