"""Treasury margin on a quotation, given what the settlement token cost to acquire."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from .constants import QuoteDefaults
from .quotes import Quotation, round_half_up


@dataclass(frozen=True)
class MarginReport:
    revenue: Decimal
    token_cost: Decimal
    gateway_fee: Decimal
    net_margin: Decimal
    token_cost_rate: Decimal

    @property
    def is_profitable(self) -> bool:
        return self.net_margin > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "revenue": str(self.revenue),
            "token_cost": str(self.token_cost),
            "gateway_fee": str(self.gateway_fee),
            "net_margin": str(self.net_margin),
            "token_cost_rate": str(self.token_cost_rate),
        }


def compute_margin(
    quotation: Quotation,
    token_cost_rate: Optional[Decimal] = None,
) -> MarginReport:
    """Net margin in source-currency units.

    ``token_cost_rate`` is the source-currency price paid per token unit.
    The gateway fee is passed through to the sender, so it is charged against
    the revenue rather than added to it.
    """
    rate = Decimal(str(token_cost_rate)) if token_cost_rate is not None else QuoteDefaults.TOKEN_COST_RATE
    if rate <= 0:
        raise ValueError("token_cost_rate must be positive")

    revenue = Decimal(quotation.fiat_amount_in)
    token_cost = round_half_up(quotation.crypto_amount * rate, 2)
    net_margin = revenue - (token_cost + quotation.fee_amount)

    return MarginReport(
        revenue=revenue,
        token_cost=token_cost,
        gateway_fee=quotation.fee_amount,
        net_margin=net_margin,
        token_cost_rate=rate,
    )


__all__ = ["MarginReport", "compute_margin"]
