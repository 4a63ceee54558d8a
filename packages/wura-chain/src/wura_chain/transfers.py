"""Token transfer handles returned by the chain client."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from wura_core.exceptions import PrecisionError, WuraValidationError
from wura_core.constants import TokenConfig


class TransferStatus(str, Enum):
    """Transaction status by hash."""
    NOT_FOUND = "not_found"
    PENDING = "pending"  # Known to the node, not mined
    CONFIRMING = "confirming"  # Mined, fewer confirmations than required
    CONFIRMED = "confirmed"
    FAILED = "failed"  # Mined and reverted


@dataclass(frozen=True)
class PendingTransfer:
    """A broadcast transfer whose fate is not yet known.

    ``nonce`` and ``sender`` are None for handles rebuilt from a stored
    transaction hash. ``raw_transaction`` holds the signed bytes while the
    broadcast is unresolved, so a retry resends the same transaction under the
    same nonce instead of signing a new one.
    """
    tx_hash: str
    nonce: Optional[int]
    sender: Optional[str]
    destination: str
    amount_minor: int
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    raw_transaction: Optional[str] = field(default=None, repr=False)

    @classmethod
    def recovered(
        cls,
        tx_hash: str,
        destination: str,
        amount_minor: int,
        raw_transaction: Optional[str] = None,
    ) -> "PendingTransfer":
        return cls(
            tx_hash=tx_hash,
            nonce=None,
            sender=None,
            destination=destination,
            amount_minor=amount_minor,
            raw_transaction=raw_transaction,
        )


@dataclass(frozen=True)
class TransferReceipt:
    tx_hash: str
    block_number: int
    confirmations: int
    gas_used: Optional[int] = None
    gas_fee_wei: Optional[int] = None  # gasUsed * effectiveGasPrice
    confirmed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def to_minor_units(amount: Decimal | int | str, decimals: int = TokenConfig.DECIMALS) -> int:
    """Convert a token amount to integer minor units without truncation.

    Raises:
        PrecisionError: more fraction digits than ``decimals``
        WuraValidationError: amount not a positive finite number
    """
    if isinstance(amount, (float, bool)):
        raise WuraValidationError(
            f"Token amounts must be Decimal, int or str, got {type(amount).__name__}",
            field="amount",
        )
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except ArithmeticError as e:
        raise WuraValidationError(f"Invalid token amount {amount!r}", field="amount") from e

    if not value.is_finite() or value <= 0:
        raise WuraValidationError(f"Token amount must be positive, got {amount}", field="amount")

    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise PrecisionError(value, decimals)
    return int(scaled)


def from_minor_units(amount_minor: int, decimals: int = TokenConfig.DECIMALS) -> Decimal:
    return Decimal(amount_minor).scaleb(-decimals)


__all__ = [
    "TransferStatus",
    "PendingTransfer",
    "TransferReceipt",
    "to_minor_units",
    "from_minor_units",
]
