"""Fiat deposit confirmations reported by the mobile-money gateway."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import WuraValidationError

logger = logging.getLogger(__name__)


class PaymentConfirmation(BaseModel):
    """A gateway's verdict on one fiat deposit.

    ``idempotency_key`` is unique per deposit (the gateway transaction id) and
    keys the on-chain settlement. ``reference_id`` links back to the quote the
    sender accepted.
    """

    idempotency_key: str = Field(min_length=1)
    destination_address: str = Field(min_length=1)
    confirmed_fiat_amount: Decimal
    succeeded: bool = True
    reference_id: Optional[str] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        frozen = True

    @field_validator("confirmed_fiat_amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("confirmed_fiat_amount must be non-negative")
        return v

    @classmethod
    def from_gateway_payload(
        cls,
        payload: Mapping[str, Any],
        destination_address: str,
    ) -> "PaymentConfirmation":
        """Build a confirmation from the gateway webhook body.

        The gateway sends ``transactionId``, ``isPaymentSucces`` (sic),
        ``amount`` and echoes the quote reference in ``stateData`` (or
        ``state``). The destination wallet is not part of the webhook and is
        supplied by the caller from the sender's declared beneficiary.
        """
        reference_id = payload.get("stateData") or payload.get("state")
        if not reference_id:
            raise WuraValidationError(
                "Gateway payload carries no quote reference (stateData)",
                field="stateData",
            )

        try:
            confirmation = cls(
                idempotency_key=str(payload.get("transactionId") or ""),
                destination_address=destination_address,
                confirmed_fiat_amount=payload.get("amount", 0),
                succeeded=bool(payload.get("isPaymentSucces", False)),
                reference_id=str(reference_id),
            )
        except ValidationError as e:
            raise WuraValidationError(
                f"Malformed gateway payload: {e.errors()[0]['msg']}",
                details={"errors": [err["loc"] for err in e.errors()]},
            ) from e

        logger.debug(
            "Parsed gateway confirmation %s for %s (succeeded=%s)",
            confirmation.idempotency_key,
            confirmation.reference_id,
            confirmation.succeeded,
        )
        return confirmation


__all__ = ["PaymentConfirmation"]
