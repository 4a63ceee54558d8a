"""Settlement records, their state machine, and the store port they persist through.

A settlement is the on-chain leg of a confirmed fiat deposit. It is keyed by
the deposit's idempotency key: at most one token transfer may ever land per
key, and the persisted ``SettlementResult`` is what enforces it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Protocol

from .exceptions import InvalidStateTransitionError, WuraValidationError

logger = logging.getLogger(__name__)


class SettlementStatus(str, Enum):
    """Externally visible settlement status."""

    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class SettlementState(str, Enum):
    """Internal lifecycle of a single settlement attempt."""

    QUOTED = "QUOTED"
    SUBMITTING = "SUBMITTING"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SettlementState.CONFIRMED, SettlementState.FAILED)


SETTLEMENT_TRANSITIONS: dict[SettlementState, frozenset[SettlementState]] = {
    SettlementState.QUOTED: frozenset({SettlementState.SUBMITTING, SettlementState.FAILED}),
    SettlementState.SUBMITTING: frozenset({SettlementState.SUBMITTED, SettlementState.FAILED}),
    SettlementState.SUBMITTED: frozenset({SettlementState.CONFIRMED, SettlementState.FAILED}),
    SettlementState.CONFIRMED: frozenset(),
    SettlementState.FAILED: frozenset(),
}


class SettlementStateMachine:
    """Tracks one settlement attempt and rejects illegal transitions."""

    def __init__(
        self,
        idempotency_key: str,
        state: SettlementState = SettlementState.QUOTED,
    ) -> None:
        self.idempotency_key = idempotency_key
        self._state = state
        self.history: list[tuple[SettlementState, datetime]] = [
            (state, datetime.now(timezone.utc))
        ]

    @property
    def state(self) -> SettlementState:
        return self._state

    def can_transition(self, target: SettlementState) -> bool:
        return target in SETTLEMENT_TRANSITIONS[self._state]

    def transition(self, target: SettlementState) -> SettlementState:
        if not self.can_transition(target):
            raise InvalidStateTransitionError(self._state.value, target.value)
        logger.debug(
            "Settlement %s: %s -> %s",
            self.idempotency_key,
            self._state.value,
            target.value,
        )
        self._state = target
        self.history.append((target, datetime.now(timezone.utc)))
        return target


@dataclass(frozen=True)
class SettlementRequest:
    destination_address: str
    crypto_amount: Decimal
    idempotency_key: str

    def __post_init__(self) -> None:
        if not self.idempotency_key:
            raise WuraValidationError("idempotency_key is required", field="idempotency_key")
        if not self.destination_address:
            raise WuraValidationError(
                "destination_address is required", field="destination_address"
            )
        if not isinstance(self.crypto_amount, Decimal):
            object.__setattr__(self, "crypto_amount", Decimal(str(self.crypto_amount)))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SettlementResult:
    idempotency_key: str
    status: SettlementStatus
    destination_address: str
    crypto_amount: Decimal
    transaction_hash: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    block_number: Optional[int] = None
    failure_reason: Optional[str] = None
    gas_used: Optional[int] = None
    gas_fee_wei: Optional[int] = None
    # Signed bytes of a broadcast whose fate was unknown when the attempt failed
    signed_transaction: Optional[str] = field(default=None, repr=False)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def submitted(cls, request: SettlementRequest, tx_hash: str) -> "SettlementResult":
        return cls(
            idempotency_key=request.idempotency_key,
            status=SettlementStatus.SUBMITTED,
            destination_address=request.destination_address,
            crypto_amount=request.crypto_amount,
            transaction_hash=tx_hash,
        )

    @classmethod
    def failed(
        cls,
        request: SettlementRequest,
        reason: str,
        tx_hash: Optional[str] = None,
        signed_transaction: Optional[str] = None,
    ) -> "SettlementResult":
        return cls(
            idempotency_key=request.idempotency_key,
            status=SettlementStatus.FAILED,
            destination_address=request.destination_address,
            crypto_amount=request.crypto_amount,
            transaction_hash=tx_hash,
            failure_reason=reason,
            signed_transaction=signed_transaction,
        )

    def confirm(
        self,
        block_number: Optional[int],
        confirmed_at: datetime,
        gas_used: Optional[int] = None,
        gas_fee_wei: Optional[int] = None,
    ) -> "SettlementResult":
        return replace(
            self,
            status=SettlementStatus.CONFIRMED,
            block_number=block_number,
            confirmed_at=confirmed_at,
            gas_used=gas_used,
            gas_fee_wei=gas_fee_wei,
            signed_transaction=None,
            updated_at=_utcnow(),
        )

    def fail(self, reason: str) -> "SettlementResult":
        return replace(
            self,
            status=SettlementStatus.FAILED,
            failure_reason=reason,
            signed_transaction=None,
            updated_at=_utcnow(),
        )

    @property
    def is_retryable(self) -> bool:
        """Only a FAILED settlement may be attempted again."""
        return self.status == SettlementStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "idempotency_key": self.idempotency_key,
            "status": self.status.value,
            "destination_address": self.destination_address,
            "crypto_amount": str(self.crypto_amount),
            "transaction_hash": self.transaction_hash,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
            "block_number": self.block_number,
            "failure_reason": self.failure_reason,
            "gas_used": self.gas_used,
            "gas_fee_wei": str(self.gas_fee_wei) if self.gas_fee_wei is not None else None,
            "signed_transaction": self.signed_transaction,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SettlementResult":
        confirmed_at = data.get("confirmed_at")
        updated_at = data.get("updated_at")
        gas_fee_wei = data.get("gas_fee_wei")
        return cls(
            idempotency_key=data["idempotency_key"],
            status=SettlementStatus(data["status"]),
            destination_address=data["destination_address"],
            crypto_amount=Decimal(data["crypto_amount"]),
            transaction_hash=data.get("transaction_hash"),
            confirmed_at=datetime.fromisoformat(confirmed_at) if confirmed_at else None,
            block_number=data.get("block_number"),
            failure_reason=data.get("failure_reason"),
            gas_used=data.get("gas_used"),
            gas_fee_wei=int(gas_fee_wei) if gas_fee_wei is not None else None,
            signed_transaction=data.get("signed_transaction"),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else _utcnow(),
        )


class SettlementStore(Protocol):
    async def get(self, key: str) -> Optional[SettlementResult]: ...
    async def put(self, key: str, result: SettlementResult) -> None: ...


class InMemorySettlementStore(SettlementStore):
    """In-memory settlement store (dev/tests; swap for Redis in production)."""

    def __init__(self) -> None:
        self._results: dict[str, SettlementResult] = {}

    async def get(self, key: str) -> Optional[SettlementResult]:
        return self._results.get(key)

    async def put(self, key: str, result: SettlementResult) -> None:
        self._results[key] = result

    def __len__(self) -> int:
        return len(self._results)


__all__ = [
    "SettlementStatus",
    "SettlementState",
    "SETTLEMENT_TRANSITIONS",
    "SettlementStateMachine",
    "SettlementRequest",
    "SettlementResult",
    "SettlementStore",
    "InMemorySettlementStore",
]
