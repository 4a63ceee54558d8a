"""
Settlement executor: turns a settlement request into exactly one on-chain transfer.

Guarantees:
- Idempotent per key: a stored settlement in any state but FAILED is returned
  unchanged without touching the chain
- Per-key mutual exclusion from the idempotency check until SUBMITTED is
  persisted; the lock is released before waiting for confirmation
- Transient broadcast failures are retried within a bounded budget; a broadcast
  whose fate is unknown is looked up by hash, then resent byte for byte under
  the nonce it already holds; a fresh transfer is signed only once that nonce
  is known to be spent elsewhere
- A confirmation timeout never turns SUBMITTED into FAILED; only a revert does
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, AsyncIterator, Dict, List, Optional, Protocol

from wura_core.exceptions import (
    ChainError,
    ConfigError,
    NonceTooLowError,
    TransactionRevertedError,
    WuraValidationError,
)
from wura_core.logging import log_operation
from wura_core.retry import (
    CONFIRM_RETRY_CONFIG,
    SUBMIT_RETRY_CONFIG,
    RetryConfig,
    RetryContext,
    RetryExhausted,
)
from wura_core.settlements import (
    SettlementRequest,
    SettlementResult,
    SettlementState,
    SettlementStateMachine,
    SettlementStatus,
    SettlementStore,
)

from .transfers import (
    PendingTransfer,
    TransferReceipt,
    TransferStatus,
    to_minor_units,
)

if TYPE_CHECKING:
    from wura_core.config import WuraSettings

logger = logging.getLogger(__name__)


class ChainClientPort(Protocol):
    async def submit_transfer(self, destination: str, amount) -> PendingTransfer: ...

    async def rebroadcast(self, pending: PendingTransfer) -> PendingTransfer: ...

    async def await_confirmation(
        self, pending: PendingTransfer, timeout: Optional[float] = None
    ) -> TransferReceipt: ...

    async def get_transaction_status(self, tx_hash: str) -> TransferStatus: ...


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    refs: int = 0


class KeyedLock:
    """Reference-counted ``asyncio.Lock`` per key, dropped once no one holds or waits."""

    def __init__(self) -> None:
        self._entries: Dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _LockEntry()
        entry.refs += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.refs -= 1
            if entry.refs == 0:
                del self._entries[key]

    def locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)


# Statuses proving a hash reached the chain or mempool and may still pay out
_LIVE_STATUSES = (TransferStatus.PENDING, TransferStatus.CONFIRMING, TransferStatus.CONFIRMED)

_SINGLE_POLL = RetryConfig(max_retries=0, base_delay=0.0, jitter=0.0)


class SettlementExecutor:
    """
    Executes settlements against a chain client and a settlement store.

    Usage:
        executor = SettlementExecutor(client, store)
        result = await executor.settle(SettlementRequest(dest, amount, key))
    """

    def __init__(
        self,
        client: ChainClientPort,
        store: SettlementStore,
        *,
        submit_retry: RetryConfig = SUBMIT_RETRY_CONFIG,
        confirm_retry: RetryConfig = CONFIRM_RETRY_CONFIG,
        confirmation_timeout: Optional[float] = None,
    ) -> None:
        self._client = client
        self._store = store
        self._submit_retry = submit_retry
        self._confirm_retry = confirm_retry
        self._confirmation_timeout = confirmation_timeout
        self._locks = KeyedLock()

    @log_operation("settle")
    async def settle(self, request: SettlementRequest) -> SettlementResult:
        """Submit and confirm the transfer for ``request``.

        Raises:
            ConfigError: treasury not configured; nothing recorded
            WuraValidationError: amount not representable (PrecisionError); nothing recorded
        """
        key = request.idempotency_key

        async with self._locks.acquire(key):
            existing = await self._store.get(key)
            if existing is not None and not existing.is_retryable:
                logger.info(
                    "Settlement %s already %s, returning stored result",
                    key,
                    existing.status.value,
                )
                return existing

            # A failed attempt that left a hash behind may still have landed
            ambiguous: List[PendingTransfer] = []
            if existing is not None and existing.transaction_hash:
                ambiguous.append(
                    PendingTransfer.recovered(
                        existing.transaction_hash,
                        existing.destination_address,
                        to_minor_units(existing.crypto_amount),
                        existing.signed_transaction,
                    )
                )

            machine = SettlementStateMachine(key)
            machine.transition(SettlementState.SUBMITTING)

            try:
                pending = await self._submit(request, ambiguous)
            except (ConfigError, WuraValidationError):
                raise
            except RetryExhausted as e:
                return await self._record_failure(
                    machine,
                    request,
                    f"Retry budget exhausted: {e.original_exception}",
                    ambiguous,
                )
            except ChainError as e:
                return await self._record_failure(machine, request, e.message, ambiguous)

            machine.transition(SettlementState.SUBMITTED)
            result = SettlementResult.submitted(request, pending.tx_hash)
            await self._store.put(key, result)

        return await self._confirm(machine, result, pending)

    async def _submit(
        self,
        request: SettlementRequest,
        ambiguous: List[PendingTransfer],
    ) -> PendingTransfer:
        ctx = RetryContext(config=self._submit_retry)
        while ctx.should_continue():
            resend: Optional[PendingTransfer] = None
            try:
                landed = await self._find_landed(ambiguous)
                if landed is not None:
                    logger.warning(
                        "Settlement %s: earlier broadcast %s reached the chain, adopting it",
                        request.idempotency_key,
                        landed.tx_hash,
                    )
                    ctx.mark_success()
                    return landed

                # An unresolved broadcast still owns its nonce: resend it rather than sign anew
                resend = next((c for c in reversed(ambiguous) if c.raw_transaction), None)
                if resend is not None:
                    pending = await self._client.rebroadcast(resend)
                else:
                    pending = await self._client.submit_transfer(
                        request.destination_address, request.crypto_amount
                    )
                ctx.mark_success()
                return pending
            except ChainError as e:
                if resend is not None and isinstance(e, NonceTooLowError):
                    # Its nonce is spent; only a lookup by hash can still adopt it
                    ambiguous[ambiguous.index(resend)] = replace(resend, raw_transaction=None)
                elif e.pending is not None and e.pending is not resend:
                    ambiguous.append(e.pending)
                logger.warning(
                    "Settlement %s attempt %d failed: %s (%s)",
                    request.idempotency_key,
                    ctx.attempt + 1,
                    e.error_code,
                    "transient" if e.transient else "permanent",
                )
                await ctx.handle_exception(e)

        raise RetryExhausted(
            "Submission did not complete",
            stats=ctx.stats,
            original_exception=ctx.stats.last_exception,
        )

    async def _find_landed(
        self,
        candidates: List[PendingTransfer],
    ) -> Optional[PendingTransfer]:
        for candidate in candidates:
            status = await self._client.get_transaction_status(candidate.tx_hash)
            if status in _LIVE_STATUSES:
                return candidate
        return None

    async def _record_failure(
        self,
        machine: SettlementStateMachine,
        request: SettlementRequest,
        reason: str,
        ambiguous: List[PendingTransfer],
    ) -> SettlementResult:
        machine.transition(SettlementState.FAILED)
        # Keep the last unresolved hash and its signed bytes for a later retry
        last = ambiguous[-1] if ambiguous else None
        result = SettlementResult.failed(
            request,
            reason,
            tx_hash=last.tx_hash if last else None,
            signed_transaction=last.raw_transaction if last else None,
        )
        await self._store.put(request.idempotency_key, result)
        logger.error("Settlement %s failed: %s", request.idempotency_key, reason)
        return result

    async def _confirm(
        self,
        machine: SettlementStateMachine,
        result: SettlementResult,
        pending: PendingTransfer,
        *,
        retry_config: Optional[RetryConfig] = None,
        timeout: Optional[float] = None,
    ) -> SettlementResult:
        ctx = RetryContext(config=retry_config or self._confirm_retry)
        if timeout is None:
            timeout = self._confirmation_timeout
        while ctx.should_continue():
            try:
                receipt = await self._client.await_confirmation(pending, timeout=timeout)
            except TransactionRevertedError as e:
                machine.transition(SettlementState.FAILED)
                failed = result.fail(e.message)
                await self._store.put(result.idempotency_key, failed)
                logger.error("Settlement %s reverted: %s", result.idempotency_key, e.message)
                return failed
            except ChainError as e:
                try:
                    await ctx.handle_exception(e)
                except (RetryExhausted, ChainError):
                    logger.warning(
                        "Settlement %s still unconfirmed (%s); left as SUBMITTED",
                        result.idempotency_key,
                        pending.tx_hash,
                    )
                    return result
            else:
                ctx.mark_success()
                machine.transition(SettlementState.CONFIRMED)
                confirmed = result.confirm(
                    receipt.block_number,
                    receipt.confirmed_at,
                    gas_used=receipt.gas_used,
                    gas_fee_wei=receipt.gas_fee_wei,
                )
                await self._store.put(result.idempotency_key, confirmed)
                return confirmed

        return result

    async def recheck(self, idempotency_key: str) -> SettlementResult:
        """Poll a stored SUBMITTED settlement once more, without resubmitting."""
        async with self._locks.acquire(idempotency_key):
            existing = await self._store.get(idempotency_key)
            if existing is None:
                raise WuraValidationError(
                    f"No settlement recorded for {idempotency_key}",
                    field="idempotency_key",
                )
            if existing.status != SettlementStatus.SUBMITTED or not existing.transaction_hash:
                return existing

            pending = PendingTransfer.recovered(
                existing.transaction_hash,
                existing.destination_address,
                to_minor_units(existing.crypto_amount),
            )
            machine = SettlementStateMachine(idempotency_key, SettlementState.SUBMITTED)
            return await self._confirm(
                machine, existing, pending, retry_config=_SINGLE_POLL, timeout=0
            )


def build_settlement_executor(
    settings: Optional["WuraSettings"] = None,
    *,
    store: Optional[SettlementStore] = None,
) -> SettlementExecutor:
    """Wire credential, RPC client, chain client and store from configuration."""
    from wura_core.config import load_settings
    from wura_core.settlement_store_redis import RedisSettlementStore
    from wura_core.settlements import InMemorySettlementStore

    from .client import ChainClient
    from .config import chain_config_from_settings
    from .rpc_client import ChainRPCClient
    from .signer import TreasuryCredential

    settings = settings or load_settings()
    chain_config = chain_config_from_settings(settings)
    client = ChainClient(
        TreasuryCredential.from_settings(settings),
        ChainRPCClient(chain_config),
        chain_config,
    )

    if store is None:
        if settings.redis_url:
            store = RedisSettlementStore(
                settings.redis_url,
                key_prefix=settings.settlement_key_prefix,
                ttl_seconds=settings.settlement_ttl_seconds,
            )
        else:
            logger.warning("No redis_url configured; settlements are kept in memory")
            store = InMemorySettlementStore()

    return SettlementExecutor(
        client,
        store,
        submit_retry=settings.submit_retry_config(),
        confirm_retry=settings.confirm_retry_config(),
    )


__all__ = ["SettlementExecutor", "KeyedLock", "ChainClientPort", "build_settlement_executor"]
