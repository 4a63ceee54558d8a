"""
Nonce management for the treasury account.

Features:
- Per-address ``asyncio.Lock`` serializing submissions from one account
- Cached nonce with TTL, resynced from the chain on demand
- A reservation is only consumed when its transaction is broadcast; a failed
  broadcast releases it so the next attempt reuses the same nonce
- Pending transfer tracking until confirmation

SECURITY: One nonce can only ever be mined once, so reusing the released
nonce on retry keeps a deposit from paying out twice.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional, Set

from wura_core.exceptions import NonceTooLowError

from .config import NonceManagerConfig, get_config
from .transfers import PendingTransfer

logger = logging.getLogger(__name__)


@dataclass
class NonceReservation:
    """A nonce held under the account lock until committed or released."""
    address: str
    nonce: int
    committed: bool = False

    def commit(self) -> None:
        self.committed = True


class NonceManager:
    """
    Nonce manager with per-account submission serialization.

    Usage:
        async with nonce_manager.reserve(address, rpc) as reservation:
            signed = signer.sign_transaction({..., "nonce": reservation.nonce})
            await rpc.send_raw_transaction(signed.raw_transaction)
            reservation.commit()
    """

    def __init__(
        self,
        config: Optional[NonceManagerConfig] = None,
    ):
        self._config = config or get_config().nonce_manager
        self._locks: Dict[str, asyncio.Lock] = {}  # Per-address locks
        self._nonces: Dict[str, int] = {}  # Next nonce per address
        self._last_sync: Dict[str, float] = {}
        self._pending: Dict[str, PendingTransfer] = {}  # tx_hash -> transfer
        self._address_pending: Dict[str, Set[str]] = {}  # address -> tx hashes

    def _get_lock(self, address_lower: str) -> asyncio.Lock:
        # No await between lookup and insert, so one Lock per address
        lock = self._locks.get(address_lower)
        if lock is None:
            lock = self._locks[address_lower] = asyncio.Lock()
        return lock

    async def _next_nonce_unlocked(
        self,
        address_lower: str,
        rpc_client: Any,
    ) -> int:
        """Caller MUST hold the per-address lock."""
        last_sync = self._last_sync.get(address_lower, 0.0)
        if (
            address_lower not in self._nonces
            or time.monotonic() - last_sync > self._config.cache_ttl_seconds
        ):
            on_chain_nonce = await rpc_client.get_nonce(address_lower)
            cached = self._nonces.get(address_lower)
            # Never move backwards past transfers we broadcast ourselves
            self._nonces[address_lower] = (
                on_chain_nonce if cached is None else max(on_chain_nonce, cached)
            )
            self._last_sync[address_lower] = time.monotonic()
            logger.debug("Synced nonce for %s: %s", address_lower, on_chain_nonce)

        current = self._nonces[address_lower]
        for tx_hash in self._address_pending.get(address_lower, set()):
            pending = self._pending.get(tx_hash)
            if pending and pending.nonce >= current:
                current = pending.nonce + 1
        return current

    @asynccontextmanager
    async def reserve(
        self,
        address: str,
        rpc_client: Any,
    ) -> AsyncIterator[NonceReservation]:
        """Hold the account lock and a nonce for one broadcast.

        The nonce advances only if ``reservation.commit()`` was called. A
        ``NonceTooLowError`` inside the block drops the cache so the next
        reservation resyncs from the chain.
        """
        address_lower = address.lower()
        async with self._get_lock(address_lower):
            nonce = await self._next_nonce_unlocked(address_lower, rpc_client)
            reservation = NonceReservation(address=address_lower, nonce=nonce)
            try:
                yield reservation
            except NonceTooLowError:
                self._invalidate(address_lower)
                logger.warning("Nonce %s too low for %s, resyncing", nonce, address_lower)
                raise
            finally:
                if reservation.committed:
                    self._nonces[address_lower] = nonce + 1
                    logger.debug("Consumed nonce %s for %s", nonce, address_lower)
                else:
                    logger.debug("Released nonce %s for %s", nonce, address_lower)

    def _invalidate(self, address_lower: str) -> None:
        self._nonces.pop(address_lower, None)
        self._last_sync.pop(address_lower, None)

    async def resync(self, address: str, rpc_client: Any) -> int:
        """Force synchronization with the on-chain nonce."""
        address_lower = address.lower()
        async with self._get_lock(address_lower):
            self._invalidate(address_lower)
            return await self._next_nonce_unlocked(address_lower, rpc_client)

    def register_pending(self, transfer: PendingTransfer) -> None:
        if transfer.sender is None or transfer.nonce is None:
            return
        sender = transfer.sender.lower()
        self._pending[transfer.tx_hash] = transfer
        self._address_pending.setdefault(sender, set()).add(transfer.tx_hash)

    def mark_settled(self, tx_hash: str) -> None:
        """Stop tracking a transfer once it is mined (either outcome)."""
        transfer = self._pending.pop(tx_hash, None)
        if transfer is not None and transfer.sender is not None:
            self._address_pending.get(transfer.sender.lower(), set()).discard(tx_hash)

    def get_pending_count(self, address: str) -> int:
        return len(self._address_pending.get(address.lower(), set()))


__all__ = ["NonceManager", "NonceReservation"]
