"""
Chain client for settlement-token transfers from the treasury.

Exposes exactly what settlement needs:
- ``submit_transfer``: one best-effort broadcast of an ERC-20 ``transfer``
- ``rebroadcast``: resend the signed bytes of a broadcast whose fate is unknown
- ``await_confirmation``: bounded receipt polling
- ``get_transaction_status``: status lookup by hash

The client never retries on its own; retry policy belongs to the settlement
executor. Every RPC failure is classified into the ``ChainError`` taxonomy so
the executor can tell transient from permanent.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from eth_abi import decode, encode
from eth_utils import (
    decode_hex,
    function_signature_to_4byte_selector,
    is_address,
    to_checksum_address,
    to_hex,
)

from wura_core.exceptions import (
    ChainError,
    ConfigError,
    ConfirmationTimeoutError,
    InsufficientGasError,
    InsufficientTreasuryBalanceError,
    InvalidDestinationError,
    NonceTooLowError,
    RPCUnavailableError,
    TransactionRevertedError,
    exception_from_chain_error,
)

from .config import ChainConfig
from .nonce_manager import NonceManager
from .rpc_client import ChainRPCClient, RPCError
from .signer import LocalAccountSigner, TreasuryCredential
from .transfers import (
    PendingTransfer,
    TransferReceipt,
    TransferStatus,
    from_minor_units,
    to_minor_units,
)

logger = logging.getLogger(__name__)

TRANSFER_SELECTOR = function_signature_to_4byte_selector("transfer(address,uint256)")
BALANCE_OF_SELECTOR = function_signature_to_4byte_selector("balanceOf(address)")

# Node responses meaning the exact signed transaction is already in the mempool
_ALREADY_KNOWN = ("already known", "known transaction", "already imported")


def encode_transfer(to_address: str, amount_minor: int) -> bytes:
    """ABI-encode an ERC-20 ``transfer(address,uint256)`` call."""
    return TRANSFER_SELECTOR + encode(["address", "uint256"], [to_address, amount_minor])


def encode_balance_of(owner: str) -> bytes:
    return BALANCE_OF_SELECTOR + encode(["address"], [owner])


def _gas_cost(receipt: Dict[str, Any]) -> Tuple[Optional[int], Optional[int]]:
    """``(gas_used, fee_in_wei)`` from a receipt; the fee needs ``effectiveGasPrice``."""
    gas_used = receipt.get("gasUsed")
    price = receipt.get("effectiveGasPrice")
    used = int(gas_used, 16) if gas_used else None
    if used is None or not price:
        return used, None
    return used, used * int(price, 16)


class ChainClient:
    """
    Treasury transfer adapter over one token contract.

    A client built without a credential is permanently disabled: every
    settlement call raises ``ConfigError`` before touching the network.
    """

    def __init__(
        self,
        credential: Optional[TreasuryCredential],
        rpc: ChainRPCClient,
        config: ChainConfig,
        nonce_manager: Optional[NonceManager] = None,
    ) -> None:
        self._credential = credential
        self._rpc = rpc
        self._config = config
        self._nonce_manager = nonce_manager or NonceManager(config.nonce_manager)
        self._signer: Optional[LocalAccountSigner] = None

        if credential is not None:
            if credential.chain_id != config.chain_id:
                raise ConfigError(
                    f"Treasury credential is bound to chain {credential.chain_id}, "
                    f"client is configured for {config.chain_id}"
                )
            self._signer = LocalAccountSigner(credential)
            logger.info(
                "Chain client ready on %s, treasury %s",
                config.name,
                self._signer.address,
            )
        else:
            logger.warning("Chain client on %s has no treasury credential", config.name)

    @property
    def enabled(self) -> bool:
        return self._signer is not None

    @property
    def treasury_address(self) -> Optional[str]:
        return self._signer.address if self._signer else None

    @property
    def nonce_manager(self) -> NonceManager:
        return self._nonce_manager

    def _require_signer(self) -> Tuple[LocalAccountSigner, TreasuryCredential]:
        if self._signer is None or self._credential is None:
            raise ConfigError(
                "Treasury credential not configured: set WURA_TREASURY__PRIVATE_KEY"
            )
        return self._signer, self._credential

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    async def get_token_balance(self, owner: str) -> int:
        """Token balance of ``owner`` in minor units."""
        token = self._config.token_address
        if self._credential is not None:
            token = self._credential.token_address
        result = await self._rpc.eth_call(
            {"to": token, "data": to_hex(encode_balance_of(owner))}
        )
        if not result or result == "0x":
            raise ConfigError(f"No token contract deployed at {token} on {self._config.name}")
        (balance,) = decode(["uint256"], decode_hex(result))
        return balance

    async def _estimate_fees(self, tx: Dict[str, Any]) -> Tuple[int, int, int]:
        """Return ``(gas_limit, max_fee_per_gas, max_priority_fee_per_gas)``."""
        gas = self._config.gas
        try:
            estimated = await self._rpc.estimate_gas(tx)
            gas_limit = estimated * (100 + gas.gas_limit_buffer_percent) // 100
        except RPCError as e:
            error = exception_from_chain_error(e, chain=self._config.name)
            if isinstance(error, TransactionRevertedError):
                raise error from e
            logger.warning("Gas estimation failed (%s), using default limit", e)
            gas_limit = gas.default_gas_limit

        priority_fee = await self._rpc.get_max_priority_fee()
        if priority_fee is None:
            priority_fee = int(gas.default_priority_fee_gwei * 10**9)
        base_fee = await self._rpc.get_base_fee() or 0
        max_fee = base_fee * gas.base_fee_multiplier + priority_fee
        return gas_limit, max_fee, priority_fee

    async def _preflight(
        self,
        sender: str,
        amount_minor: int,
        tx: Dict[str, Any],
    ) -> Tuple[int, int, int]:
        balance = await self.get_token_balance(sender)
        if balance < amount_minor:
            decimals = self._config.token_decimals
            raise InsufficientTreasuryBalanceError(
                f"Treasury holds {from_minor_units(balance, decimals)} "
                f"{self._config.token_symbol}, transfer needs "
                f"{from_minor_units(amount_minor, decimals)}",
                available=str(balance),
                required=str(amount_minor),
                chain=self._config.name,
            )

        gas_limit, max_fee, priority_fee = await self._estimate_fees(tx)

        native = await self._rpc.get_balance(sender)
        gas_cost = gas_limit * max_fee
        if native < gas_cost:
            raise InsufficientGasError(
                f"Treasury holds {native} wei of {self._config.native_token}, "
                f"gas needs up to {gas_cost}",
                chain=self._config.name,
                details={"available": str(native), "required": str(gas_cost)},
            )
        return gas_limit, max_fee, priority_fee

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_transfer(
        self,
        destination: str,
        amount: Decimal,
    ) -> PendingTransfer:
        """Broadcast one token transfer from the treasury.

        Raises:
            ConfigError: no treasury credential (before any network I/O)
            PrecisionError: amount finer than the token's 6 fraction digits
            ChainSubmissionError: classified broadcast failure; see ``transient``
        """
        signer, credential = self._require_signer()
        amount_minor = to_minor_units(amount, self._config.token_decimals)

        if not is_address(destination):
            raise InvalidDestinationError(
                f"Invalid destination address: {destination}",
                chain=self._config.name,
            )
        destination = to_checksum_address(destination)
        sender = signer.address

        data = encode_transfer(destination, amount_minor)
        call = {"from": sender, "to": credential.token_address, "data": to_hex(data)}

        try:
            gas_limit, max_fee, priority_fee = await self._preflight(sender, amount_minor, call)
        except RPCError as e:
            raise exception_from_chain_error(e, chain=self._config.name) from e

        try:
            async with self._nonce_manager.reserve(sender, self._rpc) as reservation:
                signed = signer.sign_transaction({
                    "type": 2,
                    "chainId": credential.chain_id,
                    "nonce": reservation.nonce,
                    "to": credential.token_address,
                    "value": 0,
                    "data": data,
                    "gas": gas_limit,
                    "maxFeePerGas": max_fee,
                    "maxPriorityFeePerGas": priority_fee,
                })
                try:
                    tx_hash = await self._broadcast(signed.raw_transaction, signed.tx_hash)
                except RPCUnavailableError as e:
                    # The node may hold this transaction: keep its nonce out of
                    # the pool until the same signed bytes are resent or found
                    reservation.commit()
                    e.pending = PendingTransfer(
                        tx_hash=signed.tx_hash,
                        nonce=reservation.nonce,
                        sender=sender,
                        destination=destination,
                        amount_minor=amount_minor,
                        raw_transaction=signed.raw_transaction,
                    )
                    self._nonce_manager.register_pending(e.pending)
                    logger.warning(
                        "Broadcast of %s unresolved, holding nonce %s",
                        signed.tx_hash,
                        reservation.nonce,
                    )
                    raise
                reservation.commit()
        except RPCError as e:
            # Nonce lookup failed before anything was signed
            raise exception_from_chain_error(e, chain=self._config.name) from e

        pending = PendingTransfer(
            tx_hash=tx_hash,
            nonce=reservation.nonce,
            sender=sender,
            destination=destination,
            amount_minor=amount_minor,
        )
        self._nonce_manager.register_pending(pending)

        logger.info(
            "Broadcast transfer %s: %s %s to %s (nonce %s) %s",
            tx_hash,
            from_minor_units(amount_minor, self._config.token_decimals),
            self._config.token_symbol,
            destination,
            reservation.nonce,
            self._config.explorer_tx_url(tx_hash) or "",
        )
        return pending

    async def rebroadcast(self, pending: PendingTransfer) -> PendingTransfer:
        """Resend the exact signed bytes of an unresolved broadcast.

        Nothing is re-signed and no nonce is reserved: the transfer keeps the
        nonce it was signed with.

        Raises:
            ConfigError: no treasury credential (before any network I/O)
            NonceTooLowError: the held nonce was consumed by another transaction
            ChainSubmissionError: other classified broadcast failure
        """
        self._require_signer()
        if pending.raw_transaction is None:
            raise ValueError(f"No signed transaction kept for {pending.tx_hash}")

        try:
            await self._broadcast(pending.raw_transaction, pending.tx_hash)
        except RPCUnavailableError as e:
            e.pending = pending
            raise
        except NonceTooLowError:
            # Our bytes can no longer land; stop reserving past this nonce
            self._nonce_manager.mark_settled(pending.tx_hash)
            raise

        self._nonce_manager.register_pending(pending)
        logger.info("Rebroadcast transfer %s (nonce %s)", pending.tx_hash, pending.nonce)
        return pending

    async def _broadcast(self, raw_transaction: str, local_hash: str) -> str:
        try:
            returned = await self._rpc.send_raw_transaction(raw_transaction)
        except RPCError as e:
            message = str(e).lower()
            if any(marker in message for marker in _ALREADY_KNOWN):
                logger.info("Transaction %s already known to the node", local_hash)
                return local_hash
            raise exception_from_chain_error(
                e, chain=self._config.name, tx_hash=local_hash
            ) from e
        except ChainError as e:
            # Fate unknown: the node may have accepted it before failing
            e.tx_hash = e.tx_hash or local_hash
            e.details.setdefault("tx_hash", local_hash)
            raise

        if returned and returned.lower() != local_hash.lower():
            logger.warning(
                "Node returned hash %s, locally computed %s", returned, local_hash
            )
        return local_hash

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def _confirmations(self, receipt: Dict[str, Any]) -> int:
        tx_block = int(receipt["blockNumber"], 16)
        current_block = await self._rpc.get_block_number()
        return max(0, current_block - tx_block + 1)

    async def await_confirmation(
        self,
        pending: PendingTransfer,
        timeout: Optional[float] = None,
    ) -> TransferReceipt:
        """Poll the receipt until mined with enough confirmations.

        Raises:
            TransactionRevertedError: mined with status 0
            ConfirmationTimeoutError: deadline passed; the transfer may still land
        """
        timeout = self._config.confirmation_timeout_seconds if timeout is None else timeout
        required = self._config.confirmations_required
        poll_interval = self._config.poll_interval_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                receipt = await self._rpc.get_transaction_receipt(pending.tx_hash)
                if receipt and receipt.get("blockNumber"):
                    if int(receipt.get("status", "0x0"), 16) == 0:
                        self._nonce_manager.mark_settled(pending.tx_hash)
                        raise TransactionRevertedError(
                            f"Transaction {pending.tx_hash} reverted on-chain",
                            tx_hash=pending.tx_hash,
                            chain=self._config.name,
                        )
                    confirmations = await self._confirmations(receipt)
                    if confirmations >= required:
                        self._nonce_manager.mark_settled(pending.tx_hash)
                        gas_used, gas_fee_wei = _gas_cost(receipt)
                        result = TransferReceipt(
                            tx_hash=pending.tx_hash,
                            block_number=int(receipt["blockNumber"], 16),
                            confirmations=confirmations,
                            gas_used=gas_used,
                            gas_fee_wei=gas_fee_wei,
                            confirmed_at=datetime.now(timezone.utc),
                        )
                        logger.info(
                            "Transfer %s confirmed in block %s (%s confirmations)",
                            pending.tx_hash,
                            result.block_number,
                            confirmations,
                        )
                        return result
                    logger.debug(
                        "Transfer %s has %s/%s confirmations",
                        pending.tx_hash,
                        confirmations,
                        required,
                    )
            except RPCError as e:
                error = exception_from_chain_error(
                    e, chain=self._config.name, tx_hash=pending.tx_hash
                )
                if not error.transient:
                    raise error from e
                logger.warning("Receipt poll for %s failed: %s", pending.tx_hash, e)
            except ChainError as e:
                if not e.transient:
                    raise
                logger.warning("Receipt poll for %s failed: %s", pending.tx_hash, e)

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ConfirmationTimeoutError(
                    pending.tx_hash,
                    timeout,
                    pending=pending,
                    chain=self._config.name,
                )
            await asyncio.sleep(min(poll_interval, remaining))

    async def get_transaction_status(self, tx_hash: str) -> TransferStatus:
        """Status of a transaction by hash."""
        try:
            receipt = await self._rpc.get_transaction_receipt(tx_hash)
            if not receipt or not receipt.get("blockNumber"):
                tx = await self._rpc.get_transaction(tx_hash)
                return TransferStatus.PENDING if tx else TransferStatus.NOT_FOUND

            if int(receipt.get("status", "0x0"), 16) == 0:
                return TransferStatus.FAILED

            if await self._confirmations(receipt) >= self._config.confirmations_required:
                return TransferStatus.CONFIRMED
            return TransferStatus.CONFIRMING
        except RPCError as e:
            raise exception_from_chain_error(e, chain=self._config.name, tx_hash=tx_hash) from e

    async def close(self) -> None:
        await self._rpc.close()


__all__ = ["ChainClient", "encode_transfer", "encode_balance_of"]
