"""Treasury credential and the local signer that uses it.

The treasury key is loaded once at startup and never leaves this module in
clear text: it is excluded from reprs and logs.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

from eth_account import Account
from eth_utils import is_address, to_checksum_address, to_hex

from wura_core.exceptions import ConfigError

if TYPE_CHECKING:
    from wura_core.config import WuraSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TreasuryCredential:
    """Signing key plus the token contract and chain it may spend on."""
    private_key: str = field(repr=False)
    token_address: str
    chain_id: int

    def __post_init__(self) -> None:
        key = self.private_key.strip()
        if not key.startswith("0x"):
            key = "0x" + key
        if len(key) != 66:
            raise ConfigError("Treasury private key must be 32 bytes of hex")
        try:
            int(key, 16)
        except ValueError as e:
            raise ConfigError("Treasury private key must be 32 bytes of hex") from e
        object.__setattr__(self, "private_key", key)

        if not is_address(self.token_address):
            raise ConfigError(f"Invalid token contract address: {self.token_address}")
        object.__setattr__(self, "token_address", to_checksum_address(self.token_address))

    @classmethod
    def from_settings(cls, settings: "WuraSettings") -> Optional["TreasuryCredential"]:
        """Credential from configuration, or None when no key is configured."""
        if not settings.treasury_configured:
            logger.warning("No treasury private key configured; settlement is disabled")
            return None
        return cls(
            private_key=settings.treasury.private_key.get_secret_value(),
            token_address=settings.treasury.token_contract,
            chain_id=settings.chain.chain_id,
        )


@dataclass(frozen=True)
class SignedTransfer:
    raw_transaction: str = field(repr=False)
    tx_hash: str


class LocalAccountSigner:
    """Signs EIP-1559 transactions with an in-memory key.

    Usage:
        signer = LocalAccountSigner(credential)
        signed = signer.sign_transaction(tx_dict)
    """

    def __init__(self, credential: TreasuryCredential) -> None:
        self._account = Account.from_key(credential.private_key)
        self._address = self._account.address
        self._chain_id = credential.chain_id

        if os.getenv("WURA_ENVIRONMENT", "dev") == "prod":
            logger.warning(
                "LocalAccountSigner holds the treasury key in process memory; "
                "restrict access to this host and rotate the key regularly"
            )

    @property
    def address(self) -> str:
        return self._address

    def sign_transaction(self, tx: Dict[str, Any]) -> SignedTransfer:
        tx = dict(tx)
        tx.setdefault("chainId", self._chain_id)
        if tx["chainId"] != self._chain_id:
            raise ConfigError(
                f"Refusing to sign for chain {tx['chainId']}, treasury is bound to {self._chain_id}"
            )
        signed = self._account.sign_transaction(tx)
        return SignedTransfer(
            raw_transaction=to_hex(signed.raw_transaction),
            tx_hash=to_hex(signed.hash),
        )

    def __repr__(self) -> str:
        return f"LocalAccountSigner(address={self._address!r}, chain_id={self._chain_id})"


__all__ = ["TreasuryCredential", "SignedTransfer", "LocalAccountSigner"]
