"""Chain client, nonce management and settlement execution exports."""

from .config import (
    ChainConfig,
    ChainNetwork,
    CHAIN_ID_MAP,
    build_chain_config,
    chain_config_from_settings,
    get_config,
)
from .rpc_client import ChainRPCClient, RPCError, ChainIDMismatchError
from .signer import TreasuryCredential, LocalAccountSigner, SignedTransfer
from .transfers import (
    TransferStatus,
    PendingTransfer,
    TransferReceipt,
    to_minor_units,
    from_minor_units,
)
from .nonce_manager import NonceManager, NonceReservation
from .client import ChainClient, encode_transfer
from .executor import (
    SettlementExecutor,
    KeyedLock,
    ChainClientPort,
    build_settlement_executor,
)

__all__ = [
    "ChainConfig",
    "ChainNetwork",
    "CHAIN_ID_MAP",
    "build_chain_config",
    "chain_config_from_settings",
    "get_config",
    "ChainRPCClient",
    "RPCError",
    "ChainIDMismatchError",
    "TreasuryCredential",
    "LocalAccountSigner",
    "SignedTransfer",
    "TransferStatus",
    "PendingTransfer",
    "TransferReceipt",
    "to_minor_units",
    "from_minor_units",
    "NonceManager",
    "NonceReservation",
    "ChainClient",
    "encode_transfer",
    "SettlementExecutor",
    "KeyedLock",
    "ChainClientPort",
    "build_settlement_executor",
]
