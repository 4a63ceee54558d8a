"""
Configuration management for wura-chain.

Provides the settlement chain's configuration:
- RPC endpoint and timeouts
- Chain ID validation
- Settlement token contract
- Gas estimation parameters
- Confirmation policy
- Nonce cache settings
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional

from wura_core.constants import Timeouts, TokenConfig

if TYPE_CHECKING:
    from wura_core.config import WuraSettings

logger = logging.getLogger(__name__)


class ChainNetwork(str, Enum):
    """Settlement networks."""
    POLYGON = "polygon"
    POLYGON_AMOY = "polygon_amoy"


CHAIN_ID_MAP: Dict[str, int] = {
    ChainNetwork.POLYGON.value: 137,
    ChainNetwork.POLYGON_AMOY.value: 80002,
}

EXPLORER_URLS: Dict[str, str] = {
    ChainNetwork.POLYGON.value: "https://polygonscan.com",
    ChainNetwork.POLYGON_AMOY.value: "https://amoy.polygonscan.com",
}


@dataclass
class RPCEndpointConfig:
    """Configuration for the JSON-RPC endpoint."""
    url: str
    timeout_seconds: float = Timeouts.RPC_CALL
    connect_timeout_seconds: float = Timeouts.RPC_CONNECT
    max_connections: int = 20
    max_keepalive_connections: int = 10


@dataclass
class GasEstimationConfig:
    """Configuration for gas estimation."""
    gas_limit_buffer_percent: int = 20  # Add 20% to estimated gas
    default_gas_limit: int = 100_000  # ERC-20 transfer with headroom
    default_priority_fee_gwei: Decimal = Decimal("30")
    # maxFeePerGas = base fee * multiplier + priority fee
    base_fee_multiplier: int = 2


@dataclass
class NonceManagerConfig:
    """Configuration for nonce management."""
    cache_ttl_seconds: float = 30.0


@dataclass
class ChainConfig:
    """Configuration for the settlement chain."""
    chain_id: int
    name: str
    display_name: str
    rpc: RPCEndpointConfig

    # Settlement token
    token_address: str = TokenConfig.POLYGON_USDT_ADDRESS
    token_symbol: str = TokenConfig.SYMBOL
    token_decimals: int = TokenConfig.DECIMALS

    # Confirmation requirements
    confirmations_required: int = 1
    confirmation_timeout_seconds: float = Timeouts.CONFIRMATION_WAIT
    poll_interval_seconds: float = Timeouts.CONFIRMATION_POLL_INTERVAL

    gas: GasEstimationConfig = field(default_factory=GasEstimationConfig)
    nonce_manager: NonceManagerConfig = field(default_factory=NonceManagerConfig)

    native_token: str = "MATIC"
    explorer_url: str = ""
    is_testnet: bool = False

    def explorer_tx_url(self, tx_hash: str) -> Optional[str]:
        if not self.explorer_url:
            return None
        return f"{self.explorer_url}/tx/{tx_hash}"


def build_chain_config(name: str = ChainNetwork.POLYGON.value) -> ChainConfig:
    """Build a ChainConfig with environment variable overrides."""
    if name == ChainNetwork.POLYGON.value:
        default_rpc = "https://polygon-rpc.com"
        display_name = "Polygon"
        is_testnet = False
    elif name == ChainNetwork.POLYGON_AMOY.value:
        default_rpc = "https://rpc-amoy.polygon.technology"
        display_name = "Polygon Amoy"
        is_testnet = True
    else:
        raise ValueError(f"Unknown chain: {name}")

    env_key = f"{name.upper()}_RPC_URL"
    rpc_url = os.getenv(f"WURA_{env_key}") or os.getenv(env_key) or default_rpc
    token_address = os.getenv("USDT_CONTRACT_ADDRESS", TokenConfig.POLYGON_USDT_ADDRESS)

    return ChainConfig(
        chain_id=CHAIN_ID_MAP[name],
        name=name,
        display_name=display_name,
        rpc=RPCEndpointConfig(url=rpc_url),
        token_address=token_address,
        explorer_url=EXPLORER_URLS[name],
        is_testnet=is_testnet,
    )


def chain_config_from_settings(settings: "WuraSettings") -> ChainConfig:
    """Chain configuration from the service settings."""
    chain = settings.chain
    config = ChainConfig(
        chain_id=chain.chain_id,
        name=chain.name,
        display_name=chain.name.replace("_", " ").title(),
        rpc=RPCEndpointConfig(url=chain.rpc_url),
        token_address=settings.treasury.token_contract,
        token_decimals=settings.treasury.token_decimals,
        confirmations_required=chain.confirmations_required,
        confirmation_timeout_seconds=chain.confirmation_timeout_seconds,
        poll_interval_seconds=chain.poll_interval_seconds,
        explorer_url=EXPLORER_URLS.get(chain.name, ""),
    )
    expected = CHAIN_ID_MAP.get(chain.name)
    if expected is not None and expected != chain.chain_id:
        logger.warning(
            "Configured chain_id %s does not match %s (%s)",
            chain.chain_id,
            chain.name,
            expected,
        )
    return config


# Global configuration instance
_global_config: Optional[ChainConfig] = None


def get_config() -> ChainConfig:
    """Get the global chain configuration."""
    global _global_config
    if _global_config is None:
        _global_config = build_chain_config()
    return _global_config
