"""
Pytest configuration for wura-chain tests.

Chain tests talk to ``FakeNode``, an in-process JSON-RPC node served through
``httpx.MockTransport``; no network access is needed.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(package_src))
sys.path.insert(0, str(Path(__file__).parent))

# Add cross-package imports
packages_dir = Path(__file__).parent.parent.parent
for pkg in ["wura-core"]:
    pkg_path = packages_dir / pkg / "src"
    if pkg_path.exists() and str(pkg_path) not in sys.path:
        sys.path.insert(0, str(pkg_path))

# Set test environment
os.environ.setdefault("WURA_ENVIRONMENT", "dev")

from fake_node import TEST_PRIVATE_KEY, TOKEN_ADDRESS, FakeNode  # noqa: E402


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
def sample_eth_address():
    """Valid Ethereum address for testing."""
    return "0x1234567890123456789012345678901234567890"


@pytest.fixture
def sample_tx_hash():
    """Valid transaction hash for testing."""
    return "0x" + "a" * 64


@pytest.fixture
def chain_config():
    from wura_chain.config import ChainConfig, RPCEndpointConfig

    return ChainConfig(
        chain_id=137,
        name="polygon",
        display_name="Polygon",
        rpc=RPCEndpointConfig(url="https://rpc.test"),
        token_address=TOKEN_ADDRESS,
        confirmations_required=1,
        confirmation_timeout_seconds=0.05,
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def fake_node():
    return FakeNode()


@pytest.fixture
def rpc_client(chain_config, fake_node):
    from wura_chain.rpc_client import ChainRPCClient

    return ChainRPCClient(chain_config, transport=httpx.MockTransport(fake_node.handle))


@pytest.fixture
def treasury_credential():
    from wura_chain.signer import TreasuryCredential

    return TreasuryCredential(
        private_key=TEST_PRIVATE_KEY, token_address=TOKEN_ADDRESS, chain_id=137
    )


@pytest.fixture
def chain_client(treasury_credential, rpc_client, chain_config):
    from wura_chain.client import ChainClient

    return ChainClient(treasury_credential, rpc_client, chain_config)


@pytest.fixture
def make_chain_client(rpc_client, chain_config) -> Callable[..., Any]:
    from wura_chain.client import ChainClient

    def factory(credential=None):
        return ChainClient(credential, rpc_client, chain_config)

    return factory
