"""
JSON-RPC client for the settlement chain.

Features:
- Pooled ``httpx.AsyncClient`` shared by every call
- Chain ID validation on first connection (security)
- Transport failures, timeouts, HTTP 5xx and 429 surface as ``RPCUnavailableError``
- Node-reported JSON-RPC errors surface as ``RPCError`` for classification upstream
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from wura_core.exceptions import ConfigError, RPCUnavailableError
from wura_core.logging import mask_url

from .config import ChainConfig, get_config

logger = logging.getLogger(__name__)


class ChainIDMismatchError(ConfigError):
    """Raised when the endpoint serves a different chain than configured."""

    error_code = "CHAIN_ID_MISMATCH"

    def __init__(self, chain: str, expected: int, received: int):
        self.chain = chain
        self.expected = expected
        self.received = received
        super().__init__(
            f"Chain ID mismatch for {chain}: expected {expected}, got {received}. "
            f"SECURITY: This could indicate connecting to wrong network!",
            details={"expected": expected, "received": received},
        )


class RPCError(Exception):
    """Error object returned by the node in a JSON-RPC response."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        self.code = code
        self.data = data
        super().__init__(message)


class ChainRPCClient:
    """
    JSON-RPC client bound to one chain.

    Usage:
        async with ChainRPCClient(config) as rpc:
            block = await rpc.get_block_number()
    """

    def __init__(
        self,
        chain_config: Optional[ChainConfig] = None,
        validate_chain_id_on_connect: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = chain_config or get_config()
        self._validate_chain_id = validate_chain_id_on_connect
        self._transport = transport
        self._request_id = 0
        self._http_client: Optional[httpx.AsyncClient] = None
        self._connected = False

        logger.info(
            "Initialized RPC client for %s at %s",
            self._config.name,
            mask_url(self._config.rpc.url),
        )

    @property
    def chain(self) -> str:
        return self._config.name

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            rpc = self._config.rpc
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(rpc.timeout_seconds, connect=rpc.connect_timeout_seconds),
                limits=httpx.Limits(
                    max_connections=rpc.max_connections,
                    max_keepalive_connections=rpc.max_keepalive_connections,
                ),
                transport=self._transport,
            )
        return self._http_client

    async def connect(self) -> None:
        """
        Validate the endpoint's chain ID once.

        SECURITY: Chain ID validation prevents signing transfers for the
        wrong network.
        """
        if self._connected:
            return

        if self._validate_chain_id:
            chain_id = await self._fetch_chain_id()
            if chain_id != self._config.chain_id:
                raise ChainIDMismatchError(
                    chain=self._config.name,
                    expected=self._config.chain_id,
                    received=chain_id,
                )
            logger.info("Chain ID validated for %s: %s", self._config.name, chain_id)

        self._connected = True

    async def _fetch_chain_id(self) -> int:
        result = await self._call_internal("eth_chainId", [])
        return int(result, 16)

    async def _call_internal(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }
        url = self._config.rpc.url
        start_time = time.monotonic()

        try:
            response = await self._get_client().post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise RPCUnavailableError(
                f"RPC {method} timed out", chain=self._config.name
            ) from e
        except httpx.TransportError as e:
            raise RPCUnavailableError(
                f"RPC {method} connection failed: {type(e).__name__}",
                chain=self._config.name,
            ) from e

        latency_ms = (time.monotonic() - start_time) * 1000

        if response.status_code == 429 or response.status_code >= 500:
            raise RPCUnavailableError(
                f"RPC {method} returned HTTP {response.status_code}",
                chain=self._config.name,
                details={"status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise RPCError(
                f"RPC {method} returned HTTP {response.status_code}",
                code=response.status_code,
            )

        try:
            result = response.json()
        except ValueError as e:
            raise RPCUnavailableError(
                f"RPC {method} returned a non-JSON body", chain=self._config.name
            ) from e

        if "error" in result and result["error"]:
            error = result["error"]
            logger.debug("RPC %s error after %.0fms: %s", method, latency_ms, error)
            raise RPCError(
                message=error.get("message", str(error)),
                code=error.get("code"),
                data=error.get("data"),
            )

        logger.debug("RPC %s succeeded in %.0fms", method, latency_ms)
        return result.get("result")

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Make a JSON-RPC call.

        Raises:
            ChainIDMismatchError: If chain ID validation fails
            RPCError: If the node returns an error object
            RPCUnavailableError: If the endpoint is unreachable or overloaded
        """
        if self._validate_chain_id and not self._connected:
            await self.connect()
        return await self._call_internal(method, params or [])

    async def get_block_number(self) -> int:
        result = await self.call("eth_blockNumber")
        return int(result, 16)

    async def get_max_priority_fee(self) -> Optional[int]:
        """Max priority fee for EIP-1559, or None if the node does not support it."""
        try:
            result = await self.call("eth_maxPriorityFeePerGas")
        except RPCError:
            return None
        return int(result, 16)

    async def get_base_fee(self) -> Optional[int]:
        """Base fee of the latest block."""
        block = await self.call("eth_getBlockByNumber", ["latest", False])
        if block and block.get("baseFeePerGas"):
            return int(block["baseFeePerGas"], 16)
        return None

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        result = await self.call("eth_estimateGas", [tx])
        return int(result, 16)

    async def get_nonce(self, address: str, block: str = "pending") -> int:
        """Get transaction count (nonce) for address."""
        result = await self.call("eth_getTransactionCount", [address, block])
        return int(result, 16)

    async def get_balance(self, address: str, block: str = "latest") -> int:
        """Native balance in wei."""
        result = await self.call("eth_getBalance", [address, block])
        return int(result, 16)

    async def send_raw_transaction(self, signed_tx: str) -> str:
        if not signed_tx.startswith("0x"):
            signed_tx = "0x" + signed_tx
        return await self.call("eth_sendRawTransaction", [signed_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionByHash", [tx_hash])

    async def eth_call(self, tx: Dict[str, Any], block: str = "latest") -> str:
        """Execute a call without creating a transaction."""
        return await self.call("eth_call", [tx, block])

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        self._connected = False

    async def __aenter__(self) -> "ChainRPCClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


__all__ = ["ChainRPCClient", "RPCError", "ChainIDMismatchError"]
