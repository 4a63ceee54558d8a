"""Redis-backed settlement store.

Settlement results are stored as JSON strings under ``<prefix><idempotency key>``
so every API instance sees the same record for a deposit. Dropped connections
and socket timeouts are retried briefly; anything else propagates.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .constants import RetryDefaults, Timeouts
from .exceptions import ConfigError
from .retry import RetryConfig, retry_async
from .settlements import SettlementResult, SettlementStore

logger = logging.getLogger(__name__)


def _is_connection_failure(exc: BaseException) -> bool:
    return isinstance(exc, (RedisConnectionError, RedisTimeoutError))


STORE_RETRY_CONFIG = RetryConfig(
    max_retries=RetryDefaults.STORE_MAX_RETRIES,
    base_delay=RetryDefaults.STORE_BASE_DELAY,
    max_delay=RetryDefaults.STORE_MAX_DELAY,
    retry_condition=_is_connection_failure,
)


class RedisSettlementStore(SettlementStore):
    """Settlement store on Redis.

    Usage:
        store = RedisSettlementStore("redis://localhost:6379/0")
        await store.put(key, result)
    """

    KEY_PREFIX = "wura:settlement:"

    def __init__(
        self,
        redis_url: Optional[str] = None,
        *,
        key_prefix: str = KEY_PREFIX,
        ttl_seconds: Optional[int] = None,
        client: Any = None,
        retry_config: RetryConfig = STORE_RETRY_CONFIG,
    ) -> None:
        if client is None and not redis_url:
            raise ConfigError("RedisSettlementStore requires a redis_url or a client")
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._ttl = ttl_seconds
        self._client = client
        self._retry = retry_config

    def _get_client(self):
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_timeout=Timeouts.REDIS_SOCKET,
                socket_connect_timeout=Timeouts.REDIS_SOCKET,
            )
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def get(self, key: str) -> Optional[SettlementResult]:
        raw = await retry_async(self._get_client().get, self._key(key), config=self._retry)
        if raw is None:
            return None
        return SettlementResult.from_dict(json.loads(raw))

    async def put(self, key: str, result: SettlementResult) -> None:
        payload = json.dumps(result.to_dict())
        await retry_async(
            self._get_client().set,
            self._key(key),
            payload,
            ex=self._ttl,
            config=self._retry,
        )
        logger.debug(
            "Stored settlement",
            extra={"idempotency_key": key, "status": result.status.value},
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = ["RedisSettlementStore", "STORE_RETRY_CONFIG"]
