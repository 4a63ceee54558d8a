"""
Tests for wura_core.settlements and the settlement stores.

Tests cover:
- Settlement state machine transitions
- SettlementRequest validation
- SettlementResult lifecycle and serialization
- In-memory and Redis-backed stores
"""
from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from wura_core.exceptions import ConfigError, InvalidStateTransitionError, WuraValidationError
from wura_core.retry import RetryExhausted
from wura_core.settlement_store_redis import STORE_RETRY_CONFIG, RedisSettlementStore
from wura_core.settlements import (
    InMemorySettlementStore,
    SettlementRequest,
    SettlementResult,
    SettlementState,
    SettlementStateMachine,
    SettlementStatus,
)

NO_DELAY = replace(STORE_RETRY_CONFIG, base_delay=0.0, max_delay=0.0, jitter=0.0)


@pytest.fixture
def request_(sample_eth_address):
    return SettlementRequest(
        destination_address=sample_eth_address,
        crypto_amount=Decimal("147.058824"),
        idempotency_key="dep-001",
    )


class TestStateMachine:

    def test_happy_path(self):
        machine = SettlementStateMachine("dep-001")
        assert machine.state is SettlementState.QUOTED

        machine.transition(SettlementState.SUBMITTING)
        machine.transition(SettlementState.SUBMITTED)
        machine.transition(SettlementState.CONFIRMED)

        assert machine.state.is_terminal
        assert [state for state, _ in machine.history] == [
            SettlementState.QUOTED,
            SettlementState.SUBMITTING,
            SettlementState.SUBMITTED,
            SettlementState.CONFIRMED,
        ]

    @pytest.mark.parametrize(
        "start",
        [SettlementState.QUOTED, SettlementState.SUBMITTING, SettlementState.SUBMITTED],
    )
    def test_fail_from_any_non_terminal_state(self, start):
        machine = SettlementStateMachine("dep-001", start)
        machine.transition(SettlementState.FAILED)
        assert machine.state is SettlementState.FAILED

    @pytest.mark.parametrize(
        "start,target",
        [
            (SettlementState.QUOTED, SettlementState.SUBMITTED),
            (SettlementState.QUOTED, SettlementState.CONFIRMED),
            (SettlementState.SUBMITTING, SettlementState.CONFIRMED),
            (SettlementState.CONFIRMED, SettlementState.FAILED),
            (SettlementState.FAILED, SettlementState.SUBMITTING),
        ],
    )
    def test_illegal_transitions(self, start, target):
        machine = SettlementStateMachine("dep-001", start)
        assert not machine.can_transition(target)
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            machine.transition(target)
        assert exc_info.value.details == {"current": start.value, "target": target.value}
        assert machine.state is start


class TestSettlementRequest:

    def test_amount_coerced_to_decimal(self, sample_eth_address):
        request = SettlementRequest(sample_eth_address, "10.5", "dep-001")
        assert request.crypto_amount == Decimal("10.5")

    def test_key_required(self, sample_eth_address):
        with pytest.raises(WuraValidationError):
            SettlementRequest(sample_eth_address, Decimal("1"), "")

    def test_destination_required(self):
        with pytest.raises(WuraValidationError):
            SettlementRequest("", Decimal("1"), "dep-001")


class TestSettlementResult:

    def test_submitted_then_confirmed(self, request_, sample_tx_hash):
        submitted = SettlementResult.submitted(request_, sample_tx_hash)
        assert submitted.status is SettlementStatus.SUBMITTED
        assert not submitted.is_retryable

        confirmed_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        confirmed = submitted.confirm(12345, confirmed_at)
        assert confirmed.status is SettlementStatus.CONFIRMED
        assert confirmed.transaction_hash == sample_tx_hash
        assert confirmed.block_number == 12345
        assert confirmed.confirmed_at == confirmed_at
        assert submitted.status is SettlementStatus.SUBMITTED

    def test_failed_is_retryable(self, request_):
        failed = SettlementResult.failed(request_, "treasury empty")
        assert failed.is_retryable
        assert failed.transaction_hash is None
        assert failed.failure_reason == "treasury empty"

    def test_round_trip_through_dict(self, request_, sample_tx_hash):
        result = SettlementResult.submitted(request_, sample_tx_hash).confirm(
            7,
            datetime(2026, 1, 1, tzinfo=timezone.utc),
            gas_used=52_000,
            gas_fee_wei=52_000 * 130 * 10**9,
        )
        data = json.loads(json.dumps(result.to_dict()))
        assert data["gas_fee_wei"] == "6760000000000000"

        restored = SettlementResult.from_dict(data)
        assert restored == result
        assert restored.gas_fee_wei == 6_760_000_000_000_000

    def test_failed_keeps_signed_transaction_until_resolved(self, request_, sample_tx_hash):
        failed = SettlementResult.failed(
            request_, "rpc down", tx_hash=sample_tx_hash, signed_transaction="0x02f8ab"
        )
        restored = SettlementResult.from_dict(json.loads(json.dumps(failed.to_dict())))
        assert restored.signed_transaction == "0x02f8ab"
        assert "0x02f8ab" not in repr(failed)

        confirmed = failed.confirm(7, datetime(2026, 1, 1, tzinfo=timezone.utc))
        assert confirmed.signed_transaction is None
        assert failed.fail("reverted").signed_transaction is None

    def test_records_without_gas_fields_still_load(self, request_, sample_tx_hash):
        data = SettlementResult.submitted(request_, sample_tx_hash).to_dict()
        for name in ("gas_used", "gas_fee_wei", "signed_transaction"):
            del data[name]

        restored = SettlementResult.from_dict(data)
        assert restored.gas_used is None
        assert restored.gas_fee_wei is None


class TestInMemoryStore:

    @pytest.mark.asyncio
    async def test_get_put(self, request_, sample_tx_hash):
        store = InMemorySettlementStore()
        assert await store.get("dep-001") is None

        result = SettlementResult.submitted(request_, sample_tx_hash)
        await store.put("dep-001", result)

        assert await store.get("dep-001") == result
        assert len(store) == 1


class FakeRedis:
    """Just enough of the redis.asyncio client for the store."""

    def __init__(self, failures=()):
        self.data = {}
        self.expiries = {}
        self.failures = list(failures)
        self.aclose = AsyncMock()

    def _maybe_fail(self):
        if self.failures:
            raise self.failures.pop(0)

    async def get(self, key):
        self._maybe_fail()
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self._maybe_fail()
        self.data[key] = value
        self.expiries[key] = ex


class TestRedisStore:

    def test_requires_url_or_client(self):
        with pytest.raises(ConfigError):
            RedisSettlementStore()

    @pytest.mark.asyncio
    async def test_stores_json_under_prefix(self, request_, sample_tx_hash):
        client = FakeRedis()
        store = RedisSettlementStore(client=client, key_prefix="test:", ttl_seconds=3600)
        result = SettlementResult.submitted(request_, sample_tx_hash)

        await store.put("dep-001", result)

        assert json.loads(client.data["test:dep-001"])["status"] == "SUBMITTED"
        assert client.expiries["test:dep-001"] == 3600
        assert await store.get("dep-001") == result
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_close(self):
        client = FakeRedis()
        store = RedisSettlementStore(client=client)
        await store.close()
        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dropped_connection_is_retried(self, request_, sample_tx_hash):
        client = FakeRedis(failures=[RedisConnectionError("reset"), RedisTimeoutError("slow")])
        store = RedisSettlementStore(client=client, retry_config=NO_DELAY)
        result = SettlementResult.submitted(request_, sample_tx_hash)

        await store.put("dep-001", result)

        assert await store.get("dep-001") == result

    @pytest.mark.asyncio
    async def test_persistent_outage_exhausts(self, request_):
        client = FakeRedis(failures=[RedisConnectionError("down")] * 3)
        store = RedisSettlementStore(client=client, retry_config=NO_DELAY)

        with pytest.raises(RetryExhausted):
            await store.get("dep-001")

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        client = FakeRedis(failures=[ValueError("bad payload")])
        store = RedisSettlementStore(client=client, retry_config=NO_DELAY)

        with pytest.raises(ValueError):
            await store.get("dep-001")
        assert client.failures == []
