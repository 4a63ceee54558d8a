"""
Tests for wura_core.retry.

Tests cover:
- RetryConfig validation and delay calculation
- retry_async with transient and permanent chain errors
- RetryContext manual loops
"""
from __future__ import annotations

from unittest.mock import AsyncMock, Mock, patch

import pytest

from wura_core.exceptions import (
    InvalidDestinationError,
    RPCUnavailableError,
)
from wura_core.retry import (
    CONFIRM_RETRY_CONFIG,
    SUBMIT_RETRY_CONFIG,
    RetryConfig,
    RetryContext,
    RetryExhausted,
    retry_async,
)

FAST = RetryConfig(max_retries=2, base_delay=0.0, max_delay=0.0, jitter=0.0)


class TestRetryConfig:

    def test_calculate_delay_exponential(self):
        config = RetryConfig(base_delay=1.0, exponential_base=2.0, max_delay=60.0, jitter=0.0)
        assert config.calculate_delay(0) == 1.0
        assert config.calculate_delay(1) == 2.0
        assert config.calculate_delay(3) == 8.0

    def test_delay_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=0.0)
        assert config.calculate_delay(10) == 5.0

    def test_jitter_bounds(self):
        config = RetryConfig(base_delay=10.0, max_delay=10.0, jitter=0.5)
        for _ in range(50):
            assert 5.0 <= config.calculate_delay(0) <= 15.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_retries": -1}, {"base_delay": -1.0}, {"jitter": 1.5}],
    )
    def test_invalid_config(self, kwargs):
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)

    def test_default_condition_is_transient_flag(self):
        config = RetryConfig()
        assert config.should_retry(RPCUnavailableError("down"))
        assert not config.should_retry(InvalidDestinationError("bad"))
        assert not config.should_retry(KeyboardInterrupt())

    def test_preconfigured_budgets(self):
        assert SUBMIT_RETRY_CONFIG.max_retries == 3
        assert CONFIRM_RETRY_CONFIG.max_retries == 2


class TestRetryAsync:

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        func = AsyncMock(return_value="0xhash")
        assert await retry_async(func, config=FAST) == "0xhash"
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        func = AsyncMock(side_effect=[RPCUnavailableError("down"), "0xhash"])
        assert await retry_async(func, "a", config=FAST) == "0xhash"
        assert func.await_count == 2
        func.assert_awaited_with("a")

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self):
        func = AsyncMock(side_effect=InvalidDestinationError("bad"))
        with pytest.raises(InvalidDestinationError):
            await retry_async(func, config=FAST)
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_exhausted(self):
        func = AsyncMock(side_effect=RPCUnavailableError("down"))
        with pytest.raises(RetryExhausted) as exc_info:
            await retry_async(func, config=FAST)

        assert func.await_count == 3
        assert exc_info.value.stats.attempts == 3
        assert isinstance(exc_info.value.original_exception, RPCUnavailableError)

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        callback = Mock()
        config = RetryConfig(max_retries=1, base_delay=0.0, jitter=0.0, on_retry=callback)
        func = AsyncMock(side_effect=[RPCUnavailableError("down"), "ok"])

        await retry_async(func, config=config)

        callback.assert_called_once()
        assert callback.call_args[0][0] == 1

    @pytest.mark.asyncio
    async def test_sleeps_between_attempts(self):
        config = RetryConfig(max_retries=1, base_delay=0.25, jitter=0.0)
        func = AsyncMock(side_effect=[RPCUnavailableError("down"), "ok"])

        with patch("wura_core.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            await retry_async(func, config=config)

        sleep.assert_awaited_once_with(0.25)


class TestRetryContext:

    @pytest.mark.asyncio
    async def test_loop_until_success(self):
        ctx = RetryContext(config=FAST)
        outcomes = [RPCUnavailableError("down"), None]

        while ctx.should_continue():
            try:
                outcome = outcomes.pop(0)
                if outcome is not None:
                    raise outcome
                ctx.mark_success()
            except RPCUnavailableError as e:
                await ctx.handle_exception(e)

        assert ctx.stats.success
        assert ctx.stats.attempts == 2
        assert ctx.attempt == 1

    @pytest.mark.asyncio
    async def test_exhaustion_raises(self):
        ctx = RetryContext(config=FAST)

        with pytest.raises(RetryExhausted):
            while ctx.should_continue():
                await ctx.handle_exception(RPCUnavailableError("down"))

        assert ctx.stats.attempts == 3

    @pytest.mark.asyncio
    async def test_permanent_error_reraised(self):
        async with RetryContext(config=FAST) as ctx:
            with pytest.raises(InvalidDestinationError):
                await ctx.handle_exception(InvalidDestinationError("bad"))
