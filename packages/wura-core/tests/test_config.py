"""Tests for wura_core.config."""
from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from wura_core.config import WuraSettings, load_settings
from wura_core.constants import TokenConfig
from wura_core.quotes import TransferStrategy

_ENV_VARS = (
    "WURA_TREASURY_PRIVATE_KEY",
    "WURA_TREASURY__PRIVATE_KEY",
    "WURA_TREASURY__TOKEN_CONTRACT",
    "WURA_CHAIN__RPC_URL",
    "WURA_QUOTE__FAST_RATE",
    "WURA_LOG_LEVEL",
    "POLYGON_RPC_URL",
    "USDT_CONTRACT_ADDRESS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


def make_settings(**kwargs):
    return WuraSettings(_env_file=None, **kwargs)


class TestDefaults:

    def test_defaults(self):
        settings = make_settings()

        assert settings.environment == "dev"
        assert settings.chain.chain_id == 137
        assert settings.chain.rpc_url == "https://polygon-rpc.com"
        assert settings.treasury.token_contract == TokenConfig.POLYGON_USDT_ADDRESS
        assert settings.quote.ttl_seconds == 900
        assert not settings.treasury_configured

    def test_quote_policy_matches_defaults(self):
        policy = make_settings().quote_policy()

        assert policy.min_amount == 35_000
        assert policy.max_amount == 300_000
        assert policy.rate_for(TransferStrategy.FAST) == Decimal("720")
        assert policy.rate_for(TransferStrategy.STANDARD) == Decimal("680")

    def test_retry_configs(self):
        settings = make_settings()
        assert settings.submit_retry_config().max_retries == 3
        assert settings.confirm_retry_config().max_retries == 2


class TestEnvironment:

    def test_nested_variables(self, monkeypatch):
        monkeypatch.setenv("WURA_QUOTE__FAST_RATE", "750")
        monkeypatch.setenv("WURA_CHAIN__RPC_URL", "https://rpc.example")

        settings = make_settings()
        assert settings.quote.fast_rate == Decimal("750")
        assert settings.chain.rpc_url == "https://rpc.example"

    def test_legacy_variable_names(self, monkeypatch):
        monkeypatch.setenv("WURA_TREASURY_PRIVATE_KEY", "0x" + "11" * 32)
        monkeypatch.setenv("POLYGON_RPC_URL", "https://legacy.example")
        monkeypatch.setenv("USDT_CONTRACT_ADDRESS", "0x0000000000000000000000000000000000000001")

        settings = make_settings()
        assert settings.treasury_configured
        assert settings.chain.rpc_url == "https://legacy.example"
        assert settings.treasury.token_contract == "0x0000000000000000000000000000000000000001"

    def test_private_key_is_secret(self, monkeypatch):
        key = "0x" + "22" * 32
        monkeypatch.setenv("WURA_TREASURY__PRIVATE_KEY", key)

        settings = make_settings()
        assert settings.treasury.private_key.get_secret_value() == key
        assert key not in repr(settings)

    def test_log_level_normalized(self, monkeypatch):
        monkeypatch.setenv("WURA_LOG_LEVEL", "debug")
        assert make_settings().log_level == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            make_settings(log_level="loud")

    def test_invalid_confirmations(self):
        with pytest.raises(ValidationError):
            make_settings(chain={"confirmations_required": 0})


def test_load_settings_cached():
    assert load_settings() is load_settings()
