"""Canonical configuration surface for Wura services."""
from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings

from .constants import QuoteDefaults, RetryDefaults, Timeouts, TokenConfig
from .quotes import QuotePolicy, TransferStrategy
from .retry import RetryConfig

DEFAULT_POLYGON_RPC_URL = "https://polygon-rpc.com"


class QuoteSettings(BaseModel):
    """Pricing policy and quote lifecycle."""
    min_amount: int = QuoteDefaults.MIN_AMOUNT
    max_amount: int = QuoteDefaults.MAX_AMOUNT
    fee_rate: Decimal = QuoteDefaults.FEE_RATE
    fast_rate: Decimal = QuoteDefaults.FAST_RATE
    standard_rate: Decimal = QuoteDefaults.STANDARD_RATE
    fiat_currency_in: str = QuoteDefaults.FIAT_CURRENCY_IN
    fiat_currency_out: str = QuoteDefaults.FIAT_CURRENCY_OUT
    ttl_seconds: int = QuoteDefaults.QUOTE_TTL_SECONDS
    amount_tolerance: Decimal = QuoteDefaults.AMOUNT_TOLERANCE
    token_cost_rate: Decimal = QuoteDefaults.TOKEN_COST_RATE


class TreasurySettings(BaseModel):
    """Treasury signing key and the settlement token it spends."""
    private_key: Optional[SecretStr] = Field(default=None, validate_default=True)
    token_contract: str = Field(default="", validate_default=True)
    token_decimals: int = TokenConfig.DECIMALS

    @field_validator("private_key", mode="before")
    @classmethod
    def fallback_private_key(cls, v):
        """Accept the legacy WURA_TREASURY_PRIVATE_KEY variable."""
        if not v:
            v = os.getenv("WURA_TREASURY_PRIVATE_KEY") or None
        return v

    @field_validator("token_contract", mode="before")
    @classmethod
    def fallback_token_contract(cls, v: str) -> str:
        if not v:
            v = os.getenv("USDT_CONTRACT_ADDRESS", TokenConfig.POLYGON_USDT_ADDRESS)
        return v


class ChainSettings(BaseModel):
    """Settlement chain endpoint and confirmation policy."""
    name: str = "polygon"
    rpc_url: str = Field(default="", validate_default=True)
    chain_id: int = 137
    confirmations_required: int = 1
    confirmation_timeout_seconds: float = Timeouts.CONFIRMATION_WAIT
    poll_interval_seconds: float = Timeouts.CONFIRMATION_POLL_INTERVAL

    @field_validator("rpc_url", mode="before")
    @classmethod
    def fallback_rpc_url(cls, v: str) -> str:
        """Accept the legacy POLYGON_RPC_URL variable."""
        if not v:
            v = os.getenv("POLYGON_RPC_URL", DEFAULT_POLYGON_RPC_URL)
        return v

    @field_validator("confirmations_required")
    @classmethod
    def validate_confirmations(cls, v: int) -> int:
        if v < 1:
            raise ValueError("confirmations_required must be >= 1")
        return v


class RetrySettings(BaseModel):
    """Attempt budgets for broadcast and confirmation."""
    submit_max_retries: int = RetryDefaults.SUBMIT_MAX_RETRIES
    submit_base_delay: float = RetryDefaults.SUBMIT_BASE_DELAY
    submit_max_delay: float = RetryDefaults.SUBMIT_MAX_DELAY
    confirm_max_retries: int = RetryDefaults.CONFIRM_MAX_RETRIES
    confirm_base_delay: float = RetryDefaults.CONFIRM_BASE_DELAY
    confirm_max_delay: float = RetryDefaults.CONFIRM_MAX_DELAY


class WuraSettings(BaseSettings):
    """Main Wura configuration."""

    # Environment
    environment: Literal["dev", "sandbox", "prod"] = "dev"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    quote: QuoteSettings = Field(default_factory=QuoteSettings)
    treasury: TreasurySettings = Field(default_factory=TreasurySettings)
    chain: ChainSettings = Field(default_factory=ChainSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    # Settlement store; in-memory when empty
    redis_url: str = ""
    settlement_key_prefix: str = "wura:settlement:"
    settlement_ttl_seconds: Optional[int] = None

    class Config:
        env_prefix = "WURA_"
        env_nested_delimiter = "__"
        env_file = ".env"
        extra = "ignore"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return v

    @property
    def treasury_configured(self) -> bool:
        key = self.treasury.private_key
        return key is not None and bool(key.get_secret_value())

    def quote_policy(self) -> QuotePolicy:
        q = self.quote
        return QuotePolicy(
            min_amount=q.min_amount,
            max_amount=q.max_amount,
            fee_rate=q.fee_rate,
            rates={
                TransferStrategy.FAST: q.fast_rate,
                TransferStrategy.STANDARD: q.standard_rate,
            },
            fiat_currency_in=q.fiat_currency_in,
            fiat_currency_out=q.fiat_currency_out,
            token_decimals=self.treasury.token_decimals,
        )

    def submit_retry_config(self) -> RetryConfig:
        r = self.retry
        return RetryConfig(
            max_retries=r.submit_max_retries,
            base_delay=r.submit_base_delay,
            max_delay=r.submit_max_delay,
        )

    def confirm_retry_config(self) -> RetryConfig:
        r = self.retry
        return RetryConfig(
            max_retries=r.confirm_max_retries,
            base_delay=r.confirm_base_delay,
            max_delay=r.confirm_max_delay,
        )


@lru_cache
def load_settings(env_file: str | None = None) -> WuraSettings:
    """Load WuraSettings once per process to keep services consistent."""
    env_path = Path(env_file) if env_file else None
    return WuraSettings(_env_file=env_path)
