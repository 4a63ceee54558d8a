"""Tests for wura_core.margin."""
from __future__ import annotations

from decimal import Decimal

import pytest

from wura_core.margin import compute_margin
from wura_core.quotes import TransferStrategy, compute_quote


def test_default_token_cost_rate():
    quote = compute_quote(100_000, TransferStrategy.STANDARD)
    report = compute_margin(quote)

    assert report.token_cost_rate == Decimal("615")
    assert report.revenue == Decimal("100000")
    assert report.token_cost == Decimal("90441.18")
    assert report.gateway_fee == Decimal("2000")
    assert report.net_margin == Decimal("7558.82")
    assert report.is_profitable


def test_margin_formula():
    quote = compute_quote(250_000, TransferStrategy.FAST)
    report = compute_margin(quote, token_cost_rate=Decimal("650"))

    assert report.net_margin == report.revenue - (report.token_cost + report.gateway_fee)


def test_unprofitable_when_token_cost_above_rate():
    quote = compute_quote(100_000, TransferStrategy.STANDARD)
    report = compute_margin(quote, token_cost_rate=Decimal("700"))

    assert report.net_margin < 0
    assert not report.is_profitable


def test_rejects_non_positive_cost_rate():
    quote = compute_quote(100_000, TransferStrategy.STANDARD)
    with pytest.raises(ValueError):
        compute_margin(quote, token_cost_rate=Decimal("0"))


def test_to_dict():
    report = compute_margin(compute_quote(100_000, TransferStrategy.STANDARD))
    assert report.to_dict()["net_margin"] == "7558.82"
