"""Tests for wura_chain.signer."""
from __future__ import annotations

import pytest
from eth_account import Account

from wura_core.config import WuraSettings
from wura_core.exceptions import ConfigError
from wura_chain.signer import LocalAccountSigner, TreasuryCredential

from fake_node import TEST_PRIVATE_KEY, TOKEN_ADDRESS


class TestTreasuryCredential:

    def test_normalizes_key_and_token(self):
        credential = TreasuryCredential(
            private_key=TEST_PRIVATE_KEY[2:],
            token_address=TOKEN_ADDRESS.lower(),
            chain_id=137,
        )
        assert credential.private_key == TEST_PRIVATE_KEY
        assert credential.token_address == TOKEN_ADDRESS

    def test_key_not_in_repr(self, treasury_credential):
        assert TEST_PRIVATE_KEY[2:] not in repr(treasury_credential)
        assert "1234123412341234" not in repr(treasury_credential)

    @pytest.mark.parametrize("key", ["0x1234", "0x" + "zz" * 32, ""])
    def test_invalid_key(self, key):
        with pytest.raises(ConfigError):
            TreasuryCredential(private_key=key, token_address=TOKEN_ADDRESS, chain_id=137)

    def test_invalid_token_address(self):
        with pytest.raises(ConfigError):
            TreasuryCredential(private_key=TEST_PRIVATE_KEY, token_address="0xnope", chain_id=137)

    def test_from_settings_without_key(self, monkeypatch):
        monkeypatch.delenv("WURA_TREASURY_PRIVATE_KEY", raising=False)
        monkeypatch.delenv("WURA_TREASURY__PRIVATE_KEY", raising=False)
        assert TreasuryCredential.from_settings(WuraSettings(_env_file=None)) is None

    def test_from_settings(self):
        settings = WuraSettings(
            _env_file=None,
            treasury={"private_key": TEST_PRIVATE_KEY, "token_contract": TOKEN_ADDRESS},
            chain={"chain_id": 80002, "name": "polygon_amoy"},
        )
        credential = TreasuryCredential.from_settings(settings)

        assert credential.private_key == TEST_PRIVATE_KEY
        assert credential.chain_id == 80002


class TestLocalAccountSigner:

    def test_address(self, treasury_credential):
        signer = LocalAccountSigner(treasury_credential)
        assert signer.address == Account.from_key(TEST_PRIVATE_KEY).address
        assert TEST_PRIVATE_KEY[2:] not in repr(signer)

    def test_signs_eip1559_transfer(self, treasury_credential):
        signer = LocalAccountSigner(treasury_credential)
        signed = signer.sign_transaction({
            "type": 2,
            "nonce": 0,
            "to": TOKEN_ADDRESS,
            "value": 0,
            "data": b"\xa9\x05\x9c\xbb",
            "gas": 60_000,
            "maxFeePerGas": 230 * 10**9,
            "maxPriorityFeePerGas": 30 * 10**9,
        })

        assert signed.raw_transaction.startswith("0x02")
        assert len(signed.tx_hash) == 66
        assert signed.raw_transaction not in repr(signed)

    def test_refuses_other_chain(self, treasury_credential):
        signer = LocalAccountSigner(treasury_credential)
        with pytest.raises(ConfigError):
            signer.sign_transaction({"chainId": 1, "nonce": 0, "to": TOKEN_ADDRESS})
