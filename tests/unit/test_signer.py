"""
Unit Tests for Signing Keys

Reliability Level: SOVEREIGN TIER

Tests:
- Key parsing (hex, 0x prefix, length)
- Redacted representation
- Transaction and operator request signatures
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from stock_token.ledger.signer import (
    InvalidSigningKeyError,
    OperatorRequestSigner,
    SigningKey,
    sign_transaction,
)


SECRET = "ab" * 32
OTHER_SECRET = "cd" * 32


class TestSigningKeyParsing:

    def test_accepts_hex(self):
        key = SigningKey.from_string(SECRET)
        assert len(key.fingerprint) == 16

    def test_prefix_and_case_normalized(self):
        assert SigningKey.from_string("0x" + SECRET.upper()) == SigningKey.from_string(SECRET)

    @pytest.mark.parametrize("value", [None, "", "   ", "zz" * 32, "ab" * 10])
    def test_rejects_invalid(self, value):
        with pytest.raises(InvalidSigningKeyError):
            SigningKey.from_string(value)

    def test_repr_is_redacted(self):
        key = SigningKey.from_string(SECRET)
        assert SECRET not in repr(key)
        assert SECRET not in str(key)
        assert "REDACTED" in repr(key)


class TestSignatures:

    def test_sign_and_verify(self):
        key = SigningKey.from_string(SECRET)
        signature = key.sign("payload")
        assert key.verify("payload", signature)
        assert not key.verify("tampered", signature)

    def test_different_keys_different_signatures(self):
        a = SigningKey.from_string(SECRET)
        b = SigningKey.from_string(OTHER_SECRET)
        assert a.sign("payload") != b.sign("payload")

    def test_sign_transaction_deduplicates_keys(self):
        a = SigningKey.from_string(SECRET)
        b = SigningKey.from_string(OTHER_SECRET)
        signatures = sign_transaction("body", [a, b, SigningKey.from_string(SECRET)])
        assert [s["key"] for s in signatures] == [a.fingerprint, b.fingerprint]
        assert a.verify("body", signatures[0]["signature"])


class TestOperatorRequestSigner:

    def test_headers(self):
        key = SigningKey.from_string(SECRET)
        signer = OperatorRequestSigner("0.0.1001", key)
        headers = signer.sign_request("post", "/v1/assets", '{"a":1}', timestamp=1700000000000)

        assert headers["X-LEDGER-OPERATOR"] == "0.0.1001"
        assert headers["X-LEDGER-TIMESTAMP"] == "1700000000000"
        assert key.verify('1700000000000POST/v1/assets{"a":1}', headers["X-LEDGER-SIGNATURE"])
