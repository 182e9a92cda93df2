# ============================================================================
# Stock Token Ledger v1.0.0
# Transaction Signer - Ledger Key Handling
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Wraps account signing keys and signs ledger transaction bodies
#
# SOVEREIGN MANDATE:
#   - Signing keys NEVER appear in logs, reprs or API responses
#   - Every submitted transaction body is signed with HMAC-SHA512
#   - Operator requests carry an authenticated header set
#
# Signature Format:
#   payload   = timestamp + method + path + body
#   signature = HMAC-SHA512(key, payload)
#
# Error Codes:
#   - STK-SIG-001: Invalid signing key format
#
# ============================================================================

import hmac
import hashlib
import string
import time
import logging
from typing import Optional, Dict, List, Iterable

logger = logging.getLogger(__name__)

# Raw ed25519 keys are 32 bytes (64 hex chars); DER-encoded keys are longer
MIN_KEY_HEX_LENGTH = 64


class InvalidSigningKeyError(ValueError):
    """Raised when a signing key cannot be parsed (STK-SIG-001)."""
    pass


class SigningKey:
    """
    Account signing key.

    Holds the private key material and exposes only a short fingerprint
    for identification. repr() and str() are redacted.

    Example Usage:
        key = SigningKey.from_string(request.seller_private_key)
        signature = key.sign(payload)
    """

    def __init__(self, secret: str):
        self._secret = secret
        self.fingerprint = hashlib.sha256(secret.encode('utf-8')).hexdigest()[:16]

    @classmethod
    def from_string(cls, value: Optional[str]) -> "SigningKey":
        """
        Parse a hex-encoded private key.

        Accepts an optional '0x' prefix and surrounding whitespace.

        Raises:
            InvalidSigningKeyError: If the value is empty, not hex, or too short
        """
        if value is None or not str(value).strip():
            raise InvalidSigningKeyError("STK-SIG-001: Signing key is empty")

        cleaned = str(value).strip()
        if cleaned.lower().startswith('0x'):
            cleaned = cleaned[2:]

        if not all(c in string.hexdigits for c in cleaned):
            raise InvalidSigningKeyError(
                "STK-SIG-001: Signing key must be hex encoded"
            )
        if len(cleaned) < MIN_KEY_HEX_LENGTH:
            raise InvalidSigningKeyError(
                f"STK-SIG-001: Signing key too short "
                f"({len(cleaned)} < {MIN_KEY_HEX_LENGTH} hex chars)"
            )

        return cls(cleaned.lower())

    def sign(self, payload: str) -> str:
        """HMAC-SHA512 hex signature of payload."""
        return hmac.new(
            self._secret.encode('utf-8'),
            payload.encode('utf-8'),
            hashlib.sha512
        ).hexdigest()

    def verify(self, payload: str, signature: str) -> bool:
        """Constant-time check that signature was produced by this key."""
        return hmac.compare_digest(self.sign(payload), signature)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SigningKey):
            return NotImplemented
        return hmac.compare_digest(self._secret, other._secret)

    def __hash__(self) -> int:
        return hash(self.fingerprint)

    def __repr__(self) -> str:
        return f"SigningKey(fingerprint={self.fingerprint}, secret=[REDACTED])"

    __str__ = __repr__


def sign_transaction(
    body: str,
    signing_keys: Iterable[SigningKey]
) -> List[Dict[str, str]]:
    """
    Sign a canonical transaction body with every supplied key.

    Duplicate keys are signed once.

    Returns:
        List of {"key": fingerprint, "signature": hex} entries
    """
    signatures = []
    seen = set()
    for key in signing_keys:
        if key.fingerprint in seen:
            continue
        seen.add(key.fingerprint)
        signatures.append({
            'key': key.fingerprint,
            'signature': key.sign(body),
        })
    return signatures


class OperatorRequestSigner:
    """
    Signs relay requests on behalf of the operator (treasury) account.

    Example Usage:
        signer = OperatorRequestSigner("0.0.1001", operator_key)
        headers = signer.sign_request("POST", "/v1/assets", body)
    """

    def __init__(
        self,
        operator_account_id: str,
        operator_key: SigningKey,
        correlation_id: Optional[str] = None
    ):
        self.operator_account_id = operator_account_id
        self._operator_key = operator_key
        self.correlation_id = correlation_id

        logger.debug(
            f"[STK-SIG] Operator signer initialized | "
            f"account={operator_account_id} | key=[REDACTED] | "
            f"correlation_id={correlation_id}"
        )

    def sign_request(
        self,
        method: str,
        path: str,
        body: str = '',
        timestamp: Optional[int] = None
    ) -> Dict[str, str]:
        """
        Build the authenticated header set for a relay request.

        Args:
            method: HTTP method
            path: Relay path (e.g., "/v1/assets")
            body: Request body ('' for GET)
            timestamp: Unix ms timestamp (generated if None)

        Returns:
            Dict with X-LEDGER-OPERATOR, X-LEDGER-SIGNATURE, X-LEDGER-TIMESTAMP
        """
        if timestamp is None:
            timestamp = int(time.time() * 1000)

        payload = f"{timestamp}{method.upper()}{path}{body}"
        signature = self._operator_key.sign(payload)

        logger.debug(
            f"[STK-SIG] Request signed | "
            f"method={method.upper()} | path={path} | "
            f"timestamp={timestamp} | signature=[REDACTED] | "
            f"correlation_id={self.correlation_id}"
        )

        return {
            'X-LEDGER-OPERATOR': self.operator_account_id,
            'X-LEDGER-SIGNATURE': signature,
            'X-LEDGER-TIMESTAMP': str(timestamp),
        }
