"""
Ledger Gateway adapters.

SimulatedLedger runs in-process (LEDGER_MODE=SIMULATED); HttpLedgerGateway
talks to a ledger relay (LEDGER_MODE=NETWORK).
"""

from stock_token.ledger.gateway import (
    AssetCreateRequest,
    AssetInfo,
    LedgerCallError,
    LedgerFailureKind,
    LedgerGateway,
    LedgerReceipt,
    classify_status,
)
from stock_token.ledger.signer import SigningKey

__all__ = [
    "AssetCreateRequest",
    "AssetInfo",
    "LedgerCallError",
    "LedgerFailureKind",
    "LedgerGateway",
    "LedgerReceipt",
    "SigningKey",
    "classify_status",
]
