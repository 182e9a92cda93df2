# ============================================================================
# Stock Token Ledger v1.0.0
# Ledger Gateway Contract
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Primitive ledger operations with a typed failure taxonomy
#
# SOVEREIGN MANDATE:
#   - Each method is exactly one remote call
#   - Remote failures are classified ONCE, here, into LedgerFailureKind
#   - Call sites branch on .kind, never on error message text
#
# Error Codes:
#   - STK-LGR-001: Ledger call failed
#
# ============================================================================

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Sequence

from stock_token.errors import StockTokenError, ErrorCode
from stock_token.ledger.signer import SigningKey

logger = logging.getLogger(__name__)


# ============================================================================
# Failure Taxonomy
# ============================================================================

class LedgerFailureKind(Enum):
    """Classified ledger failure."""
    ALREADY_ASSOCIATED = "ALREADY_ASSOCIATED"
    NOT_ASSOCIATED = "NOT_ASSOCIATED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    NOT_FOUND = "NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    UNAVAILABLE = "UNAVAILABLE"
    OTHER = "OTHER"


# Ledger response status codes -> failure kind
STATUS_CLASSIFICATION: Dict[str, LedgerFailureKind] = {
    'TOKEN_ALREADY_ASSOCIATED_WITH_ACCOUNT': LedgerFailureKind.ALREADY_ASSOCIATED,
    'TOKEN_NOT_ASSOCIATED_TO_ACCOUNT': LedgerFailureKind.NOT_ASSOCIATED,
    'INSUFFICIENT_TOKEN_BALANCE': LedgerFailureKind.INSUFFICIENT_BALANCE,
    'INVALID_SIGNATURE': LedgerFailureKind.INVALID_SIGNATURE,
    'INVALID_TOKEN_ID': LedgerFailureKind.NOT_FOUND,
    'INVALID_ACCOUNT_ID': LedgerFailureKind.NOT_FOUND,
    'BUSY': LedgerFailureKind.UNAVAILABLE,
    'PLATFORM_NOT_ACTIVE': LedgerFailureKind.UNAVAILABLE,
}

RECOVERABLE_KINDS = frozenset({
    LedgerFailureKind.ALREADY_ASSOCIATED,
    LedgerFailureKind.NOT_ASSOCIATED,
})

RETRYABLE_KINDS = frozenset({
    LedgerFailureKind.TIMEOUT,
    LedgerFailureKind.UNAVAILABLE,
})


def classify_status(status: Optional[str]) -> LedgerFailureKind:
    """Map a ledger status code to its failure kind (OTHER if unknown)."""
    if not status:
        return LedgerFailureKind.OTHER
    return STATUS_CLASSIFICATION.get(status.strip().upper(), LedgerFailureKind.OTHER)


class LedgerCallError(StockTokenError):
    """
    Typed ledger failure.

    ALREADY_ASSOCIATED and NOT_ASSOCIATED are recoverable conditions the
    orchestrator folds into its state machine. Every other kind is fatal to
    the current operation; TIMEOUT and UNAVAILABLE may succeed on retry.
    """

    error_code = ErrorCode.LEDGER

    def __init__(
        self,
        kind: LedgerFailureKind,
        message: str,
        call: str,
        status: Optional[str] = None,
        cause: Optional[Exception] = None
    ):
        self.kind = kind
        self.call = call
        self.status = status
        self.cause = cause
        super().__init__(message)

    @property
    def is_recoverable(self) -> bool:
        return self.kind in RECOVERABLE_KINDS

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __str__(self) -> str:
        status = f" [{self.status}]" if self.status else ""
        return f"{self.call} failed ({self.kind.value}){status}: {self.message}"


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class AssetCreateRequest:
    """Parameters for a fungible asset creation."""
    name: str
    symbol: str
    decimals: int
    initial_supply: int
    treasury_account_id: str
    admin_key: SigningKey
    supply_key: SigningKey
    memo: str = ''


@dataclass
class AssetInfo:
    """
    Ledger view of an asset.

    total_supply is a raw integer amount; divide by 10^decimals for kg.
    """
    asset_id: str
    name: str
    symbol: str
    decimals: int
    total_supply: int
    memo: str = ''
    treasury_account_id: Optional[str] = None


@dataclass
class LedgerReceipt:
    """Confirmation that a submitted transaction reached consensus."""
    transaction_id: str
    status: str = 'SUCCESS'
    asset_id: Optional[str] = None
    consensus_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================================
# Gateway Contract
# ============================================================================

class LedgerGateway(ABC):
    """
    Stateless adapter over the ledger network.

    Implementations raise LedgerCallError for every remote failure. The
    operator (treasury) account and key are owned by the implementation
    and sign create/mint/burn and treasury-originated transfers.
    """

    operator_account_id: str

    @abstractmethod
    async def create_asset(self, request: AssetCreateRequest) -> str:
        """Create a fungible asset and return its identifier."""

    @abstractmethod
    async def mint(self, asset_id: str, amount: int) -> LedgerReceipt:
        """Mint raw amount into the treasury."""

    @abstractmethod
    async def burn(self, asset_id: str, amount: int) -> LedgerReceipt:
        """Burn raw amount from the treasury."""

    @abstractmethod
    async def associate(
        self,
        account_id: str,
        asset_id: str,
        signing_key: SigningKey
    ) -> LedgerReceipt:
        """Allow account_id to hold asset_id. Signed by the account's key."""

    @abstractmethod
    async def transfer(
        self,
        asset_id: str,
        from_account: str,
        to_account: str,
        amount: int,
        signing_keys: Sequence[SigningKey]
    ) -> LedgerReceipt:
        """Move raw amount between two accounts in a single transaction."""

    @abstractmethod
    async def get_asset_info(self, asset_id: str) -> AssetInfo:
        """Query name, symbol, decimals and total supply."""

    @abstractmethod
    async def get_account_balances(self, account_id: str) -> Dict[str, int]:
        """Query raw balances for every asset the account is associated with."""

    async def close(self) -> None:
        """Release transport resources."""
        return None
