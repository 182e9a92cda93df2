# ============================================================================
# Stock Token Ledger v1.0.0
# Reconciliation Engine - Registry <-> Ledger Balance Sync
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Re-derive cached balances from the ledger's authoritative state
#
# SOVEREIGN MANDATE:
#   - Refresh is best-effort and partial: a failed account keeps its value
#   - Failures become ReconciliationWarnings (logged, never raised)
#   - Only accounts already in the balance table are queried
#   - Conversion uses the asset's declared precision
#
# Error Codes:
#   - STK-REC-001: Account balance query failed
#   - STK-REC-002: Asset precision query failed
#   - STK-REC-003: Ledger balance not convertible
#
# ============================================================================

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Dict, List, Optional, TypeVar

from stock_token.core.registry import LocalRegistry
from stock_token.ledger.gateway import (
    LedgerCallError,
    LedgerFailureKind,
    LedgerGateway,
)
from stock_token.ledger.units import QuantityConversionError, from_raw_amount
from stock_token.observability import metrics

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_CALL_TIMEOUT_SECONDS = 30.0


# ============================================================================
# Enums / Data Classes
# ============================================================================

class RefreshStatus(Enum):
    """Outcome of a refresh pass."""
    RECONCILED = "RECONCILED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ReconciliationWarning:
    """One account (or the whole asset) that could not be refreshed."""
    asset_id: str
    account_id: Optional[str]
    reason: str


@dataclass
class RefreshResult:
    """Balances after a refresh pass plus anything left stale."""
    asset_id: str
    status: RefreshStatus
    balances: Dict[str, Decimal]
    updated_accounts: List[str] = field(default_factory=list)
    warnings: List[ReconciliationWarning] = field(default_factory=list)
    refreshed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


async def call_with_timeout(
    call: str,
    awaitable: Awaitable[T],
    timeout: float
) -> T:
    """
    Await a gateway call under an explicit deadline.

    Expiry becomes LedgerCallError(TIMEOUT) so callers handle it through
    the same taxonomy as every other ledger failure.
    """
    started = asyncio.get_running_loop().time()
    try:
        result = await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        metrics.record_ledger_call(call, 'TIMEOUT')
        raise LedgerCallError(
            LedgerFailureKind.TIMEOUT,
            f"No response within {timeout}s",
            call=call,
            cause=e
        )
    except LedgerCallError as e:
        metrics.record_ledger_call(call, e.kind.value)
        raise
    metrics.record_ledger_call(
        call, 'SUCCESS', asyncio.get_running_loop().time() - started
    )
    return result


# ============================================================================
# Reconciliation Engine
# ============================================================================

class ReconciliationEngine:
    """
    Balance refresh for one asset at a time.

    refresh() takes the asset lock. Callers already holding the lock
    (the orchestrator's burn flow) use refresh_locked().

    Example Usage:
        engine = ReconciliationEngine(gateway, registry)
        result = await engine.refresh("0.0.5005")
        for warning in result.warnings:
            ...
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        registry: LocalRegistry,
        call_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS
    ):
        self.gateway = gateway
        self.registry = registry
        self.call_timeout = call_timeout

    async def refresh(self, asset_id: str) -> RefreshResult:
        """Refresh every known holder of asset_id under the asset lock."""
        async with self.registry.asset_lock(asset_id):
            return await self.refresh_locked(asset_id)

    async def refresh_locked(self, asset_id: str) -> RefreshResult:
        """
        Refresh without acquiring the lock.

        The caller must hold registry.asset_lock(asset_id).
        """
        accounts = self.registry.known_accounts(asset_id)
        if not accounts:
            return RefreshResult(
                asset_id=asset_id,
                status=RefreshStatus.RECONCILED,
                balances=self.registry.get_balances(asset_id) or {},
            )

        try:
            info = await call_with_timeout(
                'get_asset_info', self.gateway.get_asset_info(asset_id), self.call_timeout
            )
        except LedgerCallError as e:
            warning = ReconciliationWarning(asset_id, None, str(e))
            self._log_warning('STK-REC-002', warning)
            return RefreshResult(
                asset_id=asset_id,
                status=RefreshStatus.FAILED,
                balances=self.registry.get_balances(asset_id) or {},
                warnings=[warning],
            )

        updated: List[str] = []
        warnings: List[ReconciliationWarning] = []

        for account_id in accounts:
            try:
                balances = await call_with_timeout(
                    'get_account_balances',
                    self.gateway.get_account_balances(account_id),
                    self.call_timeout
                )
            except LedgerCallError as e:
                warning = ReconciliationWarning(asset_id, account_id, str(e))
                self._log_warning('STK-REC-001', warning)
                warnings.append(warning)
                continue

            raw_amount = balances.get(asset_id)
            if raw_amount is None:
                # No ledger relationship: the local entry is left as is
                continue

            try:
                quantity = from_raw_amount(raw_amount, info.decimals)
            except QuantityConversionError as e:
                warning = ReconciliationWarning(asset_id, account_id, str(e))
                self._log_warning('STK-REC-003', warning)
                warnings.append(warning)
                continue

            self.registry.set_balance(asset_id, account_id, quantity)
            updated.append(account_id)

        status = RefreshStatus.PARTIAL if warnings else RefreshStatus.RECONCILED
        logger.info(
            f"[STK-REC] Refresh {status.value} | asset_id={asset_id} | "
            f"accounts={len(accounts)} | updated={len(updated)} | "
            f"stale={len(warnings)}"
        )
        return RefreshResult(
            asset_id=asset_id,
            status=status,
            balances=self.registry.get_balances(asset_id) or {},
            updated_accounts=updated,
            warnings=warnings,
        )

    @staticmethod
    def _log_warning(code: str, warning: ReconciliationWarning) -> None:
        metrics.record_reconciliation_warning(warning.asset_id)
        logger.warning(
            f"[{code}] Balance refresh skipped | asset_id={warning.asset_id} | "
            f"account={warning.account_id or 'ALL'} | reason={warning.reason}"
        )
