# ============================================================================
# Stock Token Ledger v1.0.0
# Simulated Ledger - MOCK MODE Gateway
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: In-process ledger for development and tests
#
# MOCK MODE
# ---------
# Selected with LEDGER_MODE=SIMULATED (the default). No network calls are
# made and no real assets are created. The simulation enforces the same
# rules the ledger network does for the statuses this service handles:
#
#   - accounts must be associated before holding an asset
#   - associating twice -> TOKEN_ALREADY_ASSOCIATED_WITH_ACCOUNT
#   - transfers to/from unassociated accounts -> TOKEN_NOT_ASSOCIATED_TO_ACCOUNT
#   - debits beyond balance -> INSUFFICIENT_TOKEN_BALANCE
#   - mint/burn require the asset's supply key
#   - burns come out of the treasury balance
#   - total supply never exceeds MAX_RAW_AMOUNT -> TOKEN_MAX_SUPPLY_REACHED
#
# Tests can inject one-shot failures with fail_next().
#
# ============================================================================

import asyncio
import itertools
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

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
from stock_token.ledger.units import MAX_RAW_AMOUNT

logger = logging.getLogger(__name__)

MAX_MEMO_BYTES = 100


@dataclass
class _SimulatedAsset:
    info: AssetInfo
    supply_key: SigningKey
    balances: Dict[str, int] = field(default_factory=dict)


class SimulatedLedger(LedgerGateway):
    """
    In-memory ledger implementing LedgerGateway.

    Example Usage:
        ledger = SimulatedLedger("0.0.1001", operator_key)
        asset_id = await ledger.create_asset(request)
        await ledger.associate("0.0.2002", asset_id, buyer_key)
    """

    def __init__(
        self,
        operator_account_id: str,
        operator_key: SigningKey,
        shard_realm: str = '0.0',
        first_entity_num: int = 5000,
        latency_seconds: float = 0.0
    ):
        self.operator_account_id = operator_account_id
        self._operator_key = operator_key
        self._shard_realm = shard_realm
        self._entity_numbers = itertools.count(first_entity_num)
        self._latency_seconds = latency_seconds
        self._assets: Dict[str, _SimulatedAsset] = {}
        self._associations: Dict[str, Set[str]] = {}
        self._injected: List[Tuple[str, str, Optional[str]]] = []
        self.calls: List[Tuple[str, tuple]] = []

        logger.warning(
            f"[MOCK] SimulatedLedger initialized | operator={operator_account_id} | "
            f"No real ledger transactions will be executed"
        )

    # ========================================================================
    # Test Hooks
    # ========================================================================

    def fail_next(
        self,
        call: str,
        status: str,
        account_id: Optional[str] = None
    ) -> None:
        """
        Make the next matching call fail with a ledger status code.

        Args:
            call: Gateway method name (e.g., "transfer")
            status: Ledger status (e.g., "TOKEN_NOT_ASSOCIATED_TO_ACCOUNT", "TIMEOUT")
            account_id: Only fail when this account is involved
        """
        self._injected.append((call, status, account_id))

    def call_count(self, call: str) -> int:
        return sum(1 for name, _ in self.calls if name == call)

    def is_associated(self, account_id: str, asset_id: str) -> bool:
        return asset_id in self._associations.get(account_id, set())

    def balance_of(self, account_id: str, asset_id: str) -> int:
        asset = self._assets.get(asset_id)
        if asset is None:
            return 0
        return asset.balances.get(account_id, 0)

    # ========================================================================
    # Submissions
    # ========================================================================

    async def create_asset(self, request: AssetCreateRequest) -> str:
        await self._enter('create_asset', (request.name, request.symbol))

        if len(request.memo.encode('utf-8')) > MAX_MEMO_BYTES:
            raise self._error('create_asset', 'MEMO_TOO_LONG')
        if request.decimals < 0:
            raise self._error('create_asset', 'INVALID_TOKEN_DECIMALS')
        if request.initial_supply < 0 or request.initial_supply > MAX_RAW_AMOUNT:
            raise self._error('create_asset', 'INVALID_TOKEN_INITIAL_SUPPLY')

        asset_id = f"{self._shard_realm}.{next(self._entity_numbers)}"
        treasury = request.treasury_account_id
        self._assets[asset_id] = _SimulatedAsset(
            info=AssetInfo(
                asset_id=asset_id,
                name=request.name,
                symbol=request.symbol,
                decimals=request.decimals,
                total_supply=request.initial_supply,
                memo=request.memo,
                treasury_account_id=treasury,
            ),
            supply_key=request.supply_key,
            balances={treasury: request.initial_supply},
        )
        self._associations.setdefault(treasury, set()).add(asset_id)

        logger.info(
            f"[MOCK] Asset created | asset_id={asset_id} | symbol={request.symbol} | "
            f"supply={request.initial_supply} | treasury={treasury}"
        )
        return asset_id

    async def mint(self, asset_id: str, amount: int) -> LedgerReceipt:
        await self._enter('mint', (asset_id, amount), asset_id)
        asset = self._asset('mint', asset_id)
        self._require_supply_key('mint', asset)
        if amount <= 0:
            raise self._error('mint', 'INVALID_TOKEN_MINT_AMOUNT')
        if asset.info.total_supply + amount > MAX_RAW_AMOUNT:
            raise self._error('mint', 'TOKEN_MAX_SUPPLY_REACHED')

        treasury = asset.info.treasury_account_id
        asset.info.total_supply += amount
        asset.balances[treasury] = asset.balances.get(treasury, 0) + amount
        return self._receipt(asset_id)

    async def burn(self, asset_id: str, amount: int) -> LedgerReceipt:
        await self._enter('burn', (asset_id, amount), asset_id)
        asset = self._asset('burn', asset_id)
        self._require_supply_key('burn', asset)
        if amount <= 0:
            raise self._error('burn', 'INVALID_TOKEN_BURN_AMOUNT')

        treasury = asset.info.treasury_account_id
        if asset.balances.get(treasury, 0) < amount:
            raise self._error('burn', 'INSUFFICIENT_TOKEN_BALANCE')

        asset.info.total_supply -= amount
        asset.balances[treasury] -= amount
        return self._receipt(asset_id)

    async def associate(
        self,
        account_id: str,
        asset_id: str,
        signing_key: SigningKey
    ) -> LedgerReceipt:
        await self._enter('associate', (account_id, asset_id), account_id)
        self._asset('associate', asset_id)
        if signing_key is None:
            raise self._error('associate', 'INVALID_SIGNATURE')

        associated = self._associations.setdefault(account_id, set())
        if asset_id in associated:
            raise self._error('associate', 'TOKEN_ALREADY_ASSOCIATED_WITH_ACCOUNT')

        associated.add(asset_id)
        self._assets[asset_id].balances.setdefault(account_id, 0)
        return self._receipt(asset_id)

    async def transfer(
        self,
        asset_id: str,
        from_account: str,
        to_account: str,
        amount: int,
        signing_keys: Sequence[SigningKey]
    ) -> LedgerReceipt:
        await self._enter(
            'transfer', (asset_id, from_account, to_account, amount),
            from_account, to_account
        )
        asset = self._asset('transfer', asset_id)

        if not signing_keys:
            raise self._error('transfer', 'INVALID_SIGNATURE')
        for account in (from_account, to_account):
            if not self.is_associated(account, asset_id):
                raise self._error('transfer', 'TOKEN_NOT_ASSOCIATED_TO_ACCOUNT')
        if amount <= 0:
            raise self._error('transfer', 'INVALID_ACCOUNT_AMOUNTS')
        if asset.balances.get(from_account, 0) < amount:
            raise self._error('transfer', 'INSUFFICIENT_TOKEN_BALANCE')

        asset.balances[from_account] -= amount
        asset.balances[to_account] = asset.balances.get(to_account, 0) + amount
        return self._receipt(asset_id)

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_asset_info(self, asset_id: str) -> AssetInfo:
        await self._enter('get_asset_info', (asset_id,), asset_id)
        info = self._asset('get_asset_info', asset_id).info
        return AssetInfo(
            asset_id=info.asset_id,
            name=info.name,
            symbol=info.symbol,
            decimals=info.decimals,
            total_supply=info.total_supply,
            memo=info.memo,
            treasury_account_id=info.treasury_account_id,
        )

    async def get_account_balances(self, account_id: str) -> Dict[str, int]:
        await self._enter('get_account_balances', (account_id,), account_id)
        return {
            asset_id: self._assets[asset_id].balances.get(account_id, 0)
            for asset_id in sorted(self._associations.get(account_id, set()))
        }

    # ========================================================================
    # Internal Methods
    # ========================================================================

    async def _enter(self, call: str, args: tuple, *accounts: str) -> None:
        self.calls.append((call, args))
        # Yield so concurrent operations interleave at every gateway call
        await asyncio.sleep(self._latency_seconds)

        for index, (name, status, account_id) in enumerate(self._injected):
            if name != call:
                continue
            if account_id is not None and account_id not in accounts:
                continue
            del self._injected[index]
            raise self._error(call, status)

    def _asset(self, call: str, asset_id: str) -> _SimulatedAsset:
        asset = self._assets.get(asset_id)
        if asset is None:
            raise self._error(call, 'INVALID_TOKEN_ID')
        return asset

    def _require_supply_key(self, call: str, asset: _SimulatedAsset) -> None:
        if asset.supply_key != self._operator_key:
            raise self._error(call, 'INVALID_SIGNATURE')

    def _receipt(self, asset_id: str) -> LedgerReceipt:
        return LedgerReceipt(
            transaction_id=f"{self.operator_account_id}@sim-{uuid.uuid4().hex[:12]}",
            asset_id=asset_id,
        )

    @staticmethod
    def _error(call: str, status: str) -> LedgerCallError:
        kind = classify_status(status)
        if status == 'TIMEOUT':
            kind = LedgerFailureKind.TIMEOUT
        return LedgerCallError(kind, f"Simulated ledger status {status}", call=call, status=status)
