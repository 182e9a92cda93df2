# ============================================================================
# Stock Token Ledger v1.0.0
# Transfer Orchestrator - Create / Mint / Burn / Sell State Machine
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Sequence ledger steps as one business operation per request
#
# SOVEREIGN MANDATE:
#   - Validation and authorization happen before any ledger call
#   - The registry is updated only after the ledger step is confirmed
#   - ALREADY_ASSOCIATED / NOT_ASSOCIATED are folded into the flow
#   - Any other ledger failure aborts the remaining steps; steps already
#     committed are reported, never rolled back
#   - Every asset-scoped read-modify-write runs under the asset lock
#   - Quantities are Decimal kilograms end to end
#
# State Machines:
#   create: create_asset -> [associate(owner) -> transfer(treasury->owner)]
#   mint:   guard -> asset_info -> mint -> [transfer(treasury->owner)]
#   burn:   guard -> asset_info -> supply check -> burn -> refresh
#   sell:   guard -> asset_info -> [balances(buyer) -> associate(buyer)]
#           -> transfer(seller->buyer) -> asset_info -> [ownership move]
#
# Error Codes:
#   - STK-VAL-001: Invalid input
#   - STK-GRD-001: Requester is not the recorded owner
#   - STK-REG-001: Asset not found
#   - STK-ORC-001: Later step failed after earlier steps committed
#   - STK-ORC-002: Unsafe operator signing fallback used
#
# ============================================================================

import dataclasses
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from stock_token.core.ownership_guard import OwnershipGuard
from stock_token.core.reconciliation import (
    DEFAULT_CALL_TIMEOUT_SECONDS,
    ReconciliationEngine,
    ReconciliationWarning,
    call_with_timeout,
)
from stock_token.core.registry import (
    LocalRegistry,
    MetadataRecord,
    OwnershipRecord,
    utc_now,
)
from stock_token.errors import (
    AssetNotFoundError,
    PartialOperationError,
    ValidationError,
)
from stock_token.ledger.gateway import (
    AssetCreateRequest,
    AssetInfo,
    LedgerCallError,
    LedgerFailureKind,
    LedgerGateway,
)
from stock_token.ledger.signer import SigningKey
from stock_token.ledger.units import (
    ASSET_DECIMALS,
    MAX_RAW_AMOUNT,
    QuantityConversionError,
    at_precision,
    format_kg,
    from_raw_amount,
    max_quantity,
    parse_quantity,
    to_raw_amount,
)
from stock_token.observability import metrics

logger = logging.getLogger(__name__)

T = TypeVar('T')

MAX_MEMO_BYTES = 100
TOKEN_NAME_SUFFIX = ' Stock Token'
RESERVED_METADATA_KEYS = frozenset({
    'productName', 'type', 'unit', 'ownerAccountId', 'createdAt', 'updatedAt',
})

ASSOCIATE_BEFORE_TRANSFER = (
    "The owner account must associate with this token before tokens can be "
    "transferred to it."
)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class CreateResult:
    asset_id: str
    name: str
    symbol: str
    initial_quantity: Decimal
    owner_account_id: str
    holder_account: str
    transferred: bool
    message: str
    correlation_id: str
    transfer_error: Optional[str] = None


@dataclass
class MintResult:
    asset_id: str
    quantity: Decimal
    total_supply: Decimal
    owner_account_id: str
    transferred: bool
    message: str
    correlation_id: str


@dataclass
class BurnResult:
    asset_id: str
    quantity: Decimal
    total_supply: Decimal
    balances: Dict[str, Decimal]
    correlation_id: str
    warnings: List[ReconciliationWarning] = field(default_factory=list)


@dataclass
class SellResult:
    asset_id: str
    quantity: Decimal
    seller_account_id: str
    buyer_account_id: str
    owner_account_id: str
    ownership_transferred: bool
    balances: Dict[str, Decimal]
    correlation_id: str
    buyer_associated: bool = False
    operator_signed: bool = False


@dataclass
class AssociateResult:
    asset_id: str
    account_id: str
    already_associated: bool
    correlation_id: str


@dataclass
class OwnedAsset:
    asset_id: str
    name: str
    symbol: str
    decimals: int
    balance: Decimal
    is_owner: bool
    ownership: Optional[Dict[str, Any]]
    metadata: Dict[str, Any]


@dataclass
class AssetDescription:
    asset_id: str
    name: str
    symbol: str
    decimals: int
    total_supply: Decimal
    memo: str
    treasury_account_id: Optional[str]
    owner_account_id: str
    balances: Dict[str, Decimal]
    ownership: Optional[Dict[str, Any]]
    metadata: Dict[str, Any]
    warnings: List[ReconciliationWarning] = field(default_factory=list)


@dataclass
class ExistsResult:
    asset_id: str
    exists: bool
    name: Optional[str] = None
    symbol: Optional[str] = None
    error: Optional[str] = None


def to_jsonable(value: Any) -> Any:
    """Render result objects for JSON (Decimals as strings)."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def build_symbol(product_name: str, now: datetime) -> str:
    """First four letters upper-cased plus the last four digits of a UTC stamp."""
    stamp = now.strftime('%Y%m%d%H%M%S')
    return f"{product_name[:4].upper()}-{stamp[-4:]}"


def build_memo(product_name: str, owner_account_id: str) -> str:
    memo = f"{product_name} | Owner: {owner_account_id}"
    encoded = memo.encode('utf-8')
    if len(encoded) <= MAX_MEMO_BYTES:
        return memo
    return encoded[:MAX_MEMO_BYTES].decode('utf-8', errors='ignore')


def product_name_from(asset_name: str) -> str:
    if asset_name.endswith(TOKEN_NAME_SUFFIX):
        return asset_name[:-len(TOKEN_NAME_SUFFIX)]
    return asset_name


# ============================================================================
# Transfer Orchestrator
# ============================================================================

class TransferOrchestrator:
    """
    Core state machine over the Ledger Gateway and Local Registry.

    Example Usage:
        orchestrator = TransferOrchestrator(gateway, registry, operator_key)
        created = await orchestrator.create("Wheat", "100.00", "0.0.2001", owner_key)
        await orchestrator.sell(created.asset_id, "30.00", "0.0.2001", "0.0.3001",
                                seller_signing_key=owner_key)
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        registry: LocalRegistry,
        operator_key: SigningKey,
        engine: Optional[ReconciliationEngine] = None,
        guard: Optional[OwnershipGuard] = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
        allow_operator_signing_fallback: bool = False,
        clock: Callable[[], datetime] = utc_now
    ):
        self.gateway = gateway
        self.registry = registry
        self.operator_key = operator_key
        self.call_timeout = call_timeout
        self.engine = engine or ReconciliationEngine(gateway, registry, call_timeout)
        self.guard = guard or OwnershipGuard(registry)
        self.allow_operator_signing_fallback = allow_operator_signing_fallback
        self._clock = clock

    @property
    def treasury_account_id(self) -> str:
        return self.gateway.operator_account_id

    # ========================================================================
    # Create
    # ========================================================================

    async def create(
        self,
        product_name: str,
        initial_quantity: Any,
        owner_account_id: Optional[str] = None,
        owner_signing_key: Optional[SigningKey] = None,
        metadata: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None
    ) -> CreateResult:
        """
        Create a stock token held by treasury, then hand it to the owner.

        The transfer to the owner needs the owner's key for association.
        A failed hand-over does not fail the creation: the asset stays
        treasury-held and the result carries transferred=False.

        Raises:
            ValidationError: Bad product name or quantity
            LedgerCallError: create_asset itself failed (nothing committed)
        """
        correlation_id = correlation_id or self._new_correlation_id()
        product_name = (product_name or '').strip()
        if not product_name:
            raise ValidationError("Product name is required")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("Metadata must be an object")

        quantity = self._parse_create_quantity(initial_quantity, correlation_id)
        treasury = self.treasury_account_id
        owner = (owner_account_id or '').strip() or treasury

        now = self._clock()
        name = f"{product_name}{TOKEN_NAME_SUFFIX}"
        symbol = build_symbol(product_name, now)
        request = AssetCreateRequest(
            name=name,
            symbol=symbol,
            decimals=ASSET_DECIMALS,
            initial_supply=to_raw_amount(quantity, ASSET_DECIMALS, correlation_id),
            treasury_account_id=treasury,
            admin_key=self.operator_key,
            supply_key=self.operator_key,
            memo=build_memo(product_name, owner),
        )

        logger.info(
            f"[STK-ORC] Create requested | product={product_name} | "
            f"quantity={quantity} | owner={owner} | symbol={symbol} | "
            f"correlation_id={correlation_id}"
        )

        try:
            asset_id = await self._call('create_asset', self.gateway.create_asset(request))
        except LedgerCallError as e:
            self._log_fatal('create', e, correlation_id)
            metrics.record_operation('create', 'failed', correlation_id)
            raise

        async with self.registry.asset_lock(asset_id):
            self.registry.put_ownership(
                asset_id,
                OwnershipRecord(owner_account_id=owner, created_at=now, product_name=product_name)
            )
            self.registry.put_metadata(
                asset_id,
                MetadataRecord(
                    product_name=product_name,
                    owner_account_id=owner,
                    created_at=now,
                    attributes=self._attributes(metadata),
                )
            )
            self.registry.set_balance(asset_id, treasury, quantity)

            transferred = False
            transfer_error = None
            message = f"Token {asset_id} created and held by treasury"

            if owner != treasury and owner_signing_key is not None:
                try:
                    await self._associate_tolerant(
                        asset_id, owner, owner_signing_key, correlation_id
                    )
                    await self._call(
                        'transfer',
                        self.gateway.transfer(
                            asset_id, treasury, owner, request.initial_supply,
                            [self.operator_key]
                        )
                    )
                except LedgerCallError as e:
                    transfer_error = str(e)
                    message = (
                        f"Token {asset_id} created, transfer to owner failed: "
                        f"{e.message}. Tokens remain in treasury."
                    )
                    logger.warning(
                        f"[STK-ORC-001] Asset created, transfer failed | "
                        f"asset_id={asset_id} | owner={owner} | kind={e.kind.value} | "
                        f"correlation_id={correlation_id}"
                    )
                else:
                    self.registry.set_balance(asset_id, treasury, Decimal('0'))
                    self.registry.set_balance(asset_id, owner, quantity)
                    transferred = True
                    message = f"Token {asset_id} created and transferred to {owner}"
            elif owner != treasury:
                message = (
                    f"Token {asset_id} created and held by treasury. "
                    f"{ASSOCIATE_BEFORE_TRANSFER}"
                )

        metrics.record_operation('create', 'success', correlation_id)
        logger.info(
            f"[STK-ORC] Create complete | asset_id={asset_id} | owner={owner} | "
            f"transferred={transferred} | correlation_id={correlation_id}"
        )
        return CreateResult(
            asset_id=asset_id,
            name=name,
            symbol=symbol,
            initial_quantity=quantity,
            owner_account_id=owner,
            holder_account=owner if transferred else treasury,
            transferred=transferred,
            message=message,
            correlation_id=correlation_id,
            transfer_error=transfer_error,
        )

    # ========================================================================
    # Mint
    # ========================================================================

    async def mint(
        self,
        asset_id: str,
        quantity: Any,
        requesting_account: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> MintResult:
        """
        Add stock. New supply lands in treasury and is forwarded to the owner.

        Raises:
            ValidationError: Bad quantity, or the new supply would pass the
                ledger ceiling
            AuthorizationError: Requester is not the recorded owner
            AssetNotFoundError: Unknown asset
            LedgerCallError: The mint itself failed
            PartialOperationError: Mint committed, forwarding transfer failed
        """
        correlation_id = correlation_id or self._new_correlation_id()
        asset_id = self._require_id(asset_id, 'Token ID')
        amount = self._parse_positive(quantity, correlation_id)

        async with self.registry.asset_lock(asset_id):
            if requesting_account:
                self.guard.authorize(asset_id, requesting_account, "add stock", correlation_id)

            info = await self._asset_info(asset_id)
            raw = self._raw(amount, info.decimals, correlation_id)
            amount = at_precision(amount, info.decimals)

            if info.total_supply + raw > MAX_RAW_AMOUNT:
                metrics.record_operation('mint', 'rejected', correlation_id)
                raise ValidationError(
                    f"Mint would exceed the maximum supply of "
                    f"{max_quantity(info.decimals)} kg"
                )
            total_supply = self._ledger_quantity(
                info.total_supply + raw, info.decimals, 'get_asset_info'
            )

            try:
                await self._call('mint', self.gateway.mint(asset_id, raw))
            except LedgerCallError as e:
                self._log_fatal('mint', e, correlation_id, asset_id)
                metrics.record_operation('mint', 'failed', correlation_id)
                raise

            treasury = self.treasury_account_id
            pre_mint = self.registry.balance_of(asset_id, treasury)
            self.registry.adjust_balance(asset_id, treasury, amount)

            record = self.registry.get_ownership(asset_id)
            owner = record.owner_account_id if record else treasury
            transferred = False
            message = f"Minted {format_kg(amount)} into treasury"

            if owner != treasury:
                try:
                    await self._call(
                        'transfer',
                        self.gateway.transfer(asset_id, treasury, owner, raw, [self.operator_key])
                    )
                except LedgerCallError as e:
                    if e.kind != LedgerFailureKind.NOT_ASSOCIATED:
                        self._log_fatal('mint', e, correlation_id, asset_id)
                        metrics.record_operation('mint', 'partial', correlation_id)
                        raise PartialOperationError(
                            f"Mint succeeded, transfer failed: {e.message}",
                            completed_steps=['mint'],
                            failed_step='transfer',
                            cause=e,
                            asset_id=asset_id,
                        ) from e
                    message = (
                        f"Minted {format_kg(amount)} into treasury. "
                        f"{ASSOCIATE_BEFORE_TRANSFER}"
                    )
                    logger.warning(
                        f"[STK-ORC] Minted stock left in treasury (owner not associated) | "
                        f"asset_id={asset_id} | owner={owner} | "
                        f"correlation_id={correlation_id}"
                    )
                else:
                    self.registry.set_balance(
                        asset_id, treasury, pre_mint if pre_mint is not None else Decimal('0')
                    )
                    self.registry.adjust_balance(asset_id, owner, amount)
                    transferred = True
                    message = f"Minted {format_kg(amount)} and transferred to {owner}"

        metrics.record_operation('mint', 'success', correlation_id)
        logger.info(
            f"[STK-ORC] Mint complete | asset_id={asset_id} | quantity={amount} | "
            f"transferred={transferred} | correlation_id={correlation_id}"
        )
        return MintResult(
            asset_id=asset_id,
            quantity=amount,
            total_supply=total_supply,
            owner_account_id=owner,
            transferred=transferred,
            message=message,
            correlation_id=correlation_id,
        )

    # ========================================================================
    # Burn
    # ========================================================================

    async def burn(
        self,
        asset_id: str,
        quantity: Any,
        requesting_account: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> BurnResult:
        """
        Reduce stock, then reconcile the asset's balances from the ledger.

        Raises:
            ValidationError: Bad quantity, or reduction exceeds total supply
            AuthorizationError: Requester is not the recorded owner
            AssetNotFoundError: Unknown asset
            LedgerCallError: The burn failed
        """
        correlation_id = correlation_id or self._new_correlation_id()
        asset_id = self._require_id(asset_id, 'Token ID')
        amount = self._parse_positive(quantity, correlation_id)

        async with self.registry.asset_lock(asset_id):
            if requesting_account:
                self.guard.authorize(asset_id, requesting_account, "reduce stock", correlation_id)

            info = await self._asset_info(asset_id)
            raw = self._raw(amount, info.decimals, correlation_id)
            amount = at_precision(amount, info.decimals)

            if raw > info.total_supply:
                available = self._ledger_quantity(
                    info.total_supply, info.decimals, 'get_asset_info'
                )
                metrics.record_operation('burn', 'rejected', correlation_id)
                raise ValidationError(
                    f"Insufficient stock. Available: {format_kg(available)}, "
                    f"requested: {format_kg(amount)}"
                )

            try:
                await self._call('burn', self.gateway.burn(asset_id, raw))
            except LedgerCallError as e:
                self._log_fatal('burn', e, correlation_id, asset_id)
                metrics.record_operation('burn', 'failed', correlation_id)
                raise

            record = self.registry.get_ownership(asset_id)
            owner = record.owner_account_id if record else self.treasury_account_id
            if self.registry.balance_of(asset_id, owner):
                self.registry.adjust_balance(asset_id, owner, -amount)

            refreshed = await self.engine.refresh_locked(asset_id)

        metrics.record_operation('burn', 'success', correlation_id)
        logger.info(
            f"[STK-ORC] Burn complete | asset_id={asset_id} | quantity={amount} | "
            f"refresh={refreshed.status.value} | correlation_id={correlation_id}"
        )
        return BurnResult(
            asset_id=asset_id,
            quantity=amount,
            total_supply=self._ledger_quantity(
                info.total_supply - raw, info.decimals, 'get_asset_info'
            ),
            balances=refreshed.balances,
            correlation_id=correlation_id,
            warnings=refreshed.warnings,
        )

    # ========================================================================
    # Sell
    # ========================================================================

    async def sell(
        self,
        asset_id: str,
        quantity: Any,
        seller_account_id: str,
        buyer_account_id: str,
        seller_signing_key: Optional[SigningKey] = None,
        buyer_signing_key: Optional[SigningKey] = None,
        correlation_id: Optional[str] = None
    ) -> SellResult:
        """
        Move stock from seller to buyer in one transfer.

        Only a sale of the entire supply moves recorded ownership.

        Raises:
            ValidationError: Bad input or no signing key supplied
            AuthorizationError: Seller is not the recorded owner
            AssetNotFoundError: Unknown asset
            LedgerCallError: A step failed before anything was committed
            PartialOperationError: Buyer associated, transfer failed
        """
        correlation_id = correlation_id or self._new_correlation_id()
        asset_id = self._require_id(asset_id, 'Token ID')
        seller = self._require_id(seller_account_id, 'Seller account ID')
        buyer = self._require_id(buyer_account_id, 'Buyer account ID')
        if seller == buyer:
            raise ValidationError("Seller and buyer must be different accounts")
        amount = self._parse_positive(quantity, correlation_id)

        signing_keys = [k for k in (seller_signing_key, buyer_signing_key) if k is not None]
        operator_signed = False
        if not signing_keys:
            if not self.allow_operator_signing_fallback:
                raise ValidationError(
                    "Either seller or buyer private key is required to sign the transfer"
                )
            operator_signed = True

        async with self.registry.asset_lock(asset_id):
            self.guard.authorize(asset_id, seller, "sell stock", correlation_id)

            info = await self._asset_info(asset_id)
            raw = self._raw(amount, info.decimals, correlation_id)
            amount = at_precision(amount, info.decimals)

            self.registry.ensure_balance(asset_id, buyer)
            self.registry.ensure_balance(asset_id, seller)

            completed: List[str] = []
            buyer_associated = False
            if buyer_signing_key is not None:
                buyer_associated = await self._ensure_buyer_associated(
                    asset_id, buyer, buyer_signing_key, correlation_id
                )
                if buyer_associated:
                    completed.append('associate')

            if operator_signed:
                logger.warning(
                    f"[STK-ORC-002] UNSAFE: treasury key signing user transfer | "
                    f"asset_id={asset_id} | seller={seller} | buyer={buyer} | "
                    f"testing only | correlation_id={correlation_id}"
                )
                signing_keys = [self.operator_key]

            try:
                await self._call(
                    'transfer',
                    self.gateway.transfer(asset_id, seller, buyer, raw, signing_keys)
                )
            except LedgerCallError as e:
                self._log_fatal('sell', e, correlation_id, asset_id)
                if completed:
                    metrics.record_operation('sell', 'partial', correlation_id)
                    raise PartialOperationError(
                        f"Buyer associated, transfer failed: {e.message}",
                        completed_steps=completed,
                        failed_step='transfer',
                        cause=e,
                        asset_id=asset_id,
                    ) from e
                metrics.record_operation('sell', 'failed', correlation_id)
                raise

            self.registry.adjust_balance(asset_id, seller, -amount)
            self.registry.adjust_balance(asset_id, buyer, amount)

            total_raw = info.total_supply
            try:
                total_raw = (await self._call(
                    'get_asset_info', self.gateway.get_asset_info(asset_id)
                )).total_supply
            except LedgerCallError as e:
                logger.warning(
                    f"[STK-ORC] Total supply re-query failed, using pre-transfer value | "
                    f"asset_id={asset_id} | error={e} | correlation_id={correlation_id}"
                )

            ownership_transferred = False
            record = self.registry.get_ownership(asset_id)
            if record is not None and raw == total_raw:
                record = self.registry.transfer_ownership(
                    asset_id, buyer, seller, self._clock()
                )
                ownership_transferred = True

            owner = record.owner_account_id if record else seller
            balances = self.registry.get_balances(asset_id) or {}

        metrics.record_operation('sell', 'success', correlation_id)
        logger.info(
            f"[STK-ORC] Sell complete | asset_id={asset_id} | quantity={amount} | "
            f"seller={seller} | buyer={buyer} | "
            f"ownership_transferred={ownership_transferred} | "
            f"correlation_id={correlation_id}"
        )
        return SellResult(
            asset_id=asset_id,
            quantity=amount,
            seller_account_id=seller,
            buyer_account_id=buyer,
            owner_account_id=owner,
            ownership_transferred=ownership_transferred,
            balances=balances,
            correlation_id=correlation_id,
            buyer_associated=buyer_associated,
            operator_signed=operator_signed,
        )

    # ========================================================================
    # Supporting Operations
    # ========================================================================

    async def associate(
        self,
        asset_id: str,
        account_id: str,
        signing_key: SigningKey,
        correlation_id: Optional[str] = None
    ) -> AssociateResult:
        """Associate an account; an existing association counts as success."""
        correlation_id = correlation_id or self._new_correlation_id()
        asset_id = self._require_id(asset_id, 'Token ID')
        account_id = self._require_id(account_id, 'Account ID')
        if signing_key is None:
            raise ValidationError("Private key is required to associate an account")

        async with self.registry.asset_lock(asset_id):
            try:
                newly = await self._associate_tolerant(
                    asset_id, account_id, signing_key, correlation_id
                )
            except LedgerCallError as e:
                self._log_fatal('associate', e, correlation_id, asset_id)
                metrics.record_operation('associate', 'failed', correlation_id)
                raise
            self.registry.ensure_balance(asset_id, account_id)

        metrics.record_operation('associate', 'success', correlation_id)
        return AssociateResult(
            asset_id=asset_id,
            account_id=account_id,
            already_associated=not newly,
            correlation_id=correlation_id,
        )

    async def lookup_owned_assets(
        self,
        account_id: str,
        correlation_id: Optional[str] = None
    ) -> List[OwnedAsset]:
        """
        Discover every asset an account holds on the ledger.

        Writes the discovered balances into the registry and creates
        placeholder ownership/metadata records for assets it has never seen.
        """
        correlation_id = correlation_id or self._new_correlation_id()
        account_id = self._require_id(account_id, 'Account ID')

        balances = await self._call(
            'get_account_balances', self.gateway.get_account_balances(account_id)
        )

        owned: List[OwnedAsset] = []
        for asset_id, raw_amount in balances.items():
            try:
                info = await self._call('get_asset_info', self.gateway.get_asset_info(asset_id))
            except LedgerCallError as e:
                logger.warning(
                    f"[STK-ORC] Skipping asset in owned lookup | asset_id={asset_id} | "
                    f"account={account_id} | error={e} | correlation_id={correlation_id}"
                )
                continue

            try:
                quantity = from_raw_amount(raw_amount, info.decimals)
            except QuantityConversionError as e:
                logger.warning(
                    f"[STK-ORC] Skipping asset in owned lookup | asset_id={asset_id} | "
                    f"account={account_id} | error={e} | correlation_id={correlation_id}"
                )
                continue
            product_name = product_name_from(info.name)
            now = self._clock()

            async with self.registry.asset_lock(asset_id):
                self.registry.set_balance(asset_id, account_id, quantity)
                ownership = self.registry.ensure_ownership(
                    asset_id,
                    OwnershipRecord(
                        owner_account_id=account_id,
                        created_at=now,
                        product_name=product_name,
                    )
                )
                self.registry.ensure_metadata(
                    asset_id,
                    MetadataRecord(
                        product_name=product_name,
                        owner_account_id=account_id,
                        created_at=now,
                    )
                )
                metadata = self.registry.get_metadata(asset_id)

            owned.append(OwnedAsset(
                asset_id=asset_id,
                name=info.name,
                symbol=info.symbol,
                decimals=info.decimals,
                balance=quantity,
                is_owner=ownership.owner_account_id == account_id,
                ownership=ownership.to_dict(),
                metadata=metadata.to_dict(),
            ))

        logger.info(
            f"[STK-ORC] Owned lookup complete | account={account_id} | "
            f"assets={len(owned)} | correlation_id={correlation_id}"
        )
        return owned

    async def describe_asset(self, asset_id: str) -> AssetDescription:
        """Ledger info plus refreshed balances and local records."""
        asset_id = self._require_id(asset_id, 'Token ID')
        info = await self._asset_info(asset_id)
        refreshed = await self.engine.refresh(asset_id)

        ownership = self.registry.get_ownership(asset_id)
        metadata = self.registry.get_metadata(asset_id)
        if ownership is not None:
            owner = ownership.owner_account_id
        elif metadata is not None:
            owner = metadata.owner_account_id
        else:
            owner = 'unknown'

        return AssetDescription(
            asset_id=asset_id,
            name=info.name,
            symbol=info.symbol,
            decimals=info.decimals,
            total_supply=self._ledger_quantity(
                info.total_supply, info.decimals, 'get_asset_info'
            ),
            memo=info.memo,
            treasury_account_id=info.treasury_account_id,
            owner_account_id=owner,
            balances=refreshed.balances,
            ownership=ownership.to_dict() if ownership else None,
            metadata=metadata.to_dict() if metadata else {},
            warnings=refreshed.warnings,
        )

    async def update_metadata(
        self,
        asset_id: str,
        metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Merge product attributes into the local metadata record.

        Assets unknown locally are checked on the ledger first.

        Raises:
            ValidationError: Missing asset id or metadata
            AssetNotFoundError: Unknown locally and on the ledger
        """
        asset_id = self._require_id(asset_id, 'Token ID')
        if not isinstance(metadata, dict) or not metadata:
            raise ValidationError("Token ID and metadata are required")

        async with self.registry.asset_lock(asset_id):
            if self.registry.get_metadata(asset_id) is None:
                try:
                    info = await self._call(
                        'get_asset_info', self.gateway.get_asset_info(asset_id)
                    )
                except LedgerCallError as e:
                    raise AssetNotFoundError(f"Token {asset_id} not found") from e

                ownership = self.registry.get_ownership(asset_id)
                self.registry.put_metadata(
                    asset_id,
                    MetadataRecord(
                        product_name=product_name_from(info.name),
                        owner_account_id=(
                            ownership.owner_account_id if ownership else 'unknown'
                        ),
                        created_at=self._clock(),
                    )
                )

            record = self.registry.merge_metadata(asset_id, metadata)

        logger.info(f"[STK-ORC] Metadata updated | asset_id={asset_id} | keys={sorted(metadata)}")
        return record.to_dict()

    async def asset_exists(self, asset_id: str) -> ExistsResult:
        """Ledger existence check. Never raises for ledger failures."""
        asset_id = self._require_id(asset_id, 'Token ID')
        try:
            info = await self._call('get_asset_info', self.gateway.get_asset_info(asset_id))
        except LedgerCallError as e:
            return ExistsResult(asset_id=asset_id, exists=False, error=str(e))
        return ExistsResult(
            asset_id=asset_id, exists=True, name=info.name, symbol=info.symbol
        )

    async def list_assets(self) -> List[Dict[str, Any]]:
        """Refresh and snapshot every asset with an ownership record."""
        assets = []
        for asset_id in self.registry.asset_ids():
            refreshed = await self.engine.refresh(asset_id)
            snapshot = self.registry.snapshot(asset_id)
            snapshot['assetId'] = asset_id
            snapshot['warnings'] = [w.reason for w in refreshed.warnings]
            assets.append(snapshot)
        return assets

    # ========================================================================
    # Internal Methods
    # ========================================================================

    async def _call(self, call: str, awaitable: Awaitable[T]) -> T:
        return await call_with_timeout(call, awaitable, self.call_timeout)

    async def _asset_info(self, asset_id: str) -> AssetInfo:
        try:
            return await self._call('get_asset_info', self.gateway.get_asset_info(asset_id))
        except LedgerCallError as e:
            if e.kind == LedgerFailureKind.NOT_FOUND:
                raise AssetNotFoundError(f"Token {asset_id} not found") from e
            raise

    async def _associate_tolerant(
        self,
        asset_id: str,
        account_id: str,
        signing_key: SigningKey,
        correlation_id: str
    ) -> bool:
        """Associate; returns False when the pair was already associated."""
        try:
            await self._call(
                'associate', self.gateway.associate(account_id, asset_id, signing_key)
            )
        except LedgerCallError as e:
            if e.kind != LedgerFailureKind.ALREADY_ASSOCIATED:
                raise
            logger.info(
                f"[STK-ORC] Already associated | asset_id={asset_id} | "
                f"account={account_id} | correlation_id={correlation_id}"
            )
            return False
        logger.info(
            f"[STK-ORC] Associated | asset_id={asset_id} | account={account_id} | "
            f"correlation_id={correlation_id}"
        )
        return True

    async def _ensure_buyer_associated(
        self,
        asset_id: str,
        buyer: str,
        signing_key: SigningKey,
        correlation_id: str
    ) -> bool:
        """Associate the buyer unless the ledger already lists the asset."""
        try:
            balances = await self._call(
                'get_account_balances', self.gateway.get_account_balances(buyer)
            )
            if asset_id in balances:
                return False
        except LedgerCallError as e:
            logger.warning(
                f"[STK-ORC] Buyer balance query failed, attempting association | "
                f"asset_id={asset_id} | buyer={buyer} | error={e} | "
                f"correlation_id={correlation_id}"
            )

        try:
            return await self._associate_tolerant(asset_id, buyer, signing_key, correlation_id)
        except LedgerCallError as e:
            self._log_fatal('sell', e, correlation_id, asset_id)
            metrics.record_operation('sell', 'failed', correlation_id)
            raise

    def _parse_create_quantity(self, value: Any, correlation_id: str) -> Decimal:
        try:
            quantity = parse_quantity(value, ASSET_DECIMALS, correlation_id)
        except QuantityConversionError as e:
            raise ValidationError(f"Invalid initial quantity: {e}") from e
        if quantity <= 0:
            raise ValidationError("Initial quantity must be greater than zero")
        return quantity

    @staticmethod
    def _parse_positive(value: Any, correlation_id: str) -> Decimal:
        if value is None or isinstance(value, bool):
            raise ValidationError("Quantity is required")
        try:
            quantity = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"Invalid quantity: {value}") from e
        if not quantity.is_finite() or quantity <= 0:
            raise ValidationError(f"Quantity must be a positive number, got: {value}")
        # No asset precision can hold more than this many whole units
        if quantity > max_quantity(0):
            raise ValidationError(
                f"Quantity {value} exceeds the maximum ledger supply"
            )
        return quantity

    @staticmethod
    def _raw(quantity: Decimal, decimals: int, correlation_id: str) -> int:
        try:
            return to_raw_amount(quantity, decimals, correlation_id)
        except QuantityConversionError as e:
            raise ValidationError(str(e)) from e

    @staticmethod
    def _ledger_quantity(raw_amount: int, decimals: int, call: str) -> Decimal:
        """Convert a ledger-reported amount; out-of-range values are ledger faults."""
        try:
            return from_raw_amount(raw_amount, decimals)
        except QuantityConversionError as e:
            raise LedgerCallError(
                LedgerFailureKind.OTHER,
                f"STK-LGR-002: Malformed ledger amount: {e}",
                call=call,
                cause=e
            ) from e

    @staticmethod
    def _require_id(value: Optional[str], label: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{label} is required")
        return value.strip()

    @staticmethod
    def _attributes(metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            k: v for k, v in (metadata or {}).items()
            if k not in RESERVED_METADATA_KEYS
        }

    @staticmethod
    def _new_correlation_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _log_fatal(
        operation: str,
        error: LedgerCallError,
        correlation_id: str,
        asset_id: Optional[str] = None
    ) -> None:
        logger.error(
            f"[STK-LGR-001] {operation} aborted | asset_id={asset_id} | "
            f"call={error.call} | kind={error.kind.value} | status={error.status} | "
            f"correlation_id={correlation_id}"
        )
