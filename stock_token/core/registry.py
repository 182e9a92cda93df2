# ============================================================================
# Stock Token Ledger v1.0.0
# Local Registry - Ownership, Metadata and Balance Cache
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Process-local view of asset ownership, metadata and balances
#
# SOVEREIGN MANDATE:
#   - The registry exclusively owns its three maps; accessors return copies
#   - Read-modify-write sequences run under the asset's lock
#   - Balances are Decimal kilograms, never floats
#   - Nothing is persisted; every entry is rebuildable from the ledger
#
# The balance table is advisory between reconciliation passes: its sum
# approximates total supply and may drift until the next refresh.
#
# ============================================================================

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional

from stock_token.ledger.units import to_quantity

logger = logging.getLogger(__name__)

PRODUCT_STOCK_TYPE = 'PRODUCT_STOCK'
KG_UNIT = 'KG'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Records
# ============================================================================

@dataclass(frozen=True)
class OwnershipRecord:
    """
    Recorded owner of an asset.

    previous_owner_account_id and last_transferred_at are set only by a
    full-supply sale.
    """
    owner_account_id: str
    created_at: datetime
    product_name: str
    previous_owner_account_id: Optional[str] = None
    last_transferred_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'ownerAccountId': self.owner_account_id,
            'createdAt': self.created_at.isoformat(),
            'productName': self.product_name,
        }
        if self.previous_owner_account_id is not None:
            data['previousOwnerAccountId'] = self.previous_owner_account_id
        if self.last_transferred_at is not None:
            data['lastTransferredAt'] = self.last_transferred_at.isoformat()
        return data


@dataclass
class MetadataRecord:
    """Product attributes plus the fixed stock-token fields."""
    product_name: str
    owner_account_id: str
    created_at: datetime
    type: str = PRODUCT_STOCK_TYPE
    unit: str = KG_UNIT
    attributes: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'productName': self.product_name,
            'type': self.type,
            'unit': self.unit,
            'ownerAccountId': self.owner_account_id,
            'createdAt': self.created_at.isoformat(),
        }
        data.update(self.attributes)
        if self.updated_at is not None:
            data['updatedAt'] = self.updated_at.isoformat()
        return data


# ============================================================================
# Local Registry
# ============================================================================

class LocalRegistry:
    """
    In-memory registry keyed by asset identifier.

    Writers take asset_lock(asset_id) around their whole read-modify-write
    sequence. Different assets use different locks and never block each
    other. The registry methods themselves do not await, so each single
    call is atomic with respect to the event loop.

    Example Usage:
        async with registry.asset_lock(asset_id):
            registry.adjust_balance(asset_id, seller, -quantity)
            registry.adjust_balance(asset_id, buyer, quantity)
    """

    def __init__(self):
        self._ownership: Dict[str, OwnershipRecord] = {}
        self._metadata: Dict[str, MetadataRecord] = {}
        self._balances: Dict[str, Dict[str, Decimal]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    # ========================================================================
    # Locking
    # ========================================================================

    def lock_for(self, asset_id: str) -> asyncio.Lock:
        """Per-asset lock, created on first use."""
        lock = self._locks.get(asset_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[asset_id] = lock
        return lock

    @asynccontextmanager
    async def asset_lock(self, asset_id: str) -> AsyncIterator[None]:
        """
        Hold the asset's lock for the duration of the block.

        The lock is dropped once its last user leaves and the registry
        holds no record for the asset, so ids that turn out not to exist
        do not leave locks behind.
        """
        lock = self.lock_for(asset_id)
        self._lock_users[asset_id] = self._lock_users.get(asset_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[asset_id] - 1
            if remaining:
                self._lock_users[asset_id] = remaining
            else:
                del self._lock_users[asset_id]
                if not self.knows(asset_id) and self._locks.get(asset_id) is lock:
                    del self._locks[asset_id]

    def knows(self, asset_id: str) -> bool:
        """True when any ownership, metadata or balance entry exists."""
        return (
            asset_id in self._ownership
            or asset_id in self._metadata
            or asset_id in self._balances
        )

    def has_lock(self, asset_id: str) -> bool:
        return asset_id in self._locks

    # ========================================================================
    # Ownership
    # ========================================================================

    def get_ownership(self, asset_id: str) -> Optional[OwnershipRecord]:
        return self._ownership.get(asset_id)

    def put_ownership(self, asset_id: str, record: OwnershipRecord) -> None:
        self._ownership[asset_id] = record
        logger.debug(
            f"[STK-REG] Ownership recorded | asset_id={asset_id} | "
            f"owner={record.owner_account_id}"
        )

    def ensure_ownership(self, asset_id: str, record: OwnershipRecord) -> OwnershipRecord:
        """Store record unless one exists; return the stored record."""
        existing = self._ownership.get(asset_id)
        if existing is not None:
            return existing
        self.put_ownership(asset_id, record)
        return record

    def transfer_ownership(
        self,
        asset_id: str,
        new_owner: str,
        previous_owner: str,
        transferred_at: Optional[datetime] = None
    ) -> OwnershipRecord:
        """Move recorded ownership after a full-supply sale."""
        current = self._ownership.get(asset_id)
        if current is None:
            raise KeyError(asset_id)
        updated = replace(
            current,
            owner_account_id=new_owner,
            previous_owner_account_id=previous_owner,
            last_transferred_at=transferred_at or utc_now(),
        )
        self._ownership[asset_id] = updated
        logger.info(
            f"[STK-REG] Ownership transferred | asset_id={asset_id} | "
            f"from={previous_owner} | to={new_owner}"
        )
        return updated

    def asset_ids(self) -> List[str]:
        """Assets with an ownership record, in creation order."""
        return list(self._ownership)

    # ========================================================================
    # Metadata
    # ========================================================================

    def get_metadata(self, asset_id: str) -> Optional[MetadataRecord]:
        record = self._metadata.get(asset_id)
        return copy.deepcopy(record) if record is not None else None

    def put_metadata(self, asset_id: str, record: MetadataRecord) -> None:
        self._metadata[asset_id] = copy.deepcopy(record)

    def ensure_metadata(self, asset_id: str, record: MetadataRecord) -> None:
        if asset_id not in self._metadata:
            self.put_metadata(asset_id, record)

    def merge_metadata(
        self,
        asset_id: str,
        attributes: Dict[str, Any]
    ) -> MetadataRecord:
        """
        Merge attributes into an existing record and stamp updated_at.

        Keys matching a fixed field update that field.
        """
        record = self._metadata.get(asset_id)
        if record is None:
            raise KeyError(asset_id)

        fixed = {
            'productName': 'product_name',
            'ownerAccountId': 'owner_account_id',
            'type': 'type',
            'unit': 'unit',
        }
        for key, value in attributes.items():
            if key in fixed:
                setattr(record, fixed[key], value)
            elif key not in ('createdAt', 'updatedAt'):
                record.attributes[key] = copy.deepcopy(value)
        record.updated_at = utc_now()
        return copy.deepcopy(record)

    # ========================================================================
    # Balances
    # ========================================================================

    def get_balances(self, asset_id: str) -> Optional[Dict[str, Decimal]]:
        table = self._balances.get(asset_id)
        return dict(table) if table is not None else None

    def balance_of(self, asset_id: str, account_id: str) -> Optional[Decimal]:
        return self._balances.get(asset_id, {}).get(account_id)

    def known_accounts(self, asset_id: str) -> List[str]:
        return list(self._balances.get(asset_id, {}))

    def set_balance(self, asset_id: str, account_id: str, quantity: Decimal) -> Decimal:
        # Ledger-derived values already carry the asset's own precision
        value = quantity if isinstance(quantity, Decimal) else to_quantity(quantity)
        self._balances.setdefault(asset_id, {})[account_id] = value
        return value

    def ensure_balance(self, asset_id: str, account_id: str) -> Decimal:
        """Create a zero entry unless the account already has one."""
        table = self._balances.setdefault(asset_id, {})
        if account_id not in table:
            table[account_id] = to_quantity(0)
        return table[account_id]

    def adjust_balance(self, asset_id: str, account_id: str, delta: Decimal) -> Decimal:
        """Add delta to an entry (missing entries start at zero)."""
        current = self.ensure_balance(asset_id, account_id)
        return self.set_balance(asset_id, account_id, current + delta)

    def total_balance(self, asset_id: str) -> Decimal:
        """Local approximation of total supply."""
        return sum(self._balances.get(asset_id, {}).values(), to_quantity(0))

    # ========================================================================
    # Snapshot
    # ========================================================================

    def snapshot(self, asset_id: str) -> Dict[str, Any]:
        """Serializable view of one asset (Decimals rendered as strings)."""
        ownership = self._ownership.get(asset_id)
        metadata = self._metadata.get(asset_id)
        balances = self._balances.get(asset_id, {})
        return {
            'ownership': ownership.to_dict() if ownership else None,
            'metadata': metadata.to_dict() if metadata else {},
            'balances': {k: str(v) for k, v in balances.items()},
        }
