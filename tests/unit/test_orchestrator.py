"""
Unit Tests for the Transfer Orchestrator

Reliability Level: SOVEREIGN TIER

Runs every orchestrator flow against the simulated ledger:
- Create: hand-over to owner, treasury fallback, partial failure
- Mint: forwarding to owner, NOT_ASSOCIATED recovery, partial failure
- Burn: supply check, ledger reconciliation
- Sell: association handling, signing rules, ownership transfer rule
- Supporting operations: associate, owned lookup, describe, metadata,
  existence check, listing
"""

import asyncio
import os
import sys
from datetime import datetime, timezone
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from stock_token.core.orchestrator import TransferOrchestrator, build_memo, build_symbol
from stock_token.core.registry import LocalRegistry
from stock_token.errors import (
    AssetNotFoundError,
    AuthorizationError,
    PartialOperationError,
    ValidationError,
)
from stock_token.ledger.gateway import LedgerCallError, LedgerFailureKind
from stock_token.ledger.signer import SigningKey
from stock_token.ledger.simulated import SimulatedLedger


TREASURY = "0.0.1001"
OWNER = "0.0.2001"
BUYER = "0.0.3001"
STRANGER = "0.0.9999"

OPERATOR_KEY = SigningKey.from_string("a1" * 32)
OWNER_KEY = SigningKey.from_string("b2" * 32)
BUYER_KEY = SigningKey.from_string("c3" * 32)

FIXED_NOW = datetime(2024, 5, 1, 12, 34, 56, tzinfo=timezone.utc)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def ledger() -> SimulatedLedger:
    return SimulatedLedger(TREASURY, OPERATOR_KEY)


def _orchestrator(ledger: SimulatedLedger, **kwargs) -> TransferOrchestrator:
    return TransferOrchestrator(
        ledger, LocalRegistry(), OPERATOR_KEY, clock=lambda: FIXED_NOW, **kwargs
    )


@pytest.fixture
def orchestrator(ledger) -> TransferOrchestrator:
    return _orchestrator(ledger)


async def _owned_asset(orchestrator: TransferOrchestrator, quantity: str = "100.00") -> str:
    """Asset created for OWNER with the hand-over completed."""
    result = await orchestrator.create("Wheat", quantity, OWNER, OWNER_KEY)
    assert result.transferred
    return result.asset_id


# =============================================================================
# Create
# =============================================================================

class TestCreate:

    @pytest.mark.asyncio
    async def test_create_and_transfer_to_owner(self, orchestrator, ledger):
        result = await orchestrator.create(
            "Wheat", "100.00", OWNER, OWNER_KEY, metadata={"origin": "Free State"}
        )

        assert result.transferred is True
        assert result.holder_account == OWNER
        assert result.owner_account_id == OWNER
        assert result.name == "Wheat Stock Token"
        assert result.symbol == "WHEA-3456"
        assert orchestrator.registry.get_ownership(result.asset_id).owner_account_id == OWNER
        assert orchestrator.registry.get_balances(result.asset_id) == {
            TREASURY: Decimal("0"), OWNER: Decimal("100.00"),
        }
        assert ledger.balance_of(OWNER, result.asset_id) == 10000

        metadata = orchestrator.registry.get_metadata(result.asset_id).to_dict()
        assert metadata["origin"] == "Free State"
        assert metadata["type"] == "PRODUCT_STOCK"
        assert metadata["unit"] == "KG"
        assert metadata["ownerAccountId"] == OWNER

    @pytest.mark.asyncio
    async def test_create_without_owner_is_treasury_held(self, orchestrator):
        result = await orchestrator.create("Maize", "25.5")

        assert result.transferred is False
        assert result.owner_account_id == TREASURY
        assert result.holder_account == TREASURY
        assert "associate" not in result.message
        assert orchestrator.registry.get_balances(result.asset_id) == {TREASURY: Decimal("25.50")}

    @pytest.mark.asyncio
    async def test_owner_without_key_must_associate(self, orchestrator, ledger):
        result = await orchestrator.create("Wheat", "100.00", OWNER)

        assert result.transferred is False
        assert result.holder_account == TREASURY
        assert result.owner_account_id == OWNER
        assert "associate" in result.message
        assert ledger.call_count("associate") == 0

    @pytest.mark.asyncio
    async def test_transfer_failure_still_reports_created_asset(self, orchestrator, ledger):
        ledger.fail_next("transfer", "BUSY")

        result = await orchestrator.create("Wheat", "100.00", OWNER, OWNER_KEY)

        assert result.asset_id
        assert result.transferred is False
        assert result.transfer_error is not None
        assert result.holder_account == TREASURY
        assert orchestrator.registry.balance_of(result.asset_id, TREASURY) == Decimal("100.00")
        assert orchestrator.registry.balance_of(result.asset_id, OWNER) is None

    @pytest.mark.asyncio
    async def test_owner_already_associated_still_transfers(self, orchestrator, ledger):
        ledger.fail_next("associate", "TOKEN_ALREADY_ASSOCIATED_WITH_ACCOUNT", account_id=OWNER)

        result = await orchestrator.create("Wheat", "100.00", OWNER, OWNER_KEY)

        # The injected status skips the real association, so the ledger refuses the transfer
        assert ledger.call_count("transfer") == 1
        assert result.transferred is False
        assert "TOKEN_NOT_ASSOCIATED_TO_ACCOUNT" in result.transfer_error
        assert result.owner_account_id == OWNER

    @pytest.mark.asyncio
    async def test_existing_association_reported_by_ledger(self, orchestrator, ledger):
        ledger_associate = ledger.associate

        async def associate_after_earlier_attempt(account_id, asset_id, signing_key):
            await ledger_associate(account_id, asset_id, signing_key)
            return await ledger_associate(account_id, asset_id, signing_key)

        ledger.associate = associate_after_earlier_attempt

        result = await orchestrator.create("Wheat", "100.00", OWNER, OWNER_KEY)

        assert result.transferred is True
        assert result.transfer_error is None
        assert result.holder_account == OWNER
        assert ledger.balance_of(OWNER, result.asset_id) == 10000

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", ["1e30", "9e25", "92233720368547758.08"])
    async def test_quantity_above_supply_ceiling_rejected(self, orchestrator, ledger, quantity):
        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.create("Wheat", quantity)
        assert "STK-UNIT-003" in exc_info.value.message
        assert ledger.calls == []

    @pytest.mark.asyncio
    async def test_create_failure_records_nothing(self, orchestrator, ledger):
        ledger.fail_next("create_asset", "BUSY")

        with pytest.raises(LedgerCallError):
            await orchestrator.create("Wheat", "100.00", OWNER, OWNER_KEY)
        assert orchestrator.registry.asset_ids() == []

    @pytest.mark.asyncio
    async def test_long_product_name_fits_memo_limit(self, orchestrator, ledger):
        result = await orchestrator.create("W" * 150, "1")
        info = await ledger.get_asset_info(result.asset_id)
        assert len(info.memo.encode("utf-8")) <= 100

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,quantity", [
        ("", "10"), ("   ", "10"), ("Wheat", "0"), ("Wheat", "-5"),
        ("Wheat", "abc"), ("Wheat", "1.005"), ("Wheat", None),
    ])
    async def test_invalid_input_rejected_before_ledger(self, orchestrator, ledger, name, quantity):
        with pytest.raises(ValidationError):
            await orchestrator.create(name, quantity)
        assert ledger.calls == []


class TestNaming:

    def test_symbol(self):
        assert build_symbol("wheat", FIXED_NOW) == "WHEA-3456"
        assert build_symbol("Oat", FIXED_NOW) == "OAT-3456"

    def test_memo_truncated_on_character_boundary(self):
        memo = build_memo("é" * 80, OWNER)
        assert len(memo.encode("utf-8")) <= 100
        memo.encode("utf-8").decode("utf-8")


# =============================================================================
# Mint
# =============================================================================

class TestMint:

    @pytest.mark.asyncio
    async def test_mint_forwards_to_owner(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)

        result = await orchestrator.mint(asset_id, "50.00", OWNER)

        assert result.transferred is True
        assert result.total_supply == Decimal("150.00")
        assert orchestrator.registry.get_balances(asset_id) == {
            TREASURY: Decimal("0"), OWNER: Decimal("150.00"),
        }
        assert ledger.balance_of(OWNER, asset_id) == 15000

    @pytest.mark.asyncio
    async def test_mint_owner_not_associated(self, orchestrator, ledger):
        created = await orchestrator.create("Wheat", "100.00", OWNER)

        result = await orchestrator.mint(created.asset_id, "50.00")

        assert result.transferred is False
        assert "associate" in result.message
        assert orchestrator.registry.balance_of(created.asset_id, TREASURY) == Decimal("150.00")
        assert ledger.balance_of(TREASURY, created.asset_id) == 15000

    @pytest.mark.asyncio
    async def test_mint_transfer_failure_is_partial(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)
        ledger.fail_next("transfer", "BUSY")

        with pytest.raises(PartialOperationError) as exc_info:
            await orchestrator.mint(asset_id, "10")

        error = exc_info.value
        assert error.completed_steps == ["mint"]
        assert error.failed_step == "transfer"
        assert isinstance(error.cause, LedgerCallError)
        assert "Mint succeeded, transfer failed" in error.message
        assert (await ledger.get_asset_info(asset_id)).total_supply == 11000

    @pytest.mark.asyncio
    async def test_mint_by_non_owner_rejected(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)

        with pytest.raises(AuthorizationError):
            await orchestrator.mint(asset_id, "10", STRANGER)
        assert ledger.call_count("mint") == 0

    @pytest.mark.asyncio
    async def test_mint_unknown_asset(self, orchestrator):
        with pytest.raises(AssetNotFoundError):
            await orchestrator.mint("0.0.404", "10")
        assert not orchestrator.registry.has_lock("0.0.404")

    @pytest.mark.asyncio
    async def test_mint_huge_quantity_rejected(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)

        with pytest.raises(ValidationError):
            await orchestrator.mint(asset_id, "9e25")
        assert ledger.call_count("mint") == 0
        assert orchestrator.registry.balance_of(asset_id, OWNER) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_mint_past_supply_ceiling_rejected(self, orchestrator, ledger):
        created = await orchestrator.create("Wheat", "92233720368547758.00")

        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.mint(created.asset_id, "1")

        assert "maximum supply" in exc_info.value.message
        assert ledger.call_count("mint") == 0
        assert orchestrator.registry.balance_of(created.asset_id, TREASURY) == Decimal(
            "92233720368547758.00"
        )

    @pytest.mark.asyncio
    async def test_mint_ledger_failure_propagates(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)
        ledger.fail_next("mint", "BUSY")

        with pytest.raises(LedgerCallError) as exc_info:
            await orchestrator.mint(asset_id, "10")
        assert exc_info.value.kind == LedgerFailureKind.UNAVAILABLE
        assert orchestrator.registry.balance_of(asset_id, TREASURY) == Decimal("0")


# =============================================================================
# Burn
# =============================================================================

class TestBurn:

    @pytest.mark.asyncio
    async def test_burn_reduces_supply_and_reconciles(self, orchestrator, ledger):
        created = await orchestrator.create("Maize", "100.00")
        orchestrator.registry.set_balance(created.asset_id, TREASURY, Decimal("5.00"))

        result = await orchestrator.burn(created.asset_id, "30.00", TREASURY)

        assert result.total_supply == Decimal("70.00")
        assert result.balances == {TREASURY: Decimal("70.00")}
        assert (await ledger.get_asset_info(created.asset_id)).total_supply == 7000

    @pytest.mark.asyncio
    async def test_burn_beyond_supply_rejected(self, orchestrator, ledger):
        created = await orchestrator.create("Maize", "100.00")

        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.burn(created.asset_id, "100.01")
        assert "Insufficient stock" in exc_info.value.message
        assert "100.00 kg" in exc_info.value.message
        assert ledger.call_count("burn") == 0

    @pytest.mark.asyncio
    async def test_burn_with_owner_not_associated(self, orchestrator, ledger):
        created = await orchestrator.create("Wheat", "100.00", OWNER)
        await orchestrator.mint(created.asset_id, "50.00")

        result = await orchestrator.burn(created.asset_id, "20.00", OWNER)

        assert result.total_supply == Decimal("130.00")
        assert result.balances[TREASURY] == Decimal("130.00")

    @pytest.mark.asyncio
    async def test_burn_by_non_owner_rejected(self, orchestrator, ledger):
        created = await orchestrator.create("Maize", "100.00")
        with pytest.raises(AuthorizationError):
            await orchestrator.burn(created.asset_id, "1", STRANGER)
        assert ledger.call_count("get_asset_info") == 0

    @pytest.mark.asyncio
    async def test_refresh_warning_returned_not_raised(self, orchestrator, ledger):
        created = await orchestrator.create("Maize", "100.00")
        ledger.fail_next("get_account_balances", "BUSY", account_id=TREASURY)

        result = await orchestrator.burn(created.asset_id, "10")

        assert len(result.warnings) == 1
        assert result.balances[TREASURY] == Decimal("90.00")


# =============================================================================
# Sell
# =============================================================================

class TestSell:

    @pytest.mark.asyncio
    async def test_partial_sale_keeps_owner(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)
        await orchestrator.mint(asset_id, "50.00")

        result = await orchestrator.sell(
            asset_id, "30.00", OWNER, BUYER,
            seller_signing_key=OWNER_KEY, buyer_signing_key=BUYER_KEY
        )

        assert result.ownership_transferred is False
        assert result.owner_account_id == OWNER
        assert result.buyer_associated is True
        assert result.balances[OWNER] == Decimal("120.00")
        assert result.balances[BUYER] == Decimal("30.00")
        assert ledger.balance_of(BUYER, asset_id) == 3000

    @pytest.mark.asyncio
    async def test_full_sale_moves_ownership(self, orchestrator):
        asset_id = await _owned_asset(orchestrator)
        await orchestrator.mint(asset_id, "50.00")

        result = await orchestrator.sell(
            asset_id, "150.00", OWNER, BUYER,
            seller_signing_key=OWNER_KEY, buyer_signing_key=BUYER_KEY
        )

        record = orchestrator.registry.get_ownership(asset_id)
        assert result.ownership_transferred is True
        assert record.owner_account_id == BUYER
        assert record.previous_owner_account_id == OWNER
        assert record.last_transferred_at == FIXED_NOW
        assert orchestrator.guard.is_authorized(asset_id, BUYER)

    @pytest.mark.asyncio
    async def test_full_sale_uses_initial_supply_when_requery_fails(
        self, orchestrator, ledger, monkeypatch
    ):
        asset_id = await _owned_asset(orchestrator)
        original = ledger.get_asset_info
        seen = []

        async def flaky_info(requested):
            seen.append(requested)
            if len(seen) == 2:
                raise LedgerCallError(LedgerFailureKind.UNAVAILABLE, "down", call="get_asset_info")
            return await original(requested)

        monkeypatch.setattr(ledger, "get_asset_info", flaky_info)

        result = await orchestrator.sell(
            asset_id, "100", OWNER, BUYER, buyer_signing_key=BUYER_KEY
        )

        assert len(seen) == 2
        assert result.ownership_transferred is True

    @pytest.mark.asyncio
    async def test_requires_a_signing_key(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)
        calls_before = len(ledger.calls)

        with pytest.raises(ValidationError):
            await orchestrator.sell(asset_id, "1", OWNER, BUYER)
        assert len(ledger.calls) == calls_before

    @pytest.mark.asyncio
    async def test_operator_fallback_when_enabled(self, ledger):
        orchestrator = _orchestrator(ledger, allow_operator_signing_fallback=True)
        asset_id = await _owned_asset(orchestrator)
        await orchestrator.associate(asset_id, BUYER, BUYER_KEY)

        result = await orchestrator.sell(asset_id, "10", OWNER, BUYER)

        assert result.operator_signed is True
        assert ledger.balance_of(BUYER, asset_id) == 1000

    @pytest.mark.asyncio
    async def test_non_owner_seller_rejected(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)

        with pytest.raises(AuthorizationError):
            await orchestrator.sell(
                asset_id, "1", STRANGER, BUYER, seller_signing_key=OWNER_KEY
            )
        assert ledger.call_count("transfer") == 1

    @pytest.mark.asyncio
    async def test_already_associated_buyer_not_reassociated(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)
        await orchestrator.associate(asset_id, BUYER, BUYER_KEY)
        associations = ledger.call_count("associate")

        result = await orchestrator.sell(
            asset_id, "5", OWNER, BUYER, buyer_signing_key=BUYER_KEY
        )

        assert result.buyer_associated is False
        assert ledger.call_count("associate") == associations

    @pytest.mark.asyncio
    async def test_buyer_query_failure_falls_back_to_association(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)
        await orchestrator.associate(asset_id, BUYER, BUYER_KEY)
        ledger.fail_next("get_account_balances", "BUSY", account_id=BUYER)

        result = await orchestrator.sell(
            asset_id, "5", OWNER, BUYER, buyer_signing_key=BUYER_KEY
        )

        assert result.buyer_associated is False
        assert result.balances[BUYER] == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_buyer_query_failure_then_already_associated(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)
        await orchestrator.associate(asset_id, BUYER, BUYER_KEY)
        ledger.fail_next("get_account_balances", "BUSY", account_id=BUYER)
        ledger.fail_next("associate", "TOKEN_ALREADY_ASSOCIATED_WITH_ACCOUNT", account_id=BUYER)

        result = await orchestrator.sell(
            asset_id, "10", OWNER, BUYER, buyer_signing_key=BUYER_KEY
        )

        assert result.buyer_associated is False
        assert result.ownership_transferred is False
        assert result.balances == {
            TREASURY: Decimal("0"), OWNER: Decimal("90.00"), BUYER: Decimal("10.00"),
        }
        assert ledger.balance_of(BUYER, asset_id) == 1000

    @pytest.mark.asyncio
    async def test_association_failure_aborts_before_transfer(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)
        ledger.fail_next("associate", "INVALID_SIGNATURE", account_id=BUYER)

        with pytest.raises(LedgerCallError) as exc_info:
            await orchestrator.sell(
                asset_id, "5", OWNER, BUYER, buyer_signing_key=BUYER_KEY
            )
        assert exc_info.value.kind == LedgerFailureKind.INVALID_SIGNATURE
        assert ledger.call_count("transfer") == 1
        assert orchestrator.registry.balance_of(asset_id, OWNER) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_transfer_failure_after_association_is_partial(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)
        ledger.fail_next("transfer", "INSUFFICIENT_TOKEN_BALANCE")

        with pytest.raises(PartialOperationError) as exc_info:
            await orchestrator.sell(
                asset_id, "5", OWNER, BUYER, buyer_signing_key=BUYER_KEY
            )
        assert exc_info.value.completed_steps == ["associate"]
        assert ledger.is_associated(BUYER, asset_id)
        assert orchestrator.registry.balance_of(asset_id, OWNER) == Decimal("100.00")
        assert orchestrator.registry.balance_of(asset_id, BUYER) == Decimal("0")

    @pytest.mark.asyncio
    async def test_transfer_to_unassociated_buyer_without_key(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)

        with pytest.raises(LedgerCallError) as exc_info:
            await orchestrator.sell(asset_id, "5", OWNER, BUYER, seller_signing_key=OWNER_KEY)
        assert exc_info.value.kind == LedgerFailureKind.NOT_ASSOCIATED

    @pytest.mark.asyncio
    async def test_same_account_rejected(self, orchestrator):
        asset_id = await _owned_asset(orchestrator)
        with pytest.raises(ValidationError):
            await orchestrator.sell(asset_id, "5", OWNER, OWNER, seller_signing_key=OWNER_KEY)

    @pytest.mark.asyncio
    async def test_concurrent_sales_do_not_lose_updates(self):
        ledger = SimulatedLedger(TREASURY, OPERATOR_KEY, latency_seconds=0.001)
        orchestrator = _orchestrator(ledger)
        asset_id = await _owned_asset(orchestrator)
        await orchestrator.associate(asset_id, BUYER, BUYER_KEY)

        await asyncio.gather(*[
            orchestrator.sell(asset_id, "10", OWNER, BUYER, seller_signing_key=OWNER_KEY)
            for _ in range(5)
        ])

        assert orchestrator.registry.balance_of(asset_id, OWNER) == Decimal("50.00")
        assert orchestrator.registry.balance_of(asset_id, BUYER) == Decimal("50.00")


# =============================================================================
# Supporting Operations
# =============================================================================

class TestAssociate:

    @pytest.mark.asyncio
    async def test_associate_is_idempotent(self, orchestrator):
        asset_id = await _owned_asset(orchestrator)

        first = await orchestrator.associate(asset_id, BUYER, BUYER_KEY)
        second = await orchestrator.associate(asset_id, BUYER, BUYER_KEY)

        assert first.already_associated is False
        assert second.already_associated is True
        assert orchestrator.registry.balance_of(asset_id, BUYER) == Decimal("0")

    @pytest.mark.asyncio
    async def test_associate_keeps_existing_balance(self, orchestrator):
        asset_id = await _owned_asset(orchestrator)
        result = await orchestrator.associate(asset_id, OWNER, OWNER_KEY)

        assert result.already_associated is True
        assert orchestrator.registry.balance_of(asset_id, OWNER) == Decimal("100.00")


class TestLookupOwnedAssets:

    @pytest.mark.asyncio
    async def test_rebuilds_registry_from_ledger(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)
        fresh = _orchestrator(ledger)

        owned = await fresh.lookup_owned_assets(OWNER)

        assert len(owned) == 1
        assert owned[0].asset_id == asset_id
        assert owned[0].balance == Decimal("100.00")
        assert owned[0].is_owner is True
        assert owned[0].metadata["productName"] == "Wheat"
        assert fresh.registry.get_ownership(asset_id).owner_account_id == OWNER
        assert fresh.registry.balance_of(asset_id, OWNER) == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_existing_records_are_kept(self, orchestrator):
        asset_id = await _owned_asset(orchestrator)
        await orchestrator.associate(asset_id, BUYER, BUYER_KEY)

        owned = await orchestrator.lookup_owned_assets(BUYER)

        assert owned[0].is_owner is False
        assert orchestrator.registry.get_ownership(asset_id).owner_account_id == OWNER

    @pytest.mark.asyncio
    async def test_asset_info_failure_skips_asset(self, orchestrator, ledger):
        await _owned_asset(orchestrator)
        ledger.fail_next("get_asset_info", "BUSY")

        assert await orchestrator.lookup_owned_assets(OWNER) == []


class TestDescribeAsset:

    @pytest.mark.asyncio
    async def test_known_asset(self, orchestrator):
        asset_id = await _owned_asset(orchestrator)

        description = await orchestrator.describe_asset(asset_id)

        assert description.owner_account_id == OWNER
        assert description.total_supply == Decimal("100.00")
        assert description.symbol == "WHEA-3456"
        assert description.balances[OWNER] == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_unknown_locally(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)

        description = await _orchestrator(ledger).describe_asset(asset_id)

        assert description.owner_account_id == "unknown"
        assert description.metadata == {}
        assert description.balances == {}

    @pytest.mark.asyncio
    async def test_unknown_on_ledger(self, orchestrator):
        with pytest.raises(AssetNotFoundError):
            await orchestrator.describe_asset("0.0.404")


class TestUpdateMetadata:

    @pytest.mark.asyncio
    async def test_merge_known_asset(self, orchestrator):
        asset_id = await _owned_asset(orchestrator)

        metadata = await orchestrator.update_metadata(asset_id, {"grade": "A"})

        assert metadata["grade"] == "A"
        assert metadata["productName"] == "Wheat"
        assert "updatedAt" in metadata

    @pytest.mark.asyncio
    async def test_asset_known_only_on_ledger(self, orchestrator, ledger):
        asset_id = await _owned_asset(orchestrator)

        metadata = await _orchestrator(ledger).update_metadata(asset_id, {"grade": "B"})

        assert metadata["grade"] == "B"
        assert metadata["productName"] == "Wheat"

    @pytest.mark.asyncio
    async def test_unknown_asset(self, orchestrator):
        with pytest.raises(AssetNotFoundError):
            await orchestrator.update_metadata("0.0.404", {"grade": "A"})

    @pytest.mark.asyncio
    async def test_empty_metadata_rejected(self, orchestrator):
        with pytest.raises(ValidationError):
            await orchestrator.update_metadata("0.0.5000", {})


class TestExistsAndList:

    @pytest.mark.asyncio
    async def test_exists(self, orchestrator):
        asset_id = await _owned_asset(orchestrator)

        found = await orchestrator.asset_exists(asset_id)
        missing = await orchestrator.asset_exists("0.0.404")

        assert found.exists is True
        assert found.name == "Wheat Stock Token"
        assert missing.exists is False
        assert missing.error

    @pytest.mark.asyncio
    async def test_list_assets(self, orchestrator):
        first = await _owned_asset(orchestrator)
        second = (await orchestrator.create("Maize", "5")).asset_id

        assets = await orchestrator.list_assets()

        assert [a["assetId"] for a in assets] == [first, second]
        assert assets[0]["ownership"]["ownerAccountId"] == OWNER
        assert assets[1]["balances"] == {TREASURY: "5.00"}
