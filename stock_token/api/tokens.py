"""
============================================================================
Stock Token Ledger v1.0.0
Stock Token API Endpoints
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints:
    - Quantities are decimal kilograms (strings or numbers, never rounded)
    - Private keys are hex strings; they are parsed here and never logged
Side Effects:
    - Ledger transactions via the Transfer Orchestrator
    - Local Registry updates
    - Prometheus metrics updates

ENDPOINTS:
    POST /api/tokens/create     - Create a product stock token
    POST /api/tokens/associate  - Associate an account with a token
    POST /api/tokens/mint       - Add stock
    POST /api/tokens/burn       - Reduce stock
    POST /api/tokens/sell       - Transfer stock from seller to buyer
    GET  /api/tokens/ownership  - Recorded ownership for a token
    GET  /api/tokens/owned      - Tokens held by an account
    GET  /api/tokens/info       - Ledger info, balances and metadata
    POST /api/tokens/metadata   - Merge product metadata
    GET  /api/tokens/exists     - Ledger existence check
    GET  /api/tokens/all        - Every locally known token

ERROR MAPPING:
    STK-VAL-001 -> 400    STK-GRD-001 -> 403    STK-REG-001 -> 404
    STK-LGR-001 -> 502 (404 when the ledger reports the token missing)
    STK-ORC-001 -> 502 (lists the steps already committed)

============================================================================
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from stock_token.core.orchestrator import TransferOrchestrator, to_jsonable
from stock_token.errors import (
    AssetNotFoundError,
    AuthorizationError,
    PartialOperationError,
    StockTokenError,
    ValidationError,
)
from stock_token.ledger.gateway import LedgerCallError, LedgerFailureKind
from stock_token.ledger.signer import InvalidSigningKeyError, SigningKey

logger = logging.getLogger(__name__)


# ============================================================================
# Router Configuration
# ============================================================================

router = APIRouter()

Quantity = Union[str, int, float]


def get_orchestrator(request: Request) -> TransferOrchestrator:
    """Orchestrator wired by the application lifespan."""
    orchestrator = getattr(request.app.state, 'orchestrator', None)
    if orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail={
                "error_code": "STK-SYS-503",
                "message": "Service is not initialized",
                "correlation_id": None,
            }
        )
    return orchestrator


# ============================================================================
# Request Models
# ============================================================================

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateTokenRequest(_CamelModel):
    product_name: str = Field(..., alias="productName", min_length=1)
    initial_stock_kg: Quantity = Field(..., alias="initialStockKg")
    creator_account_id: Optional[str] = Field(default=None, alias="creatorAccountId")
    creator_private_key: Optional[str] = Field(default=None, alias="creatorPrivateKey")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AssociateRequest(_CamelModel):
    token_id: str = Field(..., alias="tokenId", min_length=1)
    account_id: str = Field(..., alias="accountId", min_length=1)
    private_key: str = Field(..., alias="privateKey", min_length=1)


class StockChangeRequest(_CamelModel):
    """Mint / burn body. account_id is checked against the recorded owner."""
    token_id: str = Field(..., alias="tokenId", min_length=1)
    amount_kg: Quantity = Field(..., alias="amountKg")
    account_id: Optional[str] = Field(default=None, alias="accountId")


class SellRequest(_CamelModel):
    token_id: str = Field(..., alias="tokenId", min_length=1)
    amount_kg: Quantity = Field(..., alias="amountKg")
    seller_account_id: str = Field(..., alias="sellerAccountId", min_length=1)
    seller_private_key: Optional[str] = Field(default=None, alias="sellerPrivateKey")
    buyer_account_id: str = Field(..., alias="buyerAccountId", min_length=1)
    buyer_private_key: Optional[str] = Field(default=None, alias="buyerPrivateKey")


class MetadataRequest(_CamelModel):
    token_id: str = Field(..., alias="tokenId", min_length=1)
    metadata: Dict[str, Any]


# ============================================================================
# Error Mapping
# ============================================================================

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_key(value: Optional[str], label: str) -> Optional[SigningKey]:
    if not value:
        return None
    try:
        return SigningKey.from_string(value)
    except InvalidSigningKeyError as e:
        raise ValidationError(f"Invalid {label} private key format: {e}")


def to_http_exception(error: StockTokenError, correlation_id: str) -> HTTPException:
    """Translate a service error into an HTTPException with a detail dict."""
    detail: Dict[str, Any] = {
        "error_code": error.error_code,
        "message": error.message,
        "correlation_id": correlation_id,
    }

    if isinstance(error, ValidationError):
        status_code = 400
    elif isinstance(error, AuthorizationError):
        status_code = 403
    elif isinstance(error, AssetNotFoundError):
        status_code = 404
    elif isinstance(error, PartialOperationError):
        status_code = 502
        detail["completed_steps"] = error.completed_steps
        detail["failed_step"] = error.failed_step
        if error.asset_id:
            detail["token_id"] = error.asset_id
    elif isinstance(error, LedgerCallError):
        status_code = 404 if error.kind == LedgerFailureKind.NOT_FOUND else 502
        detail["ledger_failure"] = error.kind.value
        detail["ledger_status"] = error.status
        detail["retryable"] = error.retryable
    else:
        status_code = 500

    log = logger.warning if status_code < 500 else logger.error
    log(
        f"[{error.error_code}] Request failed | status={status_code} | "
        f"message={error.message} | correlation_id={correlation_id}"
    )
    return HTTPException(status_code=status_code, detail=detail)


def _new_correlation_id() -> str:
    return str(uuid.uuid4())


async def _run(correlation_id: str, operation, /, *args, **kwargs):
    """Await an orchestrator call; errors carry the id its logs used."""
    try:
        return await operation(*args, **kwargs)
    except StockTokenError as e:
        raise to_http_exception(e, correlation_id)


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/create", status_code=201, summary="Create Stock Token")
async def create_token(
    body: CreateTokenRequest,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator)
):
    """
    Create a product stock token and hand it to the creator account.

    Without creatorPrivateKey the token stays in treasury and the response
    says the creator must associate before receiving it.
    """
    correlation_id = _new_correlation_id()

    async def _create():
        key = _parse_key(body.creator_private_key, "creator")
        return await orchestrator.create(
            body.product_name,
            body.initial_stock_kg,
            owner_account_id=body.creator_account_id,
            owner_signing_key=key,
            metadata=body.metadata,
            correlation_id=correlation_id,
        )

    result = await _run(correlation_id, _create)
    return {
        "success": True,
        **to_jsonable(result),
        "metadata": to_jsonable(orchestrator.registry.snapshot(result.asset_id)["metadata"]),
        "timestamp": _timestamp(),
    }


@router.post("/associate", summary="Associate Account")
async def associate_account(
    body: AssociateRequest,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator)
):
    correlation_id = _new_correlation_id()

    async def _associate():
        key = _parse_key(body.private_key, "account")
        return await orchestrator.associate(
            body.token_id, body.account_id, key, correlation_id=correlation_id
        )

    result = await _run(correlation_id, _associate)
    message = (
        f"Account {result.account_id} is already associated with token {result.asset_id}"
        if result.already_associated
        else f"Account {result.account_id} associated with token {result.asset_id}"
    )
    return {"success": True, **to_jsonable(result), "message": message, "timestamp": _timestamp()}


@router.post("/mint", summary="Add Stock")
async def mint_stock(
    body: StockChangeRequest,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator)
):
    correlation_id = _new_correlation_id()
    result = await _run(
        correlation_id, orchestrator.mint, body.token_id, body.amount_kg, body.account_id,
        correlation_id=correlation_id
    )
    return {"success": True, **to_jsonable(result), "timestamp": _timestamp()}


@router.post("/burn", summary="Reduce Stock")
async def burn_stock(
    body: StockChangeRequest,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator)
):
    correlation_id = _new_correlation_id()
    result = await _run(
        correlation_id, orchestrator.burn, body.token_id, body.amount_kg, body.account_id,
        correlation_id=correlation_id
    )
    return {"success": True, **to_jsonable(result), "timestamp": _timestamp()}


@router.post("/sell", summary="Sell Stock")
async def sell_stock(
    body: SellRequest,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator)
):
    """
    Transfer stock from seller to buyer.

    Selling the entire supply moves recorded ownership to the buyer.
    """
    correlation_id = _new_correlation_id()

    async def _sell():
        seller_key = _parse_key(body.seller_private_key, "seller")
        buyer_key = _parse_key(body.buyer_private_key, "buyer")
        return await orchestrator.sell(
            body.token_id,
            body.amount_kg,
            body.seller_account_id,
            body.buyer_account_id,
            seller_signing_key=seller_key,
            buyer_signing_key=buyer_key,
            correlation_id=correlation_id,
        )

    result = await _run(correlation_id, _sell)
    return {"success": True, **to_jsonable(result), "timestamp": _timestamp()}


@router.get("/ownership", summary="Token Ownership")
async def get_ownership(
    token_id: str = Query(..., alias="tokenId", min_length=1),
    orchestrator: TransferOrchestrator = Depends(get_orchestrator)
):
    record = orchestrator.registry.get_ownership(token_id)
    if record is None:
        raise to_http_exception(
            AssetNotFoundError(f"No ownership record found for token ID {token_id}"),
            _new_correlation_id()
        )
    return {
        "success": True,
        "tokenId": token_id,
        "ownership": record.to_dict(),
        "timestamp": _timestamp(),
    }


@router.get("/owned", summary="Tokens Held By Account")
async def get_owned_tokens(
    account_id: str = Query(..., alias="accountId", min_length=1),
    orchestrator: TransferOrchestrator = Depends(get_orchestrator)
):
    correlation_id = _new_correlation_id()
    owned = await _run(
        correlation_id, orchestrator.lookup_owned_assets, account_id,
        correlation_id=correlation_id
    )
    return {
        "success": True,
        "accountId": account_id,
        "tokens": to_jsonable(owned),
        "count": len(owned),
        "timestamp": _timestamp(),
    }


@router.get("/info", summary="Token Info")
async def get_token_info(
    token_id: str = Query(..., alias="tokenId", min_length=1),
    orchestrator: TransferOrchestrator = Depends(get_orchestrator)
):
    description = await _run(_new_correlation_id(), orchestrator.describe_asset, token_id)
    return {"success": True, **to_jsonable(description), "timestamp": _timestamp()}


@router.post("/metadata", summary="Update Token Metadata")
async def update_metadata(
    body: MetadataRequest,
    orchestrator: TransferOrchestrator = Depends(get_orchestrator)
):
    metadata = await _run(
        _new_correlation_id(), orchestrator.update_metadata, body.token_id, body.metadata
    )
    return {
        "success": True,
        "tokenId": body.token_id,
        "metadata": to_jsonable(metadata),
        "message": f"Metadata for token {body.token_id} updated successfully",
        "timestamp": _timestamp(),
    }


@router.get("/exists", summary="Token Existence Check")
async def token_exists(
    token_id: str = Query(..., alias="tokenId", min_length=1),
    orchestrator: TransferOrchestrator = Depends(get_orchestrator)
):
    result = await _run(_new_correlation_id(), orchestrator.asset_exists, token_id)
    return {"success": True, **to_jsonable(result), "timestamp": _timestamp()}


@router.get("/all", summary="All Known Tokens")
async def list_tokens(
    orchestrator: TransferOrchestrator = Depends(get_orchestrator)
):
    assets = await _run(_new_correlation_id(), orchestrator.list_assets)
    return {
        "success": True,
        "tokens": to_jsonable(assets),
        "count": len(assets),
        "timestamp": _timestamp(),
    }
