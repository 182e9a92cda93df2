"""
============================================================================
Stock Token Ledger v1.0.0
FastAPI Application Entry Point
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Side Effects: Ledger transactions through the configured gateway

SOVEREIGN MANDATE:
- Fail closed at startup on missing operator credentials
- One gateway, registry, reconciliation engine and orchestrator per process
- Registry state is volatile; restart rebuilds it from the ledger on demand

Run:
    uvicorn stock_token.main:app --port 3003

============================================================================
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from stock_token import __version__
from stock_token.api.tokens import router as tokens_router
from stock_token.config import StockTokenConfig, build_gateway, get_config
from stock_token.core.orchestrator import TransferOrchestrator
from stock_token.core.reconciliation import ReconciliationEngine
from stock_token.core.registry import LocalRegistry
from stock_token.ledger.gateway import LedgerGateway

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s'
)
logger = logging.getLogger(__name__)


def build_orchestrator(
    config: StockTokenConfig,
    gateway: LedgerGateway
) -> TransferOrchestrator:
    """Wire registry, reconciliation engine and orchestrator around a gateway."""
    registry = LocalRegistry()
    engine = ReconciliationEngine(gateway, registry, config.call_timeout_seconds)
    return TransferOrchestrator(
        gateway=gateway,
        registry=registry,
        operator_key=config.operator_key,
        engine=engine,
        call_timeout=config.call_timeout_seconds,
        allow_operator_signing_fallback=config.allow_operator_signing_fallback,
    )


# ============================================================================
# APPLICATION LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: load config (fail closed), build gateway and orchestrator.
    Shutdown: close the gateway transport.
    """
    config = get_config()
    gateway = build_gateway(config)
    app.state.config = config
    app.state.orchestrator = build_orchestrator(config, gateway)

    logger.info(
        f"[STK-MAIN] Stock token service v{__version__} started | "
        f"ledger_mode={config.ledger_mode.value} | "
        f"environment={config.environment.value} | "
        f"treasury={config.operator_account_id} | port={config.port}"
    )

    try:
        yield
    finally:
        await gateway.close()
        logger.info("[STK-MAIN] Stock token service stopped")


# ============================================================================
# FASTAPI APPLICATION
# ============================================================================

app = FastAPI(
    title="Stock Token Ledger",
    description=(
        "Product stock as fungible ledger tokens: create, restock, reduce "
        "and sell, with a reconciled local view of ownership and balances."
    ),
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Unhandled errors become a 500 with an error code; details stay in the log."""
    error_code = "STK-SYS-500"
    logger.exception(f"[{error_code}] Unhandled exception | path={request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "error_code": error_code,
            "message": "Internal server error. This incident has been logged.",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


app.include_router(
    tokens_router,
    prefix="/api/tokens",
    tags=["Tokens"]
)


@app.get("/health", summary="Health Check", tags=["System"])
async def health_check(request: Request):
    config = getattr(request.app.state, 'config', None)
    return {
        "status": "healthy",
        "version": __version__,
        "config": config.to_dict() if config else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/metrics", summary="Prometheus Metrics", tags=["Observability"])
async def metrics():
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "stock_token.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=get_config().port,
    )
