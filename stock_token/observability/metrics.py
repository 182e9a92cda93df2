"""
============================================================================
Stock Token Ledger v1.0.0
Prometheus Metrics
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Side Effects: Updates Prometheus metrics registry

METRICS EXPOSED
---------------
- stock_token_operations_total: Orchestrator operations by name and outcome
- stock_token_ledger_calls_total: Gateway calls by call and outcome
- stock_token_reconciliation_warnings_total: Accounts left stale by refresh
- stock_token_ledger_call_seconds: Gateway call latency

Recording never raises: a metrics failure is logged and the business
operation continues.

============================================================================
"""

import logging
from typing import Optional

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS DEFINITIONS
# ============================================================================

OPERATIONS = Counter(
    "stock_token_operations_total",
    "Orchestrator operations by name and outcome",
    ["operation", "outcome"]
)

LEDGER_CALLS = Counter(
    "stock_token_ledger_calls_total",
    "Ledger gateway calls by call and outcome",
    ["call", "outcome"]
)

RECONCILIATION_WARNINGS = Counter(
    "stock_token_reconciliation_warnings_total",
    "Balance refresh failures left as stale local entries",
    ["asset_id"]
)

# Buckets: 50ms .. 30s (the default per-call timeout)
LEDGER_CALL_SECONDS = Histogram(
    "stock_token_ledger_call_seconds",
    "Ledger gateway call latency in seconds",
    ["call"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)


# ============================================================================
# METRIC UPDATE FUNCTIONS
# ============================================================================

def record_operation(
    operation: str,
    outcome: str,
    correlation_id: Optional[str] = None
) -> None:
    """
    Record a finished orchestrator operation.

    Args:
        operation: Operation name (e.g., "sell")
        outcome: "success", "partial", "rejected" or "failed"
        correlation_id: Optional tracking ID
    """
    try:
        OPERATIONS.labels(operation=operation, outcome=outcome).inc()
        logger.debug(
            "Metric: operation | operation=%s | outcome=%s | correlation_id=%s",
            operation, outcome, correlation_id
        )
    except Exception as e:
        logger.error(
            "[OBS-001] Failed to record operation metric | error=%s",
            str(e)
        )


def record_ledger_call(
    call: str,
    outcome: str,
    duration_seconds: Optional[float] = None
) -> None:
    """
    Record one gateway call.

    Args:
        call: Gateway method name
        outcome: "SUCCESS" or a LedgerFailureKind value
        duration_seconds: Observed latency (successful calls only)
    """
    try:
        LEDGER_CALLS.labels(call=call, outcome=outcome).inc()
        if duration_seconds is not None:
            LEDGER_CALL_SECONDS.labels(call=call).observe(duration_seconds)
    except Exception as e:
        logger.error(
            "[OBS-002] Failed to record ledger_call metric | error=%s",
            str(e)
        )


def record_reconciliation_warning(asset_id: str) -> None:
    try:
        RECONCILIATION_WARNINGS.labels(asset_id=asset_id).inc()
    except Exception as e:
        logger.error(
            "[OBS-003] Failed to record reconciliation_warning metric | error=%s",
            str(e)
        )
