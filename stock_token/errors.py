# ============================================================================
# Stock Token Ledger v1.0.0
# Error Taxonomy
# ============================================================================
#
# Propagation policy:
#   - ValidationError / AuthorizationError surface before any ledger call
#   - Recoverable ledger conditions are absorbed by the orchestrator
#   - Fatal ledger failures abort the remaining steps; steps already
#     committed on the ledger are reported, never rolled back
#   - Reconciliation warnings are logged and returned, never raised
#
# Error Codes:
#   - STK-VAL-001: Invalid input
#   - STK-GRD-001: Ownership check failed
#   - STK-REG-001: Asset not found
#   - STK-ORC-001: Operation partially committed
#   - STK-CFG-001: Configuration missing or invalid
#
# ============================================================================

from typing import List, Optional


class ErrorCode:
    """Error codes for audit logging and API responses."""
    VALIDATION = "STK-VAL-001"
    AUTHORIZATION = "STK-GRD-001"
    NOT_FOUND = "STK-REG-001"
    PARTIAL_OPERATION = "STK-ORC-001"
    LEDGER = "STK-LGR-001"
    CONFIGURATION = "STK-CFG-001"


class StockTokenError(Exception):
    """Base exception for all service errors."""

    error_code = "STK-000"

    def __init__(self, message: str, error_code: Optional[str] = None):
        if error_code is not None:
            self.error_code = error_code
        self.message = message
        super().__init__(message)


class ValidationError(StockTokenError):
    """Missing or invalid input. Raised before any ledger call."""
    error_code = ErrorCode.VALIDATION


class AuthorizationError(StockTokenError):
    """Ownership Guard rejection. The guarded ledger step was not attempted."""
    error_code = ErrorCode.AUTHORIZATION


class AssetNotFoundError(StockTokenError):
    """Asset unknown locally and on the ledger."""
    error_code = ErrorCode.NOT_FOUND


class ConfigurationError(StockTokenError):
    """Required configuration missing or invalid (fail closed at startup)."""
    error_code = ErrorCode.CONFIGURATION


class PartialOperationError(StockTokenError):
    """
    A later step of a multi-step operation failed fatally.

    Earlier steps are already committed on the ledger and are listed in
    completed_steps so the caller can take corrective action instead of
    assuming total failure.
    """

    error_code = ErrorCode.PARTIAL_OPERATION

    def __init__(
        self,
        message: str,
        completed_steps: List[str],
        failed_step: str,
        cause: Optional[Exception] = None,
        asset_id: Optional[str] = None
    ):
        self.completed_steps = list(completed_steps)
        self.failed_step = failed_step
        self.cause = cause
        self.asset_id = asset_id
        super().__init__(message)
