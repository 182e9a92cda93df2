# ============================================================================
# Stock Token Ledger v1.0.0
# Ownership Guard - Local Owner Check
# ============================================================================
#
# Purpose: Reject mint/burn/sell requests from anyone but the recorded owner
#
# The guard is advisory: it reads only the Local Registry and cannot stop a
# key holder from transacting against the ledger directly. Assets without
# an ownership record pass; existence is validated elsewhere.
#
# Error Codes:
#   - STK-GRD-001: Requester is not the recorded owner
#
# ============================================================================

import logging
from typing import Optional

from stock_token.core.registry import LocalRegistry
from stock_token.errors import AuthorizationError

logger = logging.getLogger(__name__)


class OwnershipGuard:
    """
    Compares a requesting account with the recorded owner.

    Example Usage:
        guard = OwnershipGuard(registry)
        guard.authorize(asset_id, request.account_id, action="add stock")
    """

    def __init__(self, registry: LocalRegistry):
        self.registry = registry

    def is_authorized(self, asset_id: str, requesting_account: str) -> bool:
        record = self.registry.get_ownership(asset_id)
        if record is None:
            return True
        return record.owner_account_id == requesting_account

    def authorize(
        self,
        asset_id: str,
        requesting_account: str,
        action: str = "modify stock",
        correlation_id: Optional[str] = None
    ) -> None:
        """
        Raise AuthorizationError unless requesting_account may act on asset_id.

        Raises:
            AuthorizationError: Requester differs from the recorded owner
        """
        if self.is_authorized(asset_id, requesting_account):
            return

        owner = self.registry.get_ownership(asset_id).owner_account_id
        logger.warning(
            f"[STK-GRD-001] Unauthorized {action} | asset_id={asset_id} | "
            f"requester={requesting_account} | owner={owner} | "
            f"correlation_id={correlation_id}"
        )
        raise AuthorizationError(
            f"Unauthorized: Only the token owner can {action}"
        )
