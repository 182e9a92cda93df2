"""
============================================================================
Stock Token Ledger v1.0.0
Configuration
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)

This module provides configuration management for the service:
- Environment variable parsing with type safety
- Default values for optional configuration
- Fail-closed behavior on missing operator credentials (STK-CFG-001)
- Gateway factory selecting the simulated or network ledger

ENVIRONMENT VARIABLES:
    - LEDGER_MODE: SIMULATED (default) or NETWORK
    - LEDGER_BASE_URL: Relay base URL for NETWORK mode
    - LEDGER_OPERATOR_ACCOUNT_ID: Treasury / operator account (REQUIRED)
    - LEDGER_OPERATOR_PRIVATE_KEY: Treasury signing key (REQUIRED)
    - LEDGER_CALL_TIMEOUT_SECONDS: Per gateway call timeout (default: 30)
    - STOCK_TOKEN_ENVIRONMENT: development / test / production
    - ALLOW_OPERATOR_SIGNING_FALLBACK: Test-only treasury signing (default: false)
    - PORT: HTTP port (default: 3003)

ERROR CODES:
    - STK-CFG-001: Required configuration missing or invalid

============================================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
import logging
import os

from stock_token.errors import ConfigurationError, ErrorCode
from stock_token.ledger.gateway import LedgerGateway
from stock_token.ledger.signer import InvalidSigningKeyError, SigningKey

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================

class LedgerMode(Enum):
    """Which gateway implementation backs the service."""
    SIMULATED = "SIMULATED"
    NETWORK = "NETWORK"


class Environment(Enum):
    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_LEDGER_MODE = LedgerMode.SIMULATED
DEFAULT_LEDGER_BASE_URL = "http://localhost:8545"
DEFAULT_CALL_TIMEOUT_SECONDS = 30.0
DEFAULT_ENVIRONMENT = Environment.DEVELOPMENT
DEFAULT_PORT = 3003

_TRUTHY = ("true", "1", "yes", "on")


# =============================================================================
# StockTokenConfig Class
# =============================================================================

@dataclass
class StockTokenConfig:
    """
    Service configuration.

    The operator private key is kept as the raw string so validate() can
    report a malformed key as a configuration error instead of failing
    at first use.
    """

    operator_account_id: str = ""
    operator_private_key: str = ""
    ledger_mode: LedgerMode = DEFAULT_LEDGER_MODE
    ledger_base_url: str = DEFAULT_LEDGER_BASE_URL
    call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS
    environment: Environment = DEFAULT_ENVIRONMENT
    allow_operator_signing_fallback: bool = False
    port: int = DEFAULT_PORT

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def operator_key(self) -> SigningKey:
        return SigningKey.from_string(self.operator_private_key)

    def validate(self) -> None:
        """
        Validate configuration completeness.

        Raises:
            ConfigurationError: Missing credentials, bad timeout, or
                fallback signing enabled in production
        """
        errors: List[str] = []

        if not self.operator_account_id.strip():
            errors.append("LEDGER_OPERATOR_ACCOUNT_ID must be set")

        if not self.operator_private_key.strip():
            errors.append("LEDGER_OPERATOR_PRIVATE_KEY must be set")
        else:
            try:
                SigningKey.from_string(self.operator_private_key)
            except InvalidSigningKeyError as e:
                errors.append(f"LEDGER_OPERATOR_PRIVATE_KEY is invalid: {e}")

        if self.call_timeout_seconds <= 0:
            errors.append(
                f"LEDGER_CALL_TIMEOUT_SECONDS must be positive, got: "
                f"{self.call_timeout_seconds}"
            )

        if self.ledger_mode == LedgerMode.NETWORK and not self.ledger_base_url.strip():
            errors.append("LEDGER_BASE_URL must be set in NETWORK mode")

        if self.allow_operator_signing_fallback and self.is_production:
            errors.append(
                "ALLOW_OPERATOR_SIGNING_FALLBACK cannot be enabled in production"
            )

        if errors:
            error_msg = "Configuration validation failed: " + "; ".join(errors)
            logger.error(f"[{ErrorCode.CONFIGURATION}] {error_msg}")
            raise ConfigurationError(error_msg)

        logger.info(
            f"[STK-CONFIG] Configuration validated | "
            f"ledger_mode={self.ledger_mode.value} | "
            f"environment={self.environment.value} | "
            f"operator={self.operator_account_id} | "
            f"call_timeout_seconds={self.call_timeout_seconds}"
        )
        if self.allow_operator_signing_fallback:
            logger.warning(
                "[STK-CONFIG] UNSAFE: operator signing fallback enabled | "
                "treasury key will sign user transfers without user keys"
            )

    @classmethod
    def from_environment(cls, validate: bool = True) -> "StockTokenConfig":
        """
        Load configuration from environment variables.

        Unknown mode/environment values raise ConfigurationError; bad
        numeric values fall back to defaults with a warning.

        Args:
            validate: Whether to validate configuration after loading

        Raises:
            ConfigurationError: If required configuration is missing
        """
        mode_str = os.environ.get("LEDGER_MODE", DEFAULT_LEDGER_MODE.value).strip().upper()
        try:
            ledger_mode = LedgerMode(mode_str)
        except ValueError:
            raise ConfigurationError(
                f"LEDGER_MODE must be SIMULATED or NETWORK, got: {mode_str}"
            )

        env_str = os.environ.get(
            "STOCK_TOKEN_ENVIRONMENT", DEFAULT_ENVIRONMENT.value
        ).strip().lower()
        try:
            environment = Environment(env_str)
        except ValueError:
            raise ConfigurationError(
                f"STOCK_TOKEN_ENVIRONMENT must be development, test or production, "
                f"got: {env_str}"
            )

        timeout_str = os.environ.get(
            "LEDGER_CALL_TIMEOUT_SECONDS", str(DEFAULT_CALL_TIMEOUT_SECONDS)
        )
        try:
            call_timeout_seconds = float(timeout_str.strip())
        except ValueError:
            logger.warning(
                f"[STK-CONFIG] Invalid LEDGER_CALL_TIMEOUT_SECONDS value: {timeout_str}, "
                f"using default: {DEFAULT_CALL_TIMEOUT_SECONDS}"
            )
            call_timeout_seconds = DEFAULT_CALL_TIMEOUT_SECONDS

        port_str = os.environ.get("PORT", str(DEFAULT_PORT))
        try:
            port = int(port_str.strip())
        except ValueError:
            logger.warning(
                f"[STK-CONFIG] Invalid PORT value: {port_str}, using default: {DEFAULT_PORT}"
            )
            port = DEFAULT_PORT

        fallback = os.environ.get(
            "ALLOW_OPERATOR_SIGNING_FALLBACK", "false"
        ).strip().lower() in _TRUTHY

        config = cls(
            operator_account_id=os.environ.get("LEDGER_OPERATOR_ACCOUNT_ID", "").strip(),
            operator_private_key=os.environ.get("LEDGER_OPERATOR_PRIVATE_KEY", "").strip(),
            ledger_mode=ledger_mode,
            ledger_base_url=os.environ.get("LEDGER_BASE_URL", DEFAULT_LEDGER_BASE_URL).strip(),
            call_timeout_seconds=call_timeout_seconds,
            environment=environment,
            allow_operator_signing_fallback=fallback,
            port=port,
        )

        logger.info(
            f"[STK-CONFIG] Loading configuration from environment | "
            f"LEDGER_MODE={ledger_mode.value} | "
            f"STOCK_TOKEN_ENVIRONMENT={environment.value} | "
            f"LEDGER_CALL_TIMEOUT_SECONDS={call_timeout_seconds} | PORT={port}"
        )

        if validate:
            config.validate()

        return config

    def to_dict(self) -> dict:
        """Configuration for logging and /health. Never includes the key."""
        return {
            "ledger_mode": self.ledger_mode.value,
            "ledger_base_url": self.ledger_base_url,
            "operator_account_id": self.operator_account_id,
            "operator_key_configured": bool(self.operator_private_key),
            "call_timeout_seconds": self.call_timeout_seconds,
            "environment": self.environment.value,
            "allow_operator_signing_fallback": self.allow_operator_signing_fallback,
            "port": self.port,
        }


# =============================================================================
# Gateway Factory
# =============================================================================

def build_gateway(config: StockTokenConfig) -> LedgerGateway:
    """Instantiate the gateway selected by LEDGER_MODE."""
    if config.ledger_mode == LedgerMode.NETWORK:
        from stock_token.ledger.backoff import QueryRetryPolicy
        from stock_token.ledger.http_gateway import HttpLedgerGateway
        # Each HTTP attempt gets a share of the call deadline so retries can run
        retry_policy = QueryRetryPolicy()
        return HttpLedgerGateway(
            base_url=config.ledger_base_url,
            operator_account_id=config.operator_account_id,
            operator_key=config.operator_key,
            timeout=retry_policy.attempt_timeout(config.call_timeout_seconds),
            retry_policy=retry_policy,
        )

    from stock_token.ledger.simulated import SimulatedLedger
    return SimulatedLedger(config.operator_account_id, config.operator_key)


# =============================================================================
# Module-Level Configuration Instance
# =============================================================================

_config_instance: Optional[StockTokenConfig] = None


def get_config(validate: bool = True) -> StockTokenConfig:
    """Global configuration, loaded from the environment on first access."""
    global _config_instance

    if _config_instance is None:
        _config_instance = StockTokenConfig.from_environment(validate=validate)

    return _config_instance


def reset_config() -> None:
    """Clear the global configuration (tests)."""
    global _config_instance
    _config_instance = None
    logger.debug("[STK-CONFIG] Configuration instance reset")


__all__ = [
    "StockTokenConfig",
    "LedgerMode",
    "Environment",
    "DEFAULT_CALL_TIMEOUT_SECONDS",
    "DEFAULT_PORT",
    "build_gateway",
    "get_config",
    "reset_config",
]
