# ============================================================================
# Stock Token Ledger v1.0.0
# Quantity Units - Kilogram <-> Ledger Integer Conversion
# ============================================================================
#
# Reliability Level: SOVEREIGN TIER (Mission-Critical)
# Purpose: Ensures all stock quantities use decimal.Decimal with ROUND_HALF_EVEN
#
# SOVEREIGN MANDATE:
#   - Every quantity crossing the ledger boundary MUST pass through here
#   - Float contamination is FORBIDDEN in stock arithmetic
#   - Kilogram values use 2 decimal places (0.01)
#   - Ledger amounts are integers scaled by 10^decimals
#
# Error Codes:
#   - STK-UNIT-001: Quantity conversion failed
#   - STK-UNIT-002: Quantity not representable at asset precision
#   - STK-UNIT-003: Quantity above the ledger supply ceiling
#
# ============================================================================

from decimal import Context, Decimal, Inexact, InvalidOperation, ROUND_HALF_EVEN, localcontext
from typing import Optional, Union
import logging

logger = logging.getLogger(__name__)

# Fixed precision for every asset this service creates
ASSET_DECIMALS = 2
KG_PRECISION = Decimal('0.01')

# Ledger amounts are signed 64-bit integers
MAX_RAW_AMOUNT = 2 ** 63 - 1

# Enough digits for any in-range amount at any asset precision
CONVERSION_PRECISION = 60

Numeric = Union[str, int, float, Decimal, None]


class QuantityConversionError(ValueError):
    """Raised when a quantity cannot be converted (STK-UNIT-001/002/003)."""
    pass


def _conversion_context() -> Context:
    return Context(prec=CONVERSION_PRECISION, rounding=ROUND_HALF_EVEN)


def precision_for(decimals: int) -> Decimal:
    """Quantization exponent for a ledger decimals value (2 -> 0.01)."""
    return Decimal(1).scaleb(-decimals)


def max_quantity(decimals: int) -> Decimal:
    """Largest quantity an asset with this precision can hold on the ledger."""
    with localcontext(_conversion_context()):
        return Decimal(MAX_RAW_AMOUNT).scaleb(-decimals)


def at_precision(quantity: Decimal, decimals: int) -> Decimal:
    """Quantize a range-checked quantity to the asset's precision."""
    with localcontext(_conversion_context()):
        return quantity.quantize(precision_for(decimals), rounding=ROUND_HALF_EVEN)


def to_quantity(
    value: Numeric,
    decimals: int = ASSET_DECIMALS,
    correlation_id: Optional[str] = None
) -> Decimal:
    """
    Convert any numeric input to a Decimal quantity at asset precision.
    
    Converts via str() so float inputs from JSON keep their printed value.
    
    Args:
        value: Numeric value (str, int, float, Decimal, None)
        decimals: Asset decimal precision
        correlation_id: Audit trail identifier
        
    Returns:
        Decimal quantized with ROUND_HALF_EVEN
        
    Raises:
        QuantityConversionError: If value is not numeric (STK-UNIT-001)
    """
    exponent = precision_for(decimals)
    
    if value is None:
        return Decimal('0').quantize(exponent, rounding=ROUND_HALF_EVEN)
    
    if isinstance(value, bool):
        raise QuantityConversionError(
            f"STK-UNIT-001: Cannot convert boolean '{value}' to quantity"
        )
    
    try:
        decimal_value = Decimal(str(value))
        if not decimal_value.is_finite():
            raise InvalidOperation(f"non-finite value {value}")
        with localcontext(_conversion_context()):
            return decimal_value.quantize(exponent, rounding=ROUND_HALF_EVEN)
    except (InvalidOperation, ValueError, TypeError) as e:
        logger.error(
            f"[STK-UNIT-001] Quantity conversion failed | "
            f"value={value} | type={type(value).__name__} | "
            f"correlation_id={correlation_id} | error={e}"
        )
        raise QuantityConversionError(
            f"STK-UNIT-001: Cannot convert '{value}' to quantity"
        ) from e


def parse_quantity(
    value: Numeric,
    decimals: int = ASSET_DECIMALS,
    correlation_id: Optional[str] = None
) -> Decimal:
    """
    Parse caller input into an exact quantity at asset precision.

    Unlike to_quantity(), excess fractional digits are rejected instead of
    rounded, so the amount sent to the ledger is the amount requested.

    Raises:
        QuantityConversionError: On non-numeric input, excess precision or
            a quantity above the ledger supply ceiling
    """
    if value is None or isinstance(value, bool):
        raise QuantityConversionError(
            f"STK-UNIT-001: Cannot convert '{value}' to quantity"
        )

    try:
        decimal_value = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise QuantityConversionError(
            f"STK-UNIT-001: Cannot convert '{value}' to quantity"
        ) from e

    if not decimal_value.is_finite():
        raise QuantityConversionError(
            f"STK-UNIT-001: Cannot convert '{value}' to quantity"
        )

    # Range and exactness check only; the raw amount is recomputed at call time
    to_raw_amount(decimal_value, decimals, correlation_id)
    return at_precision(decimal_value, decimals)


def to_raw_amount(
    quantity: Decimal,
    decimals: int,
    correlation_id: Optional[str] = None
) -> int:
    """
    Scale a kilogram quantity to the ledger's integer amount.
    
    The conversion must be exact: 10.255 kg cannot be expressed on an
    asset with 2 decimals and is rejected rather than rounded. Amounts
    above MAX_RAW_AMOUNT are rejected as well.
    
    Raises:
        QuantityConversionError: Excess precision (STK-UNIT-002) or
            above the supply ceiling (STK-UNIT-003)
    """
    value = Decimal(str(quantity))
    if value.copy_abs() > max_quantity(decimals):
        logger.error(
            f"[STK-UNIT-003] Quantity above ledger supply ceiling | "
            f"quantity={quantity} | decimals={decimals} | "
            f"correlation_id={correlation_id}"
        )
        raise QuantityConversionError(
            f"STK-UNIT-003: Quantity {quantity} exceeds the maximum of "
            f"{max_quantity(decimals)}"
        )

    with localcontext(_conversion_context()) as context:
        context.traps[Inexact] = True
        try:
            scaled = value.scaleb(decimals)
            exact = scaled == scaled.to_integral_value()
        except Inexact:
            exact = False

    if not exact:
        logger.error(
            f"[STK-UNIT-002] Quantity exceeds asset precision | "
            f"quantity={quantity} | decimals={decimals} | "
            f"correlation_id={correlation_id}"
        )
        raise QuantityConversionError(
            f"STK-UNIT-002: Quantity {quantity} has more than "
            f"{decimals} decimal places"
        )
    return int(scaled)


def from_raw_amount(raw_amount: int, decimals: int) -> Decimal:
    """
    Convert a ledger integer amount back to a kilogram quantity.

    Raises:
        QuantityConversionError: Amount outside the ledger's integer range
    """
    raw_amount = int(raw_amount)
    if abs(raw_amount) > MAX_RAW_AMOUNT:
        raise QuantityConversionError(
            f"STK-UNIT-003: Ledger amount {raw_amount} exceeds the maximum of "
            f"{MAX_RAW_AMOUNT}"
        )
    with localcontext(_conversion_context()):
        return Decimal(raw_amount).scaleb(-decimals).quantize(
            precision_for(decimals), rounding=ROUND_HALF_EVEN
        )


def format_kg(quantity: Decimal) -> str:
    """Render a quantity as '1,234.50 kg' for messages."""
    return f"{to_quantity(quantity):,.2f} kg"
