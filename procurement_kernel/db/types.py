"""
Module: procurement_kernel.db.types
Responsibility: Precision constants and the sanctioned rounding helpers
    for money and quantities.  Centralizes precision and currency validation
    so every model, engine and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by domain/, services/,
    engines and modules.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere.  All monetary amounts and quantities are Decimal.
    - round_money() / round_quantity() are the only sanctioned rounding
      functions; ROUND_HALF_UP throughout.
    - validate_currency() rejects anything outside ISO 4217.
"""

from decimal import Decimal, ROUND_HALF_UP

from procurement_kernel.domain.currency import CurrencyRegistry
from procurement_kernel.exceptions import InvalidCurrencyError

STORAGE_DECIMAL_PLACES = 9
TOTALS_DECIMAL_PLACES = 4
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Coerce a caller-supplied value to Decimal.

    Floats are rejected outright; they would smuggle binary rounding error
    into every downstream sum.
    """
    if isinstance(value, float):
        raise TypeError(f"float is not accepted for money or quantity: {value!r}")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(
    value: Decimal,
    decimal_places: int = 2,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given decimal places.

    This is the ONLY sanctioned rounding function for money.  All other code
    delegates here so precision handling stays consistent.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def round_quantity(value: Decimal, decimal_places: int = 4) -> Decimal:
    """Round a material quantity (ROUND_HALF_UP)."""
    return round_money(value, decimal_places)


def currency_decimal_places(currency: str) -> int:
    """ISO 4217 minor-unit digits for a currency code."""
    return CurrencyRegistry.get_decimal_places(validate_currency(currency))


def validate_currency(currency: str) -> str:
    """
    Validate that a currency code is a valid ISO 4217 code.

    Returns:
        The validated currency code (uppercase, trimmed).

    Raises:
        InvalidCurrencyError: If the currency code is not valid.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()
    if not CurrencyRegistry.is_valid(normalized):
        raise InvalidCurrencyError(currency)
    return normalized
