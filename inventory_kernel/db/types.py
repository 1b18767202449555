"""
Module: inventory_kernel.db.types
Responsibility: Annotated column aliases and the canonical precision helpers
    for quantities, conversion factors and unit costs, plus ISO 4217
    currency validation.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers
    (exceptions.py is the one shared leaf).

Invariants enforced:
    - No floats anywhere in the kernel.  Quantities are Decimal with
      QUANTITY_DECIMAL_PLACES, factors keep FACTOR_DECIMAL_PLACES.
    - quantize_quantity() is the ONLY sanctioned rounding for quantities.
    - validate_currency() rejects anything that is not ISO 4217.

Failure modes:
    - InvalidCurrencyError on an invalid currency code.
    - InvalidQuantityError from to_decimal() on NaN/infinite/non-numeric input.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from fractions import Fraction
from typing import Annotated

from sqlalchemy import Numeric, String

from inventory_kernel.exceptions import InvalidCurrencyError, InvalidQuantityError

# Base-unit quantity: 28 digits total, 9 decimal places
Quantity = Annotated[Decimal, Numeric(28, 9)]

# Conversion factor / package size
Factor = Annotated[Decimal, Numeric(28, 12)]

# Unit cost
UnitCost = Annotated[Decimal, Numeric(18, 6)]

# ISO 4217 currency code
Currency = Annotated[str, String(3)]

# Unit-of-measure code (UNECE/UCUM codes are short)
UnitCode = Annotated[str, String(20)]

ShortCode = Annotated[str, String(50)]
LongText = Annotated[str, String(2000)]

QUANTITY_DECIMAL_PLACES = 9
FACTOR_DECIMAL_PLACES = 12
DEFAULT_ROUNDING = ROUND_HALF_UP

_QUANTUM = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)


def to_decimal(value: Decimal | int | str | Fraction) -> Decimal:
    """
    Coerce a user-supplied number to Decimal without passing through float.

    Raises:
        InvalidQuantityError: value is not a finite number.
    """
    if isinstance(value, float):
        raise InvalidQuantityError(value, "floats are not accepted, use Decimal or str")
    try:
        if isinstance(value, Fraction):
            result = Decimal(value.numerator) / Decimal(value.denominator)
        else:
            result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidQuantityError(value, "not a number") from None
    if not result.is_finite():
        raise InvalidQuantityError(value, "must be finite")
    return result


def quantize_quantity(value: Decimal | Fraction) -> Decimal:
    """
    Round a quantity to QUANTITY_DECIMAL_PLACES (ROUND_HALF_UP).

    Fractions are divided at high precision before rounding so that
    exact rational factors only lose precision once.
    """
    if isinstance(value, Fraction):
        value = Decimal(value.numerator) / Decimal(value.denominator)
    return value.quantize(_QUANTUM, rounding=DEFAULT_ROUNDING)


def require_positive_quantity(value: Decimal | int | str) -> Decimal:
    """Coerce and check that a quantity is finite and strictly positive."""
    result = to_decimal(value)
    if result <= 0:
        raise InvalidQuantityError(value)
    return result


# ISO 4217 Currency Codes
ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    "AED", "AFN", "ALL", "AMD", "ANG", "AOA", "ARS", "AWG", "AZN",
    "BAM", "BBD", "BDT", "BGN", "BHD", "BIF", "BMD", "BND", "BOB", "BRL", "BSD", "BTN", "BWP", "BYN", "BZD",
    "CDF", "CLP", "CNY", "COP", "CRC", "CUP", "CVE", "CZK",
    "DJF", "DKK", "DOP", "DZD",
    "EGP", "ERN", "ETB",
    "FJD", "FKP",
    "GEL", "GHS", "GIP", "GMD", "GNF", "GTQ", "GYD",
    "HKD", "HNL", "HTG", "HUF",
    "IDR", "ILS", "INR", "IQD", "IRR", "ISK",
    "JMD", "JOD",
    "KES", "KGS", "KHR", "KMF", "KPW", "KRW", "KWD", "KYD", "KZT",
    "LAK", "LBP", "LKR", "LRD", "LSL", "LYD",
    "MAD", "MDL", "MGA", "MKD", "MMK", "MNT", "MOP", "MRU", "MUR", "MVR", "MWK", "MXN", "MYR", "MZN",
    "NAD", "NGN", "NIO", "NOK", "NPR",
    "OMR",
    "PAB", "PEN", "PGK", "PHP", "PKR", "PLN", "PYG",
    "QAR",
    "RON", "RSD", "RUB", "RWF",
    "SAR", "SBD", "SCR", "SDG", "SEK", "SGD", "SHP", "SLE", "SOS", "SRD", "SSP", "STN", "SYP", "SZL",
    "THB", "TJS", "TMT", "TND", "TOP", "TRY", "TTD", "TWD", "TZS",
    "UAH", "UGX", "UYU", "UZS",
    "VES", "VND", "VUV",
    "WST",
    "XAF", "XCD", "XOF", "XPF",
    "YER",
    "ZAR", "ZMW", "ZWL",
})


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
    if normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)
    return normalized
