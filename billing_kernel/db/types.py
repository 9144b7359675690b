"""
Module: billing_kernel.db.types
Responsibility: Annotated column aliases and currency validation.  Every model
    uses these aliases so that cents, quantities and tax rates are stored with
    identical precision system-wide.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.

Invariants enforced:
    - No floats anywhere: money is an integer count of minor units, quantity
      and tax rate are Decimals with fixed scale.
    - validate_currency() is the canonical currency check for every input
      boundary.
"""

from sqlalchemy import BigInteger, Numeric, String

from billing_kernel.exceptions import InvalidCurrencyError

# Integer minor currency units (cents)
CentsType = BigInteger

# Line quantity, four decimal places (e.g. 1.5 hours)
QuantityType = Numeric(12, 4)

# Tax rate in percent, may be negative (withholding)
TaxRateType = Numeric(7, 4)

# ISO 4217 currency code (e.g., "EUR")
CurrencyType = String(3)

# Formatted document number (e.g., "F26/07", "PRE-2026-0001")
ReferenceType = String(40)


# Subset of ISO 4217 accepted by the billing kernel
ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "EUR", "USD", "GBP", "CHF", "JPY", "CAD", "AUD", "NZD",
    "SEK", "NOK", "DKK", "PLN", "CZK", "HUF", "RON", "BGN",
    "MXN", "BRL", "ARS", "CLP", "COP", "PEN", "UYU",
    "CNY", "HKD", "SGD", "INR", "KRW", "ZAR", "MAD", "TRY",
})


def validate_currency(currency: str) -> str:
    """
    Validate a currency code and return it normalized.

    Raises:
        InvalidCurrencyError: If the code is not a supported ISO 4217 code.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()
    if normalized not in ISO_4217_CURRENCIES:
        raise InvalidCurrencyError(currency)
    return normalized
