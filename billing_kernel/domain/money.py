"""
Money -- line and document totals in integer minor units.

Responsibility:
    Pure functions turning (quantity, unit price, tax rate) into line totals
    and summing line totals into document totals.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Every intermediate value is rounded half away from zero to whole minor
      units (``ROUND_HALF_UP`` on ``Decimal`` rounds away from zero for both
      signs).  Rounding is never deferred to the sum.
    - ``total == subtotal + tax`` for every line and every document.
    - Document totals are sums of the already-rounded line values; tax is
      never recomputed from the document subtotal.
    - Floats are rejected.  Quantities and rates are ``Decimal`` (or int /
      numeric string), prices are ``int`` cents.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from billing_kernel.exceptions import InvalidAmountError

_ONE = Decimal("1")
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineAmounts:
    """Rounded per-line totals, in minor units."""

    subtotal_cents: int
    tax_cents: int
    total_cents: int


@dataclass(frozen=True)
class DocumentTotals:
    """Document totals, in minor units."""

    subtotal_cents: int
    tax_cents: int
    total_cents: int

    @classmethod
    def zero(cls) -> "DocumentTotals":
        return cls(0, 0, 0)


def to_decimal(value: Decimal | int | str, field: str) -> Decimal:
    """Coerce a quantity or rate to Decimal, refusing floats."""
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError(field, value, "floats are not accepted")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidAmountError(field, value, "not a number") from None
    if not result.is_finite():
        raise InvalidAmountError(field, value, "not a finite number")
    return result


def round_half_away_from_zero(value: Decimal) -> int:
    """Round to a whole number of minor units, ties away from zero."""
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def compute_line(
    quantity: Decimal | int | str,
    unit_price_cents: int,
    tax_rate_percent: Decimal | int | str,
) -> LineAmounts:
    """
    Compute one line's subtotal, tax and total.

    subtotal = round(quantity * unit_price)
    tax      = round(subtotal * rate / 100)
    total    = subtotal + tax

    Example:
        compute_line(1, 999, 21) -> LineAmounts(999, 210, 1209)
    """
    if isinstance(unit_price_cents, bool) or not isinstance(unit_price_cents, int):
        raise InvalidAmountError(
            "unit_price_cents", unit_price_cents, "must be an integer count of minor units"
        )
    qty = to_decimal(quantity, "quantity")
    rate = to_decimal(tax_rate_percent, "tax_rate_percent")

    subtotal = round_half_away_from_zero(qty * unit_price_cents)
    tax = round_half_away_from_zero(Decimal(subtotal) * rate / _HUNDRED)
    return LineAmounts(
        subtotal_cents=subtotal,
        tax_cents=tax,
        total_cents=subtotal + tax,
    )


def compute_document_totals(lines: Iterable[LineAmounts]) -> DocumentTotals:
    """Sum already-rounded line values into document totals."""
    subtotal = 0
    tax = 0
    for line in lines:
        subtotal += line.subtotal_cents
        tax += line.tax_cents
    return DocumentTotals(
        subtotal_cents=subtotal,
        tax_cents=tax,
        total_cents=subtotal + tax,
    )


def format_cents(cents: int, currency: str = "EUR") -> str:
    """
    Human-readable amount in Spanish notation, e.g. ``1.209,00 EUR``.

    Used in email bodies only; never parsed back.
    """
    sign = "-" if cents < 0 else ""
    major, minor = divmod(abs(cents), 100)
    grouped = f"{major:,}".replace(",", ".")
    return f"{sign}{grouped},{minor:02d} {currency}"
