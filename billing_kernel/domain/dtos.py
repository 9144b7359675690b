"""
Immutable data transfer objects crossing the service boundary.

Services accept and return these frozen dataclasses; ORM rows never leak
to callers.  ``TenantContext`` is the explicitly passed replacement for an
ambient company lookup.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from billing_kernel.domain.lifecycle import DocumentKind
from billing_kernel.domain.money import DocumentTotals
from billing_kernel.domain.numbering import DocType


@dataclass(frozen=True)
class TenantContext:
    """The business entity every operation acts for."""

    tenant_id: UUID
    legal_name: str
    default_currency: str = "EUR"
    trade_name: str | None = None
    tax_id: str | None = None
    email: str | None = None

    @property
    def display_name(self) -> str:
        return self.trade_name or self.legal_name


@dataclass(frozen=True)
class LineInput:
    """A line as entered: no computed totals."""

    description: str
    quantity: Decimal
    unit_price_cents: int
    tax_id: UUID | None = None


@dataclass(frozen=True)
class LineSnapshot:
    position: int
    description: str
    quantity: Decimal
    unit_price_cents: int
    tax_id: UUID | None
    tax_rate: Decimal
    subtotal_cents: int
    tax_cents: int
    total_cents: int


@dataclass(frozen=True)
class DocumentSnapshot:
    """Read model for any document kind."""

    kind: DocumentKind
    id: UUID
    tenant_id: UUID
    status: str
    counterparty_id: UUID
    currency: str
    totals: DocumentTotals
    paid_cents: int = 0
    number: int | None = None
    year: int | None = None
    reference: str | None = None
    issue_date: date | None = None
    due_date: date | None = None
    valid_until: date | None = None
    notes: str | None = None
    lines: tuple[LineSnapshot, ...] = ()
    invoice_type: str | None = None
    source_quote_id: UUID | None = None
    converted_invoice_id: UUID | None = None
    provider_invoice_number: str | None = None
    deleted: bool = False

    @property
    def is_numbered(self) -> bool:
        return self.number is not None

    @property
    def doc_type(self) -> DocType:
        if self.kind is DocumentKind.QUOTE:
            return DocType.QUOTE
        if self.kind is DocumentKind.PURCHASE_INVOICE:
            return DocType.PURCHASE_INVOICE
        return DocType(self.invoice_type or DocType.INVOICE.value)


@dataclass(frozen=True)
class CounterStatus:
    """Current state of one numbering sequence."""

    doc_type: DocType
    year: int
    current_number: int
    next_formatted: str


@dataclass(frozen=True)
class SequenceResetResult:
    """Outcome of an administrative counter reset.

    ``conflicting_references`` lists already-numbered documents whose number
    will be handed out again.
    """

    doc_type: DocType
    year: int
    previous_number: int | None
    new_number: int
    conflicting_references: tuple[str, ...] = field(default_factory=tuple)

    @property
    def creates_duplicates(self) -> bool:
        return bool(self.conflicting_references)
