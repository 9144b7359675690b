"""
Module: billing_kernel.models.documents
Responsibility: ORM persistence for quotes, invoices (including credit
    notes) and purchase invoices, and their ordered lines.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - total_cents = subtotal_cents + tax_cents (CHECK on every document).
    - number and year are both NULL or both set (CHECK).  Once set, the
      services never change them.
    - Lines are replaced wholesale, and only while the document is DRAFT.
    - Tombstoned rows (deleted_at set) are excluded by every read path.

Design note:
    Quote.converted_invoice_id is a foreign key to invoices; the reverse
    link Invoice.source_quote_id is a plain indexed column, which keeps the
    two tables free of a foreign-key cycle.
"""

from datetime import date
from decimal import Decimal
from typing import ClassVar
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

from billing_kernel.db.base import Base, TombstoneMixin, TrackedBase, UUIDString
from billing_kernel.db.types import (
    CentsType,
    CurrencyType,
    QuantityType,
    ReferenceType,
    TaxRateType,
)
from billing_kernel.domain.dtos import DocumentSnapshot, LineSnapshot
from billing_kernel.domain.lifecycle import DocumentKind
from billing_kernel.domain.money import DocumentTotals, LineAmounts


def _document_table_args(prefix: str) -> tuple:
    return (
        CheckConstraint(
            "total_cents = subtotal_cents + tax_cents",
            name=f"chk_{prefix}_total_consistent",
        ),
        CheckConstraint(
            "(number IS NULL AND year IS NULL) OR "
            "(number IS NOT NULL AND year IS NOT NULL)",
            name=f"chk_{prefix}_number_year_together",
        ),
        Index(f"idx_{prefix}_tenant_status", "tenant_id", "status"),
        Index(f"idx_{prefix}_year_number", "tenant_id", "year", "number"),
    )


class _DocumentLineBase(Base):
    """Columns shared by every line table."""

    __abstract__ = True

    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(CentsType, nullable=False)

    @declared_attr
    def tax_id(cls) -> Mapped[UUID | None]:
        return mapped_column(UUIDString(), ForeignKey("taxes.id"), nullable=True)

    # Rate applied when the line was priced
    tax_rate: Mapped[Decimal] = mapped_column(TaxRateType, nullable=False)

    subtotal_cents: Mapped[int] = mapped_column(CentsType, nullable=False)
    tax_cents: Mapped[int] = mapped_column(CentsType, nullable=False)
    total_cents: Mapped[int] = mapped_column(CentsType, nullable=False)

    @property
    def amounts(self) -> LineAmounts:
        return LineAmounts(self.subtotal_cents, self.tax_cents, self.total_cents)

    def to_dto(self) -> LineSnapshot:
        return LineSnapshot(
            position=self.position,
            description=self.description,
            quantity=self.quantity,
            unit_price_cents=self.unit_price_cents,
            tax_id=self.tax_id,
            tax_rate=self.tax_rate,
            subtotal_cents=self.subtotal_cents,
            tax_cents=self.tax_cents,
            total_cents=self.total_cents,
        )


class _DocumentBase(TombstoneMixin, TrackedBase):
    """Columns shared by every document table."""

    __abstract__ = True

    kind: ClassVar[DocumentKind]

    @declared_attr
    def tenant_id(cls) -> Mapped[UUID]:
        return mapped_column(UUIDString(), ForeignKey("companies.id"), nullable=False)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="DRAFT")

    # Sequence value and numbering year; NULL until emitted/booked
    number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reference: Mapped[str | None] = mapped_column(ReferenceType, nullable=True)

    issue_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    currency: Mapped[str] = mapped_column(CurrencyType, nullable=False, default="EUR")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    subtotal_cents: Mapped[int] = mapped_column(CentsType, nullable=False, default=0)
    tax_cents: Mapped[int] = mapped_column(CentsType, nullable=False, default=0)
    total_cents: Mapped[int] = mapped_column(CentsType, nullable=False, default=0)
    paid_cents: Mapped[int] = mapped_column(CentsType, nullable=False, default=0)

    @property
    def counterparty_id(self) -> UUID:
        raise NotImplementedError

    @property
    def totals(self) -> DocumentTotals:
        return DocumentTotals(self.subtotal_cents, self.tax_cents, self.total_cents)

    def apply_totals(self, totals: DocumentTotals) -> None:
        self.subtotal_cents = totals.subtotal_cents
        self.tax_cents = totals.tax_cents
        self.total_cents = totals.total_cents

    def _snapshot(self, **extra) -> DocumentSnapshot:
        return DocumentSnapshot(
            kind=self.kind,
            id=self.id,
            tenant_id=self.tenant_id,
            status=self.status,
            counterparty_id=self.counterparty_id,
            currency=self.currency,
            totals=self.totals,
            paid_cents=self.paid_cents,
            number=self.number,
            year=self.year,
            reference=self.reference,
            issue_date=self.issue_date,
            due_date=self.due_date,
            notes=self.notes,
            lines=tuple(line.to_dto() for line in self.lines),
            deleted=self.is_deleted,
            **extra,
        )


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


class QuoteLine(_DocumentLineBase):
    __tablename__ = "quote_lines"

    quote_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("quotes.id"), nullable=False, index=True,
    )


class Quote(_DocumentBase):
    """Sales quote (presupuesto)."""

    __tablename__ = "quotes"
    __table_args__ = _document_table_args("quote")

    kind = DocumentKind.QUOTE

    client_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("clients.id"), nullable=False,
    )
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Set exactly once, by conversion
    converted_invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=True,
    )

    lines: Mapped[list[QuoteLine]] = relationship(
        QuoteLine,
        order_by=QuoteLine.position,
        cascade="all, delete-orphan",
    )

    @property
    def counterparty_id(self) -> UUID:
        return self.client_id

    def to_dto(self) -> DocumentSnapshot:
        return self._snapshot(
            valid_until=self.valid_until,
            converted_invoice_id=self.converted_invoice_id,
        )

    def __repr__(self) -> str:
        return f"<Quote {self.reference or self.id} {self.status}>"


# ---------------------------------------------------------------------------
# Invoices and credit notes
# ---------------------------------------------------------------------------


class InvoiceLine(_DocumentLineBase):
    __tablename__ = "invoice_lines"

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=False, index=True,
    )


class Invoice(_DocumentBase):
    """Sales invoice or credit note (``type``)."""

    __tablename__ = "invoices"
    __table_args__ = _document_table_args("invoice") + (
        Index("idx_invoice_source_quote", "source_quote_id"),
    )

    kind = DocumentKind.INVOICE

    type: Mapped[str] = mapped_column(String(20), nullable=False, default="INVOICE")

    client_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("clients.id"), nullable=False,
    )

    source_quote_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lines: Mapped[list[InvoiceLine]] = relationship(
        InvoiceLine,
        order_by=InvoiceLine.position,
        cascade="all, delete-orphan",
    )

    @property
    def counterparty_id(self) -> UUID:
        return self.client_id

    def to_dto(self) -> DocumentSnapshot:
        return self._snapshot(
            invoice_type=self.type,
            source_quote_id=self.source_quote_id,
        )

    def __repr__(self) -> str:
        return f"<Invoice {self.type} {self.reference or self.id} {self.status}>"


# ---------------------------------------------------------------------------
# Purchase invoices
# ---------------------------------------------------------------------------


class PurchaseInvoiceLine(_DocumentLineBase):
    __tablename__ = "purchase_invoice_lines"

    purchase_invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchase_invoices.id"), nullable=False, index=True,
    )


class PurchaseInvoice(_DocumentBase):
    """Supplier invoice, numbered internally when booked."""

    __tablename__ = "purchase_invoices"
    __table_args__ = _document_table_args("purchase")

    kind = DocumentKind.PURCHASE_INVOICE

    provider_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("providers.id"), nullable=False,
    )

    # The supplier's own number, as printed on their invoice
    provider_invoice_number: Mapped[str | None] = mapped_column(String(60), nullable=True)

    lines: Mapped[list[PurchaseInvoiceLine]] = relationship(
        PurchaseInvoiceLine,
        order_by=PurchaseInvoiceLine.position,
        cascade="all, delete-orphan",
    )

    @property
    def counterparty_id(self) -> UUID:
        return self.provider_id

    def to_dto(self) -> DocumentSnapshot:
        return self._snapshot(provider_invoice_number=self.provider_invoice_number)

    def __repr__(self) -> str:
        return f"<PurchaseInvoice {self.reference or self.id} {self.status}>"


DOCUMENT_MODELS: dict[DocumentKind, type[_DocumentBase]] = {
    DocumentKind.QUOTE: Quote,
    DocumentKind.INVOICE: Invoice,
    DocumentKind.PURCHASE_INVOICE: PurchaseInvoice,
}

LINE_MODELS: dict[DocumentKind, type[_DocumentLineBase]] = {
    DocumentKind.QUOTE: QuoteLine,
    DocumentKind.INVOICE: InvoiceLine,
    DocumentKind.PURCHASE_INVOICE: PurchaseInvoiceLine,
}
