"""
Module: billing_kernel.selectors.document_selector
Responsibility: Read-only listing of documents and numbering counters.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Tombstoned documents are never returned.
    - Lists are ordered deterministically: numbered documents by
      (year, number), drafts after them by creation time.

Failure modes:
    - Returns empty tuples when nothing matches (never raises on absence).
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from billing_kernel.domain.dtos import CounterStatus, DocumentSnapshot
from billing_kernel.domain.lifecycle import DocumentKind, InvoiceStatus, InvoiceType
from billing_kernel.domain.numbering import DocType, format_document_number
from billing_kernel.models.document_counter import DocumentCounter
from billing_kernel.models.documents import DOCUMENT_MODELS, Invoice
from billing_kernel.selectors.base import BaseSelector


class DocumentSelector(BaseSelector[Invoice]):
    """
    Selector for document and counter queries.

    Guarantees:
        - Lines are eager-loaded with ``selectinload``.
        - Read-only.
    """

    def list_documents(
        self,
        kind: DocumentKind | str,
        tenant_id: UUID,
        status: str | None = None,
        year: int | None = None,
        invoice_type: InvoiceType | str | None = None,
    ) -> tuple[DocumentSnapshot, ...]:
        """Live documents of one kind, optionally filtered."""
        kind = DocumentKind(kind)
        model = DOCUMENT_MODELS[kind]
        stmt = (
            select(model)
            .options(selectinload(model.lines))
            .where(model.tenant_id == tenant_id, model.deleted_at.is_(None))
        )
        if status is not None:
            stmt = stmt.where(model.status == status)
        if year is not None:
            stmt = stmt.where(model.year == year)
        if invoice_type is not None and kind is DocumentKind.INVOICE:
            stmt = stmt.where(Invoice.type == InvoiceType(invoice_type).value)
        stmt = stmt.order_by(
            model.year.is_(None), model.year, model.number, model.created_at
        )
        return tuple(row.to_dto() for row in self.session.execute(stmt).scalars())

    def find_by_reference(
        self, kind: DocumentKind | str, tenant_id: UUID, reference: str
    ) -> tuple[DocumentSnapshot, ...]:
        """
        Documents carrying a formatted number.

        Normally zero or one; more only after a sequence reset reissued it.
        """
        kind = DocumentKind(kind)
        model = DOCUMENT_MODELS[kind]
        rows = self.session.execute(
            select(model)
            .options(selectinload(model.lines))
            .where(
                model.tenant_id == tenant_id,
                model.reference == reference,
                model.deleted_at.is_(None),
            )
            .order_by(model.created_at)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def overdue_invoices(self, tenant_id: UUID, as_of: date) -> tuple[DocumentSnapshot, ...]:
        """Issued or partially paid invoices whose due date has passed."""
        rows = self.session.execute(
            select(Invoice)
            .options(selectinload(Invoice.lines))
            .where(
                Invoice.tenant_id == tenant_id,
                Invoice.deleted_at.is_(None),
                Invoice.status.in_(
                    [InvoiceStatus.ISSUED.value, InvoiceStatus.PARTIALLY_PAID.value]
                ),
                Invoice.due_date < as_of,
            )
            .order_by(Invoice.due_date, Invoice.number)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def numbering_overview(self, tenant_id: UUID, year: int) -> tuple[CounterStatus, ...]:
        """One entry per document type; types never used report 0."""
        rows = self.session.execute(
            select(DocumentCounter.doc_type, DocumentCounter.current_number).where(
                DocumentCounter.tenant_id == tenant_id,
                DocumentCounter.year == year,
            )
        ).all()
        current = {doc_type: number for doc_type, number in rows}
        return tuple(
            CounterStatus(
                doc_type=doc_type,
                year=year,
                current_number=current.get(doc_type.value, 0),
                next_formatted=format_document_number(
                    doc_type, year, current.get(doc_type.value, 0) + 1
                ),
            )
            for doc_type in DocType
        )
