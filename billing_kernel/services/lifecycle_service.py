"""
DocumentLifecycleService -- guarded, atomic status transitions.

Responsibility:
    Moves documents forward through their lifecycle: quote emission,
    replies, expiry and conversion; invoice and credit note emission and
    payments; purchase invoice booking and payment.

Architecture position:
    Kernel > Services -- imperative shell.
    Composes DocumentService (row locking), SequenceService (numbering)
    and the PaymentTermsLookup / AuditorService collaborators.

Invariants enforced:
    - Every transition is checked against the lifecycle table before any
      write (TransitionError, nothing changed).
    - Emit/book is one unit: lock document, allocate number, stamp
      number/year/status/issue_date/due_date, all inside one SAVEPOINT.
      A failure anywhere rolls the savepoint back, so a document never
      carries a number with a stale status or the reverse.
    - due_date = issue_date + counterparty payment terms (default when
      unset).
    - Conversion is one-time: the quote row is locked and its
      converted_invoice_id must be NULL.

Failure modes:
    - TransitionError / QuoteAlreadyConvertedError: status not eligible.
    - EmptyLinesError: emitting a document without lines.
    - InvalidAmountError: non-positive payment or overpayment.
    - DocumentNotFoundError: unknown or tombstoned document.
    - Store conflicts propagate; wrap calls in ``run_in_transaction``.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock
from billing_kernel.domain.collaborators import PaymentTermsLookup
from billing_kernel.domain.dtos import DocumentSnapshot, TenantContext
from billing_kernel.domain.lifecycle import (
    DEFAULT_PAYMENT_TERMS_DAYS,
    Action,
    DocumentKind,
    InvoiceType,
    QuoteStatus,
    compute_due_date,
    payment_status_after,
    require_transition,
)
from billing_kernel.domain.numbering import AllocatedNumber, DocType
from billing_kernel.exceptions import (
    EmptyLinesError,
    InvalidAmountError,
    QuoteAlreadyConvertedError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_event import AuditAction
from billing_kernel.models.documents import Invoice, InvoiceLine, Quote
from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.base import BaseService
from billing_kernel.services.document_service import DocumentService
from billing_kernel.services.party_service import PartyPaymentTerms
from billing_kernel.services.sequence_service import SequenceService

logger = get_logger("services.lifecycle")


class DocumentLifecycleService(BaseService[Invoice]):
    """
    Service for document status transitions.

    Contract:
        Each public method either fully applies its transition or leaves
        the document exactly as it was.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT render or send anything; see DeliveryService.

    Usage:
        with session_scope() as session:
            tenant = load_tenant_context(session)
            lifecycle = DocumentLifecycleService(session, tenant)
            invoice = lifecycle.emit_document(invoice_id)
    """

    def __init__(
        self,
        session: Session,
        tenant: TenantContext,
        clock: Clock | None = None,
        payment_terms: PaymentTermsLookup | None = None,
        auditor: AuditorService | None = None,
        default_payment_terms_days: int = DEFAULT_PAYMENT_TERMS_DAYS,
    ):
        super().__init__(session, tenant, clock)
        self._auditor = auditor
        self._documents = DocumentService(session, tenant, self.clock, auditor)
        self._sequences = SequenceService(session, auditor)
        self._payment_terms = payment_terms or PartyPaymentTerms(session)
        self._default_terms = default_payment_terms_days

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _audit(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID | None,
        metadata: dict | None = None,
    ) -> None:
        if self._auditor is None:
            return
        self._auditor.record_audit_event(
            tenant_id=self.tenant.tenant_id,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            metadata=metadata,
        )

    def _due_date(self, counterparty_id: UUID, issue_date: date) -> date:
        terms = self._payment_terms.get_payment_terms_days(counterparty_id)
        return compute_due_date(
            issue_date, self._default_terms if terms is None else terms
        )

    def _stamp_issued(
        self,
        document,
        allocated: AllocatedNumber,
        status: str,
        issue_date: date,
        due_date: date | None,
    ) -> None:
        """Write number, year, status and dates together."""
        document.number = allocated.number
        document.year = allocated.year
        document.reference = allocated.formatted
        document.status = status
        document.issue_date = issue_date
        document.due_date = due_date
        self.session.flush()

    def _simple_transition(
        self,
        kind: DocumentKind,
        document_id: UUID,
        action: Action,
        audit_action: AuditAction,
        actor_id: UUID | None,
    ) -> DocumentSnapshot:
        with self.session.begin_nested():
            document = self._documents.load_for_update(kind, document_id)
            previous = document.status
            transition = require_transition(kind, document.id, previous, action)
            document.status = transition.target
            document.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "document_status_changed",
            extra={
                "document_kind": kind.value,
                "document_id": str(document.id),
                "from_status": previous,
                "to_status": document.status,
            },
        )
        self._audit(
            kind.value,
            document.id,
            audit_action,
            actor_id,
            {"from_status": previous, "to_status": document.status},
        )
        return document.to_dto()

    def _log_numbered(self, kind: DocumentKind, document, event: str) -> None:
        logger.info(
            event,
            extra={
                "document_kind": kind.value,
                "document_id": str(document.id),
                "reference": document.reference,
                "number": document.number,
                "year": document.year,
                "status": document.status,
            },
        )

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def emit_quote(self, quote_id: UUID, actor_id: UUID | None = None) -> DocumentSnapshot:
        """DRAFT -> SENT, assigning the next PRE number."""
        kind = DocumentKind.QUOTE
        with self.session.begin_nested():
            quote = self._documents.load_for_update(kind, quote_id)
            transition = require_transition(kind, quote.id, quote.status, Action.EMIT)
            if not quote.lines:
                raise EmptyLinesError(kind.value, quote.id)

            issue_date = self.clock.today()
            allocated = self._sequences.next_number(
                self.tenant.tenant_id, issue_date.year, DocType.QUOTE
            )
            self._stamp_issued(quote, allocated, transition.target, issue_date, None)

        self._log_numbered(kind, quote, "document_emitted")
        self._audit(
            kind.value, quote.id, AuditAction.EMIT, actor_id,
            {"number": quote.number, "year": quote.year, "reference": quote.reference},
        )
        return quote.to_dto()

    def accept_quote(self, quote_id: UUID, actor_id: UUID | None = None) -> DocumentSnapshot:
        return self._simple_transition(
            DocumentKind.QUOTE, quote_id, Action.ACCEPT, AuditAction.ACCEPT, actor_id
        )

    def reject_quote(self, quote_id: UUID, actor_id: UUID | None = None) -> DocumentSnapshot:
        return self._simple_transition(
            DocumentKind.QUOTE, quote_id, Action.REJECT, AuditAction.REJECT, actor_id
        )

    def expire_quote(self, quote_id: UUID, actor_id: UUID | None = None) -> DocumentSnapshot:
        return self._simple_transition(
            DocumentKind.QUOTE, quote_id, Action.EXPIRE, AuditAction.EXPIRE, actor_id
        )

    def expire_overdue_quotes(self, as_of: date | None = None) -> list[DocumentSnapshot]:
        """
        Expire every SENT or ACCEPTED quote whose ``valid_until`` is before
        ``as_of`` (default: today).  Converted quotes are left alone.
        """
        as_of = as_of or self.clock.today()
        quote_ids = self.session.execute(
            select(Quote.id).where(
                Quote.tenant_id == self.tenant.tenant_id,
                Quote.deleted_at.is_(None),
                Quote.status.in_([QuoteStatus.SENT.value, QuoteStatus.ACCEPTED.value]),
                Quote.valid_until.is_not(None),
                Quote.valid_until < as_of,
                Quote.converted_invoice_id.is_(None),
            )
        ).scalars().all()

        expired = [self.expire_quote(quote_id) for quote_id in quote_ids]
        if expired:
            logger.info(
                "quotes_expired",
                extra={"count": len(expired), "as_of": as_of},
            )
        return expired

    def convert_quote(self, quote_id: UUID, actor_id: UUID | None = None) -> DocumentSnapshot:
        """
        Create a DRAFT invoice from an ACCEPTED quote, exactly once.

        Lines and totals are copied as priced on the quote.

        Raises:
            QuoteAlreadyConvertedError: The quote already has an invoice.
            TransitionError: The quote is not ACCEPTED.
        """
        kind = DocumentKind.QUOTE
        with self.session.begin_nested():
            quote = self._documents.load_for_update(kind, quote_id)
            if quote.converted_invoice_id is not None:
                raise QuoteAlreadyConvertedError(
                    quote.id, quote.status, quote.converted_invoice_id
                )
            require_transition(kind, quote.id, quote.status, Action.CONVERT)

            invoice = Invoice(
                tenant_id=quote.tenant_id,
                client_id=quote.client_id,
                type=InvoiceType.INVOICE.value,
                status="DRAFT",
                currency=quote.currency,
                notes=quote.notes,
                paid_cents=0,
                source_quote_id=quote.id,
                created_by_id=actor_id,
                lines=[
                    InvoiceLine(
                        position=line.position,
                        description=line.description,
                        quantity=line.quantity,
                        unit_price_cents=line.unit_price_cents,
                        tax_id=line.tax_id,
                        tax_rate=line.tax_rate,
                        subtotal_cents=line.subtotal_cents,
                        tax_cents=line.tax_cents,
                        total_cents=line.total_cents,
                    )
                    for line in quote.lines
                ],
            )
            invoice.apply_totals(quote.totals)
            self.session.add(invoice)
            self.session.flush()

            quote.converted_invoice_id = invoice.id
            quote.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "quote_converted",
            extra={"quote_id": str(quote.id), "invoice_id": str(invoice.id)},
        )
        self._audit(kind.value, quote.id, AuditAction.CONVERT, actor_id, {"invoice_id": str(invoice.id)})
        self._audit(
            DocumentKind.INVOICE.value, invoice.id, AuditAction.CREATE, actor_id,
            {"source_quote_id": str(quote.id)},
        )
        return invoice.to_dto()

    # ------------------------------------------------------------------
    # Invoices and credit notes
    # ------------------------------------------------------------------

    def emit_invoice(self, invoice_id: UUID, actor_id: UUID | None = None) -> DocumentSnapshot:
        """
        DRAFT -> ISSUED, assigning the next F number.

        Credit notes draw from the CREDIT_NOTE sequence.
        """
        kind = DocumentKind.INVOICE
        with self.session.begin_nested():
            invoice = self._documents.load_for_update(kind, invoice_id)
            transition = require_transition(kind, invoice.id, invoice.status, Action.EMIT)
            if not invoice.lines:
                raise EmptyLinesError(kind.value, invoice.id)

            issue_date = self.clock.today()
            due_date = self._due_date(invoice.client_id, issue_date)
            allocated = self._sequences.next_number(
                self.tenant.tenant_id, issue_date.year, DocType(invoice.type)
            )
            self._stamp_issued(invoice, allocated, transition.target, issue_date, due_date)

        self._log_numbered(kind, invoice, "document_emitted")
        self._audit(
            kind.value, invoice.id, AuditAction.EMIT, actor_id,
            {
                "number": invoice.number,
                "year": invoice.year,
                "reference": invoice.reference,
                "type": invoice.type,
            },
        )
        return invoice.to_dto()

    def register_payment(
        self,
        invoice_id: UUID,
        amount_cents: int,
        actor_id: UUID | None = None,
    ) -> DocumentSnapshot:
        """
        Record a collected amount.  ISSUED/PARTIALLY_PAID -> PARTIALLY_PAID/PAID.

        Raises:
            InvalidAmountError: Non-positive amount, or more than outstanding.
        """
        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
            raise InvalidAmountError("amount_cents", amount_cents, "must be integer cents")
        if amount_cents <= 0:
            raise InvalidAmountError("amount_cents", amount_cents, "must be positive")

        kind = DocumentKind.INVOICE
        with self.session.begin_nested():
            invoice = self._documents.load_for_update(kind, invoice_id)
            previous = invoice.status
            require_transition(kind, invoice.id, previous, Action.REGISTER_PAYMENT)

            outstanding = invoice.total_cents - invoice.paid_cents
            if amount_cents > outstanding:
                raise InvalidAmountError(
                    "amount_cents",
                    amount_cents,
                    f"exceeds outstanding balance of {outstanding}",
                )
            invoice.paid_cents += amount_cents
            invoice.status = payment_status_after(
                invoice.total_cents, invoice.paid_cents
            ).value
            invoice.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "payment_registered",
            extra={
                "document_id": str(invoice.id),
                "amount_cents": amount_cents,
                "paid_cents": invoice.paid_cents,
                "status": invoice.status,
            },
        )
        self._audit(
            kind.value, invoice.id, AuditAction.PAYMENT, actor_id,
            {"amount_cents": amount_cents, "from_status": previous, "to_status": invoice.status},
        )
        return invoice.to_dto()

    # ------------------------------------------------------------------
    # Purchase invoices
    # ------------------------------------------------------------------

    def book_purchase(self, purchase_id: UUID, actor_id: UUID | None = None) -> DocumentSnapshot:
        """
        DRAFT -> BOOKED, assigning the next FP number.

        The issue date is the booking date.  A supplier due date already on
        the draft is kept; otherwise it comes from the provider's terms.
        """
        kind = DocumentKind.PURCHASE_INVOICE
        with self.session.begin_nested():
            purchase = self._documents.load_for_update(kind, purchase_id)
            transition = require_transition(kind, purchase.id, purchase.status, Action.BOOK)
            if not purchase.lines:
                raise EmptyLinesError(kind.value, purchase.id)

            today = self.clock.today()
            due_date = purchase.due_date or self._due_date(purchase.provider_id, today)
            allocated = self._sequences.next_number(
                self.tenant.tenant_id, today.year, DocType.PURCHASE_INVOICE
            )
            self._stamp_issued(purchase, allocated, transition.target, today, due_date)

        self._log_numbered(kind, purchase, "document_booked")
        self._audit(
            kind.value, purchase.id, AuditAction.BOOK, actor_id,
            {"number": purchase.number, "year": purchase.year, "reference": purchase.reference},
        )
        return purchase.to_dto()

    def pay_purchase(self, purchase_id: UUID, actor_id: UUID | None = None) -> DocumentSnapshot:
        """BOOKED -> PAID; the full total is marked as paid."""
        kind = DocumentKind.PURCHASE_INVOICE
        with self.session.begin_nested():
            purchase = self._documents.load_for_update(kind, purchase_id)
            transition = require_transition(kind, purchase.id, purchase.status, Action.PAY)
            purchase.status = transition.target
            purchase.paid_cents = purchase.total_cents
            purchase.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "purchase_paid",
            extra={"document_id": str(purchase.id), "paid_cents": purchase.paid_cents},
        )
        self._audit(kind.value, purchase.id, AuditAction.PAY, actor_id, {"paid_cents": purchase.paid_cents})
        return purchase.to_dto()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def emit_document(self, document_id: UUID, actor_id: UUID | None = None) -> DocumentSnapshot:
        """
        Emit (or book) any document by id.

        Raises:
            DocumentNotFoundError: No live document has this id.
            TransitionError: The document is not DRAFT.
        """
        kind = self._documents.find_kind(document_id)
        if kind is DocumentKind.QUOTE:
            return self.emit_quote(document_id, actor_id)
        if kind is DocumentKind.PURCHASE_INVOICE:
            return self.book_purchase(document_id, actor_id)
        return self.emit_invoice(document_id, actor_id)
