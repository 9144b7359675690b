"""
DocumentService -- draft creation, editing and retrieval for every kind.

Responsibility:
    Creates quotes, invoices, credit notes and purchase invoices in DRAFT,
    prices their lines through the money calculator, stores the totals, and
    applies DRAFT-only edits (fields, wholesale line replacement, tombstone).

Architecture position:
    Kernel > Services -- imperative shell.
    Used directly by callers and by DocumentLifecycleService (row loading)
    and the recurring runner (invoice generation).

Invariants enforced:
    - A counterparty is required and must exist (ValidationError /
      CounterpartyNotFoundError before any write).
    - At least one line (EmptyLinesError before any write).
    - Lines are priced with the tax rate current at pricing time; document
      totals are the sums of the rounded line values.
    - Edits, line replacement and deletion are guarded by the lifecycle
      table (TransitionError outside DRAFT).
    - Tombstoned documents are invisible to every read path.

Failure modes:
    - ValidationError subclasses and TransitionError: raised before any
      mutation; the caller's transaction is untouched.
    - DocumentNotFoundError for unknown, foreign or tombstoned ids.
"""

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.db.types import validate_currency
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.dtos import DocumentSnapshot, LineInput, TenantContext
from billing_kernel.domain.lifecycle import (
    Action,
    DocumentKind,
    InvoiceType,
    require_transition,
)
from billing_kernel.domain.money import compute_document_totals, compute_line, to_decimal
from billing_kernel.exceptions import (
    CounterpartyNotFoundError,
    DocumentNotFoundError,
    EmptyLinesError,
    MissingCounterpartyError,
    TaxNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_event import AuditAction
from billing_kernel.models.documents import (
    DOCUMENT_MODELS,
    LINE_MODELS,
    Invoice,
    PurchaseInvoice,
    Quote,
)
from billing_kernel.models.tenant import Client, Provider, Tax
from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.base import BaseService

logger = get_logger("services.document")

_ZERO_RATE = Decimal("0")


class DocumentService(BaseService[Quote]):
    """
    Service for DRAFT documents.

    Contract:
        Every public method returns a ``DocumentSnapshot``; ORM rows are
        only handed out by ``load_for_update`` to sibling services.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT number documents; see DocumentLifecycleService.
    """

    def __init__(
        self,
        session: Session,
        tenant: TenantContext,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session, tenant, clock)
        self._auditor = auditor

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _audit(
        self,
        kind: DocumentKind,
        document_id: UUID,
        action: AuditAction,
        actor_id: UUID | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if self._auditor is None:
            return
        self._auditor.record_audit_event(
            tenant_id=self.tenant.tenant_id,
            actor_id=actor_id,
            entity_type=kind.value,
            entity_id=document_id,
            action=action,
            metadata=metadata,
        )

    def _require_counterparty(self, kind: DocumentKind, counterparty_id: UUID | None) -> None:
        if counterparty_id is None:
            raise MissingCounterpartyError(kind.value)
        if kind is DocumentKind.PURCHASE_INVOICE:
            model, label = Provider, "provider"
        else:
            model, label = Client, "client"
        row = self.session.get(model, counterparty_id)
        if row is None or row.is_deleted or row.tenant_id != self.tenant.tenant_id:
            raise CounterpartyNotFoundError(counterparty_id, label)

    def _tax_rate(self, tax_id: UUID | None) -> Decimal:
        if tax_id is None:
            return _ZERO_RATE
        tax = self.session.get(Tax, tax_id)
        if tax is None or tax.tenant_id != self.tenant.tenant_id:
            raise TaxNotFoundError(tax_id)
        return tax.rate

    def _price_lines(self, kind: DocumentKind, lines: Sequence[LineInput]) -> list:
        """Build priced ORM lines (unattached) in input order."""
        line_model = LINE_MODELS[kind]
        priced = []
        for position, line in enumerate(lines, start=1):
            rate = self._tax_rate(line.tax_id)
            amounts = compute_line(line.quantity, line.unit_price_cents, rate)
            priced.append(
                line_model(
                    position=position,
                    description=line.description,
                    quantity=to_decimal(line.quantity, "quantity"),
                    unit_price_cents=line.unit_price_cents,
                    tax_id=line.tax_id,
                    tax_rate=rate,
                    subtotal_cents=amounts.subtotal_cents,
                    tax_cents=amounts.tax_cents,
                    total_cents=amounts.total_cents,
                )
            )
        return priced

    def _currency(self, currency: str | None) -> str:
        return validate_currency(currency or self.tenant.default_currency)

    def _create(
        self,
        kind: DocumentKind,
        document,
        lines: Sequence[LineInput],
        actor_id: UUID | None,
    ) -> DocumentSnapshot:
        if not lines:
            raise EmptyLinesError(kind.value)
        priced = self._price_lines(kind, lines)

        document.tenant_id = self.tenant.tenant_id
        document.status = "DRAFT"
        document.created_by_id = actor_id
        document.lines = priced
        document.apply_totals(compute_document_totals(line.amounts for line in priced))
        self.session.add(document)
        self.session.flush()

        logger.info(
            "document_created",
            extra={
                "document_kind": kind.value,
                "document_id": str(document.id),
                "total_cents": document.total_cents,
                "line_count": len(priced),
            },
        )
        self._audit(
            kind,
            document.id,
            AuditAction.CREATE,
            actor_id,
            {"total_cents": document.total_cents},
        )
        return document.to_dto()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_quote(
        self,
        client_id: UUID | None,
        lines: Sequence[LineInput],
        notes: str | None = None,
        valid_until: date | None = None,
        currency: str | None = None,
        actor_id: UUID | None = None,
    ) -> DocumentSnapshot:
        """Create a DRAFT quote."""
        self._require_counterparty(DocumentKind.QUOTE, client_id)
        quote = Quote(
            client_id=client_id,
            notes=notes,
            valid_until=valid_until,
            currency=self._currency(currency),
        )
        return self._create(DocumentKind.QUOTE, quote, lines, actor_id)

    def create_invoice(
        self,
        client_id: UUID | None,
        lines: Sequence[LineInput],
        notes: str | None = None,
        currency: str | None = None,
        invoice_type: InvoiceType | str = InvoiceType.INVOICE,
        source_quote_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> DocumentSnapshot:
        """Create a DRAFT invoice (or credit note, per ``invoice_type``)."""
        self._require_counterparty(DocumentKind.INVOICE, client_id)
        invoice = Invoice(
            client_id=client_id,
            notes=notes,
            currency=self._currency(currency),
            type=InvoiceType(invoice_type).value,
            source_quote_id=source_quote_id,
        )
        return self._create(DocumentKind.INVOICE, invoice, lines, actor_id)

    def create_credit_note(
        self,
        client_id: UUID | None,
        lines: Sequence[LineInput],
        notes: str | None = None,
        currency: str | None = None,
        actor_id: UUID | None = None,
    ) -> DocumentSnapshot:
        """Create a DRAFT credit note.  Numbered from its own sequence."""
        return self.create_invoice(
            client_id,
            lines,
            notes=notes,
            currency=currency,
            invoice_type=InvoiceType.CREDIT_NOTE,
            actor_id=actor_id,
        )

    def create_purchase_invoice(
        self,
        provider_id: UUID | None,
        lines: Sequence[LineInput],
        provider_invoice_number: str | None = None,
        issue_date: date | None = None,
        due_date: date | None = None,
        notes: str | None = None,
        currency: str | None = None,
        actor_id: UUID | None = None,
    ) -> DocumentSnapshot:
        """
        Create a DRAFT purchase invoice.

        ``issue_date`` / ``due_date`` are the supplier's dates when known;
        booking fills in whichever is missing.
        """
        self._require_counterparty(DocumentKind.PURCHASE_INVOICE, provider_id)
        purchase = PurchaseInvoice(
            provider_id=provider_id,
            provider_invoice_number=provider_invoice_number,
            issue_date=issue_date,
            due_date=due_date,
            notes=notes,
            currency=self._currency(currency),
        )
        return self._create(DocumentKind.PURCHASE_INVOICE, purchase, lines, actor_id)

    # ------------------------------------------------------------------
    # DRAFT edits
    # ------------------------------------------------------------------

    def update_draft(
        self,
        kind: DocumentKind | str,
        document_id: UUID,
        counterparty_id: UUID | None = None,
        notes: str | None = None,
        currency: str | None = None,
        valid_until: date | None = None,
        issue_date: date | None = None,
        due_date: date | None = None,
        provider_invoice_number: str | None = None,
        actor_id: UUID | None = None,
    ) -> DocumentSnapshot:
        """
        Change header fields of a DRAFT document.  ``None`` leaves a field as is.

        Raises:
            TransitionError: Document is past DRAFT.
        """
        kind = DocumentKind(kind)
        document = self.load_for_update(kind, document_id)
        require_transition(kind, document.id, document.status, Action.EDIT)

        changed: list[str] = []
        if counterparty_id is not None:
            self._require_counterparty(kind, counterparty_id)
            if kind is DocumentKind.PURCHASE_INVOICE:
                document.provider_id = counterparty_id
            else:
                document.client_id = counterparty_id
            changed.append("counterparty_id")
        if notes is not None:
            document.notes = notes
            changed.append("notes")
        if currency is not None:
            document.currency = validate_currency(currency)
            changed.append("currency")
        if valid_until is not None and kind is DocumentKind.QUOTE:
            document.valid_until = valid_until
            changed.append("valid_until")
        if kind is DocumentKind.PURCHASE_INVOICE:
            if issue_date is not None:
                document.issue_date = issue_date
                changed.append("issue_date")
            if due_date is not None:
                document.due_date = due_date
                changed.append("due_date")
            if provider_invoice_number is not None:
                document.provider_invoice_number = provider_invoice_number
                changed.append("provider_invoice_number")

        document.updated_by_id = actor_id
        self.session.flush()
        self._audit(kind, document.id, AuditAction.UPDATE, actor_id, {"fields": changed})
        return document.to_dto()

    def replace_lines(
        self,
        kind: DocumentKind | str,
        document_id: UUID,
        lines: Sequence[LineInput],
        actor_id: UUID | None = None,
    ) -> DocumentSnapshot:
        """Replace every line of a DRAFT document and recompute its totals."""
        kind = DocumentKind(kind)
        document = self.load_for_update(kind, document_id)
        require_transition(kind, document.id, document.status, Action.EDIT)
        if not lines:
            raise EmptyLinesError(kind.value, document.id)

        priced = self._price_lines(kind, lines)
        document.lines = priced
        document.apply_totals(compute_document_totals(line.amounts for line in priced))
        document.updated_by_id = actor_id
        self.session.flush()

        self._audit(
            kind,
            document.id,
            AuditAction.UPDATE,
            actor_id,
            {"fields": ["lines"], "total_cents": document.total_cents},
        )
        return document.to_dto()

    def delete_draft(
        self,
        kind: DocumentKind | str,
        document_id: UUID,
        actor_id: UUID | None = None,
    ) -> None:
        """Tombstone a DRAFT document.  The row and its id are kept."""
        kind = DocumentKind(kind)
        document = self.load_for_update(kind, document_id)
        require_transition(kind, document.id, document.status, Action.DELETE)

        document.deleted_at = self.clock.now()
        document.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "document_deleted",
            extra={"document_kind": kind.value, "document_id": str(document.id)},
        )
        self._audit(kind, document.id, AuditAction.DELETE, actor_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _live_query(self, kind: DocumentKind, document_id: UUID):
        model = DOCUMENT_MODELS[kind]
        return select(model).where(
            model.id == document_id,
            model.tenant_id == self.tenant.tenant_id,
            model.deleted_at.is_(None),
        )

    def get(self, kind: DocumentKind | str, document_id: UUID) -> DocumentSnapshot:
        """
        Raises:
            DocumentNotFoundError: Unknown, foreign or tombstoned document.
        """
        kind = DocumentKind(kind)
        document = self.session.execute(
            self._live_query(kind, document_id)
        ).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(document_id, kind.value)
        return document.to_dto()

    def load_for_update(self, kind: DocumentKind | str, document_id: UUID):
        """
        Load the ORM row under a row lock, refreshing any stale identity.

        For sibling services only; callers get snapshots.
        """
        kind = DocumentKind(kind)
        document = self.session.execute(
            self._live_query(kind, document_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(document_id, kind.value)
        return document

    def find_kind(self, document_id: UUID) -> DocumentKind:
        """Which table holds ``document_id``."""
        for kind in DocumentKind:
            model = DOCUMENT_MODELS[kind]
            found = self.session.execute(
                select(model.id).where(
                    model.id == document_id,
                    model.tenant_id == self.tenant.tenant_id,
                    model.deleted_at.is_(None),
                )
            ).first()
            if found is not None:
                return kind
        raise DocumentNotFoundError(document_id)
