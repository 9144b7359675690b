"""
DeliveryService -- render a numbered document and email it to the client.

Responsibility:
    Checks the document may be sent, renders it through the injected
    ``PdfRenderer``, sends it through the injected ``EmailSender`` and
    appends a SEND audit event.

Architecture position:
    Kernel > Services.  The only kernel code that calls external
    collaborators.  Performs no writes other than the audit row, so it can
    run outside the transaction that emitted the document.

Invariants enforced:
    - DRAFT documents are never sent (TransitionError).
    - The client must have an email (MissingEmailError) before rendering.
    - Collaborator failures are wrapped in ExternalServiceError subclasses
      with the original exception as ``__cause__``.  Nothing already
      committed is reverted.
"""

import html
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock
from billing_kernel.domain.collaborators import EmailSender, PdfRenderer
from billing_kernel.domain.dtos import DocumentSnapshot, TenantContext
from billing_kernel.domain.lifecycle import Action, DocumentKind, require_transition
from billing_kernel.domain.money import format_cents
from billing_kernel.domain.numbering import DocType, attachment_filename
from billing_kernel.exceptions import (
    CollaboratorNotConfiguredError,
    DocumentRenderError,
    EmailDeliveryError,
    MissingEmailError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_event import AuditAction
from billing_kernel.models.tenant import Client
from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.base import BaseService
from billing_kernel.services.document_service import DocumentService

logger = get_logger("services.delivery")


@dataclass(frozen=True)
class EmailSubjects:
    """Subject templates; ``{number}`` and ``{tenant}`` are substituted."""

    invoice: str = "Factura {number} - {tenant}"
    quote: str = "Presupuesto {number} - {tenant}"
    credit_note: str = "Factura rectificativa {number} - {tenant}"

    def for_document(self, document: DocumentSnapshot, tenant: TenantContext) -> str:
        if document.doc_type is DocType.QUOTE:
            template = self.quote
        elif document.doc_type is DocType.CREDIT_NOTE:
            template = self.credit_note
        else:
            template = self.invoice
        return template.format(number=document.reference, tenant=tenant.display_name)


@dataclass(frozen=True)
class OutgoingDocument:
    """Everything needed to send a document, captured while the session is open."""

    document: DocumentSnapshot
    to: str
    subject: str
    html_body: str
    filename: str


@dataclass(frozen=True)
class DeliveryReceipt:
    document_id: UUID
    sent_to: str
    subject: str
    filename: str


_DOCUMENT_NOUNS = {
    DocType.QUOTE: "el presupuesto",
    DocType.INVOICE: "la factura",
    DocType.CREDIT_NOTE: "la factura rectificativa",
}


def build_email_body(
    document: DocumentSnapshot,
    client_name: str,
    tenant: TenantContext,
) -> str:
    """Plain HTML body naming the document, its total and (invoices) due date."""
    noun = _DOCUMENT_NOUNS.get(document.doc_type, "el documento")
    parts = [
        f"<p>Estimado/a <strong>{html.escape(client_name)}</strong>,</p>",
        (
            f"<p>Adjunto encontrará {noun} <strong>{html.escape(document.reference or '')}</strong> "
            f"por un importe total de <strong>{format_cents(document.totals.total_cents, document.currency)}</strong>.</p>"
        ),
    ]
    if document.due_date is not None and document.doc_type is not DocType.QUOTE:
        parts.append(
            f"<p>Fecha de vencimiento: <strong>{document.due_date:%d/%m/%Y}</strong></p>"
        )
    parts.append("<p>Quedamos a su disposición para cualquier consulta.</p>")
    parts.append(f"<p>{html.escape(tenant.display_name)}</p>")
    return "\n".join(parts)


def deliver_document(
    outgoing: OutgoingDocument,
    tenant: TenantContext,
    renderer: PdfRenderer | None,
    sender: EmailSender | None,
) -> DeliveryReceipt:
    """
    Render and send a prepared document.  Touches no session.

    Raises:
        CollaboratorNotConfiguredError: No renderer or sender.
        DocumentRenderError / EmailDeliveryError: Collaborator failed; the
            original exception is kept as ``__cause__``.
    """
    if renderer is None:
        raise CollaboratorNotConfiguredError("renderer")
    if sender is None:
        raise CollaboratorNotConfiguredError("sender")

    try:
        pdf = renderer.render_document_pdf(outgoing.document, tenant)
    except Exception as exc:
        raise DocumentRenderError(str(exc)) from exc

    try:
        sender.send_document_email(
            outgoing.to, outgoing.subject, outgoing.html_body, pdf, outgoing.filename
        )
    except Exception as exc:
        raise EmailDeliveryError(str(exc)) from exc

    return DeliveryReceipt(
        document_id=outgoing.document.id,
        sent_to=outgoing.to,
        subject=outgoing.subject,
        filename=outgoing.filename,
    )


class DeliveryService(BaseService[Client]):
    """
    Service for sending numbered documents by email.

    ``send_document`` does everything in one call.  Callers that must not
    hold a transaction open during rendering and sending use the three
    steps separately: ``prepare`` (session), ``deliver_document`` (no
    session), ``record_sent`` (session).

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT retry failed sends; callers decide.
    """

    def __init__(
        self,
        session: Session,
        tenant: TenantContext,
        renderer: PdfRenderer | None = None,
        sender: EmailSender | None = None,
        subjects: EmailSubjects | None = None,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session, tenant, clock)
        self._renderer = renderer
        self._sender = sender
        self._subjects = subjects or EmailSubjects()
        self._auditor = auditor
        self._documents = DocumentService(session, tenant, self.clock)

    def prepare(self, kind: DocumentKind | str, document_id: UUID) -> OutgoingDocument:
        """
        Check the document may be sent and build the email.

        Raises:
            TransitionError: DRAFT, or a kind that is never sent.
            MissingEmailError: The client has no email.
        """
        kind = DocumentKind(kind)
        document = self._documents.get(kind, document_id)
        require_transition(kind, document.id, document.status, Action.SEND)

        client = self.session.get(Client, document.counterparty_id)
        if client is None or not client.email:
            raise MissingEmailError(document.counterparty_id)

        return OutgoingDocument(
            document=document,
            to=client.email,
            subject=self._subjects.for_document(document, self.tenant),
            html_body=build_email_body(document, client.name, self.tenant),
            filename=attachment_filename(document.reference),
        )

    def record_sent(self, receipt: DeliveryReceipt, actor_id: UUID | None = None) -> None:
        """Log and audit a completed send."""
        logger.info(
            "document_sent",
            extra={
                "document_id": str(receipt.document_id),
                "sent_to": receipt.sent_to,
                "attachment": receipt.filename,
            },
        )
        if self._auditor is not None:
            self._auditor.record_audit_event(
                tenant_id=self.tenant.tenant_id,
                actor_id=actor_id,
                entity_type=self._documents.find_kind(receipt.document_id).value,
                entity_id=receipt.document_id,
                action=AuditAction.SEND,
                metadata={"sent_to": receipt.sent_to, "subject": receipt.subject},
            )

    def send_document(
        self,
        kind: DocumentKind | str,
        document_id: UUID,
        actor_id: UUID | None = None,
    ) -> DeliveryReceipt:
        """
        Render and email one document to its client.

        Raises:
            TransitionError: DRAFT, or a kind that is never sent.
            MissingEmailError: The client has no email.
            CollaboratorNotConfiguredError: No renderer or sender injected.
            DocumentRenderError / EmailDeliveryError: Collaborator failed.
        """
        outgoing = self.prepare(kind, document_id)
        receipt = deliver_document(outgoing, self.tenant, self._renderer, self._sender)
        self.record_sent(receipt, actor_id)
        return receipt
