"""
Tests for billing_kernel.services.delivery_service.

The renderer and sender are in-memory fakes (see conftest); failure
injection is done by setting their ``error`` attribute.
"""

import pytest
from sqlalchemy import select

from billing_kernel.domain.lifecycle import DocumentKind
from billing_kernel.exceptions import (
    CollaboratorNotConfiguredError,
    DocumentRenderError,
    EmailDeliveryError,
    ExternalServiceError,
    MissingEmailError,
    TransitionError,
)
from billing_kernel.models.audit_event import ActivityLog
from billing_kernel.services.delivery_service import (
    DeliveryService,
    EmailSubjects,
    deliver_document,
)


@pytest.fixture
def issued_invoice(lifecycle, draft_invoice):
    return lifecycle.emit_invoice(draft_invoice.id)


class TestSendDocument:
    def test_sends_invoice_to_client(self, delivery, issued_invoice, sender, renderer):
        receipt = delivery.send_document(DocumentKind.INVOICE, issued_invoice.id)

        assert receipt.sent_to == "cuentas@acme.test"
        assert receipt.filename == "F26-01.pdf"
        assert renderer.rendered == ["F26/01"]

        [email] = sender.sent
        assert email.to == "cuentas@acme.test"
        assert email.subject == "Factura F26/01 - Automatio"
        assert email.filename == "F26-01.pdf"
        assert email.attachment.startswith(b"%PDF")
        assert "121,00 EUR" in email.html_body
        assert "16/03/2026" in email.html_body
        assert "Acme Iberia S.A." in email.html_body

    def test_quote_subject_and_body(self, delivery, lifecycle, draft_quote, sender):
        lifecycle.emit_quote(draft_quote.id)
        delivery.send_document("quote", draft_quote.id)

        [email] = sender.sent
        assert email.subject == "Presupuesto PRE-2026-0001 - Automatio"
        assert email.filename == "PRE-2026-0001.pdf"
        assert "el presupuesto" in email.html_body
        assert "vencimiento" not in email.html_body

    def test_custom_subjects(self, session, tenant, clock, renderer, sender, issued_invoice):
        delivery = DeliveryService(
            session, tenant, renderer, sender,
            subjects=EmailSubjects(invoice="Invoice {number} from {tenant}"),
            clock=clock,
        )
        delivery.send_document(DocumentKind.INVOICE, issued_invoice.id)
        assert sender.sent[0].subject == "Invoice F26/01 from Automatio"

    def test_paid_invoice_can_be_resent(self, delivery, lifecycle, issued_invoice, sender):
        lifecycle.register_payment(issued_invoice.id, issued_invoice.totals.total_cents)
        delivery.send_document(DocumentKind.INVOICE, issued_invoice.id)
        assert len(sender.sent) == 1

    def test_send_is_audited_and_logged(self, session, delivery, issued_invoice, captured_logs):
        delivery.send_document(DocumentKind.INVOICE, issued_invoice.id)

        rows = session.execute(
            select(ActivityLog).where(
                ActivityLog.entity_id == issued_invoice.id,
                ActivityLog.action == "SEND",
            )
        ).scalars().all()
        assert len(rows) == 1
        assert rows[0].entity_type == "invoice"

        sent = [r for r in captured_logs() if r["message"] == "document_sent"]
        assert sent[0]["attachment"] == "F26-01.pdf"


class TestSendRejected:
    def test_draft_is_never_sent(self, delivery, draft_invoice, sender, renderer):
        with pytest.raises(TransitionError):
            delivery.send_document(DocumentKind.INVOICE, draft_invoice.id)
        assert sender.sent == []
        assert renderer.rendered == []

    def test_purchase_invoices_are_not_sent(self, delivery, lifecycle, documents, seed, consulting_line):
        purchase = documents.create_purchase_invoice(seed.provider_id, [consulting_line])
        lifecycle.book_purchase(purchase.id)
        with pytest.raises(TransitionError):
            delivery.send_document(DocumentKind.PURCHASE_INVOICE, purchase.id)

    def test_client_without_email(self, delivery, documents, lifecycle, seed, consulting_line, renderer):
        draft = documents.create_invoice(seed.client_without_email_id, [consulting_line])
        lifecycle.emit_invoice(draft.id)
        with pytest.raises(MissingEmailError):
            delivery.send_document(DocumentKind.INVOICE, draft.id)
        assert renderer.rendered == []


class TestCollaboratorFailures:
    def test_render_failure_is_wrapped(self, delivery, issued_invoice, renderer, sender):
        cause = ValueError("template missing")
        renderer.error = cause
        with pytest.raises(DocumentRenderError) as exc_info:
            delivery.send_document(DocumentKind.INVOICE, issued_invoice.id)

        assert exc_info.value.__cause__ is cause
        assert exc_info.value.code == "DOCUMENT_RENDER_FAILED"
        assert "template missing" in str(exc_info.value)
        assert sender.sent == []

    def test_send_failure_is_wrapped(self, delivery, issued_invoice, sender):
        cause = ConnectionError("smtp refused")
        sender.error = cause
        with pytest.raises(EmailDeliveryError) as exc_info:
            delivery.send_document(DocumentKind.INVOICE, issued_invoice.id)

        assert isinstance(exc_info.value, ExternalServiceError)
        assert exc_info.value.__cause__ is cause

    def test_failed_send_leaves_document_issued(self, delivery, documents, issued_invoice, sender):
        sender.error = ConnectionError("smtp refused")
        with pytest.raises(EmailDeliveryError):
            delivery.send_document(DocumentKind.INVOICE, issued_invoice.id)
        assert documents.get(DocumentKind.INVOICE, issued_invoice.id).status == "ISSUED"

    @pytest.mark.parametrize("missing", ["renderer", "sender"])
    def test_collaborator_not_configured(self, session, tenant, clock, renderer, sender, issued_invoice, missing):
        delivery = DeliveryService(
            session,
            tenant,
            renderer=None if missing == "renderer" else renderer,
            sender=None if missing == "sender" else sender,
            clock=clock,
        )
        with pytest.raises(CollaboratorNotConfiguredError):
            delivery.send_document(DocumentKind.INVOICE, issued_invoice.id)


class TestStepwiseDelivery:
    def test_prepare_deliver_record(self, delivery, issued_invoice, tenant, renderer, sender, auditor):
        outgoing = delivery.prepare(DocumentKind.INVOICE, issued_invoice.id)
        assert outgoing.to == "cuentas@acme.test"
        assert outgoing.document.reference == "F26/01"

        receipt = deliver_document(outgoing, tenant, renderer, sender)
        assert receipt.document_id == issued_invoice.id
        assert len(sender.sent) == 1

        delivery.record_sent(receipt)
        actions = {row.action for row in auditor.trail("invoice", issued_invoice.id)}
        assert "SEND" in actions
