"""
External collaborator interfaces consumed by the billing kernel.

Rendering, email transport and audit storage are outside the core.  The
kernel only depends on these protocols; concrete implementations are
injected by the caller (tests use in-memory fakes).
"""

from typing import Any, Protocol
from uuid import UUID

from billing_kernel.domain.dtos import DocumentSnapshot, TenantContext


class PdfRenderer(Protocol):
    """Renders a document to a printable PDF. May raise."""

    def render_document_pdf(
        self, document: DocumentSnapshot, tenant: TenantContext
    ) -> bytes:
        ...


class EmailSender(Protocol):
    """Delivers one email with one attachment. Raises on failure."""

    def send_document_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        attachment: bytes,
        filename: str,
    ) -> None:
        ...


class PaymentTermsLookup(Protocol):
    """Read-only lookup of a client's or provider's payment terms."""

    def get_payment_terms_days(self, counterparty_id: UUID) -> int | None:
        ...


class AuditSink(Protocol):
    """Fire-and-forget audit append. Must never raise into the caller."""

    def record_audit_event(
        self,
        tenant_id: UUID,
        actor_id: UUID | None,
        entity_type: str,
        entity_id: UUID,
        action: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        ...
