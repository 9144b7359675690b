"""
ORM models for the billing kernel.

Importing this package registers every kernel table on ``Base.metadata``.
"""

from billing_kernel.models.audit_event import ActivityLog, AuditAction
from billing_kernel.models.document_counter import DocumentCounter
from billing_kernel.models.documents import (
    Invoice,
    InvoiceLine,
    PurchaseInvoice,
    PurchaseInvoiceLine,
    Quote,
    QuoteLine,
)
from billing_kernel.models.tenant import Client, Company, Provider, Tax

__all__ = [
    "ActivityLog",
    "AuditAction",
    "Client",
    "Company",
    "DocumentCounter",
    "Invoice",
    "InvoiceLine",
    "Provider",
    "PurchaseInvoice",
    "PurchaseInvoiceLine",
    "Quote",
    "QuoteLine",
    "Tax",
]
