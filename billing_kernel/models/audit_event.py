"""
Module: billing_kernel.models.audit_event
Responsibility: ORM persistence for the activity log (who did what to which
    document, template or counter).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only by convention: AuditorService only inserts.
    - Writes happen in their own SAVEPOINT so a failing append never
      affects the surrounding business transaction.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    # Document lifecycle
    EMIT = "EMIT"
    SEND = "SEND"
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"
    EXPIRE = "EXPIRE"
    CONVERT = "CONVERT"
    BOOK = "BOOK"
    PAY = "PAY"
    PAYMENT = "PAYMENT"

    # Administrative
    RESET_SEQUENCE = "RESET_SEQUENCE"

    # Recurring templates
    RECURRING_RUN = "RECURRING_RUN"
    PAUSE = "PAUSE"
    RESUME = "RESUME"


class ActivityLog(Base):
    """One audited action."""

    __tablename__ = "activity_logs"

    __table_args__ = (
        Index("idx_activity_entity", "entity_type", "entity_id"),
        Index("idx_activity_tenant_occurred", "tenant_id", "occurred_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("companies.id"),
        nullable=False,
    )

    # None for scheduler-driven actions
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # e.g. "invoice", "quote", "purchase_invoice", "document_counter"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ActivityLog {self.action} {self.entity_type}:{self.entity_id}>"
