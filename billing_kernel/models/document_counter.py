"""
Module: billing_kernel.models.document_counter
Responsibility: The locked counter row behind every document number.
Architecture position: Kernel > Models.  Written only by SequenceService.

Invariants enforced:
    - One row per (tenant_id, year, doc_type) -- UNIQUE constraint.
    - current_number >= 0 -- CHECK constraint.
    - current_number only moves forward, except through the audited
      SequenceService.reset() escape hatch.
"""

from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, UUIDString


class DocumentCounter(Base):
    """
    Per-tenant, per-year, per-type sequence counter.

    Row-level locking (``SELECT ... FOR UPDATE``, or the SQLite write lock)
    serializes allocations for the same key.
    """

    __tablename__ = "document_counters"

    __table_args__ = (
        UniqueConstraint("tenant_id", "year", "doc_type", name="uq_counter_key"),
        CheckConstraint("current_number >= 0", name="chk_counter_non_negative"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    doc_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Last number handed out; the next allocation returns current_number + 1
    current_number: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0,
    )

    def __repr__(self) -> str:
        return f"<DocumentCounter {self.doc_type} {self.year}: {self.current_number}>"
