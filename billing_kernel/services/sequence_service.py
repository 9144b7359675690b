"""
SequenceService -- gapless document numbers via locked counter rows.

Responsibility:
    Hands out the next number for a (tenant, year, document type) key and
    formats it.  Also offers a read-only preview of the next number and the
    audited administrative reset.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by DocumentLifecycleService inside the same SAVEPOINT as the
    status transition that consumes the number.

Invariants enforced:
    - Uniqueness: ``SELECT ... FOR UPDATE`` on the counter row (SQLite: the
      write lock taken at BEGIN IMMEDIATE) serializes allocations for one
      key, so two transactions never read the same current_number.
    - Gapless per key: the increment is part of the caller's transaction.
      If the transition rolls back, so does the increment.
    - The aggregate-max-plus-one pattern over document tables is never used.
      The counter row is the only source of truth.

Failure modes:
    - IntegrityError on a concurrent first allocation for a new key: handled
      by rolling back a savepoint and re-reading the winner's row under lock.
    - Store conflicts (lock timeout, deadlock) propagate to the caller's
      ``run_in_transaction`` which retries the whole transaction.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_kernel.domain.dtos import SequenceResetResult
from billing_kernel.domain.numbering import AllocatedNumber, DocType, format_document_number
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_event import AuditAction
from billing_kernel.models.document_counter import DocumentCounter
from billing_kernel.models.documents import Invoice, PurchaseInvoice, Quote
from billing_kernel.services.auditor_service import AuditorService

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for allocating document numbers.

    Contract:
        ``next_number`` returns a number strictly greater than every number
        previously returned for the key, exactly once, provided the caller's
        transaction commits.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT use application-level mutexes; concurrent processes are
          serialized by the store.

    Usage:
        with session_scope() as session:
            allocated = SequenceService(session).next_number(
                tenant_id, 2026, DocType.INVOICE,
            )
            invoice.number = allocated.number
    """

    def __init__(self, session: Session, auditor: AuditorService | None = None):
        self._session = session
        self._auditor = auditor

    def _lock_counter(
        self, tenant_id: UUID, year: int, doc_type: DocType
    ) -> DocumentCounter | None:
        return self._session.execute(
            select(DocumentCounter)
            .where(
                DocumentCounter.tenant_id == tenant_id,
                DocumentCounter.year == year,
                DocumentCounter.doc_type == doc_type.value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_or_create_counter(
        self, tenant_id: UUID, year: int, doc_type: DocType
    ) -> DocumentCounter:
        counter = self._lock_counter(tenant_id, year, doc_type)
        if counter is not None:
            return counter

        # First use of this key.  Another transaction may be creating it
        # concurrently; the savepoint keeps the caller's work intact.
        savepoint = self._session.begin_nested()
        try:
            counter = DocumentCounter(
                tenant_id=tenant_id,
                year=year,
                doc_type=doc_type.value,
                current_number=0,
            )
            self._session.add(counter)
            self._session.flush()
            savepoint.commit()
            return counter
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"doc_type": doc_type.value, "year": year},
            )
            savepoint.rollback()
            counter = self._lock_counter(tenant_id, year, doc_type)
            if counter is None:
                raise
            return counter

    def next_number(
        self, tenant_id: UUID, year: int, doc_type: DocType | str
    ) -> AllocatedNumber:
        """
        Allocate the next number for the key.

        Preconditions:
            - The caller is inside a transaction that also performs the
              status transition consuming the number.

        Postconditions:
            - The counter row stays locked until that transaction ends.
            - Returns ``current_number + 1`` and its formatted form.
        """
        doc_type = DocType(doc_type)
        counter = self._lock_or_create_counter(tenant_id, year, doc_type)

        counter.current_number += 1
        self._session.flush()

        allocated = AllocatedNumber(
            doc_type=doc_type,
            year=year,
            number=counter.current_number,
            formatted=format_document_number(doc_type, year, counter.current_number),
        )
        logger.debug(
            "sequence_allocated",
            extra={
                "doc_type": doc_type.value,
                "year": year,
                "number": allocated.number,
                "formatted": allocated.formatted,
            },
        )
        return allocated

    def current_number(
        self, tenant_id: UUID, year: int, doc_type: DocType | str
    ) -> int:
        """Last number handed out for the key (0 if none)."""
        doc_type = DocType(doc_type)
        value = self._session.execute(
            select(DocumentCounter.current_number).where(
                DocumentCounter.tenant_id == tenant_id,
                DocumentCounter.year == year,
                DocumentCounter.doc_type == doc_type.value,
            )
        ).scalar_one_or_none()
        return value or 0

    def preview_next(
        self, tenant_id: UUID, year: int, doc_type: DocType | str
    ) -> str:
        """Formatted number the next allocation would return.  Consumes nothing."""
        doc_type = DocType(doc_type)
        return format_document_number(
            doc_type, year, self.current_number(tenant_id, year, doc_type) + 1
        )

    def reset(
        self,
        tenant_id: UUID,
        year: int,
        doc_type: DocType | str,
        value: int = 0,
        actor_id: UUID | None = None,
    ) -> SequenceResetResult:
        """
        Set the counter so the next allocation returns ``value + 1``.

        WARNING: This is an administrative escape hatch, not a normal-path
        operation.  If documents numbered above ``value`` already exist in
        this sequence, their numbers will be handed out again.  The result
        lists those documents; the reset is always logged at WARNING and
        written to the activity log.
        """
        doc_type = DocType(doc_type)
        if value < 0:
            raise ValueError(f"Counter value must be >= 0, got {value}")

        counter = self._lock_counter(tenant_id, year, doc_type)
        previous = counter.current_number if counter is not None else None
        if counter is None:
            counter = DocumentCounter(
                tenant_id=tenant_id,
                year=year,
                doc_type=doc_type.value,
                current_number=value,
            )
            self._session.add(counter)
        else:
            counter.current_number = value
        self._session.flush()

        conflicts = self._numbered_above(tenant_id, year, doc_type, value)
        result = SequenceResetResult(
            doc_type=doc_type,
            year=year,
            previous_number=previous,
            new_number=value,
            conflicting_references=conflicts,
        )

        logger.warning(
            "sequence_reset",
            extra={
                "doc_type": doc_type.value,
                "year": year,
                "previous_number": previous,
                "new_number": value,
                "conflicting_documents": len(conflicts),
            },
        )
        if self._auditor is not None:
            self._auditor.record_audit_event(
                tenant_id=tenant_id,
                actor_id=actor_id,
                entity_type="document_counter",
                entity_id=counter.id,
                action=AuditAction.RESET_SEQUENCE,
                metadata={
                    "doc_type": doc_type.value,
                    "year": year,
                    "previous_number": previous,
                    "new_number": value,
                    "conflicting_references": list(conflicts),
                },
            )
        return result

    def _numbered_above(
        self, tenant_id: UUID, year: int, doc_type: DocType, value: int
    ) -> tuple[str, ...]:
        if doc_type is DocType.QUOTE:
            model, extra = Quote, ()
        elif doc_type is DocType.PURCHASE_INVOICE:
            model, extra = PurchaseInvoice, ()
        else:
            model, extra = Invoice, (Invoice.type == doc_type.value,)

        rows = self._session.execute(
            select(model.reference)
            .where(
                model.tenant_id == tenant_id,
                model.year == year,
                model.number > value,
                *extra,
            )
            .order_by(model.number)
        ).scalars().all()
        return tuple(rows)

