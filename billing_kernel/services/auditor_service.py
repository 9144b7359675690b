"""
AuditorService -- fire-and-forget activity log.

Responsibility:
    Appends one ``ActivityLog`` row per significant action: document
    creation and edits, emission, sending, conversion, payments, sequence
    resets and recurring runs.

Architecture position:
    Kernel > Services.  Called by every other kernel service and by the
    recurring runner.  Implements the ``AuditSink`` protocol.

Invariants enforced:
    - Append-only: rows are inserted, never updated.
    - Isolation: each append runs in its own SAVEPOINT.  A failing append
      is rolled back to that savepoint, logged, and swallowed, so it can
      never change the outcome of the business transaction around it.

Failure modes:
    - None surfaced.  Store errors are logged as ``audit_event_failed``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_event import ActivityLog, AuditAction

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditEntry:
    """A single entry in an entity's activity trail."""

    action: str
    occurred_at: datetime
    actor_id: UUID | None
    payload: dict[str, Any]


class AuditorService:
    """
    Service for appending and reading activity log entries.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT hash-chain entries; the log is informational.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def record_audit_event(
        self,
        tenant_id: UUID,
        actor_id: UUID | None,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction | str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        Append an activity row.  Never raises.

        Args:
            tenant_id: Owning tenant.
            actor_id: Who acted; None for the scheduler.
            entity_type: e.g. "invoice", "recurring_template".
            entity_id: ID of the affected entity.
            action: AuditAction member (or its value).
            metadata: JSON-serialisable details.
        """
        action_value = action.value if isinstance(action, AuditAction) else str(action)
        savepoint = self._session.begin_nested()
        try:
            self._session.add(
                ActivityLog(
                    tenant_id=tenant_id,
                    actor_id=actor_id,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    action=action_value,
                    payload=metadata or {},
                    occurred_at=self._clock.now(),
                )
            )
            self._session.flush()
            savepoint.commit()
        except SQLAlchemyError:
            savepoint.rollback()
            logger.exception(
                "audit_event_failed",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "action": action_value,
                },
            )
            return

        logger.debug(
            "audit_event_recorded",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action_value,
            },
        )

    def trail(self, entity_type: str, entity_id: UUID) -> tuple[AuditEntry, ...]:
        """All entries for one entity, oldest first."""
        rows = self._session.execute(
            select(ActivityLog)
            .where(
                ActivityLog.entity_type == entity_type,
                ActivityLog.entity_id == entity_id,
            )
            .order_by(ActivityLog.occurred_at)
        ).scalars().all()
        return tuple(
            AuditEntry(
                action=row.action,
                occurred_at=row.occurred_at,
                actor_id=row.actor_id,
                payload=row.payload or {},
            )
            for row in rows
        )
