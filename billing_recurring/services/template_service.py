"""
TemplateService -- create, edit, pause and inspect recurring templates.

Responsibility:
    Validates and stores templates and their line templates, computes the
    first ``next_run_date``, and exposes run history.

Architecture position:
    billing_recurring/services.  Session-bound like the kernel services:
    flushes, never commits.

Invariants enforced:
    - A client is required and must exist; the name must not be blank;
      day_of_month is 1..28; at least one line.  All checked before any
      write.
    - next_run_date is set on creation to the first ``day_of_month`` on or
      after start_date.  The scheduler only ever advances it.
    - Resuming a template whose next_run_date has passed moves it to the
      next matching day from today, so a long pause does not trigger a
      backlog of catch-up runs.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.db.types import validate_currency
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.dtos import LineInput, TenantContext
from billing_kernel.domain.money import to_decimal
from billing_kernel.exceptions import (
    CounterpartyNotFoundError,
    EmptyLinesError,
    InvalidAmountError,
    MissingCounterpartyError,
    TaxNotFoundError,
    TemplateNotFoundError,
    ValidationError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_event import AuditAction
from billing_kernel.models.tenant import Client, Tax
from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.base import BaseService

from billing_recurring.domain.schedule import initial_next_run_date, validate_day_of_month
from billing_recurring.domain.types import (
    RecurringMode,
    RunInfo,
    TemplateInfo,
    TemplateStatus,
)
from billing_recurring.models.recurring import (
    RecurringRun,
    RecurringTemplate,
    RecurringTemplateLine,
)

logger = get_logger("recurring.templates")

ENTITY_TYPE = "recurring_template"


class TemplateService(BaseService[RecurringTemplate]):
    """
    Service for recurring template management.

    Non-goals:
        - Does NOT run templates; see RecurringRunner.
        - Does NOT call ``session.commit()``.
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

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _audit(
        self,
        template_id: UUID,
        action: AuditAction,
        actor_id: UUID | None,
        metadata: dict | None = None,
    ) -> None:
        if self._auditor is not None:
            self._auditor.record_audit_event(
                tenant_id=self.tenant.tenant_id,
                actor_id=actor_id,
                entity_type=ENTITY_TYPE,
                entity_id=template_id,
                action=action,
                metadata=metadata,
            )

    def _require_client(self, client_id: UUID | None) -> None:
        if client_id is None:
            raise MissingCounterpartyError(ENTITY_TYPE)
        client = self.session.get(Client, client_id)
        if client is None or client.is_deleted or client.tenant_id != self.tenant.tenant_id:
            raise CounterpartyNotFoundError(client_id, "client")

    def _build_lines(
        self, lines: Sequence[LineInput], template_id: UUID | None = None
    ) -> list[RecurringTemplateLine]:
        if not lines:
            raise EmptyLinesError(ENTITY_TYPE, template_id)
        built = []
        for position, line in enumerate(lines, start=1):
            if isinstance(line.unit_price_cents, bool) or not isinstance(line.unit_price_cents, int):
                raise InvalidAmountError(
                    "unit_price_cents", line.unit_price_cents, "must be an integer count of minor units"
                )
            if line.tax_id is not None:
                tax = self.session.get(Tax, line.tax_id)
                if tax is None or tax.tenant_id != self.tenant.tenant_id:
                    raise TaxNotFoundError(line.tax_id)
            built.append(
                RecurringTemplateLine(
                    position=position,
                    description=line.description,
                    quantity=to_decimal(line.quantity, "quantity"),
                    unit_price_cents=line.unit_price_cents,
                    tax_id=line.tax_id,
                )
            )
        return built

    def _load(self, template_id: UUID) -> RecurringTemplate:
        template = self.session.get(RecurringTemplate, template_id)
        if template is None or template.tenant_id != self.tenant.tenant_id:
            raise TemplateNotFoundError(template_id)
        return template

    @staticmethod
    def _require_name(name: str | None) -> str:
        if name is None or not name.strip():
            raise ValidationError("Recurring template name must not be blank")
        return name.strip()

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def create_template(
        self,
        client_id: UUID | None,
        name: str,
        day_of_month: int,
        start_date: date,
        lines: Sequence[LineInput],
        mode: RecurringMode | str = RecurringMode.GENERATE_AND_SEND,
        currency: str | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> TemplateInfo:
        """
        Create an ACTIVE template.

        Raises:
            MissingCounterpartyError / CounterpartyNotFoundError
            ValidationError: blank name.
            DayOfMonthOutOfRangeError: day outside 1..28.
            EmptyLinesError: no lines.
        """
        self._require_client(client_id)
        name = self._require_name(name)
        validate_day_of_month(day_of_month)
        built_lines = self._build_lines(lines)

        template = RecurringTemplate(
            tenant_id=self.tenant.tenant_id,
            client_id=client_id,
            name=name,
            day_of_month=day_of_month,
            start_date=start_date,
            next_run_date=initial_next_run_date(start_date, day_of_month),
            mode=RecurringMode(mode).value,
            status=TemplateStatus.ACTIVE.value,
            currency=validate_currency(currency or self.tenant.default_currency),
            notes=notes,
            created_by_id=actor_id,
            lines=built_lines,
        )
        self.session.add(template)
        self.session.flush()

        logger.info(
            "recurring_template_created",
            extra={
                "template_id": str(template.id),
                "next_run_date": template.next_run_date,
                "mode": template.mode,
            },
        )
        self._audit(template.id, AuditAction.CREATE, actor_id, {"name": name})
        return template.to_dto()

    def update_template(
        self,
        template_id: UUID,
        name: str | None = None,
        client_id: UUID | None = None,
        day_of_month: int | None = None,
        mode: RecurringMode | str | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> TemplateInfo:
        """
        Change template fields.  ``None`` leaves a field as is.

        Changing ``day_of_month`` moves next_run_date to the first matching
        day on or after the later of today and start_date.
        """
        template = self._load(template_id)
        changed: list[str] = []

        if name is not None:
            template.name = self._require_name(name)
            changed.append("name")
        if client_id is not None:
            self._require_client(client_id)
            template.client_id = client_id
            changed.append("client_id")
        if day_of_month is not None and day_of_month != template.day_of_month:
            validate_day_of_month(day_of_month)
            template.day_of_month = day_of_month
            template.next_run_date = initial_next_run_date(
                max(self.clock.today(), template.start_date), day_of_month
            )
            changed.append("day_of_month")
        if mode is not None:
            template.mode = RecurringMode(mode).value
            changed.append("mode")
        if notes is not None:
            template.notes = notes
            changed.append("notes")

        template.updated_by_id = actor_id
        self.session.flush()
        self._audit(template.id, AuditAction.UPDATE, actor_id, {"fields": changed})
        return template.to_dto()

    def replace_template_lines(
        self,
        template_id: UUID,
        lines: Sequence[LineInput],
        actor_id: UUID | None = None,
    ) -> TemplateInfo:
        template = self._load(template_id)
        template.lines = self._build_lines(lines, template.id)
        template.updated_by_id = actor_id
        self.session.flush()
        self._audit(template.id, AuditAction.UPDATE, actor_id, {"fields": ["lines"]})
        return template.to_dto()

    def pause_template(self, template_id: UUID, actor_id: UUID | None = None) -> TemplateInfo:
        template = self._load(template_id)
        template.status = TemplateStatus.PAUSED.value
        template.updated_by_id = actor_id
        self.session.flush()
        logger.info("recurring_template_paused", extra={"template_id": str(template.id)})
        self._audit(template.id, AuditAction.PAUSE, actor_id)
        return template.to_dto()

    def resume_template(self, template_id: UUID, actor_id: UUID | None = None) -> TemplateInfo:
        template = self._load(template_id)
        today = self.clock.today()
        template.status = TemplateStatus.ACTIVE.value
        if template.next_run_date < today:
            template.next_run_date = initial_next_run_date(today, template.day_of_month)
        template.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "recurring_template_resumed",
            extra={"template_id": str(template.id), "next_run_date": template.next_run_date},
        )
        self._audit(
            template.id, AuditAction.RESUME, actor_id,
            {"next_run_date": template.next_run_date.isoformat()},
        )
        return template.to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_template(self, template_id: UUID) -> TemplateInfo:
        """
        Raises:
            TemplateNotFoundError: Unknown or foreign template.
        """
        return self._load(template_id).to_dto()

    def list_templates(self, status: TemplateStatus | str | None = None) -> tuple[TemplateInfo, ...]:
        stmt = select(RecurringTemplate).where(
            RecurringTemplate.tenant_id == self.tenant.tenant_id
        )
        if status is not None:
            stmt = stmt.where(RecurringTemplate.status == TemplateStatus(status).value)
        stmt = stmt.order_by(RecurringTemplate.next_run_date, RecurringTemplate.name)
        return tuple(t.to_dto() for t in self.session.execute(stmt).scalars())

    def list_runs(self, template_id: UUID) -> tuple[RunInfo, ...]:
        """Run history, oldest first."""
        template = self._load(template_id)
        runs = self.session.execute(
            select(RecurringRun)
            .where(RecurringRun.template_id == template.id)
            .order_by(RecurringRun.created_at, RecurringRun.run_date)
        ).scalars()
        return tuple(run.to_dto() for run in runs)
