"""
RecurringRunner -- turn due templates into invoices, once per key.

Contract:
    ``run_template()`` processes one template for one idempotency key and
    always returns a ``TemplateRunResult``; ``run_due_templates()`` does so
    for every due template and never lets one template's failure reach
    another.

Architecture: billing_recurring/services.  Composes the kernel's
    DocumentService, DocumentLifecycleService and DeliveryService.  Owns its
    transaction boundaries through ``run_in_transaction``.

Invariants enforced:
    - At most one run row per idempotency key (read check, then the UNIQUE
      constraint as backstop).  A collision never creates an invoice and is
      recorded as a SKIPPED run with a NULL key.
    - Each template runs in its own transactions:
        1. generation: run row (GENERATED) + DRAFT invoice + next_run_date
        2. emission (send mode): number the invoice
        3. render and send, outside any transaction
        4. finalisation: run -> SUCCESS or FAILED
      A failure in 2-4 never reverts the committed invoice.
    - next_run_date advances one month for every recorded
      SUCCESS/FAILED/GENERATED run, and never stays in or before the
      month of ``now``: a template that fell behind catches up in one run.
      A SKIPPED run only moves it when it is still in or before that month.

Failure modes:
    - Generation fails: FAILED run without invoice, logged with
      ``recurring_template_failed``.
    - Emission, rendering or sending fails: run FAILED with
      ``error_message``, invoice kept (DRAFT or ISSUED).
    - Finalisation itself fails: the run stays GENERATED and the result
      says so.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_kernel.db.engine import run_in_transaction
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.collaborators import EmailSender, PdfRenderer
from billing_kernel.domain.dtos import LineInput, TenantContext
from billing_kernel.exceptions import MissingEmailError, TemplateNotFoundError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.audit_event import AuditAction
from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.delivery_service import (
    DeliveryReceipt,
    DeliveryService,
    OutgoingDocument,
    deliver_document,
)
from billing_kernel.services.document_service import DocumentService
from billing_kernel.services.lifecycle_service import DocumentLifecycleService
from billing_kernel.services.party_service import load_tenant_context

from billing_recurring.domain.schedule import (
    manual_idempotency_key,
    next_run_after_period,
    period_key,
    scheduled_idempotency_key,
)
from billing_recurring.domain.types import (
    ManualRunDedupe,
    RecurringMode,
    RunnerSettings,
    RunStatus,
    TemplateRunResult,
    TemplateStatus,
    TickResult,
    TriggerKind,
)
from billing_recurring.models.recurring import RecurringRun, RecurringTemplate

logger = get_logger("recurring.runner")

ENTITY_TYPE = "recurring_template"


@dataclass(frozen=True)
class _Generated:
    """What the generation transaction committed."""

    run_id: UUID
    template_name: str
    invoice_id: UUID
    tenant: TenantContext
    mode: RecurringMode


class RecurringRunner:
    """Executes recurring templates.

    Contract:
        - ``run_template()`` uses the scheduled key ``{id}-{YYYY-MM}``.
        - ``run_template_now()`` uses the key chosen by
          ``settings.manual_run_dedupe``.
        - Both return partial successes (invoice created, send failed)
          with ``invoice_id`` and ``error_message`` both set.

    Non-goals:
        - Does NOT retry a failed period; the next attempt is next month.
        - Does NOT decide which templates are due on its own schedule; see
          RecurringScheduler.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        renderer: PdfRenderer | None = None,
        sender: EmailSender | None = None,
        settings: RunnerSettings | None = None,
        actor_id: UUID | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._renderer = renderer
        self._sender = sender
        self._settings = settings or RunnerSettings()
        self._actor_id = actor_id

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def due_template_ids(self, now: datetime | None = None) -> list[UUID]:
        """ACTIVE templates with ``next_run_date <= now``, earliest first."""
        today = (now or self._clock.now()).date()

        def work(session: Session) -> list[UUID]:
            return list(
                session.execute(
                    select(RecurringTemplate.id)
                    .where(
                        RecurringTemplate.status == TemplateStatus.ACTIVE.value,
                        RecurringTemplate.next_run_date <= today,
                    )
                    .order_by(RecurringTemplate.next_run_date, RecurringTemplate.name)
                ).scalars()
            )

        return self._transaction(work)

    def run_due_templates(
        self,
        now: datetime | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> TickResult:
        """Process every due template; stops early when ``should_stop()``."""
        now = now or self._clock.now()
        results: list[TemplateRunResult] = []

        for template_id in self.due_template_ids(now):
            if should_stop is not None and should_stop():
                logger.info("recurring_tick_interrupted", extra={"processed": len(results)})
                break
            try:
                results.append(self.run_template(template_id, now))
            except Exception:
                # Template deleted between selection and processing, or the
                # store failed while recording; the next template still runs.
                logger.exception(
                    "recurring_template_failed",
                    extra={"template_id": str(template_id)},
                )

        return TickResult(
            processed_count=len(results),
            results=tuple(results),
            timestamp=now,
        )

    def run_template(
        self,
        template_id: UUID,
        now: datetime | None = None,
        trigger: TriggerKind = TriggerKind.SCHEDULED,
    ) -> TemplateRunResult:
        now = now or self._clock.now()
        return self._execute(
            template_id, now, trigger, scheduled_idempotency_key(template_id, now)
        )

    def run_template_now(
        self, template_id: UUID, now: datetime | None = None
    ) -> TemplateRunResult:
        """
        Run a template immediately, regardless of next_run_date.

        Raises:
            TemplateNotFoundError: Unknown template.
        """
        now = now or self._clock.now()
        if self._settings.manual_run_dedupe is ManualRunDedupe.PERIOD:
            key = scheduled_idempotency_key(template_id, now)
        else:
            key = manual_idempotency_key(template_id, now)
        return self._execute(template_id, now, TriggerKind.MANUAL, key)

    # -------------------------------------------------------------------------
    # Orchestration
    # -------------------------------------------------------------------------

    def _transaction(self, work):
        return run_in_transaction(
            work, self._session_factory, max_attempts=self._settings.max_attempts
        )

    def _execute(
        self,
        template_id: UUID,
        now: datetime,
        trigger: TriggerKind,
        key: str,
    ) -> TemplateRunResult:
        with LogContext.bind(template_id=str(template_id), idempotency_key=key):
            try:
                generated = self._transaction(
                    lambda session: self._generate(session, template_id, now, trigger, key)
                )
            except TemplateNotFoundError:
                raise
            except IntegrityError:
                # Another process recorded this key after our read check.
                return self._transaction(
                    lambda session: self._record_skipped(session, template_id, now, trigger, key)
                )
            except Exception as exc:
                logger.exception("recurring_template_failed")
                return self._record_failure(template_id, now, trigger, key, exc)

            if isinstance(generated, TemplateRunResult):
                return generated

            if generated.mode is RecurringMode.GENERATE_ONLY:
                result = TemplateRunResult(
                    template_id=template_id,
                    template_name=generated.template_name,
                    status=RunStatus.SUCCESS,
                    idempotency_key=key,
                    invoice_id=generated.invoice_id,
                )
            else:
                result = self._emit_and_send(template_id, key, generated)

            logger.info(
                "recurring_run_recorded",
                extra={
                    "status": result.status.value,
                    "trigger": trigger.value,
                    "invoice_id": str(result.invoice_id),
                    "invoice_number": result.invoice_number,
                },
            )
            return result

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _lock_template(self, session: Session, template_id: UUID) -> RecurringTemplate:
        template = session.execute(
            select(RecurringTemplate)
            .where(RecurringTemplate.id == template_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    def _new_run(
        self,
        template: RecurringTemplate,
        now: datetime,
        trigger: TriggerKind,
        key: str,
        status: RunStatus,
    ) -> RecurringRun:
        return RecurringRun(
            template_id=template.id,
            run_date=now.date(),
            status=status.value,
            trigger=trigger.value,
            period_key=period_key(now),
            idempotency_key=None if status is RunStatus.SKIPPED else key,
            requested_key=key,
        )

    def _generate(
        self,
        session: Session,
        template_id: UUID,
        now: datetime,
        trigger: TriggerKind,
        key: str,
    ) -> _Generated | TemplateRunResult:
        template = self._lock_template(session, template_id)

        existing = session.execute(
            select(RecurringRun.id).where(RecurringRun.idempotency_key == key)
        ).scalar_one_or_none()
        if existing is not None:
            return self._record_skipped(session, template_id, now, trigger, key)

        run = self._new_run(template, now, trigger, key, RunStatus.GENERATED)
        session.add(run)
        session.flush()

        tenant = load_tenant_context(session, template.tenant_id)
        auditor = AuditorService(session, self._clock)
        documents = DocumentService(session, tenant, self._clock, auditor)
        invoice = documents.create_invoice(
            client_id=template.client_id,
            lines=[
                LineInput(
                    description=line.description,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    tax_id=line.tax_id,
                )
                for line in template.lines
            ],
            notes=template.notes,
            currency=template.currency,
            actor_id=self._actor_id,
        )

        mode = RecurringMode(template.mode)
        run.generated_invoice_id = invoice.id
        if mode is RecurringMode.GENERATE_ONLY:
            run.status = RunStatus.SUCCESS.value
        template.next_run_date = next_run_after_period(template.next_run_date, now)
        session.flush()

        auditor.record_audit_event(
            tenant_id=tenant.tenant_id,
            actor_id=self._actor_id,
            entity_type=ENTITY_TYPE,
            entity_id=template.id,
            action=AuditAction.RECURRING_RUN,
            metadata={
                "invoice_id": str(invoice.id),
                "period_key": run.period_key,
                "trigger": trigger.value,
            },
        )
        return _Generated(
            run_id=run.id,
            template_name=template.name,
            invoice_id=invoice.id,
            tenant=tenant,
            mode=mode,
        )

    def _record_skipped(
        self,
        session: Session,
        template_id: UUID,
        now: datetime,
        trigger: TriggerKind,
        key: str,
    ) -> TemplateRunResult:
        template = session.get(RecurringTemplate, template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        session.add(self._new_run(template, now, trigger, key, RunStatus.SKIPPED))
        # The period is already covered; a template still due in it moves on.
        if (template.next_run_date.year, template.next_run_date.month) <= (now.year, now.month):
            template.next_run_date = next_run_after_period(template.next_run_date, now)
        session.flush()
        logger.info(
            "recurring_run_skipped",
            extra={"trigger": trigger.value, "next_run_date": template.next_run_date},
        )
        return TemplateRunResult(
            template_id=template.id,
            template_name=template.name,
            status=RunStatus.SKIPPED,
            idempotency_key=key,
            error_message="Already executed for this period",
        )

    def _record_failure(
        self,
        template_id: UUID,
        now: datetime,
        trigger: TriggerKind,
        key: str,
        exc: Exception,
    ) -> TemplateRunResult:
        error_message = str(exc) or type(exc).__name__

        def work(session: Session) -> TemplateRunResult:
            template = self._lock_template(session, template_id)
            run = self._new_run(template, now, trigger, key, RunStatus.FAILED)
            run.error_message = error_message
            session.add(run)
            template.next_run_date = next_run_after_period(template.next_run_date, now)
            session.flush()
            return TemplateRunResult(
                template_id=template.id,
                template_name=template.name,
                status=RunStatus.FAILED,
                idempotency_key=key,
                error_message=error_message,
            )

        try:
            result = self._transaction(work)
        except IntegrityError:
            return self._transaction(
                lambda session: self._record_skipped(session, template_id, now, trigger, key)
            )
        logger.info(
            "recurring_run_recorded",
            extra={"status": result.status.value, "trigger": trigger.value},
        )
        return result

    def _emit_and_send(
        self, template_id: UUID, key: str, generated: _Generated
    ) -> TemplateRunResult:
        invoice_number: str | None = None
        outgoing: OutgoingDocument | None = None
        receipt: DeliveryReceipt | None = None
        error_message: str | None = None

        try:
            outgoing, invoice_number = self._transaction(
                lambda session: self._emit(session, generated)
            )
            if outgoing is not None:
                receipt = deliver_document(
                    outgoing, generated.tenant, self._renderer, self._sender
                )
        except Exception as exc:
            error_message = str(exc) or type(exc).__name__
            logger.warning(
                "recurring_send_failed",
                extra={
                    "invoice_id": str(generated.invoice_id),
                    "error_type": type(exc).__name__,
                    "error": error_message,
                },
            )

        status = RunStatus.FAILED if error_message else RunStatus.SUCCESS
        try:
            self._transaction(
                lambda session: self._finalise(session, generated, status, error_message, receipt)
            )
        except Exception:
            logger.exception(
                "recurring_finalise_failed",
                extra={"run_id": str(generated.run_id)},
            )
            status = RunStatus.GENERATED

        return TemplateRunResult(
            template_id=template_id,
            template_name=generated.template_name,
            status=status,
            idempotency_key=key,
            invoice_id=generated.invoice_id,
            invoice_number=invoice_number,
            error_message=error_message,
        )

    def _emit(
        self, session: Session, generated: _Generated
    ) -> tuple[OutgoingDocument | None, str | None]:
        auditor = AuditorService(session, self._clock)
        lifecycle = DocumentLifecycleService(
            session,
            generated.tenant,
            self._clock,
            auditor=auditor,
            default_payment_terms_days=self._settings.default_payment_terms_days,
        )
        invoice = lifecycle.emit_invoice(generated.invoice_id, self._actor_id)

        delivery = DeliveryService(
            session,
            generated.tenant,
            subjects=self._settings.email_subjects,
            clock=self._clock,
        )
        try:
            outgoing = delivery.prepare(invoice.kind, invoice.id)
        except MissingEmailError:
            logger.info(
                "recurring_send_skipped",
                extra={"invoice_id": str(invoice.id), "reason": "client_has_no_email"},
            )
            return None, invoice.reference
        return outgoing, invoice.reference

    def _finalise(
        self,
        session: Session,
        generated: _Generated,
        status: RunStatus,
        error_message: str | None,
        receipt: DeliveryReceipt | None,
    ) -> None:
        run = session.get(RecurringRun, generated.run_id)
        run.status = status.value
        run.error_message = error_message
        session.flush()

        if receipt is not None:
            DeliveryService(
                session,
                generated.tenant,
                clock=self._clock,
                auditor=AuditorService(session, self._clock),
            ).record_sent(receipt, self._actor_id)
