"""
ORM models for recurring invoicing.

Contract:
    RecurringTemplate and its lines describe a monthly invoice;
    RecurringRun is the append-only history of execution attempts.  Each
    has a ``to_dto()`` method.

Architecture: billing_recurring/models.  Imports from billing_kernel.db only.

Invariants enforced:
    - day_of_month between 1 and 28 (CHECK).
    - idempotency_key is UNIQUE on recurring_runs.  It is the sole
      mechanism preventing a second invoice for the same key; SKIPPED rows
      store NULL there and keep the colliding key in requested_key.
    - Template lines carry no computed totals; they are priced at run time
      with the tax rates current then.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import Base, TrackedBase, UUIDString
from billing_kernel.db.types import CentsType, CurrencyType, QuantityType
from billing_recurring.domain.types import (
    RecurringMode,
    RunInfo,
    RunStatus,
    TemplateInfo,
    TemplateLineInfo,
    TemplateStatus,
    TriggerKind,
)


class RecurringTemplateLine(Base):
    """Line template: what to invoice, not what it costs with tax."""

    __tablename__ = "recurring_template_lines"

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("recurring_templates.id"), nullable=False, index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(CentsType, nullable=False)
    tax_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("taxes.id"), nullable=True,
    )

    def to_dto(self) -> TemplateLineInfo:
        return TemplateLineInfo(
            position=self.position,
            description=self.description,
            quantity=self.quantity,
            unit_price_cents=self.unit_price_cents,
            tax_id=self.tax_id,
        )


class RecurringTemplate(TrackedBase):
    """Monthly invoice template for one client."""

    __tablename__ = "recurring_templates"

    __table_args__ = (
        CheckConstraint(
            "day_of_month BETWEEN 1 AND 28", name="chk_template_day_of_month",
        ),
        Index("idx_template_due", "status", "next_run_date"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )
    client_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("clients.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    day_of_month: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_run_date: Mapped[date] = mapped_column(Date, nullable=False)
    mode: Mapped[str] = mapped_column(
        String(30), nullable=False, default=RecurringMode.GENERATE_AND_SEND.value,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TemplateStatus.ACTIVE.value,
    )
    currency: Mapped[str] = mapped_column(CurrencyType, nullable=False, default="EUR")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list[RecurringTemplateLine]] = relationship(
        RecurringTemplateLine,
        order_by=RecurringTemplateLine.position,
        cascade="all, delete-orphan",
    )

    def to_dto(self) -> TemplateInfo:
        return TemplateInfo(
            id=self.id,
            tenant_id=self.tenant_id,
            client_id=self.client_id,
            name=self.name,
            day_of_month=self.day_of_month,
            start_date=self.start_date,
            next_run_date=self.next_run_date,
            mode=RecurringMode(self.mode),
            status=TemplateStatus(self.status),
            currency=self.currency,
            notes=self.notes,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<RecurringTemplate {self.name} next={self.next_run_date}>"


class RecurringRun(TrackedBase):
    """One execution attempt of a template (append-only)."""

    __tablename__ = "recurring_runs"

    __table_args__ = (
        Index("idx_run_template", "template_id", "run_date"),
        Index("idx_run_requested_key", "requested_key"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("recurring_templates.id"), nullable=False,
    )
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False)
    period_key: Mapped[str] = mapped_column(String(7), nullable=False)

    # NULL only on SKIPPED rows
    idempotency_key: Mapped[str | None] = mapped_column(
        String(120), nullable=True, unique=True,
    )
    requested_key: Mapped[str] = mapped_column(String(120), nullable=False)

    generated_invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> RunInfo:
        return RunInfo(
            id=self.id,
            template_id=self.template_id,
            run_date=self.run_date,
            status=RunStatus(self.status),
            trigger=TriggerKind(self.trigger),
            period_key=self.period_key,
            idempotency_key=self.idempotency_key,
            requested_key=self.requested_key,
            generated_invoice_id=self.generated_invoice_id,
            error_message=self.error_message,
        )

    def __repr__(self) -> str:
        return f"<RecurringRun {self.requested_key} {self.status}>"
