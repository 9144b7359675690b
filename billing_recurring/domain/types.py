"""
billing_recurring.domain.types -- Pure frozen dataclasses and enums.

Frozen dataclasses with enum status fields and tuples for immutable
collections.  ZERO I/O.

Invariants enforced:
    - All DTOs are frozen (immutable).
    - TemplateRunResult carries both ``invoice_id`` and ``error_message`` so
      a partial success (invoice created, email failed) is visible to
      manual callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from billing_kernel.domain.lifecycle import DEFAULT_PAYMENT_TERMS_DAYS
from billing_kernel.services.delivery_service import EmailSubjects


# =============================================================================
# Enums
# =============================================================================


class RecurringMode(str, Enum):
    GENERATE_ONLY = "GENERATE_ONLY"  # Leave the invoice in DRAFT
    GENERATE_AND_SEND = "GENERATE_AND_SEND"  # Emit, render and email


class TemplateStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


class RunStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"  # Key already used; nothing created
    GENERATED = "GENERATED"  # Invoice committed, send step not finalised


class TriggerKind(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class ManualRunDedupe(str, Enum):
    """Which key a manual run uses."""

    INDEPENDENT = "independent"  # Timestamped key; never dedupes
    PERIOD = "period"  # Scheduled key; dedupes with the month's tick


# =============================================================================
# Settings
# =============================================================================


@dataclass(frozen=True)
class RunnerSettings:
    """Plain-value settings for the runner (built from config by the caller)."""

    manual_run_dedupe: ManualRunDedupe = ManualRunDedupe.INDEPENDENT
    default_payment_terms_days: int = DEFAULT_PAYMENT_TERMS_DAYS
    max_attempts: int = 3
    email_subjects: EmailSubjects = field(default_factory=EmailSubjects)


# =============================================================================
# Read models
# =============================================================================


@dataclass(frozen=True)
class TemplateLineInfo:
    position: int
    description: str
    quantity: Decimal
    unit_price_cents: int
    tax_id: UUID | None = None


@dataclass(frozen=True)
class TemplateInfo:
    """Immutable snapshot of a recurring template."""

    id: UUID
    tenant_id: UUID
    client_id: UUID
    name: str
    day_of_month: int
    start_date: date
    next_run_date: date
    mode: RecurringMode
    status: TemplateStatus
    currency: str
    notes: str | None = None
    lines: tuple[TemplateLineInfo, ...] = ()


@dataclass(frozen=True)
class RunInfo:
    """Immutable snapshot of one recorded run."""

    id: UUID
    template_id: UUID
    run_date: date
    status: RunStatus
    trigger: TriggerKind
    period_key: str
    idempotency_key: str | None
    requested_key: str
    generated_invoice_id: UUID | None = None
    error_message: str | None = None


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class TemplateRunResult:
    """Outcome of processing one template once."""

    template_id: UUID
    template_name: str
    status: RunStatus
    idempotency_key: str
    invoice_id: UUID | None = None
    invoice_number: str | None = None
    error_message: str | None = None

    @property
    def is_partial_success(self) -> bool:
        return self.invoice_id is not None and self.error_message is not None


@dataclass(frozen=True)
class TickResult:
    """Outcome of one scheduler tick."""

    processed_count: int
    results: tuple[TemplateRunResult, ...]
    timestamp: datetime

    def count(self, status: RunStatus) -> int:
        return sum(1 for result in self.results if result.status is status)
