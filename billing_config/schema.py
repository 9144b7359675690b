"""
BillingConfig schema.

Frozen dataclasses the YAML settings are parsed into.  The loader is the
only producer; callers read them and pass plain values into kernel and
recurring constructors (see ``billing_config.bridges``).
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Accepted values for ``manual_run_dedupe``
MANUAL_RUN_DEDUPE_CHOICES: tuple[str, ...] = ("independent", "period")


@dataclass(frozen=True)
class SchedulerSettings:
    """Polling scheduler and trigger guard."""

    tick_interval_seconds: float = 3600.0
    trigger_secret_env: str = "CRON_SECRET"


@dataclass(frozen=True)
class TransactionSettings:
    max_attempts: int = 3


@dataclass(frozen=True)
class EmailSettings:
    """Subject templates; ``{number}`` and ``{tenant}`` are substituted."""

    invoice_subject: str = "Factura {number} - {tenant}"
    quote_subject: str = "Presupuesto {number} - {tenant}"
    credit_note_subject: str = "Factura rectificativa {number} - {tenant}"


@dataclass(frozen=True)
class BillingConfig:
    """Runtime settings for one deployment."""

    database_url: str = "sqlite:///billing.db"
    default_payment_terms_days: int = 30
    default_currency: str = "EUR"
    # "independent": manual runs never dedupe against the scheduled run.
    # "period": manual runs share the scheduled key for the month.
    manual_run_dedupe: str = "independent"
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    transactions: TransactionSettings = field(default_factory=TransactionSettings)
    email: EmailSettings = field(default_factory=EmailSettings)
    source_files: tuple[str, ...] = ()
