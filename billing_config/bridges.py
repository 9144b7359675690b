"""
Config -> kernel and recurring bridges.

Functions that convert BillingConfig settings into constructor inputs.
These live in billing_config (the producer) because billing_kernel and
billing_recurring must NEVER import billing_config.

Usage:
    from billing_config.bridges import build_email_subjects, build_runner_settings

    config = get_active_config()
    runner = RecurringRunner(session_factory, settings=build_runner_settings(config))
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from billing_config.schema import BillingConfig
from billing_kernel.services.delivery_service import EmailSubjects
from billing_recurring.domain.types import ManualRunDedupe, RunnerSettings


def build_email_subjects(config: BillingConfig) -> EmailSubjects:
    return EmailSubjects(
        invoice=config.email.invoice_subject,
        quote=config.email.quote_subject,
        credit_note=config.email.credit_note_subject,
    )


def build_runner_settings(config: BillingConfig) -> RunnerSettings:
    return RunnerSettings(
        manual_run_dedupe=ManualRunDedupe(config.manual_run_dedupe),
        default_payment_terms_days=config.default_payment_terms_days,
        max_attempts=config.transactions.max_attempts,
        email_subjects=build_email_subjects(config),
    )


def trigger_secret(
    config: BillingConfig,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """The shared scheduler secret, read from the configured variable.

    Returns None when unset; the trigger guard then rejects every call.
    """
    env = os.environ if environ is None else environ
    return env.get(config.scheduler.trigger_secret_env) or None
