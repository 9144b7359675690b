"""
Fixtures for recurring-invoice tests.

Templates are committed through their own ``session_scope`` so the runner,
which opens its own transactions, can see them.  Assertions read back
through ``read`` for the same reason.
"""

from datetime import date
from decimal import Decimal

import pytest

from billing_kernel.db.engine import session_scope
from billing_kernel.domain.dtos import LineInput
from billing_kernel.services.auditor_service import AuditorService

from billing_recurring.domain.types import RecurringMode, RunnerSettings
from billing_recurring.services.runner import RecurringRunner
from billing_recurring.services.template_service import TemplateService


@pytest.fixture
def template_lines(seed) -> list[LineInput]:
    return [
        LineInput(
            description="Mantenimiento mensual",
            quantity=Decimal("2"),
            unit_price_cents=5000,
            tax_id=seed.vat_id,
        )
    ]


@pytest.fixture
def make_template(session_factory, tenant, clock, seed, template_lines):
    """Create and commit an audited template; returns its TemplateInfo."""

    def _make(
        name: str = "Mantenimiento Acme",
        mode: RecurringMode = RecurringMode.GENERATE_ONLY,
        client_id=None,
        day_of_month: int = 1,
        start_date: date = date(2026, 3, 1),
        lines=None,
    ):
        with session_scope(session_factory) as session:
            templates = TemplateService(
                session, tenant, clock, auditor=AuditorService(session, clock)
            )
            return templates.create_template(
                client_id=client_id or seed.client_id,
                name=name,
                day_of_month=day_of_month,
                start_date=start_date,
                lines=lines or template_lines,
                mode=mode,
            )

    return _make


@pytest.fixture
def read(session_factory):
    """Run a read-only function in a short committed transaction."""

    def _read(work):
        with session_scope(session_factory) as session:
            return work(session)

    return _read


@pytest.fixture
def runner_settings() -> RunnerSettings:
    return RunnerSettings(max_attempts=5)


@pytest.fixture
def runner(session_factory, clock, renderer, sender, runner_settings) -> RecurringRunner:
    return RecurringRunner(
        session_factory,
        clock,
        renderer=renderer,
        sender=sender,
        settings=runner_settings,
    )
