"""
Tests for billing_kernel.services.lifecycle_service.

Emission is one unit: number, year, status and dates are written together
or not at all.  Failure injection between allocation and stamping proves
the counter increment is rolled back with the transition.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from billing_kernel.domain.dtos import LineInput
from billing_kernel.domain.lifecycle import DocumentKind
from billing_kernel.domain.numbering import DocType
from billing_kernel.exceptions import (
    DocumentNotFoundError,
    EmptyLinesError,
    InvalidAmountError,
    QuoteAlreadyConvertedError,
    TransitionError,
)
from billing_kernel.models.audit_event import ActivityLog
from billing_kernel.models.documents import Invoice
from billing_kernel.services.lifecycle_service import DocumentLifecycleService


class TestEmitInvoice:
    def test_emission_stamps_everything(self, lifecycle, draft_invoice, clock):
        issued = lifecycle.emit_invoice(draft_invoice.id)
        assert issued.status == "ISSUED"
        assert issued.number == 1
        assert issued.year == 2026
        assert issued.reference == "F26/01"
        assert issued.issue_date == clock.today()
        # Client has 15-day terms
        assert issued.due_date == clock.today() + timedelta(days=15)

    def test_default_terms_when_client_has_none(self, lifecycle, documents, seed, consulting_line, clock):
        draft = documents.create_invoice(seed.client_without_email_id, [consulting_line])
        issued = lifecycle.emit_invoice(draft.id)
        assert issued.due_date == clock.today() + timedelta(days=30)

    def test_configured_default_terms(self, session, tenant, clock, documents, seed, consulting_line):
        draft = documents.create_invoice(seed.client_without_email_id, [consulting_line])
        lifecycle = DocumentLifecycleService(session, tenant, clock, default_payment_terms_days=45)
        assert lifecycle.emit_invoice(draft.id).due_date == clock.today() + timedelta(days=45)

    def test_consecutive_numbers(self, lifecycle, documents, seed, consulting_line):
        refs = []
        for _ in range(3):
            draft = documents.create_invoice(seed.client_id, [consulting_line])
            refs.append(lifecycle.emit_invoice(draft.id).reference)
        assert refs == ["F26/01", "F26/02", "F26/03"]

    def test_credit_notes_use_their_own_counter(self, lifecycle, documents, seed, consulting_line):
        invoice = documents.create_invoice(seed.client_id, [consulting_line])
        credit = documents.create_credit_note(seed.client_id, [consulting_line])
        lifecycle.emit_invoice(invoice.id)
        assert lifecycle.emit_invoice(credit.id).number == 1

    def test_second_emission_rejected(self, lifecycle, draft_invoice):
        lifecycle.emit_invoice(draft_invoice.id)
        with pytest.raises(TransitionError):
            lifecycle.emit_invoice(draft_invoice.id)

    def test_rejected_emission_consumes_no_number(self, lifecycle, sequences, draft_invoice, tenant):
        lifecycle.emit_invoice(draft_invoice.id)
        with pytest.raises(TransitionError):
            lifecycle.emit_invoice(draft_invoice.id)
        assert sequences.current_number(tenant.tenant_id, 2026, DocType.INVOICE) == 1

    def test_empty_document_cannot_be_emitted(self, session, lifecycle, draft_invoice, sequences, tenant):
        row = session.get(Invoice, draft_invoice.id)
        row.lines = []
        session.flush()
        with pytest.raises(EmptyLinesError):
            lifecycle.emit_invoice(draft_invoice.id)
        assert sequences.current_number(tenant.tenant_id, 2026, DocType.INVOICE) == 0

    def test_emission_logged_and_audited(self, session, lifecycle, draft_invoice, captured_logs):
        lifecycle.emit_invoice(draft_invoice.id)
        emitted = [r for r in captured_logs() if r["message"] == "document_emitted"]
        assert emitted[0]["reference"] == "F26/01"
        actions = set(
            session.execute(
                select(ActivityLog.action).where(ActivityLog.entity_id == draft_invoice.id)
            ).scalars()
        )
        assert {"CREATE", "EMIT"} <= actions


class TestEmissionAtomicity:
    """A failure after allocation leaves neither a number nor a status change."""

    def test_failure_while_stamping_rolls_back_counter(
        self, monkeypatch, lifecycle, draft_invoice, sequences, documents, tenant
    ):
        def explode(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(lifecycle, "_stamp_issued", explode)
        with pytest.raises(RuntimeError):
            lifecycle.emit_invoice(draft_invoice.id)

        assert sequences.current_number(tenant.tenant_id, 2026, DocType.INVOICE) == 0
        unchanged = documents.get(DocumentKind.INVOICE, draft_invoice.id)
        assert unchanged.status == "DRAFT"
        assert unchanged.number is None

    def test_next_emission_after_failure_gets_first_number(
        self, monkeypatch, lifecycle, draft_invoice
    ):
        original = lifecycle._stamp_issued
        calls = {"n": 0}

        def fail_once(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("transient")
            return original(*args, **kwargs)

        monkeypatch.setattr(lifecycle, "_stamp_issued", fail_once)
        with pytest.raises(RuntimeError):
            lifecycle.emit_invoice(draft_invoice.id)
        assert lifecycle.emit_invoice(draft_invoice.id).reference == "F26/01"


class TestPayments:
    def test_partial_then_full(self, lifecycle, draft_invoice):
        lifecycle.emit_invoice(draft_invoice.id)
        partial = lifecycle.register_payment(draft_invoice.id, 5000)
        assert partial.status == "PARTIALLY_PAID"
        assert partial.paid_cents == 5000
        paid = lifecycle.register_payment(draft_invoice.id, 7100)
        assert paid.status == "PAID"

    def test_overpayment_rejected(self, lifecycle, draft_invoice):
        lifecycle.emit_invoice(draft_invoice.id)
        with pytest.raises(InvalidAmountError):
            lifecycle.register_payment(draft_invoice.id, 12101)

    @pytest.mark.parametrize("amount", [0, -100, 10.5, True])
    def test_invalid_amounts(self, lifecycle, draft_invoice, amount):
        lifecycle.emit_invoice(draft_invoice.id)
        with pytest.raises(InvalidAmountError):
            lifecycle.register_payment(draft_invoice.id, amount)

    def test_draft_cannot_be_paid(self, lifecycle, draft_invoice):
        with pytest.raises(TransitionError):
            lifecycle.register_payment(draft_invoice.id, 100)

    def test_paid_invoice_takes_no_more(self, lifecycle, draft_invoice):
        lifecycle.emit_invoice(draft_invoice.id)
        lifecycle.register_payment(draft_invoice.id, 12100)
        with pytest.raises(TransitionError):
            lifecycle.register_payment(draft_invoice.id, 1)


class TestQuotes:
    def test_emit_quote(self, lifecycle, draft_quote):
        sent = lifecycle.emit_quote(draft_quote.id)
        assert sent.status == "SENT"
        assert sent.reference == "PRE-2026-0001"
        assert sent.due_date is None

    def test_accept_then_convert(self, lifecycle, draft_quote):
        lifecycle.emit_quote(draft_quote.id)
        lifecycle.accept_quote(draft_quote.id)
        invoice = lifecycle.convert_quote(draft_quote.id)

        assert invoice.kind is DocumentKind.INVOICE
        assert invoice.status == "DRAFT"
        assert invoice.source_quote_id == draft_quote.id
        assert invoice.totals == draft_quote.totals
        assert [line.description for line in invoice.lines] == [
            line.description for line in draft_quote.lines
        ]

    def test_double_conversion_rejected(self, lifecycle, documents, draft_quote):
        lifecycle.emit_quote(draft_quote.id)
        lifecycle.accept_quote(draft_quote.id)
        first = lifecycle.convert_quote(draft_quote.id)

        with pytest.raises(QuoteAlreadyConvertedError) as exc_info:
            lifecycle.convert_quote(draft_quote.id)
        assert exc_info.value.converted_invoice_id == str(first.id)
        assert documents.get(DocumentKind.QUOTE, draft_quote.id).converted_invoice_id == first.id

    def test_sent_quote_cannot_be_converted(self, lifecycle, draft_quote):
        lifecycle.emit_quote(draft_quote.id)
        with pytest.raises(TransitionError):
            lifecycle.convert_quote(draft_quote.id)

    def test_reject(self, lifecycle, draft_quote):
        lifecycle.emit_quote(draft_quote.id)
        assert lifecycle.reject_quote(draft_quote.id).status == "REJECTED"
        with pytest.raises(TransitionError):
            lifecycle.accept_quote(draft_quote.id)

    def test_expire_overdue(self, lifecycle, documents, seed, consulting_line, clock):
        stale = documents.create_quote(
            seed.client_id, [consulting_line], valid_until=clock.today() - timedelta(days=1)
        )
        fresh = documents.create_quote(
            seed.client_id, [consulting_line], valid_until=clock.today() + timedelta(days=10)
        )
        for quote in (stale, fresh):
            lifecycle.emit_quote(quote.id)

        expired = lifecycle.expire_overdue_quotes()
        assert [q.id for q in expired] == [stale.id]
        assert expired[0].status == "EXPIRED"
        assert documents.get("quote", fresh.id).status == "SENT"

    def test_converted_quote_is_not_expired(self, lifecycle, documents, seed, consulting_line, clock):
        quote = documents.create_quote(
            seed.client_id, [consulting_line], valid_until=clock.today() - timedelta(days=1)
        )
        lifecycle.emit_quote(quote.id)
        lifecycle.accept_quote(quote.id)
        lifecycle.convert_quote(quote.id)
        assert lifecycle.expire_overdue_quotes() == []


class TestPurchases:
    def test_book_stamps_booking_date_and_keeps_supplier_due_date(
        self, lifecycle, documents, seed, consulting_line, clock,
    ):
        purchase = documents.create_purchase_invoice(
            seed.provider_id,
            [consulting_line],
            issue_date=date(2026, 2, 20),
            due_date=date(2026, 3, 20),
        )
        booked = lifecycle.book_purchase(purchase.id)
        assert booked.status == "BOOKED"
        assert booked.reference == "FP-2026-0001"
        assert booked.issue_date == clock.today()
        assert booked.due_date == date(2026, 3, 20)

    def test_book_issue_date_matches_number_year(self, lifecycle, documents, seed, consulting_line, clock):
        purchase = documents.create_purchase_invoice(
            seed.provider_id, [consulting_line], issue_date=date(2025, 12, 28),
        )
        booked = lifecycle.book_purchase(purchase.id)
        assert booked.issue_date == date(2026, 3, 1)
        assert booked.year == booked.issue_date.year == 2026
        assert booked.due_date == clock.today() + timedelta(days=45)

    def test_book_fills_missing_dates_from_provider_terms(self, lifecycle, documents, seed, consulting_line, clock):
        purchase = documents.create_purchase_invoice(seed.provider_id, [consulting_line])
        booked = lifecycle.book_purchase(purchase.id)
        assert booked.issue_date == clock.today()
        assert booked.due_date == clock.today() + timedelta(days=45)

    def test_pay(self, lifecycle, documents, seed):
        purchase = documents.create_purchase_invoice(
            seed.provider_id, [LineInput("Hosting", Decimal("1"), 4000, seed.vat_id)]
        )
        lifecycle.book_purchase(purchase.id)
        paid = lifecycle.pay_purchase(purchase.id)
        assert paid.status == "PAID"
        assert paid.paid_cents == 4840

    def test_pay_requires_booking(self, lifecycle, documents, seed, consulting_line):
        purchase = documents.create_purchase_invoice(seed.provider_id, [consulting_line])
        with pytest.raises(TransitionError):
            lifecycle.pay_purchase(purchase.id)


class TestEmitDocument:
    def test_dispatches_by_kind(self, lifecycle, documents, seed, consulting_line, draft_quote, draft_invoice):
        purchase = documents.create_purchase_invoice(seed.provider_id, [consulting_line])
        assert lifecycle.emit_document(draft_quote.id).status == "SENT"
        assert lifecycle.emit_document(draft_invoice.id).status == "ISSUED"
        assert lifecycle.emit_document(purchase.id).status == "BOOKED"

    def test_unknown_document(self, lifecycle):
        from uuid import uuid4

        with pytest.raises(DocumentNotFoundError):
            lifecycle.emit_document(uuid4())
