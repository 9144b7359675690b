"""
Document lifecycle -- statuses and guarded transition tables.

Responsibility:
    Declares the status enums for every document kind and the single table
    of allowed transitions.  ``require_transition`` is the only guard the
    services use, so a transition that is not in the table cannot happen.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Transitions:
    Quote            DRAFT -emit-> SENT -accept/reject-> ACCEPTED | REJECTED
                     SENT | ACCEPTED -expire-> EXPIRED
                     ACCEPTED -convert-> (status kept, one-time invoice link)
    Invoice          DRAFT -emit-> ISSUED -payment-> PARTIALLY_PAID | PAID
                     PARTIALLY_PAID -payment-> PARTIALLY_PAID | PAID
    PurchaseInvoice  DRAFT -book-> BOOKED -pay-> PAID

    Lines, counterparty and notes may change, and the document may be
    tombstoned, only in DRAFT.  Transitions never move backward.

    InvoiceStatus.VOID is reserved: it is a valid stored value but no
    transition in the table produces it.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from uuid import UUID

from billing_kernel.exceptions import TransitionError

DEFAULT_PAYMENT_TERMS_DAYS = 30


class DocumentKind(str, Enum):
    QUOTE = "quote"
    INVOICE = "invoice"
    PURCHASE_INVOICE = "purchase_invoice"


class QuoteStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    VOID = "VOID"  # reserved, unreachable


class PurchaseInvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    BOOKED = "BOOKED"
    PAID = "PAID"


class InvoiceType(str, Enum):
    INVOICE = "INVOICE"
    CREDIT_NOTE = "CREDIT_NOTE"


class Action(str, Enum):
    EDIT = "edit"
    DELETE = "delete"
    EMIT = "emit"
    SEND = "send"
    ACCEPT = "accept"
    REJECT = "reject"
    EXPIRE = "expire"
    CONVERT = "convert"
    REGISTER_PAYMENT = "register_payment"
    BOOK = "book"
    PAY = "pay"


@dataclass(frozen=True)
class Transition:
    """An allowed move.  ``target`` None means the status is kept or computed."""

    action: Action
    sources: frozenset[str]
    target: str | None


def _t(action: Action, sources: set[Enum], target: Enum | None) -> Transition:
    return Transition(
        action=action,
        sources=frozenset(s.value for s in sources),
        target=target.value if target is not None else None,
    )


_Q = QuoteStatus
_I = InvoiceStatus
_P = PurchaseInvoiceStatus

TRANSITIONS: dict[DocumentKind, dict[Action, Transition]] = {
    DocumentKind.QUOTE: {
        t.action: t
        for t in (
            _t(Action.EDIT, {_Q.DRAFT}, None),
            _t(Action.DELETE, {_Q.DRAFT}, None),
            _t(Action.EMIT, {_Q.DRAFT}, _Q.SENT),
            _t(Action.ACCEPT, {_Q.SENT}, _Q.ACCEPTED),
            _t(Action.REJECT, {_Q.SENT}, _Q.REJECTED),
            _t(Action.EXPIRE, {_Q.SENT, _Q.ACCEPTED}, _Q.EXPIRED),
            _t(Action.CONVERT, {_Q.ACCEPTED}, None),
            _t(Action.SEND, {_Q.SENT, _Q.ACCEPTED, _Q.REJECTED, _Q.EXPIRED}, None),
        )
    },
    DocumentKind.INVOICE: {
        t.action: t
        for t in (
            _t(Action.EDIT, {_I.DRAFT}, None),
            _t(Action.DELETE, {_I.DRAFT}, None),
            _t(Action.EMIT, {_I.DRAFT}, _I.ISSUED),
            _t(Action.REGISTER_PAYMENT, {_I.ISSUED, _I.PARTIALLY_PAID}, None),
            _t(Action.SEND, {_I.ISSUED, _I.PARTIALLY_PAID, _I.PAID}, None),
        )
    },
    DocumentKind.PURCHASE_INVOICE: {
        t.action: t
        for t in (
            _t(Action.EDIT, {_P.DRAFT}, None),
            _t(Action.DELETE, {_P.DRAFT}, None),
            _t(Action.BOOK, {_P.DRAFT}, _P.BOOKED),
            _t(Action.PAY, {_P.BOOKED}, _P.PAID),
        )
    },
}


def require_transition(
    kind: DocumentKind,
    document_id: UUID | str,
    current_status: str,
    action: Action,
) -> Transition:
    """
    Return the transition for ``action`` or raise TransitionError.

    Raises before anything is written, so a rejected request has no effect.
    """
    transition = TRANSITIONS[kind].get(action)
    if transition is None or current_status not in transition.sources:
        raise TransitionError(kind.value, document_id, current_status, action.value)
    return transition


def compute_due_date(issue_date: date, payment_terms_days: int | None) -> date:
    """``issue_date + terms``; unset terms fall back to 30 days."""
    days = DEFAULT_PAYMENT_TERMS_DAYS if payment_terms_days is None else payment_terms_days
    return issue_date + timedelta(days=days)


def payment_status_after(total_cents: int, paid_cents: int) -> InvoiceStatus:
    """Status reached once ``paid_cents`` have been collected."""
    if paid_cents >= total_cents:
        return InvoiceStatus.PAID
    return InvoiceStatus.PARTIALLY_PAID
