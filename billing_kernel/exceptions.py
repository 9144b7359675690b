"""
Typed exception hierarchy for the billing kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP handlers, the CLI, the recurring runner) must react to
failures without parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        lifecycle.emit_document(document_id)
    except TransitionError as e:
        api_response(
            code=e.code,
            status=e.current_status,
            requested=e.requested,
        )

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BillingKernelError:

    BillingKernelError (base)
    |
    +-- ValidationError
    |   +-- MissingCounterpartyError
    |   +-- EmptyLinesError
    |   +-- DayOfMonthOutOfRangeError
    |   +-- InvalidCurrencyError
    |   +-- InvalidAmountError
    |   +-- MissingEmailError
    |
    +-- TransitionError
    |   +-- QuoteAlreadyConvertedError
    |
    +-- NotFoundError
    |   +-- DocumentNotFoundError
    |   +-- TemplateNotFoundError
    |   +-- CounterpartyNotFoundError
    |   +-- TaxNotFoundError
    |   +-- TenantNotFoundError
    |
    +-- ExternalServiceError
    |   +-- DocumentRenderError
    |   +-- EmailDeliveryError
    |   +-- CollaboratorNotConfiguredError
    |
    +-- TriggerAuthenticationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | MISSING_COUNTERPARTY        | Draft/template without client/provider
                | EMPTY_LINES                 | Emission or template with no lines
                | DAY_OF_MONTH_OUT_OF_RANGE   | Template dayOfMonth outside 1..28
                | INVALID_CURRENCY            | Not a 3-letter ISO 4217 code
                | INVALID_AMOUNT              | Non-positive payment, overpayment, float
                | MISSING_EMAIL               | Sending to a client without email
----------------|-----------------------------|-----------------------------------------
Transition      | INVALID_TRANSITION          | Status not eligible for the request
                | QUOTE_ALREADY_CONVERTED     | Second conversion of the same quote
----------------|-----------------------------|-----------------------------------------
Not found       | DOCUMENT_NOT_FOUND          | Unknown or tombstoned document
                | TEMPLATE_NOT_FOUND          | Unknown recurring template
                | COUNTERPARTY_NOT_FOUND      | Unknown or tombstoned client/provider
                | TAX_NOT_FOUND               | Line references an unknown tax
                | TENANT_NOT_FOUND            | No Company row
----------------|-----------------------------|-----------------------------------------
External        | DOCUMENT_RENDER_FAILED      | PDF renderer raised
                | EMAIL_DELIVERY_FAILED       | Email sender raised
                | COLLABORATOR_NOT_CONFIGURED | Delivery requested without renderer/sender
----------------|-----------------------------|-----------------------------------------
Trigger         | TRIGGER_UNAUTHORIZED        | Wrong or missing scheduler secret

There is deliberately no NumberingConflict or IdempotencyViolation class.
Numbering collisions are prevented by the locked counter row (and retried
by ``run_in_transaction`` when the store reports a conflict), and a
duplicate recurring run is reported as a SKIPPED run, not an error.

===============================================================================
HANDLING PATTERNS
===============================================================================

1. VALIDATION AND TRANSITION ERRORS are raised before any mutation.  The
   caller's transaction is still usable; surface the error verbatim.

2. EXTERNAL SERVICE ERRORS never revert committed state.  The recurring
   runner records ``str(e)`` as the run's ``error_message``:

    except ExternalServiceError as e:
        run.error_message = str(e)

===============================================================================
"""

from uuid import UUID


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Validation


class ValidationError(BillingKernelError):
    """Input rejected before any mutation."""

    code: str = "VALIDATION_ERROR"


class MissingCounterpartyError(ValidationError):
    """A document or template was submitted without its client/provider."""

    code: str = "MISSING_COUNTERPARTY"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"{entity_type} requires a counterparty")


class EmptyLinesError(ValidationError):
    """A document or template has no lines."""

    code: str = "EMPTY_LINES"

    def __init__(self, entity_type: str, entity_id: UUID | str | None = None):
        self.entity_type = entity_type
        self.entity_id = str(entity_id) if entity_id is not None else None
        super().__init__(f"{entity_type} must have at least one line")


class DayOfMonthOutOfRangeError(ValidationError):
    """Recurring day of month outside 1..28."""

    code: str = "DAY_OF_MONTH_OUT_OF_RANGE"

    def __init__(self, day_of_month: int):
        self.day_of_month = day_of_month
        super().__init__(
            f"day_of_month must be between 1 and 28, got {day_of_month}"
        )


class InvalidCurrencyError(ValidationError):
    """Invalid ISO 4217 currency code provided."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


class InvalidAmountError(ValidationError):
    """A monetary or quantity input is not acceptable."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class MissingEmailError(ValidationError):
    """The document's client has no email address."""

    code: str = "MISSING_EMAIL"

    def __init__(self, client_id: UUID | str):
        self.client_id = str(client_id)
        super().__init__(f"Client {client_id} has no email address")


# Transitions


class TransitionError(BillingKernelError):
    """The document's status does not allow the requested transition."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        document_kind: str,
        document_id: UUID | str,
        current_status: str,
        requested: str,
    ):
        self.document_kind = document_kind
        self.document_id = str(document_id)
        self.current_status = current_status
        self.requested = requested
        super().__init__(
            f"Cannot {requested} {document_kind} {document_id}: "
            f"status is {current_status}"
        )


class QuoteAlreadyConvertedError(TransitionError):
    """The quote already produced an invoice."""

    code: str = "QUOTE_ALREADY_CONVERTED"

    def __init__(
        self,
        quote_id: UUID | str,
        current_status: str,
        converted_invoice_id: UUID | str,
    ):
        super().__init__("quote", quote_id, current_status, "convert")
        self.converted_invoice_id = str(converted_invoice_id)
        self.args = (
            f"Quote {quote_id} was already converted "
            f"to invoice {converted_invoice_id}",
        )


# Lookups


class NotFoundError(BillingKernelError):
    """Base exception for missing (or tombstoned) entities."""

    code: str = "NOT_FOUND"


class DocumentNotFoundError(NotFoundError):
    """Document with given ID was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: UUID | str, document_kind: str = "document"):
        self.document_id = str(document_id)
        self.document_kind = document_kind
        super().__init__(f"{document_kind.capitalize()} not found: {document_id}")


class TemplateNotFoundError(NotFoundError):
    """Recurring template with given ID was not found."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: UUID | str):
        self.template_id = str(template_id)
        super().__init__(f"Recurring template not found: {template_id}")


class CounterpartyNotFoundError(NotFoundError):
    """Client or provider with given ID was not found."""

    code: str = "COUNTERPARTY_NOT_FOUND"

    def __init__(self, counterparty_id: UUID | str, counterparty_kind: str):
        self.counterparty_id = str(counterparty_id)
        self.counterparty_kind = counterparty_kind
        super().__init__(f"{counterparty_kind.capitalize()} not found: {counterparty_id}")


class TaxNotFoundError(NotFoundError):
    """Tax with given ID was not found."""

    code: str = "TAX_NOT_FOUND"

    def __init__(self, tax_id: UUID | str):
        self.tax_id = str(tax_id)
        super().__init__(f"Tax not found: {tax_id}")


class TenantNotFoundError(NotFoundError):
    """No company row is configured."""

    code: str = "TENANT_NOT_FOUND"

    def __init__(self, tenant_id: UUID | str | None = None):
        self.tenant_id = str(tenant_id) if tenant_id is not None else None
        super().__init__(
            f"Tenant not found: {tenant_id}" if tenant_id else "No tenant configured"
        )


# External collaborators


class ExternalServiceError(BillingKernelError):
    """A PDF renderer or email sender failed.

    Never reverts state that was already committed.
    """

    code: str = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, stage: str, detail: str):
        self.stage = stage
        self.detail = detail
        super().__init__(f"{stage} failed: {detail}")


class DocumentRenderError(ExternalServiceError):
    code: str = "DOCUMENT_RENDER_FAILED"

    def __init__(self, detail: str):
        super().__init__("render", detail)


class EmailDeliveryError(ExternalServiceError):
    code: str = "EMAIL_DELIVERY_FAILED"

    def __init__(self, detail: str):
        super().__init__("email", detail)


class CollaboratorNotConfiguredError(ExternalServiceError):
    code: str = "COLLABORATOR_NOT_CONFIGURED"

    def __init__(self, collaborator: str):
        self.collaborator = collaborator
        super().__init__(collaborator, "not configured")


# Scheduler trigger


class TriggerAuthenticationError(BillingKernelError):
    """The scheduler trigger did not present the shared secret."""

    code: str = "TRIGGER_UNAUTHORIZED"

    def __init__(self) -> None:
        super().__init__("Unauthorized recurring trigger")
