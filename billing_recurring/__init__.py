"""
billing_recurring -- monthly invoice generation from recurring templates.

Templates describe what to invoice a client every month.  The runner turns
a due template into a priced DRAFT invoice (and, in send mode, emits and
emails it), recording one run row per attempt.  A unique idempotency key
per template and period guarantees at most one invoice per month for the
scheduled path.

Depends on ``billing_kernel`` only.
"""
