"""
ORM models for recurring templates and their runs.

Importing this package registers the recurring tables on the kernel's
``Base.metadata``; import it before ``create_tables()``.
"""

from billing_recurring.models.recurring import (
    RecurringRun,
    RecurringTemplate,
    RecurringTemplateLine,
)

__all__ = ["RecurringRun", "RecurringTemplate", "RecurringTemplateLine"]
