"""
Billing Kernel

Commercial documents for a single business tenant:
- Quotes, invoices, credit notes and purchase invoices
- Gapless per-type document numbering under concurrency
- Atomic numbering + status transitions
- Deterministic line-level money rounding
"""

__version__ = "0.1.0"
