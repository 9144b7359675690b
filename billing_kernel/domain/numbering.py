"""
Document numbering formats.

Each document type has its own counter per (tenant, year) and a fixed
display format:

    INVOICE / CREDIT_NOTE   F{YY}/{NN}       F26/07
    QUOTE                   PRE-{YYYY}-{NNNN} PRE-2026-0042
    PURCHASE_INVOICE        FP-{YYYY}-{NNNN}  FP-2026-0003

Zero padding is a minimum width; numbers past the padding keep growing
(F26/100).
"""

from dataclasses import dataclass
from enum import Enum


class DocType(str, Enum):
    """Discriminator for numbering sequences."""

    QUOTE = "QUOTE"
    INVOICE = "INVOICE"
    CREDIT_NOTE = "CREDIT_NOTE"
    PURCHASE_INVOICE = "PURCHASE_INVOICE"


@dataclass(frozen=True)
class AllocatedNumber:
    """A number handed out by the sequence counter."""

    doc_type: DocType
    year: int
    number: int
    formatted: str


def format_document_number(doc_type: DocType, year: int, number: int) -> str:
    """Render the legal document number for a sequence value."""
    if number < 1:
        raise ValueError(f"Document numbers start at 1, got {number}")
    doc_type = DocType(doc_type)
    if doc_type in (DocType.INVOICE, DocType.CREDIT_NOTE):
        return f"F{year % 100:02d}/{number:02d}"
    if doc_type is DocType.QUOTE:
        return f"PRE-{year:04d}-{number:04d}"
    if doc_type is DocType.PURCHASE_INVOICE:
        return f"FP-{year:04d}-{number:04d}"
    raise AssertionError(f"Unhandled document type: {doc_type!r}")


def attachment_filename(formatted_number: str) -> str:
    """File name for a rendered document (``F26/07`` -> ``F26-07.pdf``)."""
    return f"{formatted_number.replace('/', '-')}.pdf"
