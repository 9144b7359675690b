"""
Module: billing_kernel.models.tenant
Responsibility: ORM persistence for the business entity (Company), its
    counterparties (Client, Provider) and its tax catalogue (Tax).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Exactly one Company row is expected; services receive it as an
      explicit TenantContext rather than looking it up ambiently.
    - payment_terms_days drives due-date computation; NULL means the
      configured default.
    - Tax.rate is a percentage and may be negative (withholding taxes).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TombstoneMixin, TrackedBase, UUIDString
from billing_kernel.db.types import CurrencyType, TaxRateType


class Company(TrackedBase):
    """The single business tenant."""

    __tablename__ = "companies"

    legal_name: Mapped[str] = mapped_column(String(200), nullable=False)
    trade_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    tax_id: Mapped[str | None] = mapped_column(String(30), nullable=True)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    iban: Mapped[str | None] = mapped_column(String(40), nullable=True)
    default_currency: Mapped[str] = mapped_column(
        CurrencyType, nullable=False, default="EUR",
    )

    def __repr__(self) -> str:
        return f"<Company {self.legal_name}>"


class _Counterparty(TombstoneMixin, TrackedBase):
    """Columns shared by clients and providers."""

    __abstract__ = True

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    tax_id: Mapped[str | None] = mapped_column(String(30), nullable=True)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payment_terms_days: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Client(_Counterparty):
    """A customer: counterparty of quotes, invoices and recurring templates."""

    __tablename__ = "clients"

    __table_args__ = (
        Index("idx_client_tenant", "tenant_id"),
        CheckConstraint(
            "payment_terms_days IS NULL OR payment_terms_days >= 0",
            name="chk_client_terms_non_negative",
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Client {self.name}>"


class Provider(_Counterparty):
    """A supplier: counterparty of purchase invoices."""

    __tablename__ = "providers"

    __table_args__ = (
        Index("idx_provider_tenant", "tenant_id"),
        CheckConstraint(
            "payment_terms_days IS NULL OR payment_terms_days >= 0",
            name="chk_provider_terms_non_negative",
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Provider {self.name}>"


class Tax(TrackedBase):
    """A tax rate lines can reference (e.g. IVA 21%, IRPF -15%)."""

    __tablename__ = "taxes"

    __table_args__ = (Index("idx_tax_tenant", "tenant_id"),)

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    rate: Mapped[Decimal] = mapped_column(TaxRateType, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Tax {self.name} {self.rate}%>"
