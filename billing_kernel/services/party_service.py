"""
PartyService -- tenant, counterparty and tax catalogue management.

Responsibility:
    Builds the explicit ``TenantContext`` every other service receives,
    creates and reads clients, providers and taxes, and provides the
    default ``PaymentTermsLookup`` used by emission and booking.

Architecture position:
    Kernel > Services -- imperative shell.  Returns DTOs, never ORM rows.

Invariants enforced:
    - Tombstoned clients and providers are reported as not found.
    - payment_terms_days is never negative (CHECK constraint; also rejected
      here before the flush).
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.db.types import validate_currency
from billing_kernel.domain.dtos import TenantContext
from billing_kernel.domain.money import to_decimal
from billing_kernel.exceptions import (
    CounterpartyNotFoundError,
    InvalidAmountError,
    TaxNotFoundError,
    TenantNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.tenant import Client, Company, Provider, Tax
from billing_kernel.services.base import BaseService

logger = get_logger("services.party")


@dataclass(frozen=True)
class CounterpartyInfo:
    """Read model for a client or provider."""

    id: UUID
    kind: str
    name: str
    tax_id: str | None
    email: str | None
    payment_terms_days: int | None


@dataclass(frozen=True)
class TaxInfo:
    id: UUID
    name: str
    rate: Decimal
    is_active: bool


def _tenant_dto(company: Company) -> TenantContext:
    return TenantContext(
        tenant_id=company.id,
        legal_name=company.legal_name,
        default_currency=company.default_currency,
        trade_name=company.trade_name,
        tax_id=company.tax_id,
        email=company.email,
    )


def load_tenant_context(session: Session, tenant_id: UUID | None = None) -> TenantContext:
    """
    Load the tenant every operation acts for.

    With no ``tenant_id`` the single Company row is used (the oldest one if
    more than one exists).

    Raises:
        TenantNotFoundError: No matching Company row.
    """
    if tenant_id is not None:
        company = session.get(Company, tenant_id)
    else:
        company = session.execute(
            select(Company).order_by(Company.created_at).limit(1)
        ).scalar_one_or_none()
    if company is None:
        raise TenantNotFoundError(tenant_id)
    return _tenant_dto(company)


def create_company(
    session: Session,
    legal_name: str,
    default_currency: str = "EUR",
    trade_name: str | None = None,
    tax_id: str | None = None,
    email: str | None = None,
    address: str | None = None,
    iban: str | None = None,
) -> TenantContext:
    """Insert the tenant row and return its context.  Flushes, never commits."""
    company = Company(
        legal_name=legal_name,
        default_currency=validate_currency(default_currency),
        trade_name=trade_name,
        tax_id=tax_id,
        email=email,
        address=address,
        iban=iban,
    )
    session.add(company)
    session.flush()
    logger.info(
        "tenant_created",
        extra={"tenant_id": str(company.id), "legal_name": legal_name},
    )
    return _tenant_dto(company)


def _check_terms(payment_terms_days: int | None) -> None:
    if payment_terms_days is not None and payment_terms_days < 0:
        raise InvalidAmountError(
            "payment_terms_days", payment_terms_days, "must not be negative"
        )


class PartyService(BaseService[Client]):
    """
    Service for clients, providers and taxes.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT physically delete rows; counterparties are tombstoned.
    """

    def _to_dto(self, row: Client | Provider, kind: str) -> CounterpartyInfo:
        return CounterpartyInfo(
            id=row.id,
            kind=kind,
            name=row.name,
            tax_id=row.tax_id,
            email=row.email,
            payment_terms_days=row.payment_terms_days,
        )

    def _get_live(self, model: type[Client] | type[Provider], party_id: UUID, kind: str):
        row = self.session.get(model, party_id)
        if row is None or row.is_deleted or row.tenant_id != self.tenant.tenant_id:
            raise CounterpartyNotFoundError(party_id, kind)
        return row

    def create_client(
        self,
        name: str,
        email: str | None = None,
        tax_id: str | None = None,
        payment_terms_days: int | None = None,
        actor_id: UUID | None = None,
    ) -> CounterpartyInfo:
        _check_terms(payment_terms_days)
        client = Client(
            tenant_id=self.tenant.tenant_id,
            name=name,
            email=email,
            tax_id=tax_id,
            payment_terms_days=payment_terms_days,
            created_by_id=actor_id,
        )
        self.session.add(client)
        self.session.flush()
        return self._to_dto(client, "client")

    def create_provider(
        self,
        name: str,
        email: str | None = None,
        tax_id: str | None = None,
        payment_terms_days: int | None = None,
        actor_id: UUID | None = None,
    ) -> CounterpartyInfo:
        _check_terms(payment_terms_days)
        provider = Provider(
            tenant_id=self.tenant.tenant_id,
            name=name,
            email=email,
            tax_id=tax_id,
            payment_terms_days=payment_terms_days,
            created_by_id=actor_id,
        )
        self.session.add(provider)
        self.session.flush()
        return self._to_dto(provider, "provider")

    def get_client(self, client_id: UUID) -> CounterpartyInfo:
        """
        Raises:
            CounterpartyNotFoundError: Unknown or tombstoned client.
        """
        return self._to_dto(self._get_live(Client, client_id, "client"), "client")

    def get_provider(self, provider_id: UUID) -> CounterpartyInfo:
        return self._to_dto(
            self._get_live(Provider, provider_id, "provider"), "provider"
        )

    def update_client(
        self,
        client_id: UUID,
        name: str | None = None,
        email: str | None = None,
        payment_terms_days: int | None = None,
        actor_id: UUID | None = None,
    ) -> CounterpartyInfo:
        client = self._get_live(Client, client_id, "client")
        if name is not None:
            client.name = name
        if email is not None:
            client.email = email
        if payment_terms_days is not None:
            _check_terms(payment_terms_days)
            client.payment_terms_days = payment_terms_days
        client.updated_by_id = actor_id
        self.session.flush()
        return self._to_dto(client, "client")

    def delete_client(self, client_id: UUID) -> None:
        """Tombstone a client.  Existing documents keep their reference."""
        client = self._get_live(Client, client_id, "client")
        client.deleted_at = self.clock.now()
        self.session.flush()

    def create_tax(
        self,
        name: str,
        rate: Decimal | int | str,
        actor_id: UUID | None = None,
    ) -> TaxInfo:
        tax = Tax(
            tenant_id=self.tenant.tenant_id,
            name=name,
            rate=to_decimal(rate, "rate"),
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(tax)
        self.session.flush()
        return TaxInfo(id=tax.id, name=tax.name, rate=tax.rate, is_active=tax.is_active)

    def set_tax_rate(self, tax_id: UUID, rate: Decimal | int | str) -> TaxInfo:
        """Change a rate.  Already-priced lines keep the rate they were priced at."""
        tax = self.session.get(Tax, tax_id)
        if tax is None or tax.tenant_id != self.tenant.tenant_id:
            raise TaxNotFoundError(tax_id)
        tax.rate = to_decimal(rate, "rate")
        self.session.flush()
        return TaxInfo(id=tax.id, name=tax.name, rate=tax.rate, is_active=tax.is_active)

    def get_tax(self, tax_id: UUID) -> TaxInfo:
        tax = self.session.get(Tax, tax_id)
        if tax is None or tax.tenant_id != self.tenant.tenant_id:
            raise TaxNotFoundError(tax_id)
        return TaxInfo(id=tax.id, name=tax.name, rate=tax.rate, is_active=tax.is_active)


class PartyPaymentTerms:
    """
    Default ``PaymentTermsLookup`` reading the counterparty row.

    Clients are checked first, then providers.  Unknown ids and unset terms
    both return None, which callers treat as the configured default.
    """

    def __init__(self, session: Session):
        self._session = session

    def get_payment_terms_days(self, counterparty_id: UUID) -> int | None:
        for model in (Client, Provider):
            terms = self._session.execute(
                select(model.payment_terms_days).where(model.id == counterparty_id)
            ).first()
            if terms is not None:
                return terms[0]
        return None
