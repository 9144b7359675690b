"""
BaseService -- abstract base for session-bound kernel services.

Responsibility:
    Common constructor and session-handling contract.  Every concrete
    service receives the caller's ``Session``, the explicit
    ``TenantContext`` it acts for, and a ``Clock``.

Invariants enforced:
    - Services flush within the caller's transaction and never commit or
      roll back the outer transaction.  Multi-write operations run inside
      a SAVEPOINT (``session.begin_nested()``) so they are all-or-nothing
      while leaving the caller's transaction usable.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from billing_kernel.db.base import Base
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import TenantContext

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT hold tenant state beyond the injected TenantContext.
    """

    def __init__(
        self,
        session: Session,
        tenant: TenantContext,
        clock: Clock | None = None,
    ):
        self.session = session
        self.tenant = tenant
        self.clock = clock or SystemClock()
