"""
Module: corebank_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the UUID primary key convention, the type annotation map for
    consistent column types, and the audit envelope + tenant mixins.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/ or selectors/.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
    - Decimal precision: Python Decimal maps to MoneyAmount (exact storage).
      NEVER use float for monetary amounts.
    - Audit envelope: AuditedBase provides created/updated/deleted metadata
      once for every entity instead of repeating the columns per table.
    - Tenant scoping: TenantScopedBase adds a mandatory, indexed tenant_id.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Boolean, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from corebank_kernel.db.types import MoneyAmount
from corebank_kernel.domain.audit import AuditEnvelope


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Transparently converts between Python UUID objects and their 36-character
    string representation.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Decimal maps to MoneyAmount -- exact on every backend.
        - datetime maps to DateTime(timezone=True).
        - int maps to BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: MoneyAmount(),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class AuditedBase(Base):
    """
    Abstract base carrying the audit envelope.

    Contract:
        Every model records who created and last modified the row, and when.
        These fields are audit metadata, NOT financial data, so they may change
        even on otherwise-immutable records (see db/immutability.py).
        Master data is never hard-deleted; ``soft_delete`` flags the row.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)

    updated_by: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    deleted_by: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)

    def audit_envelope(self) -> AuditEnvelope:
        return AuditEnvelope(
            created_at=self.created_at,
            created_by=self.created_by,
            updated_at=self.updated_at,
            updated_by=self.updated_by,
            is_deleted=bool(self.is_deleted),
            deleted_at=self.deleted_at,
            deleted_by=self.deleted_by,
        )

    def touch(self, actor_id: PyUUID) -> None:
        self.updated_by = actor_id

    def soft_delete(self, actor_id: PyUUID, at: datetime) -> None:
        self.is_deleted = True
        self.deleted_at = at
        self.deleted_by = actor_id


class TenantScopedBase(AuditedBase):
    """Abstract base for rows owned by exactly one tenant."""

    __abstract__ = True

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)


UUID = PyUUID
