"""
Module: corebank_kernel.db.types
Responsibility: Financial-grade column types shared by every model.
Architecture position: Kernel > DB.  MUST NOT import from models/, services/,
    selectors/ or domain/.

Invariants enforced:
    - Monetary amounts are exact.  PostgreSQL stores Numeric(38, 9); SQLite,
      which has no exact decimal storage, stores the canonical string form.
      Either way Python always sees ``Decimal``, never float.
    - Rates carry 18 decimal places.
"""

from decimal import Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

MONEY_PRECISION = 38
MONEY_SCALE = 9
RATE_SCALE = 18


class _ExactDecimal(TypeDecorator):
    """Decimal column that never round-trips through float."""

    impl = Numeric
    cache_ok = True

    scale: int = MONEY_SCALE

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Numeric(MONEY_PRECISION, self.scale, asdecimal=True))

    def process_bind_param(self, value, dialect):
        """Decimal/str/int -> storage value.

        Preconditions: value is a Decimal, an int, a numeric string, or None.
        """
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError("Float values are not allowed in monetary columns")
        value = value if isinstance(value, Decimal) else Decimal(str(value))
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        """Storage value -> Decimal."""
        if value is None:
            return None
        return value if isinstance(value, Decimal) else Decimal(str(value))


class MoneyAmount(_ExactDecimal):
    """Monetary amount: Numeric(38, 9) or exact string."""

    cache_ok = True
    scale = MONEY_SCALE


class RateValue(_ExactDecimal):
    """Interest / penalty rate: Numeric(38, 18) or exact string."""

    cache_ok = True
    scale = RATE_SCALE
