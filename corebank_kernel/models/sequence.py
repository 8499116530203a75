"""
Module: corebank_kernel.models.sequence
Responsibility: Named counter rows backing monotonic sequence allocation.
Architecture position: Kernel > Models.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from corebank_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is one named sequence with its current value, e.g.
    ``journal_entry:<tenant>``.  Row-level locking keeps it monotonic.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
