"""
SequenceService -- monotonic sequence allocation via counter rows.

Responsibility:
    Provides strictly increasing entry numbers per tenant.

Invariants enforced:
    - Monotonic: the counter row is the sole source of truth; the aggregate
      max-plus-one pattern is never used.  The increment is a single
      ``UPDATE ... SET current_value = current_value + 1``, so it takes the
      row (PostgreSQL) or database (SQLite) write lock before reading, and a
      concurrent allocator either waits for the commit or fails with a
      serialization error that the caller retries.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - OperationalError on a serialization conflict (retried by
      run_with_retry / run_in_transaction).
"""

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from corebank_kernel.logging_config import get_logger
from corebank_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    JOURNAL_ENTRY = "journal_entry"

    def __init__(self, session: Session):
        self._session = session

    @classmethod
    def journal_sequence(cls, tenant_id: str) -> str:
        return f"{cls.JOURNAL_ENTRY}:{tenant_id}"

    def ensure(self, sequence_name: str) -> None:
        """Create the counter row if it does not exist yet."""
        exists = self._session.execute(
            select(SequenceCounter.id).where(SequenceCounter.name == sequence_name)
        ).first()
        if exists is None:
            self._session.add(SequenceCounter(name=sequence_name, current_value=0))
            self._session.flush()

    def next_value(self, sequence_name: str) -> int:
        """
        Increment the named counter and return the new value.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously returned for this name.
        """
        self.ensure(sequence_name)

        self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )
        value = self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, sequence_name: str) -> int | None:
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
