"""
ORM-level immutability enforcement.

Posted financial records are never modified -- only reversed with new
entries that leave a visible trail. SQLAlchemy fires mapper events before an
UPDATE or DELETE reaches the database; the listeners here check the rules
and raise ImmutabilityViolationError, which aborts the flush.

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities:

Entity          | When immutable                     | Allowed changes
----------------|------------------------------------|------------------------
JournalEntry    | once status was POSTED             | audit columns
JournalLine     | once the parent entry is POSTED    | none
LoanTransaction | always                             | audit columns
Account         | structural fields once referenced  | name, is_active, audit

Audit columns (updated_at, updated_by, is_deleted, deleted_at, deleted_by)
are metadata, not financial data, and stay writable.

Bulk ``session.execute(update(...))`` statements bypass mapper events. The
services never issue them against these tables.

Usage:

    register_immutability_listeners()    # idempotent, done by session_factory()
"""

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm.attributes import get_history

from corebank_kernel.exceptions import ImmutabilityViolationError
from corebank_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_COLUMNS = frozenset(
    {"updated_at", "updated_by", "is_deleted", "deleted_at", "deleted_by"}
)

_ACCOUNT_STRUCTURAL_FIELDS = ("code", "account_type", "normal_balance", "book")

_POSTED = "posted"


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_columns(target) -> list[str]:
    """Column attributes with pending changes, excluding audit metadata."""
    insp = inspect(target)
    changed = []
    for attr in insp.mapper.column_attrs:
        if attr.key in _AUDIT_COLUMNS:
            continue
        if insp.attrs[attr.key].history.has_changes():
            changed.append(attr.key)
    return changed


def _check_journal_entry_immutability(mapper, connection, target):
    """
    Block updates to an entry that was already POSTED before this flush.

    The posting transition itself (APPROVED -> POSTED) is allowed; any change
    after it is not.
    """
    status_history = get_history(target, "status")

    if status_history.deleted:
        was_posted_before = status_history.deleted[0] == _POSTED
    elif not status_history.added:
        was_posted_before = target.status == _POSTED
    else:
        was_posted_before = False

    if not was_posted_before:
        return

    changed = _changed_columns(target)
    if changed:
        raise _blocked(
            "JournalEntry",
            target.id,
            "UPDATE",
            f"Cannot modify field '{changed[0]}' on posted journal entry",
            field=changed[0],
        )


def _check_journal_entry_delete(mapper, connection, target):
    if target.status == _POSTED:
        raise _blocked(
            "JournalEntry", target.id, "DELETE", "Posted journal entries cannot be deleted"
        )


def _check_journal_line_immutability(mapper, connection, target):
    if target.entry is not None and target.entry.status == _POSTED and _changed_columns(target):
        raise _blocked(
            "JournalLine",
            target.id,
            "UPDATE",
            "Journal lines cannot be modified after parent entry is posted",
        )


def _check_journal_line_delete(mapper, connection, target):
    if target.entry is not None and target.entry.status == _POSTED:
        raise _blocked(
            "JournalLine",
            target.id,
            "DELETE",
            "Journal lines cannot be deleted after parent entry is posted",
        )


def _check_loan_transaction_immutability(mapper, connection, target):
    changed = _changed_columns(target)
    if changed:
        raise _blocked(
            "LoanTransaction",
            target.id,
            "UPDATE",
            f"Loan transactions are append-only (field '{changed[0]}')",
            field=changed[0],
        )


def _check_loan_transaction_delete(mapper, connection, target):
    raise _blocked(
        "LoanTransaction", target.id, "DELETE", "Loan transactions cannot be deleted"
    )


def _check_account_structural_immutability(mapper, connection, target):
    """Block code/type/normal balance/book changes on an account with journal lines."""
    from corebank_kernel.models.journal import JournalLine

    changed = [
        name
        for name in _ACCOUNT_STRUCTURAL_FIELDS
        if get_history(target, name).has_changes()
    ]
    if not changed:
        return

    line_count = connection.execute(
        select(func.count()).select_from(JournalLine).where(JournalLine.account_id == str(target.id))
    ).scalar()
    if line_count:
        raise _blocked(
            "Account",
            target.id,
            "UPDATE",
            f"Cannot change '{changed[0]}' on an account referenced by journal lines",
            field=changed[0],
        )


def _listeners():
    from corebank_kernel.models.account import Account
    from corebank_kernel.models.journal import JournalEntry, JournalLine
    from corebank_kernel.models.loan import LoanTransaction

    return (
        (JournalEntry, "before_update", _check_journal_entry_immutability),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalLine, "before_update", _check_journal_line_immutability),
        (JournalLine, "before_delete", _check_journal_line_delete),
        (LoanTransaction, "before_update", _check_loan_transaction_immutability),
        (LoanTransaction, "before_delete", _check_loan_transaction_delete),
        (Account, "before_update", _check_account_structural_immutability),
    )


def register_immutability_listeners() -> None:
    """Register all immutability listeners. Safe to call more than once."""
    for target, identifier, fn in _listeners():
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)
