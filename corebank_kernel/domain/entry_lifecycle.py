"""
Journal entry lifecycle -- the status state machine.

    DRAFT -> PENDING -> APPROVED -> POSTED -> (REVERSED)
              |
              +-> DRAFT   (rejected back to the preparer)

No transition skips APPROVED. POSTED is terminal unless the entry is
reversed; REVERSED is terminal. REVERSED is never written to the original
row: it is derived from the existence of a reversal entry, so posted rows
stay untouched.
"""

from __future__ import annotations

from enum import Enum


class EntryStatus(str, Enum):
    """Lifecycle status of a journal entry."""

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    POSTED = "posted"
    REVERSED = "reversed"


ALLOWED_TRANSITIONS: dict[EntryStatus, frozenset[EntryStatus]] = {
    EntryStatus.DRAFT: frozenset({EntryStatus.PENDING}),
    EntryStatus.PENDING: frozenset({EntryStatus.APPROVED, EntryStatus.DRAFT}),
    EntryStatus.APPROVED: frozenset({EntryStatus.POSTED}),
    EntryStatus.POSTED: frozenset({EntryStatus.REVERSED}),
    EntryStatus.REVERSED: frozenset(),
}

TERMINAL_STATUSES = frozenset({EntryStatus.REVERSED})


def can_transition(current: EntryStatus, target: EntryStatus) -> bool:
    """True iff ``current -> target`` is an edge of the state machine."""
    return target in ALLOWED_TRANSITIONS[EntryStatus(current)]
