"""
corebank_engines.matching -- Bank statement to ledger matching heuristics.

Responsibility:
    Pair bank statement lines with posted cash-account journal lines.  A pair
    qualifies when the signed amounts agree within tolerance AND either the
    dates fall within the date window or the statement reference contains
    the book reference (case-insensitive).  Qualifying pairs are scored and
    a unique one-to-one pairing is chosen, best score first.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    ReconciliationService feeds it snapshots and persists the result.

Invariants enforced:
    - Each statement line and each book line appears in at most one match.
    - Deterministic: ties break on date distance, then input order.
    - Amount comparisons are Decimal; no float intermediates.

Audit relevance:
    Every auto-match records the score that selected it.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from corebank_engines.tracer import traced_engine
from corebank_kernel.domain.values import ZERO
from corebank_kernel.logging_config import get_logger

logger = get_logger("engines.matching")

_PERFECT = Decimal("100")
_DATE_PENALTY_PER_DAY = Decimal("10")
_OUT_OF_WINDOW_SCORE = Decimal("50")
_REFERENCE_BONUS = Decimal("20")


@dataclass(frozen=True)
class MatchTolerance:
    """
    Tolerance rules for matching.

    amount_tolerance is absolute, in currency units.  date_window_days is
    inclusive.
    """

    amount_tolerance: Decimal = ZERO
    date_window_days: int = 2

    def __post_init__(self) -> None:
        if self.amount_tolerance < ZERO:
            raise ValueError("amount_tolerance must not be negative")
        if self.date_window_days < 0:
            raise ValueError("date_window_days must not be negative")


@dataclass(frozen=True)
class MatchCandidate:
    """
    One side of a potential match.

    ``amount`` is signed from the bank's point of view: money into the
    account is positive.
    """

    candidate_id: UUID | str
    amount: Decimal
    date: date
    reference: str = ""


@dataclass(frozen=True)
class MatchSuggestion:
    """A qualifying (statement, book) pair and its score (0-120)."""

    statement: MatchCandidate
    book: MatchCandidate
    score: Decimal
    amount_difference: Decimal
    date_difference_days: int
    reference_match: bool


@dataclass(frozen=True)
class MatchingResult:
    """Unique pairing plus whatever was left on each side."""

    matches: tuple[MatchSuggestion, ...]
    unmatched_statement: tuple[MatchCandidate, ...]
    unmatched_book: tuple[MatchCandidate, ...]

    @property
    def match_count(self) -> int:
        return len(self.matches)


def reference_contains(statement_reference: str, book_reference: str) -> bool:
    if not statement_reference or not book_reference:
        return False
    return book_reference.strip().lower() in statement_reference.lower()


class BankMatchingEngine:
    """
    Statement/ledger matching engine.

    Contract:
        Pure functions -- no I/O, no database access.
    Guarantees:
        - ``evaluate`` returns None for a pair that does not qualify.
        - ``pair`` never uses a candidate twice.
    Non-goals:
        - Does not split one statement line across several book lines.
        - Does not persist matches.
    """

    def __init__(self, tolerance: MatchTolerance | None = None) -> None:
        self.tolerance = tolerance or MatchTolerance()

    def evaluate(self, statement: MatchCandidate, book: MatchCandidate) -> MatchSuggestion | None:
        """Score one pair, or None if it fails the amount/date/reference rules."""
        amount_diff = statement.amount - book.amount
        if abs(amount_diff) > self.tolerance.amount_tolerance:
            return None

        date_diff = abs((statement.date - book.date).days)
        in_window = date_diff <= self.tolerance.date_window_days
        ref_match = reference_contains(statement.reference, book.reference)
        if not (in_window or ref_match):
            return None

        if in_window:
            score = _PERFECT - _DATE_PENALTY_PER_DAY * date_diff
        else:
            score = _OUT_OF_WINDOW_SCORE
        if ref_match:
            score += _REFERENCE_BONUS
        if amount_diff != ZERO:
            score -= _DATE_PENALTY_PER_DAY

        return MatchSuggestion(
            statement=statement,
            book=book,
            score=max(score, Decimal("1")),
            amount_difference=amount_diff,
            date_difference_days=date_diff,
            reference_match=ref_match,
        )

    def find_matches(
        self,
        statement: MatchCandidate,
        book_items: Sequence[MatchCandidate],
    ) -> list[MatchSuggestion]:
        """Qualifying book lines for one statement line, best first."""
        suggestions = [s for s in (self.evaluate(statement, b) for b in book_items) if s is not None]
        return sorted(suggestions, key=lambda s: (-s.score, s.date_difference_days))

    @traced_engine("bank_matching", "1.0", fingerprint_fields=("statement_items", "book_items"))
    def pair(
        self,
        statement_items: Sequence[MatchCandidate],
        book_items: Sequence[MatchCandidate],
    ) -> MatchingResult:
        """
        Choose a one-to-one pairing, best score first.

        Candidates are ranked by (score desc, date distance asc, statement
        input order, book input order) and accepted greedily while both sides
        are still free.
        """
        t0 = time.monotonic()
        ranked: list[tuple[Decimal, int, int, int, MatchSuggestion]] = []
        for si, statement in enumerate(statement_items):
            for bi, book in enumerate(book_items):
                suggestion = self.evaluate(statement, book)
                if suggestion is not None:
                    ranked.append((-suggestion.score, suggestion.date_difference_days, si, bi, suggestion))
        ranked.sort(key=lambda r: r[:4])

        used_statement: set[int] = set()
        used_book: set[int] = set()
        matches: list[MatchSuggestion] = []
        for _, _, si, bi, suggestion in ranked:
            if si in used_statement or bi in used_book:
                continue
            used_statement.add(si)
            used_book.add(bi)
            matches.append(suggestion)

        result = MatchingResult(
            matches=tuple(matches),
            unmatched_statement=tuple(s for i, s in enumerate(statement_items) if i not in used_statement),
            unmatched_book=tuple(b for i, b in enumerate(book_items) if i not in used_book),
        )

        logger.info("bank_matching_completed", extra={
            "statement_count": len(statement_items),
            "book_count": len(book_items),
            "qualifying_pairs": len(ranked),
            "matched": result.match_count,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return result
