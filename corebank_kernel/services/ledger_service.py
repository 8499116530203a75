"""
LedgerService -- chart of accounts, balanced postings, approval workflow
and reversals.

Responsibility:
    The single write path into the general ledger.  Every financial movement
    in the system (loan disbursements, repayments, fees, write-offs, manual
    journals) ends up here as a balanced, append-only JournalEntry.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by LoanAccountingService and by operational tooling.  Read-side
    queries live in selectors/ledger_selector.py.

Invariants enforced:
    - Balance: per currency, sum(debits) == sum(credits), checked before any
      mutation.
    - Leaf-only, active-only, same-book postings.
    - Nothing is posted, drafted or reversed into a closed fiscal period.
    - Atomic: lines are assembled in memory and written with one flush; a
      cancelled or invalid posting leaves nothing behind.
    - Workflow: DRAFT -> PENDING -> APPROVED -> POSTED; no step skips
      APPROVED.  Posted rows are never updated (db/immutability.py).
    - Reversal: a mirror entry with sides swapped; at most one per entry;
      a reversal is never itself reversed.
    - Concurrency: postings lock every referenced account (in-process lock
      plus SELECT ... FOR UPDATE); postings on disjoint accounts run in
      parallel.

Failure modes:
    - ImbalancedEntryError, InvalidLineError, AccountNotFoundError,
      InactiveAccountError, NonLeafAccountError, CrossBookPostingError.
    - PostingCancelledError when the CancellationToken fires before flush.
    - InvalidStatusTransitionError on an illegal workflow step.
    - EntryNotPostedError / AlreadyReversedError on reversal.
    - ConcurrencyConflictError when account locks cannot be obtained.
    - PeriodClosedError when the effective date lies in a closed period.

Audit relevance:
    Every row records the acting identity (created_by / updated_by and the
    workflow actor columns).  Every posting, workflow step and reversal is
    logged with tenant, actor and correlation id.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from corebank_kernel.domain.clock import Clock, SystemClock
from corebank_kernel.domain.context import CancellationToken, OperationContext
from corebank_kernel.domain.dtos import AccountType, Book, LineSpec, NormalBalance, PostedEntry, Side
from corebank_kernel.domain.entry_lifecycle import EntryStatus, can_transition
from corebank_kernel.domain.values import ZERO
from corebank_kernel.exceptions import (
    AccountNotFoundError,
    AlreadyReversedError,
    CrossBookPostingError,
    DuplicateAccountError,
    EntryNotFoundError,
    EntryNotPostedError,
    ImbalancedEntryError,
    InactiveAccountError,
    InvalidAccountHierarchyError,
    InvalidLineError,
    InvalidStatusTransitionError,
    NonLeafAccountError,
    PostingCancelledError,
    SourceOwnedEntryError,
)
from corebank_kernel.logging_config import LogContext, get_logger
from corebank_kernel.models.account import Account
from corebank_kernel.models.journal import JournalEntry, JournalLine
from corebank_kernel.services.locking import (
    LockManager,
    account_key,
    entry_key,
    get_lock_manager,
)
from corebank_kernel.services.period_service import PeriodService
from corebank_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger")


class LedgerService:
    """
    Write path into the general ledger.

    Contract:
        Every public method takes an OperationContext first; every query is
        filtered by its tenant and every row written records its actor.

    Guarantees:
        - Validation completes before the first row is added to the session.
        - Returned ids refer to flushed rows in the caller's transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT compute balances (see LedgerSelector).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        lock_manager: LockManager | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._locks = lock_manager or get_lock_manager()
        self._sequences = SequenceService(session)
        self._periods = PeriodService(session, self._clock, self._locks)

    # =========================================================================
    # Chart of accounts
    # =========================================================================

    def create_account(
        self,
        ctx: OperationContext,
        code: str,
        name: str,
        account_type: AccountType | str,
        parent_code: str | None = None,
        book: Book = Book.CORE,
        normal_balance: NormalBalance | str | None = None,
        currency: str | None = None,
    ) -> Account:
        """
        Add an account to the tenant's chart for ``book``.

        Raises:
            DuplicateAccountError: code already used in this tenant and book.
            InvalidAccountHierarchyError: parent missing or already posted to.
        """
        book = Book(book)
        account_type = AccountType(account_type)
        normal = NormalBalance(normal_balance) if normal_balance else account_type.default_normal_balance

        code = (code or "").strip()
        if not code:
            raise InvalidAccountHierarchyError(code, "account code is required")

        if self._find_account(ctx.tenant_id, code, book) is not None:
            raise DuplicateAccountError(code, book.value)

        parent_id = None
        if parent_code is not None:
            parent = self._find_account(ctx.tenant_id, parent_code, book)
            if parent is None:
                raise InvalidAccountHierarchyError(
                    code, f"parent {parent_code} not found in book '{book.value}'"
                )
            if self._has_lines(parent.id):
                raise InvalidAccountHierarchyError(
                    code, f"parent {parent_code} already has postings"
                )
            parent_id = parent.id

        account = Account(
            tenant_id=ctx.tenant_id,
            book=book.value,
            code=code,
            name=name,
            account_type=account_type.value,
            normal_balance=normal.value,
            parent_id=parent_id,
            currency=currency.upper() if currency else None,
            is_active=True,
            created_by=ctx.actor_id,
        )
        self._session.add(account)
        self._session.flush()
        self._sequences.ensure(SequenceService.journal_sequence(ctx.tenant_id))

        logger.info(
            "account_created",
            extra={
                **ctx.log_fields(),
                "account_code": code,
                "book": book.value,
                "account_type": account_type.value,
                "parent_code": parent_code,
            },
        )
        return account

    def get_account(self, ctx: OperationContext, code: str, book: Book = Book.CORE) -> Account:
        account = self._find_account(ctx.tenant_id, code, Book(book))
        if account is None:
            raise AccountNotFoundError(f"{Book(book).value}:{code}")
        return account

    def deactivate_account(self, ctx: OperationContext, code: str, book: Book = Book.CORE) -> Account:
        return self._set_active(ctx, code, book, False)

    def activate_account(self, ctx: OperationContext, code: str, book: Book = Book.CORE) -> Account:
        return self._set_active(ctx, code, book, True)

    def retire_account(self, ctx: OperationContext, code: str, book: Book = Book.CORE) -> Account:
        """
        Soft-delete an account: deactivate it and flag the row deleted.

        The row and its posted history stay in place.  An account that still
        has children cannot be retired.
        """
        book = Book(book)
        account = self.get_account(ctx, code, book)
        has_children = self._session.execute(
            select(Account.id).where(Account.parent_id == account.id, Account.is_deleted.is_(False)).limit(1)
        ).first()
        if has_children is not None:
            raise InvalidAccountHierarchyError(code, "account still has child accounts")

        account.is_active = False
        account.soft_delete(ctx.actor_id, self._clock.now())
        account.touch(ctx.actor_id)
        self._session.flush()
        logger.info(
            "account_retired",
            extra={**ctx.log_fields(), "account_code": code, "book": book.value},
        )
        return account

    def reparent_account(
        self,
        ctx: OperationContext,
        code: str,
        new_parent_code: str | None,
        book: Book = Book.CORE,
    ) -> Account:
        """
        Move an account under a different parent (or to the root).

        The ancestry walk goes through an id -> account map of the whole
        book, so a cycle is detected instead of followed.
        """
        book = Book(book)
        account = self.get_account(ctx, code, book)
        if new_parent_code is None:
            account.parent_id = None
            account.touch(ctx.actor_id)
            self._session.flush()
            return account

        parent = self._find_account(ctx.tenant_id, new_parent_code, book)
        if parent is None:
            raise InvalidAccountHierarchyError(
                code, f"parent {new_parent_code} not found in book '{book.value}'"
            )
        if self._has_lines(parent.id):
            raise InvalidAccountHierarchyError(code, f"parent {new_parent_code} already has postings")

        by_id = {
            a.id: a
            for a in self._session.execute(
                select(Account).where(Account.tenant_id == ctx.tenant_id, Account.book == book.value)
            ).scalars()
        }
        cursor: UUID | None = parent.id
        seen: set[UUID] = set()
        while cursor is not None and cursor not in seen:
            if cursor == account.id:
                raise InvalidAccountHierarchyError(code, f"moving under {new_parent_code} creates a cycle")
            seen.add(cursor)
            cursor = by_id[cursor].parent_id if cursor in by_id else None

        account.parent_id = parent.id
        account.touch(ctx.actor_id)
        self._session.flush()
        logger.info(
            "account_reparented",
            extra={**ctx.log_fields(), "account_code": code, "parent_code": new_parent_code},
        )
        return account

    # =========================================================================
    # Posting
    # =========================================================================

    def post_entry(
        self,
        ctx: OperationContext,
        lines: Sequence[LineSpec],
        effective_date: date,
        description: str | None = None,
        book: Book = Book.CORE,
        source: tuple[str, str] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> UUID:
        """
        Validate and post a balanced entry in one call.

        The entry is driven through DRAFT -> PENDING -> APPROVED -> POSTED
        with ``ctx.actor_id`` as submitter, approver and poster.

        Preconditions:
            - At least two lines, each with a positive amount.
            - Lines reference active leaf accounts of ``book``.
            - ``effective_date`` is not inside a closed fiscal period.

        Postconditions:
            - One POSTED JournalEntry with its lines is flushed, or nothing
              is written at all.

        Returns:
            The new entry's id.
        """
        book = Book(book)
        with LogContext.bind(**ctx.log_fields()):
            currency = self._validate_structure(lines)
            accounts = self._resolve_accounts(ctx, lines, book)
            self._periods.validate_effective_date(ctx, effective_date)

            with self._locks.acquire(*(account_key(ctx.tenant_id, a.id) for a in accounts.values())):
                self._lock_account_rows(ctx, accounts)

                entry = self._new_entry(ctx, lines, accounts, effective_date, description, book, currency, source)
                self._assemble_lines(ctx, entry, lines, accounts, cancel_token)

                for target in (EntryStatus.PENDING, EntryStatus.APPROVED, EntryStatus.POSTED):
                    self._advance(entry, target)
                entry.submitted_by = ctx.actor_id
                entry.approved_by = ctx.actor_id

                self._check_cancelled(cancel_token)
                self._stamp_posted(ctx, entry)
                self._session.add(entry)
                self._session.flush()

            logger.info(
                "entry_posted",
                extra={
                    "entry_id": str(entry.id),
                    "entry_number": entry.entry_number,
                    "book": book.value,
                    "effective_date": effective_date,
                    "total": entry.total_debit,
                    "currency": currency,
                    "line_count": len(lines),
                    "source_type": entry.source_type,
                },
            )
            return entry.id

    def create_draft(
        self,
        ctx: OperationContext,
        lines: Sequence[LineSpec],
        effective_date: date,
        description: str | None = None,
        book: Book = Book.CORE,
        source: tuple[str, str] | None = None,
    ) -> UUID:
        """Validate and persist an entry in DRAFT for the approval workflow."""
        book = Book(book)
        currency = self._validate_structure(lines)
        accounts = self._resolve_accounts(ctx, lines, book)
        self._periods.validate_effective_date(ctx, effective_date)

        entry = self._new_entry(ctx, lines, accounts, effective_date, description, book, currency, source)
        self._assemble_lines(ctx, entry, lines, accounts, None)
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "entry_drafted",
            extra={**ctx.log_fields(), "entry_id": str(entry.id), "book": book.value},
        )
        return entry.id

    def submit(self, ctx: OperationContext, entry_id: UUID) -> None:
        """DRAFT -> PENDING."""
        entry = self._load_entry(ctx, entry_id)
        self._advance(entry, EntryStatus.PENDING)
        entry.submitted_by = ctx.actor_id
        entry.rejection_reason = None
        entry.touch(ctx.actor_id)
        self._session.flush()
        self._log_transition(ctx, entry, "entry_submitted")

    def approve(self, ctx: OperationContext, entry_id: UUID) -> None:
        """PENDING -> APPROVED."""
        entry = self._load_entry(ctx, entry_id)
        self._advance(entry, EntryStatus.APPROVED)
        entry.approved_by = ctx.actor_id
        entry.touch(ctx.actor_id)
        self._session.flush()
        self._log_transition(ctx, entry, "entry_approved")

    def reject(self, ctx: OperationContext, entry_id: UUID, reason: str) -> None:
        """PENDING -> DRAFT, back to the preparer."""
        entry = self._load_entry(ctx, entry_id)
        self._advance(entry, EntryStatus.DRAFT)
        entry.rejection_reason = reason
        entry.approved_by = None
        entry.touch(ctx.actor_id)
        self._session.flush()
        self._log_transition(ctx, entry, "entry_rejected", reason=reason)

    def post(self, ctx: OperationContext, entry_id: UUID) -> None:
        """
        APPROVED -> POSTED.

        Balance and account state are checked again under the account locks:
        an account may have been deactivated since the draft was written.
        """
        entry = self._load_entry(ctx, entry_id)
        if not can_transition(EntryStatus(entry.status), EntryStatus.POSTED):
            raise InvalidStatusTransitionError(str(entry.id), entry.status, EntryStatus.POSTED.value)

        specs = [
            LineSpec(ln.account.code, Side(ln.side), ln.amount, ln.currency, ln.memo)
            for ln in entry.lines
        ]
        self._validate_structure(specs)
        accounts = self._resolve_accounts(ctx, specs, Book(entry.book))
        self._periods.validate_effective_date(ctx, entry.effective_date)

        with self._locks.acquire(*(account_key(ctx.tenant_id, a.id) for a in accounts.values())):
            self._lock_account_rows(ctx, accounts)
            self._advance(entry, EntryStatus.POSTED)
            self._stamp_posted(ctx, entry)
            entry.touch(ctx.actor_id)
            self._session.flush()

        self._log_transition(ctx, entry, "entry_posted", entry_number=entry.entry_number)

    # =========================================================================
    # Reversal
    # =========================================================================

    def reverse_entry(
        self,
        ctx: OperationContext,
        entry_id: UUID,
        reason: str,
        effective_date: date | None = None,
        source: tuple[str, str] | None = None,
    ) -> UUID:
        """
        Post the mirror image of a posted entry.

        The original row is not modified; it reads as REVERSED because a
        reversal now points at it.  Reversals skip the active-account check:
        correcting a posting must stay possible after an account is closed.

        An entry posted with a ``source`` belongs to that source: only a caller
        passing the same source type may reverse it, so the owning sub-ledger
        (loan transactions, for one) reverses its own state alongside.

        Raises:
            EntryNotFoundError: unknown entry for this tenant.
            EntryNotPostedError: entry is not POSTED.
            AlreadyReversedError: entry already reversed, or is a reversal.
            SourceOwnedEntryError: entry posted by a source other than ``source``.
            PeriodClosedError: the reversal date falls in a closed period.
        """
        with LogContext.bind(**ctx.log_fields(), entry_id=str(entry_id)):
            with self._locks.acquire(entry_key(ctx.tenant_id, entry_id)):
                original = self._load_entry(ctx, entry_id, for_update=True)

                if original.status != EntryStatus.POSTED.value:
                    raise EntryNotPostedError(str(entry_id), original.status)
                if original.is_reversal:
                    raise AlreadyReversedError(str(entry_id), "entry is itself a reversal")
                if original.source_type is not None and (source is None or source[0] != original.source_type):
                    raise SourceOwnedEntryError(str(entry_id), original.source_type)
                existing = self._session.execute(
                    select(JournalEntry.id).where(
                        JournalEntry.tenant_id == ctx.tenant_id,
                        JournalEntry.reversal_of_id == original.id,
                    )
                ).first()
                if existing is not None:
                    raise AlreadyReversedError(str(entry_id))

                reversal_date = effective_date or original.effective_date
                self._periods.validate_effective_date(ctx, reversal_date)

                accounts = {ln.account.code: ln.account for ln in original.lines}
                with self._locks.acquire(*(account_key(ctx.tenant_id, a.id) for a in accounts.values())):
                    self._lock_account_rows(ctx, accounts, require_active=False)

                    reversal = JournalEntry(
                        tenant_id=ctx.tenant_id,
                        book=original.book,
                        effective_date=reversal_date,
                        status=EntryStatus.POSTED.value,
                        currency=original.currency,
                        total_debit=original.total_credit,
                        total_credit=original.total_debit,
                        description=f"Reversal of entry #{original.entry_number}: {reason}",
                        source_type=source[0] if source else "reversal",
                        source_id=source[1] if source else str(original.id),
                        reversal_of_id=original.id,
                        submitted_by=ctx.actor_id,
                        approved_by=ctx.actor_id,
                        created_by=ctx.actor_id,
                    )
                    for seq, ln in enumerate(original.lines):
                        reversal.lines.append(
                            JournalLine(
                                tenant_id=ctx.tenant_id,
                                account_id=ln.account_id,
                                side=Side(ln.side).opposite.value,
                                amount=ln.amount,
                                currency=ln.currency,
                                line_seq=seq,
                                memo=f"Reversal: {ln.memo}" if ln.memo else "Reversal",
                                created_by=ctx.actor_id,
                            )
                        )
                    self._stamp_posted(ctx, reversal)
                    self._session.add(reversal)
                    self._session.flush()

                self._session.expire(original, ["reversed_by"])

            logger.info(
                "entry_reversed",
                extra={
                    "original_entry_id": str(original.id),
                    "reversal_entry_id": str(reversal.id),
                    "reversal_entry_number": reversal.entry_number,
                    "reason": reason,
                },
            )
            return reversal.id

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_entry(self, ctx: OperationContext, entry_id: UUID) -> PostedEntry:
        return PostedEntry.from_model(self._load_entry(ctx, entry_id))

    # =========================================================================
    # Internal
    # =========================================================================

    def _find_account(self, tenant_id: str, code: str, book: Book) -> Account | None:
        return self._session.execute(
            select(Account).where(
                Account.tenant_id == tenant_id,
                Account.book == book.value,
                Account.code == code,
            )
        ).scalar_one_or_none()

    def _has_lines(self, account_id: UUID) -> bool:
        return (
            self._session.execute(
                select(JournalLine.id).where(JournalLine.account_id == account_id).limit(1)
            ).first()
            is not None
        )

    def _set_active(self, ctx: OperationContext, code: str, book: Book, active: bool) -> Account:
        account = self.get_account(ctx, code, book)
        if account.is_active != active:
            account.is_active = active
            account.touch(ctx.actor_id)
            self._session.flush()
            logger.info(
                "account_activated" if active else "account_deactivated",
                extra={**ctx.log_fields(), "account_code": code, "book": Book(book).value},
            )
        return account

    def _load_entry(self, ctx: OperationContext, entry_id: UUID, for_update: bool = False) -> JournalEntry:
        stmt = select(JournalEntry).where(
            JournalEntry.tenant_id == ctx.tenant_id,
            JournalEntry.id == entry_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        entry = self._session.execute(stmt).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    @staticmethod
    def _validate_structure(lines: Sequence[LineSpec]) -> str:
        """
        Line-count, amount, currency and balance checks.  Pure, no I/O.

        Returns:
            The entry currency.
        """
        if len(lines) < 2:
            raise InvalidLineError("an entry needs at least two lines")

        for i, line in enumerate(lines):
            if not isinstance(line, LineSpec):
                raise InvalidLineError(f"expected LineSpec, got {type(line).__name__}", i)
            if line.amount <= ZERO:
                raise InvalidLineError(f"amount must be positive, got {line.amount}", i)

        debits: dict[str, Decimal] = defaultdict(lambda: ZERO)
        credits: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for line in lines:
            target = debits if line.side is Side.DEBIT else credits
            target[line.currency] += line.amount

        for currency in sorted(set(debits) | set(credits)):
            if debits[currency] != credits[currency]:
                raise ImbalancedEntryError(str(debits[currency]), str(credits[currency]), currency)

        currencies = {line.currency for line in lines}
        if len(currencies) > 1:
            raise InvalidLineError(f"an entry carries one currency, got {sorted(currencies)}")
        return currencies.pop()

    def _resolve_accounts(
        self, ctx: OperationContext, lines: Iterable[LineSpec], book: Book
    ) -> dict[str, Account]:
        """Map each referenced code to an active leaf account of ``book``."""
        lines = list(lines)
        codes = sorted({line.account_code for line in lines})
        rows = self._session.execute(
            select(Account).where(Account.tenant_id == ctx.tenant_id, Account.code.in_(codes))
        ).scalars().all()

        in_book = {a.code: a for a in rows if a.book == book.value}
        elsewhere = {a.code: a for a in rows if a.book != book.value}

        for code in codes:
            if code in in_book:
                continue
            if code in elsewhere:
                raise CrossBookPostingError(code, elsewhere[code].book, book.value)
            raise AccountNotFoundError(f"{book.value}:{code}")

        ids = [a.id for a in in_book.values()]
        parents = set(
            self._session.execute(
                select(Account.parent_id).where(
                    Account.tenant_id == ctx.tenant_id,
                    Account.parent_id.in_(ids),
                )
            ).scalars()
        )

        for i, line in enumerate(lines):
            account = in_book[line.account_code]
            if not account.is_active:
                raise InactiveAccountError(account.code)
            if account.id in parents:
                raise NonLeafAccountError(account.code)
            if account.currency and account.currency != line.currency:
                raise InvalidLineError(
                    f"account {account.code} only accepts {account.currency}", i
                )
        return in_book

    def _lock_account_rows(
        self, ctx: OperationContext, accounts: dict[str, Account], require_active: bool = True
    ) -> None:
        """SELECT ... FOR UPDATE on the accounts and re-check they are still active."""
        ids = sorted(a.id for a in accounts.values())
        locked = self._session.execute(
            select(Account)
            .where(Account.tenant_id == ctx.tenant_id, Account.id.in_(ids))
            .order_by(Account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        for account in locked:
            if require_active and not account.is_active:
                raise InactiveAccountError(account.code)

    def _new_entry(
        self,
        ctx: OperationContext,
        lines: Sequence[LineSpec],
        accounts: dict[str, Account],
        effective_date: date,
        description: str | None,
        book: Book,
        currency: str,
        source: tuple[str, str] | None,
    ) -> JournalEntry:
        total = sum((ln.amount for ln in lines if ln.side is Side.DEBIT), ZERO)
        return JournalEntry(
            tenant_id=ctx.tenant_id,
            book=book.value,
            effective_date=effective_date,
            status=EntryStatus.DRAFT.value,
            currency=currency,
            total_debit=total,
            total_credit=total,
            description=description,
            source_type=source[0] if source else None,
            source_id=source[1] if source else None,
            created_by=ctx.actor_id,
        )

    def _assemble_lines(
        self,
        ctx: OperationContext,
        entry: JournalEntry,
        lines: Sequence[LineSpec],
        accounts: dict[str, Account],
        cancel_token: CancellationToken | None,
    ) -> None:
        for seq, spec in enumerate(lines):
            self._check_cancelled(cancel_token)
            entry.lines.append(
                JournalLine(
                    tenant_id=ctx.tenant_id,
                    account_id=accounts[spec.account_code].id,
                    side=spec.side.value,
                    amount=spec.amount,
                    currency=spec.currency,
                    line_seq=seq,
                    memo=spec.memo,
                    created_by=ctx.actor_id,
                )
            )

    @staticmethod
    def _check_cancelled(cancel_token: CancellationToken | None) -> None:
        if cancel_token is not None and cancel_token.is_cancelled:
            raise PostingCancelledError(cancel_token.reason)

    @staticmethod
    def _advance(entry: JournalEntry, target: EntryStatus) -> None:
        current = EntryStatus(entry.status)
        if not can_transition(current, target):
            raise InvalidStatusTransitionError(
                str(entry.id) if entry.id else "<new>", current.value, target.value
            )
        entry.status = target.value

    def _stamp_posted(self, ctx: OperationContext, entry: JournalEntry) -> None:
        entry.entry_number = self._sequences.next_value(
            SequenceService.journal_sequence(ctx.tenant_id)
        )
        entry.posted_by = ctx.actor_id
        entry.posted_at = self._clock.now()

    def _log_transition(self, ctx: OperationContext, entry: JournalEntry, event: str, **fields) -> None:
        logger.info(
            event,
            extra={**ctx.log_fields(), "entry_id": str(entry.id), "status": entry.status, **fields},
        )
