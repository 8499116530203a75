"""
Module: corebank_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries -- account balances, trial balance,
    balance sheet, income statement, parent roll-ups and line listings.  There are no stored balances; every
    figure is derived from posted JournalLine rows at query time.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Only POSTED entries count.  A reversed entry and its reversal are both
      POSTED and net to zero.
    - Sums are taken in Python over Decimal values: SQLite stores amounts as
      exact strings and an SQL SUM there would go through float.
    - Roll-ups walk the tree through an id -> children map, never through
      object pointers.

Failure modes:
    - AccountNotFoundError for an unknown account code.
    - EntryNotFoundError for an unknown entry id.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from corebank_kernel.domain.context import OperationContext
from corebank_kernel.domain.dtos import (
    AccountBalance,
    AccountType,
    BalanceSheet,
    Book,
    IncomeStatement,
    NormalBalance,
    PostedEntry,
    PostedLine,
    Side,
    StatementSection,
    TrialBalance,
)
from corebank_kernel.domain.entry_lifecycle import EntryStatus
from corebank_kernel.domain.values import ZERO
from corebank_kernel.exceptions import AccountNotFoundError, EntryNotFoundError
from corebank_kernel.models.account import Account
from corebank_kernel.models.journal import JournalEntry, JournalLine
from corebank_kernel.models.reconciliation import ReconciliationMatch
from corebank_kernel.selectors.base import BaseSelector


class LedgerSelector(BaseSelector):
    """
    Selector for ledger queries -- the authoritative balance computation.

    Contract:
        All queries filter by tenant and status=POSTED and, when given, by
        effective_date <= as_of.

    Guarantees:
        - Balances are Decimal, never float.
        - trial_balance().is_balanced holds for any set of posted entries.

    Non-goals:
        - Does NOT convert currencies.
    """

    def account_balance(
        self,
        ctx: OperationContext,
        account_code: str,
        book: Book = Book.CORE,
        as_of: date | None = None,
    ) -> AccountBalance:
        account = self._account(ctx, account_code, book)
        debits, credits, currency = self._totals(ctx, [account.id], as_of)
        return self._balance_row(account, debits, credits, currency)

    def trial_balance(
        self,
        ctx: OperationContext,
        book: Book = Book.CORE,
        as_of: date | None = None,
    ) -> TrialBalance:
        """Debit/credit totals for every account of ``book`` with postings."""
        book = Book(book)
        rows = tuple(self._account_rows(ctx, book, None, as_of))
        return TrialBalance(tenant_id=ctx.tenant_id, book=book, as_of=as_of, rows=rows)

    def balance_sheet(
        self,
        ctx: OperationContext,
        book: Book = Book.CORE,
        as_of: date | None = None,
    ) -> BalanceSheet:
        """
        Assets, liabilities and equity as of ``as_of``.

        Income and expense accounts are not closed into equity by a posting;
        their net to date is carried as ``current_earnings`` so the sheet
        balances whenever the trial balance does.
        """
        book = Book(book)
        by_type = self._rows_by_type(self._account_rows(ctx, book, None, as_of))
        income = self._section(by_type, AccountType.INCOME)
        expenses = self._section(by_type, AccountType.EXPENSE)
        return BalanceSheet(
            tenant_id=ctx.tenant_id,
            book=book,
            as_of=as_of,
            assets=self._section(by_type, AccountType.ASSET),
            liabilities=self._section(by_type, AccountType.LIABILITY),
            equity=self._section(by_type, AccountType.EQUITY),
            current_earnings=income.total - expenses.total,
        )

    def income_statement(
        self,
        ctx: OperationContext,
        start: date | None = None,
        end: date | None = None,
        book: Book = Book.CORE,
    ) -> IncomeStatement:
        """Income and expenses with effective dates in ``start``..``end``, inclusive."""
        book = Book(book)
        by_type = self._rows_by_type(self._account_rows(ctx, book, start, end))
        return IncomeStatement(
            tenant_id=ctx.tenant_id,
            book=book,
            start=start,
            end=end,
            income=self._section(by_type, AccountType.INCOME),
            expenses=self._section(by_type, AccountType.EXPENSE),
        )

    def rolled_up_balance(
        self,
        ctx: OperationContext,
        account_code: str,
        book: Book = Book.CORE,
        as_of: date | None = None,
    ) -> AccountBalance:
        """
        Balance of an account plus all of its descendants.

        The result is expressed in the requested account's normal-balance
        direction.
        """
        root = self._account(ctx, account_code, book)

        children: dict[UUID, list[UUID]] = defaultdict(list)
        for account_id, parent_id in self.session.execute(
            select(Account.id, Account.parent_id).where(
                Account.tenant_id == ctx.tenant_id,
                Account.book == Book(book).value,
            )
        ):
            if parent_id is not None:
                children[parent_id].append(account_id)

        subtree: list[UUID] = []
        seen: set[UUID] = set()
        stack = [root.id]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            subtree.append(current)
            stack.extend(children.get(current, ()))

        debits, credits, currency = self._totals(ctx, subtree, as_of)
        return self._balance_row(root, debits, credits, currency)

    def entries_for_account(
        self,
        ctx: OperationContext,
        account_code: str,
        book: Book = Book.CORE,
        start: date | None = None,
        end: date | None = None,
    ) -> list[PostedLine]:
        account = self._account(ctx, account_code, book)
        return self._lines(ctx, account, start, end, unreconciled_only=False)

    def unreconciled_lines(
        self,
        ctx: OperationContext,
        account_id: UUID,
        start: date | None = None,
        end: date | None = None,
    ) -> list[PostedLine]:
        """Posted lines on a cash account that no statement line has matched."""
        account = self.session.execute(
            select(Account).where(Account.tenant_id == ctx.tenant_id, Account.id == account_id)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return self._lines(ctx, account, start, end, unreconciled_only=True)

    def get_entry(self, ctx: OperationContext, entry_id: UUID) -> PostedEntry:
        entry = self.session.execute(
            select(JournalEntry).where(
                JournalEntry.tenant_id == ctx.tenant_id,
                JournalEntry.id == entry_id,
            )
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return PostedEntry.from_model(entry)

    # -------------------------------------------------------------------------

    def _account(self, ctx: OperationContext, code: str, book: Book) -> Account:
        account = self.session.execute(
            select(Account).where(
                Account.tenant_id == ctx.tenant_id,
                Account.book == Book(book).value,
                Account.code == code,
            )
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(f"{Book(book).value}:{code}")
        return account

    def _account_rows(
        self, ctx: OperationContext, book: Book, start: date | None, end: date | None
    ) -> list[AccountBalance]:
        """One balance row per account of ``book`` with postings in range, by code."""
        accounts = {
            a.id: a
            for a in self.session.execute(
                select(Account).where(Account.tenant_id == ctx.tenant_id, Account.book == book.value)
            ).scalars()
        }

        debits: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        credits: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        currencies: dict[UUID, str] = {}
        for account_id, side, amount, currency in self._posted_rows(ctx, list(accounts), end, start):
            target = debits if side == Side.DEBIT.value else credits
            target[account_id] += amount
            currencies[account_id] = currency

        return [
            self._balance_row(accounts[aid], debits[aid], credits[aid], currencies[aid])
            for aid in sorted(currencies, key=lambda aid: accounts[aid].code)
        ]

    @staticmethod
    def _rows_by_type(rows: list[AccountBalance]) -> dict[AccountType, list[AccountBalance]]:
        grouped: dict[AccountType, list[AccountBalance]] = defaultdict(list)
        for row in rows:
            grouped[row.account_type].append(row)
        return grouped

    @staticmethod
    def _section(by_type: dict[AccountType, list[AccountBalance]], account_type: AccountType) -> StatementSection:
        return StatementSection(account_type=account_type, rows=tuple(by_type.get(account_type, ())))

    def _posted_rows(
        self,
        ctx: OperationContext,
        account_ids: list[UUID],
        as_of: date | None,
        start: date | None = None,
    ):
        if not account_ids:
            return []
        stmt = (
            select(JournalLine.account_id, JournalLine.side, JournalLine.amount, JournalLine.currency)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalEntry.tenant_id == ctx.tenant_id,
                JournalEntry.status == EntryStatus.POSTED.value,
                JournalLine.account_id.in_(account_ids),
            )
        )
        if as_of is not None:
            stmt = stmt.where(JournalEntry.effective_date <= as_of)
        if start is not None:
            stmt = stmt.where(JournalEntry.effective_date >= start)
        return self.session.execute(stmt).all()

    def _totals(
        self, ctx: OperationContext, account_ids: list[UUID], as_of: date | None
    ) -> tuple[Decimal, Decimal, str | None]:
        debits = credits = ZERO
        currency = None
        for _, side, amount, line_currency in self._posted_rows(ctx, account_ids, as_of):
            if side == Side.DEBIT.value:
                debits += amount
            else:
                credits += amount
            currency = line_currency
        return debits, credits, currency

    @staticmethod
    def _balance_row(account: Account, debits: Decimal, credits: Decimal, currency: str | None) -> AccountBalance:
        return AccountBalance(
            account_id=account.id,
            account_code=account.code,
            account_name=account.name,
            account_type=AccountType(account.account_type),
            normal_balance=NormalBalance(account.normal_balance),
            debit_total=debits,
            credit_total=credits,
            currency=currency or account.currency or "",
        )

    def _lines(
        self,
        ctx: OperationContext,
        account: Account,
        start: date | None,
        end: date | None,
        unreconciled_only: bool,
    ) -> list[PostedLine]:
        stmt = (
            select(JournalLine, JournalEntry.effective_date)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalEntry.tenant_id == ctx.tenant_id,
                JournalEntry.status == EntryStatus.POSTED.value,
                JournalLine.account_id == account.id,
            )
            .order_by(JournalEntry.effective_date, JournalEntry.entry_number, JournalLine.line_seq)
        )
        if start is not None:
            stmt = stmt.where(JournalEntry.effective_date >= start)
        if end is not None:
            stmt = stmt.where(JournalEntry.effective_date <= end)
        if unreconciled_only:
            matched = select(ReconciliationMatch.journal_line_id).where(
                ReconciliationMatch.tenant_id == ctx.tenant_id
            )
            stmt = stmt.where(JournalLine.id.not_in(matched))

        return [
            PostedLine(
                line_id=line.id,
                entry_id=line.journal_entry_id,
                account_id=line.account_id,
                account_code=account.code,
                side=Side(line.side),
                amount=line.amount,
                currency=line.currency,
                effective_date=effective_date,
                memo=line.memo,
            )
            for line, effective_date in self.session.execute(stmt).all()
        ]
