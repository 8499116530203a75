"""
corebank_services.loan_service -- Loan accounting.

Responsibility:
    Originates loans with their repayment schedule and records every
    financial event on them (disbursement, repayment, fee, penalty,
    write-off, reversal) as a LoanTransaction paired with a balanced journal
    entry posted through the Ledger Engine.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Schedules come from corebank_engines.amortization, payment splits from
    corebank_engines.allocation, arrears and penalties from
    corebank_engines.delinquency.  Accounts are resolved from the posting
    roles in LoanSettings.

Invariants enforced:
    - outstanding principal + principal paid + principal written off ==
      original principal, after every operation.
    - Each LoanTransaction maps to exactly one journal entry; both are
      written in the caller's transaction or neither is.
    - Operations on one loan are serialized (lock key loan:<tenant>:<id>)
      and loan rows carry an optimistic version counter.
    - A reversal is a new transaction; a reversal is never reversed.

Failure modes:
    - LoanNotFoundError, LoanNotActiveError, DuplicateLoanError.
    - InvalidPaymentError for non-positive amounts or a currency mismatch.
    - OverpaymentError when a payment exceeds what is due (prepayment
      disallowed) or what is outstanding.
    - ScheduleGenerationError for invalid loan terms.
    - AlreadyReversedError, LoanTransactionNotReversibleError on reversal.
    - ConcurrencyConflictError when the loan lock cannot be obtained.

Audit relevance:
    Every operation logs loan id, transaction id and journal entry id with
    tenant, actor and correlation id bound via LogContext.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from corebank_config import get_active_settings, lock_manager_from
from corebank_config.schema import LoanSettings
from corebank_engines.allocation import (
    InstallmentAllocation,
    InstallmentState,
    PaymentAllocationEngine,
    amount_due,
    max_payable,
)
from corebank_engines.amortization import generate_schedule
from corebank_engines.delinquency import (
    ClassificationThresholds,
    OverdueInstallment,
    assess_penalties,
    classify,
    oldest_days_overdue,
)
from corebank_kernel.domain.clock import Clock, SystemClock
from corebank_kernel.domain.context import OperationContext
from corebank_kernel.domain.dtos import Book, LineSpec
from corebank_kernel.domain.loan_terms import (
    ALLOCATION_PRIORITY,
    Component,
    InstallmentStatus,
    InterestMethod,
    LoanStatus,
    LoanTransactionType,
)
from corebank_kernel.domain.values import ZERO, round_money, to_decimal
from corebank_kernel.exceptions import (
    AlreadyReversedError,
    DuplicateLoanError,
    InvalidPaymentError,
    LoanNotActiveError,
    LoanNotFoundError,
    LoanTransactionNotFoundError,
    LoanTransactionNotReversibleError,
    OverpaymentError,
)
from corebank_kernel.logging_config import LogContext, get_logger
from corebank_kernel.models.loan import Loan, LoanTransaction, RepaymentScheduleEntry
from corebank_kernel.services.ledger_service import LedgerService
from corebank_kernel.services.locking import LockManager, loan_key

logger = get_logger("services.loan")

# Loan balance columns per component: (outstanding, paid)
_BALANCE_COLUMNS: dict[Component, tuple[str, str]] = {
    Component.PENALTY: ("outstanding_penalties", "penalties_paid"),
    Component.FEE: ("outstanding_fees", "fees_paid"),
    Component.INTEREST: ("outstanding_interest", "interest_paid"),
    Component.PRINCIPAL: ("outstanding_principal", "principal_paid"),
}

# Account credited when a repayment settles each component
_REPAYMENT_CREDIT_ROLE: dict[Component, str] = {
    Component.PENALTY: "penalty_receivable",
    Component.FEE: "fee_receivable",
    Component.INTEREST: "interest_income",
    Component.PRINCIPAL: "loan_portfolio",
}

_SOURCE_TYPE = "loan_transaction"


@dataclass(frozen=True)
class PayoffQuote:
    """Amount that closes a loan if paid on ``as_of``."""

    loan_id: UUID
    as_of: date
    currency: str
    penalties: Decimal
    fees: Decimal
    interest: Decimal
    principal: Decimal
    due_now: Decimal

    @property
    def total(self) -> Decimal:
        return self.penalties + self.fees + self.interest + self.principal


class LoanAccountingService:
    """
    Loan accounting over the general ledger.

    Contract:
        Receives Session, LoanSettings, Clock and LockManager via constructor
        injection.  Every public method takes an OperationContext first.
    Guarantees:
        - Loan balances, schedule rows, the LoanTransaction and the journal
          entry change together in the caller's transaction.
        - Validation (status, amount, currency, overpayment) completes before
          anything is written.
    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT accrue interest daily; interest is scheduled.
        - Does NOT reschedule or restructure loans.
    """

    def __init__(
        self,
        session: Session,
        settings: LoanSettings | None = None,
        clock: Clock | None = None,
        lock_manager: LockManager | None = None,
        ledger: LedgerService | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_active_settings().loans
        self._clock = clock or SystemClock()
        self._locks = lock_manager or lock_manager_from(get_active_settings().ledger)
        self._ledger = ledger or LedgerService(session, self._clock, self._locks)
        self._allocator = PaymentAllocationEngine()
        self._thresholds = ClassificationThresholds(
            special_mention=self._settings.classification_thresholds.special_mention,
            substandard=self._settings.classification_thresholds.substandard,
            doubtful=self._settings.classification_thresholds.doubtful,
            loss=self._settings.classification_thresholds.loss,
        )

    @property
    def book(self) -> Book:
        return Book(self._settings.book)

    # =========================================================================
    # Origination
    # =========================================================================

    def create_loan(
        self,
        ctx: OperationContext,
        loan_number: str,
        principal: Decimal | str,
        annual_rate: Decimal | str,
        tenor_months: int,
        interest_method: InterestMethod | str,
        start_date: date,
        currency: str = "USD",
        borrower_ref: str | None = None,
        allow_prepayment: bool | None = None,
        penalty_daily_rate: Decimal | str | None = None,
        grace_days: int | None = None,
    ) -> Loan:
        """
        Record an approved loan and store its repayment schedule.

        No money moves until ``disburse``.  Per-loan overrides of the
        prepayment policy, penalty rate and grace days default to
        LoanSettings.

        Raises:
            DuplicateLoanError: loan_number already used by this tenant.
            ScheduleGenerationError: invalid terms.
        """
        schedule = generate_schedule(
            principal,
            annual_rate,
            tenor_months,
            interest_method,
            start_date,
            max_tenor_months=self._settings.max_tenor_months,
        )

        existing = self._session.execute(
            select(Loan.id).where(Loan.tenant_id == ctx.tenant_id, Loan.loan_number == loan_number)
        ).first()
        if existing is not None:
            raise DuplicateLoanError(loan_number)

        loan = Loan(
            tenant_id=ctx.tenant_id,
            loan_number=loan_number,
            borrower_ref=borrower_ref,
            book=self.book.value,
            currency=currency.upper(),
            principal=schedule.principal,
            annual_rate=schedule.annual_rate,
            tenor_months=schedule.tenor_months,
            interest_method=schedule.method.value,
            start_date=start_date,
            allow_prepayment=(
                self._settings.allow_prepayment if allow_prepayment is None else allow_prepayment
            ),
            penalty_daily_rate=to_decimal(
                self._settings.penalty_daily_rate if penalty_daily_rate is None else penalty_daily_rate
            ),
            grace_days=self._settings.grace_days if grace_days is None else grace_days,
            outstanding_principal=schedule.principal,
            outstanding_interest=schedule.total_interest,
            outstanding_fees=ZERO,
            outstanding_penalties=ZERO,
            status=LoanStatus.ACTIVE.value,
            created_by=ctx.actor_id,
        )
        for inst in schedule.installments:
            loan.installments.append(
                RepaymentScheduleEntry(
                    tenant_id=ctx.tenant_id,
                    installment_number=inst.number,
                    due_date=inst.due_date,
                    principal_due=inst.principal,
                    interest_due=inst.interest,
                    created_by=ctx.actor_id,
                )
            )
        self._session.add(loan)
        self._session.flush()

        logger.info(
            "loan_created",
            extra={
                **ctx.log_fields(),
                "loan_id": str(loan.id),
                "loan_number": loan_number,
                "principal": schedule.principal,
                "total_interest": schedule.total_interest,
                "tenor_months": schedule.tenor_months,
                "interest_method": schedule.method.value,
            },
        )
        return loan

    def get_loan(self, ctx: OperationContext, loan_id: UUID) -> Loan:
        loan = self._session.execute(
            select(Loan).where(Loan.tenant_id == ctx.tenant_id, Loan.id == loan_id)
        ).scalar_one_or_none()
        if loan is None:
            raise LoanNotFoundError(str(loan_id))
        return loan

    def disburse(self, ctx: OperationContext, loan_id: UUID, disbursement_date: date) -> LoanTransaction:
        """Pay out the principal: Dr loan portfolio / Cr cash."""
        with LogContext.bind(**ctx.log_fields(), loan_id=str(loan_id)):
            with self._locks.acquire(loan_key(ctx.tenant_id, loan_id)):
                loan = self._load_loan(ctx, loan_id, for_update=True)
                self._require_open(loan, "disburse")
                if loan.disbursed_on is not None:
                    raise LoanNotActiveError(str(loan.id), "already disbursed", "disburse")

                txn_id = uuid4()
                entry_id = self._post(
                    ctx,
                    loan,
                    txn_id,
                    [
                        LineSpec.debit(self._account("loan_portfolio"), loan.principal, loan.currency),
                        LineSpec.credit(self._account("cash"), loan.principal, loan.currency),
                    ],
                    disbursement_date,
                    f"Disbursement of loan {loan.loan_number}",
                )
                loan.disbursed_on = disbursement_date
                loan.touch(ctx.actor_id)

                txn = self._record(
                    ctx,
                    loan,
                    txn_id,
                    LoanTransactionType.DISBURSEMENT,
                    loan.principal,
                    disbursement_date,
                    entry_id,
                    principal=loan.principal,
                )

            logger.info(
                "loan_disbursed",
                extra={"transaction_id": str(txn.id), "journal_entry_id": str(entry_id), "amount": loan.principal},
            )
            return txn

    # =========================================================================
    # Repayment
    # =========================================================================

    def apply_payment(
        self,
        ctx: OperationContext,
        loan_id: UUID,
        amount: Decimal | str,
        payment_date: date,
        currency: str | None = None,
    ) -> LoanTransaction:
        """
        Apply a repayment through the waterfall and post it.

        Dr cash for the full amount; Cr penalty receivable, fee receivable,
        interest income and loan portfolio for the allocated components.
        Closes the loan when every balance reaches zero.

        Raises:
            InvalidPaymentError: amount not positive, or wrong currency.
            OverpaymentError: amount above what may be paid now.
            LoanNotActiveError: loan closed, written off or not disbursed.
            PeriodClosedError: payment date in a closed fiscal period; the
                loan is left untouched.
        """
        amount = to_decimal(amount)
        with LogContext.bind(**ctx.log_fields(), loan_id=str(loan_id)):
            with self._locks.acquire(loan_key(ctx.tenant_id, loan_id)):
                loan = self._load_loan(ctx, loan_id, for_update=True)
                self._require_open(loan, "repay")
                self._require_disbursed(loan, "repay")
                self._check_amount(loan, amount, currency)

                states = self._installment_states(loan)
                outstanding = loan.total_outstanding
                if amount > outstanding:
                    raise OverpaymentError(str(loan.id), str(amount), str(outstanding))
                allowed = max_payable(states, payment_date, loan.allow_prepayment)
                if amount > allowed:
                    raise OverpaymentError(str(loan.id), str(amount), str(allowed))

                allocation = self._allocator.allocate(amount, states, payment_date, loan.allow_prepayment)
                totals = allocation.totals

                lines = [LineSpec.debit(self._account("cash"), amount, loan.currency, memo="Loan repayment")]
                for component in ALLOCATION_PRIORITY:
                    if totals[component] > ZERO:
                        lines.append(
                            LineSpec.credit(
                                self._account(_REPAYMENT_CREDIT_ROLE[component]),
                                totals[component],
                                loan.currency,
                                memo=component.value,
                            )
                        )

                txn_id = uuid4()
                entry_id = self._post(
                    ctx, loan, txn_id, lines, payment_date, f"Repayment on loan {loan.loan_number}"
                )

                self._apply_allocation(loan, allocation.lines, sign=1, as_of=payment_date)
                self._refresh(loan, payment_date)
                if loan.total_outstanding == ZERO:
                    loan.status = LoanStatus.CLOSED.value
                    loan.closed_on = payment_date
                loan.touch(ctx.actor_id)

                txn = self._record(
                    ctx,
                    loan,
                    txn_id,
                    LoanTransactionType.REPAYMENT,
                    amount,
                    payment_date,
                    entry_id,
                    penalty=totals[Component.PENALTY],
                    fee=totals[Component.FEE],
                    interest=totals[Component.INTEREST],
                    principal=totals[Component.PRINCIPAL],
                    prepayment=allocation.prepayment_total,
                    allocation=allocation.to_json(),
                )

            logger.info(
                "payment_applied",
                extra={
                    "transaction_id": str(txn.id),
                    "journal_entry_id": str(entry_id),
                    "amount": amount,
                    "penalty": totals[Component.PENALTY],
                    "fee": totals[Component.FEE],
                    "interest": totals[Component.INTEREST],
                    "principal": totals[Component.PRINCIPAL],
                    "prepayment": allocation.prepayment_total,
                    "loan_status": loan.status,
                },
            )
            return txn

    # =========================================================================
    # Fees, penalties and delinquency
    # =========================================================================

    def assess_fee(
        self,
        ctx: OperationContext,
        loan_id: UUID,
        amount: Decimal | str,
        fee_date: date,
        installment_number: int | None = None,
        memo: str | None = None,
    ) -> LoanTransaction:
        """
        Charge a fee: Dr fee receivable / Cr fee income.

        The fee is added to ``installment_number``, or to the earliest
        installment that still has something outstanding.
        """
        amount = to_decimal(amount)
        with LogContext.bind(**ctx.log_fields(), loan_id=str(loan_id)):
            with self._locks.acquire(loan_key(ctx.tenant_id, loan_id)):
                loan = self._load_loan(ctx, loan_id, for_update=True)
                self._require_open(loan, "charge a fee on")
                self._require_disbursed(loan, "charge a fee on")
                self._check_amount(loan, amount, None)
                inst = self._target_installment(loan, installment_number)

                txn_id = uuid4()
                entry_id = self._post(
                    ctx,
                    loan,
                    txn_id,
                    [
                        LineSpec.debit(self._account("fee_receivable"), amount, loan.currency, memo=memo),
                        LineSpec.credit(self._account("fee_income"), amount, loan.currency, memo=memo),
                    ],
                    fee_date,
                    memo or f"Fee on loan {loan.loan_number}",
                )
                inst.fee_due += amount
                loan.outstanding_fees += amount
                self._refresh(loan, fee_date)
                loan.touch(ctx.actor_id)

                txn = self._record(
                    ctx,
                    loan,
                    txn_id,
                    LoanTransactionType.FEE,
                    amount,
                    fee_date,
                    entry_id,
                    fee=amount,
                    allocation=[InstallmentAllocation(inst.installment_number, fee=amount).to_dict()],
                    memo=memo,
                )

            logger.info(
                "fee_assessed",
                extra={
                    "transaction_id": str(txn.id),
                    "journal_entry_id": str(entry_id),
                    "amount": amount,
                    "installment_number": inst.installment_number,
                },
            )
            return txn

    def assess_penalties(self, ctx: OperationContext, loan_id: UUID, as_of: date) -> LoanTransaction | None:
        """
        Charge penalty on overdue installments up to ``as_of``.

        Per installment: overdue amount (principal, interest and fees still
        owed) x daily penalty rate x days overdue, less penalty already
        charged.  Installments inside the grace period accrue nothing.
        Posts Dr penalty receivable / Cr penalty income for the total.

        Returns:
            The PENALTY transaction, or None when nothing new accrued.
        """
        with LogContext.bind(**ctx.log_fields(), loan_id=str(loan_id)):
            with self._locks.acquire(loan_key(ctx.tenant_id, loan_id)):
                loan = self._load_loan(ctx, loan_id, for_update=True)
                self._require_open(loan, "assess penalties on")
                self._require_disbursed(loan, "assess penalties on")

                overdue = [
                    OverdueInstallment(
                        installment_number=inst.installment_number,
                        due_date=inst.due_date,
                        overdue_amount=self._non_penalty_outstanding(inst),
                        penalty_charged=inst.penalty_due,
                    )
                    for inst in loan.installments
                    if inst.due_date < as_of and self._non_penalty_outstanding(inst) > ZERO
                ]
                charges = assess_penalties(overdue, loan.penalty_daily_rate, as_of, loan.grace_days)
                total = sum((c.increment for c in charges), ZERO)
                if total == ZERO:
                    self._refresh(loan, as_of)
                    return None

                txn_id = uuid4()
                entry_id = self._post(
                    ctx,
                    loan,
                    txn_id,
                    [
                        LineSpec.debit(self._account("penalty_receivable"), total, loan.currency),
                        LineSpec.credit(self._account("penalty_income"), total, loan.currency),
                    ],
                    as_of,
                    f"Late payment penalty on loan {loan.loan_number}",
                )
                by_number = {inst.installment_number: inst for inst in loan.installments}
                for charge in charges:
                    by_number[charge.installment_number].penalty_due += charge.increment
                loan.outstanding_penalties += total
                self._refresh(loan, as_of)
                loan.touch(ctx.actor_id)

                txn = self._record(
                    ctx,
                    loan,
                    txn_id,
                    LoanTransactionType.PENALTY,
                    total,
                    as_of,
                    entry_id,
                    penalty=total,
                    allocation=[
                        InstallmentAllocation(c.installment_number, penalty=c.increment).to_dict()
                        for c in charges
                    ],
                )

            logger.info(
                "penalties_assessed",
                extra={
                    "transaction_id": str(txn.id),
                    "journal_entry_id": str(entry_id),
                    "amount": total,
                    "installments": len(charges),
                    "days_overdue": loan.days_overdue,
                },
            )
            return txn

    def refresh_delinquency(self, ctx: OperationContext, loan_id: UUID, as_of: date) -> Loan:
        """
        Re-derive installment statuses, days overdue, classification and the
        ACTIVE / DELINQUENT status as of ``as_of``.  Posts nothing.
        """
        with LogContext.bind(**ctx.log_fields(), loan_id=str(loan_id)):
            with self._locks.acquire(loan_key(ctx.tenant_id, loan_id)):
                loan = self._load_loan(ctx, loan_id, for_update=True)
                previous = (loan.status, loan.classification)
                self._refresh(loan, as_of)
                if (loan.status, loan.classification) != previous:
                    loan.touch(ctx.actor_id)
                self._session.flush()

            if (loan.status, loan.classification) != previous:
                logger.info(
                    "loan_delinquency_changed",
                    extra={
                        "from_status": previous[0],
                        "to_status": loan.status,
                        "from_classification": previous[1],
                        "to_classification": loan.classification,
                        "days_overdue": loan.days_overdue,
                    },
                )
            return loan

    # =========================================================================
    # Write-off
    # =========================================================================

    def write_off(self, ctx: OperationContext, loan_id: UUID, write_off_date: date, reason: str) -> LoanTransaction:
        """
        Write the loan off.

        Dr write-off expense; Cr loan portfolio for outstanding principal and
        Cr fee / penalty receivable for charges still on the books.
        Scheduled interest was never recognized, so it is forgone without a
        posting; the transaction's interest_component records it.
        """
        with LogContext.bind(**ctx.log_fields(), loan_id=str(loan_id)):
            with self._locks.acquire(loan_key(ctx.tenant_id, loan_id)):
                loan = self._load_loan(ctx, loan_id, for_update=True)
                self._require_open(loan, "write off")
                self._require_disbursed(loan, "write off")

                principal = loan.outstanding_principal
                fees = loan.outstanding_fees
                penalties = loan.outstanding_penalties
                interest = loan.outstanding_interest
                posted = principal + fees + penalties
                if posted == ZERO:
                    raise InvalidPaymentError(str(loan.id), "nothing left to write off")

                lines = [LineSpec.debit(self._account("write_off_expense"), posted, loan.currency, memo=reason)]
                for role, value in (
                    ("loan_portfolio", principal),
                    ("fee_receivable", fees),
                    ("penalty_receivable", penalties),
                ):
                    if value > ZERO:
                        lines.append(LineSpec.credit(self._account(role), value, loan.currency))

                txn_id = uuid4()
                entry_id = self._post(
                    ctx, loan, txn_id, lines, write_off_date, f"Write-off of loan {loan.loan_number}: {reason}"
                )

                loan.principal_written_off += principal
                loan.outstanding_principal = ZERO
                loan.outstanding_fees = ZERO
                loan.outstanding_penalties = ZERO
                loan.outstanding_interest = ZERO
                loan.status = LoanStatus.WRITTEN_OFF.value
                loan.closed_on = write_off_date
                loan.touch(ctx.actor_id)

                txn = self._record(
                    ctx,
                    loan,
                    txn_id,
                    LoanTransactionType.WRITE_OFF,
                    posted,
                    write_off_date,
                    entry_id,
                    principal=principal,
                    fee=fees,
                    penalty=penalties,
                    interest=interest,
                    memo=reason,
                )

            logger.info(
                "loan_written_off",
                extra={
                    "transaction_id": str(txn.id),
                    "journal_entry_id": str(entry_id),
                    "principal": principal,
                    "forgone_interest": interest,
                    "reason": reason,
                },
            )
            return txn

    # =========================================================================
    # Reversal
    # =========================================================================

    def reverse_transaction(
        self,
        ctx: OperationContext,
        transaction_id: UUID,
        reason: str,
        value_date: date | None = None,
    ) -> LoanTransaction:
        """
        Undo a loan transaction.

        The journal entry is reversed through the Ledger Engine and the
        effect on the schedule and loan balances is undone exactly, using
        the allocation stored on the original.  The original row is not
        modified.

        Raises:
            LoanTransactionNotFoundError: unknown transaction.
            AlreadyReversedError: already reversed, or itself a reversal.
            LoanTransactionNotReversibleError: undoing would break the loan
                (a fee already paid, a disbursement with later activity).
        """
        original = self._session.execute(
            select(LoanTransaction).where(
                LoanTransaction.tenant_id == ctx.tenant_id,
                LoanTransaction.id == transaction_id,
            )
        ).scalar_one_or_none()
        if original is None:
            raise LoanTransactionNotFoundError(str(transaction_id))

        with LogContext.bind(**ctx.log_fields(), loan_id=str(original.loan_id)):
            with self._locks.acquire(loan_key(ctx.tenant_id, original.loan_id)):
                if original.transaction_type == LoanTransactionType.REVERSAL.value:
                    raise AlreadyReversedError(str(original.id), "transaction is itself a reversal")
                already = self._session.execute(
                    select(LoanTransaction.id).where(
                        LoanTransaction.tenant_id == ctx.tenant_id,
                        LoanTransaction.reversal_of_id == original.id,
                    )
                ).first()
                if already is not None:
                    raise AlreadyReversedError(str(original.id))

                loan = self._load_loan(ctx, original.loan_id, for_update=True)
                as_of = value_date or original.value_date
                kind = LoanTransactionType(original.transaction_type)
                self._check_reversible(loan, original, kind)

                txn_id = uuid4()
                reversal_entry_id = self._ledger.reverse_entry(
                    ctx,
                    original.journal_entry_id,
                    reason,
                    effective_date=value_date,
                    source=(_SOURCE_TYPE, str(txn_id)),
                )
                self._undo(loan, original, kind, as_of)
                loan.touch(ctx.actor_id)

                txn = self._record(
                    ctx,
                    loan,
                    txn_id,
                    LoanTransactionType.REVERSAL,
                    original.amount,
                    as_of,
                    reversal_entry_id,
                    penalty=original.penalty_component,
                    fee=original.fee_component,
                    interest=original.interest_component,
                    principal=original.principal_component,
                    prepayment=original.prepayment_component,
                    allocation=original.allocation,
                    reversal_of_id=original.id,
                    memo=reason,
                )

            logger.info(
                "loan_transaction_reversed",
                extra={
                    "original_transaction_id": str(original.id),
                    "reversal_transaction_id": str(txn.id),
                    "reversed_type": kind.value,
                    "journal_entry_id": str(reversal_entry_id),
                    "loan_status": loan.status,
                    "reason": reason,
                },
            )
            return txn

    # =========================================================================
    # Queries
    # =========================================================================

    def payoff_quote(self, ctx: OperationContext, loan_id: UUID, as_of: date) -> PayoffQuote:
        """
        Amount that closes the loan on ``as_of``.

        Everything outstanding on the schedule, including interest on
        installments not yet due: that is what the repayment waterfall needs
        to bring every balance to zero.  ``due_now`` is the arrears part.
        Penalty not yet assessed is not included.
        """
        loan = self.get_loan(ctx, loan_id)
        self._require_open(loan, "quote a payoff for")
        return PayoffQuote(
            loan_id=loan.id,
            as_of=as_of,
            currency=loan.currency,
            penalties=loan.outstanding_penalties,
            fees=loan.outstanding_fees,
            interest=loan.outstanding_interest,
            principal=loan.outstanding_principal,
            due_now=amount_due(self._installment_states(loan), as_of),
        )

    def transactions(self, ctx: OperationContext, loan_id: UUID) -> list[LoanTransaction]:
        return list(
            self._session.execute(
                select(LoanTransaction)
                .where(LoanTransaction.tenant_id == ctx.tenant_id, LoanTransaction.loan_id == loan_id)
                .order_by(LoanTransaction.value_date, LoanTransaction.created_at)
            ).scalars()
        )

    # =========================================================================
    # Internal
    # =========================================================================

    def _account(self, role: str) -> str:
        return self._settings.account_for(role)

    def _load_loan(self, ctx: OperationContext, loan_id: UUID, for_update: bool = False) -> Loan:
        stmt = select(Loan).where(Loan.tenant_id == ctx.tenant_id, Loan.id == loan_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        loan = self._session.execute(stmt).scalar_one_or_none()
        if loan is None:
            raise LoanNotFoundError(str(loan_id))
        return loan

    @staticmethod
    def _require_open(loan: Loan, operation: str) -> None:
        if not loan.loan_status.is_open:
            raise LoanNotActiveError(str(loan.id), loan.status, operation)

    @staticmethod
    def _require_disbursed(loan: Loan, operation: str) -> None:
        if loan.disbursed_on is None:
            raise LoanNotActiveError(str(loan.id), "not disbursed", operation)

    @staticmethod
    def _check_amount(loan: Loan, amount: Decimal, currency: str | None) -> None:
        if amount <= ZERO:
            raise InvalidPaymentError(str(loan.id), f"amount must be positive, got {amount}")
        if amount != round_money(amount):
            raise InvalidPaymentError(str(loan.id), f"amount has more than 2 decimals: {amount}")
        if currency is not None and currency.upper() != loan.currency:
            raise InvalidPaymentError(
                str(loan.id), f"currency {currency.upper()} does not match loan currency {loan.currency}"
            )

    @staticmethod
    def _non_penalty_outstanding(inst: RepaymentScheduleEntry) -> Decimal:
        return (
            (inst.principal_due - inst.principal_paid)
            + (inst.interest_due - inst.interest_paid)
            + (inst.fee_due - inst.fee_paid)
        )

    @staticmethod
    def _installment_states(loan: Loan) -> list[InstallmentState]:
        return [
            InstallmentState(
                installment_number=inst.installment_number,
                due_date=inst.due_date,
                penalty=inst.penalty_due - inst.penalty_paid,
                fee=inst.fee_due - inst.fee_paid,
                interest=inst.interest_due - inst.interest_paid,
                principal=inst.principal_due - inst.principal_paid,
            )
            for inst in loan.installments
            if inst.total_outstanding > ZERO
        ]

    @staticmethod
    def _target_installment(loan: Loan, installment_number: int | None) -> RepaymentScheduleEntry:
        if installment_number is not None:
            for inst in loan.installments:
                if inst.installment_number == installment_number:
                    return inst
            raise InvalidPaymentError(str(loan.id), f"no installment #{installment_number}")
        for inst in loan.installments:
            if inst.total_outstanding > ZERO:
                return inst
        return loan.installments[-1]

    def _post(
        self,
        ctx: OperationContext,
        loan: Loan,
        txn_id: UUID,
        lines: list[LineSpec],
        effective_date: date,
        description: str,
    ) -> UUID:
        return self._ledger.post_entry(
            ctx,
            lines,
            effective_date=effective_date,
            description=description,
            book=Book(loan.book),
            source=(_SOURCE_TYPE, str(txn_id)),
        )

    def _record(
        self,
        ctx: OperationContext,
        loan: Loan,
        txn_id: UUID,
        kind: LoanTransactionType,
        amount: Decimal,
        value_date: date,
        journal_entry_id: UUID,
        penalty: Decimal = ZERO,
        fee: Decimal = ZERO,
        interest: Decimal = ZERO,
        principal: Decimal = ZERO,
        prepayment: Decimal = ZERO,
        allocation: list[dict] | None = None,
        reversal_of_id: UUID | None = None,
        memo: str | None = None,
    ) -> LoanTransaction:
        txn = LoanTransaction(
            id=txn_id,
            tenant_id=ctx.tenant_id,
            loan_id=loan.id,
            transaction_type=kind.value,
            amount=amount,
            currency=loan.currency,
            value_date=value_date,
            penalty_component=penalty,
            fee_component=fee,
            interest_component=interest,
            principal_component=principal,
            prepayment_component=prepayment,
            allocation=allocation,
            journal_entry_id=journal_entry_id,
            reversal_of_id=reversal_of_id,
            memo=memo,
            created_by=ctx.actor_id,
        )
        self._session.add(txn)
        self._session.flush()
        return txn

    def _apply_allocation(
        self,
        loan: Loan,
        lines: tuple[InstallmentAllocation, ...] | list[InstallmentAllocation],
        sign: int,
        as_of: date,
    ) -> None:
        """Add (sign=1) or remove (sign=-1) an allocation on schedule and balances."""
        by_number = {inst.installment_number: inst for inst in loan.installments}
        for line in lines:
            inst = by_number[line.installment_number]
            for component in ALLOCATION_PRIORITY:
                value = line.amount(component)
                if value == ZERO:
                    continue
                inst.add_paid(component, sign * value)
                outstanding_col, paid_col = _BALANCE_COLUMNS[component]
                setattr(loan, outstanding_col, getattr(loan, outstanding_col) - sign * value)
                setattr(loan, paid_col, getattr(loan, paid_col) + sign * value)
            if inst.total_outstanding == ZERO:
                inst.paid_on = inst.paid_on or as_of
            else:
                inst.paid_on = None

    def _refresh(self, loan: Loan, as_of: date) -> None:
        """Installment statuses, days overdue, classification, ACTIVE <-> DELINQUENT."""
        late_due_dates = []
        for inst in loan.installments:
            if inst.total_outstanding == ZERO:
                inst.status = InstallmentStatus.PAID.value
            elif inst.due_date < as_of:
                inst.status = InstallmentStatus.OVERDUE.value
                late_due_dates.append(inst.due_date)
            elif inst.total_paid > ZERO:
                inst.status = InstallmentStatus.PARTIALLY_PAID.value
            else:
                inst.status = InstallmentStatus.PENDING.value

        days = oldest_days_overdue(late_due_dates, as_of)
        loan.days_overdue = days
        loan.classification = classify(days, self._thresholds).value
        if loan.loan_status.is_open:
            delinquent = days > loan.grace_days
            loan.status = (LoanStatus.DELINQUENT if delinquent else LoanStatus.ACTIVE).value

    def _check_reversible(self, loan: Loan, original: LoanTransaction, kind: LoanTransactionType) -> None:
        txn_ref = str(original.id)
        if kind is not LoanTransactionType.WRITE_OFF and loan.loan_status is LoanStatus.WRITTEN_OFF:
            raise LoanTransactionNotReversibleError(txn_ref, "loan is written off; reverse the write-off first")

        if kind in (LoanTransactionType.FEE, LoanTransactionType.PENALTY):
            component = Component.FEE if kind is LoanTransactionType.FEE else Component.PENALTY
            by_number = {inst.installment_number: inst for inst in loan.installments}
            for line in (InstallmentAllocation.from_dict(d) for d in original.allocation or []):
                inst = by_number[line.installment_number]
                unpaid = inst.due_for(component) - inst.paid_for(component)
                if unpaid < line.amount(component):
                    raise LoanTransactionNotReversibleError(
                        txn_ref,
                        f"{component.value} on installment #{line.installment_number} has already been paid",
                    )

        if kind is LoanTransactionType.DISBURSEMENT:
            active = self._session.execute(
                select(LoanTransaction).where(
                    LoanTransaction.tenant_id == loan.tenant_id,
                    LoanTransaction.loan_id == loan.id,
                    LoanTransaction.id != original.id,
                    LoanTransaction.transaction_type != LoanTransactionType.REVERSAL.value,
                )
            ).scalars().all()
            if any(t.reversed_by is None for t in active):
                raise LoanTransactionNotReversibleError(txn_ref, "loan has later transactions")

    def _undo(self, loan: Loan, original: LoanTransaction, kind: LoanTransactionType, as_of: date) -> None:
        lines = [InstallmentAllocation.from_dict(d) for d in original.allocation or []]
        by_number = {inst.installment_number: inst for inst in loan.installments}

        if kind is LoanTransactionType.REPAYMENT:
            self._apply_allocation(loan, lines, sign=-1, as_of=as_of)
            if loan.loan_status is LoanStatus.CLOSED:
                loan.status = LoanStatus.ACTIVE.value
                loan.closed_on = None
        elif kind is LoanTransactionType.FEE:
            for line in lines:
                by_number[line.installment_number].fee_due -= line.fee
            loan.outstanding_fees -= original.fee_component
        elif kind is LoanTransactionType.PENALTY:
            for line in lines:
                by_number[line.installment_number].penalty_due -= line.penalty
            loan.outstanding_penalties -= original.penalty_component
        elif kind is LoanTransactionType.WRITE_OFF:
            loan.principal_written_off -= original.principal_component
            loan.outstanding_principal += original.principal_component
            loan.outstanding_fees += original.fee_component
            loan.outstanding_penalties += original.penalty_component
            loan.outstanding_interest += original.interest_component
            loan.status = LoanStatus.ACTIVE.value
            loan.closed_on = None
        elif kind is LoanTransactionType.DISBURSEMENT:
            loan.disbursed_on = None

        self._refresh(loan, as_of)
