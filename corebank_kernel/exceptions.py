"""
Typed exception hierarchy for the core banking kernel.

Every error has a typed class (catch by type, not message), a ``code`` class
attribute (machine-readable, API-safe) and structured attributes carrying the
data a caller needs to react.

    CoreBankError (base)
    |
    +-- PostingError
    |   +-- ImbalancedEntryError
    |   +-- InvalidLineError
    |   +-- NonLeafAccountError
    |   +-- CrossBookPostingError
    |   +-- PostingCancelledError
    |
    +-- AccountError
    |   +-- AccountNotFoundError
    |   +-- InactiveAccountError
    |   +-- DuplicateAccountError
    |   +-- InvalidAccountHierarchyError
    |
    +-- JournalError
    |   +-- EntryNotFoundError
    |   +-- InvalidStatusTransitionError
    |
    +-- ReversalError
    |   +-- EntryNotPostedError
    |   +-- AlreadyReversedError
    |   +-- SourceOwnedEntryError
    |
    +-- PeriodError
    |   +-- PeriodNotFoundError
    |   +-- PeriodClosedError
    |   +-- PeriodOverlapError
    |   +-- InvalidPeriodTransitionError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- LoanError
    |   +-- LoanNotFoundError
    |   +-- LoanNotActiveError
    |   +-- OverpaymentError
    |   +-- ScheduleGenerationError
    |   +-- LoanTransactionNotFoundError
    |   +-- DuplicateLoanError
    |   +-- InvalidPaymentError
    |   +-- LoanTransactionNotReversibleError
    |
    +-- ReconciliationError
        +-- StatementNotFoundError
        +-- StatementLineNotFoundError
        +-- UnreconciledVarianceError   (advisory -- reported, never raised)

Handling patterns:

    try:
        ledger.post_entry(ctx, lines, effective_date=today)
    except ImbalancedEntryError as e:
        return {"error": e.code, "debits": e.debits, "credits": e.credits}
    except ConcurrencyError:
        # already retried up to the configured limit
        raise

Categories let middleware treat groups uniformly: validation errors
(PostingError, AccountError, ScheduleGenerationError) are user-facing,
ConcurrencyError means "try again later", ImmutabilityError is a security
signal.
"""


class CoreBankError(Exception):
    """
    Base exception for all core banking errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "COREBANK_ERROR"


# Posting-related exceptions


class PostingError(CoreBankError):
    """Base exception for posting-related errors."""

    code: str = "POSTING_ERROR"


class ImbalancedEntryError(PostingError):
    """Journal entry debits do not equal credits."""

    code: str = "IMBALANCED_ENTRY"

    def __init__(self, debits: str, credits: str, currency: str):
        self.debits = debits
        self.credits = credits
        self.currency = currency
        super().__init__(
            f"Imbalanced entry in {currency}: debits={debits}, credits={credits}"
        )


class InvalidLineError(PostingError):
    """A journal line (or the set of lines) is structurally invalid."""

    code: str = "INVALID_LINE"

    def __init__(self, reason: str, line_index: int | None = None):
        self.reason = reason
        self.line_index = line_index
        where = f" (line {line_index})" if line_index is not None else ""
        super().__init__(f"Invalid journal line{where}: {reason}")


class NonLeafAccountError(PostingError):
    """Only leaf accounts may receive postings."""

    code: str = "NON_LEAF_ACCOUNT"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(
            f"Account {account_code} has child accounts and cannot receive postings"
        )


class CrossBookPostingError(PostingError):
    """A line references an account belonging to a different book."""

    code: str = "CROSS_BOOK_POSTING"

    def __init__(self, account_code: str, account_book: str, entry_book: str):
        self.account_code = account_code
        self.account_book = account_book
        self.entry_book = entry_book
        super().__init__(
            f"Account {account_code} belongs to book '{account_book}', "
            f"entry is in book '{entry_book}'"
        )


class PostingCancelledError(PostingError):
    """The posting was cancelled before it was flushed."""

    code: str = "POSTING_CANCELLED"

    def __init__(self, reason: str | None = None):
        self.reason = reason
        super().__init__(f"Posting cancelled before commit: {reason or 'no reason given'}")


# Account-related exceptions


class AccountError(CoreBankError):
    """Base exception for account-related errors."""

    code: str = "ACCOUNT_ERROR"


class AccountNotFoundError(AccountError):
    """Account with the given code/ID was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_ref: str):
        self.account_ref = account_ref
        super().__init__(f"Account not found: {account_ref}")


class InactiveAccountError(AccountError):
    """Account is deactivated and cannot receive postings."""

    code: str = "INACTIVE_ACCOUNT"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account {account_code} is inactive")


class DuplicateAccountError(AccountError):
    """Account code already exists in the tenant's book."""

    code: str = "DUPLICATE_ACCOUNT"

    def __init__(self, account_code: str, book: str):
        self.account_code = account_code
        self.book = book
        super().__init__(f"Account {account_code} already exists in book '{book}'")


class InvalidAccountHierarchyError(AccountError):
    """Parent account is missing, in another book, or would create a cycle."""

    code: str = "INVALID_ACCOUNT_HIERARCHY"

    def __init__(self, account_code: str, reason: str):
        self.account_code = account_code
        self.reason = reason
        super().__init__(f"Invalid hierarchy for account {account_code}: {reason}")


# Journal workflow exceptions


class JournalError(CoreBankError):
    """Base exception for journal workflow errors."""

    code: str = "JOURNAL_ERROR"


class EntryNotFoundError(JournalError):
    """Journal entry with given ID was not found."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class InvalidStatusTransitionError(JournalError):
    """Requested journal entry status transition is not allowed."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, entry_id: str, from_status: str, to_status: str):
        self.entry_id = entry_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot move journal entry {entry_id} from {from_status} to {to_status}"
        )


# Reversal-related exceptions


class ReversalError(CoreBankError):
    """Base exception for reversal-related errors."""

    code: str = "REVERSAL_ERROR"


class EntryNotPostedError(ReversalError):
    """Cannot reverse an entry that is not posted."""

    code: str = "ENTRY_NOT_POSTED"

    def __init__(self, entry_id: str, status: str):
        self.entry_id = entry_id
        self.status = status
        super().__init__(
            f"Cannot reverse entry {entry_id}: status is {status}, not posted"
        )


class AlreadyReversedError(ReversalError):
    """Entry has already been reversed, or is itself a reversal."""

    code: str = "ALREADY_REVERSED"

    def __init__(self, entry_id: str, reason: str = "already reversed"):
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(f"Entry {entry_id} cannot be reversed: {reason}")


class SourceOwnedEntryError(ReversalError):
    """Entry belongs to a sub-ledger and must be reversed through it."""

    code: str = "SOURCE_OWNED_ENTRY"

    def __init__(self, entry_id: str, source_type: str):
        self.entry_id = entry_id
        self.source_type = source_type
        super().__init__(
            f"Entry {entry_id} was posted by {source_type}; reverse it through that source"
        )


# Fiscal-period exceptions


class PeriodError(CoreBankError):
    """Base exception for fiscal-period errors."""

    code: str = "PERIOD_ERROR"


class PeriodNotFoundError(PeriodError):
    """No fiscal period with that code exists for the tenant."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_code: str):
        self.period_code = period_code
        super().__init__(f"Fiscal period not found: {period_code}")


class PeriodClosedError(PeriodError):
    """The effective date falls in a closed or locked period."""

    code: str = "PERIOD_CLOSED"

    def __init__(self, period_code: str, effective_date: str):
        self.period_code = period_code
        self.effective_date = effective_date
        super().__init__(
            f"Cannot post on {effective_date}: fiscal period {period_code} is closed"
        )


class PeriodOverlapError(PeriodError):
    """A new period intersects an existing one."""

    code: str = "PERIOD_OVERLAP"

    def __init__(self, period_code: str, existing_period_code: str):
        self.period_code = period_code
        self.existing_period_code = existing_period_code
        super().__init__(
            f"Fiscal period {period_code} overlaps existing period {existing_period_code}"
        )


class InvalidPeriodTransitionError(PeriodError):
    """Requested lifecycle change is not allowed from the current status."""

    code: str = "INVALID_PERIOD_TRANSITION"

    def __init__(self, period_code: str, status: str, action: str):
        self.period_code = period_code
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} fiscal period {period_code}: status is {status}")


# Concurrency-related exceptions


class ConcurrencyError(CoreBankError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """Lock could not be acquired (or a DB conflict persisted) after all retries."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, resource: str, attempts: int):
        self.resource = resource
        self.attempts = attempts
        super().__init__(
            f"Could not obtain exclusive access to {resource} after {attempts} attempt(s)"
        )


# Immutability-related exceptions


class ImmutabilityError(CoreBankError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Loan-related exceptions


class LoanError(CoreBankError):
    """Base exception for loan accounting errors."""

    code: str = "LOAN_ERROR"


class LoanNotFoundError(LoanError):
    """Loan with given ID was not found for the tenant."""

    code: str = "LOAN_NOT_FOUND"

    def __init__(self, loan_id: str):
        self.loan_id = loan_id
        super().__init__(f"Loan not found: {loan_id}")


class LoanNotActiveError(LoanError):
    """Operation requires an open (active or delinquent) loan."""

    code: str = "LOAN_NOT_ACTIVE"

    def __init__(self, loan_id: str, status: str, operation: str):
        self.loan_id = loan_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} loan {loan_id}: status is {status}"
        )


class OverpaymentError(LoanError):
    """Payment exceeds what the loan (or the prepayment policy) allows."""

    code: str = "OVERPAYMENT"

    def __init__(self, loan_id: str, amount: str, allowed: str):
        self.loan_id = loan_id
        self.amount = amount
        self.allowed = allowed
        super().__init__(
            f"Payment of {amount} on loan {loan_id} exceeds allowed amount {allowed}"
        )


class ScheduleGenerationError(LoanError):
    """Amortization schedule parameters are invalid."""

    code: str = "SCHEDULE_GENERATION_ERROR"

    def __init__(self, parameter: str, value: str, reason: str):
        self.parameter = parameter
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {parameter}={value}: {reason}")


class LoanTransactionNotFoundError(LoanError):
    """Loan transaction with given ID was not found for the tenant."""

    code: str = "LOAN_TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Loan transaction not found: {transaction_id}")


class DuplicateLoanError(LoanError):
    """Loan number already exists for the tenant."""

    code: str = "DUPLICATE_LOAN"

    def __init__(self, loan_number: str):
        self.loan_number = loan_number
        super().__init__(f"Loan {loan_number} already exists")


class InvalidPaymentError(LoanError):
    """Payment, fee or disbursement request is malformed (amount, currency)."""

    code: str = "INVALID_PAYMENT"

    def __init__(self, loan_id: str, reason: str):
        self.loan_id = loan_id
        self.reason = reason
        super().__init__(f"Invalid request on loan {loan_id}: {reason}")


class LoanTransactionNotReversibleError(LoanError):
    """Undoing the transaction would leave the loan inconsistent."""

    code: str = "LOAN_TRANSACTION_NOT_REVERSIBLE"

    def __init__(self, transaction_id: str, reason: str):
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(f"Loan transaction {transaction_id} cannot be reversed: {reason}")


# Reconciliation-related exceptions


class ReconciliationError(CoreBankError):
    """Base exception for bank reconciliation errors."""

    code: str = "RECONCILIATION_ERROR"


class StatementNotFoundError(ReconciliationError):
    """Bank statement with given ID was not found for the tenant."""

    code: str = "STATEMENT_NOT_FOUND"

    def __init__(self, statement_id: str):
        self.statement_id = statement_id
        super().__init__(f"Bank statement not found: {statement_id}")


class StatementLineNotFoundError(ReconciliationError):
    """Bank statement line with given ID was not found for the tenant."""

    code: str = "STATEMENT_LINE_NOT_FOUND"

    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__(f"Bank statement line not found: {line_id}")


class UnreconciledVarianceError(ReconciliationError):
    """
    Statement and books disagree after matching.

    Advisory only: attached to a ReconciliationReport for manual review and
    never raised by the reconciliation service.
    """

    code: str = "UNRECONCILED_VARIANCE"

    def __init__(self, statement_id: str, variance: str):
        self.statement_id = statement_id
        self.variance = variance
        super().__init__(
            f"Statement {statement_id} does not reconcile: variance {variance}"
        )
