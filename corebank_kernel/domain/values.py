"""
Values -- Immutable, self-validating monetary value objects.

Responsibility:
    Provides ``Money`` (a Decimal amount paired with an ISO 4217 code) and the
    single sanctioned rounding helper, ``round_money``. These replace loose
    (amount, currency) pairs wherever financial data crosses a boundary.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other domain module and by the engines.

Invariants enforced:
    - Amounts are always Decimal, never float.
    - Currency codes are three upper-case letters.
    - Rounding is ROUND_HALF_UP to the currency's minor units (2 unless listed
      in ``ZERO_DECIMAL_CURRENCIES``).

Failure modes:
    - ValueError on construction with invalid amounts or currency codes.
    - TypeError when a float is passed as an amount.
    - ValueError when arithmetic mixes different currencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "UGX", "RWF", "XAF", "XOF", "VND", "CLP"})

CENT = Decimal("0.01")
ZERO = Decimal("0")


def decimal_places_for(currency: str) -> int:
    """Minor-unit precision for a currency code."""
    return 0 if currency in ZERO_DECIMAL_CURRENCIES else 2


def round_money(amount: Decimal, places: int = 2) -> Decimal:
    """
    Round an amount half-up to ``places`` decimals.

    This is the ONLY sanctioned rounding function for monetary values.
    """
    quantum = Decimal(1).scaleb(-places)
    return amount.quantize(quantum, rounding=ROUND_HALF_UP)


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Convert a str/int/Decimal to Decimal. Floats are rejected."""
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be floats")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with its currency code -- they are NEVER
        separated.

    Guarantees:
        - Immutable and hashable.
        - amount is always a Decimal (never float).
        - Arithmetic and comparison refuse to mix currencies.

    Non-goals:
        - Does NOT convert currencies.
        - Does NOT auto-round -- callers call ``.round()`` explicitly.
    """

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        code = (self.currency or "").upper().strip()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"Invalid ISO 4217 currency code: {self.currency!r}")
        object.__setattr__(self, "currency", code)

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str) -> Money:
        """Factory accepting str/int/Decimal amounts."""
        return cls(amount=to_decimal(amount), currency=currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(amount=ZERO, currency=currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == ZERO

    @property
    def is_positive(self) -> bool:
        return self.amount > ZERO

    @property
    def is_negative(self) -> bool:
        return self.amount < ZERO

    def round(self) -> Money:
        """Round half-up to the currency's minor units."""
        return Money(round_money(self.amount, decimal_places_for(self.currency)), self.currency)

    def _check(self, other: Money, op: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {op} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.amount, self.currency)

    def __abs__(self) -> Money:
        return Money(abs(self.amount), self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check(other, "compare")
        return self.amount <= other.amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"
