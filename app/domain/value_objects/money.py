"""
Money value object for handling monetary amounts with currency.

Amounts are kept at cent precision; Stripe receives them as integer
minor units through ``to_cents``.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def round_money(value: float | Decimal | str | None) -> float:
    """Round a monetary value to cents (half up) and return it as float."""
    if value is None:
        return 0.0
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Money:
    """
    Immutable value object representing a monetary amount with currency.

    Attributes:
        amount: The monetary amount as Decimal, quantized to cents
        currency: ISO 4217 currency code (e.g., "USD", "GBP")

    Example:
        >>> price = Money(amount=Decimal("29.99"), currency="USD")
        >>> shipping = Money(amount=Decimal("9.95"), currency="USD")
        >>> (price + shipping).to_cents()
        3994
    """

    amount: Decimal
    currency: str = "USD"

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))

        object.__setattr__(self, "amount", self.amount.quantize(CENT, rounding=ROUND_HALF_UP))
        object.__setattr__(self, "currency", (self.currency or "").upper())

        if self.amount < 0:
            raise ValueError(f"Money amount cannot be negative: {self.amount}")

        if len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency}")

    def __add__(self, other: "Money") -> "Money":
        """Add two Money objects with the same currency."""
        if not isinstance(other, Money):
            raise TypeError(f"Cannot add Money with {type(other)}")

        if self.currency != other.currency:
            raise ValueError(f"Cannot add different currencies: {self.currency} and {other.currency}")

        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __mul__(self, multiplier: int | float | Decimal) -> "Money":
        """Multiply money by a scalar value (quantity or rate)."""
        if not isinstance(multiplier, (int, float, Decimal)):
            raise TypeError(f"Cannot multiply Money by {type(multiplier)}")

        return Money(amount=self.amount * Decimal(str(multiplier)), currency=self.currency)

    def __str__(self) -> str:
        return f"{self.currency} {self.amount:.2f}"

    def __repr__(self) -> str:
        return f"Money(amount=Decimal('{self.amount}'), currency='{self.currency}')"

    @property
    def is_zero(self) -> bool:
        return self.amount == Decimal("0")

    def to_float(self) -> float:
        return float(self.amount)

    def to_cents(self) -> int:
        """Integer minor units, as Stripe expects them."""
        return int((self.amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @classmethod
    def zero(cls, currency: str = "USD") -> "Money":
        return cls(amount=Decimal("0"), currency=currency)

    @classmethod
    def from_float(cls, amount: float, currency: str = "USD") -> "Money":
        """Create Money from float value (use with caution due to float precision)."""
        return cls(amount=Decimal(str(amount)), currency=currency)

    @classmethod
    def from_cents(cls, cents: int, currency: str = "USD") -> "Money":
        return cls(amount=Decimal(cents) / 100, currency=currency)
