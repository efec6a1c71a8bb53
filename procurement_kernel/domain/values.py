"""
Value objects for money, quantities and exchange rates.

All three are frozen, hashable and Decimal-only.  Money never mixes
currencies silently and never auto-rounds; callers round explicitly with
``Money.round()`` (currency precision) or ``round_money`` (fixed places).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from procurement_kernel.db.types import currency_decimal_places, validate_currency


def _coerce(value: Decimal | int | str, label: str) -> Decimal:
    if isinstance(value, float):
        raise TypeError(f"{label} must not be float: {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid {label}: {value}") from e


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with an ISO 4217 currency code.  Arithmetic
        and comparison between different currencies raise ValueError.

    Non-goals:
        - Does NOT convert currencies (use ExchangeRate.convert)
        - Does NOT auto-round
    """

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _coerce(self.amount, "amount"))
        object.__setattr__(self, "currency", validate_currency(self.currency))

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str) -> Money:
        return cls(amount=_coerce(amount, "amount"), currency=currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(amount=Decimal("0"), currency=currency)

    @property
    def decimal_places(self) -> int:
        return currency_decimal_places(self.currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == Decimal("0")

    @property
    def is_positive(self) -> bool:
        return self.amount > Decimal("0")

    @property
    def is_negative(self) -> bool:
        return self.amount < Decimal("0")

    def round(self, rounding: str = ROUND_HALF_UP) -> Money:
        """Round to the currency's ISO 4217 decimal places."""
        places = self.decimal_places
        quantum = Decimal("1") if places == 0 else Decimal("0." + "0" * places)
        return Money(amount=self.amount.quantize(quantum, rounding=rounding), currency=self.currency)

    def _check_currency(self, other: Money, verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {verb} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "add")
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "subtract")
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount, currency=self.currency)

    def __mul__(self, factor: Decimal | int | str) -> Money:
        if isinstance(factor, (int, str)):
            factor = Decimal(str(factor))
        if not isinstance(factor, Decimal):
            return NotImplemented
        return Money(amount=self.amount * factor, currency=self.currency)

    def __rmul__(self, factor: Decimal | int | str) -> Money:
        return self.__mul__(factor)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


@dataclass(frozen=True, slots=True)
class Quantity:
    """
    Material quantity with unit of measure.

    Non-goals:
        - Does NOT convert units
    """

    value: Decimal
    unit: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", _coerce(self.value, "quantity"))
        if not self.unit or not self.unit.strip():
            raise ValueError("Quantity unit is required")
        object.__setattr__(self, "unit", self.unit.strip())

    @classmethod
    def of(cls, value: Decimal | str | int, unit: str) -> Quantity:
        return cls(value=_coerce(value, "quantity"), unit=unit)

    @property
    def is_positive(self) -> bool:
        return self.value > Decimal("0")

    def __add__(self, other: Quantity) -> Quantity:
        if not isinstance(other, Quantity):
            return NotImplemented
        if self.unit != other.unit:
            raise ValueError(
                f"Cannot add Quantity with different units: {self.unit} and {other.unit}"
            )
        return Quantity(value=self.value + other.value, unit=self.unit)

    def __sub__(self, other: Quantity) -> Quantity:
        if not isinstance(other, Quantity):
            return NotImplemented
        if self.unit != other.unit:
            raise ValueError(
                f"Cannot subtract Quantity with different units: {self.unit} and {other.unit}"
            )
        return Quantity(value=self.value - other.value, unit=self.unit)

    def __str__(self) -> str:
        return f"{self.value} {self.unit}"


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    """
    1 unit of ``from_currency`` = ``rate`` units of ``to_currency``.

    Rate must be positive; parity is never assumed by this object.
    """

    from_currency: str
    to_currency: str
    rate: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "from_currency", validate_currency(self.from_currency))
        object.__setattr__(self, "to_currency", validate_currency(self.to_currency))
        rate = _coerce(self.rate, "exchange rate")
        if rate <= Decimal("0"):
            raise ValueError(f"Exchange rate must be positive: {rate}")
        object.__setattr__(self, "rate", rate)

    @classmethod
    def identity(cls, currency: str) -> ExchangeRate:
        return cls(from_currency=currency, to_currency=currency, rate=Decimal("1"))

    def convert(self, money: Money) -> Money:
        """Convert money in ``from_currency`` to ``to_currency`` (unrounded)."""
        if money.currency != self.from_currency:
            raise ValueError(
                f"Money currency {money.currency} does not match rate source "
                f"{self.from_currency}"
            )
        return Money(amount=money.amount * self.rate, currency=self.to_currency)
