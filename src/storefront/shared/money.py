"""Money value object: integer minor units with currency-safe arithmetic.

Amounts are whole minor units (1 VND has no subdivision), so sums are exact.
Multiplication by a rational rounds half-up to the nearest minor unit, once,
at the point the derived amount is produced.
"""

import math
from fractions import Fraction

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Integer, String

from storefront.domain import storefront
from storefront.exceptions import CurrencyMismatch


def round_half_up(value: Fraction) -> int:
    """Round to the nearest integer, halves away from zero."""
    if value >= 0:
        return math.floor(value + Fraction(1, 2))
    return -math.floor(-value + Fraction(1, 2))


@storefront.value_object
class Money:
    """An amount of a single currency, in minor units."""

    amount = Integer(required=True)
    currency = String(required=True, max_length=3)

    @invariant.post
    def currency_must_be_a_three_letter_code(self):
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise ValidationError({"currency": [f"Invalid currency code: {self.currency}"]})

    @classmethod
    def zero(cls, currency):
        return cls(amount=0, currency=currency)

    def _check_currency(self, other):
        if self.currency != other.currency:
            raise CurrencyMismatch(self.currency, other.currency)

    def add(self, other):
        self._check_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def subtract(self, other):
        self._check_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def multiply(self, factor):
        """Multiply by an int, Fraction or Decimal; the result is rounded once."""
        exact = Fraction(self.amount) * Fraction(factor)
        return Money(amount=round_half_up(exact), currency=self.currency)

    def min(self, other):
        self._check_currency(other)
        return self if self.amount <= other.amount else other

    def clamp_at_zero(self):
        return self if self.amount >= 0 else Money.zero(self.currency)

    def is_zero(self):
        return self.amount == 0

    def __str__(self):
        return f"{self.amount:,} {self.currency}"
