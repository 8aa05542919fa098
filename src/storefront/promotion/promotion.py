"""Promotion aggregate: a discount rule addressed by a case-insensitive code.

A promotion is immutable once issued: checkout only reads it. Validity is a
predicate over the active flag, an optional time window and an optional
minimum order subtotal.
"""

from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String

from storefront.domain import storefront


class PromotionKind(Enum):
    PERCENT = "Percent"
    FIXED_AMOUNT = "FixedAmount"
    FREE_SHIPPING = "FreeShipping"


CODE_MAX_LENGTH = 50


def normalize_code(code):
    return (code or "").strip().upper()


@storefront.aggregate
class Promotion:
    code = String(required=True, max_length=CODE_MAX_LENGTH, unique=True)
    kind = String(required=True, choices=PromotionKind)
    value = Integer(default=0, min_value=0)
    min_subtotal = Integer(default=0, min_value=0)
    starts_at = DateTime()
    ends_at = DateTime()
    active = Boolean(default=True)
    issued_at = DateTime()

    @invariant.post
    def percent_must_be_within_zero_and_hundred(self):
        if self.kind == PromotionKind.PERCENT.value and not 0 <= (self.value or 0) <= 100:
            raise ValidationError({"value": ["Percent promotions must be between 0 and 100"]})

    @invariant.post
    def window_must_be_ordered(self):
        if self.starts_at and self.ends_at and self.ends_at <= self.starts_at:
            raise ValidationError({"ends_at": ["Promotion must end after it starts"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def issue(cls, code, kind, value=0, min_subtotal=0, starts_at=None, ends_at=None):
        normalized = normalize_code(code)
        if not normalized:
            raise ValidationError({"code": ["Promotion code is required"]})
        kind = kind.value if isinstance(kind, PromotionKind) else kind
        return cls(
            code=normalized,
            kind=kind,
            value=value,
            min_subtotal=min_subtotal,
            starts_at=starts_at,
            ends_at=ends_at,
            active=True,
            issued_at=datetime.now(UTC),
        )

    # -------------------------------------------------------------------
    # Validity predicate
    # -------------------------------------------------------------------
    def rejection_reason(self, subtotal_amount, as_of):
        """Why this promotion cannot apply, or None when it can."""
        if not self.active:
            return "promotion is no longer active"
        if self.starts_at and as_of < _aware(self.starts_at):
            return "promotion has not started yet"
        if self.ends_at and as_of >= _aware(self.ends_at):
            return "promotion has expired"
        if subtotal_amount < (self.min_subtotal or 0):
            return f"order subtotal must be at least {self.min_subtotal:,}"
        return None


def _aware(moment):
    """Stored datetimes may come back naive; they are always UTC."""
    return moment if moment.tzinfo else moment.replace(tzinfo=UTC)
