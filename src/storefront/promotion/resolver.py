"""Promotion resolution: code lookup, validity checks and discount rules.

The resolver is handed the catalog it reads from; nothing here holds a
process-wide promotion table.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from fractions import Fraction

from protean.utils.globals import current_domain

from storefront.exceptions import PromotionInvalid
from storefront.promotion.promotion import CODE_MAX_LENGTH, Promotion, PromotionKind, normalize_code
from storefront.shared.money import Money


class PromotionCatalog(ABC):
    @abstractmethod
    def find(self, code: str) -> Promotion | None:
        """Look up a promotion by its normalized code."""
        ...


class StaticPromotionCatalog(PromotionCatalog):
    """Promotions defined in configuration."""

    def __init__(self, promotions=()) -> None:
        self._promotions = {}
        for promotion in promotions:
            if isinstance(promotion, dict):
                promotion = Promotion.issue(**promotion)
            self._promotions[promotion.code] = promotion

    def find(self, code):
        return self._promotions.get(normalize_code(code))


class RepositoryPromotionCatalog(PromotionCatalog):
    """Promotions issued and stored through the Promotion repository."""

    def find(self, code):
        normalized = normalize_code(code)
        if not normalized:
            return None
        results = current_domain.repository_for(Promotion)._dao.query.filter(code=normalized).all().items
        return results[0] if results else None


@dataclass(frozen=True)
class PromotionEffect:
    discount: Money
    shipping_override: Money | None = None


class PromotionResolver:
    def __init__(self, catalog: PromotionCatalog) -> None:
        self.catalog = catalog

    def resolve(self, code, subtotal: Money, as_of=None) -> Promotion:
        """Return the applicable promotion or raise PromotionInvalid."""
        as_of = as_of or datetime.now(UTC)
        normalized = normalize_code(code)
        if len(normalized) > CODE_MAX_LENGTH:
            raise PromotionInvalid(normalized[:CODE_MAX_LENGTH] + "...", "unknown promotion code")

        promotion = self.catalog.find(code)
        if promotion is None:
            raise PromotionInvalid(normalized or code, "unknown promotion code")

        reason = promotion.rejection_reason(subtotal.amount, as_of)
        if reason:
            raise PromotionInvalid(promotion.code, reason)
        return promotion

    @staticmethod
    def apply(promotion: Promotion, subtotal: Money, shipping_fee: Money) -> PromotionEffect:
        kind = PromotionKind(promotion.kind)

        if kind == PromotionKind.PERCENT:
            discount = subtotal.multiply(Fraction(promotion.value, 100))
            return PromotionEffect(discount=discount.min(subtotal).clamp_at_zero())

        if kind == PromotionKind.FIXED_AMOUNT:
            amount = Money(amount=promotion.value, currency=subtotal.currency)
            return PromotionEffect(discount=amount.min(subtotal).clamp_at_zero())

        # Free shipping
        return PromotionEffect(
            discount=Money.zero(subtotal.currency),
            shipping_override=Money.zero(shipping_fee.currency),
        )
