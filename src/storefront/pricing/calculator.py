"""Pricing calculator: cart lines + promotion + shipping → itemized totals.

The same computation is shown to the shopper before checkout and frozen into
the order, so it is a pure function of its inputs:

    1. subtotal     = Σ unit_price × quantity
    2. discount     = promotion rule (invalid code → 0, reported as a warning)
    3. taxable      = max(0, subtotal - discount)
    4. tax          = taxable × VAT rate, rounded once
    5. shipping fee = rate table lookup, 0 under a free-shipping promotion
    6. grand total  = taxable + tax + shipping fee
"""

from fractions import Fraction

from protean.exceptions import ValidationError
from protean.fields import Integer, String

from storefront.domain import storefront
from storefront.exceptions import PromotionInvalid
from storefront.promotion.resolver import PromotionResolver
from storefront.shared.money import Money


@storefront.value_object(part_of="Order")
class PricingResult:
    """Financial summary of a cart or order, in minor units.

    Never partially updated: a new result replaces the old one wholesale.
    """

    subtotal = Integer(required=True)
    discount_total = Integer(default=0)
    tax_total = Integer(default=0)
    shipping_fee = Integer(default=0)
    grand_total = Integer(required=True)
    currency = String(required=True, max_length=3)
    shipping_method = String(max_length=120)
    applied_promotion_code = String(max_length=50)
    promotion_warning = String(max_length=255)

    def to_dict(self):
        return {
            "subtotal": self.subtotal,
            "discount_total": self.discount_total,
            "tax_total": self.tax_total,
            "shipping_fee": self.shipping_fee,
            "grand_total": self.grand_total,
            "currency": self.currency,
            "shipping_method": self.shipping_method,
            "applied_promotion_code": self.applied_promotion_code,
            "promotion_warning": self.promotion_warning,
        }


class ShippingRates:
    """Flat fee per shipping method."""

    def __init__(self, rates: dict, currency: str) -> None:
        self._rates = dict(rates)
        self.currency = currency

    def methods(self):
        return sorted(self._rates)

    def fee_for(self, method) -> Money:
        if method not in self._rates:
            raise ValidationError(
                {"shipping_method": [f"Unknown shipping method {method!r}; expected one of {', '.join(self.methods())}"]}
            )
        return Money(amount=self._rates[method], currency=self.currency)


class PricingCalculator:
    def __init__(self, resolver: PromotionResolver, shipping_rates: ShippingRates, vat_rate, currency) -> None:
        self.resolver = resolver
        self.shipping_rates = shipping_rates
        self.vat_rate = Fraction(vat_rate)
        self.currency = currency

    def subtotal(self, lines) -> Money:
        subtotal = Money.zero(self.currency)
        for line in lines:
            unit_price = Money(amount=line.unit_price, currency=line.currency)
            subtotal = subtotal.add(unit_price.multiply(line.quantity))
        return subtotal

    def price(self, lines, promotion_code=None, shipping_method=None, as_of=None) -> PricingResult:
        lines = list(lines)
        if not lines:
            raise ValidationError({"lines": ["Cannot price an empty set of lines"]})

        subtotal = self.subtotal(lines)
        shipping_fee = self.shipping_rates.fee_for(shipping_method)

        discount = Money.zero(self.currency)
        applied_code = None
        warning = None
        if promotion_code and promotion_code.strip():
            try:
                promotion = self.resolver.resolve(promotion_code, subtotal, as_of)
            except PromotionInvalid as exc:
                warning = f"{exc.code}: {exc.reason}"
            else:
                effect = self.resolver.apply(promotion, subtotal, shipping_fee)
                discount = effect.discount
                if effect.shipping_override is not None:
                    shipping_fee = effect.shipping_override
                applied_code = promotion.code

        taxable = subtotal.subtract(discount).clamp_at_zero()
        tax = taxable.multiply(self.vat_rate)
        grand_total = taxable.add(tax).add(shipping_fee)

        return PricingResult(
            subtotal=subtotal.amount,
            discount_total=discount.amount,
            tax_total=tax.amount,
            shipping_fee=shipping_fee.amount,
            grand_total=grand_total.amount,
            currency=self.currency,
            shipping_method=shipping_method,
            applied_promotion_code=applied_code,
            promotion_warning=warning,
        )
