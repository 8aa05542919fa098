"""Tests for the pricing calculator: totals, promotions, shipping and tax."""

from datetime import UTC, datetime
from fractions import Fraction

import pytest
from protean.exceptions import ValidationError

from storefront.cart.cart import CartLine
from storefront.config import DEFAULT_PROMOTIONS, DEFAULT_SHIPPING_RATES
from storefront.pricing.calculator import PricingCalculator, ShippingRates
from storefront.promotion.resolver import PromotionResolver, StaticPromotionCatalog

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


def _line(unit_price, quantity=1, product_ref="prod-001"):
    return CartLine(
        product_ref=product_ref,
        sku=f"SKU-{product_ref}",
        title="Widget",
        unit_price=unit_price,
        currency="VND",
        quantity=quantity,
    )


@pytest.fixture()
def calculator():
    return PricingCalculator(
        resolver=PromotionResolver(StaticPromotionCatalog(DEFAULT_PROMOTIONS)),
        shipping_rates=ShippingRates(DEFAULT_SHIPPING_RATES, "VND"),
        vat_rate=Fraction(1, 10),
        currency="VND",
    )


class TestWithoutPromotion:
    def test_grand_total_formula(self, calculator):
        result = calculator.price([_line(333_333)], None, "standard", NOW)
        assert result.subtotal == 333_333
        assert result.discount_total == 0
        assert result.tax_total == 33_333
        assert result.shipping_fee == 30_000
        assert result.grand_total == 333_333 + 33_333 + 30_000

    def test_subtotal_sums_every_line(self, calculator):
        result = calculator.price([_line(500_000, 2), _line(250_000, 1, "prod-002")], None, "express", NOW)
        assert result.subtotal == 1_250_000
        assert result.shipping_fee == 50_000

    def test_tax_rounds_half_up(self, calculator):
        result = calculator.price([_line(5)], None, "pickup", NOW)
        assert result.tax_total == 1
        assert result.grand_total == 6

    def test_blank_code_is_ignored(self, calculator):
        result = calculator.price([_line(100_000)], "   ", "standard", NOW)
        assert result.promotion_warning is None
        assert result.applied_promotion_code is None


class TestScenarios:
    def test_percent_code(self, calculator):
        result = calculator.price([_line(500_000, 2)], "GIAM10", "standard", NOW)
        assert result.subtotal == 1_000_000
        assert result.discount_total == 100_000
        assert result.tax_total == 90_000
        assert result.shipping_fee == 30_000
        assert result.grand_total == 1_020_000
        assert result.applied_promotion_code == "GIAM10"

    def test_free_shipping_code(self, calculator):
        result = calculator.price([_line(200_000)], "FREESHIP", "standard", NOW)
        assert result.discount_total == 0
        assert result.tax_total == 20_000
        assert result.shipping_fee == 0
        assert result.grand_total == 220_000

    def test_unknown_code_is_a_warning(self, calculator):
        result = calculator.price([_line(500_000, 2)], "XXXX", "standard", NOW)
        assert result.discount_total == 0
        assert result.grand_total == 1_000_000 + 100_000 + 30_000
        assert result.applied_promotion_code is None
        assert "XXXX" in result.promotion_warning

    def test_overlong_code_is_a_warning(self, calculator):
        result = calculator.price([_line(500_000, 2)], "X" * 300, "standard", NOW)
        assert result.discount_total == 0
        assert result.applied_promotion_code is None
        assert result.promotion_warning.endswith("unknown promotion code")
        assert len(result.promotion_warning) <= 255

    def test_fixed_amount_larger_than_subtotal(self, calculator):
        result = calculator.price([_line(30_000)], "GIAM50K", "standard", NOW)
        assert result.discount_total == 30_000
        assert result.tax_total == 0
        assert result.grand_total == 30_000


class TestDeterminism:
    def test_identical_inputs_give_identical_results(self, calculator):
        lines = [_line(123_457, 3), _line(99_999, 2, "prod-002")]
        first = calculator.price(lines, "GIAM10", "express", NOW)
        second = calculator.price(lines, "GIAM10", "express", NOW)
        assert first == second
        assert first.to_dict() == second.to_dict()


class TestRejectedInput:
    def test_empty_lines(self, calculator):
        with pytest.raises(ValidationError):
            calculator.price([], None, "standard", NOW)

    def test_unknown_shipping_method(self, calculator):
        with pytest.raises(ValidationError) as exc:
            calculator.price([_line(100)], None, "teleport", NOW)
        assert "shipping_method" in exc.value.messages
