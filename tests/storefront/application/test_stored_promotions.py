from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain

from storefront.cart.owner import Owner
from storefront.checkout.factory import quote
from storefront.config import StorefrontSettings
from storefront.engine import build_storefront
from storefront.promotion.promotion import Promotion
from storefront.promotion.resolver import RepositoryPromotionCatalog, StaticPromotionCatalog

NOW = datetime(2025, 6, 1, 9, 30, tzinfo=UTC)
ACCOUNT = Owner.account("acct-001")


@pytest.fixture()
def settings():
    return StorefrontSettings(promotion_catalog="repository")


def _issue(code, kind, value=0, **kwargs):
    promotion = Promotion.issue(code=code, kind=kind, value=value, **kwargs)
    current_domain.repository_for(Promotion).add(promotion)
    return promotion


def test_setting_selects_the_catalog(catalogue):
    assert isinstance(build_storefront(StorefrontSettings(), catalogue).promotions, StaticPromotionCatalog)
    stored = build_storefront(StorefrontSettings(promotion_catalog="repository"), catalogue)
    assert isinstance(stored.promotions, RepositoryPromotionCatalog)


def test_finds_stored_promotion_by_normalized_code(engine):
    _issue("Tet2025", "Percent", 20)

    found = engine.promotions.find("  tet2025 ")

    assert found.code == "TET2025"
    assert engine.promotions.find("GIAM10") is None
    assert engine.promotions.find("") is None


def test_quote_applies_stored_promotion(engine, add_line):
    _issue("TET2025", "Percent", 20)
    add_line(ACCOUNT, "prod-widget", 2)

    priced = quote(ACCOUNT, promotion_code="tet2025", as_of=NOW)

    assert priced.applied_promotion_code == "TET2025"
    assert priced.discount_total == 200_000
    assert priced.promotion_warning is None


def test_expired_stored_promotion_is_a_warning(engine, add_line):
    _issue("SUMMER", "FixedAmount", 50_000, ends_at=NOW - timedelta(days=1))
    add_line(ACCOUNT, "prod-widget", 1)

    priced = quote(ACCOUNT, promotion_code="SUMMER", as_of=NOW)

    assert priced.discount_total == 0
    assert "SUMMER" in priced.promotion_warning
