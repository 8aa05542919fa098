"""Engine settings: tax, currency, shipping rates, reservation expiry, promotions.

Settings are an immutable value handed to the components that need them; there
is no module-level settings object. ``StorefrontSettings.from_env()`` applies
``STOREFRONT_*`` environment overrides on top of the defaults.
"""

import json
import os
from dataclasses import dataclass, field, replace
from decimal import Decimal
from fractions import Fraction

DEFAULT_SHIPPING_RATES = {
    "standard": 30_000,
    "express": 50_000,
    "pickup": 0,
}

# Seed promotions for the static catalog.
DEFAULT_PROMOTIONS = (
    {"code": "GIAM10", "kind": "Percent", "value": 10},
    {"code": "GIAM50K", "kind": "FixedAmount", "value": 50_000},
    {"code": "FREESHIP", "kind": "FreeShipping", "value": 0},
)

PROMOTION_CATALOGS = ("static", "repository")


@dataclass(frozen=True)
class StorefrontSettings:
    currency: str = "VND"
    vat_rate: Decimal = Decimal("0.10")
    shipping_rates: dict = field(default_factory=lambda: dict(DEFAULT_SHIPPING_RATES))
    default_shipping_method: str = "standard"
    reservation_ttl_minutes: int = 30
    order_code_prefix: str = "AH"
    promotions: tuple = DEFAULT_PROMOTIONS
    # "static" serves `promotions`; "repository" serves stored Promotion aggregates
    promotion_catalog: str = "static"

    def __post_init__(self):
        if not Decimal(0) <= Decimal(self.vat_rate) < Decimal(1):
            raise ValueError(f"vat_rate must be within [0, 1): {self.vat_rate}")
        if self.reservation_ttl_minutes <= 0:
            raise ValueError("reservation_ttl_minutes must be positive")
        if self.default_shipping_method not in self.shipping_rates:
            raise ValueError(f"Unknown default shipping method: {self.default_shipping_method}")
        if self.promotion_catalog not in PROMOTION_CATALOGS:
            raise ValueError(f"Unknown promotion catalog: {self.promotion_catalog}")

    @property
    def vat_fraction(self) -> Fraction:
        return Fraction(Decimal(self.vat_rate))

    @classmethod
    def from_env(cls, environ=None) -> "StorefrontSettings":
        environ = os.environ if environ is None else environ
        settings = cls()
        overrides = {}

        if "STOREFRONT_CURRENCY" in environ:
            overrides["currency"] = environ["STOREFRONT_CURRENCY"].upper()
        if "STOREFRONT_VAT_RATE" in environ:
            overrides["vat_rate"] = Decimal(environ["STOREFRONT_VAT_RATE"])
        if "STOREFRONT_SHIPPING_RATES" in environ:
            overrides["shipping_rates"] = {
                method: int(fee) for method, fee in json.loads(environ["STOREFRONT_SHIPPING_RATES"]).items()
            }
        if "STOREFRONT_DEFAULT_SHIPPING_METHOD" in environ:
            overrides["default_shipping_method"] = environ["STOREFRONT_DEFAULT_SHIPPING_METHOD"]
        if "STOREFRONT_RESERVATION_TTL_MINUTES" in environ:
            overrides["reservation_ttl_minutes"] = int(environ["STOREFRONT_RESERVATION_TTL_MINUTES"])
        if "STOREFRONT_ORDER_CODE_PREFIX" in environ:
            overrides["order_code_prefix"] = environ["STOREFRONT_ORDER_CODE_PREFIX"]
        if "STOREFRONT_PROMOTIONS" in environ:
            overrides["promotions"] = tuple(json.loads(environ["STOREFRONT_PROMOTIONS"]))
        if "STOREFRONT_PROMOTION_CATALOG" in environ:
            overrides["promotion_catalog"] = environ["STOREFRONT_PROMOTION_CATALOG"].lower()

        return replace(settings, **overrides) if overrides else settings
