"""Composition root: assembles the engine's collaborators from settings and adapters.

Nothing here is a module-level singleton: callers build a ``Storefront`` and
bind it to the domain context they process commands in
(``storefront.domain_context(engine=...)``). Command and event handlers reach
it through ``current_storefront()``.
"""

import functools
from dataclasses import dataclass, field
from datetime import timedelta

from protean.exceptions import ConfigurationError
from protean.utils.globals import g

from storefront.catalogue.memory import InMemoryCatalogue
from storefront.config import StorefrontSettings
from storefront.inventory.reservation import StockReservationCoordinator
from storefront.pricing.calculator import PricingCalculator, ShippingRates
from storefront.promotion.resolver import (
    PromotionCatalog,
    PromotionResolver,
    RepositoryPromotionCatalog,
    StaticPromotionCatalog,
)
from storefront.utils.locks import KeyedLocks


@dataclass(frozen=True)
class Storefront:
    settings: StorefrontSettings
    catalogue: object
    promotions: PromotionCatalog
    calculator: PricingCalculator
    coordinator: StockReservationCoordinator
    locks: KeyedLocks = field(default_factory=KeyedLocks)

    @property
    def reservation_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.reservation_ttl_minutes)

    @property
    def default_shipping_method(self) -> str:
        return self.settings.default_shipping_method


def build_storefront(
    settings: StorefrontSettings | None = None,
    catalogue=None,
    promotions: PromotionCatalog | None = None,
) -> Storefront:
    """Wire the engine.

    Args:
        settings: Engine settings; defaults to ``StorefrontSettings.from_env()``.
        catalogue: An object implementing both ``CatalogueReader`` and
            ``StockLedger``; defaults to an empty ``InMemoryCatalogue``.
        promotions: The promotion catalog; defaults to the catalog named by
            ``settings.promotion_catalog``.
    """
    settings = settings or StorefrontSettings.from_env()
    catalogue = catalogue if catalogue is not None else InMemoryCatalogue()
    if promotions is None:
        if settings.promotion_catalog == "repository":
            promotions = RepositoryPromotionCatalog()
        else:
            promotions = StaticPromotionCatalog(settings.promotions)

    return Storefront(
        settings=settings,
        catalogue=catalogue,
        promotions=promotions,
        calculator=PricingCalculator(
            resolver=PromotionResolver(promotions),
            shipping_rates=ShippingRates(settings.shipping_rates, settings.currency),
            vat_rate=settings.vat_fraction,
            currency=settings.currency,
        ),
        coordinator=StockReservationCoordinator(catalogue),
    )


def current_storefront() -> Storefront:
    """The engine bound to the active domain context."""
    engine = g.get("engine")
    if engine is None:
        raise ConfigurationError("No storefront engine is bound to the domain context")
    return engine


def serialized(key_of):
    """Run a handler method while holding the engine's lock(s) for ``key_of(item)``.

    Goes above ``@handle`` so the lock also covers the handler's unit of work
    commit and the synchronous event handlers that commit triggers.
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(instance, item):
            keys = key_of(item)
            if isinstance(keys, str):
                keys = (keys,)
            with current_storefront().locks.hold_all(keys):
                return fn(instance, item)

        return wrapper

    return decorator
