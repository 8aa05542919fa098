"""Catalog snapshot port (abstract interface).

The catalogue itself (product metadata, admin screens, images) lives outside
this engine. The engine only needs a point-in-time view of a product's price,
currency and stock counters, which adapters provide through this contract.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class ProductSnapshot:
    """Read-only view of a product at the moment it was looked up."""

    product_ref: str
    sku: str
    title: str
    unit_price: int
    currency: str
    stock_on_hand: int
    stock_reserved: int

    @property
    def available(self) -> int:
        return self.stock_on_hand - self.stock_reserved


class CatalogueReader(ABC):
    """Abstract catalog snapshot reader."""

    @abstractmethod
    def get_product_snapshot(self, product_ref: str) -> ProductSnapshot:
        """Return the current snapshot, or raise ObjectNotFoundError."""
        ...
