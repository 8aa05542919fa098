"""In-memory catalogue and stock store for development and testing.

One product row holds price data and the two stock counters, mirroring the
product table of the storefront database. Every row carries a version that
``compare_and_set_many`` checks and bumps for all affected rows under one
lock, so a multi-product reservation behaves like a transaction of
conditional SQL updates.
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime

from protean.exceptions import ObjectNotFoundError, ValidationError

from storefront.catalogue.port import CatalogueReader, ProductSnapshot
from storefront.inventory.port import (
    ReservationSet,
    ReservationStatus,
    StockLedger,
    StockLevels,
)


@dataclass(frozen=True)
class _ProductRow:
    product_ref: str
    sku: str
    title: str
    unit_price: int
    currency: str
    on_hand: int = 0
    reserved: int = 0
    version: int = 0


class InMemoryCatalogue(CatalogueReader, StockLedger):
    """Thread-safe catalogue snapshot reader and stock ledger."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, _ProductRow] = {}
        self._reservations: dict[str, ReservationSet] = {}

    # -------------------------------------------------------------------
    # Catalogue administration (stands in for the external catalog store)
    # -------------------------------------------------------------------
    def add_product(self, product_ref, sku, title, unit_price, currency="VND", on_hand=0):
        if unit_price < 0:
            raise ValidationError({"unit_price": ["Price cannot be negative"]})
        if on_hand < 0:
            raise ValidationError({"on_hand": ["Stock on hand cannot be negative"]})
        with self._lock:
            self._rows[product_ref] = _ProductRow(
                product_ref=product_ref,
                sku=sku,
                title=title,
                unit_price=unit_price,
                currency=currency,
                on_hand=on_hand,
            )

    def set_price(self, product_ref, unit_price):
        with self._lock:
            row = self._row(product_ref)
            self._rows[product_ref] = replace(row, unit_price=unit_price, version=row.version + 1)

    def receive_stock(self, product_ref, quantity):
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        with self._lock:
            row = self._row(product_ref)
            self._rows[product_ref] = replace(row, on_hand=row.on_hand + quantity, version=row.version + 1)

    def _row(self, product_ref) -> _ProductRow:
        row = self._rows.get(product_ref)
        if row is None:
            raise ObjectNotFoundError(f"Product {product_ref} not found")
        return row

    # -------------------------------------------------------------------
    # CatalogueReader
    # -------------------------------------------------------------------
    def get_product_snapshot(self, product_ref) -> ProductSnapshot:
        with self._lock:
            row = self._row(product_ref)
        return ProductSnapshot(
            product_ref=row.product_ref,
            sku=row.sku,
            title=row.title,
            unit_price=row.unit_price,
            currency=row.currency,
            stock_on_hand=row.on_hand,
            stock_reserved=row.reserved,
        )

    # -------------------------------------------------------------------
    # StockLedger
    # -------------------------------------------------------------------
    def levels(self, product_ref) -> StockLevels:
        with self._lock:
            row = self._row(product_ref)
        return StockLevels(
            product_ref=row.product_ref,
            on_hand=row.on_hand,
            reserved=row.reserved,
            version=row.version,
        )

    def compare_and_set(self, expected: StockLevels, updated: StockLevels) -> bool:
        return self.compare_and_set_many([expected], [updated])

    def compare_and_set_many(self, expected, updated) -> bool:
        if len(expected) != len(updated):
            raise ValidationError({"stock": ["Expected and updated rows do not match"]})
        for before, after in zip(expected, updated, strict=True):
            if before.product_ref != after.product_ref:
                raise ValidationError({"stock": ["Expected and updated rows do not match"]})
            if after.reserved < 0 or after.on_hand < 0 or after.reserved > after.on_hand:
                raise ValidationError({"stock": [f"Stock counters for {before.product_ref} would become inconsistent"]})

        with self._lock:
            rows = [self._row(before.product_ref) for before in expected]
            if any(row.version != before.version for row, before in zip(rows, expected, strict=True)):
                return False
            for row, after in zip(rows, updated, strict=True):
                self._rows[row.product_ref] = replace(
                    row,
                    on_hand=after.on_hand,
                    reserved=after.reserved,
                    version=row.version + 1,
                )
            return True

    def record_reservations(self, reservation_set: ReservationSet) -> None:
        with self._lock:
            existing = self._reservations.get(reservation_set.order_ref)
            if existing is not None and existing.is_holding():
                raise ValidationError({"order_ref": [f"Order {reservation_set.order_ref} already holds reservations"]})
            self._reservations[reservation_set.order_ref] = reservation_set

    def reservations_for(self, order_ref) -> ReservationSet | None:
        with self._lock:
            return self._reservations.get(order_ref)

    def transition_reservations(self, order_ref, from_statuses, to_status) -> ReservationSet | None:
        with self._lock:
            current = self._reservations.get(order_ref)
            if current is None or current.status not in from_statuses:
                return None
            self._reservations[order_ref] = replace(current, status=to_status)
            return current

    def expired_reservations(self, as_of: datetime) -> list[ReservationSet]:
        with self._lock:
            return [
                reservation_set
                for reservation_set in self._reservations.values()
                if reservation_set.status == ReservationStatus.ACTIVE and reservation_set.expires_at <= as_of
            ]
