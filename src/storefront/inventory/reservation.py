"""Stock reservation coordinator: all-or-nothing holds on shared stock.

Stock Level Model:
    on_hand:   Physical count in the warehouse
    reserved:  Held for placed orders that have not left the warehouse
    available: on_hand - reserved (what can still be sold)

Every counter change is a compare-and-set on the product rows, retried when
another writer got there first. A reservation checks and writes all of its
rows in one step, so no caller ever sees a partial hold.
"""

from collections import OrderedDict
from datetime import UTC, datetime

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError

from storefront.exceptions import OutOfStock
from storefront.inventory.port import (
    HOLDING_STATUSES,
    ReservationSet,
    ReservationStatus,
    StockLedger,
    StockReservation,
)

logger = structlog.get_logger(__name__)

MAX_CAS_ATTEMPTS = 100


class StockReservationCoordinator:
    def __init__(self, ledger: StockLedger) -> None:
        self.ledger = ledger

    # -------------------------------------------------------------------
    # Compare-and-set helpers
    # -------------------------------------------------------------------
    def _update(self, product_ref, change, check=None):
        """Apply ``change`` to the product's counters atomically.

        ``check`` sees the freshly read levels and may raise to abort before
        anything is written.
        """
        for _ in range(MAX_CAS_ATTEMPTS):
            current = self.ledger.levels(product_ref)
            if check is not None:
                check(current)
            if self.ledger.compare_and_set(current, change(current)):
                return
        raise ValidationError({"stock": [f"Too much contention updating stock for {product_ref}, try again"]})

    @staticmethod
    def _quantities_by_product(lines):
        """Collapse lines to one quantity per product, keeping first-seen order."""
        quantities = OrderedDict()
        for line in lines:
            if line.quantity < 1:
                raise ValidationError({"quantity": ["Quantity must be at least 1"]})
            product_ref = str(line.product_ref)
            quantities[product_ref] = quantities.get(product_ref, 0) + line.quantity
        return quantities

    # -------------------------------------------------------------------
    # Reserve
    # -------------------------------------------------------------------
    def reserve(self, order_ref, lines, expires_at) -> ReservationSet:
        """Reserve every line or none of them."""
        quantities = self._quantities_by_product(lines)
        if not quantities:
            raise ValidationError({"lines": ["Nothing to reserve"]})

        for _ in range(MAX_CAS_ATTEMPTS):
            current = [self._available_levels(product_ref, quantity) for product_ref, quantity in quantities.items()]
            updated = [levels.with_reserved(quantities[levels.product_ref]) for levels in current]
            if self.ledger.compare_and_set_many(current, updated):
                break
        else:
            raise ValidationError({"stock": [f"Too much contention reserving stock for order {order_ref}, try again"]})

        granted = list(quantities.items())
        reservation_set = ReservationSet(
            order_ref=str(order_ref),
            reservations=tuple(
                StockReservation(
                    product_ref=product_ref,
                    quantity=quantity,
                    order_ref=str(order_ref),
                    expires_at=expires_at,
                )
                for product_ref, quantity in granted
            ),
            expires_at=expires_at,
        )
        try:
            self.ledger.record_reservations(reservation_set)
        except Exception:
            self._return(granted)
            raise

        logger.info(
            "Stock reserved",
            order_ref=str(order_ref),
            products=len(granted),
            expires_at=expires_at.isoformat(),
        )
        return reservation_set

    def _available_levels(self, product_ref, quantity):
        try:
            levels = self.ledger.levels(product_ref)
        except ObjectNotFoundError:
            raise OutOfStock(product_ref, requested=quantity, available=0) from None
        if levels.available < quantity:
            raise OutOfStock(product_ref, requested=quantity, available=levels.available)
        return levels

    def _return(self, granted):
        """Give back a granted batch whose record could not be stored."""
        for _ in range(MAX_CAS_ATTEMPTS):
            current = [self.ledger.levels(product_ref) for product_ref, _ in granted]
            updated = [levels.with_reserved(-quantity) for levels, (_, quantity) in zip(current, granted, strict=True)]
            if self.ledger.compare_and_set_many(current, updated):
                logger.info("Rolled back reservation", products=[product_ref for product_ref, _ in granted])
                return
        raise ValidationError({"stock": ["Too much contention returning reserved stock, try again"]})

    # -------------------------------------------------------------------
    # Release / confirm / commit
    # -------------------------------------------------------------------
    def release(self, reservation_set_or_order_ref, reason="released"):
        """Return held stock to availability. Releasing twice is a no-op."""
        order_ref = self._order_ref(reservation_set_or_order_ref)
        claimed = self.ledger.transition_reservations(order_ref, HOLDING_STATUSES, ReservationStatus.RELEASED)
        if claimed is None:
            logger.info("No held reservations to release", order_ref=order_ref)
            return False

        for reservation in claimed.reservations:
            self._update(reservation.product_ref, lambda levels, q=reservation.quantity: levels.with_reserved(-q))

        logger.info("Reservations released", order_ref=order_ref, reason=reason)
        return True

    def confirm(self, reservation_set_or_order_ref):
        """Mark an order's reservations as paid for; they stop expiring."""
        order_ref = self._order_ref(reservation_set_or_order_ref)
        claimed = self.ledger.transition_reservations(
            order_ref,
            frozenset({ReservationStatus.ACTIVE}),
            ReservationStatus.CONFIRMED,
        )
        if claimed is not None:
            logger.info("Reservations confirmed", order_ref=order_ref)
        return claimed is not None

    def commit(self, reservation_set_or_order_ref):
        """Turn held stock into a permanent deduction from on-hand."""
        order_ref = self._order_ref(reservation_set_or_order_ref)
        claimed = self.ledger.transition_reservations(order_ref, HOLDING_STATUSES, ReservationStatus.COMMITTED)
        if claimed is None:
            logger.info("No held reservations to commit", order_ref=order_ref)
            return False

        for reservation in claimed.reservations:
            self._update(reservation.product_ref, lambda levels, q=reservation.quantity: levels.with_deduction(q))

        logger.info("Reserved stock committed", order_ref=order_ref)
        return True

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def reservations_for(self, order_ref) -> ReservationSet | None:
        return self.ledger.reservations_for(str(order_ref))

    def expired(self, as_of=None) -> list[ReservationSet]:
        return self.ledger.expired_reservations(as_of or datetime.now(UTC))

    @staticmethod
    def _order_ref(reservation_set_or_order_ref):
        if isinstance(reservation_set_or_order_ref, ReservationSet):
            return reservation_set_or_order_ref.order_ref
        return str(reservation_set_or_order_ref)
