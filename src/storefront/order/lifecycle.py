"""Order lifecycle: commands and handler, the only writer of order status.

Every command runs under its order's lock. The order is reloaded, the
transition validated on the aggregate and the order persisted; the stock
effect of the transition is then applied by the order's stock handler
(see ``order.stock``) from the committed event, while the lock is still held.
A rejected transition leaves the stored order and its reservations untouched.
"""

from datetime import UTC

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.engine import current_storefront, serialized
from storefront.inventory.port import ReservationStatus
from storefront.order.order import Actor, Order, OrderStatus, StockEffect, stock_effect

logger = structlog.get_logger(__name__)

EXPIRY_REASON = "Reservation expired before payment"


@storefront.command(part_of="Order")
class ConfirmPayment:
    """The payment provider (or staff) reports the order as paid."""

    order_id = Identifier(required=True)
    amount = Integer()
    reference = String(max_length=255)
    method = String(max_length=120)


@storefront.command(part_of="Order")
class StartProcessing:
    order_id = Identifier(required=True)


@storefront.command(part_of="Order")
class ShipOrder:
    order_id = Identifier(required=True)
    shipping_method = String(max_length=120)


@storefront.command(part_of="Order")
class DeliverOrder:
    order_id = Identifier(required=True)


@storefront.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(max_length=500)
    actor = String(default=Actor.CUSTOMER.value, max_length=20)


@storefront.command(part_of="Order")
class UpdateOrder:
    """Staff edit: note and shipping method first, then an optional status change."""

    order_id = Identifier(required=True)
    status = String(max_length=20)
    note = Text()
    shipping_method = String(max_length=120)
    reason = String(max_length=500)
    actor = String(default=Actor.STAFF.value, max_length=20)


@storefront.command(part_of="Order")
class ExpireOrder:
    """Cancel an unpaid order whose reservations ran out at ``as_of``."""

    order_id = Identifier(required=True)
    as_of = DateTime(required=True)
    reason = String(default=EXPIRY_REASON, max_length=500)


def _order_lock(command):
    return f"order:{command.order_id}"


def _log_transition(order, previous, message="Order status changed"):
    effect = StockEffect.NONE if previous.value == order.status else stock_effect(previous, order.status)
    logger.info(
        message,
        order_id=str(order.id),
        code=order.code,
        from_status=previous.value,
        to_status=order.status,
        stock_effect=effect.value,
    )


@storefront.command_handler(part_of=Order)
class OrderLifecycleHandler:
    def _transition(self, order_id, change):
        repo = current_domain.repository_for(Order)
        order = repo.get(str(order_id))
        previous = OrderStatus(order.status)
        change(order)
        repo.add(order)
        _log_transition(order, previous)
        return order

    @serialized(_order_lock)
    @handle(ConfirmPayment)
    def confirm_payment(self, command):
        return self._transition(
            command.order_id,
            lambda order: order.confirm_payment(
                amount=command.amount,
                reference=command.reference,
                method=command.method,
            ),
        )

    @serialized(_order_lock)
    @handle(StartProcessing)
    def start_processing(self, command):
        return self._transition(command.order_id, lambda order: order.start_processing())

    @serialized(_order_lock)
    @handle(ShipOrder)
    def ship(self, command):
        def change(order):
            if command.shipping_method:
                order.change_shipping_method(command.shipping_method)
            order.ship()

        return self._transition(command.order_id, change)

    @serialized(_order_lock)
    @handle(DeliverOrder)
    def deliver(self, command):
        return self._transition(command.order_id, lambda order: order.deliver())

    @serialized(_order_lock)
    @handle(CancelOrder)
    def cancel(self, command):
        return self._transition(
            command.order_id,
            lambda order: order.cancel(reason=command.reason, actor=Actor(command.actor)),
        )

    @serialized(_order_lock)
    @handle(UpdateOrder)
    def update(self, command):
        """Everything is applied to one loaded order and persisted once, so a
        rejected status change also discards the edits of the same request.
        Asking for the status the order already has is a rejected change.
        """
        if command.status is None and command.note is None and command.shipping_method is None:
            raise ValidationError({"order": ["Nothing to update"]})

        repo = current_domain.repository_for(Order)
        order = repo.get(str(command.order_id))
        previous = OrderStatus(order.status)

        if command.note is not None:
            order.update_note(command.note)
        if command.shipping_method is not None:
            order.change_shipping_method(command.shipping_method)
        if command.status is not None:
            order.transition_to(OrderStatus(command.status), actor=Actor(command.actor), reason=command.reason)

        repo.add(order)
        _log_transition(order, previous, "Order updated")
        return order

    @serialized(_order_lock)
    @handle(ExpireOrder)
    def expire(self, command):
        """Cancel the order only if it is still pending and its reservations are
        still active and past expiry. Returns whether the order was cancelled.
        """
        coordinator = current_storefront().coordinator
        order_ref = str(command.order_id)
        as_of = command.as_of if command.as_of.tzinfo else command.as_of.replace(tzinfo=UTC)
        reservation_set = coordinator.reservations_for(order_ref)
        if (
            reservation_set is None
            or reservation_set.status != ReservationStatus.ACTIVE
            or reservation_set.expires_at > as_of
        ):
            logger.info("Skipped expiring order", order_id=order_ref, reason="reservations no longer expirable")
            return False

        repo = current_domain.repository_for(Order)
        try:
            order = repo.get(order_ref)
        except ObjectNotFoundError:
            # Reservation without an order: placement failed after reserving
            coordinator.release(reservation_set, reason="orphaned")
            logger.warning("Released orphaned reservation", order_ref=order_ref)
            return False

        previous = OrderStatus(order.status)
        if previous != OrderStatus.PENDING:
            logger.info("Skipped expiring order", order_id=order_ref, reason=f"order is {order.status}")
            return False

        order.cancel(reason=command.reason, actor=Actor.SYSTEM)
        repo.add(order)
        _log_transition(order, previous, "Unpaid order expired")
        return True
