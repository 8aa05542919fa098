"""Domain events for the Order aggregate.

Events record what happened to an order. Stock side effects are applied from
them by the order stock handler after the order is persisted.
"""

from protean.fields import DateTime, Identifier, Integer, String, Text

from storefront.domain import storefront


@storefront.event(part_of="Order")
class OrderPlaced:
    """A new order was created from cart lines at checkout."""

    __version__ = 1

    order_id = Identifier(required=True)
    code = String(required=True)
    account_id = Identifier()
    session_id = String()
    line_count = Integer(required=True)
    grand_total = Integer(required=True)
    currency = String(required=True)
    payment_type = String()
    applied_promotion_code = String()
    reservation_expires_at = DateTime()
    placed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderPaid:
    """The payment confirmation signal was accepted."""

    __version__ = 1

    order_id = Identifier(required=True)
    amount = Integer(required=True)
    currency = String(required=True)
    payment_method = String()
    reference = String()
    paid_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderProcessingStarted:
    """Staff started fulfilling a paid order."""

    __version__ = 1

    order_id = Identifier(required=True)
    started_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderShipped:
    """The order left the warehouse."""

    __version__ = 1

    order_id = Identifier(required=True)
    shipping_method = String(required=True)
    shipped_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderDelivered:
    """The order reached the customer; reserved stock became a permanent deduction."""

    __version__ = 1

    order_id = Identifier(required=True)
    delivered_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderCancelled:
    """The order was cancelled and its reservations released."""

    __version__ = 1

    order_id = Identifier(required=True)
    previous_status = String(required=True)
    reason = Text()
    cancelled_by = String(required=True)
    cancelled_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderNoteUpdated:
    __version__ = 1

    order_id = Identifier(required=True)
    note = Text()


@storefront.event(part_of="Order")
class OrderShippingMethodChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    previous_method = String()
    new_method = String(required=True)
