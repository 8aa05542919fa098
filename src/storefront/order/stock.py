"""Order stock effects: reservations follow the committed order status.

Runs synchronously after the order's unit of work commits, inside the same
order lock the command handler holds, so a transition's stock effect is never
applied for an order change that was not stored.

    OrderPlaced (cash on delivery) → confirm
    OrderPaid                      → confirm
    OrderCancelled                 → release
    OrderDelivered                 → commit
"""

import structlog
from protean.utils.mixins import handle

from storefront.domain import storefront
from storefront.engine import current_storefront
from storefront.order.events import OrderCancelled, OrderDelivered, OrderPaid, OrderPlaced
from storefront.order.order import Order, PaymentType

logger = structlog.get_logger(__name__)


@storefront.event_handler(part_of=Order)
class OrderStockHandler:
    @handle(OrderPlaced)
    def on_order_placed(self, event: OrderPlaced) -> None:
        # Cash on delivery is collected at the door; its stock must not time out
        if event.payment_type == PaymentType.COD.value:
            current_storefront().coordinator.confirm(str(event.order_id))

    @handle(OrderPaid)
    def on_order_paid(self, event: OrderPaid) -> None:
        current_storefront().coordinator.confirm(str(event.order_id))

    @handle(OrderCancelled)
    def on_order_cancelled(self, event: OrderCancelled) -> None:
        logger.info(
            "Releasing reservations for cancelled order",
            order_id=str(event.order_id),
            cancelled_by=event.cancelled_by,
        )
        current_storefront().coordinator.release(str(event.order_id), reason=event.reason or "cancelled")

    @handle(OrderDelivered)
    def on_order_delivered(self, event: OrderDelivered) -> None:
        current_storefront().coordinator.commit(str(event.order_id))
