"""Unpaid order expiry: cancel pending orders whose reservations timed out.

Designed to be triggered periodically by an external scheduler (cron, K8s
CronJob) via the maintenance API endpoint. The sweep lists candidates and then
dispatches one ``ExpireOrder`` per order; each command re-checks its order and
reservations under the order lock, so an order paid after the listing stays
paid. Running it twice for the same moment cancels nothing the second time.
"""

from datetime import UTC, datetime

import structlog
from protean.utils.globals import current_domain

from storefront.engine import current_storefront
from storefront.order.lifecycle import EXPIRY_REASON, ExpireOrder

logger = structlog.get_logger(__name__)

__all__ = ["EXPIRY_REASON", "expire_unpaid_orders"]


def expire_unpaid_orders(as_of=None) -> int:
    """Returns the number of orders cancelled."""
    as_of = as_of or datetime.now(UTC)
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=UTC)
    expired = current_storefront().coordinator.expired(as_of)

    logger.info("Checking for expired reservations", as_of=as_of.isoformat(), candidates=len(expired))
    if not expired:
        return 0

    cancelled = 0
    for reservation_set in expired:
        if current_domain.process(
            ExpireOrder(order_id=reservation_set.order_ref, as_of=as_of, reason=EXPIRY_REASON),
            asynchronous=False,
        ):
            cancelled += 1

    logger.info("Expired unpaid orders", cancelled=cancelled)
    return cancelled
