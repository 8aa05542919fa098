"""Storefront bounded context: carts, pricing, stock reservations and orders.

Turns a shopping cart plus an optional promotion code into a priced order,
reserves stock for it, and drives the order through its status lifecycle.
"""

import structlog
from protean.domain import Domain

storefront = Domain(name="storefront")

logger = structlog.get_logger(__name__)
