"""Order reads for customers and back-office staff."""

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from storefront.cart.owner import Owner
from storefront.order.order import Order, OrderStatus

DEFAULT_PAGE_SIZE = 15
MAX_PAGE_SIZE = 50
_QUERY_BATCH = 100


def get_order(order_id, owner: Owner | None = None) -> Order:
    """Load an order; with an owner, orders belonging to someone else are not found."""
    order = current_domain.repository_for(Order).get(str(order_id))
    if owner is not None and not _belongs_to(order, owner):
        raise ObjectNotFoundError(f"Order {order_id} not found")
    return order


def list_orders(status=None, search=None, page=1, page_size=DEFAULT_PAGE_SIZE, owner: Owner | None = None):
    """Newest-first page of orders.

    Returns ``(orders, total)`` where ``total`` counts every match.
    """
    if page < 1:
        raise ValidationError({"page": ["Page must be at least 1"]})
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationError({"page_size": [f"Page size must be between 1 and {MAX_PAGE_SIZE}"]})

    criteria = {}
    if status:
        criteria["status"] = OrderStatus(status).value
    if owner is not None:
        criteria["session_id" if owner.is_guest else "account_id"] = owner.id

    matches = [order for order in _all_orders(criteria) if _matches_search(order, search)]
    matches.sort(key=lambda order: order.created_at, reverse=True)

    start = (page - 1) * page_size
    return matches[start : start + page_size], len(matches)


def _all_orders(criteria):
    repo = current_domain.repository_for(Order)
    orders = []
    offset = 0
    while True:
        batch = repo._dao.query.filter(**criteria).offset(offset).limit(_QUERY_BATCH).all().items
        orders.extend(batch)
        if len(batch) < _QUERY_BATCH:
            return orders
        offset += _QUERY_BATCH


def _matches_search(order, search):
    term = (search or "").strip().lower()
    if not term:
        return True
    customer = order.customer
    haystack = [order.code]
    if customer is not None:
        haystack.extend([customer.full_name, customer.email, customer.phone])
    return any(term in (value or "").lower() for value in haystack)


def _belongs_to(order, owner):
    if owner.is_guest:
        return order.session_id == owner.id
    return str(order.account_id) == owner.id
