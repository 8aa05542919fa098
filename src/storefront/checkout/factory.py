"""Checkout: turns the owner's cart lines into a pending order.

Placement order matters:
    1. select the cart lines (all, or the requested ``line_ids``)
    2. price them exactly as the quote does
    3. reserve stock for every line, or fail with OutOfStock before writing
    4. persist the order and drop the checked-out lines in one unit of work

If step 4 fails, the reservations taken in step 3 are released, so a failed
checkout leaves neither an order nor held stock behind. Cash-on-delivery
reservations are confirmed by the order's stock handler once the order is
stored.
"""

import functools
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, Dict, Identifier, List, String, Text
from protean.utils.globals import current_domain

from storefront.cart.cart import ShoppingCart
from storefront.cart.owner import Owner, find_active_cart, owner_of
from storefront.domain import storefront
from storefront.engine import current_storefront, serialized
from storefront.order.order import Order, PaymentType

logger = structlog.get_logger(__name__)

MAX_CODE_ATTEMPTS = 20


@storefront.command(part_of="Order")
class PlaceOrder:
    """Check out the shopper's cart, or the listed lines of it."""

    account_id = Identifier()
    session_id = String(max_length=255)
    customer = Dict(required=True)
    shipping_address = Dict(required=True)
    billing_address = Dict()
    payment_type = String(default=PaymentType.COD.value, max_length=20)
    payment_method = String(max_length=120)
    promotion_code = String(max_length=255)
    shipping_method = String(max_length=120)
    line_ids = List(content_type=String)
    note = Text()
    placed_at = DateTime()


@dataclass(frozen=True)
class PlacementResult:
    order: Order
    promotion_warning: str | None = None


def quote(owner: Owner, promotion_code=None, shipping_method=None, line_ids=None, as_of=None):
    """Price the owner's cart lines the way checkout would, without placing anything."""
    engine = current_storefront()
    cart = _require_cart(owner)
    lines = cart.lines_for_checkout(line_ids)
    return engine.calculator.price(lines, promotion_code, _shipping_method(cart, shipping_method), as_of)


def _release_unplaced_reservations(fn):
    """Release what the handler reserved unless its order was stored."""

    @functools.wraps(fn)
    def wrapper(instance, command):
        instance.reserved_for = []
        try:
            return fn(instance, command)
        finally:
            _release_unplaced(instance.reserved_for)

    return wrapper


def _release_unplaced(order_ids):
    coordinator = current_storefront().coordinator
    repo = current_domain.repository_for(Order)
    for order_id in order_ids:
        try:
            repo.get(order_id)
        except ObjectNotFoundError:
            coordinator.release(order_id, reason="placement failed")


@storefront.command_handler(part_of=Order)
class PlaceOrderHandler:
    @serialized(lambda command: owner_of(command).lock_key)
    @_release_unplaced_reservations
    @handle(PlaceOrder)
    def place_order(self, command) -> PlacementResult:
        engine = current_storefront()
        owner = owner_of(command)
        now = command.placed_at or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        try:
            payment_type = PaymentType(command.payment_type)
        except ValueError:
            raise ValidationError({"payment_type": [f"Unknown payment type {command.payment_type!r}"]}) from None

        cart = _require_cart(owner)
        lines = cart.lines_for_checkout(command.line_ids or None)
        pricing = engine.calculator.price(
            lines,
            command.promotion_code,
            _shipping_method(cart, command.shipping_method),
            now,
        )

        order_id = str(uuid4())
        expires_at = now + engine.reservation_ttl
        engine.coordinator.reserve(order_id, lines, expires_at)
        self.reserved_for.append(order_id)

        order = Order.place(
            code=_next_code(engine.settings.order_code_prefix, now),
            cart_lines=lines,
            pricing=pricing,
            customer=command.customer,
            shipping_address=command.shipping_address,
            billing_address=command.billing_address,
            payment_type=payment_type.value,
            payment_method=command.payment_method,
            account_id=None if owner.is_guest else owner.id,
            session_id=owner.id if owner.is_guest else None,
            note=command.note,
            reservation_expires_at=None if payment_type == PaymentType.COD else expires_at,
            order_id=order_id,
            placed_at=now,
        )
        current_domain.repository_for(Order).add(order)
        cart.check_out(order.id, [line.id for line in lines])
        current_domain.repository_for(ShoppingCart).add(cart)

        logger.info(
            "Order placed",
            order_id=order_id,
            code=order.code,
            lines=len(lines),
            grand_total=pricing.grand_total,
            promotion_warning=pricing.promotion_warning,
        )
        return PlacementResult(order=order, promotion_warning=pricing.promotion_warning)


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------
def _require_cart(owner):
    cart = find_active_cart(owner)
    if cart is None or not cart.lines:
        raise ValidationError({"cart": ["Cannot check out an empty cart"]})
    return cart


def _shipping_method(cart, requested):
    return requested or cart.selected_shipping_method or current_storefront().default_shipping_method


def _next_code(prefix, now):
    """``<prefix><yymmdd>-<4 digits>``, retried until no stored order uses it."""
    repo = current_domain.repository_for(Order)
    for _ in range(MAX_CODE_ATTEMPTS):
        code = f"{prefix}{now:%y%m%d}-{1000 + secrets.randbelow(9000)}"
        if not repo._dao.query.filter(code=code).all().items:
            return code
    raise ValidationError({"code": ["Could not allocate a unique order code, try again"]})
