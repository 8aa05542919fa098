"""Order aggregate (CQRS): frozen lines and pricing driven through a status machine.

An order is built once at checkout from cart lines and a PricingResult; both
are copies and never re-derived from the live catalogue. Afterwards only the
status, note, shipping method and the payment summary change.

State Machine (6 states):
    pending → paid → processing → shipped → delivered
    cancelled (from pending, paid, processing)

Each accepted transition carries a stock effect; the order stock handler
(`order.stock`) applies it to the reservations once the order is stored.
"""

from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import (
    DateTime,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from storefront.domain import storefront
from storefront.exceptions import InvalidTransition
from storefront.order.events import (
    OrderCancelled,
    OrderDelivered,
    OrderNoteUpdated,
    OrderPaid,
    OrderPlaced,
    OrderProcessingStarted,
    OrderShipped,
    OrderShippingMethodChanged,
)
from storefront.pricing.calculator import PricingResult
from storefront.shared.money import Money

NOTE_MAX_LENGTH = 1000
SHIPPING_METHOD_MAX_LENGTH = 120
BANK_TRANSFER_METHOD = "BANK_TRANSFER_QR"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class Actor(Enum):
    CUSTOMER = "Customer"
    STAFF = "Staff"
    SYSTEM = "System"


class PaymentType(Enum):
    COD = "cod"
    BANK = "bank"
    ONLINE = "online"


class StockEffect(Enum):
    NONE = "none"
    CONFIRM = "confirm"
    RELEASE = "release"
    COMMIT = "commit"


# State machine transition map, with the stock effect of each edge
_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {
        OrderStatus.PAID: StockEffect.CONFIRM,
        OrderStatus.CANCELLED: StockEffect.RELEASE,
    },
    OrderStatus.PAID: {
        OrderStatus.PROCESSING: StockEffect.NONE,
        OrderStatus.CANCELLED: StockEffect.RELEASE,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.SHIPPED: StockEffect.NONE,
        OrderStatus.CANCELLED: StockEffect.RELEASE,
    },
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED: StockEffect.COMMIT},
    OrderStatus.DELIVERED: {},  # Terminal
    OrderStatus.CANCELLED: {},  # Terminal
}


def allowed_targets(status):
    return set(_VALID_TRANSITIONS[OrderStatus(status)])


def stock_effect(from_status, to_status):
    """The stock effect of a transition, or InvalidTransition if there is no such edge."""
    current, target = OrderStatus(from_status), OrderStatus(to_status)
    effects = _VALID_TRANSITIONS[current]
    if target not in effects:
        raise InvalidTransition(current.value, target.value)
    return effects[target]


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@storefront.value_object(part_of="Order")
class CustomerInfo:
    full_name = String(required=True, max_length=255)
    email = String(required=True, max_length=255)
    phone = String(required=True, max_length=30)
    tax_code = String(max_length=50)


@storefront.value_object(part_of="Order")
class ShippingAddress:
    """A delivery or billing address captured at checkout time.

    Once recorded on an Order, the address is immutable: it is where the order
    was shipped, regardless of later changes to the shopper's profile.
    """

    line1 = String(required=True, max_length=255)
    line2 = String(max_length=255)
    city = String(required=True, max_length=100)
    state = String(max_length=100)
    postal_code = String(max_length=20)
    country = String(required=True, max_length=2, default="VN")


@storefront.value_object(part_of="Order")
class PaymentSummary:
    payment_type = String(required=True, choices=PaymentType)
    method = String(max_length=120)
    paid_amount = Integer(default=0, min_value=0)
    reference = String(max_length=255)
    paid_at = DateTime()


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@storefront.entity(part_of="Order")
class OrderLine:
    """A frozen copy of a cart line at the moment the order was placed."""

    cart_line_id = Identifier()
    product_ref = String(required=True, max_length=100)
    sku = String(required=True, max_length=100)
    title = String(max_length=255)
    unit_price = Integer(required=True, min_value=0)
    currency = String(required=True, max_length=3)
    quantity = Integer(required=True, min_value=1)

    @property
    def line_total(self):
        return Money(amount=self.unit_price, currency=self.currency).multiply(self.quantity)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@storefront.aggregate
class Order:
    code = String(required=True, max_length=30, unique=True)
    account_id = Identifier()
    session_id = String(max_length=255)
    customer = ValueObject(CustomerInfo)
    shipping_address = ValueObject(ShippingAddress)
    billing_address = ValueObject(ShippingAddress)
    lines = HasMany(OrderLine)
    pricing = ValueObject(PricingResult)
    payment = ValueObject(PaymentSummary)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    shipping_method = String(max_length=SHIPPING_METHOD_MAX_LENGTH)
    note = String(max_length=NOTE_MAX_LENGTH)
    reservation_expires_at = DateTime()
    cancellation_reason = String(max_length=500)
    cancelled_by = String(max_length=50)
    created_at = DateTime()
    updated_at = DateTime()
    paid_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    cancelled_at = DateTime()

    @invariant.post
    def pricing_must_balance(self):
        if self.pricing is not None and not _balances(self.pricing):
            raise ValidationError({"pricing": ["Grand total does not match its components"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        code,
        cart_lines,
        pricing,
        customer,
        shipping_address,
        payment_type,
        payment_method=None,
        billing_address=None,
        account_id=None,
        session_id=None,
        note=None,
        reservation_expires_at=None,
        order_id=None,
        placed_at=None,
    ):
        """Create a pending order from cart lines and their frozen pricing.

        Args:
            code: Human-readable order code, unique across orders.
            cart_lines: CartLine entities; their snapshot fields are copied.
            pricing: The PricingResult quoted for exactly these lines.
            customer: Dict with full_name, email, phone and optional tax_code.
            shipping_address: Dict with line1, line2, city, state, postal_code, country.
            payment_type: ``cod``, ``bank`` or ``online``.
            billing_address: Optional dict, present when an invoice was requested.
            placed_at: Placement time; defaults to now.
        """
        if not _balances(pricing):
            raise ValidationError({"pricing": ["Grand total does not match its components"]})

        now = placed_at or datetime.now(UTC)
        payment_type = PaymentType(payment_type)
        if payment_type == PaymentType.BANK:
            payment_method = BANK_TRANSFER_METHOD

        identity = {"id": str(order_id)} if order_id else {}
        order = cls(
            **identity,
            code=code,
            account_id=account_id,
            session_id=session_id,
            customer=CustomerInfo(**customer),
            shipping_address=ShippingAddress(**shipping_address),
            billing_address=ShippingAddress(**billing_address) if billing_address else None,
            lines=[
                OrderLine(
                    cart_line_id=str(line.id),
                    product_ref=line.product_ref,
                    sku=line.sku,
                    title=line.title,
                    unit_price=line.unit_price,
                    currency=line.currency,
                    quantity=line.quantity,
                )
                for line in cart_lines
            ],
            pricing=pricing,
            payment=PaymentSummary(payment_type=payment_type.value, method=payment_method),
            status=OrderStatus.PENDING.value,
            shipping_method=pricing.shipping_method,
            note=note,
            reservation_expires_at=reservation_expires_at,
            created_at=now,
            updated_at=now,
        )

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                code=code,
                account_id=account_id,
                session_id=session_id,
                line_count=len(order.lines),
                grand_total=pricing.grand_total,
                currency=pricing.currency,
                payment_type=payment_type.value,
                applied_promotion_code=pricing.applied_promotion_code,
                reservation_expires_at=reservation_expires_at,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # State transition helper
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status, reason=None):
        current = OrderStatus(self.status)
        if target_status not in _VALID_TRANSITIONS[current]:
            raise InvalidTransition(current.value, target_status.value, reason)

    @property
    def grand_total(self):
        return Money(amount=self.pricing.grand_total, currency=self.pricing.currency)

    # -------------------------------------------------------------------
    # Lifecycle transitions
    # -------------------------------------------------------------------
    def confirm_payment(self, amount=None, reference=None, method=None):
        """Accept the payment signal. A signal carrying an amount must match the grand total."""
        self._assert_can_transition(OrderStatus.PAID)
        if amount is not None and amount != self.pricing.grand_total:
            raise ValidationError(
                {"amount": [f"Payment of {amount} does not match the order total of {self.pricing.grand_total}"]}
            )

        now = datetime.now(UTC)
        self.payment = PaymentSummary(
            payment_type=self.payment.payment_type,
            method=method or self.payment.method,
            paid_amount=self.pricing.grand_total,
            reference=reference,
            paid_at=now,
        )
        self.status = OrderStatus.PAID.value
        self.paid_at = now
        self.updated_at = now

        self.raise_(
            OrderPaid(
                order_id=str(self.id),
                amount=self.pricing.grand_total,
                currency=self.pricing.currency,
                payment_method=self.payment.method,
                reference=reference,
                paid_at=now,
            )
        )

    def start_processing(self):
        self._assert_can_transition(OrderStatus.PROCESSING)
        now = datetime.now(UTC)
        self.status = OrderStatus.PROCESSING.value
        self.updated_at = now
        self.raise_(OrderProcessingStarted(order_id=str(self.id), started_at=now))

    def ship(self):
        self._assert_can_transition(OrderStatus.SHIPPED)
        if not self.shipping_method:
            raise InvalidTransition(self.status, OrderStatus.SHIPPED.value, "a shipping method is required")

        now = datetime.now(UTC)
        self.status = OrderStatus.SHIPPED.value
        self.shipped_at = now
        self.updated_at = now
        self.raise_(OrderShipped(order_id=str(self.id), shipping_method=self.shipping_method, shipped_at=now))

    def deliver(self):
        self._assert_can_transition(OrderStatus.DELIVERED)
        now = datetime.now(UTC)
        self.status = OrderStatus.DELIVERED.value
        self.delivered_at = now
        self.updated_at = now
        self.raise_(OrderDelivered(order_id=str(self.id), delivered_at=now))

    def cancel(self, reason=None, actor=Actor.CUSTOMER):
        self._assert_can_transition(OrderStatus.CANCELLED)
        actor = Actor(actor)
        now = datetime.now(UTC)
        previous_status = self.status
        self.status = OrderStatus.CANCELLED.value
        self.cancellation_reason = reason
        self.cancelled_by = actor.value
        self.cancelled_at = now
        self.updated_at = now

        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                previous_status=previous_status,
                reason=reason,
                cancelled_by=actor.value,
                cancelled_at=now,
            )
        )

    def transition_to(self, target, actor=Actor.STAFF, reason=None):
        """Move to ``target`` through the matching transition method."""
        target = OrderStatus(target)
        if target == OrderStatus.PAID:
            self.confirm_payment()
        elif target == OrderStatus.PROCESSING:
            self.start_processing()
        elif target == OrderStatus.SHIPPED:
            self.ship()
        elif target == OrderStatus.DELIVERED:
            self.deliver()
        elif target == OrderStatus.CANCELLED:
            self.cancel(reason=reason, actor=actor)
        else:
            raise InvalidTransition(self.status, target.value)

    # -------------------------------------------------------------------
    # Staff edits
    # -------------------------------------------------------------------
    def update_note(self, note):
        note = (note or "").strip() or None
        if note and len(note) > NOTE_MAX_LENGTH:
            raise ValidationError({"note": [f"Note must be at most {NOTE_MAX_LENGTH} characters"]})
        if note == self.note:
            return

        self.note = note
        self.updated_at = datetime.now(UTC)
        self.raise_(OrderNoteUpdated(order_id=str(self.id), note=note))

    def change_shipping_method(self, method):
        method = (method or "").strip()
        if not method:
            raise ValidationError({"shipping_method": ["Shipping method cannot be empty"]})
        if len(method) > SHIPPING_METHOD_MAX_LENGTH:
            raise ValidationError(
                {"shipping_method": [f"Shipping method must be at most {SHIPPING_METHOD_MAX_LENGTH} characters"]}
            )
        if OrderStatus(self.status) not in (OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.PROCESSING):
            raise ValidationError({"shipping_method": [f"Cannot change the shipping method of a {self.status} order"]})
        if method == self.shipping_method:
            return

        previous = self.shipping_method
        self.shipping_method = method
        self.updated_at = datetime.now(UTC)
        self.raise_(OrderShippingMethodChanged(order_id=str(self.id), previous_method=previous, new_method=method))


def _balances(pricing):
    taxable = max(0, pricing.subtotal - pricing.discount_total)
    return pricing.grand_total == taxable + pricing.tax_total + pricing.shipping_fee
