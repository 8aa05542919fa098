"""Shopping Cart aggregate (CQRS): mutable lines that become an Order at checkout.

A cart belongs to exactly one owner: a guest session or an account. Each line
captures the product's unit price when the product is first added; later
quantity changes never re-read the price. Stock is not checked here; it is
reserved at checkout.
"""

from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from storefront.cart.events import (
    CartCheckedOut,
    CartCleared,
    CartLineAdded,
    CartLineQuantityChanged,
    CartLineRemoved,
    CartsMerged,
)
from storefront.domain import storefront
from storefront.shared.money import Money


class CartStatus(Enum):
    ACTIVE = "Active"
    CONVERTED = "Converted"
    MERGED = "Merged"


@storefront.entity(part_of="ShoppingCart")
class CartLine:
    product_ref = String(required=True, max_length=100)
    sku = String(required=True, max_length=100)
    title = String(max_length=255)
    unit_price = Integer(required=True, min_value=0)
    currency = String(required=True, max_length=3)
    quantity = Integer(required=True, min_value=1)
    stock_hint_at_add = Integer()
    added_at = DateTime()

    @property
    def line_total(self):
        return Money(amount=self.unit_price, currency=self.currency).multiply(self.quantity)


@storefront.aggregate
class ShoppingCart:
    account_id = Identifier()  # Null for guest carts
    session_id = String(max_length=255)  # Guest cart identification
    lines = HasMany(CartLine)
    selected_shipping_method = String(max_length=120)
    status = String(choices=CartStatus, default=CartStatus.ACTIVE.value)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def cart_must_have_exactly_one_owner(self):
        if bool(self.account_id) == bool(self.session_id):
            raise ValidationError({"owner": ["A cart belongs to either a guest session or an account"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, account_id=None, session_id=None, shipping_method=None):
        now = datetime.now(UTC)
        return cls(
            account_id=account_id,
            session_id=session_id,
            selected_shipping_method=shipping_method,
            status=CartStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_guest(self):
        return not self.account_id

    def _assert_active(self, action):
        if CartStatus(self.status) != CartStatus.ACTIVE:
            raise ValidationError({"status": [f"Cannot {action} a {self.status.lower()} cart"]})

    def _find_line(self, line_id):
        line = next((line for line in self.lines if str(line.id) == str(line_id)), None)
        if line is None:
            raise ObjectNotFoundError(f"Line {line_id} not found in cart {self.id}")
        return line

    def line_for_product(self, product_ref):
        return next((line for line in self.lines if line.product_ref == str(product_ref)), None)

    # -------------------------------------------------------------------
    # Line management
    # -------------------------------------------------------------------
    def add_line(self, product_ref, quantity, snapshot=None):
        """Add a product, or increase the quantity of its existing line.

        ``snapshot`` is a ProductSnapshot and is required only when the
        product enters the cart for the first time; that is the one moment
        its price is captured.
        """
        self._assert_active("add lines to")
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

        now = datetime.now(UTC)
        existing = self.line_for_product(product_ref)
        if existing:
            existing.quantity += quantity
            line = existing
        else:
            if snapshot is None:
                raise ValidationError({"product_ref": [f"A price snapshot is required to add {product_ref}"]})
            line = CartLine(
                product_ref=str(snapshot.product_ref),
                sku=snapshot.sku,
                title=snapshot.title,
                unit_price=snapshot.unit_price,
                currency=snapshot.currency,
                quantity=quantity,
                stock_hint_at_add=snapshot.stock_on_hand - snapshot.stock_reserved,
                added_at=now,
            )
            self.add_lines(line)

        self.updated_at = now
        self.raise_(
            CartLineAdded(
                cart_id=str(self.id),
                line_id=str(line.id),
                product_ref=line.product_ref,
                quantity_added=quantity,
                new_quantity=line.quantity,
                unit_price=line.unit_price,
                currency=line.currency,
            )
        )
        return line

    def set_quantity(self, line_id, quantity):
        self._assert_active("update lines of")
        if quantity is None or quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

        line = self._find_line(line_id)
        previous_quantity = line.quantity
        line.quantity = quantity
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartLineQuantityChanged(
                cart_id=str(self.id),
                line_id=str(line.id),
                previous_quantity=previous_quantity,
                new_quantity=quantity,
            )
        )
        return line

    def remove_line(self, line_id):
        self._assert_active("remove lines from")
        line = self._find_line(line_id)
        self.remove_lines(line)
        self.updated_at = datetime.now(UTC)

        self.raise_(
            CartLineRemoved(
                cart_id=str(self.id),
                line_id=str(line.id),
                product_ref=line.product_ref,
            )
        )

    def clear(self):
        self._assert_active("clear")
        removed = len(self.lines)
        for line in list(self.lines):
            self.remove_lines(line)
        self.updated_at = datetime.now(UTC)

        self.raise_(CartCleared(cart_id=str(self.id), lines_removed=removed))

    def select_shipping_method(self, method):
        self._assert_active("change the shipping method of")
        self.selected_shipping_method = method
        self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Merge (guest → account, on login)
    # -------------------------------------------------------------------
    def merge_from(self, other):
        """Fold another cart's lines into this one and retire the other cart.

        Quantities of shared products are summed and keep this cart's price
        snapshot; other lines are copied with their own snapshot. Merging an
        already retired cart does nothing.
        """
        if CartStatus(other.status) != CartStatus.ACTIVE:
            return 0
        if str(other.id) == str(self.id):
            raise ValidationError({"cart": ["A cart cannot be merged into itself"]})
        self._assert_active("merge into")

        now = datetime.now(UTC)
        merged = 0
        for guest_line in list(other.lines):
            existing = self.line_for_product(guest_line.product_ref)
            if existing:
                existing.quantity += guest_line.quantity
            else:
                self.add_lines(
                    CartLine(
                        product_ref=guest_line.product_ref,
                        sku=guest_line.sku,
                        title=guest_line.title,
                        unit_price=guest_line.unit_price,
                        currency=guest_line.currency,
                        quantity=guest_line.quantity,
                        stock_hint_at_add=guest_line.stock_hint_at_add,
                        added_at=guest_line.added_at or now,
                    )
                )
            other.remove_lines(guest_line)
            merged += 1

        if not self.selected_shipping_method and other.selected_shipping_method:
            self.selected_shipping_method = other.selected_shipping_method

        other.status = CartStatus.MERGED.value
        other.updated_at = now
        self.updated_at = now

        self.raise_(
            CartsMerged(
                cart_id=str(self.id),
                source_cart_id=str(other.id),
                source_session_id=other.session_id,
                lines_merged=merged,
            )
        )
        return merged

    # -------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------
    def lines_for_checkout(self, line_ids=None):
        """The lines to turn into an order: all of them, or the selected ones."""
        self._assert_active("check out")
        if line_ids:
            selected = [self._find_line(line_id) for line_id in dict.fromkeys(str(i) for i in line_ids)]
        else:
            selected = list(self.lines)
        if not selected:
            raise ValidationError({"cart": ["Cannot check out an empty cart"]})
        return selected

    def check_out(self, order_id, line_ids):
        """Drop the lines that went into an order; retire the cart once empty."""
        self._assert_active("check out")
        checked_out = [self._find_line(line_id) for line_id in line_ids]
        for line in checked_out:
            self.remove_lines(line)

        now = datetime.now(UTC)
        self.updated_at = now
        remaining = len(self.lines)
        if remaining == 0:
            self.status = CartStatus.CONVERTED.value

        self.raise_(
            CartCheckedOut(
                cart_id=str(self.id),
                order_id=str(order_id),
                lines_checked_out=len(checked_out),
                lines_remaining=remaining,
            )
        )
