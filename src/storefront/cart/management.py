"""Cart management: commands and handler.

Every command is applied to the owner's single active cart under the owner's
cart lock, so two requests for the same shopper never interleave.
"""

import structlog
from protean import handle
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from storefront.cart.cart import ShoppingCart
from storefront.cart.owner import Owner, find_active_cart, find_or_start_cart, owner_of, require_cart
from storefront.domain import storefront
from storefront.engine import current_storefront, serialized

logger = structlog.get_logger(__name__)


@storefront.command(part_of="ShoppingCart")
class AddCartLine:
    """Add a product to the shopper's cart, creating the cart if needed."""

    account_id = Identifier()
    session_id = String(max_length=255)
    product_ref = String(required=True, max_length=255)
    quantity = Integer(default=1)


@storefront.command(part_of="ShoppingCart")
class SetCartLineQuantity:
    account_id = Identifier()
    session_id = String(max_length=255)
    line_id = Identifier(required=True)
    quantity = Integer(required=True)


@storefront.command(part_of="ShoppingCart")
class RemoveCartLine:
    account_id = Identifier()
    session_id = String(max_length=255)
    line_id = Identifier(required=True)


@storefront.command(part_of="ShoppingCart")
class ClearCart:
    account_id = Identifier()
    session_id = String(max_length=255)


@storefront.command(part_of="ShoppingCart")
class SelectShippingMethod:
    account_id = Identifier()
    session_id = String(max_length=255)
    shipping_method = String(required=True, max_length=120)


@storefront.command(part_of="ShoppingCart")
class MergeGuestCart:
    """Fold a guest session's cart into the account's cart after login."""

    account_id = Identifier(required=True)
    session_id = String(required=True, max_length=255)


def _owner_lock(command):
    return owner_of(command).lock_key


def _merge_locks(command):
    return (Owner.guest(command.session_id).lock_key, Owner.account(command.account_id).lock_key)


@storefront.command_handler(part_of=ShoppingCart)
class ManageCartHandler:
    @serialized(_owner_lock)
    @handle(AddCartLine)
    def add_line(self, command):
        engine = current_storefront()
        cart = find_or_start_cart(owner_of(command), engine.default_shipping_method)
        snapshot = None
        if cart.line_for_product(command.product_ref) is None:
            snapshot = engine.catalogue.get_product_snapshot(str(command.product_ref))
        line = cart.add_line(command.product_ref, command.quantity, snapshot)
        current_domain.repository_for(ShoppingCart).add(cart)
        return str(line.id)

    @serialized(_owner_lock)
    @handle(SetCartLineQuantity)
    def set_quantity(self, command):
        cart = require_cart(owner_of(command))
        cart.set_quantity(command.line_id, command.quantity)
        current_domain.repository_for(ShoppingCart).add(cart)

    @serialized(_owner_lock)
    @handle(RemoveCartLine)
    def remove_line(self, command):
        cart = require_cart(owner_of(command))
        cart.remove_line(command.line_id)
        current_domain.repository_for(ShoppingCart).add(cart)

    @serialized(_owner_lock)
    @handle(ClearCart)
    def clear(self, command):
        cart = find_active_cart(owner_of(command))
        if cart is None:
            return
        cart.clear()
        current_domain.repository_for(ShoppingCart).add(cart)

    @serialized(_owner_lock)
    @handle(SelectShippingMethod)
    def select_shipping_method(self, command):
        engine = current_storefront()
        engine.calculator.shipping_rates.fee_for(command.shipping_method)
        cart = find_or_start_cart(owner_of(command), engine.default_shipping_method)
        cart.select_shipping_method(command.shipping_method)
        current_domain.repository_for(ShoppingCart).add(cart)

    @serialized(_merge_locks)
    @handle(MergeGuestCart)
    def merge_guest_cart(self, command):
        """Both carts are saved in this handler's unit of work.

        Running it again with no intervening change merges nothing: the guest
        cart is retired by the first run.
        """
        guest_cart = find_active_cart(Owner.guest(command.session_id))
        if guest_cart is None:
            logger.info("No guest cart to merge", session_id=command.session_id)
            return 0

        account_cart = find_or_start_cart(
            Owner.account(command.account_id),
            current_storefront().default_shipping_method,
        )
        merged = account_cart.merge_from(guest_cart)

        repo = current_domain.repository_for(ShoppingCart)
        repo.add(account_cart)
        repo.add(guest_cart)

        logger.info(
            "Guest cart merged",
            cart_id=str(account_cart.id),
            source_cart_id=str(guest_cart.id),
            lines_merged=merged,
        )
        return merged
