"""Domain events for the ShoppingCart aggregate."""

from protean.fields import Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="ShoppingCart")
class CartLineAdded:
    """A product was added to the cart, or its quantity increased."""

    __version__ = 1

    cart_id = Identifier(required=True)
    line_id = Identifier(required=True)
    product_ref = String(required=True)
    quantity_added = Integer(required=True)
    new_quantity = Integer(required=True)
    unit_price = Integer(required=True)
    currency = String(required=True)


@storefront.event(part_of="ShoppingCart")
class CartLineQuantityChanged:
    """The quantity of a cart line was set explicitly."""

    __version__ = 1

    cart_id = Identifier(required=True)
    line_id = Identifier(required=True)
    previous_quantity = Integer(required=True)
    new_quantity = Integer(required=True)


@storefront.event(part_of="ShoppingCart")
class CartLineRemoved:
    """A line was removed from the cart."""

    __version__ = 1

    cart_id = Identifier(required=True)
    line_id = Identifier(required=True)
    product_ref = String(required=True)


@storefront.event(part_of="ShoppingCart")
class CartCleared:
    """Every line was removed from the cart."""

    __version__ = 1

    cart_id = Identifier(required=True)
    lines_removed = Integer(required=True)


@storefront.event(part_of="ShoppingCart")
class CartsMerged:
    """A guest cart's lines were folded into an account cart on login."""

    __version__ = 1

    cart_id = Identifier(required=True)
    source_cart_id = Identifier(required=True)
    source_session_id = String()
    lines_merged = Integer(required=True)


@storefront.event(part_of="ShoppingCart")
class CartCheckedOut:
    """Lines of the cart were turned into an order."""

    __version__ = 1

    cart_id = Identifier(required=True)
    order_id = Identifier(required=True)
    lines_checked_out = Integer(required=True)
    lines_remaining = Integer(required=True)
