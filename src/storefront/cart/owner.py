"""Cart ownership: who a cart belongs to, and finding that owner's active cart.

An owner has at most one active cart; it is started on the first write.
"""

from dataclasses import dataclass
from enum import Enum

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from storefront.cart.cart import CartStatus, ShoppingCart

logger = structlog.get_logger(__name__)


class OwnerKind(Enum):
    GUEST = "guest"
    ACCOUNT = "account"


@dataclass(frozen=True)
class Owner:
    """Who a cart or order belongs to, as reported by the auth layer."""

    kind: OwnerKind
    id: str

    @classmethod
    def guest(cls, session_id):
        return cls(kind=OwnerKind.GUEST, id=str(session_id))

    @classmethod
    def account(cls, account_id):
        return cls(kind=OwnerKind.ACCOUNT, id=str(account_id))

    @property
    def is_guest(self):
        return self.kind == OwnerKind.GUEST

    @property
    def lock_key(self):
        return f"cart:{self.kind.value}:{self.id}"

    def as_fields(self):
        """Owner as the ``account_id``/``session_id`` pair commands carry."""
        if self.is_guest:
            return {"account_id": None, "session_id": self.id}
        return {"account_id": self.id, "session_id": None}


def owner_of(command) -> Owner:
    if command.account_id:
        return Owner.account(command.account_id)
    if command.session_id:
        return Owner.guest(command.session_id)
    raise ValidationError({"owner": ["An account id or a session id is required"]})


def find_active_cart(owner: Owner) -> ShoppingCart | None:
    repo = current_domain.repository_for(ShoppingCart)
    criteria = {"session_id": owner.id} if owner.is_guest else {"account_id": owner.id}
    matches = repo._dao.query.filter(status=CartStatus.ACTIVE.value, **criteria).all().items
    if not matches:
        return None
    return repo.get(matches[0].id)


def find_or_start_cart(owner: Owner, shipping_method=None) -> ShoppingCart:
    """The owner's active cart, or a new unsaved one."""
    cart = find_active_cart(owner)
    if cart is None:
        cart = ShoppingCart.create(shipping_method=shipping_method, **owner.as_fields())
        logger.info("Cart started", cart_id=str(cart.id), owner_kind=owner.kind.value)
    return cart


def require_cart(owner: Owner) -> ShoppingCart:
    cart = find_active_cart(owner)
    if cart is None:
        raise ValidationError({"cart": ["No active cart for this shopper"]})
    return cart
