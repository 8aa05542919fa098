"""FastAPI routes for the Storefront: cart, checkout, orders and maintenance.

Shopper identity comes from the auth layer as headers: ``X-Account-Id`` for a
signed-in account, ``X-Session-Id`` for a guest. ``X-Role: staff`` unlocks the
back-office operations.
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from storefront.api.schemas import (
    AddCartLineRequest,
    AddressSchema,
    CancelOrderRequest,
    CartLineAddedResponse,
    CartLineSchema,
    CartResponse,
    CheckoutRequestSchema,
    CustomerSchema,
    ExpireReservationsRequest,
    ExpireReservationsResponse,
    MergeCartRequest,
    MergeCartResponse,
    OrderLineSchema,
    OrderListResponse,
    OrderResponse,
    OrderStatusValue,
    OrderSummarySchema,
    PaymentSignalRequest,
    PaymentSummarySchema,
    PlacementResponse,
    PricingSchema,
    SelectShippingMethodRequest,
    UpdateCartLineRequest,
    UpdateOrderRequest,
)
from storefront.cart.management import (
    AddCartLine,
    ClearCart,
    MergeGuestCart,
    RemoveCartLine,
    SelectShippingMethod,
    SetCartLineQuantity,
)
from storefront.cart.owner import Owner, find_active_cart
from storefront.checkout.factory import PlaceOrder, quote
from storefront.order.expiry import expire_unpaid_orders
from storefront.order.lifecycle import CancelOrder, ConfirmPayment, UpdateOrder
from storefront.order.order import Actor
from storefront.order.queries import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, get_order, list_orders
from storefront.promotion.promotion import CODE_MAX_LENGTH

STAFF_ROLES = {"staff", "admin"}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def optional_owner(
    x_account_id: str | None = Header(default=None),
    x_session_id: str | None = Header(default=None),
) -> Owner | None:
    if x_account_id:
        return Owner.account(x_account_id)
    if x_session_id:
        return Owner.guest(x_session_id)
    return None


def current_owner(owner: Owner | None = Depends(optional_owner)) -> Owner:
    if owner is None:
        raise HTTPException(status_code=401, detail="X-Account-Id or X-Session-Id header is required")
    return owner


def is_staff(x_role: str | None = Header(default=None)) -> bool:
    return (x_role or "").strip().lower() in STAFF_ROLES


def require_staff(staff: bool = Depends(is_staff)) -> None:
    if not staff:
        raise HTTPException(status_code=403, detail="Staff role required")


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def _cart_response(cart, owner: Owner) -> CartResponse:
    if cart is None:
        return CartResponse(owner_kind=owner.kind.value)
    return CartResponse(
        id=str(cart.id),
        owner_kind=owner.kind.value,
        status=cart.status,
        selected_shipping_method=cart.selected_shipping_method,
        lines=[
            CartLineSchema(
                id=str(line.id),
                product_ref=line.product_ref,
                sku=line.sku,
                title=line.title,
                unit_price=line.unit_price,
                currency=line.currency,
                quantity=line.quantity,
                line_total=line.line_total.amount,
                stock_hint_at_add=line.stock_hint_at_add,
            )
            for line in cart.lines
        ],
    )


def _address(address):
    if address is None:
        return None
    return AddressSchema(
        line1=address.line1,
        line2=address.line2,
        city=address.city,
        state=address.state,
        postal_code=address.postal_code,
        country=address.country,
    )


def _order_response(order) -> OrderResponse:
    payment = order.payment
    return OrderResponse(
        id=str(order.id),
        code=order.code,
        status=order.status,
        account_id=str(order.account_id) if order.account_id else None,
        session_id=order.session_id,
        customer=CustomerSchema(
            full_name=order.customer.full_name,
            email=order.customer.email,
            phone=order.customer.phone,
            tax_code=order.customer.tax_code,
        ),
        shipping_address=_address(order.shipping_address),
        billing_address=_address(order.billing_address),
        lines=[
            OrderLineSchema(
                id=str(line.id),
                product_ref=line.product_ref,
                sku=line.sku,
                title=line.title,
                unit_price=line.unit_price,
                currency=line.currency,
                quantity=line.quantity,
                line_total=line.line_total.amount,
            )
            for line in order.lines
        ],
        pricing=PricingSchema(**order.pricing.to_dict()),
        payment=PaymentSummarySchema(
            payment_type=payment.payment_type,
            method=payment.method,
            paid_amount=payment.paid_amount or 0,
            reference=payment.reference,
            paid_at=payment.paid_at,
        )
        if payment
        else None,
        shipping_method=order.shipping_method,
        note=order.note,
        reservation_expires_at=order.reservation_expires_at,
        cancellation_reason=order.cancellation_reason,
        cancelled_by=order.cancelled_by,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def _order_summary(order) -> OrderSummarySchema:
    return OrderSummarySchema(
        id=str(order.id),
        code=order.code,
        status=order.status,
        customer_name=order.customer.full_name if order.customer else None,
        grand_total=order.pricing.grand_total,
        currency=order.pricing.currency,
        created_at=order.created_at,
    )


# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/cart", tags=["cart"])


@cart_router.get("", response_model=CartResponse)
async def get_cart(owner: Owner = Depends(current_owner)) -> CartResponse:
    return _cart_response(find_active_cart(owner), owner)


@cart_router.post("/lines", status_code=201, response_model=CartLineAddedResponse)
async def add_cart_line(body: AddCartLineRequest, owner: Owner = Depends(current_owner)) -> CartLineAddedResponse:
    line_id = current_domain.process(
        AddCartLine(product_ref=body.product_ref, quantity=body.quantity, **owner.as_fields()),
        asynchronous=False,
    )
    return CartLineAddedResponse(line_id=line_id, cart=_cart_response(find_active_cart(owner), owner))


@cart_router.patch("/lines/{line_id}", response_model=CartResponse)
async def update_cart_line(
    line_id: str,
    body: UpdateCartLineRequest,
    owner: Owner = Depends(current_owner),
) -> CartResponse:
    current_domain.process(
        SetCartLineQuantity(line_id=line_id, quantity=body.quantity, **owner.as_fields()),
        asynchronous=False,
    )
    return _cart_response(find_active_cart(owner), owner)


@cart_router.delete("/lines/{line_id}", response_model=CartResponse)
async def remove_cart_line(line_id: str, owner: Owner = Depends(current_owner)) -> CartResponse:
    current_domain.process(RemoveCartLine(line_id=line_id, **owner.as_fields()), asynchronous=False)
    return _cart_response(find_active_cart(owner), owner)


@cart_router.delete("", response_model=CartResponse)
async def clear_cart(owner: Owner = Depends(current_owner)) -> CartResponse:
    current_domain.process(ClearCart(**owner.as_fields()), asynchronous=False)
    return _cart_response(find_active_cart(owner), owner)


@cart_router.put("/shipping-method", response_model=CartResponse)
async def select_shipping_method(
    body: SelectShippingMethodRequest,
    owner: Owner = Depends(current_owner),
) -> CartResponse:
    current_domain.process(
        SelectShippingMethod(shipping_method=body.shipping_method, **owner.as_fields()),
        asynchronous=False,
    )
    return _cart_response(find_active_cart(owner), owner)


@cart_router.post("/merge", response_model=MergeCartResponse)
async def merge_guest_cart(body: MergeCartRequest, owner: Owner = Depends(current_owner)) -> MergeCartResponse:
    """Fold the guest session's cart into the signed-in account's cart."""
    if owner.is_guest:
        raise ValidationError({"owner": ["Sign in to merge a guest cart"]})
    merged = current_domain.process(
        MergeGuestCart(account_id=owner.id, session_id=body.session_id),
        asynchronous=False,
    )
    cart = find_active_cart(owner)
    return MergeCartResponse(lines_merged=merged, cart=_cart_response(cart, owner) if cart else None)


@cart_router.get("/quote", response_model=PricingSchema)
async def quote_cart(
    promotion_code: str | None = Query(default=None, max_length=CODE_MAX_LENGTH),
    shipping_method: str | None = None,
    line_ids: list[str] = Query(default=[]),
    owner: Owner = Depends(current_owner),
) -> PricingSchema:
    pricing = quote(owner, promotion_code, shipping_method, line_ids)
    return PricingSchema(**pricing.to_dict())


# ---------------------------------------------------------------------------
# Checkout Router
# ---------------------------------------------------------------------------
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])


@checkout_router.post("", status_code=201, response_model=PlacementResponse)
async def checkout(body: CheckoutRequestSchema, owner: Owner = Depends(current_owner)) -> PlacementResponse:
    """Place an order from the cart.

    1. Price the selected lines
    2. Reserve stock for all of them (409 naming the product otherwise)
    3. Persist the order and remove the lines from the cart
    """
    command = PlaceOrder(
        customer=body.customer.model_dump(),
        shipping_address=body.shipping_address.model_dump(),
        billing_address=body.billing_address.model_dump() if body.billing_address else None,
        payment_type=body.payment.type,
        payment_method=getattr(body.payment, "method", None),
        promotion_code=body.promotion_code,
        shipping_method=body.shipping_method,
        line_ids=list(body.line_ids),
        note=body.note,
        **owner.as_fields(),
    )
    result = current_domain.process(command, asynchronous=False)
    return PlacementResponse(order=_order_response(result.order), promotion_warning=result.promotion_warning)


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("", response_model=OrderListResponse)
async def list_orders_endpoint(
    status: OrderStatusValue | None = None,
    q: str | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    staff: bool = Depends(is_staff),
    owner: Owner | None = Depends(optional_owner),
) -> OrderListResponse:
    """Staff see every order; shoppers see their own."""
    if not staff and owner is None:
        raise HTTPException(status_code=401, detail="X-Account-Id or X-Session-Id header is required")
    orders, total = list_orders(
        status=status,
        search=q,
        page=page,
        page_size=page_size,
        owner=None if staff else owner,
    )
    return OrderListResponse(
        items=[_order_summary(order) for order in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order_endpoint(
    order_id: str,
    staff: bool = Depends(is_staff),
    owner: Owner | None = Depends(optional_owner),
) -> OrderResponse:
    if not staff and owner is None:
        raise HTTPException(status_code=401, detail="X-Account-Id or X-Session-Id header is required")
    return _order_response(get_order(order_id, owner=None if staff else owner))


@order_router.patch("/{order_id}", response_model=OrderResponse, dependencies=[Depends(require_staff)])
async def update_order(order_id: str, body: UpdateOrderRequest) -> OrderResponse:
    current_domain.process(
        UpdateOrder(
            order_id=order_id,
            status=body.status,
            note=body.note,
            shipping_method=body.shipping_method,
            reason=body.reason,
            actor=Actor.STAFF.value,
        ),
        asynchronous=False,
    )
    return _order_response(get_order(order_id))


@order_router.post("/{order_id}/payment", response_model=OrderResponse, dependencies=[Depends(require_staff)])
async def confirm_payment(order_id: str, body: PaymentSignalRequest) -> OrderResponse:
    current_domain.process(
        ConfirmPayment(order_id=order_id, amount=body.amount, reference=body.reference, method=body.method),
        asynchronous=False,
    )
    return _order_response(get_order(order_id))


@order_router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    body: CancelOrderRequest,
    staff: bool = Depends(is_staff),
    owner: Owner | None = Depends(optional_owner),
) -> OrderResponse:
    if staff:
        actor = Actor.STAFF
    elif owner is not None:
        get_order(order_id, owner=owner)
        actor = Actor.CUSTOMER
    else:
        raise HTTPException(status_code=401, detail="X-Account-Id or X-Session-Id header is required")
    current_domain.process(CancelOrder(order_id=order_id, reason=body.reason, actor=actor.value), asynchronous=False)
    return _order_response(get_order(order_id))


# ---------------------------------------------------------------------------
# Maintenance Router
# ---------------------------------------------------------------------------
maintenance_router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@maintenance_router.post(
    "/expire-reservations",
    response_model=ExpireReservationsResponse,
    dependencies=[Depends(require_staff)],
)
async def expire_reservations(body: ExpireReservationsRequest) -> ExpireReservationsResponse:
    """Cancel pending orders whose stock reservations expired; safe to call on any cadence."""
    return ExpireReservationsResponse(cancelled=expire_unpaid_orders(body.as_of))
