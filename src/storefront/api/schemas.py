"""Pydantic request/response schemas for the Storefront API.

These are external contracts (anti-corruption layer): request bodies are
validated here, before anything reaches the cart, checkout or lifecycle
services.
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from storefront.order.order import NOTE_MAX_LENGTH, SHIPPING_METHOD_MAX_LENGTH

OrderStatusValue = Literal["pending", "paid", "processing", "shipped", "delivered", "cancelled"]


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    line1: str = Field(min_length=1, max_length=255)
    line2: str | None = Field(default=None, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    postal_code: str | None = Field(default=None, max_length=20)
    country: str = Field(default="VN", min_length=2, max_length=2)


class CustomerSchema(BaseModel):
    full_name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=254)
    phone: str = Field(min_length=6, max_length=30)
    tax_code: str | None = Field(default=None, max_length=50)


class PricingSchema(BaseModel):
    subtotal: int
    discount_total: int
    tax_total: int
    shipping_fee: int
    grand_total: int
    currency: str
    shipping_method: str | None = None
    applied_promotion_code: str | None = None
    promotion_warning: str | None = None


# ---------------------------------------------------------------------------
# Cart Schemas
# ---------------------------------------------------------------------------
class AddCartLineRequest(BaseModel):
    product_ref: str = Field(min_length=1, max_length=100)
    quantity: int = Field(ge=1, default=1)

    model_config = {"json_schema_extra": {"examples": [{"product_ref": "prod-001", "quantity": 2}]}}


class UpdateCartLineRequest(BaseModel):
    quantity: int = Field(ge=1)


class SelectShippingMethodRequest(BaseModel):
    shipping_method: str = Field(min_length=1, max_length=SHIPPING_METHOD_MAX_LENGTH)


class MergeCartRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=255)


class CartLineSchema(BaseModel):
    id: str
    product_ref: str
    sku: str
    title: str | None = None
    unit_price: int
    currency: str
    quantity: int
    line_total: int
    stock_hint_at_add: int | None = None


class CartResponse(BaseModel):
    id: str | None = None
    owner_kind: str
    status: str | None = None
    selected_shipping_method: str | None = None
    lines: list[CartLineSchema] = []


class CartLineAddedResponse(BaseModel):
    line_id: str
    cart: CartResponse


class MergeCartResponse(BaseModel):
    lines_merged: int
    cart: CartResponse | None = None


# ---------------------------------------------------------------------------
# Checkout Schemas
# ---------------------------------------------------------------------------
class CodPayment(BaseModel):
    type: Literal["cod"]


class BankTransferPayment(BaseModel):
    type: Literal["bank"]


class OnlinePayment(BaseModel):
    type: Literal["online"]
    method: str = Field(min_length=1, max_length=120)


PaymentChoice = Annotated[Union[CodPayment, BankTransferPayment, OnlinePayment], Field(discriminator="type")]


class CheckoutRequestSchema(BaseModel):
    customer: CustomerSchema
    shipping_address: AddressSchema
    billing_address: AddressSchema | None = None
    payment: PaymentChoice
    promotion_code: str | None = Field(default=None, max_length=50)
    shipping_method: str | None = Field(default=None, max_length=SHIPPING_METHOD_MAX_LENGTH)
    line_ids: list[str] = []
    note: str | None = Field(default=None, max_length=NOTE_MAX_LENGTH)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer": {
                        "full_name": "Nguyen Van A",
                        "email": "a@example.com",
                        "phone": "+84901234567",
                    },
                    "shipping_address": {
                        "line1": "12 Nguyen Hue",
                        "city": "Ho Chi Minh City",
                        "country": "VN",
                    },
                    "payment": {"type": "bank"},
                    "promotion_code": "GIAM10",
                    "shipping_method": "standard",
                }
            ]
        }
    }


# ---------------------------------------------------------------------------
# Order Schemas
# ---------------------------------------------------------------------------
class OrderLineSchema(BaseModel):
    id: str
    product_ref: str
    sku: str
    title: str | None = None
    unit_price: int
    currency: str
    quantity: int
    line_total: int


class PaymentSummarySchema(BaseModel):
    payment_type: str
    method: str | None = None
    paid_amount: int = 0
    reference: str | None = None
    paid_at: datetime | None = None


class OrderResponse(BaseModel):
    id: str
    code: str
    status: OrderStatusValue
    account_id: str | None = None
    session_id: str | None = None
    customer: CustomerSchema
    shipping_address: AddressSchema
    billing_address: AddressSchema | None = None
    lines: list[OrderLineSchema]
    pricing: PricingSchema
    payment: PaymentSummarySchema | None = None
    shipping_method: str | None = None
    note: str | None = None
    reservation_expires_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PlacementResponse(BaseModel):
    order: OrderResponse
    promotion_warning: str | None = None


class OrderSummarySchema(BaseModel):
    id: str
    code: str
    status: OrderStatusValue
    customer_name: str | None = None
    grand_total: int
    currency: str
    created_at: datetime | None = None


class OrderListResponse(BaseModel):
    items: list[OrderSummarySchema]
    total: int
    page: int
    page_size: int


class UpdateOrderRequest(BaseModel):
    status: OrderStatusValue | None = None
    note: str | None = Field(default=None, max_length=NOTE_MAX_LENGTH)
    shipping_method: str | None = Field(default=None, max_length=SHIPPING_METHOD_MAX_LENGTH)
    reason: str | None = Field(default=None, max_length=500)


class PaymentSignalRequest(BaseModel):
    amount: int | None = Field(default=None, ge=0)
    reference: str | None = Field(default=None, max_length=255)
    method: str | None = Field(default=None, max_length=120)


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Maintenance Schemas
# ---------------------------------------------------------------------------
class ExpireReservationsRequest(BaseModel):
    as_of: datetime | None = None


class ExpireReservationsResponse(BaseModel):
    cancelled: int
