"""
Commerce Models
===============
Pydantic models for the product feed, checkout sessions, orders and payments.

All money amounts are integers in minor currency units (cents for "usd").
Field names follow the Agentic Commerce Protocol wire format so a session can
be returned verbatim from HTTP endpoints and from agent tools.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field


# ── Product feed ────────────────────────────────────────────────────────────

class Product(BaseModel):
    id: str
    name: str
    description: str
    price: int = Field(..., ge=0, description="Unit price in minor units")
    currency: str
    image_url: str | None = None
    category: str | None = None


class ProductFeedResponse(BaseModel):
    products: list[Product]
    total: int


# ── Checkout session ────────────────────────────────────────────────────────

class CheckoutStatus(str, Enum):
    NOT_READY_FOR_PAYMENT = "not_ready_for_payment"
    READY_FOR_PAYMENT     = "ready_for_payment"
    COMPLETED             = "completed"
    CANCELED              = "canceled"
    IN_PROGRESS           = "in_progress"


# Statuses from which no further mutation is allowed.
TERMINAL_STATUSES: frozenset[CheckoutStatus] = frozenset({
    CheckoutStatus.COMPLETED,
    CheckoutStatus.CANCELED,
})


class Buyer(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone_number: str | None = None


class FulfillmentAddress(BaseModel):
    name: str | None = None
    line_one: str = Field(..., validation_alias=AliasChoices("line_one", "line1"))
    line_two: str | None = Field(None, validation_alias=AliasChoices("line_two", "line2"))
    city: str
    state: str
    country: str
    postal_code: str


class CartItem(BaseModel):
    """A product reference in a create request. Accepts `id` as an alias."""
    product_id: str = Field(..., validation_alias=AliasChoices("product_id", "id"))
    quantity: int = 1


class LineItem(BaseModel):
    id: str
    product_id: str
    quantity: int
    base_amount: int
    discount: int = 0
    subtotal: int
    tax: int = 0
    total: int


class FulfillmentOption(BaseModel):
    id: str
    name: str
    amount: int
    description: str | None = None


class TotalItem(BaseModel):
    label: str
    amount: int


class PaymentProviderInfo(BaseModel):
    provider: str = "stripe"
    supported_payment_methods: list[str] = Field(default_factory=lambda: ["card"])


class CheckoutSession(BaseModel):
    id: str
    status: CheckoutStatus = CheckoutStatus.NOT_READY_FOR_PAYMENT
    currency: str
    line_items: list[LineItem]
    buyer: Buyer | None = None
    payment_provider: PaymentProviderInfo = Field(default_factory=PaymentProviderInfo)
    fulfillment_address: FulfillmentAddress | None = None
    fulfillment_options: list[FulfillmentOption]
    fulfillment_option_id: str | None = None
    totals: list[TotalItem]
    messages: list[str] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)

    def total(self, label: str) -> int:
        """Return the amount of the totals entry with `label` (0 if absent)."""
        for item in self.totals:
            if item.label == label:
                return item.amount
        return 0


class CreateCheckoutRequest(BaseModel):
    items: list[CartItem] = Field(..., min_length=1)
    buyer: Buyer | None = None
    fulfillment_address: FulfillmentAddress | None = None


class UpdateCheckoutRequest(BaseModel):
    buyer: Buyer | None = None
    fulfillment_address: FulfillmentAddress | None = None
    fulfillment_option_id: str | None = None


# ── Orders & payments ───────────────────────────────────────────────────────

class Order(BaseModel):
    id: str
    checkout_id: str
    payment_reference: str
    status: Literal["completed"] = "completed"
    total_amount: int
    currency: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CompleteCheckoutResponse(BaseModel):
    checkout: CheckoutSession
    order: Order


class PaymentData(BaseModel):
    token: str = Field(..., min_length=1, description="PaymentIntent id or SharedPaymentToken")
    provider: str = "stripe"


class CompleteCheckoutRequest(BaseModel):
    payment_data: PaymentData


class PaymentStatus(BaseModel):
    """What the payment provider reports for a payment reference."""
    reference: str
    status: str
    amount: int
    currency: str
