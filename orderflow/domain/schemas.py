# orderflow/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Any, List

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from orderflow.domain.enums import PaymentMethod
from orderflow.utils.settings import MAX_LINE_QUANTITY


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- cart ---------------------------------------------------------------------------------
class CartItemIn(ApiModel):
    variant_id: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., gt=0, le=MAX_LINE_QUANTITY)


class CartItemUpdate(ApiModel):
    quantity: int = Field(..., ge=0, le=MAX_LINE_QUANTITY, description="0 removes the line")


class CartMergeIn(ApiModel):
    session_id: str = Field(..., min_length=1, max_length=128, description="Guest session being merged")


class CartLineOut(ApiModel):
    variant_id: str
    quantity: int
    snapshot_price: Decimal
    line_total: Decimal


class PriceChangeOut(ApiModel):
    variant_id: str
    sku: str
    old_price: Decimal
    new_price: Decimal


class CartOut(ApiModel):
    cart_id: int | None = None
    owner: str
    items: List[CartLineOut]
    item_count: int
    sub_total: Decimal
    changes: List[PriceChangeOut] | None = None


class ReviewLineOut(ApiModel):
    variant_id: str
    sku: str
    name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class CartReviewOut(ApiModel):
    cart_id: int
    owner: str
    items: List[ReviewLineOut]
    sub_total: Decimal


# --- checkout / orders ------------------------------------------------------------------------
class CheckoutIn(ApiModel):
    guest_email: EmailStr | None = None
    shipping_address: dict[str, Any]
    billing_address: dict[str, Any] | None = None
    payment_method: PaymentMethod
    shipping_method_id: str | None = None
    note: str | None = Field(None, max_length=1000)
    return_url: str | None = None
    cancel_url: str | None = None
    expected_total: Decimal | None = Field(None, ge=0, description="Total the buyer accepted; a mismatch aborts")


class OrderSummaryOut(ApiModel):
    id: str
    code: str
    status: str
    payment_status: str
    payment_deadline: datetime | None = None
    total_amount: Decimal
    currency: str
    created_at: datetime


class PaymentDescriptorOut(ApiModel):
    id: int | None = None
    payment_url: str | None = None
    transaction_code: str | None = None
    provider: str | None = None
    status: str


class CheckoutOut(ApiModel):
    order: OrderSummaryOut
    payment: PaymentDescriptorOut
    flow_status: str
    message: str


class OrderItemOut(ApiModel):
    variant_id: str
    product_name: str
    sku: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal


class TransactionOut(ApiModel):
    id: int
    transaction_code: str
    type: str
    status: str
    provider: str
    provider_transaction_id: str | None = None
    amount: Decimal
    currency: str
    created_at: datetime


class TimelineEntryOut(ApiModel):
    action: str
    from_status: str | None = None
    to_status: str | None = None
    actor_type: str
    description: str | None = None
    created_at: datetime


class OrderDetailOut(OrderSummaryOut):
    payment_method: str
    sub_total: Decimal
    shipping_fee: Decimal
    guest_email: str | None = None
    shipping_address: dict[str, Any]
    billing_address: dict[str, Any]
    shipping_method_id: str | None = None
    note: str | None = None
    cancel_reason: str | None = None
    items: List[OrderItemOut]
    transactions: List[TransactionOut]
    timeline: List[TimelineEntryOut]


class OrderStatusOut(ApiModel):
    id: str
    code: str
    status: str
    payment_status: str
    payment_deadline: datetime | None = None
    remaining_seconds: int | None = None
    can_pay: bool
    can_cancel: bool


class CancelIn(ApiModel):
    reason: str | None = Field(None, max_length=255)


class OrderTransitionOut(ApiModel):
    order_id: str
    code: str
    status: str
    changed: bool


class PayAgainIn(ApiModel):
    return_url: str | None = None
    cancel_url: str | None = None


class PaymentHandleOut(ApiModel):
    id: int | None = None
    order_id: str
    provider: str
    transaction_id: str
    transaction_code: str | None = None
    payment_url: str | None = None
    status: str


# --- payments ---------------------------------------------------------------------------------
class CallbackOut(ApiModel):
    order_id: str
    order_code: str
    status: str
    payment_status: str
    transaction_id: str
    outcome: str
    processed: bool
    note: str | None = None


class RefundIn(ApiModel):
    amount: Decimal | None = Field(None, gt=0)
    reason: str | None = Field(None, max_length=255)
    restore_inventory: bool | None = None


class RefundOut(OrderTransitionOut):
    refund_transaction_id: str | None = None
    amount: Decimal | None = None


class CodConfirmIn(ApiModel):
    confirmed_by: str | None = Field(None, max_length=64)
    note: str | None = Field(None, max_length=255)


class CodConfirmOut(OrderTransitionOut):
    payment_status: str


class PaymentStatusOut(ApiModel):
    order_id: str
    order_code: str
    payment_status: str
    total_amount: Decimal
    currency: str
    transactions: List[TransactionOut]


# --- inventory --------------------------------------------------------------------------------
class InventoryLevelsOut(ApiModel):
    variant_id: str
    on_hand: int
    reserved: int
    available: int


class InventoryAdjustIn(ApiModel):
    delta: int = Field(..., description="Positive restocks, negative corrects downwards")
    reason: str = Field(..., min_length=1, max_length=255)
    warehouse_id: str | None = None
