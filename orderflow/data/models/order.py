# orderflow/data/models/order.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from orderflow.data.database import Base
from orderflow.domain.enums import OrderStatus, PaymentStatus


def _now():
    return datetime.now(timezone.utc)


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    code = Column(String(32), nullable=False, unique=True)

    user_id = Column(String(64), nullable=True, index=True)
    session_id = Column(String(128), nullable=True, index=True)
    guest_email = Column(String(255), nullable=True)

    status = Column(String(32), nullable=False, default=OrderStatus.PENDING_PAYMENT.value, index=True)
    payment_status = Column(String(16), nullable=False, default=PaymentStatus.UNPAID.value)
    payment_method = Column(String(32), nullable=False)
    # NULL means the order never times out (cash on delivery)
    payment_deadline = Column(DateTime(timezone=True), nullable=True, index=True)

    currency = Column(String(8), nullable=False)
    sub_total = Column(Numeric(14, 2), nullable=False)
    shipping_fee = Column(Numeric(14, 2), nullable=False)
    total_amount = Column(Numeric(14, 2), nullable=False)

    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=False)
    shipping_method_id = Column(String(64), nullable=True)
    note = Column(Text, nullable=True)

    reservation_id = Column(String(36), ForeignKey("reservations.id"), nullable=True)
    cancel_reason = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.id",
    )
    transactions = relationship(
        "PaymentTransactionModel",
        back_populates="order",
        order_by="PaymentTransactionModel.id",
    )
    timeline = relationship(
        "OrderTimelineModel",
        back_populates="order",
        order_by="OrderTimelineModel.id",
    )
    reservation = relationship("ReservationModel")


class OrderItemModel(Base):
    """Immutable snapshot of a purchased line at checkout time."""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)

    variant_id = Column(String(64), nullable=False)
    product_name = Column(String(255), nullable=False)
    sku = Column(String(64), nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    line_total = Column(Numeric(14, 2), nullable=False)

    order = relationship("OrderModel", back_populates="items")
