# orderflow/data/models/payment.py
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from orderflow.data.database import Base
from orderflow.domain.enums import TransactionStatus, TransactionType


def _now():
    return datetime.now(timezone.utc)


class PaymentTransactionModel(Base):
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)

    type = Column(String(16), nullable=False, default=TransactionType.PAYMENT.value)
    status = Column(String(16), nullable=False, default=TransactionStatus.PENDING.value)
    provider = Column(String(32), nullable=False)

    transaction_code = Column(String(32), nullable=False, unique=True)
    # reference issued by the gateway (txn ref, gateway order id, refund id)
    provider_transaction_id = Column(String(128), nullable=True, index=True)

    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(8), nullable=False)
    gateway_response = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    order = relationship("OrderModel", back_populates="transactions")

    @property
    def settlement_reference(self) -> str | None:
        """Identifier the gateway expects when refunding this payment."""
        response = self.gateway_response or {}
        return response.get("settlement_id") or self.provider_transaction_id
