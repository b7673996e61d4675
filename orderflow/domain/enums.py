# orderflow/domain/enums.py
from enum import Enum


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    """Provider identifier; selects the provider implementation at call sites."""

    COD = "COD"
    GATEWAY_REDIRECT = "GATEWAY_REDIRECT"
    GATEWAY_CAPTURE = "GATEWAY_CAPTURE"

    @property
    def settles_immediately(self) -> bool:
        return self is PaymentMethod.COD


class TransactionType(str, Enum):
    PAYMENT = "payment"
    REFUND = "refund"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    CONFIRMED = "confirmed"
    RELEASED = "released"
    EXPIRED = "expired"


class MovementAction(str, Enum):
    SALE = "sale"
    RETURN = "return"
    RESERVATION = "reservation"
    RESERVATION_RELEASE = "reservation_release"
    ADJUSTMENT = "adjustment"


class FlowStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ActorType(str, Enum):
    SYSTEM = "system"
    CUSTOMER = "customer"
    STAFF = "staff"
