# orderflow/services/payments/base.py
"""Payment provider port.

Every settlement mechanism (cash on delivery, signed redirect gateway, two-phase
capture gateway) implements the same three operations, so the order and payment
services never branch on which gateway they are talking to.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from orderflow.domain.enums import PaymentMethod, TransactionStatus
from orderflow.domain.errors import ValidationError


@dataclass(frozen=True)
class PaymentHandle:
    """What the buyer needs to pay: a gateway reference and, for gateways, a URL to visit."""

    transaction_id: str
    payment_url: str | None = None
    gateway_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CallbackResult:
    """A verified payment outcome reported by the gateway."""

    order_id: str
    transaction_id: str
    amount: Decimal
    status: TransactionStatus
    gateway_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RefundOutcome:
    success: bool
    refund_transaction_id: str
    amount: Decimal
    message: str | None = None
    gateway_response: dict[str, Any] = field(default_factory=dict)


class PaymentProvider(ABC):
    method: PaymentMethod
    name: str

    @abstractmethod
    def create_payment(self, order_id: str, amount: Decimal, metadata: dict | None = None) -> PaymentHandle:
        """Ask the gateway for a payment handle. Raises ProviderError when the gateway fails."""

    @abstractmethod
    def verify_callback(self, payload: dict, headers: dict | None = None) -> CallbackResult:
        """Authenticate a callback and extract its outcome. Raises SignatureInvalid on a bad signature."""

    @abstractmethod
    def process_refund(self, transaction_id: str, amount: Decimal, reason: str | None = None,
                       metadata: dict | None = None) -> RefundOutcome:
        ...

    def capture(self, reference: str) -> CallbackResult:
        """Second phase of two-phase gateways; single-phase providers have nothing to capture."""
        raise ValidationError(f"{self.name} payments cannot be captured")
