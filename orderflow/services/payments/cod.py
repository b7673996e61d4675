# orderflow/services/payments/cod.py
import time
from decimal import Decimal

from orderflow.domain.enums import PaymentMethod
from orderflow.domain.errors import ValidationError
from orderflow.services.payments.base import CallbackResult, PaymentHandle, PaymentProvider, RefundOutcome
from orderflow.utils.logging import get_logger

logger = get_logger(__name__)


def _millis() -> int:
    return int(time.time() * 1000)


class CashOnDeliveryProvider(PaymentProvider):
    """Money changes hands at the door, so there is nothing remote to call."""

    method = PaymentMethod.COD
    name = "cod"

    def create_payment(self, order_id: str, amount: Decimal, metadata: dict | None = None) -> PaymentHandle:
        reference = f"COD-{order_id}-{_millis()}"
        logger.info(f"COD payment {reference} for order {order_id}, amount {amount}")
        return PaymentHandle(
            transaction_id=reference,
            payment_url=None,
            gateway_response={"note": "collected on delivery", "amount": str(amount)},
        )

    def verify_callback(self, payload: dict, headers: dict | None = None) -> CallbackResult:
        # cash is confirmed by staff through confirm_cod_payment, never by a callback
        raise ValidationError("Cash on delivery has no gateway callbacks")

    def process_refund(self, transaction_id: str, amount: Decimal, reason: str | None = None,
                       metadata: dict | None = None) -> RefundOutcome:
        reference = f"REFUND-{transaction_id}-{_millis()}"
        logger.info(f"COD refund {reference} recorded, cash to be returned manually")
        return RefundOutcome(
            success=True,
            refund_transaction_id=reference,
            amount=amount,
            message="Cash refund recorded, manual hand-back required",
            gateway_response={"original_transaction_id": transaction_id, "reason": reason, "manual": True},
        )
