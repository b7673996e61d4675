# orderflow/services/payments/__init__.py
from orderflow.domain.enums import PaymentMethod
from orderflow.services.payments.base import CallbackResult, PaymentHandle, PaymentProvider, RefundOutcome
from orderflow.services.payments.cod import CashOnDeliveryProvider
from orderflow.services.payments.paypal import PaypalProvider
from orderflow.services.payments.vnpay import VnpayProvider


def default_providers() -> dict[PaymentMethod, PaymentProvider]:
    providers = [CashOnDeliveryProvider(), VnpayProvider(), PaypalProvider()]
    return {p.method: p for p in providers}


__all__ = [
    "CallbackResult",
    "CashOnDeliveryProvider",
    "PaymentHandle",
    "PaymentProvider",
    "PaypalProvider",
    "RefundOutcome",
    "VnpayProvider",
    "default_providers",
]
