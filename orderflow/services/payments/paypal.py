# orderflow/services/payments/paypal.py
import time
from decimal import ROUND_HALF_UP, Decimal

import requests

from orderflow.domain.enums import PaymentMethod, TransactionStatus
from orderflow.domain.errors import ProviderError, SignatureInvalid, ValidationError
from orderflow.services.payments.base import CallbackResult, PaymentHandle, PaymentProvider, RefundOutcome
from orderflow.utils import settings
from orderflow.utils.logging import get_logger
from orderflow.utils.retry import http_retry

logger = get_logger(__name__)

CENT = Decimal("0.01")

_CAPTURE_STATUS = {
    "COMPLETED": TransactionStatus.SUCCESS,
    "DECLINED": TransactionStatus.FAILED,
    "FAILED": TransactionStatus.FAILED,
}

_WEBHOOK_EVENTS = {
    "PAYMENT.CAPTURE.COMPLETED": TransactionStatus.SUCCESS,
    "PAYMENT.CAPTURE.DENIED": TransactionStatus.FAILED,
    "PAYMENT.CAPTURE.DECLINED": TransactionStatus.FAILED,
}

_SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PaypalProvider(PaymentProvider):
    """
    Two-phase gateway: create an order the buyer approves on the gateway's site,
    then capture it. Outcomes also arrive as webhooks, authenticated by asking
    the gateway to verify the transmission signature.
    """

    method = PaymentMethod.GATEWAY_CAPTURE
    name = "paypal"

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        base_url: str | None = None,
        webhook_id: str | None = None,
        currency: str | None = None,
        exchange_rate: Decimal | None = None,
        timeout: int = 10,
    ):
        self.client_id = client_id if client_id is not None else settings.PAYPAL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.PAYPAL_CLIENT_SECRET
        self.base_url = (base_url or settings.PAYPAL_BASE_URL).rstrip("/")
        self.webhook_id = webhook_id if webhook_id is not None else settings.PAYPAL_WEBHOOK_ID
        self.currency = currency or settings.PAYPAL_CURRENCY
        self.exchange_rate = exchange_rate or settings.PAYPAL_EXCHANGE_RATE
        self.timeout = timeout

        self._token: str | None = None
        self._token_expires_at = 0.0

        if not self.client_id or not self.client_secret:
            logger.warning("PayPal configuration is incomplete, capture payments will fail")

    # --- helpers -------------------------------------------------------------------
    def convert(self, amount: Decimal, currency: str | None = None) -> Decimal:
        """Order currency to gateway currency, two decimals."""
        amount = Decimal(amount)
        if currency and currency != self.currency:
            amount = amount / self.exchange_rate
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)

    @http_retry()
    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        return requests.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)

    def _access_token(self) -> str:
        if self._token and time.time() < self._token_expires_at:
            return self._token
        if not self.client_id or not self.client_secret:
            raise ProviderError("PayPal is not configured")
        try:
            resp = self._send(
                "POST",
                "/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
            )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise ProviderError(f"PayPal authentication failed: {e}")

        self._token = body["access_token"]
        # renew a minute early
        self._token_expires_at = time.time() + int(body.get("expires_in", 300)) - 60
        return self._token

    def _call(self, method: str, path: str, payload: dict | None = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        try:
            resp = self._send(method, path, json=payload, headers=headers)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"PayPal {method} {path} failed: {e}")
            raise ProviderError(f"PayPal request failed: {e}")

    # --- port ------------------------------------------------------------------------
    def create_payment(self, order_id: str, amount: Decimal, metadata: dict | None = None) -> PaymentHandle:
        metadata = metadata or {}
        value = self.convert(amount, metadata.get("currency"))
        return_url = metadata.get("return_url") or f"{settings.FRONTEND_URL}{settings.PAYMENT_SUCCESS_PATH}"
        cancel_url = metadata.get("cancel_url") or f"{settings.FRONTEND_URL}{settings.PAYMENT_ERROR_PATH}"

        body = self._call("POST", "/v2/checkout/orders", {
            "intent": "CAPTURE",
            "purchase_units": [{
                "reference_id": order_id,
                "custom_id": order_id,
                "description": f"Payment for order {metadata.get('order_code', order_id)}",
                "amount": {"currency_code": self.currency, "value": f"{value:.2f}"},
            }],
            "application_context": {
                "brand_name": settings.PAYPAL_BRAND_NAME,
                "user_action": "PAY_NOW",
                "return_url": return_url,
                "cancel_url": cancel_url,
            },
        })

        approve = next((link["href"] for link in body.get("links", []) if link.get("rel") == "approve"), None)
        if not approve:
            raise ProviderError("PayPal did not return an approval link")

        logger.info(f"PayPal order {body['id']} created for order {order_id}, {value} {self.currency}")
        return PaymentHandle(
            transaction_id=body["id"],
            payment_url=approve,
            gateway_response={"paypal_order_id": body["id"], "status": body.get("status"),
                              "amount": f"{value:.2f}", "currency": self.currency},
        )

    def capture(self, reference: str) -> CallbackResult:
        body = self._call("POST", f"/v2/checkout/orders/{reference}/capture", {})
        try:
            unit = body["purchase_units"][0]
            capture = unit["payments"]["captures"][0]
        except (KeyError, IndexError, TypeError):
            raise ProviderError(f"PayPal capture response for {reference} is malformed")

        order_id = unit.get("reference_id") or capture.get("custom_id")
        status = _CAPTURE_STATUS.get(capture.get("status"), TransactionStatus.PENDING)
        logger.info(f"PayPal order {reference} capture {capture.get('id')} status {capture.get('status')}")
        return CallbackResult(
            order_id=order_id,
            transaction_id=reference,
            amount=Decimal(str(capture.get("amount", {}).get("value", "0"))),
            status=status,
            gateway_response={
                "settlement_id": capture.get("id"),
                "capture_status": capture.get("status"),
                "currency": capture.get("amount", {}).get("currency_code"),
                "payer_id": (body.get("payer") or {}).get("payer_id"),
            },
        )

    def verify_callback(self, payload: dict, headers: dict | None = None) -> CallbackResult:
        if not self.webhook_id:
            logger.warning("PAYPAL_WEBHOOK_ID not set, webhook cannot be authenticated")
            raise SignatureInvalid()

        headers = {k.lower(): v for k, v in (headers or {}).items()}
        if any(h not in headers for h in _SIGNATURE_HEADERS.values()):
            raise SignatureInvalid()

        verification = {field: headers[h] for field, h in _SIGNATURE_HEADERS.items()}
        verification.update({"webhook_id": self.webhook_id, "webhook_event": payload})
        body = self._call("POST", "/v1/notifications/verify-webhook-signature", verification)
        if body.get("verification_status") != "SUCCESS":
            logger.warning(f"PayPal webhook {payload.get('id')} failed verification")
            raise SignatureInvalid()

        resource = payload.get("resource") or {}
        order_id = resource.get("custom_id") or resource.get("invoice_id")
        if not order_id:
            raise ValidationError("Webhook resource carries no order reference")

        related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
        return CallbackResult(
            order_id=order_id,
            # keyed by the gateway order id so capture and webhook dedupe together
            transaction_id=related.get("order_id") or resource.get("id"),
            amount=Decimal(str((resource.get("amount") or {}).get("value", "0"))),
            status=_WEBHOOK_EVENTS.get(payload.get("event_type"), TransactionStatus.PENDING),
            gateway_response={
                "event_id": payload.get("id"),
                "event_type": payload.get("event_type"),
                "settlement_id": resource.get("id"),
                "capture_status": resource.get("status"),
            },
        )

    def process_refund(self, transaction_id: str, amount: Decimal, reason: str | None = None,
                       metadata: dict | None = None) -> RefundOutcome:
        metadata = metadata or {}
        value = self.convert(amount, metadata.get("currency"))
        body = self._call("POST", f"/v2/payments/captures/{transaction_id}/refund", {
            "amount": {"value": f"{value:.2f}", "currency_code": self.currency},
            "note_to_payer": reason or "Refund for your order",
        })
        logger.info(f"PayPal refund {body.get('id')} for capture {transaction_id}: {body.get('status')}")
        return RefundOutcome(
            success=body.get("status") == "COMPLETED",
            refund_transaction_id=body.get("id") or "",
            amount=amount,
            message=f"PayPal refund {body.get('status')}",
            gateway_response=body,
        )
