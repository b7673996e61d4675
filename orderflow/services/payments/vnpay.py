# orderflow/services/payments/vnpay.py
import hashlib
import hmac
import time
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from urllib.parse import urlencode

import requests

from orderflow.domain.enums import PaymentMethod, TransactionStatus
from orderflow.domain.errors import ProviderError, SignatureInvalid, ValidationError
from orderflow.services.payments.base import CallbackResult, PaymentHandle, PaymentProvider, RefundOutcome
from orderflow.utils import settings
from orderflow.utils.logging import get_logger
from orderflow.utils.retry import http_retry

logger = get_logger(__name__)

VNPAY_VERSION = "2.1.0"
VNPAY_TZ = timezone(timedelta(hours=7))
RESPONSE_SUCCESS = "00"
RESPONSE_INVALID_SIGNATURE = "97"
TXN_REF_MAX_LENGTH = 100

_UNSIGNED_FIELDS = ("vnp_SecureHash", "vnp_SecureHashType")


def format_vnpay_date(value: datetime | None = None) -> str:
    value = value or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(VNPAY_TZ).strftime("%Y%m%d%H%M%S")


def make_txn_ref(order_id: str) -> str:
    return f"{order_id}_{int(time.time() * 1000)}"[:TXN_REF_MAX_LENGTH]


def order_id_from_txn_ref(txn_ref: str) -> str:
    return txn_ref.rsplit("_", 1)[0]


def sign_params(params: dict, secret: str) -> str:
    """HMAC-SHA512 over the vnp_* fields sorted by name, form-encoded and joined with '&'."""
    signed = {k: v for k, v in params.items() if k.startswith("vnp_") and k not in _UNSIGNED_FIELDS}
    data = urlencode(sorted((k, str(v)) for k, v in signed.items()))
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha512).hexdigest()


def verify_params(params: dict, secret: str) -> bool:
    received = params.get("vnp_SecureHash")
    if not received or not secret:
        return False
    return hmac.compare_digest(sign_params(params, secret).lower(), str(received).lower())


class VnpayProvider(PaymentProvider):
    """
    Redirect gateway: the buyer is sent to a signed URL and the gateway reports
    back twice, once through the buyer's browser (return URL) and once
    server-to-server (IPN). Both carry the same signed parameter set.
    """

    method = PaymentMethod.GATEWAY_REDIRECT
    name = "vnpay"

    def __init__(
        self,
        tmn_code: str | None = None,
        hash_secret: str | None = None,
        pay_url: str | None = None,
        return_url: str | None = None,
        api_url: str | None = None,
        timeout: int = 10,
    ):
        self.tmn_code = tmn_code if tmn_code is not None else settings.VNPAY_TMN_CODE
        self.hash_secret = hash_secret if hash_secret is not None else settings.VNPAY_HASH_SECRET
        self.pay_url = pay_url or settings.VNPAY_URL
        self.return_url = return_url or settings.VNPAY_RETURN_URL
        self.api_url = api_url if api_url is not None else settings.VNPAY_API_URL
        self.timeout = timeout

        if not self.tmn_code or not self.hash_secret:
            logger.warning("VNPAY configuration is incomplete, redirect payments will fail")

    def create_payment(self, order_id: str, amount: Decimal, metadata: dict | None = None) -> PaymentHandle:
        if not self.tmn_code or not self.hash_secret:
            raise ProviderError("VNPAY is not configured")

        metadata = metadata or {}
        txn_ref = make_txn_ref(order_id)
        params = {
            "vnp_Version": VNPAY_VERSION,
            "vnp_Command": "pay",
            "vnp_TmnCode": self.tmn_code,
            # smallest unit, no decimals
            "vnp_Amount": int(Decimal(amount) * 100),
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": txn_ref,
            "vnp_OrderInfo": metadata.get("order_info") or f"Payment for order {metadata.get('order_code', order_id)}",
            "vnp_OrderType": "other",
            "vnp_Locale": metadata.get("locale", "vn"),
            "vnp_ReturnUrl": metadata.get("return_url") or self.return_url,
            "vnp_IpAddr": metadata.get("ip_addr") or "127.0.0.1",
            "vnp_CreateDate": format_vnpay_date(),
        }
        if metadata.get("expires_at"):
            params["vnp_ExpireDate"] = format_vnpay_date(metadata["expires_at"])
        if metadata.get("bank_code"):
            params["vnp_BankCode"] = metadata["bank_code"]

        params["vnp_SecureHash"] = sign_params(params, self.hash_secret)
        query = urlencode(sorted((k, str(v)) for k, v in params.items()))

        logger.info(f"VNPAY payment URL built for order {order_id}, txn_ref={txn_ref}")
        return PaymentHandle(
            transaction_id=txn_ref,
            payment_url=f"{self.pay_url}?{query}",
            gateway_response={"txn_ref": txn_ref, "vnp_amount": params["vnp_Amount"]},
        )

    def verify_callback(self, payload: dict, headers: dict | None = None) -> CallbackResult:
        if not verify_params(payload, self.hash_secret):
            logger.warning(f"VNPAY callback rejected, bad signature for txn_ref={payload.get('vnp_TxnRef')}")
            raise SignatureInvalid()

        txn_ref = payload.get("vnp_TxnRef")
        if not txn_ref:
            raise ValidationError("vnp_TxnRef is missing")

        response_code = payload.get("vnp_ResponseCode")
        txn_status = payload.get("vnp_TransactionStatus", RESPONSE_SUCCESS)
        paid = response_code == RESPONSE_SUCCESS and txn_status == RESPONSE_SUCCESS

        transaction_no = payload.get("vnp_TransactionNo")
        return CallbackResult(
            order_id=order_id_from_txn_ref(txn_ref),
            transaction_id=txn_ref,
            amount=Decimal(str(payload.get("vnp_Amount", "0"))) / 100,
            status=TransactionStatus.SUCCESS if paid else TransactionStatus.FAILED,
            gateway_response={
                "response_code": response_code,
                "transaction_status": txn_status,
                "transaction_no": transaction_no,
                "settlement_id": transaction_no,
                "bank_code": payload.get("vnp_BankCode"),
                "card_type": payload.get("vnp_CardType"),
                "pay_date": payload.get("vnp_PayDate"),
            },
        )

    @http_retry()
    def _post(self, body: dict) -> requests.Response:
        return requests.post(self.api_url, json=body, timeout=self.timeout)

    def process_refund(self, transaction_id: str, amount: Decimal, reason: str | None = None,
                       metadata: dict | None = None) -> RefundOutcome:
        metadata = metadata or {}
        if not self.api_url:
            reference = f"REFUND-{transaction_id}-{int(time.time() * 1000)}"
            logger.warning(f"VNPAY_API_URL not set, refund {reference} recorded for manual processing")
            return RefundOutcome(
                success=True,
                refund_transaction_id=reference,
                amount=amount,
                message="Refund recorded, manual processing required",
                gateway_response={"original_transaction_id": transaction_id, "reason": reason, "manual": True},
            )

        request_id = uuid.uuid4().hex
        txn_ref = metadata.get("provider_transaction_id") or transaction_id
        original_amount = Decimal(str(metadata.get("original_amount", amount)))
        fields = {
            "vnp_RequestId": request_id,
            "vnp_Version": VNPAY_VERSION,
            "vnp_Command": "refund",
            "vnp_TmnCode": self.tmn_code,
            # 02 full, 03 partial
            "vnp_TransactionType": "02" if Decimal(amount) >= original_amount else "03",
            "vnp_TxnRef": txn_ref,
            "vnp_Amount": str(int(Decimal(amount) * 100)),
            "vnp_TransactionNo": transaction_id if transaction_id != txn_ref else "",
            "vnp_TransactionDate": format_vnpay_date(metadata.get("paid_at")),
            "vnp_CreateBy": metadata.get("requested_by") or "system",
            "vnp_CreateDate": format_vnpay_date(),
            "vnp_IpAddr": metadata.get("ip_addr") or "127.0.0.1",
            "vnp_OrderInfo": reason or f"Refund {txn_ref}",
        }
        ordered = [
            "vnp_RequestId", "vnp_Version", "vnp_Command", "vnp_TmnCode", "vnp_TransactionType",
            "vnp_TxnRef", "vnp_Amount", "vnp_TransactionNo", "vnp_TransactionDate", "vnp_CreateBy",
            "vnp_CreateDate", "vnp_IpAddr", "vnp_OrderInfo",
        ]
        data = "|".join(fields[k] for k in ordered)
        fields["vnp_SecureHash"] = hmac.new(
            self.hash_secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha512
        ).hexdigest()

        logger.info(f"VNPAY refund request {request_id} for txn_ref={txn_ref}, amount {amount}")
        try:
            resp = self._post(fields)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise ProviderError(f"VNPAY refund failed: {e}")

        code = body.get("vnp_ResponseCode")
        return RefundOutcome(
            success=code == RESPONSE_SUCCESS,
            refund_transaction_id=body.get("vnp_TransactionNo") or request_id,
            amount=amount,
            message=body.get("vnp_Message"),
            gateway_response=body,
        )
