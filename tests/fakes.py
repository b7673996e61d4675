"""In-memory stand-ins for the external collaborators (key-value store, catalog, gateways)."""

import threading
import time
from decimal import Decimal

from orderflow.domain.enums import PaymentMethod, TransactionStatus
from orderflow.domain.errors import NotFound, ProviderError, SignatureInvalid
from orderflow.services.kv_store import KeyValueStore
from orderflow.services.payments.base import CallbackResult, PaymentHandle, PaymentProvider, RefundOutcome


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self):
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key):
        entry = self._data.get(key)
        if entry and entry[1] < time.monotonic():
            del self._data[key]
            return None
        return entry

    def get(self, key):
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def set(self, key, value, ttl, only_if_absent=False):
        with self._lock:
            if only_if_absent and self._live(key):
                return False
            self._data[key] = (value, time.monotonic() + ttl)
            return True

    def compare_and_delete(self, key, expected):
        with self._lock:
            entry = self._live(key)
            if entry and entry[0] == expected:
                del self._data[key]
                return True
            return False

    def delete(self, key):
        with self._lock:
            self._data.pop(key, None)

    def keys(self):
        return sorted(self._data)


class FakeCatalog:
    def __init__(self):
        self.variants: dict[str, dict] = {}
        self.calls = 0

    def add(self, variant_id, price, sku=None, name=None, is_active=True, parent_active=True):
        self.variants[variant_id] = {
            "id": variant_id,
            "sku": sku or variant_id.upper(),
            "name": name or f"Product {variant_id}",
            "price": Decimal(str(price)),
            "is_active": is_active,
            "parent_active": parent_active,
        }

    def set_price(self, variant_id, price):
        self.variants[variant_id]["price"] = Decimal(str(price))

    def get_variant(self, variant_id):
        self.calls += 1
        if variant_id not in self.variants:
            raise NotFound(f"Variant {variant_id} not found")
        return dict(self.variants[variant_id])


class FakeCaptureGateway(PaymentProvider):
    """Two-phase gateway double: approval links, captures and webhooks without HTTP."""

    method = PaymentMethod.GATEWAY_CAPTURE
    name = "fakecapture"

    def __init__(self):
        self.created: dict[str, str] = {}
        self.capture_status = "COMPLETED"
        self.fail_create = False
        self.refund_success = True
        self.refund_error: Exception | None = None
        self.create_calls = 0
        self.capture_calls = 0
        self.refund_calls = 0

    def create_payment(self, order_id, amount, metadata=None):
        self.create_calls += 1
        if self.fail_create:
            raise ProviderError("gateway unavailable")
        reference = f"CAP-{order_id[:8]}-{self.create_calls}"
        self.created[reference] = order_id
        return PaymentHandle(transaction_id=reference, payment_url=f"https://gateway.test/approve/{reference}")

    def capture(self, reference):
        self.capture_calls += 1
        status = {
            "COMPLETED": TransactionStatus.SUCCESS,
            "PENDING": TransactionStatus.PENDING,
        }.get(self.capture_status, TransactionStatus.FAILED)
        return CallbackResult(
            order_id=self.created[reference],
            transaction_id=reference,
            amount=Decimal("0"),
            status=status,
            gateway_response={"settlement_id": f"SET-{reference}", "capture_status": self.capture_status},
        )

    def verify_callback(self, payload, headers=None):
        if (headers or {}).get("x-signature") != "valid":
            raise SignatureInvalid()
        return CallbackResult(
            order_id=payload["order_id"],
            transaction_id=payload["reference"],
            amount=Decimal(str(payload.get("amount", "0"))),
            status=TransactionStatus(payload.get("status", "success")),
            gateway_response={"settlement_id": f"SET-{payload['reference']}"},
        )

    def process_refund(self, transaction_id, amount, reason=None, metadata=None):
        self.refund_calls += 1
        if self.refund_error is not None:
            raise self.refund_error
        return RefundOutcome(
            success=self.refund_success,
            refund_transaction_id=f"RF-{transaction_id}",
            amount=amount,
            message="ok" if self.refund_success else "declined",
        )
