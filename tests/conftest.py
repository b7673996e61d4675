"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from decimal import Decimal
from unittest.mock import MagicMock
from urllib.parse import urlencode

import pytest

# Set test environment variables before importing application modules
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("VNPAY_TMN_CODE", "TESTTMN1")
os.environ.setdefault("VNPAY_HASH_SECRET", "test-vnpay-secret")
os.environ.setdefault("VNPAY_API_URL", "")
os.environ.setdefault("SHIPPING_FEE", "30000")
os.environ.setdefault("FRONTEND_URL", "http://shop.test")

from sqlalchemy.orm import sessionmaker  # noqa: E402

from orderflow.celery_worker import celery_app  # noqa: E402
from orderflow.data import models  # noqa: E402,F401
from orderflow.data.database import Base, make_engine, unit_of_work  # noqa: E402
from orderflow.domain.enums import PaymentMethod  # noqa: E402
from orderflow.domain.identity import Owner  # noqa: E402
from orderflow.services.cart_service import CartService  # noqa: E402
from orderflow.services.idempotency import IdempotencyCoordinator  # noqa: E402
from orderflow.services.inventory_ledger import InventoryLedger  # noqa: E402
from orderflow.services.order_lifecycle import OrderLifecycle  # noqa: E402
from orderflow.services.order_service import OrderService  # noqa: E402
from orderflow.services.payment_service import PaymentService  # noqa: E402
from orderflow.services.payments import CashOnDeliveryProvider, VnpayProvider  # noqa: E402
from orderflow.services.payments.vnpay import sign_params  # noqa: E402
from tests.fakes import FakeCaptureGateway, FakeCatalog, MemoryKeyValueStore  # noqa: E402

VNPAY_SECRET = os.environ["VNPAY_HASH_SECRET"]
ADDRESS = {"fullName": "Nguyen Van A", "line1": "1 Le Loi", "city": "Ho Chi Minh", "phone": "0900000000"}

celery_app.conf.task_always_eager = True


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so several sessions (and threads) see the same data."""
    eng = make_engine(f"sqlite:///{tmp_path / 'orderflow.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db(session_factory) -> Generator:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def kv_store():
    return MemoryKeyValueStore()


@pytest.fixture
def idempotency(kv_store):
    return IdempotencyCoordinator(kv_store)


@pytest.fixture
def catalog():
    cat = FakeCatalog()
    cat.add("var-x", "100000", sku="SKU-X", name="Linen shirt")
    cat.add("var-y", "250000", sku="SKU-Y", name="Canvas bag")
    cat.add("var-off", "50000", sku="SKU-OFF", is_active=False)
    return cat


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def capture_gateway():
    return FakeCaptureGateway()


@pytest.fixture
def providers(capture_gateway):
    return {
        PaymentMethod.COD: CashOnDeliveryProvider(),
        PaymentMethod.GATEWAY_REDIRECT: VnpayProvider(
            tmn_code="TESTTMN1",
            hash_secret=VNPAY_SECRET,
            pay_url="https://vnpay.test/pay",
            return_url="http://api.test/payments/vnpay/return",
            api_url="",
        ),
        PaymentMethod.GATEWAY_CAPTURE: capture_gateway,
    }


@pytest.fixture
def ledger(db):
    return InventoryLedger(db)


@pytest.fixture
def lifecycle(db, notifier):
    return OrderLifecycle(db, notifier=notifier)


@pytest.fixture
def payment_service(db, idempotency, providers, lifecycle):
    return PaymentService(db, idempotency, providers, lifecycle)


@pytest.fixture
def cart_service(db, catalog, ledger):
    return CartService(db, catalog, ledger)


@pytest.fixture
def order_service(db, cart_service, payment_service, lifecycle):
    return OrderService(db, cart_service, payment_service, lifecycle)


@pytest.fixture
def stock(db, ledger):
    """stock(variant_id, quantity) puts quantity units on hand."""

    def _stock(variant_id: str, quantity: int):
        with unit_of_work(db):
            ledger.adjust(variant_id, quantity, reason="test stock")

    return _stock


@pytest.fixture
def buyer():
    return Owner.user("user-1")


@pytest.fixture
def guest():
    return Owner.guest("sess-guest-1")


@pytest.fixture
def checkout_request():
    def _request(method=PaymentMethod.GATEWAY_REDIRECT, **extra):
        data = {"payment_method": method.value, "shipping_address": dict(ADDRESS)}
        data.update(extra)
        return data

    return _request


def vnpay_callback(txn_ref: str, amount: Decimal, response_code: str = "00", secret: str = VNPAY_SECRET,
                   transaction_no: str = "14012345") -> dict:
    """Query parameters as the redirect gateway would send them, signed."""
    params = {
        "vnp_Amount": str(int(Decimal(amount) * 100)),
        "vnp_BankCode": "NCB",
        "vnp_CardType": "ATM",
        "vnp_OrderInfo": "Payment",
        "vnp_PayDate": "20250101120000",
        "vnp_ResponseCode": response_code,
        "vnp_TmnCode": "TESTTMN1",
        "vnp_TransactionNo": transaction_no,
        "vnp_TransactionStatus": response_code,
        "vnp_TxnRef": txn_ref,
    }
    params["vnp_SecureHash"] = sign_params(params, secret)
    return params


def vnpay_query(params: dict) -> str:
    return urlencode(params)


@pytest.fixture
def place_order(cart_service, order_service, checkout_request, stock):
    """place_order(owner, method, quantity) stocks var-x, fills the cart and checks out. Returns the order id."""

    def _place(owner, method=PaymentMethod.GATEWAY_REDIRECT, quantity=2, **extra):
        stock("var-x", quantity)
        cart_service.add_item(owner, "var-x", quantity)
        result = order_service.create_order_with_payment(owner, checkout_request(method, **extra))
        return result["order"]["id"]

    return _place
