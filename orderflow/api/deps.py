# orderflow/api/deps.py
import hmac
from functools import lru_cache

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from orderflow.data.database import get_db
from orderflow.domain.errors import Unauthorized
from orderflow.domain.identity import Owner
from orderflow.services.cart_service import CartService
from orderflow.services.catalog_client import CatalogClient
from orderflow.services.idempotency import IdempotencyCoordinator
from orderflow.services.inventory_ledger import InventoryLedger
from orderflow.services.kv_store import KeyValueStore, RedisKeyValueStore
from orderflow.services.order_service import OrderService
from orderflow.services.payment_service import PaymentService
from orderflow.services.payments import default_providers
from orderflow.utils import settings


# --- process-wide collaborators ------------------------------------------------------------
@lru_cache
def get_kv_store() -> KeyValueStore:
    return RedisKeyValueStore()


@lru_cache
def get_catalog() -> CatalogClient:
    return CatalogClient()


@lru_cache
def get_providers() -> dict:
    return default_providers()


# --- identity -----------------------------------------------------------------------------------
def get_owner(
    x_user_id: str | None = Header(None),
    x_session_id: str | None = Header(None),
) -> Owner:
    """Authenticated user or guest session; sending both or neither is rejected."""
    return Owner(user_id=x_user_id or None, session_id=x_session_id or None)


def get_user_id(x_user_id: str | None = Header(None)) -> str:
    if not x_user_id:
        raise Unauthorized("X-User-Id header is required")
    return x_user_id


def require_admin(x_admin_token: str | None = Header(None)) -> str:
    if not settings.ADMIN_TOKEN or not x_admin_token or not hmac.compare_digest(x_admin_token, settings.ADMIN_TOKEN):
        raise Unauthorized("Admin token missing or invalid")
    return "admin"


# --- services -----------------------------------------------------------------------------------
def get_cart_service(
    db: Session = Depends(get_db),
    catalog: CatalogClient = Depends(get_catalog),
) -> CartService:
    return CartService(db, catalog)


def get_payment_service(
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_kv_store),
    providers: dict = Depends(get_providers),
) -> PaymentService:
    return PaymentService(db, IdempotencyCoordinator(store), providers)


def get_order_service(
    db: Session = Depends(get_db),
    cart_service: CartService = Depends(get_cart_service),
    payment_service: PaymentService = Depends(get_payment_service),
) -> OrderService:
    return OrderService(db, cart_service, payment_service)


def get_ledger(db: Session = Depends(get_db)) -> InventoryLedger:
    return InventoryLedger(db)
