# orderflow/services/idempotency.py
import json
import uuid
from typing import Any, Callable

from orderflow.domain.errors import OperationInProgress
from orderflow.services.kv_store import KeyValueStore
from orderflow.utils.logging import get_logger
from orderflow.utils.settings import IDEMPOTENCY_LOCK_TTL_SECONDS, IDEMPOTENCY_RESULT_TTL_SECONDS

logger = get_logger(__name__)

LOCK_PREFIX = "lock:"
RESULT_PREFIX = "idempotency:"


def payment_create_key(order_id: str) -> str:
    return f"payment:create:{order_id}"


def payment_refund_key(order_id: str) -> str:
    return f"payment:refund:{order_id}"


def callback_key(provider: str, transaction_id: str) -> str:
    return f"callback:{provider}:{transaction_id}"


def checkout_key(owner_key: str, client_key: str) -> str:
    return f"checkout:{owner_key}:{client_key}"


def _normalize(value: Any) -> Any:
    # the first caller and every replay must see the same JSON-shaped value
    return json.loads(json.dumps(value, default=str))


class IdempotencyCoordinator:
    """
    Makes a write safe to retry:
    cached result -> returned as is,
    lock taken by someone else -> OperationInProgress,
    otherwise run, cache, and release the lock.
    """

    def __init__(
        self,
        store: KeyValueStore,
        lock_ttl: int = IDEMPOTENCY_LOCK_TTL_SECONDS,
        result_ttl: int = IDEMPOTENCY_RESULT_TTL_SECONDS,
    ):
        self.store = store
        self.lock_ttl = lock_ttl
        self.result_ttl = result_ttl

    def acquire_lock(self, key: str, ttl: int | None = None) -> str | None:
        token = uuid.uuid4().hex
        ok = self.store.set(LOCK_PREFIX + key, token, ttl or self.lock_ttl, only_if_absent=True)
        if not ok:
            logger.info(f"Lock {key} is held by another caller")
            return None
        return token

    def release_lock(self, key: str, token: str) -> bool:
        return self.store.compare_and_delete(LOCK_PREFIX + key, token)

    def get_cached_result(self, key: str) -> Any | None:
        raw = self.store.get(RESULT_PREFIX + key)
        if raw is None:
            return None
        return json.loads(raw)

    def store_result(self, key: str, value: Any, ttl: int | None = None) -> None:
        self.store.set(RESULT_PREFIX + key, json.dumps(value, default=str), ttl or self.result_ttl)

    def forget(self, key: str) -> None:
        self.store.delete(RESULT_PREFIX + key)

    def execute(self, key: str, operation: Callable[[], Any],
                cache_if: Callable[[Any], bool] | None = None) -> Any:
        """
        Run ``operation`` at most once per key. Results rejected by ``cache_if``
        are returned but not stored, so a later call for the same key runs again.
        """
        cached = self.get_cached_result(key)
        if cached is not None:
            logger.info(f"Idempotency hit for {key}")
            return cached

        token = self.acquire_lock(key)
        if token is None:
            raise OperationInProgress()

        try:
            # a concurrent holder may have finished between our cache check and lock
            cached = self.get_cached_result(key)
            if cached is not None:
                return cached
            result = _normalize(operation())
            if cache_if is None or cache_if(result):
                self.store_result(key, result)
            else:
                logger.info(f"Result for {key} is not final, not cached")
            return result
        finally:
            self.release_lock(key, token)
