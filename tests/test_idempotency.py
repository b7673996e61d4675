from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from orderflow.domain.errors import OperationInProgress, ProviderError
from orderflow.services.idempotency import (
    LOCK_PREFIX,
    RESULT_PREFIX,
    IdempotencyCoordinator,
    callback_key,
    checkout_key,
    payment_create_key,
    payment_refund_key,
)


def test_key_formats():
    assert payment_create_key("o1") == "payment:create:o1"
    assert payment_refund_key("o1") == "payment:refund:o1"
    assert callback_key("vnpay", "o1_123") == "callback:vnpay:o1_123"
    assert checkout_key("user:u1", "k1") == "checkout:user:u1:k1"


def test_execute_runs_once_and_caches(idempotency, kv_store):
    operation = MagicMock(return_value={"amount": Decimal("10.50"), "ok": True})

    first = idempotency.execute("payment:create:o1", operation)
    second = idempotency.execute("payment:create:o1", operation)

    assert operation.call_count == 1
    # results are JSON-shaped for the first caller too
    assert first == second == {"amount": "10.50", "ok": True}
    assert kv_store.get(RESULT_PREFIX + "payment:create:o1") is not None
    assert kv_store.get(LOCK_PREFIX + "payment:create:o1") is None


def test_failures_are_not_cached_and_release_the_lock(idempotency, kv_store):
    operation = MagicMock(side_effect=[ProviderError("down"), {"ok": True}])

    with pytest.raises(ProviderError):
        idempotency.execute("payment:refund:o1", operation)
    assert kv_store.get(LOCK_PREFIX + "payment:refund:o1") is None

    assert idempotency.execute("payment:refund:o1", operation) == {"ok": True}
    assert operation.call_count == 2


def test_held_lock_means_operation_in_progress(idempotency):
    token = idempotency.acquire_lock("callback:vnpay:t1")
    operation = MagicMock()

    with pytest.raises(OperationInProgress) as exc:
        idempotency.execute("callback:vnpay:t1", operation)

    assert exc.value.retry_after > 0
    operation.assert_not_called()
    assert idempotency.release_lock("callback:vnpay:t1", token) is True


def test_cached_result_wins_over_held_lock(idempotency):
    idempotency.store_result("callback:vnpay:t1", {"processed": True})
    idempotency.acquire_lock("callback:vnpay:t1")

    assert idempotency.execute("callback:vnpay:t1", MagicMock()) == {"processed": True}


def test_release_needs_the_owning_token(idempotency):
    token = idempotency.acquire_lock("k")
    assert idempotency.acquire_lock("k") is None
    assert idempotency.release_lock("k", "someone-elses-token") is False
    assert idempotency.release_lock("k", token) is True
    assert idempotency.acquire_lock("k") is not None


def test_expired_lock_can_be_taken_again(kv_store):
    coordinator = IdempotencyCoordinator(kv_store, lock_ttl=-1)
    assert coordinator.acquire_lock("k") is not None
    # a negative ttl is already expired, as after a crashed holder
    assert coordinator.acquire_lock("k") is not None


def test_forget_drops_the_cached_result(idempotency):
    idempotency.store_result("k", [1, 2])
    assert idempotency.get_cached_result("k") == [1, 2]
    idempotency.forget("k")
    assert idempotency.get_cached_result("k") is None


def test_results_rejected_by_cache_if_run_again(idempotency, kv_store):
    operation = MagicMock(side_effect=[{"outcome": "pending"}, {"outcome": "success"}])
    final = lambda result: result["outcome"] != "pending"

    assert idempotency.execute("callback:paypal:P1", operation, cache_if=final) == {"outcome": "pending"}
    assert kv_store.get(RESULT_PREFIX + "callback:paypal:P1") is None

    assert idempotency.execute("callback:paypal:P1", operation, cache_if=final) == {"outcome": "success"}
    assert idempotency.execute("callback:paypal:P1", operation, cache_if=final) == {"outcome": "success"}
    assert operation.call_count == 2
