from unittest.mock import MagicMock

import pytest
import redis

from orderflow.services.kv_store import RedisKeyValueStore


@pytest.fixture
def client():
    return MagicMock(spec=redis.Redis)


def test_set_only_if_absent_uses_nx_and_ttl(client):
    client.set.return_value = None
    store = RedisKeyValueStore(client=client)

    assert store.set("lock:k", "token", 30, only_if_absent=True) is False
    client.set.assert_called_once_with(name="lock:k", value="token", nx=True, ex=30)


def test_plain_set_and_get(client):
    client.set.return_value = True
    client.get.return_value = "v"
    store = RedisKeyValueStore(client=client)

    assert store.set("idempotency:k", "v", 60) is True
    assert store.get("idempotency:k") == "v"
    client.set.assert_called_once_with(name="idempotency:k", value="v", nx=False, ex=60)


def test_compare_and_delete_runs_one_script(client):
    client.eval.return_value = 1
    store = RedisKeyValueStore(client=client)

    assert store.compare_and_delete("lock:k", "token") is True
    script, numkeys, key, expected = client.eval.call_args.args
    assert "redis.call('DEL', KEYS[1])" in script
    assert (numkeys, key, expected) == (1, "lock:k", "token")

    client.eval.return_value = 0
    assert store.compare_and_delete("lock:k", "stale") is False


def test_transient_errors_are_retried(client):
    client.get.side_effect = [redis.ConnectionError("reset"), "v"]
    store = RedisKeyValueStore(client=client)

    assert store.get("k") == "v"
    assert client.get.call_count == 2


def test_persistent_errors_surface(client):
    client.delete.side_effect = redis.ConnectionError("down")
    store = RedisKeyValueStore(client=client)

    with pytest.raises(redis.ConnectionError):
        store.delete("k")
    assert client.delete.call_count == 3
