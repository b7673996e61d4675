# orderflow/services/kv_store.py
from abc import ABC, abstractmethod

import redis

from orderflow.utils.logging import get_logger
from orderflow.utils.retry import redis_retry
from orderflow.utils.settings import REDIS_URL

logger = get_logger(__name__)

# GET + compare + DEL in one script; Redis runs it without interleaving other commands
_COMPARE_AND_DELETE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


class KeyValueStore(ABC):
    """Shared store behind idempotency locks and cached results.

    Every instance of the service must see the same store, so a process-local
    dict is only acceptable in tests.
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set(self, key: str, value: str, ttl: int, only_if_absent: bool = False) -> bool:
        """Store ``value`` for ``ttl`` seconds. With ``only_if_absent`` the write fails if the key exists."""

    @abstractmethod
    def compare_and_delete(self, key: str, expected: str) -> bool:
        """Delete ``key`` only while it still holds ``expected``, atomically."""

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class RedisKeyValueStore(KeyValueStore):
    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @redis_retry()
    def get(self, key: str) -> str | None:
        return self.redis.get(key)

    @redis_retry()
    def set(self, key: str, value: str, ttl: int, only_if_absent: bool = False) -> bool:
        # SET key value NX EX ttl
        return bool(self.redis.set(name=key, value=value, nx=only_if_absent, ex=ttl))

    @redis_retry()
    def compare_and_delete(self, key: str, expected: str) -> bool:
        res = self.redis.eval(_COMPARE_AND_DELETE_LUA, 1, key, expected)
        if not res:
            logger.info(f"Key {key} no longer held by this token, left untouched")
        return bool(res)

    @redis_retry()
    def delete(self, key: str) -> None:
        self.redis.delete(key)
