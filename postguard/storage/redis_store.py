import json
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import redis

from postguard.core.logger import logger
from postguard.storage.base import RecordStore, StoreError


class RedisRecordStore(RecordStore):
    def __init__(self, client: redis.Redis, namespace: str = "postguard", lock_timeout: float = 5.0):
        super().__init__()
        self.redis = client
        self.namespace = namespace
        self.lock_timeout = lock_timeout

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.redis.get(self._key(key))
        except redis.RedisError as e:
            logger.error("redis_store_get_error", key=key, error=str(e))
            raise StoreError(str(e)) from e

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise StoreError(f"corrupt record at {key}") from e

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        try:
            payload = json.dumps(value)
            if ttl_seconds:
                self.redis.setex(self._key(key), ttl_seconds, payload)
            else:
                self.redis.set(self._key(key), payload)
        except redis.RedisError as e:
            logger.error("redis_store_set_error", key=key, error=str(e))
            raise StoreError(str(e)) from e

    def delete(self, key: str) -> None:
        try:
            self.redis.delete(self._key(key))
        except redis.RedisError as e:
            logger.error("redis_store_delete_error", key=key, error=str(e))
            raise StoreError(str(e)) from e

    def keys(self, prefix: str = "") -> list[str]:
        strip = len(self.namespace) + 1
        try:
            return [k[strip:] for k in self.redis.scan_iter(match=f"{self._key(prefix)}*")]
        except redis.RedisError as e:
            raise StoreError(str(e)) from e

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        lock = self.redis.lock(
            self._key(f"lock:{key}"),
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout
        )
        try:
            acquired = lock.acquire()
        except redis.RedisError as e:
            raise StoreError(str(e)) from e
        if not acquired:
            raise StoreError(f"could not lock {key}")
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError:
                logger.warning("redis_store_lock_expired", key=key)
