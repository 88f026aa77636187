from postguard.config import Settings
from postguard.storage.base import RecordStore, StoreError
from postguard.storage.memory import MemoryRecordStore


def build_store(settings: Settings) -> RecordStore:
    backend = settings.store_backend.lower()

    if backend == "redis":
        from postguard.core.redis_client import get_redis
        from postguard.storage.redis_store import RedisRecordStore

        return RedisRecordStore(
            get_redis(settings.redis_url),
            lock_timeout=settings.store_lock_timeout_seconds
        )

    if backend == "sql":
        from postguard.core.database import create_database_engine, create_session_factory
        from postguard.storage.sql_store import SqlRecordStore

        engine = create_database_engine(settings.database_url)
        return SqlRecordStore(
            create_session_factory(engine),
            lock_timeout=settings.store_lock_timeout_seconds
        )

    return MemoryRecordStore()


__all__ = ["RecordStore", "StoreError", "MemoryRecordStore", "build_store"]
