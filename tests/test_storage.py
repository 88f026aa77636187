import threading
from datetime import datetime, timedelta, timezone

import pytest
import redis

from postguard.config import Settings
from postguard.core.database import create_database_engine, create_session_factory
from postguard.core.redis_client import close_redis, get_redis
from postguard.models.record import ProtectionLock
from postguard.schemas.rate_limit import RateLimitTier
from postguard.security.rate_limiter import RateLimiter
from postguard.storage import MemoryRecordStore, build_store
from postguard.storage import memory as memory_module
from postguard.storage.base import StoreError
from postguard.storage.redis_store import RedisRecordStore
from postguard.storage.sql_store import SqlRecordStore, _is_expired


class FakeTime:
    def __init__(self, now=1_000.0):
        self.now = now

    def monotonic(self):
        return self.now


def sql_store():
    engine = create_database_engine("sqlite://")
    return SqlRecordStore(create_session_factory(engine))


@pytest.fixture(params=["memory", "sql"])
def record_store(request):
    if request.param == "memory":
        return MemoryRecordStore()
    return sql_store()


def test_set_and_get(record_store):
    record_store.set("rate_limit:login:alice", {"count": 1, "blocked_until": None})

    assert record_store.get("rate_limit:login:alice") == {"count": 1, "blocked_until": None}
    assert record_store.get("rate_limit:login:bob") is None


def test_overwrite(record_store):
    record_store.set("k", {"count": 1})
    record_store.set("k", {"count": 2})

    assert record_store.get("k") == {"count": 2}


def test_list_values(record_store):
    record_store.set("integrity:changes", [{"id": "a"}, {"id": "b"}])

    assert record_store.get("integrity:changes") == [{"id": "a"}, {"id": "b"}]


def test_delete(record_store):
    record_store.set("k", {"count": 1})
    record_store.delete("k")
    record_store.delete("missing")

    assert record_store.get("k") is None


def test_keys_by_prefix(record_store):
    record_store.set("attack:block:xss:eve", {})
    record_store.set("attack:attempt:xss:eve", {})
    record_store.set("rate_limit:login:eve", {})

    assert sorted(record_store.keys("attack:")) == ["attack:attempt:xss:eve", "attack:block:xss:eve"]
    assert len(record_store.keys()) == 3


def test_keys_prefix_is_literal(record_store):
    record_store.set("a_b:1", {})
    record_store.set("axb:1", {})

    assert record_store.keys("a_b") == ["a_b:1"]


def test_lock_serializes_writers(record_store):
    with record_store.lock("k"):
        record_store.set("k", {"count": 1})

    with record_store.lock("k"):
        assert record_store.get("k") == {"count": 1}


def test_lock_entries_released(record_store):
    for i in range(50):
        with record_store.lock(f"rate_limit:login:actor-{i}"):
            pass

    assert record_store._key_locks == {}


def test_lock_entry_kept_while_contended():
    store = MemoryRecordStore()
    entered = threading.Event()
    release = threading.Event()

    def holder():
        with store.lock("k"):
            entered.set()
            release.wait(5)

    thread = threading.Thread(target=holder)
    thread.start()
    entered.wait(5)

    assert "k" in store._key_locks
    release.set()
    thread.join()
    assert store._key_locks == {}


def test_memory_store_returns_copies():
    store = MemoryRecordStore()
    value = {"items": [1]}
    store.set("k", value)
    value["items"].append(2)

    loaded = store.get("k")
    loaded["items"].append(3)

    assert store.get("k") == {"items": [1]}


def test_memory_store_ttl(monkeypatch):
    fake = FakeTime()
    monkeypatch.setattr(memory_module, "time", fake)
    store = MemoryRecordStore()
    store.set("session", {"user": "alice"}, ttl_seconds=30)

    fake.now += 29
    assert store.get("session") == {"user": "alice"}

    fake.now += 2
    assert store.get("session") is None
    assert store.keys() == []


def test_sql_expiry_check():
    assert _is_expired(None) is False
    assert _is_expired(datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(seconds=5)) is True
    assert _is_expired(datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)) is False


def test_build_store_selects_backend():
    assert isinstance(build_store(Settings(store_backend="memory")), MemoryRecordStore)
    assert isinstance(build_store(Settings(store_backend="sql", database_url="sqlite://")), SqlRecordStore)


def test_rate_limiter_on_sql_store(event_log, clock):
    limiter = RateLimiter(sql_store(), event_log, event_log.settings, clock, tiers={
        "login": RateLimitTier(max_attempts=2, window_ms=60_000),
    })

    assert limiter.check("alice", "login").allowed is True
    assert limiter.check("alice", "login").allowed is True
    assert limiter.check("alice", "login").allowed is False
    assert limiter.get_stats("alice", "login").is_blocked is True


def test_redis_clients_cached_per_url():
    first = get_redis("redis://localhost:6379/1")

    assert get_redis("redis://localhost:6379/1") is first
    assert get_redis("redis://localhost:6379/2") is not first

    close_redis()
    assert get_redis("redis://localhost:6379/1") is not first
    close_redis()


def test_redis_store_unreachable_raises_store_error():
    client = redis.from_url("redis://127.0.0.1:1/0", socket_connect_timeout=0.2, decode_responses=True)
    store = RedisRecordStore(client)

    with pytest.raises(StoreError):
        store.get("rate_limit:login:alice")

    with pytest.raises(StoreError):
        store.set("rate_limit:login:alice", {"count": 1})


def test_sql_lock_is_shared_between_stores(tmp_path):
    engine = create_database_engine(f"sqlite:///{tmp_path / 'records.db'}")
    factory = create_session_factory(engine)
    workers = [SqlRecordStore(factory), SqlRecordStore(factory)]
    workers[0].set("counter", {"count": 0})

    def increment(store):
        for _ in range(10):
            with store.lock("counter"):
                value = store.get("counter")
                value["count"] += 1
                store.set("counter", value)

    threads = [threading.Thread(target=increment, args=(store,)) for store in workers for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert workers[0].get("counter") == {"count": 40}


def test_sql_lock_times_out_while_held():
    factory = create_session_factory(create_database_engine("sqlite://"))
    holder = SqlRecordStore(factory)
    waiter = SqlRecordStore(factory, lock_timeout=0.05)

    with holder.lock("k"):
        with pytest.raises(StoreError):
            with waiter.lock("k"):
                pass

    with waiter.lock("k"):
        pass


def test_sql_lock_reclaims_expired_holder():
    factory = create_session_factory(create_database_engine("sqlite://"))
    db = factory()
    db.add(ProtectionLock(key="k", owner="crashed", expires_at=datetime.now(timezone.utc) - timedelta(seconds=1)))
    db.commit()
    db.close()

    store = SqlRecordStore(factory, lock_timeout=0.05)
    with store.lock("k"):
        store.set("k", {"count": 1})

    assert store.get("k") == {"count": 1}
