import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional, TypeVar

from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class StoreError(Exception):
    """The record store is unreachable or returned data it cannot decode."""


def load_record(model: type[ModelT], raw: Any, key: str) -> ModelT:
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise StoreError(f"corrupt record at {key}") from e


def load_records(model: type[ModelT], raw: Any, key: str) -> list[ModelT]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise StoreError(f"corrupt record at {key}")
    return [load_record(model, item, key) for item in raw]


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class RecordStore(ABC):
    """Key/value contract shared by every protection component.

    Values are JSON-compatible structures. Each call is atomic for its key;
    read-modify-write sequences must hold ``lock(key)`` for their duration.
    """

    def __init__(self):
        self._key_locks: dict[str, _KeyLock] = {}
        self._locks_guard = threading.Lock()

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        pass

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        # entries live only while a thread holds or waits on the key
        with self._locks_guard:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = _KeyLock()
            entry.users += 1

        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._key_locks[key]
