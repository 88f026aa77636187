import copy
import threading
import time
from typing import Any, Optional

from postguard.storage.base import RecordStore


class MemoryRecordStore(RecordStore):
    def __init__(self):
        super().__init__()
        self._data: dict[str, tuple[Any, Optional[float]]] = {}
        self._guard = threading.RLock()

    def get(self, key: str) -> Optional[Any]:
        with self._guard:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._data[key]
                return None
            return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        with self._guard:
            self._data[key] = (copy.deepcopy(value), expires_at)

    def delete(self, key: str) -> None:
        with self._guard:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._guard:
            return [key for key in list(self._data) if key.startswith(prefix) and self.get(key) is not None]
