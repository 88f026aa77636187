import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from postguard.core.logger import logger
from postguard.models.record import ProtectionLock, ProtectionRecord
from postguard.storage.base import RecordStore, StoreError


def _is_expired(expires_at: Optional[datetime]) -> bool:
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= datetime.now(timezone.utc)


class SqlRecordStore(RecordStore):
    """Records in one table; ``lock`` claims a row in ``protection_locks`` so
    workers sharing the database serialize on the same key.
    """

    LOCK_POLL_SECONDS = 0.01

    def __init__(self, session_factory: sessionmaker, lock_timeout: float = 5.0):
        super().__init__()
        self.session_factory = session_factory
        self.lock_timeout = lock_timeout

    def get(self, key: str) -> Optional[Any]:
        db = self.session_factory()
        try:
            record = db.get(ProtectionRecord, key)
            if record is None:
                return None
            if _is_expired(record.expires_at):
                db.delete(record)
                db.commit()
                return None
            return record.value
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("sql_store_get_error", key=key, error=str(e))
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        expires_at = None
        if ttl_seconds:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)

        db = self.session_factory()
        try:
            record = db.get(ProtectionRecord, key)
            if record is None:
                record = ProtectionRecord(key=key, value=value, expires_at=expires_at)
                db.add(record)
            else:
                record.value = value
                record.expires_at = expires_at
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("sql_store_set_error", key=key, error=str(e))
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db = self.session_factory()
        try:
            db.query(ProtectionRecord).filter(ProtectionRecord.key == key).delete()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("sql_store_delete_error", key=key, error=str(e))
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def keys(self, prefix: str = "") -> list[str]:
        db = self.session_factory()
        try:
            records = db.query(ProtectionRecord).filter(
                ProtectionRecord.key.startswith(prefix, autoescape=True)
            ).all()
            return [r.key for r in records if not _is_expired(r.expires_at)]
        except SQLAlchemyError as e:
            logger.error("sql_store_keys_error", prefix=prefix, error=str(e))
            raise StoreError(str(e)) from e
        finally:
            db.close()

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with super().lock(key):
            owner = self._acquire(key)
            try:
                yield
            finally:
                self._release(key, owner)

    def _acquire(self, key: str) -> str:
        owner = uuid.uuid4().hex
        deadline = time.monotonic() + self.lock_timeout

        while not self._try_acquire(key, owner):
            if time.monotonic() >= deadline:
                raise StoreError(f"could not lock {key}")
            time.sleep(self.LOCK_POLL_SECONDS)

        return owner

    def _try_acquire(self, key: str, owner: str) -> bool:
        now = datetime.now(timezone.utc)
        db = self.session_factory()
        try:
            # a holder that died keeps the row only until it expires
            db.query(ProtectionLock).filter(
                ProtectionLock.key == key,
                ProtectionLock.expires_at <= now
            ).delete()
            db.add(ProtectionLock(key=key, owner=owner, expires_at=now + timedelta(seconds=self.lock_timeout)))
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            return False
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("sql_store_lock_error", key=key, error=str(e))
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def _release(self, key: str, owner: str) -> None:
        db = self.session_factory()
        try:
            released = db.query(ProtectionLock).filter(
                ProtectionLock.key == key,
                ProtectionLock.owner == owner
            ).delete()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("sql_store_unlock_error", key=key, error=str(e))
            raise StoreError(str(e)) from e
        finally:
            db.close()

        if not released:
            logger.warning("sql_store_lock_expired", key=key)
